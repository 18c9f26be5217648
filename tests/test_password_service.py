import bcrypt
import pytest

from core.config import Argon2Settings
from domain.user.service import PasswordScheme, PasswordService, detect_scheme

LIGHT = Argon2Settings(memory_cost=1024, time_cost=1, parallelism=1)


@pytest.fixture
def service() -> PasswordService:
    return PasswordService(LIGHT)


def test_hash_and_verify(service):
    hashed = service.hash_password("Correct-Horse-42!")
    assert hashed.startswith("$argon2id$")

    result = service.verify_password("Correct-Horse-42!", hashed)
    assert result.valid
    assert not result.needs_rehash
    assert result.scheme is PasswordScheme.ARGON2ID

    assert not service.verify_password("wrong", hashed).valid


def test_each_hash_uses_a_fresh_salt(service):
    assert service.hash_password("same-password") != service.hash_password("same-password")


def test_default_parameters():
    hashed = PasswordService().hash_password("Correct-Horse-42!")
    assert "$m=65536,t=3,p=4$" in hashed
    assert PasswordService().verify_password("Correct-Horse-42!", hashed).valid


def test_weaker_argon2_hash_needs_rehash(service):
    hashed = service.hash_password("Correct-Horse-42!")
    stronger = PasswordService(Argon2Settings(memory_cost=2048, time_cost=1, parallelism=1))
    result = stronger.verify_password("Correct-Horse-42!", hashed)
    assert result.valid
    assert result.needs_rehash


def test_legacy_bcrypt_hash_verifies_and_requests_rehash(service):
    legacy = bcrypt.hashpw(b"Correct-Horse-42!", bcrypt.gensalt(rounds=4)).decode()
    assert detect_scheme(legacy) is PasswordScheme.BCRYPT

    result = service.verify_password("Correct-Horse-42!", legacy)
    assert result.valid
    assert result.needs_rehash
    assert result.scheme is PasswordScheme.BCRYPT

    failed = service.verify_password("nope", legacy)
    assert not failed.valid
    assert not failed.needs_rehash


@pytest.mark.parametrize("stored", [None, "", "plaintext", "$1$md5crypt"])
def test_unknown_or_missing_hash_never_verifies(service, stored):
    assert not service.verify_password("anything", stored).valid


def test_empty_password_rejected(service):
    with pytest.raises(ValueError):
        service.hash_password("")
    assert not service.verify_password("", service.hash_password("x")).valid

import pytest

from core.config import PasswordPolicySettings
from domain.user.password_policy import (
    PasswordError,
    PasswordHints,
    generate_secure_password,
    has_sequential_chars,
    password_requirements,
    password_strength,
    strength_label,
    validate_password,
)


def test_strong_password_passes():
    result = validate_password("Correct-Horse-42!")
    assert result.valid
    assert result.errors == []


def test_empty_password_reports_only_required():
    result = validate_password("")
    assert not result.valid
    assert result.errors == [PasswordError.REQUIRED]


def test_short_password_collects_every_violation():
    result = validate_password("short")
    assert PasswordError.TOO_SHORT in result.errors
    assert PasswordError.MISSING_UPPERCASE in result.errors
    assert PasswordError.MISSING_NUMBER in result.errors
    assert PasswordError.MISSING_SPECIAL in result.errors
    assert PasswordError.MISSING_LOWERCASE not in result.errors


def test_personal_information_is_rejected():
    hints = PasswordHints(email="alice@example.com", first_name="Bob", last_name="Li")
    result = validate_password("Alice-Strong-97!", hints)
    assert result.errors == [PasswordError.CONTAINS_EMAIL]

    result = validate_password("Bobby-Strong-97!", hints)
    assert result.errors == [PasswordError.CONTAINS_FIRST_NAME]


def test_short_name_hints_are_ignored():
    # 少于 3 个字符的姓名不参与检查
    result = validate_password("Li-Strong-Pass97!", PasswordHints(last_name="Li"))
    assert PasswordError.CONTAINS_LAST_NAME not in result.errors


def test_common_password_is_case_insensitive():
    result = validate_password("PASSWORD123456")
    assert PasswordError.COMMON in result.errors


@pytest.mark.parametrize(
    "password, error",
    [
        ("Xy!abcd9Q#pl", PasswordError.SEQUENTIAL),
        ("Xy!dcba9Q#pl", PasswordError.SEQUENTIAL),
        ("Xy!qwer9Q#pl", PasswordError.SEQUENTIAL),
        ("Xy!aaaa9Q#pl", PasswordError.REPEATED),
    ],
)
def test_patterns_are_rejected(password, error):
    assert error in validate_password(password).errors


def test_relaxed_policy():
    policy = PasswordPolicySettings(min_length=8, require_special=False)
    assert validate_password("Plain9Words", policy=policy).valid


def test_sequence_detection_length():
    assert has_sequential_chars("x123x", 3)
    assert not has_sequential_chars("x123x", 4)


def test_strength_scoring():
    assert password_strength("") == 0
    weak = password_strength("aaaaaa")
    strong = password_strength("Correct-Horse-42!")
    assert weak < 30
    assert strong >= 70
    assert 0 <= password_strength("password123456") <= 100


@pytest.mark.parametrize(
    "score, label",
    [(0, "Weak"), (29, "Weak"), (30, "Fair"), (50, "Good"), (70, "Strong"), (89, "Strong"), (90, "Excellent")],
)
def test_strength_labels(score, label):
    assert strength_label(score) == label


def test_generated_password_covers_every_class():
    password = generate_secure_password(20)
    assert len(password) == 20
    assert any(c.islower() for c in password)
    assert any(c.isupper() for c in password)
    assert any(c.isdigit() for c in password)
    assert any(not c.isalnum() for c in password)


def test_requirements_description():
    info = password_requirements()
    assert info["min_length"] == 12
    assert "uppercase" in info["description"]
    assert "special character" in info["description"]

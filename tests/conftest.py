"""Pytest bootstrap configuration.

Ensure mandatory environment variables are set before test collection
and module imports that depend on application settings.
"""
import os

# Mandatory secret key for settings validation
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("DATABASE__URL", "sqlite+aiosqlite:///:memory:")

import re
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from application.ports.email import EmailDeliveryError, EmailMessage, EmailSendResult
from core.config import Argon2Settings, SecuritySettings
from domain.common.context import RequestContext
from domain.device.entity import DeviceInfo
from domain.user.entity import User
from infrastructure.container import build_security_core
from infrastructure.models import Base
from infrastructure.unit_of_work import uow_factory as make_uow_factory

BASE_TIME = datetime(2025, 1, 1, tzinfo=timezone.utc)
PASSWORD = "Correct-Horse-42!"


class FakeClock:
    """Callable clock pinned to a settable instant."""

    def __init__(self, now: datetime = BASE_TIME):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class StubEmailSender:
    def __init__(self, configured: bool = True):
        self.configured = configured
        self.fail = False
        self.sent: list[EmailMessage] = []

    def is_configured(self) -> bool:
        return self.configured

    async def send(self, message: EmailMessage) -> EmailSendResult:
        if self.fail:
            raise EmailDeliveryError("rejected")
        self.sent.append(message)
        return EmailSendResult(id=f"<{len(self.sent)}@stub>", message="Queued")

    def last_code(self) -> Optional[str]:
        if not self.sent:
            return None
        match = re.search(r"\b(\d{6})\b", self.sent[-1].text)
        return match.group(1) if match else None


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def email_sender() -> StubEmailSender:
    return StubEmailSender()


@pytest.fixture
def config() -> SecuritySettings:
    # 测试中使用低成本 Argon2 参数
    return SecuritySettings(
        jwt_secret="test-jwt-secret",
        argon2=Argon2Settings(memory_cost=1024, time_cost=1, parallelism=1),
    )


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def uow_factory(engine):
    return make_uow_factory(async_sessionmaker(bind=engine, expire_on_commit=False))


@pytest.fixture
def core(uow_factory, email_sender, config, clock):
    return build_security_core(uow_factory, email_sender=email_sender, config=config, clock=clock)


@pytest.fixture
def context() -> RequestContext:
    return RequestContext(ip_address="203.0.113.10", user_agent="Mozilla/5.0 (Macintosh) Chrome/120.0", country_code="US")


@pytest.fixture
def device() -> DeviceInfo:
    return DeviceInfo(device_id="d1", fingerprint="fp-d1", device_name="Chrome on macOS")


@pytest.fixture
def make_user(uow_factory, core, clock):
    """Create a persisted user with an Argon2id hash of ``password``."""

    async def _make(
        email: str = "alice@example.com",
        password: Optional[str] = PASSWORD,
        role: str = "client",
        password_hash: Optional[str] = None,
        **fields,
    ) -> User:
        if password_hash is None and password is not None:
            password_hash = core.passwords.hash_password(password)
        user = User(
            id=None,
            email=email,
            role=role,
            password_hash=password_hash,
            created_at=clock(),
            **fields,
        )
        async with uow_factory() as uow:
            return await uow.user_repository.create(user)

    return _make

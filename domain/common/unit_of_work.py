"""Unit of Work 抽象定义"""
from __future__ import annotations

from abc import ABC, abstractmethod

from domain.user.repository import UserRepository
from domain.session.repository import SessionRepository
from domain.device.repository import TrustedDeviceRepository
from domain.mfa.repository import MfaChallengeRepository, MfaSettingsRepository
from domain.rate_limit.repository import RateLimitRepository
from domain.audit.repository import AuditLogRepository


class AbstractUnitOfWork(ABC):
    """应用层事务边界控制抽象"""

    user_repository: UserRepository
    session_repository: SessionRepository
    trusted_device_repository: TrustedDeviceRepository
    mfa_settings_repository: MfaSettingsRepository
    mfa_challenge_repository: MfaChallengeRepository
    rate_limit_repository: RateLimitRepository
    audit_log_repository: AuditLogRepository

    def __init__(self, *, readonly: bool = False) -> None:
        self._committed = False
        self._readonly = readonly
        self._clear_repositories()

    def _clear_repositories(self) -> None:
        self.user_repository = None  # type: ignore[assignment]
        self.session_repository = None  # type: ignore[assignment]
        self.trusted_device_repository = None  # type: ignore[assignment]
        self.mfa_settings_repository = None  # type: ignore[assignment]
        self.mfa_challenge_repository = None  # type: ignore[assignment]
        self.rate_limit_repository = None  # type: ignore[assignment]
        self.audit_log_repository = None  # type: ignore[assignment]

    async def __aenter__(self) -> "AbstractUnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc:
            await self.rollback()
        else:
            # 只在非只读且未显式提交时自动提交
            if not self._readonly and not self._committed:
                await self.commit()

    @abstractmethod
    async def commit(self) -> None:
        """提交事务"""
        ...

    @abstractmethod
    async def rollback(self) -> None:
        """回滚事务"""

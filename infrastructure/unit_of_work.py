"""SQLAlchemy Unit of Work 实现"""
from __future__ import annotations

from typing import Optional, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from domain.common.unit_of_work import AbstractUnitOfWork
from infrastructure.database import AsyncSessionLocal
from infrastructure.repositories.audit_log_repository import SQLAlchemyAuditLogRepository
from infrastructure.repositories.mfa_repository import (
    SQLAlchemyMfaChallengeRepository,
    SQLAlchemyMfaSettingsRepository,
)
from infrastructure.repositories.rate_limit_repository import SQLAlchemyRateLimitRepository
from infrastructure.repositories.session_repository import SQLAlchemySessionRepository
from infrastructure.repositories.trusted_device_repository import SQLAlchemyTrustedDeviceRepository
from infrastructure.repositories.user_repository import SQLAlchemyUserRepository


class SQLAlchemyUnitOfWork(AbstractUnitOfWork):
    """基于SQLAlchemy的Unit of Work"""

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession] = AsyncSessionLocal,
        session: Optional[AsyncSession] = None,
        *,
        readonly: bool = False,
    ) -> None:
        super().__init__(readonly=readonly)
        self._session_factory = session_factory
        self._external_session = session
        self.session: Optional[AsyncSession] = session

    async def __aenter__(self) -> "SQLAlchemyUnitOfWork":
        if self.session is None:
            self.session = self._session_factory()
        self.user_repository = SQLAlchemyUserRepository(self.session)
        self.session_repository = SQLAlchemySessionRepository(self.session)
        self.trusted_device_repository = SQLAlchemyTrustedDeviceRepository(self.session)
        self.mfa_settings_repository = SQLAlchemyMfaSettingsRepository(self.session)
        self.mfa_challenge_repository = SQLAlchemyMfaChallengeRepository(self.session)
        self.rate_limit_repository = SQLAlchemyRateLimitRepository(self.session)
        self.audit_log_repository = SQLAlchemyAuditLogRepository(self.session)
        # 只读模式不显式开启事务，关闭会话时自动回滚
        if not self._readonly:
            await self.session.begin()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            await super().__aexit__(exc_type, exc, tb)
        finally:
            if self._external_session is None and self.session is not None:
                await self.session.close()
                self.session = None
            self._clear_repositories()

    async def commit(self) -> None:
        if not self._readonly and self.session is not None and self.session.in_transaction():
            await self.session.commit()
        self._committed = True

    async def rollback(self) -> None:
        if self.session is not None and self.session.in_transaction():
            await self.session.rollback()
        self._committed = False


def uow_factory(session_factory: Callable[[], AsyncSession] = AsyncSessionLocal):
    """返回每次调用都新建 UoW 的工厂，供应用服务注入"""

    def _make(*, readonly: bool = False) -> SQLAlchemyUnitOfWork:
        return SQLAlchemyUnitOfWork(session_factory, readonly=readonly)

    return _make

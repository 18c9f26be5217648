"""RoleResolver implementation backed by the users table.

Legacy role mapping kept for tokens issued before the role migration:
- ``editor`` -> ``admin``
- ``admin`` -> ``superadmin`` only while no real ``superadmin`` exists
"""
from __future__ import annotations

import time
from typing import Callable, Optional

from core.logging_config import get_logger
from domain.common.unit_of_work import AbstractUnitOfWork

logger = get_logger(__name__)

DEFAULT_ROLE = "client"


class LegacyRoleResolver:

    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        cache_seconds: int = 60,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._uow_factory = uow_factory
        self._cache_seconds = cache_seconds
        self._monotonic = monotonic
        self._has_superadmin: Optional[bool] = None
        self._checked_at = 0.0

    async def _detect_superadmin(self) -> bool:
        now = self._monotonic()
        if self._has_superadmin is not None and now - self._checked_at < self._cache_seconds:
            return self._has_superadmin
        async with self._uow_factory(readonly=True) as uow:
            self._has_superadmin = await uow.user_repository.exists_with_role("superadmin")
        self._checked_at = now
        logger.debug("superadmin_presence_checked", has_superadmin=self._has_superadmin)
        return self._has_superadmin

    async def resolve(self, role: Optional[str]) -> str:
        value = (role or "").strip().lower()
        if not value:
            return DEFAULT_ROLE
        if value == "editor":
            return "admin"
        if value == "admin":
            return "admin" if await self._detect_superadmin() else "superadmin"
        return value

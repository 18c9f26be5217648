"""
限流与账户锁定服务

两套独立机制：
1. 按 (标识, 作用域) 的滑动窗口计数 + 锁定（auth_rate_limits 表）
2. 用户维度的连续失败计数，超过阈值自动锁定账户（users.locked_until）
"""
from datetime import timedelta
from typing import Callable, Optional

from application.services.audit_service import AuditService
from core.config import SecuritySettings, settings
from core.logging_config import get_logger
from domain.audit.entity import SecurityEventType
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.rate_limit.entity import (
    LockStatus,
    RateLimitDecision,
    RateLimitScope,
    rate_limit_key,
    seconds_until,
)
from shared.clock import Clock, utc_now

logger = get_logger(__name__)

UNKNOWN_IDENTIFIER = "unknown"


class RateLimitService:

    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        audit: AuditService,
        config: Optional[SecuritySettings] = None,
        clock: Clock = utc_now,
    ):
        self._uow_factory = uow_factory
        self._audit = audit
        self._config = config or settings.security
        self._clock = clock

    def key_for(self, scope: RateLimitScope, identifier: Optional[str]) -> str:
        return rate_limit_key(scope, identifier or UNKNOWN_IDENTIFIER, self._config.ip_hash_secret)

    async def check(self, scope: RateLimitScope, identifier: Optional[str]) -> RateLimitDecision:
        """检查是否允许本次尝试（不计数）"""
        rule = self._config.rate_limits.for_scope(scope.value)
        key = self.key_for(scope, identifier)
        now = self._clock()

        async with self._uow_factory() as uow:
            record = await uow.rate_limit_repository.get(key, scope)
            if record is None:
                return RateLimitDecision(allowed=True, remaining=rule.max_attempts)

            if record.is_locked(now):
                return RateLimitDecision(
                    allowed=False,
                    remaining=0,
                    retry_after=seconds_until(now, record.locked_until),
                    locked=True,
                )

            if record.window_expired(now, timedelta(minutes=rule.window_minutes)):
                await uow.rate_limit_repository.delete(key, scope)
                # 本次尝试计入新窗口
                return RateLimitDecision(allowed=True, remaining=rule.max_attempts - 1)

            if record.attempts >= rule.max_attempts:
                locked_until = now + timedelta(minutes=rule.lockout_minutes)
                await uow.rate_limit_repository.set_locked_until(key, scope, locked_until)
                logger.warning(
                    "rate_limit_lockout",
                    scope=scope.value,
                    attempts=record.attempts,
                    lockout_minutes=rule.lockout_minutes,
                )
                return RateLimitDecision(
                    allowed=False,
                    remaining=0,
                    retry_after=rule.lockout_minutes * 60,
                    locked=True,
                )

            return RateLimitDecision(allowed=True, remaining=rule.max_attempts - record.attempts)

    async def record(self, scope: RateLimitScope, identifier: Optional[str]) -> int:
        """记录一次尝试，返回窗口内的累计次数"""
        key = self.key_for(scope, identifier)
        async with self._uow_factory() as uow:
            return await uow.rate_limit_repository.increment(key, scope, self._clock())

    async def clear(self, scope: RateLimitScope, identifier: Optional[str]) -> None:
        key = self.key_for(scope, identifier)
        async with self._uow_factory() as uow:
            await uow.rate_limit_repository.delete(key, scope)

    async def cleanup(self) -> int:
        """删除超过保留期且没有生效锁定的记录"""
        now = self._clock()
        before = now - timedelta(hours=self._config.rate_limit_retention_hours)
        async with self._uow_factory() as uow:
            count = await uow.rate_limit_repository.delete_stale(before, now)
        logger.info("rate_limits_cleaned", count=count)
        return count

    # ------------------------------------------------------------------
    # 账户锁定
    # ------------------------------------------------------------------

    async def lock_user(self, user_id: str, reason: str = "too_many_failed_attempts"):
        minutes = self._config.account_lockout_minutes
        locked_until = self._clock() + timedelta(minutes=minutes)
        async with self._uow_factory() as uow:
            await uow.user_repository.set_locked_until(user_id, locked_until)

        logger.warning("account_locked", user_id=user_id, reason=reason, until=locked_until.isoformat())
        await self._audit.log(
            SecurityEventType.ACCOUNT_LOCKED,
            success=True,
            user_id=user_id,
            details={"reason": reason, "lockoutMinutes": minutes},
        )
        return locked_until

    async def unlock_user(self, user_id: str, admin_id: Optional[str] = None) -> None:
        async with self._uow_factory() as uow:
            await uow.user_repository.unlock(user_id)

        logger.info("account_unlocked", user_id=user_id, unlocked_by=admin_id)
        await self._audit.log(
            SecurityEventType.ACCOUNT_UNLOCKED,
            success=True,
            user_id=user_id,
            details={"unlockedBy": admin_id},
        )

    async def is_user_locked(self, user_id: str) -> LockStatus:
        """锁定已过期时顺便清除"""
        now = self._clock()
        async with self._uow_factory() as uow:
            user = await uow.user_repository.get_by_id(user_id)
            if user is None or user.locked_until is None:
                return LockStatus(locked=False)
            if user.is_locked(now):
                return LockStatus(
                    locked=True,
                    until=user.locked_until,
                    retry_after=seconds_until(now, user.locked_until),
                )
            await uow.user_repository.set_locked_until(user_id, None)
            return LockStatus(locked=False)

    async def record_failed_login(self, user_id: str) -> LockStatus:
        """失败次数 +1，达到阈值时自动锁定"""
        async with self._uow_factory() as uow:
            failed_count = await uow.user_repository.increment_failed_logins(user_id)

        if failed_count >= self._config.max_login_failures:
            until = await self.lock_user(user_id, "too_many_failed_attempts")
            return LockStatus(locked=True, until=until, retry_after=seconds_until(self._clock(), until))
        return LockStatus(locked=False)

    async def reset_failed_logins(self, user_id: str) -> None:
        async with self._uow_factory() as uow:
            await uow.user_repository.reset_failed_logins(user_id)

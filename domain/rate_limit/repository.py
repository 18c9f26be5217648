"""
限流记录仓储接口
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from .entity import RateLimitRecord, RateLimitScope


class RateLimitRepository(ABC):

    @abstractmethod
    async def get(self, limit_key: str, scope: RateLimitScope) -> Optional[RateLimitRecord]:
        pass

    @abstractmethod
    async def increment(self, limit_key: str, scope: RateLimitScope, now: datetime) -> int:
        """upsert 并原子递增 attempts；插入时窗口起点为 now。返回递增后的值"""
        pass

    @abstractmethod
    async def set_locked_until(self, limit_key: str, scope: RateLimitScope, locked_until: datetime) -> None:
        pass

    @abstractmethod
    async def delete(self, limit_key: str, scope: RateLimitScope) -> None:
        pass

    @abstractmethod
    async def delete_stale(self, last_attempt_before: datetime, now: datetime) -> int:
        """删除 last_attempt_at 早于阈值且没有生效锁定的记录"""
        pass

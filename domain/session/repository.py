"""
会话仓储接口
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional, List

from .entity import Session


class SessionRepository(ABC):
    """会话仓储抽象接口"""

    @abstractmethod
    async def create(self, session: Session) -> Session:
        pass

    @abstractmethod
    async def get_by_id(self, session_id: str) -> Optional[Session]:
        pass

    @abstractmethod
    async def get_by_refresh_hash(self, token_hash: str, *, for_update: bool = False) -> Optional[Session]:
        """按当前刷新令牌哈希查找；for_update 时加行锁"""
        pass

    @abstractmethod
    async def get_by_previous_refresh_hash(self, token_hash: str) -> Optional[Session]:
        """按上一次轮转前的哈希查找，用于识别令牌重用"""
        pass

    @abstractmethod
    async def rotate_refresh_token(
        self,
        session_id: str,
        old_hash: str,
        new_hash: str,
        refresh_expires_at: datetime,
        now: datetime,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> bool:
        """比较并交换刷新令牌哈希；旧哈希已不是当前值时返回 False"""
        pass

    @abstractmethod
    async def revoke(self, session_id: str, reason: str, now: datetime) -> bool:
        """撤销单个会话；已撤销时返回 False（幂等）"""
        pass

    @abstractmethod
    async def revoke_all_for_user(
        self, user_id: str, reason: str, now: datetime, except_session_id: Optional[str] = None
    ) -> int:
        pass

    @abstractmethod
    async def revoke_family(self, family_id: str, reason: str, now: datetime) -> int:
        pass

    @abstractmethod
    async def touch(self, session_id: str, now: datetime) -> None:
        """更新 last_activity_at"""
        pass

    @abstractmethod
    async def list_active_for_user(self, user_id: str, now: datetime) -> List[Session]:
        pass

    @abstractmethod
    async def exists_for_device(self, user_id: str, device_id: str) -> bool:
        """该用户在此设备上是否出现过会话（含已撤销）"""
        pass

    @abstractmethod
    async def recent_countries(self, user_id: str, since: datetime) -> List[str]:
        """since 之后创建的会话涉及的国家集合"""
        pass

    @abstractmethod
    async def last_activity_at(self, user_id: str) -> Optional[datetime]:
        """最近一个未撤销会话的 last_activity_at"""
        pass

    @abstractmethod
    async def delete_stale(self, before: datetime) -> int:
        """删除 before 之前已撤销或已过期的会话"""
        pass

"""
受信任设备仓储接口
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional, List

from .entity import TrustedDevice


class TrustedDeviceRepository(ABC):

    @abstractmethod
    async def get_active(self, user_id: str, device_id: str, now: datetime) -> Optional[TrustedDevice]:
        """未撤销且未过期的记录"""
        pass

    @abstractmethod
    async def upsert(self, device: TrustedDevice) -> TrustedDevice:
        """(user_id, device_id) 冲突时刷新指纹、有效期并清除 revoked_at"""
        pass

    @abstractmethod
    async def touch(self, record_id: str, now: datetime) -> None:
        pass

    @abstractmethod
    async def revoke(self, user_id: str, device_id: str, now: datetime) -> bool:
        pass

    @abstractmethod
    async def revoke_all_for_user(self, user_id: str, now: datetime) -> int:
        pass

    @abstractmethod
    async def list_active_for_user(self, user_id: str, now: datetime) -> List[TrustedDevice]:
        pass

    @abstractmethod
    async def exists(self, user_id: str, device_id: str) -> bool:
        """是否出现过该设备记录（含已撤销/过期）"""
        pass

"""
安全审计仓储接口 - 只追加
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List

from .entity import AuditEvent, AuditLogEntry, AuditQuery


class AuditLogRepository(ABC):

    @abstractmethod
    async def add(self, event: AuditEvent, created_at: datetime) -> int:
        """写入已脱敏的事件，返回记录ID"""
        pass

    @abstractmethod
    async def search(self, query: AuditQuery) -> List[AuditLogEntry]:
        """按条件查询，按时间倒序"""
        pass

    @abstractmethod
    async def count_by_type(self, since: datetime) -> List[tuple[str, bool, int]]:
        """since 之后按 (event_type, success) 分组计数"""
        pass

    @abstractmethod
    async def delete_before(self, before: datetime) -> int:
        pass

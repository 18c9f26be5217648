"""角色解析端口：原始角色 -> 访问令牌中的有效角色"""
from __future__ import annotations

from typing import Optional, Protocol


class RoleResolver(Protocol):

    async def resolve(self, role: Optional[str]) -> str:
        ...

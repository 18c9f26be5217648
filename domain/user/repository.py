"""
用户仓储接口 - 定义数据访问的抽象接口
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional
from .entity import User


class UserRepository(ABC):
    """用户仓储抽象接口 - 只定义能做什么，不管怎么做"""

    @abstractmethod
    async def create(self, user: User) -> User:
        """创建用户"""
        pass

    @abstractmethod
    async def get_by_id(self, user_id: str) -> Optional[User]:
        """根据ID获取用户"""
        pass

    @abstractmethod
    async def get_by_email(self, email: str) -> Optional[User]:
        """根据邮箱获取用户（不区分大小写）"""
        pass

    @abstractmethod
    async def exists_by_email(self, email: str) -> bool:
        """检查邮箱是否存在"""
        pass

    @abstractmethod
    async def exists_with_role(self, role: str) -> bool:
        """是否存在指定角色的用户"""
        pass

    @abstractmethod
    async def update_password_hash(self, user_id: str, password_hash: str) -> None:
        """只替换密码哈希（登录时重新哈希）"""
        pass

    @abstractmethod
    async def set_password(self, user_id: str, password_hash: str, changed_at: datetime) -> None:
        """修改密码并记录 password_changed_at"""
        pass

    @abstractmethod
    async def stamp_password_changed(self, user_id: str, changed_at: datetime) -> None:
        pass

    @abstractmethod
    async def increment_failed_logins(self, user_id: str) -> int:
        """原子递增失败次数，返回递增后的值"""
        pass

    @abstractmethod
    async def reset_failed_logins(self, user_id: str) -> None:
        pass

    @abstractmethod
    async def set_locked_until(self, user_id: str, locked_until: Optional[datetime]) -> None:
        """设置或清除锁定时间"""
        pass

    @abstractmethod
    async def unlock(self, user_id: str) -> None:
        """清除锁定并归零失败次数"""
        pass

    @abstractmethod
    async def record_login(self, user_id: str, at: datetime) -> None:
        """last_login_at = at, login_count + 1, failed_login_count = 0"""
        pass

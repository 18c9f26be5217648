"""
用户领域实体 - 包含核心业务规则
"""
from datetime import datetime
from typing import Optional
from dataclasses import dataclass
import re


EMAIL_PATTERN = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')


@dataclass
class User:
    """用户实体 - 认证核心只关心身份、角色、密码与锁定状态"""

    id: Optional[str]
    email: str
    role: str = "client"
    password_hash: Optional[str] = None  # OAuth-only 账户为空
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    auth_provider: str = "local"
    failed_login_count: int = 0
    locked_until: Optional[datetime] = None
    last_login_at: Optional[datetime] = None
    login_count: int = 0
    password_changed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    def __post_init__(self):
        self.email = self.email.strip().lower()
        self.validate_email()

    def validate_email(self) -> None:
        """业务规则：邮箱格式验证"""
        if not EMAIL_PATTERN.match(self.email):
            raise ValueError(f"Invalid email address: {self.email}")

    def is_locked(self, now: datetime) -> bool:
        """业务规则：lock-until 在未来时，所有密码认证直接失败"""
        return self.locked_until is not None and self.locked_until > now

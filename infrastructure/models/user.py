"""
用户数据库模型 - SQLAlchemy ORM模型
注意：这是基础设施层的实现细节，不是领域模型
"""
from sqlalchemy import Column, Integer, String

from .base import Base, UTCDateTime, new_uuid


class UserModel(Base):
    """
    用户数据库模型（认证核心所需字段）

    所有业务规则都在 domain.user.entity.User 中
    """
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=new_uuid)

    email = Column(String(255), unique=True, index=True, nullable=False, comment="邮箱（小写）")
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    role = Column(String(32), nullable=False, default="client", comment="原始角色")

    # 认证信息；OAuth-only 账户无密码
    password_hash = Column(String(255), nullable=True, comment="密码哈希（Argon2id / 旧 bcrypt）")
    auth_provider = Column(String(32), nullable=False, default="local")
    password_changed_at = Column(UTCDateTime(), nullable=True)

    # 登录与锁定状态
    failed_login_count = Column(Integer, nullable=False, default=0)
    locked_until = Column(UTCDateTime(), nullable=True, comment="锁定截止时间")
    last_login_at = Column(UTCDateTime(), nullable=True)
    login_count = Column(Integer, nullable=False, default=0)

    created_at = Column(UTCDateTime(), nullable=False)

    def __repr__(self):
        return f"<UserModel(id={self.id}, email='{self.email}', role='{self.role}')>"

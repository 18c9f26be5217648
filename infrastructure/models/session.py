"""
会话数据库模型 - 刷新令牌轮转

每次刷新替换 refresh_token_hash，并把旧值保存在 previous_refresh_token_hash，
旧值再次出现即视为令牌重用。
"""
from sqlalchemy import Boolean, Column, ForeignKey, Index, String, Text

from .base import Base, UTCDateTime, new_uuid


class SessionModel(Base):
    __tablename__ = "user_sessions"

    id = Column(String(36), primary_key=True, default=new_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    # 令牌
    refresh_token_hash = Column(String(64), unique=True, nullable=False, comment="当前刷新令牌 SHA-256")
    previous_refresh_token_hash = Column(String(64), nullable=True, index=True, comment="上一次轮转前的哈希")
    token_family_id = Column(String(36), nullable=False, index=True, comment="令牌家族ID")

    # 设备
    device_id = Column(String(64), nullable=True)
    device_fingerprint = Column(String(64), nullable=True)
    device_name = Column(String(255), nullable=True)
    ip_address = Column(String(45), nullable=True, comment="IP地址（支持IPv6）")
    user_agent = Column(Text, nullable=True)
    country_code = Column(String(2), nullable=True)
    city = Column(String(100), nullable=True)
    is_trusted = Column(Boolean, nullable=False, default=False)
    trust_until = Column(UTCDateTime(), nullable=True)

    # 生命周期
    refresh_expires_at = Column(UTCDateTime(), nullable=False)
    absolute_expires_at = Column(UTCDateTime(), nullable=False)
    last_activity_at = Column(UTCDateTime(), nullable=False)
    refreshed_at = Column(UTCDateTime(), nullable=True, comment="最近一次轮转时间")
    created_at = Column(UTCDateTime(), nullable=False, index=True)
    revoked_at = Column(UTCDateTime(), nullable=True)
    revoked_reason = Column(String(50), nullable=True)

    __table_args__ = (
        Index("ix_user_sessions_user_device", "user_id", "device_id"),
        Index("ix_user_sessions_user_active", "user_id", "revoked_at"),
    )

    def __repr__(self):
        return f"<SessionModel(id={self.id}, user_id={self.user_id}, revoked_at={self.revoked_at})>"

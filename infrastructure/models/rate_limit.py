"""
限流记录数据库模型
"""
from sqlalchemy import Column, Integer, String, UniqueConstraint

from .base import Base, UTCDateTime, new_uuid


class RateLimitModel(Base):
    __tablename__ = "auth_rate_limits"

    id = Column(String(36), primary_key=True, default=new_uuid)
    limit_key = Column(String(255), nullable=False, comment="标识（IP 为 HMAC 哈希）")
    limit_type = Column(String(30), nullable=False, comment="作用域")
    attempts = Column(Integer, nullable=False, default=1)
    first_attempt_at = Column(UTCDateTime(), nullable=False)
    last_attempt_at = Column(UTCDateTime(), nullable=False, index=True)
    locked_until = Column(UTCDateTime(), nullable=True)

    __table_args__ = (
        UniqueConstraint("limit_key", "limit_type", name="uq_auth_rate_limits_key_type"),
    )

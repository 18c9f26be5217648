"""
受信任设备数据库模型
"""
from sqlalchemy import Column, ForeignKey, String, Text, UniqueConstraint

from .base import Base, UTCDateTime, new_uuid


class TrustedDeviceModel(Base):
    __tablename__ = "user_trusted_devices"

    id = Column(String(36), primary_key=True, default=new_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    device_id = Column(String(64), nullable=False)
    device_fingerprint = Column(String(64), nullable=True)
    device_name = Column(String(255), nullable=True)
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(Text, nullable=True)
    expires_at = Column(UTCDateTime(), nullable=False)
    last_used_at = Column(UTCDateTime(), nullable=True)
    created_at = Column(UTCDateTime(), nullable=False)
    revoked_at = Column(UTCDateTime(), nullable=True)

    __table_args__ = (
        UniqueConstraint("user_id", "device_id", name="uq_trusted_device_user_device"),
    )

"""
安全审计日志数据库模型（只追加）
"""
from sqlalchemy import Boolean, Column, Index, Integer, String, Text

from .base import Base, JSONType, UTCDateTime


class SecurityAuditLogModel(Base):
    __tablename__ = "security_audit_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), nullable=True, index=True)
    session_id = Column(String(36), nullable=True)
    event_type = Column(String(50), nullable=False, index=True)
    event_category = Column(String(30), nullable=False, index=True)
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(Text, nullable=True)
    country_code = Column(String(2), nullable=True)
    device_id = Column(String(64), nullable=True)
    success = Column(Boolean, nullable=False)
    failure_reason = Column(String(100), nullable=True)
    details = Column(JSONType, nullable=False, default=dict)
    created_at = Column(UTCDateTime(), nullable=False, index=True)

    __table_args__ = (
        Index("ix_security_audit_log_user_created", "user_id", "created_at"),
    )

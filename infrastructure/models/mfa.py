"""
MFA 数据库模型 - 用户设置与验证码挑战
"""
from sqlalchemy import Boolean, Column, ForeignKey, Index, Integer, String, Text

from .base import Base, UTCDateTime, new_uuid


class MfaSettingsModel(Base):
    __tablename__ = "user_mfa_settings"

    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    email_otp_enabled = Column(Boolean, nullable=False, default=False)
    totp_enabled = Column(Boolean, nullable=False, default=False)
    webauthn_enabled = Column(Boolean, nullable=False, default=False)
    preferred_method = Column(String(20), nullable=False, default="email")
    require_mfa_always = Column(Boolean, nullable=False, default=False)
    created_at = Column(UTCDateTime(), nullable=False)
    updated_at = Column(UTCDateTime(), nullable=False)


class MfaChallengeModel(Base):
    __tablename__ = "mfa_challenges"

    id = Column(String(36), primary_key=True, default=new_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    session_id = Column(String(36), nullable=True)
    challenge_type = Column(String(20), nullable=False, default="email_otp")
    otp_hash = Column(String(64), nullable=False, comment="验证码 SHA-256")
    expires_at = Column(UTCDateTime(), nullable=False)
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=5)
    trigger_reason = Column(String(30), nullable=True)
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(Text, nullable=True)
    verified_at = Column(UTCDateTime(), nullable=True)
    created_at = Column(UTCDateTime(), nullable=False)

    __table_args__ = (
        Index("ix_mfa_challenges_user_pending", "user_id", "verified_at", "expires_at"),
        Index("ix_mfa_challenges_expires", "expires_at"),
    )

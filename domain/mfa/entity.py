"""
MFA 领域 - 设置、挑战实体与验证码规则
"""
from __future__ import annotations

import hashlib
import secrets
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

OTP_LENGTH = 6
EMAIL_OTP = "email_otp"


class MfaTriggerReason(str, Enum):
    NEW_DEVICE = "new_device"
    NEW_IP = "new_ip"
    NEW_COUNTRY = "new_country"
    INACTIVITY = "inactivity"
    SENSITIVE_ACTION = "sensitive_action"
    ALWAYS_REQUIRED = "always_required"
    PASSWORD_LOGIN = "password_login"


REASON_TEXT = {
    MfaTriggerReason.NEW_DEVICE: "We noticed you're signing in from a new device.",
    MfaTriggerReason.NEW_IP: "We noticed you're signing in from a new location.",
    MfaTriggerReason.NEW_COUNTRY: "We noticed you're signing in from a different country.",
    MfaTriggerReason.INACTIVITY: "It's been a while since your last sign in.",
    MfaTriggerReason.SENSITIVE_ACTION: "Additional verification is required for this action.",
    MfaTriggerReason.ALWAYS_REQUIRED: "Your account requires verification on each sign in.",
    MfaTriggerReason.PASSWORD_LOGIN: "Please verify your identity to complete sign in.",
}


def reason_text(reason: Optional[str]) -> str:
    try:
        return REASON_TEXT[MfaTriggerReason(reason)]
    except ValueError:
        return "Please verify your identity to continue."


@dataclass
class MfaSettings:
    user_id: str
    email_otp_enabled: bool = False
    totp_enabled: bool = False
    webauthn_enabled: bool = False
    preferred_method: str = "email"
    require_mfa_always: bool = False

    @property
    def has_any_mfa_enabled(self) -> bool:
        return self.email_otp_enabled or self.totp_enabled or self.webauthn_enabled


@dataclass
class MfaChallenge:
    id: Optional[str]
    user_id: str
    otp_hash: str
    expires_at: datetime
    max_attempts: int
    attempts: int = 0
    challenge_type: str = EMAIL_OTP
    session_id: Optional[str] = None
    trigger_reason: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    verified_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    def is_live(self, now: datetime) -> bool:
        return self.verified_at is None and now < self.expires_at and self.attempts < self.max_attempts

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


@dataclass(frozen=True)
class MfaDecision:
    required: bool
    reason: Optional[MfaTriggerReason] = None


def generate_otp(length: int = OTP_LENGTH) -> str:
    """每一位独立取自 CSPRNG，无取模偏差"""
    return "".join(str(secrets.randbelow(10)) for _ in range(length))


def hash_otp(code: str) -> str:
    return hashlib.sha256(code.encode("utf-8")).hexdigest()


def mask_email(email: Optional[str]) -> str:
    """保留本地部分首尾字符与域名首字符，其余以 * 替代"""
    if not email or "@" not in email:
        return "***@***.***"
    local, domain = email.split("@", 1)
    if len(local) > 2:
        masked_local = f"{local[0]}{'*' * (len(local) - 2)}{local[-1]}"
    else:
        masked_local = f"{local[:1] or '*'}*"
    domain_parts = domain.split(".")
    if len(domain_parts) > 1 and domain_parts[0]:
        masked_domain = f"{domain_parts[0][0]}***.**"
    else:
        masked_domain = f"{domain[:1] or '*'}***"
    return f"{masked_local}@{masked_domain}"

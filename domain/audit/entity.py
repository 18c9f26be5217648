"""
安全审计领域 - 事件类型、分类与详情脱敏

审计记录只追加不修改；``details`` 在写入前统一经过 ``sanitize_details``，
任何键名（不区分大小写）包含敏感片段的字段都会被丢弃。
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Optional, Union

from shared.redaction import is_sensitive_key


class SecurityEventType(str, Enum):
    # Authentication
    LOGIN_SUCCESS = "login_success"
    LOGIN_FAILED = "login_failed"
    LOGOUT = "logout"
    PASSWORD_RESET_REQUESTED = "password_reset_requested"
    PASSWORD_RESET_COMPLETED = "password_reset_completed"
    PASSWORD_CHANGED = "password_changed"

    # Session
    SESSION_CREATED = "session_created"
    SESSION_REFRESHED = "session_refreshed"
    SESSION_ENDED = "session_ended"
    SESSION_REVOKED = "session_revoked"
    SESSION_REFRESH_FAILED = "session_refresh_failed"
    ALL_SESSIONS_ENDED = "all_sessions_ended"
    TOKEN_REUSE_DETECTED = "token_reuse_detected"

    # MFA
    MFA_CHALLENGE_SENT = "mfa_challenge_sent"
    MFA_CHALLENGE_SUCCESS = "mfa_challenge_success"
    MFA_CHALLENGE_FAILED = "mfa_challenge_failed"
    MFA_ENABLED = "mfa_enabled"
    MFA_DISABLED = "mfa_disabled"
    MFA_SETTINGS_CHANGED = "mfa_settings_changed"

    # Account
    ACCOUNT_CREATED = "account_created"
    ACCOUNT_LOCKED = "account_locked"
    ACCOUNT_UNLOCKED = "account_unlocked"
    EMAIL_VERIFIED = "email_verified"
    EMAIL_CHANGED = "email_changed"

    # OAuth
    OAUTH_CONNECTED = "oauth_connected"
    OAUTH_DISCONNECTED = "oauth_disconnected"
    OAUTH_LOGIN = "oauth_login"

    # Device trust
    DEVICE_TRUSTED = "device_trusted"
    DEVICE_UNTRUSTED = "device_untrusted"
    DEVICE_REVOKED = "device_revoked"

    # Access
    SENSITIVE_ACTION = "sensitive_action"
    PERMISSION_DENIED = "permission_denied"
    IMPERSONATION_START = "impersonation_start"
    IMPERSONATION_END = "impersonation_end"


class SecurityEventCategory(str, Enum):
    AUTHENTICATION = "authentication"
    SESSION = "session"
    MFA = "mfa"
    ACCOUNT = "account"
    ACCESS = "access"
    OAUTH = "oauth"


def derive_category(event_type: Union[str, SecurityEventType]) -> SecurityEventCategory:
    """按事件类型前缀推导分类"""
    value = event_type.value if isinstance(event_type, SecurityEventType) else str(event_type)
    if value.startswith(("login", "logout", "password")):
        return SecurityEventCategory.AUTHENTICATION
    if value.startswith("session") or "token" in value:
        return SecurityEventCategory.SESSION
    if value.startswith("mfa"):
        return SecurityEventCategory.MFA
    if value.startswith(("account", "email")):
        return SecurityEventCategory.ACCOUNT
    if value.startswith("oauth"):
        return SecurityEventCategory.OAUTH
    return SecurityEventCategory.ACCESS


def sanitize_details(details: Any) -> dict:
    """递归丢弃敏感键；非映射输入返回空字典"""
    if not isinstance(details, Mapping):
        return {}
    return _sanitize_mapping(details)


def _sanitize_mapping(mapping: Mapping) -> dict:
    cleaned = {}
    for key, value in mapping.items():
        if is_sensitive_key(key):
            continue
        cleaned[str(key)] = _sanitize_value(value)
    return cleaned


def _sanitize_value(value: Any) -> Any:
    if isinstance(value, Mapping):
        return _sanitize_mapping(value)
    if isinstance(value, (list, tuple)):
        return [_sanitize_value(v) for v in value]
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value


@dataclass
class AuditEvent:
    """待写入的审计事件"""

    event_type: SecurityEventType
    success: bool
    category: Optional[SecurityEventCategory] = None
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    country_code: Optional[str] = None
    device_id: Optional[str] = None
    failure_reason: Optional[str] = None
    details: dict = field(default_factory=dict)

    def resolved_category(self) -> SecurityEventCategory:
        return self.category or derive_category(self.event_type)


@dataclass
class AuditLogEntry:
    """已持久化的审计记录"""

    id: int
    event_type: str
    event_category: str
    success: bool
    created_at: datetime
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    country_code: Optional[str] = None
    device_id: Optional[str] = None
    failure_reason: Optional[str] = None
    details: dict = field(default_factory=dict)


@dataclass(frozen=True)
class AuditQuery:
    user_id: Optional[str] = None
    categories: tuple[str, ...] = ()
    event_types: tuple[str, ...] = ()
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    success: Optional[bool] = None
    limit: int = 50
    offset: int = 0

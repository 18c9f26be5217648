"""
数据传输对象（DTO）- 应用层与调用方之间的数据传输
"""
from pydantic import BaseModel, Field, model_serializer, ConfigDict
from typing import Optional, Literal
from datetime import datetime, timezone


class DTOBase(BaseModel):
    """Base DTO: unify datetime serialization to UTC-Z for all subclasses."""

    @model_serializer(mode="wrap")
    def _serialize_model(self, handler):  # type: ignore[override]
        data = handler(self)

        def convert(value):
            if isinstance(value, datetime):
                ts = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
                s = ts.astimezone(timezone.utc).isoformat()
                return s.replace("+00:00", "Z")
            if isinstance(value, list):
                return [convert(v) for v in value]
            if isinstance(value, tuple):
                return tuple(convert(v) for v in value)
            if isinstance(value, dict):
                return {k: convert(v) for k, v in value.items()}
            return value

        return convert(data)


class UserSummaryDTO(DTOBase):
    """登录成功后返回的用户概要"""
    id: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: str
    effective_role: str

    model_config = ConfigDict(from_attributes=True)


class TokenPairDTO(DTOBase):
    """刷新成功后的新令牌对"""
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int = Field(..., description="访问令牌有效期（秒）")
    session_id: str
    refresh_expires_at: datetime


class AuthenticatedSessionDTO(TokenPairDTO):
    """已认证会话：令牌 + 会话元数据 + 用户概要"""
    status: Literal["authenticated"] = "authenticated"
    user: UserSummaryDTO
    mfa_verified: bool = False
    trusted_device: bool = False


class MfaRequiredDTO(DTOBase):
    """需要二次验证：尚未创建会话"""
    status: Literal["mfa_required"] = "mfa_required"
    challenge_id: str
    masked_email: str
    expires_at: datetime
    trigger_reason: Optional[str] = None
    email_sent: bool = True


class MfaChallengeDTO(DTOBase):
    """创建或重发验证码的结果"""
    challenge_id: str
    expires_at: datetime
    email_sent: bool
    masked_email: str
    trigger_reason: Optional[str] = None


class MfaVerificationDTO(DTOBase):
    user_id: str
    session_id: Optional[str] = None


class SessionSummaryDTO(DTOBase):
    """会话管理列表项"""
    id: str
    device_name: str
    ip_address: Optional[str] = None
    location: str
    last_activity_at: datetime
    created_at: Optional[datetime] = None
    is_trusted: bool = False
    is_current: bool = False


class SessionValidationDTO(DTOBase):
    valid: bool
    reason: Optional[str] = None
    revoked_reason: Optional[str] = None
    user_id: Optional[str] = None
    session_id: Optional[str] = None


class AccessTokenClaimsDTO(DTOBase):
    """访问令牌声明（sub/sid/role/eff/type/iat/exp）"""
    sub: str
    sid: str
    role: str
    eff: str
    type: Literal["access"] = "access"
    iat: int
    exp: int


class AuditLogDTO(DTOBase):
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
    details: dict = Field(default_factory=dict)

    model_config = ConfigDict(from_attributes=True)


class SecurityStatsDTO(DTOBase):
    """最近 N 小时的安全事件统计"""
    hours: int
    login_success: int = Field(0, serialization_alias="loginSuccess")
    login_failed: int = Field(0, serialization_alias="loginFailed")
    mfa_challenges: int = Field(0, serialization_alias="mfaChallenges")
    mfa_failed: int = Field(0, serialization_alias="mfaFailed")
    sessions_created: int = Field(0, serialization_alias="sessionsCreated")
    sessions_revoked: int = Field(0, serialization_alias="sessionsRevoked")
    suspicious_activity: int = Field(0, serialization_alias="suspiciousActivity")


class TrustedDeviceDTO(DTOBase):
    device_id: str
    device_name: Optional[str] = None
    ip_address: Optional[str] = None
    expires_at: datetime
    last_used_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class PasswordStrengthDTO(DTOBase):
    score: int
    label: str
    valid: bool
    errors: list[str] = Field(default_factory=list)

"""领域层业务异常定义，供领域与基础设施使用。

核心（core）层仅负责全局映射与异常处理，尽量避免领域层反向依赖核心层。

认证相关失败统一继承 ``AuthenticationFailure``，``reason`` 字段即对外的失败标签
（rate_limited / invalid_credentials / account_locked / ...）。
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional
from shared.codes import BusinessCode

# 三种“无法刷新”以及令牌无效，对外使用同一提示，避免泄露具体原因
REAUTH_MESSAGE = "Your session has ended. Please sign in again."
REAUTH_MESSAGE_KEY = "auth.session.reauthenticate"

# 用户不存在 / 密码错误 使用同一提示，避免账号枚举
INVALID_CREDENTIALS_MESSAGE = "Invalid email or password"


class BusinessException(Exception):
    """业务异常基类"""

    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
        message_key: Optional[str] = None,
        format_params: Optional[dict] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field
        self.message_key = message_key
        self.format_params = format_params
        super().__init__(self.message)


class UserNotFoundException(BusinessException):
    def __init__(self, user_id: Optional[str] = None):
        details = {"user_id": user_id} if user_id else None
        super().__init__(
            code=BusinessCode.USER_NOT_FOUND,
            message="User not found",
            error_type="UserNotFound",
            details=details,
            message_key="user.not_found",
        )


class UserAlreadyExistsException(BusinessException):
    def __init__(self, email: str):
        super().__init__(
            code=BusinessCode.USER_ALREADY_EXISTS,
            message=f"Email {email} already registered",
            error_type="UserAlreadyExists",
            details={"email": email},
            field="email",
            message_key="user.email.exists",
        )


class PasswordPolicyException(BusinessException):
    def __init__(self, errors: list[str]):
        super().__init__(
            code=BusinessCode.PASSWORD_POLICY_VIOLATION,
            message=errors[0] if errors else "Password does not meet requirements",
            error_type="PasswordPolicyViolation",
            details={"errors": errors},
            field="new_password",
            message_key="auth.password.policy",
        )


class NewPasswordSameAsOldException(BusinessException):
    def __init__(self):
        super().__init__(
            code=BusinessCode.BUSINESS_ERROR,
            message="New password must differ from old password",
            error_type="NewPasswordSameAsOld",
            field="new_password",
            message_key="auth.password.same_as_old",
        )


class SessionNotFoundException(BusinessException):
    def __init__(self, session_id: Optional[str] = None):
        super().__init__(
            code=BusinessCode.NOT_FOUND,
            message="Session not found",
            error_type="SessionNotFound",
            details={"session_id": session_id} if session_id else None,
            message_key="session.not_found",
        )


class SessionAccessForbiddenException(BusinessException):
    def __init__(self):
        super().__init__(
            code=BusinessCode.FORBIDDEN,
            message="You cannot manage this session",
            error_type="SessionAccessForbidden",
            message_key="session.forbidden",
        )



# ---------------------------------------------------------------------------
# 认证失败分类
# ---------------------------------------------------------------------------


class AuthenticationFailure(BusinessException):
    """认证流程失败的基类，``reason`` 为稳定的失败标签"""

    reason: str = "internal"


class RateLimitedException(AuthenticationFailure):
    reason = "rate_limited"

    def __init__(self, retry_after: int, scope: Optional[str] = None):
        self.retry_after = retry_after
        self.scope = scope
        super().__init__(
            code=BusinessCode.TOO_MANY_REQUESTS,
            message="Too many attempts. Please try again later.",
            error_type="RateLimited",
            details={"retry_after": retry_after},
            message_key="auth.rate_limited",
            format_params={"retry_after": retry_after},
        )


class InvalidCredentialsException(AuthenticationFailure):
    reason = "invalid_credentials"

    def __init__(self):
        super().__init__(
            code=BusinessCode.PASSWORD_ERROR,
            message=INVALID_CREDENTIALS_MESSAGE,
            error_type="InvalidCredentials",
            message_key="auth.credentials.invalid",
        )


class AccountLockedException(AuthenticationFailure):
    reason = "account_locked"

    def __init__(self, until: Optional[datetime], retry_after: Optional[int] = None):
        self.until = until
        self.retry_after = retry_after
        details = {}
        if until is not None:
            details["locked_until"] = until.isoformat()
        if retry_after is not None:
            details["retry_after"] = retry_after
        super().__init__(
            code=BusinessCode.ACCOUNT_LOCKED,
            message="Account temporarily locked due to too many failed attempts.",
            error_type="AccountLocked",
            details=details or None,
            message_key="auth.account.locked",
        )


class MfaInvalidException(AuthenticationFailure):
    reason = "mfa_invalid"

    def __init__(self, attempts_remaining: int):
        self.attempts_remaining = attempts_remaining
        super().__init__(
            code=BusinessCode.MFA_INVALID,
            message=f"Invalid code. {attempts_remaining} attempts remaining.",
            error_type="MfaInvalid",
            details={"attempts_remaining": attempts_remaining},
            message_key="auth.mfa.invalid",
            format_params={"attempts_remaining": attempts_remaining},
        )


class MfaExpiredException(AuthenticationFailure):
    """验证码已过期、已使用或挑战不存在"""

    reason = "mfa_expired"

    _MESSAGES = {
        "challenge_not_found": "Verification session expired. Please login again.",
        "already_verified": "Code already used. Please login again.",
        "expired": "Code expired. Please request a new one.",
    }

    def __init__(self, cause: str = "expired"):
        self.cause = cause
        super().__init__(
            code=BusinessCode.MFA_EXPIRED,
            message=self._MESSAGES.get(cause, "Verification failed"),
            error_type="MfaExpired",
            details={"cause": cause},
            message_key=f"auth.mfa.{cause}",
        )


class MfaExceededException(AuthenticationFailure):
    reason = "mfa_exceeded"

    def __init__(self):
        super().__init__(
            code=BusinessCode.MFA_EXCEEDED,
            message="Too many attempts. Please login again.",
            error_type="MfaExceeded",
            message_key="auth.mfa.exceeded",
        )


class SessionRefreshFailure(AuthenticationFailure):
    """刷新失败的公共基类

    对外的 code、error_type 与提示完全一致，调用方无法区分具体原因；
    ``reason`` 只进入审计与日志。
    """

    def __init__(self):
        super().__init__(
            code=BusinessCode.TOKEN_INVALID,
            message=REAUTH_MESSAGE,
            error_type="ReauthenticationRequired",
            message_key=REAUTH_MESSAGE_KEY,
        )


class InvalidTokenException(SessionRefreshFailure):
    reason = "invalid_token"

    def __init__(self, reuse_detected: bool = False):
        self.reuse_detected = reuse_detected
        super().__init__()


class SessionRevokedException(SessionRefreshFailure):
    reason = "session_revoked"

    def __init__(self, revoked_reason: Optional[str] = None):
        self.revoked_reason = revoked_reason
        super().__init__()


class RefreshExpiredException(SessionRefreshFailure):
    reason = "refresh_expired"


class SessionExpiredException(SessionRefreshFailure):
    reason = "session_expired"


class AuthInternalException(AuthenticationFailure):
    reason = "internal"

    def __init__(self, operation: str):
        super().__init__(
            code=BusinessCode.SYSTEM_ERROR,
            message="Unable to complete the request right now",
            error_type="AuthInternal",
            details={"operation": operation},
            message_key="auth.internal",
        )

"""
会话编排服务 - 登录 / 二次验证 / 刷新 / 登出 / 敏感操作

把限流、密码校验、设备信任、MFA 决策、会话签发与审计组合成对外的认证流程。
失败一律以 ``AuthenticationFailure`` 子类抛出，``reason`` 即对外的失败标签；
需要二次验证不是失败，返回 ``MfaRequiredDTO``。
"""
import asyncio
from datetime import timedelta
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError

from application.dto import (
    AuthenticatedSessionDTO,
    MfaRequiredDTO,
    SessionSummaryDTO,
    SessionValidationDTO,
    UserSummaryDTO,
)
from application.services.audit_service import AuditService
from application.services.device_trust_service import DeviceTrustService
from application.services.mfa_service import MfaService
from application.services.rate_limit_service import RateLimitService
from application.services.token_service import IssuedSession, TokenService
from core.config import SecuritySettings, settings
from core.logging_config import get_logger
from domain.audit.entity import SecurityEventType
from domain.common.context import RequestContext
from domain.common.exceptions import (
    AccountLockedException,
    AuthInternalException,
    InvalidCredentialsException,
    MfaExceededException,
    MfaExpiredException,
    MfaInvalidException,
    RateLimitedException,
    SessionAccessForbiddenException,
    SessionNotFoundException,
    SessionRefreshFailure,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.device.entity import DeviceInfo, UNKNOWN_DEVICE
from domain.rate_limit.entity import RateLimitScope, seconds_until
from domain.user.entity import User
from domain.user.service import PasswordService
from shared.clock import Clock, utc_now

logger = get_logger(__name__)

LOGIN_SCOPES = (RateLimitScope.LOGIN_IP, RateLimitScope.LOGIN_USER)


class SessionService:
    """认证流程编排"""

    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        *,
        audit: AuditService,
        rate_limits: RateLimitService,
        passwords: PasswordService,
        tokens: TokenService,
        device_trust: DeviceTrustService,
        mfa: MfaService,
        config: Optional[SecuritySettings] = None,
        clock: Clock = utc_now,
    ):
        self._uow_factory = uow_factory
        self._audit = audit
        self._rate_limits = rate_limits
        self._passwords = passwords
        self._tokens = tokens
        self._device_trust = device_trust
        self._mfa = mfa
        self._config = config or settings.security
        self._clock = clock

    # ------------------------------------------------------------------
    # 登录
    # ------------------------------------------------------------------

    async def login(
        self,
        email: str,
        password: str,
        device: DeviceInfo,
        context: Optional[RequestContext] = None,
        *,
        trust_device: bool = False,
    ):
        """邮箱密码登录，返回 AuthenticatedSessionDTO 或 MfaRequiredDTO"""
        context = context or RequestContext()
        try:
            return await self._login(email, password, device, context, trust_device)
        except SQLAlchemyError as exc:
            await self._internal_failure(SecurityEventType.LOGIN_FAILED, "login", exc, context)
            raise AuthInternalException("login") from exc

    async def _login(
        self,
        email: str,
        password: str,
        device: DeviceInfo,
        context: RequestContext,
        trust_device: bool,
    ):
        email_key = (email or "").strip().lower()
        user = await self._get_user_by_email(email_key)

        # 1. 账户锁定优先于一切凭据检查
        if user is not None:
            await self._ensure_not_locked(user, context, SecurityEventType.ACCOUNT_LOCKED)

        # 2. IP 与账号两个维度的限流
        identifiers = {RateLimitScope.LOGIN_IP: context.ip_address, RateLimitScope.LOGIN_USER: email_key}
        for scope in LOGIN_SCOPES:
            decision = await self._rate_limits.check(scope, identifiers[scope])
            if not decision.allowed:
                await self._audit.log(
                    SecurityEventType.LOGIN_FAILED,
                    success=False,
                    user_id=user.id if user else None,
                    device_id=device.device_id,
                    context=context,
                    failure_reason="rate_limited",
                    details={"scope": scope.value, "retryAfter": decision.retry_after},
                )
                raise RateLimitedException(decision.retry_after or 0, scope.value)

        # 3. 用户不存在与密码错误对外不可区分
        if user is None:
            await self._record_login_failure(identifiers)
            await self._audit.log(
                SecurityEventType.LOGIN_FAILED,
                success=False,
                device_id=device.device_id,
                context=context,
                failure_reason="user_not_found",
                details={"email": email_key},
            )
            raise InvalidCredentialsException()

        verification = await asyncio.to_thread(
            self._passwords.verify_password, password, user.password_hash
        )
        if not verification.valid:
            await self._record_login_failure(identifiers)
            lock = await self._rate_limits.record_failed_login(user.id)
            await self._audit.log(
                SecurityEventType.LOGIN_FAILED,
                success=False,
                user_id=user.id,
                device_id=device.device_id,
                context=context,
                failure_reason="invalid_password",
                details={"accountLocked": lock.locked},
            )
            raise InvalidCredentialsException()

        if verification.needs_rehash:
            await self._rehash_password(user, password)

        # 4. 风险评估
        decision = await self._mfa.is_mfa_required(
            user, "local", device, context.ip_address, context.country_code
        )
        if decision.required:
            return await self._start_mfa(user, decision.reason.value, context)

        # 5. 直接建立会话
        return await self._establish_session(
            user, device, context, trust_device=trust_device, method="password"
        )

    async def login_federated(
        self,
        user_id: str,
        provider: str,
        device: DeviceInfo,
        context: Optional[RequestContext] = None,
        *,
        trust_device: bool = False,
    ):
        """OAuth 回调确认身份后调用；默认信任身份提供方的 MFA"""
        context = context or RequestContext()
        try:
            user = await self._get_user(user_id)
            if user is None:
                raise InvalidCredentialsException()
            await self._ensure_not_locked(user, context, SecurityEventType.ACCOUNT_LOCKED)

            decision = await self._mfa.is_mfa_required(
                user, provider, device, context.ip_address, context.country_code
            )
            if decision.required:
                return await self._start_mfa(user, decision.reason.value, context)
            return await self._establish_session(
                user, device, context, trust_device=trust_device, method=provider, federated=True
            )
        except SQLAlchemyError as exc:
            await self._internal_failure(SecurityEventType.OAUTH_LOGIN, "login_federated", exc, context)
            raise AuthInternalException("login_federated") from exc

    async def complete_mfa(
        self,
        challenge_id: str,
        code: str,
        device: DeviceInfo,
        context: Optional[RequestContext] = None,
        *,
        trust_device: bool = False,
    ) -> AuthenticatedSessionDTO:
        """校验验证码并完成登录（与免 MFA 分支相同，包括可选的设备信任）"""
        context = context or RequestContext()
        try:
            challenge = await self._mfa.get_challenge(challenge_id)
            limit_key = challenge.user_id if challenge else None

            if limit_key:
                decision = await self._rate_limits.check(RateLimitScope.MFA_USER, limit_key)
                if not decision.allowed:
                    raise RateLimitedException(decision.retry_after or 0, RateLimitScope.MFA_USER.value)

            try:
                verified = await self._mfa.verify_otp(challenge_id, code, context)
            except (MfaInvalidException, MfaExceededException):
                if limit_key:
                    await self._rate_limits.record(RateLimitScope.MFA_USER, limit_key)
                raise

            user = await self._get_user(verified.user_id)
            if user is None:
                raise MfaExpiredException("challenge_not_found")
            await self._ensure_not_locked(user, context, SecurityEventType.ACCOUNT_LOCKED)
            await self._rate_limits.clear(RateLimitScope.MFA_USER, user.id)

            return await self._establish_session(
                user, device, context, trust_device=trust_device, method="email_otp", mfa_verified=True
            )
        except SQLAlchemyError as exc:
            await self._internal_failure(SecurityEventType.MFA_CHALLENGE_FAILED, "complete_mfa", exc, context)
            raise AuthInternalException("complete_mfa") from exc

    async def resend_mfa_code(self, challenge_id: str, context: Optional[RequestContext] = None):
        challenge = await self._mfa.get_challenge(challenge_id)
        user = await self._get_user(challenge.user_id) if challenge else None
        if user is None:
            raise MfaExpiredException("challenge_not_found")
        return await self._mfa.resend_otp(challenge_id, user.email, context)

    # ------------------------------------------------------------------
    # 刷新与登出
    # ------------------------------------------------------------------

    async def refresh_authenticated_session(
        self, refresh_token: str, context: Optional[RequestContext] = None
    ) -> AuthenticatedSessionDTO:
        """刷新失败统一审计 session_refresh_failed，对外提示相同"""
        context = context or RequestContext()
        try:
            issued = await self._tokens.refresh(refresh_token, context)
        except SessionRefreshFailure as failure:
            details = {"reason": failure.reason}
            revoked_reason = getattr(failure, "revoked_reason", None)
            if revoked_reason:
                details["revokedReason"] = revoked_reason
            await self._audit.log(
                SecurityEventType.SESSION_REFRESH_FAILED,
                success=False,
                context=context,
                failure_reason=failure.reason,
                details=details,
            )
            raise
        except SQLAlchemyError as exc:
            await self._internal_failure(
                SecurityEventType.SESSION_REFRESH_FAILED, "refresh", exc, context
            )
            raise AuthInternalException("refresh") from exc

        # 轮转已提交，之后再写审计
        await self._audit.log(
            SecurityEventType.SESSION_REFRESHED,
            success=True,
            user_id=issued.user.id,
            session_id=issued.session.id,
            device_id=issued.session.device_id,
            context=context,
        )
        return self._to_authenticated(issued)

    async def end_session(
        self, session_id: str, user_id: Optional[str] = None, context: Optional[RequestContext] = None
    ) -> bool:
        """登出当前会话"""
        success = await self._tokens.revoke_session(session_id, "logout")
        await self._audit.log(
            SecurityEventType.SESSION_ENDED,
            success=success,
            user_id=user_id,
            session_id=session_id,
            context=context,
            details={"reason": "user_logout"},
        )
        return success

    async def end_all_sessions(
        self,
        user_id: str,
        context: Optional[RequestContext] = None,
        except_session_id: Optional[str] = None,
        reason: str = "user_logout_all",
    ) -> int:
        """登出所有设备（可保留当前会话）"""
        count = await self._tokens.revoke_all_user_sessions(user_id, reason, except_session_id)
        await self._audit.log(
            SecurityEventType.ALL_SESSIONS_ENDED,
            success=True,
            user_id=user_id,
            context=context,
            details={
                "reason": reason,
                "sessionsRevoked": count,
                "exceptCurrentSession": bool(except_session_id),
            },
        )
        return count

    # ------------------------------------------------------------------
    # 会话管理
    # ------------------------------------------------------------------

    async def list_user_sessions(
        self, user_id: str, current_session_id: Optional[str] = None
    ) -> list[SessionSummaryDTO]:
        sessions = await self._tokens.get_active_sessions(user_id)
        return [
            SessionSummaryDTO(
                id=s.id,
                device_name=s.device_name or UNKNOWN_DEVICE,
                ip_address=s.ip_address,
                location=s.location,
                last_activity_at=s.last_activity_at,
                created_at=s.created_at,
                is_trusted=s.is_trusted,
                is_current=s.id == current_session_id,
            )
            for s in sessions
        ]

    async def revoke_user_session(
        self,
        user_id: str,
        session_id: str,
        context: Optional[RequestContext] = None,
        admin_user_id: Optional[str] = None,
    ) -> bool:
        """撤销指定会话；非管理员只能撤销自己的会话"""
        session = await self._tokens.get_session(session_id)
        if session is None:
            raise SessionNotFoundException(session_id)
        if session.user_id != user_id and not admin_user_id:
            raise SessionAccessForbiddenException()

        success = await self._tokens.revoke_session(
            session_id, "admin_revoke" if admin_user_id else "user_revoke"
        )
        await self._audit.log(
            SecurityEventType.SESSION_REVOKED,
            success=success,
            user_id=session.user_id,
            session_id=session_id,
            context=context,
            details={"revokedBy": admin_user_id or user_id, "isAdminAction": bool(admin_user_id)},
        )
        return success

    async def validate_session(self, session_id: str) -> SessionValidationDTO:
        """每个请求调用：不缓存，撤销在下一个请求即生效"""
        session = await self._tokens.get_session(session_id)
        if session is None:
            return SessionValidationDTO(valid=False, reason="not_found", session_id=session_id)
        reason = session.unusable_reason(self._clock())
        if reason is not None:
            return SessionValidationDTO(
                valid=False,
                reason=reason,
                revoked_reason=session.revoked_reason,
                user_id=session.user_id,
                session_id=session.id,
            )
        return SessionValidationDTO(valid=True, user_id=session.user_id, session_id=session.id)

    async def needs_reauthentication(self, session_id: str, sensitive: bool = False) -> bool:
        """敏感操作要求最近 N 分钟内有活动"""
        session = await self._tokens.get_session(session_id)
        if session is None:
            return True
        if not sensitive:
            return False
        window = timedelta(minutes=self._config.sensitive_action_window_minutes)
        return session.last_activity_at < self._clock() - window

    async def on_password_change(
        self, user_id: str, current_session_id: Optional[str] = None, context: Optional[RequestContext] = None
    ) -> int:
        """撤销除当前会话外的所有会话，并记录密码修改时间"""
        count = await self.end_all_sessions(
            user_id, context, except_session_id=current_session_id, reason="password_change"
        )
        async with self._uow_factory() as uow:
            await uow.user_repository.stamp_password_changed(user_id, self._clock())
        return count

    async def on_mfa_change(
        self, user_id: str, context: Optional[RequestContext] = None, details: Optional[dict] = None
    ) -> int:
        await self._audit.log(
            SecurityEventType.MFA_SETTINGS_CHANGED,
            success=True,
            user_id=user_id,
            context=context,
            details=details or {},
        )
        if self._config.revoke_sessions_on_mfa_change:
            return await self.end_all_sessions(user_id, context, reason="mfa_change")
        return 0

    # ------------------------------------------------------------------
    # 内部
    # ------------------------------------------------------------------

    async def _get_user(self, user_id: str) -> Optional[User]:
        async with self._uow_factory(readonly=True) as uow:
            return await uow.user_repository.get_by_id(user_id)

    async def _get_user_by_email(self, email: str) -> Optional[User]:
        if not email:
            return None
        async with self._uow_factory(readonly=True) as uow:
            return await uow.user_repository.get_by_email(email)

    async def _ensure_not_locked(
        self, user: User, context: RequestContext, event_type: SecurityEventType
    ) -> None:
        now = self._clock()
        if not user.is_locked(now):
            return
        await self._audit.log(
            event_type,
            success=False,
            user_id=user.id,
            context=context,
            failure_reason="account_locked",
            details={"lockedUntil": user.locked_until},
        )
        raise AccountLockedException(user.locked_until, seconds_until(now, user.locked_until))

    async def _record_login_failure(self, identifiers: dict) -> None:
        for scope in LOGIN_SCOPES:
            await self._rate_limits.record(scope, identifiers[scope])

    async def _rehash_password(self, user: User, password: str) -> None:
        """登录时升级哈希；失败不影响本次登录"""
        try:
            new_hash = await asyncio.to_thread(self._passwords.hash_password, password)
            async with self._uow_factory() as uow:
                await uow.user_repository.update_password_hash(user.id, new_hash)
        except SQLAlchemyError as exc:
            logger.warning("password_rehash_failed", user_id=user.id, error=str(exc))
            return
        user.password_hash = new_hash
        logger.info("password_rehashed", user_id=user.id)

    async def _start_mfa(self, user: User, reason: str, context: RequestContext) -> MfaRequiredDTO:
        challenge = await self._mfa.create_email_otp_challenge(
            user.id, user.email, context, trigger_reason=reason
        )
        logger.info("mfa_required", user_id=user.id, reason=reason, email_sent=challenge.email_sent)
        return MfaRequiredDTO(
            challenge_id=challenge.challenge_id,
            masked_email=challenge.masked_email,
            expires_at=challenge.expires_at,
            trigger_reason=reason,
            email_sent=challenge.email_sent,
        )

    async def _establish_session(
        self,
        user: User,
        device: DeviceInfo,
        context: RequestContext,
        *,
        trust_device: bool,
        method: str,
        mfa_verified: bool = False,
        federated: bool = False,
    ) -> AuthenticatedSessionDTO:
        issued = await self._tokens.create_session(user, device, context, trust=trust_device)

        async with self._uow_factory() as uow:
            await uow.user_repository.record_login(user.id, self._clock())

        await self._rate_limits.clear(RateLimitScope.LOGIN_IP, context.ip_address)
        await self._rate_limits.clear(RateLimitScope.LOGIN_USER, user.email)

        if trust_device:
            await self._device_trust.trust_device(user.id, device, context)

        await self._audit.log(
            SecurityEventType.OAUTH_LOGIN if federated else SecurityEventType.LOGIN_SUCCESS,
            success=True,
            user_id=user.id,
            session_id=issued.session.id,
            device_id=device.device_id,
            context=context,
            details={"method": method, "mfaVerified": mfa_verified},
        )
        await self._audit.log(
            SecurityEventType.SESSION_CREATED,
            success=True,
            user_id=user.id,
            session_id=issued.session.id,
            device_id=device.device_id,
            context=context,
            details={
                "deviceName": device.device_name,
                "mfaVerified": mfa_verified,
                "trustDevice": trust_device,
            },
        )
        return self._to_authenticated(issued, mfa_verified=mfa_verified)

    def _to_authenticated(self, issued: IssuedSession, *, mfa_verified: bool = False) -> AuthenticatedSessionDTO:
        user = issued.user
        return AuthenticatedSessionDTO(
            access_token=issued.access_token,
            refresh_token=issued.refresh_token,
            expires_in=self._tokens.access_token_ttl,
            session_id=issued.session.id,
            refresh_expires_at=issued.session.refresh_expires_at,
            user=UserSummaryDTO(
                id=user.id,
                email=user.email,
                first_name=user.first_name,
                last_name=user.last_name,
                role=user.role,
                effective_role=issued.effective_role,
            ),
            mfa_verified=mfa_verified,
            trusted_device=issued.session.is_trusted,
        )

    async def _internal_failure(
        self, event_type: SecurityEventType, operation: str, exc: Exception, context: RequestContext
    ) -> None:
        logger.error("auth_internal_error", operation=operation, error=str(exc), exc_info=True)
        await self._audit.log(
            event_type,
            success=False,
            context=context,
            failure_reason="internal",
            details={"operation": operation, "error": type(exc).__name__},
        )

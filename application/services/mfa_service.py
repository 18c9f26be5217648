"""
MFA 服务 - 条件触发的邮件验证码

决策顺序（密码登录）：强制 -> 受信任设备放行 -> 新设备 -> 新国家 -> 长期未活动 -> 已启用 MFA。
联合登录（google / microsoft）信任身份提供方，只有强制 MFA 时才要求验证。
"""
from datetime import timedelta
from typing import Callable, Optional
import hmac

from application.dto import MfaChallengeDTO, MfaVerificationDTO
from application.ports.email import EmailDeliveryError, EmailMessage, EmailSender
from application.services.audit_service import AuditService
from application.services.device_trust_service import DeviceTrustService
from core.config import SecuritySettings, settings
from core.logging_config import get_logger
from domain.audit.entity import SecurityEventType
from domain.common.context import RequestContext
from domain.common.exceptions import MfaExceededException, MfaExpiredException, MfaInvalidException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.device.entity import DeviceInfo
from domain.mfa.entity import (
    EMAIL_OTP,
    MfaChallenge,
    MfaDecision,
    MfaSettings,
    MfaTriggerReason,
    generate_otp,
    hash_otp,
    mask_email,
    reason_text,
)
from domain.user.entity import User
from shared.clock import Clock, utc_now

logger = get_logger(__name__)

OTP_EMAIL_SUBJECT = "Your Anchor verification code"
_IGNORE_NOTICE = (
    "If you didn't request this code, please ignore this email or contact support "
    "if you're concerned about your account security."
)


def build_otp_email(to: str, code: str, trigger_reason: Optional[str], expiry_minutes: int) -> EmailMessage:
    """验证码邮件（纯文本 + HTML）"""
    reason = reason_text(trigger_reason)
    text = (
        f"Your verification code is: {code}\n\n"
        f"This code expires in {expiry_minutes} minutes.\n\n"
        f"{reason}\n\n"
        f"{_IGNORE_NOTICE}"
    )
    html = f"""
<div style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; max-width: 480px; margin: 0 auto; padding: 20px;">
  <h2 style="color: #1a1a1a; margin-bottom: 24px;">Verification Code</h2>
  <p style="color: #4a4a4a; font-size: 16px; margin-bottom: 24px;">Your verification code is:</p>
  <div style="background: #f5f5f5; border-radius: 8px; padding: 24px; text-align: center; margin-bottom: 24px;">
    <span style="font-family: monospace; font-size: 32px; font-weight: bold; letter-spacing: 4px; color: #1a1a1a;">{code}</span>
  </div>
  <p style="color: #666; font-size: 14px; margin-bottom: 16px;">This code expires in {expiry_minutes} minutes.</p>
  <p style="color: #666; font-size: 14px; margin-bottom: 24px;">{reason}</p>
  <p style="color: #999; font-size: 12px;">{_IGNORE_NOTICE}</p>
</div>
"""
    return EmailMessage(to=to, subject=OTP_EMAIL_SUBJECT, text=text, html=html)


class MfaService:

    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        audit: AuditService,
        device_trust: DeviceTrustService,
        email_sender: EmailSender,
        config: Optional[SecuritySettings] = None,
        clock: Clock = utc_now,
    ):
        self._uow_factory = uow_factory
        self._audit = audit
        self._device_trust = device_trust
        self._email_sender = email_sender
        self._config = config or settings.security
        self._clock = clock

    # ------------------------------------------------------------------
    # 设置
    # ------------------------------------------------------------------

    async def get_settings(self, user_id: str) -> MfaSettings:
        """没有记录时返回全部关闭的默认设置"""
        async with self._uow_factory(readonly=True) as uow:
            found = await uow.mfa_settings_repository.get(user_id)
        return found or MfaSettings(user_id=user_id)

    async def enable_email_otp(self, user_id: str, context: Optional[RequestContext] = None) -> MfaSettings:
        return await self._set_email_otp(user_id, True, context)

    async def disable_email_otp(self, user_id: str, context: Optional[RequestContext] = None) -> MfaSettings:
        return await self._set_email_otp(user_id, False, context)

    async def _set_email_otp(
        self, user_id: str, enabled: bool, context: Optional[RequestContext]
    ) -> MfaSettings:
        async with self._uow_factory() as uow:
            result = await uow.mfa_settings_repository.set_email_otp(user_id, enabled, self._clock())
        await self._audit.log(
            SecurityEventType.MFA_ENABLED if enabled else SecurityEventType.MFA_DISABLED,
            success=True,
            user_id=user_id,
            context=context,
            details={"method": EMAIL_OTP},
        )
        return result

    # ------------------------------------------------------------------
    # 决策
    # ------------------------------------------------------------------

    async def is_mfa_required(
        self,
        user: User,
        provider: Optional[str] = "local",
        device: Optional[DeviceInfo] = None,
        ip_address: Optional[str] = None,
        country_code: Optional[str] = None,
    ) -> MfaDecision:
        mfa_settings = await self.get_settings(user.id)

        if provider and provider.lower() in self._config.federated_providers:
            if mfa_settings.require_mfa_always:
                return MfaDecision(required=True, reason=MfaTriggerReason.ALWAYS_REQUIRED)
            return MfaDecision(required=False)

        if mfa_settings.require_mfa_always:
            return MfaDecision(required=True, reason=MfaTriggerReason.ALWAYS_REQUIRED)

        if device is not None and device.device_id:
            trust = await self._device_trust.is_trusted(user.id, device.device_id, device.fingerprint)
            if trust.trusted and not trust.fingerprint_changed:
                return MfaDecision(required=False)
            if await self._device_trust.is_new_device(user.id, device.device_id):
                return MfaDecision(required=True, reason=MfaTriggerReason.NEW_DEVICE)

        if country_code and await self._device_trust.has_location_changed(user.id, country_code):
            return MfaDecision(required=True, reason=MfaTriggerReason.NEW_COUNTRY)

        if await self._device_trust.has_been_inactive(user.id, self._config.mfa_inactivity_days):
            return MfaDecision(required=True, reason=MfaTriggerReason.INACTIVITY)

        if mfa_settings.has_any_mfa_enabled:
            return MfaDecision(required=True, reason=MfaTriggerReason.PASSWORD_LOGIN)

        return MfaDecision(required=False)

    # ------------------------------------------------------------------
    # 挑战
    # ------------------------------------------------------------------

    async def create_email_otp_challenge(
        self,
        user_id: str,
        email: str,
        context: Optional[RequestContext] = None,
        *,
        trigger_reason: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> MfaChallengeDTO:
        """作废旧挑战并创建新挑战（同一事务），然后发送验证码邮件"""
        context = context or RequestContext()
        reason = getattr(trigger_reason, "value", trigger_reason)
        now = self._clock()
        code = generate_otp()

        async with self._uow_factory() as uow:
            await uow.mfa_challenge_repository.expire_pending_for_user(user_id, now)
            challenge = await uow.mfa_challenge_repository.create(
                MfaChallenge(
                    id=None,
                    user_id=user_id,
                    session_id=session_id,
                    otp_hash=hash_otp(code),
                    expires_at=now + timedelta(minutes=self._config.mfa_otp_expiry_minutes),
                    max_attempts=self._config.mfa_max_attempts,
                    trigger_reason=reason,
                    ip_address=context.ip_address,
                    user_agent=context.user_agent,
                    created_at=now,
                )
            )

        email_sent = await self._send_otp_email(email, code, reason)
        await self._audit.log(
            SecurityEventType.MFA_CHALLENGE_SENT,
            success=email_sent,
            user_id=user_id,
            session_id=session_id,
            context=context,
            details={"challengeType": EMAIL_OTP, "triggerReason": reason},
        )
        return MfaChallengeDTO(
            challenge_id=challenge.id,
            expires_at=challenge.expires_at,
            email_sent=email_sent,
            masked_email=mask_email(email),
            trigger_reason=reason,
        )

    async def verify_otp(
        self, challenge_id: str, code: str, context: Optional[RequestContext] = None
    ) -> MfaVerificationDTO:
        """
        校验验证码

        - 挑战不存在 / 已验证 / 已过期 -> MfaExpiredException
        - 次数已用尽 -> MfaExceededException
        - 先原子递增 attempts，再做常量时间比较；不匹配 -> MfaInvalidException(剩余次数)
        """
        context = context or RequestContext()
        now = self._clock()
        failure = None
        challenge = None

        async with self._uow_factory() as uow:
            challenge = await uow.mfa_challenge_repository.get_by_id(challenge_id, for_update=True)
            if challenge is None or challenge.challenge_type != EMAIL_OTP:
                failure = MfaExpiredException("challenge_not_found")
            elif challenge.verified_at is not None:
                failure = MfaExpiredException("already_verified")
            elif challenge.is_expired(now):
                failure = MfaExpiredException("expired")
            elif challenge.attempts >= challenge.max_attempts:
                failure = MfaExceededException()
            else:
                await uow.mfa_challenge_repository.increment_attempts(challenge.id)
                if hmac.compare_digest(hash_otp(code or ""), challenge.otp_hash):
                    await uow.mfa_challenge_repository.mark_verified(challenge.id, now)
                else:
                    failure = MfaInvalidException(challenge.max_attempts - challenge.attempts - 1)

        if isinstance(failure, MfaExpiredException):
            raise failure
        await self._audit.log(
            SecurityEventType.MFA_CHALLENGE_FAILED if failure else SecurityEventType.MFA_CHALLENGE_SUCCESS,
            success=failure is None,
            user_id=challenge.user_id,
            context=context,
            failure_reason=(
                "max_attempts_exceeded" if isinstance(failure, MfaExceededException)
                else "invalid_code" if failure else None
            ),
            details={"challengeType": EMAIL_OTP, "triggerReason": challenge.trigger_reason},
        )
        if failure is not None:
            raise failure
        return MfaVerificationDTO(user_id=challenge.user_id, session_id=challenge.session_id)

    async def resend_otp(
        self, challenge_id: str, email: str, context: Optional[RequestContext] = None
    ) -> MfaChallengeDTO:
        """仅对仍然有效（未验证、未过期、次数未耗尽）的挑战重发：换新验证码、attempts 归零、保持原过期时间"""
        context = context or RequestContext()
        now = self._clock()
        code = generate_otp()

        async with self._uow_factory() as uow:
            challenge = await uow.mfa_challenge_repository.get_by_id(challenge_id, for_update=True)
            live = challenge is not None and challenge.is_live(now)
            if live:
                await uow.mfa_challenge_repository.replace_code(challenge.id, hash_otp(code))

        if not live:
            # 次数耗尽的挑战不可复活，只能重新登录
            if challenge is not None and challenge.attempts >= challenge.max_attempts:
                raise MfaExceededException()
            raise MfaExpiredException("challenge_not_found")

        email_sent = await self._send_otp_email(email, code, challenge.trigger_reason)
        await self._audit.log(
            SecurityEventType.MFA_CHALLENGE_SENT,
            success=email_sent,
            user_id=challenge.user_id,
            context=context,
            details={"challengeType": EMAIL_OTP, "isResend": True},
        )
        return MfaChallengeDTO(
            challenge_id=challenge.id,
            expires_at=challenge.expires_at,
            email_sent=email_sent,
            masked_email=mask_email(email),
            trigger_reason=challenge.trigger_reason,
        )

    async def get_challenge(self, challenge_id: str) -> Optional[MfaChallenge]:
        async with self._uow_factory(readonly=True) as uow:
            return await uow.mfa_challenge_repository.get_by_id(challenge_id)

    async def count_live_challenges(self, user_id: str) -> int:
        async with self._uow_factory(readonly=True) as uow:
            return await uow.mfa_challenge_repository.count_live_for_user(user_id, self._clock())

    async def cleanup_expired_challenges(self) -> int:
        before = self._clock() - timedelta(hours=self._config.mfa_challenge_retention_hours)
        async with self._uow_factory() as uow:
            count = await uow.mfa_challenge_repository.delete_expired_before(before)
        logger.info("mfa_challenges_cleaned", count=count)
        return count

    async def _send_otp_email(self, email: str, code: str, trigger_reason: Optional[str]) -> bool:
        """发送结果只影响返回值，不回滚挑战"""
        if not self._email_sender.is_configured():
            logger.warning("mfa_email_not_configured", email=mask_email(email))
            return False
        message = build_otp_email(email, code, trigger_reason, self._config.mfa_otp_expiry_minutes)
        try:
            await self._email_sender.send(message)
        except EmailDeliveryError as exc:
            logger.error("mfa_email_send_failed", email=mask_email(email), error=str(exc))
            return False
        return True

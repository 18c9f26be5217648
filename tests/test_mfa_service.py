import re
from datetime import timedelta

import pytest
from sqlalchemy import update

from domain.common.exceptions import MfaExceededException, MfaExpiredException, MfaInvalidException
from domain.mfa.entity import MfaTriggerReason, hash_otp, mask_email
from infrastructure.models import MfaSettingsModel

pytestmark = pytest.mark.asyncio


async def _challenge(core, user, context, reason="new_device"):
    return await core.mfa.create_email_otp_challenge(user.id, user.email, context, trigger_reason=reason)


async def test_challenge_sends_code(core, make_user, context, email_sender, clock):
    user = await make_user()
    challenge = await _challenge(core, user, context)

    assert challenge.email_sent
    assert challenge.masked_email == "a***e@e***.**"
    assert challenge.expires_at == clock() + timedelta(minutes=10)

    [message] = email_sender.sent
    assert message.to == "alice@example.com"
    assert message.subject == "Your Anchor verification code"
    assert "new device" in message.text
    code = email_sender.last_code()
    assert re.fullmatch(r"\d{6}", code)

    stored = await core.mfa.get_challenge(challenge.challenge_id)
    assert stored.attempts == 0
    assert stored.otp_hash == hash_otp(code)
    assert code not in stored.otp_hash


async def test_one_live_challenge_per_user(core, make_user, context):
    user = await make_user()
    first = await _challenge(core, user, context)
    second = await _challenge(core, user, context)

    assert await core.mfa.count_live_challenges(user.id) == 1
    with pytest.raises(MfaExpiredException) as exc_info:
        await core.mfa.verify_otp(first.challenge_id, "000000", context)
    assert exc_info.value.cause == "expired"
    assert (await core.mfa.get_challenge(second.challenge_id)).attempts == 0


async def test_verify_success_is_single_use(core, make_user, context, email_sender):
    user = await make_user()
    challenge = await _challenge(core, user, context)
    code = email_sender.last_code()

    result = await core.mfa.verify_otp(challenge.challenge_id, code, context)
    assert result.user_id == user.id

    with pytest.raises(MfaExpiredException) as exc_info:
        await core.mfa.verify_otp(challenge.challenge_id, code, context)
    assert exc_info.value.cause == "already_verified"

    [event] = await core.audit.get_user_audit_logs(user.id, event_type="mfa_challenge_success")
    assert event.details == {"challengeType": "email_otp", "triggerReason": "new_device"}


async def test_wrong_codes_exhaust_attempts(core, make_user, context, email_sender):
    user = await make_user()
    challenge = await _challenge(core, user, context)
    code = email_sender.last_code()
    wrong = "000000" if code != "000000" else "111111"

    for remaining in (4, 3, 2, 1, 0):
        with pytest.raises(MfaInvalidException) as exc_info:
            await core.mfa.verify_otp(challenge.challenge_id, wrong, context)
        assert exc_info.value.attempts_remaining == remaining

    # 次数用尽后正确验证码也无效
    with pytest.raises(MfaExceededException):
        await core.mfa.verify_otp(challenge.challenge_id, code, context)

    failures = await core.audit.get_user_audit_logs(user.id, event_type="mfa_challenge_failed")
    assert [e.failure_reason for e in failures][0] == "max_attempts_exceeded"
    assert len(failures) == 6


async def test_expiry_boundary(core, make_user, context, email_sender, clock):
    user = await make_user()
    challenge = await _challenge(core, user, context)
    code = email_sender.last_code()

    clock.advance(minutes=10)
    with pytest.raises(MfaExpiredException) as exc_info:
        await core.mfa.verify_otp(challenge.challenge_id, code, context)
    assert exc_info.value.cause == "expired"


async def test_unknown_challenge(core, context):
    with pytest.raises(MfaExpiredException) as exc_info:
        await core.mfa.verify_otp("missing", "123456", context)
    assert exc_info.value.cause == "challenge_not_found"


async def test_resend_replaces_code(core, make_user, context, email_sender, clock):
    user = await make_user()
    challenge = await _challenge(core, user, context)
    old_code = email_sender.last_code()
    with pytest.raises(MfaInvalidException):
        await core.mfa.verify_otp(challenge.challenge_id, "999999" if old_code != "999999" else "888888", context)

    clock.advance(minutes=2)
    resent = await core.mfa.resend_otp(challenge.challenge_id, user.email, context)
    new_code = email_sender.last_code()
    assert len(email_sender.sent) == 2
    assert resent.expires_at == challenge.expires_at
    assert (await core.mfa.get_challenge(challenge.challenge_id)).attempts == 0

    if new_code != old_code:
        with pytest.raises(MfaInvalidException):
            await core.mfa.verify_otp(challenge.challenge_id, old_code, context)
    assert (await core.mfa.verify_otp(challenge.challenge_id, new_code, context)).user_id == user.id


async def test_resend_requires_live_challenge(core, make_user, context, clock):
    user = await make_user()
    challenge = await _challenge(core, user, context)
    clock.advance(minutes=11)
    with pytest.raises(MfaExpiredException):
        await core.mfa.resend_otp(challenge.challenge_id, user.email, context)


async def test_exhausted_challenge_cannot_be_resent(core, make_user, context, email_sender):
    user = await make_user()
    challenge = await _challenge(core, user, context)
    code = email_sender.last_code()
    wrong = "000000" if code != "000000" else "111111"
    for _ in range(5):
        with pytest.raises(MfaInvalidException):
            await core.mfa.verify_otp(challenge.challenge_id, wrong, context)

    with pytest.raises(MfaExceededException):
        await core.mfa.resend_otp(challenge.challenge_id, user.email, context)

    stored = await core.mfa.get_challenge(challenge.challenge_id)
    assert stored.attempts == 5
    assert stored.otp_hash == hash_otp(code)
    assert len(email_sender.sent) == 1
    with pytest.raises(MfaExceededException):
        await core.mfa.verify_otp(challenge.challenge_id, code, context)


async def test_unconfigured_email_still_creates_challenge(core, make_user, context, email_sender):
    email_sender.configured = False
    user = await make_user()
    challenge = await _challenge(core, user, context)

    assert not challenge.email_sent
    assert email_sender.sent == []
    assert await core.mfa.count_live_challenges(user.id) == 1
    [event] = await core.audit.get_user_audit_logs(user.id, event_type="mfa_challenge_sent")
    assert not event.success


async def test_delivery_failure_is_reported(core, make_user, context, email_sender):
    email_sender.fail = True
    user = await make_user()
    challenge = await _challenge(core, user, context)
    assert not challenge.email_sent


async def test_cleanup_expired_challenges(core, make_user, context, clock):
    user = await make_user()
    await _challenge(core, user, context)
    clock.advance(hours=2)
    assert await core.mfa.cleanup_expired_challenges() == 1


async def test_settings_toggle(core, make_user, context):
    user = await make_user()
    assert not (await core.mfa.get_settings(user.id)).email_otp_enabled

    assert (await core.mfa.enable_email_otp(user.id, context)).email_otp_enabled
    assert not (await core.mfa.disable_email_otp(user.id, context)).email_otp_enabled

    events = await core.audit.get_user_audit_logs(user.id, category="mfa")
    assert [e.event_type for e in events] == ["mfa_disabled", "mfa_enabled"]


def test_mask_email():
    assert mask_email("alice@example.com") == "a***e@e***.**"
    assert mask_email("al@example.com") == "a*@e***.**"
    assert mask_email("broken") == "***@***.***"


class TestDecision:
    async def _require_always(self, uow_factory, user_id):
        async with uow_factory() as uow:
            await uow.session.execute(
                update(MfaSettingsModel)
                .where(MfaSettingsModel.user_id == user_id)
                .values(require_mfa_always=True)
            )

    async def test_federated_login_trusts_provider(self, core, make_user, device, context):
        user = await make_user()
        decision = await core.mfa.is_mfa_required(user, "Google", device, context.ip_address, "CA")
        assert not decision.required

    async def test_require_always_wins(self, core, make_user, device, context, uow_factory):
        user = await make_user()
        await core.mfa.enable_email_otp(user.id)
        await self._require_always(uow_factory, user.id)
        await core.device_trust.trust_device(user.id, device, context)

        for provider in ("local", "google"):
            decision = await core.mfa.is_mfa_required(user, provider, device, None, "US")
            assert decision.reason is MfaTriggerReason.ALWAYS_REQUIRED

    async def test_trusted_device_skips_mfa(self, core, make_user, device, context):
        user = await make_user()
        await core.mfa.enable_email_otp(user.id)
        await core.device_trust.trust_device(user.id, device, context)
        assert not (await core.mfa.is_mfa_required(user, "local", device, None, "CA")).required

    async def test_changed_fingerprint_falls_through(self, core, make_user, device, context):
        from dataclasses import replace

        user = await make_user()
        await core.device_trust.trust_device(user.id, device, context)
        await core.tokens.create_session(user, device, context)
        moved = replace(device, fingerprint="fp-other")
        decision = await core.mfa.is_mfa_required(user, "local", moved, None, "CA")
        assert decision.reason is MfaTriggerReason.NEW_COUNTRY

    async def test_new_device(self, core, make_user, device):
        user = await make_user()
        decision = await core.mfa.is_mfa_required(user, "local", device, None, "US")
        assert decision.reason is MfaTriggerReason.NEW_DEVICE

    async def test_inactivity(self, core, make_user, device, context, clock):
        user = await make_user()
        await core.tokens.create_session(user, device, context)
        clock.advance(days=31)
        decision = await core.mfa.is_mfa_required(user, "local", device, None, None)
        assert decision.reason is MfaTriggerReason.INACTIVITY

    async def test_enabled_mfa_on_known_device(self, core, make_user, device, context):
        user = await make_user()
        await core.tokens.create_session(user, device, context)
        assert not (await core.mfa.is_mfa_required(user, "local", device, None, "US")).required

        await core.mfa.enable_email_otp(user.id)
        decision = await core.mfa.is_mfa_required(user, "local", device, None, "US")
        assert decision.reason is MfaTriggerReason.PASSWORD_LOGIN

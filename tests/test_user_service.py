import pytest

from domain.common.exceptions import (
    InvalidCredentialsException,
    NewPasswordSameAsOldException,
    PasswordPolicyException,
    UserAlreadyExistsException,
    UserNotFoundException,
)
from domain.user.password_policy import PasswordError, PasswordHints

PASSWORD = "Correct-Horse-42!"
NEW_PASSWORD = "Another-Pony-97#"


async def test_register_user(core, context, clock):
    user = await core.users.register_user(
        " Carol@Example.com ", PASSWORD, first_name="Carol", last_name="Jones", context=context
    )

    assert user.email == "carol@example.com"
    assert (user.role, user.effective_role) == ("client", "client")
    [event] = await core.audit.get_user_audit_logs(user.id, event_type="account_created")
    assert event.details == {"authProvider": "local"}


async def test_register_duplicate_email(core, make_user):
    await make_user()
    with pytest.raises(UserAlreadyExistsException):
        await core.users.register_user("ALICE@example.com", PASSWORD)


async def test_register_rejects_weak_password(core):
    with pytest.raises(PasswordPolicyException) as exc_info:
        await core.users.register_user("dave@example.com", "Dave-Strong-77!", first_name="Dave")
    assert PasswordError.CONTAINS_FIRST_NAME in exc_info.value.details["errors"]


async def test_admin_resolves_to_superadmin_without_one(core):
    user = await core.users.register_user("root@example.com", PASSWORD, role="admin")
    assert user.effective_role == "superadmin"


async def test_get_missing_user(core):
    with pytest.raises(UserNotFoundException):
        await core.users.get_user("missing")


class TestChangePassword:
    async def test_wrong_current_password(self, core, make_user, context):
        user = await make_user()
        with pytest.raises(InvalidCredentialsException):
            await core.users.change_password(user.id, "not-it", NEW_PASSWORD, context=context)

        [event] = await core.audit.get_user_audit_logs(user.id, event_type="password_changed")
        assert not event.success
        assert event.failure_reason == "invalid_current_password"

    async def test_same_password(self, core, make_user):
        user = await make_user()
        with pytest.raises(NewPasswordSameAsOldException):
            await core.users.change_password(user.id, PASSWORD, PASSWORD)

    async def test_policy_applies(self, core, make_user):
        user = await make_user()
        with pytest.raises(PasswordPolicyException) as exc_info:
            await core.users.change_password(user.id, PASSWORD, "short")
        assert PasswordError.TOO_SHORT in exc_info.value.details["errors"]

    async def test_success_revokes_other_sessions(self, core, make_user, device, context):
        user = await make_user()
        current = await core.tokens.create_session(user, device, context)
        await core.tokens.create_session(user, device, context)

        revoked = await core.users.change_password(
            user.id, PASSWORD, NEW_PASSWORD, current_session_id=current.session.id, context=context
        )

        assert revoked == 1
        [active] = await core.tokens.get_active_sessions(user.id)
        assert active.id == current.session.id

        await core.device_trust.trust_device(user.id, device, context)
        result = await core.sessions.login(user.email, NEW_PASSWORD, device, context)
        assert result.status == "authenticated"


async def test_toggle_email_otp(core, make_user, context):
    user = await make_user()

    assert (await core.users.set_email_otp(user.id, True, context)).email_otp_enabled

    [event] = await core.audit.get_user_audit_logs(user.id, event_type="mfa_settings_changed")
    assert event.details == {"method": "email_otp", "enabled": True}


def test_check_password_strength(core):
    weak = core.users.check_password_strength("abcd")
    strong = core.users.check_password_strength(PASSWORD, PasswordHints(email="alice@example.com"))

    assert not weak.valid
    assert weak.score < strong.score
    assert strong.valid
    assert strong.label in {"Good", "Strong", "Excellent"}

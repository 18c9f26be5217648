import pytest
from sqlalchemy.exc import SQLAlchemyError

from application.services.audit_service import AuditService
from domain.audit.entity import (
    SecurityEventCategory,
    SecurityEventType,
    derive_category,
    sanitize_details,
)


def test_sanitize_drops_sensitive_keys_recursively():
    cleaned = sanitize_details(
        {
            "reason": "logout",
            "Password": "hunter2",
            "refreshToken": "abc",
            "nested": {"otpCode": "123456", "safe": 1, "deeper": [{"apiKey": "k", "ok": True}]},
        }
    )
    assert cleaned == {"reason": "logout", "nested": {"safe": 1, "deeper": [{"ok": True}]}}


def test_sanitize_non_mapping():
    assert sanitize_details(None) == {}
    assert sanitize_details(["password"]) == {}


@pytest.mark.parametrize(
    "event_type, category",
    [
        ("login_failed", SecurityEventCategory.AUTHENTICATION),
        ("password_changed", SecurityEventCategory.AUTHENTICATION),
        ("session_refresh_failed", SecurityEventCategory.SESSION),
        ("token_reuse_detected", SecurityEventCategory.SESSION),
        ("mfa_enabled", SecurityEventCategory.MFA),
        ("account_locked", SecurityEventCategory.ACCOUNT),
        ("oauth_login", SecurityEventCategory.OAUTH),
        ("device_trusted", SecurityEventCategory.ACCESS),
    ],
)
def test_category_derivation(event_type, category):
    assert derive_category(event_type) is category


async def test_logged_details_are_sanitized(core, context):
    entry_id = await core.audit.log(
        SecurityEventType.SESSION_ENDED,
        success=True,
        user_id="u1",
        context=context,
        details={"reason": "user_logout", "refresh_token": "secret-value"},
    )
    assert entry_id is not None

    [entry] = await core.audit.get_user_audit_logs("u1")
    assert entry.details == {"reason": "user_logout"}
    assert entry.event_category == "session"
    assert entry.ip_address == "203.0.113.10"
    assert entry.created_at.tzinfo is not None


async def test_write_failure_never_raises(clock):
    class _BrokenUoW:
        async def __aenter__(self):
            raise SQLAlchemyError("database unavailable")

        async def __aexit__(self, *exc):
            return False

    audit = AuditService(lambda **_: _BrokenUoW(), clock)
    assert await audit.log(SecurityEventType.LOGIN_SUCCESS, success=True, user_id="u1") is None


async def test_user_logs_filter_and_order(core, clock):
    await core.audit.log(SecurityEventType.LOGIN_SUCCESS, success=True, user_id="u1")
    clock.advance(minutes=1)
    await core.audit.log(SecurityEventType.SESSION_CREATED, success=True, user_id="u1")
    clock.advance(minutes=1)
    await core.audit.log(SecurityEventType.LOGIN_FAILED, success=False, user_id="u1", failure_reason="invalid_password")
    await core.audit.log(SecurityEventType.LOGIN_SUCCESS, success=True, user_id="u2")

    logs = await core.audit.get_user_audit_logs("u1")
    assert [e.event_type for e in logs] == ["login_failed", "session_created", "login_success"]

    auth_only = await core.audit.get_user_audit_logs("u1", category=SecurityEventCategory.AUTHENTICATION)
    assert {e.event_type for e in auth_only} == {"login_failed", "login_success"}

    failures = await core.audit.get_user_audit_logs("u1", success=False)
    assert [e.failure_reason for e in failures] == ["invalid_password"]

    page = await core.audit.get_user_audit_logs("u1", limit=1, offset=1)
    assert [e.event_type for e in page] == ["session_created"]

    recent = await core.audit.get_recent_events(event_types=[SecurityEventType.LOGIN_SUCCESS])
    assert {e.user_id for e in recent} == {"u1", "u2"}


async def test_stats_window(core, clock):
    for _ in range(2):
        await core.audit.log(SecurityEventType.LOGIN_SUCCESS, success=True)
    await core.audit.log(SecurityEventType.LOGIN_FAILED, success=False)
    await core.audit.log(SecurityEventType.MFA_CHALLENGE_FAILED, success=False)
    await core.audit.log(SecurityEventType.MFA_CHALLENGE_SENT, success=True)
    await core.audit.log(SecurityEventType.ALL_SESSIONS_ENDED, success=True)
    await core.audit.log(SecurityEventType.TOKEN_REUSE_DETECTED, success=False)

    stats = await core.audit.get_stats(24)
    assert stats.login_success == 2
    assert stats.login_failed == 1
    assert stats.mfa_failed == 1
    assert stats.mfa_challenges == 1
    assert stats.sessions_revoked == 1
    assert stats.suspicious_activity == 1
    assert stats.model_dump(by_alias=True)["loginSuccess"] == 2

    clock.advance(hours=25)
    stats = await core.audit.get_stats(24)
    assert stats.login_success == 0


async def test_purge_respects_retention(core, clock):
    await core.audit.log(SecurityEventType.LOGIN_SUCCESS, success=True, user_id="u1")
    clock.advance(days=400)
    await core.audit.log(SecurityEventType.LOGIN_SUCCESS, success=True, user_id="u1")

    assert await core.audit.purge(365) == 1
    assert len(await core.audit.get_user_audit_logs("u1")) == 1

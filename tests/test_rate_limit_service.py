from datetime import timedelta

import pytest

from domain.rate_limit.entity import RateLimitScope

IP = "203.0.113.10"


async def test_no_record_allows_full_budget(core):
    decision = await core.rate_limits.check(RateLimitScope.LOGIN_IP, IP)
    assert decision.allowed
    assert decision.remaining == 10


async def test_window_expiry_resets_counter(core, clock, uow_factory):
    for _ in range(9):
        await core.rate_limits.record(RateLimitScope.LOGIN_IP, IP)
        clock.advance(minutes=1)

    clock.advance(minutes=7)  # t0 + 16 min
    decision = await core.rate_limits.check(RateLimitScope.LOGIN_IP, IP)
    assert decision.allowed
    assert decision.remaining == 9

    key = core.rate_limits.key_for(RateLimitScope.LOGIN_IP, IP)
    async with uow_factory(readonly=True) as uow:
        assert await uow.rate_limit_repository.get(key, RateLimitScope.LOGIN_IP) is None


async def test_remaining_counts_down(core):
    for _ in range(3):
        await core.rate_limits.record(RateLimitScope.LOGIN_USER, "alice@example.com")
    decision = await core.rate_limits.check(RateLimitScope.LOGIN_USER, "alice@example.com")
    assert decision.allowed
    assert decision.remaining == 2


async def test_lockout_after_max_attempts(core, clock):
    for _ in range(10):
        await core.rate_limits.record(RateLimitScope.LOGIN_IP, IP)

    decision = await core.rate_limits.check(RateLimitScope.LOGIN_IP, IP)
    assert not decision.allowed
    assert decision.locked
    assert decision.retry_after == 15 * 60

    clock.advance(minutes=5)
    decision = await core.rate_limits.check(RateLimitScope.LOGIN_IP, IP)
    assert not decision.allowed
    assert decision.retry_after == 10 * 60

    clock.advance(minutes=10, seconds=1)
    decision = await core.rate_limits.check(RateLimitScope.LOGIN_IP, IP)
    assert decision.allowed
    assert decision.remaining == 9


async def test_scopes_are_independent(core):
    for _ in range(5):
        await core.rate_limits.record(RateLimitScope.LOGIN_USER, "alice@example.com")
    assert not (await core.rate_limits.check(RateLimitScope.LOGIN_USER, "alice@example.com")).allowed
    assert (await core.rate_limits.check(RateLimitScope.MFA_USER, "alice@example.com")).allowed
    assert (await core.rate_limits.check(RateLimitScope.LOGIN_USER, "bob@example.com")).allowed


async def test_clear_removes_record(core):
    for _ in range(5):
        await core.rate_limits.record(RateLimitScope.LOGIN_USER, "alice@example.com")
    await core.rate_limits.clear(RateLimitScope.LOGIN_USER, "Alice@Example.com")
    decision = await core.rate_limits.check(RateLimitScope.LOGIN_USER, "alice@example.com")
    assert decision.remaining == 5


def test_keys(core):
    ip_key = core.rate_limits.key_for(RateLimitScope.LOGIN_IP, IP)
    assert ip_key != IP
    assert len(ip_key) == 32
    assert ip_key == core.rate_limits.key_for(RateLimitScope.LOGIN_IP, IP)
    assert core.rate_limits.key_for(RateLimitScope.LOGIN_USER, "Alice@Example.com") == "alice@example.com"
    assert core.rate_limits.key_for(RateLimitScope.MFA_USER, None) == "unknown"


async def test_cleanup_removes_stale_records(core, clock):
    await core.rate_limits.record(RateLimitScope.LOGIN_USER, "old@example.com")
    clock.advance(hours=25)
    await core.rate_limits.record(RateLimitScope.LOGIN_USER, "new@example.com")

    assert await core.rate_limits.cleanup() == 1
    assert (await core.rate_limits.check(RateLimitScope.LOGIN_USER, "new@example.com")).remaining == 4


async def test_failed_logins_lock_account(core, make_user, clock):
    user = await make_user()
    for _ in range(4):
        status = await core.rate_limits.record_failed_login(user.id)
        assert not status.locked

    status = await core.rate_limits.record_failed_login(user.id)
    assert status.locked
    assert status.until == clock() + timedelta(minutes=30)

    lock = await core.rate_limits.is_user_locked(user.id)
    assert lock.locked
    assert lock.retry_after == 30 * 60

    [event] = await core.audit.get_user_audit_logs(user.id, event_type="account_locked")
    assert event.details == {"reason": "too_many_failed_attempts", "lockoutMinutes": 30}


async def test_expired_lock_is_cleared(core, make_user, clock, uow_factory):
    user = await make_user()
    await core.rate_limits.lock_user(user.id)
    clock.advance(minutes=31)

    assert not (await core.rate_limits.is_user_locked(user.id)).locked
    async with uow_factory(readonly=True) as uow:
        assert (await uow.user_repository.get_by_id(user.id)).locked_until is None


async def test_unlock_resets_counters(core, make_user, uow_factory):
    user = await make_user()
    for _ in range(5):
        await core.rate_limits.record_failed_login(user.id)

    await core.rate_limits.unlock_user(user.id, admin_id="admin-1")

    async with uow_factory(readonly=True) as uow:
        stored = await uow.user_repository.get_by_id(user.id)
    assert stored.locked_until is None
    assert stored.failed_login_count == 0
    [event] = await core.audit.get_user_audit_logs(user.id, event_type="account_unlocked")
    assert event.details == {"unlockedBy": "admin-1"}

import asyncio

import pytest

from domain.audit.entity import SecurityEventType
from domain.rate_limit.entity import RateLimitScope
from infrastructure.tasks import TaskDispatcher, celery_app
from infrastructure.tasks.config.beat import CELERY_BEAT_SCHEDULE
from infrastructure.tasks.tasks import security


def test_beat_schedule_targets_registered_tasks():
    registered = set(celery_app.tasks)
    for entry in CELERY_BEAT_SCHEDULE.values():
        assert entry["task"] in registered


async def test_cleanup_rate_limits(core, clock):
    await core.rate_limits.record(RateLimitScope.LOGIN_IP, "198.51.100.1")
    assert await security.cleanup_rate_limits(core) == 0

    clock.advance(hours=25)
    assert await security.cleanup_rate_limits(core) == 1


async def test_cleanup_mfa_challenges(core, make_user, context, clock):
    user = await make_user()
    await core.mfa.create_email_otp_challenge(user.id, user.email, context)

    clock.advance(minutes=30)
    assert await security.cleanup_mfa_challenges(core) == 0
    clock.advance(hours=1)
    assert await security.cleanup_mfa_challenges(core) == 1


async def test_purge_stale_sessions(core, make_user, device, context, clock):
    user = await make_user()
    issued = await core.tokens.create_session(user, device, context)
    await core.tokens.revoke_session(issued.session.id, "logout")

    clock.advance(days=31)
    assert await security.purge_stale_sessions(core) == 1
    assert await core.tokens.get_session(issued.session.id) is None


async def test_purge_audit_log(core, clock):
    await core.audit.log(SecurityEventType.LOGIN_FAILED, success=False, failure_reason="user_not_found")

    clock.advance(days=10)
    assert await security.purge_audit_log(core, retention_days=30) == 0
    clock.advance(days=21)
    assert await security.purge_audit_log(core, retention_days=30) == 1


class _CountingEngine:
    def __init__(self):
        self.disposed = 0

    async def dispose(self):
        self.disposed += 1


def test_consecutive_runs_release_pool(monkeypatch):
    fake_engine = _CountingEngine()
    monkeypatch.setattr(security, "engine", fake_engine)
    loops = []

    async def job(retention_days=None):
        loops.append(asyncio.get_running_loop())
        assert fake_engine.disposed == len(loops) - 1
        return retention_days

    assert security._run(job, retention_days=7) == 7
    assert security._run(job) is None

    assert fake_engine.disposed == 2
    assert loops[0] is not loops[1]


def test_pool_released_when_job_fails(monkeypatch):
    fake_engine = _CountingEngine()
    monkeypatch.setattr(security, "engine", fake_engine)

    async def job():
        raise RuntimeError("database unavailable")

    with pytest.raises(RuntimeError):
        security._run(job)
    assert fake_engine.disposed == 1


def test_dispatcher_sends_by_name(monkeypatch):
    sent = []
    monkeypatch.setattr(
        celery_app, "send_task", lambda name, args=(), kwargs=None: sent.append((name, args, kwargs))
    )

    dispatcher = TaskDispatcher()
    dispatcher.purge_audit_log(retention_days=90)
    dispatcher.enqueue("security.cleanup_rate_limits")

    assert sent == [
        ("security.purge_audit_log", (), {"retention_days": 90}),
        ("security.cleanup_rate_limits", (), {}),
    ]

"""Periodic housekeeping for the authentication core.

Each task runs its coroutine with ``asyncio.run`` so every execution gets a
fresh event loop and releases the engine pool afterwards. The coroutines
accept a prebuilt ``SecurityCore`` so they can be exercised without a broker.
"""
from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional

from celery import shared_task

from ..utils.base_task import BaseTask
from core.config import settings
from core.logging_config import get_logger
from infrastructure.container import SecurityCore, build_security_core
from infrastructure.database import engine

logger = get_logger(__name__)


async def cleanup_rate_limits(core: Optional[SecurityCore] = None) -> int:
    core = core or build_security_core()
    removed = await core.rate_limits.cleanup()
    logger.info("rate_limits_cleaned", removed=removed)
    return removed


async def cleanup_mfa_challenges(core: Optional[SecurityCore] = None) -> int:
    core = core or build_security_core()
    removed = await core.mfa.cleanup_expired_challenges()
    logger.info("mfa_challenges_cleaned", removed=removed)
    return removed


async def purge_stale_sessions(core: Optional[SecurityCore] = None) -> int:
    core = core or build_security_core()
    removed = await core.tokens.purge_stale_sessions()
    logger.info("stale_sessions_purged", removed=removed)
    return removed


async def purge_audit_log(core: Optional[SecurityCore] = None, retention_days: Optional[int] = None) -> int:
    core = core or build_security_core()
    removed = await core.audit.purge(retention_days or settings.security.audit_retention_days)
    logger.info("audit_log_purged", removed=removed)
    return removed


_RETRY = dict(
    bind=True,
    base=BaseTask,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_backoff_max=600,
    retry_jitter=True,
    retry_kwargs={"max_retries": 3},
)


def _run(job: Callable[..., Awaitable[int]], **kwargs) -> int:
    """在新事件循环中执行一次清理任务

    asyncpg 连接绑定在创建它的事件循环上，而每次 ``asyncio.run`` 都会新建循环；
    任务结束后释放连接池，下一次执行重新建立连接。
    """

    async def _main() -> int:
        try:
            return await job(**kwargs)
        finally:
            await engine.dispose()

    return asyncio.run(_main())


@shared_task(name="security.cleanup_rate_limits", **_RETRY)
def task_cleanup_rate_limits(self) -> int:
    return _run(cleanup_rate_limits)


@shared_task(name="security.cleanup_mfa_challenges", **_RETRY)
def task_cleanup_mfa_challenges(self) -> int:
    return _run(cleanup_mfa_challenges)


@shared_task(name="security.purge_stale_sessions", **_RETRY)
def task_purge_stale_sessions(self) -> int:
    return _run(purge_stale_sessions)


@shared_task(name="security.purge_audit_log", **_RETRY)
def task_purge_audit_log(self, retention_days: Optional[int] = None) -> int:
    return _run(purge_audit_log, retention_days=retention_days)

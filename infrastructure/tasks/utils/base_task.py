"""Common base task for Celery jobs"""
from __future__ import annotations

import time

from celery import Task
from core.logging_config import get_logger

logger = get_logger(__name__)


class BaseTask(Task):
    """Structured start/finish logging for housekeeping jobs."""

    def before_start(self, task_id, args, kwargs):  # type: ignore[override]
        self._started_at = time.monotonic()
        logger.info("celery_task_started", task_id=task_id, task_name=self.name)

    def on_failure(self, exc, task_id, args, kwargs, einfo):  # type: ignore[override]
        logger.error(
            "celery_task_failure",
            task_id=task_id,
            task_name=self.name,
            kwargs=kwargs,
            exc=str(exc),
        )
        super().on_failure(exc, task_id, args, kwargs, einfo)

    def on_success(self, retval, task_id, args, kwargs):  # type: ignore[override]
        started = getattr(self, "_started_at", None)
        logger.info(
            "celery_task_success",
            task_id=task_id,
            task_name=self.name,
            affected=retval,
            duration_ms=round((time.monotonic() - started) * 1000, 1) if started else None,
        )
        super().on_success(retval, task_id, args, kwargs)

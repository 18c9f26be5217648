"""Small dispatching helpers to decouple Celery from callers."""
from __future__ import annotations

from typing import Any, Dict, Optional

from ..config.celery import celery_app


class TaskDispatcher:
    """Internal facade used by operators or scripts to trigger housekeeping."""

    def purge_audit_log(self, retention_days: Optional[int] = None) -> None:
        """Run an out-of-schedule audit purge, e.g. after lowering retention."""
        celery_app.send_task("security.purge_audit_log", kwargs={"retention_days": retention_days})

    def enqueue(self, task_name: str, *, args: tuple | None = None, kwargs: Dict[str, Any] | None = None) -> None:
        """Generic escape hatch for scheduling arbitrary tasks by name."""
        celery_app.send_task(task_name, args=args or (), kwargs=kwargs or {})

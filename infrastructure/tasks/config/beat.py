"""Celery beat schedule configuration.

Housekeeping for rate-limit records, MFA challenges, stale sessions and the
audit log; retention windows come from ``settings.security``.
"""
from __future__ import annotations

from celery.schedules import crontab

CELERY_BEAT_SCHEDULE = {
    "security-cleanup-rate-limits": {
        "task": "security.cleanup_rate_limits",
        "schedule": crontab(minute=0),  # hourly
    },
    "security-cleanup-mfa-challenges": {
        "task": "security.cleanup_mfa_challenges",
        "schedule": crontab(minute="*/15"),
    },
    "security-purge-stale-sessions": {
        "task": "security.purge_stale_sessions",
        "schedule": crontab(hour=3, minute=0),
    },
    "security-purge-audit-log": {
        "task": "security.purge_audit_log",
        "schedule": crontab(hour=3, minute=30),
    },
}

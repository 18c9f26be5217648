"""
安全审计服务

写入是尽力而为的：持久化失败只记录错误日志，绝不影响调用方流程。
"""
from datetime import timedelta
from typing import Callable, Iterable, Optional, Union

from application.dto import AuditLogDTO, SecurityStatsDTO
from core.config import settings
from core.logging_config import get_logger
from domain.audit.entity import (
    AuditEvent,
    AuditQuery,
    SecurityEventCategory,
    SecurityEventType,
    sanitize_details,
)
from domain.common.context import RequestContext
from domain.common.unit_of_work import AbstractUnitOfWork
from shared.clock import Clock, utc_now

logger = get_logger(__name__)

# get_stats 中各指标对应的 (event_type, success)；success 为 None 表示不区分
_STAT_RULES: dict[str, tuple[tuple[SecurityEventType, Optional[bool]], ...]] = {
    "login_success": ((SecurityEventType.LOGIN_SUCCESS, None),),
    "login_failed": ((SecurityEventType.LOGIN_FAILED, None),),
    "mfa_challenges": ((SecurityEventType.MFA_CHALLENGE_SENT, None),),
    "mfa_failed": ((SecurityEventType.MFA_CHALLENGE_FAILED, False),),
    "sessions_created": ((SecurityEventType.SESSION_CREATED, None),),
    "sessions_revoked": (
        (SecurityEventType.SESSION_REVOKED, None),
        (SecurityEventType.ALL_SESSIONS_ENDED, None),
    ),
    "suspicious_activity": ((SecurityEventType.TOKEN_REUSE_DETECTED, None),),
}


def _values(items: Optional[Iterable[Union[str, SecurityEventType, SecurityEventCategory]]]) -> tuple[str, ...]:
    if not items:
        return ()
    if isinstance(items, (str, SecurityEventType, SecurityEventCategory)):
        items = (items,)
    return tuple(getattr(i, "value", i) for i in items)


class AuditService:
    """安全事件记录与查询"""

    def __init__(self, uow_factory: Callable[..., AbstractUnitOfWork], clock: Clock = utc_now):
        self._uow_factory = uow_factory
        self._clock = clock

    async def record(self, event: AuditEvent) -> Optional[int]:
        """写入一条审计事件，返回记录ID；失败时返回 None"""
        event.details = sanitize_details(event.details)
        try:
            async with self._uow_factory() as uow:
                return await uow.audit_log_repository.add(event, self._clock())
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "audit_write_failed",
                event_type=getattr(event.event_type, "value", event.event_type),
                user_id=event.user_id,
                error=str(exc),
                exc_info=True,
            )
            return None

    async def log(
        self,
        event_type: SecurityEventType,
        *,
        success: bool,
        user_id: Optional[str] = None,
        session_id: Optional[str] = None,
        device_id: Optional[str] = None,
        context: Optional[RequestContext] = None,
        failure_reason: Optional[str] = None,
        details: Optional[dict] = None,
        category: Optional[SecurityEventCategory] = None,
    ) -> Optional[int]:
        """按关键字参数构造事件并写入"""
        context = context or RequestContext()
        return await self.record(
            AuditEvent(
                event_type=event_type,
                success=success,
                category=category,
                user_id=user_id,
                session_id=session_id,
                ip_address=context.ip_address,
                user_agent=context.user_agent,
                country_code=context.country_code,
                device_id=device_id,
                failure_reason=failure_reason,
                details=details or {},
            )
        )

    async def get_user_audit_logs(
        self,
        user_id: str,
        *,
        category=None,
        event_type=None,
        start=None,
        end=None,
        success: Optional[bool] = None,
        limit: int = settings.DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> list[AuditLogDTO]:
        query = AuditQuery(
            user_id=user_id,
            categories=_values(category),
            event_types=_values(event_type),
            start=start,
            end=end,
            success=success,
            limit=min(limit, settings.MAX_PAGE_SIZE),
            offset=offset,
        )
        async with self._uow_factory(readonly=True) as uow:
            entries = await uow.audit_log_repository.search(query)
        return [AuditLogDTO.model_validate(e) for e in entries]

    async def get_recent_events(
        self,
        *,
        limit: int = 100,
        categories=None,
        event_types=None,
        success: Optional[bool] = None,
    ) -> list[AuditLogDTO]:
        query = AuditQuery(
            categories=_values(categories),
            event_types=_values(event_types),
            success=success,
            limit=min(limit, settings.MAX_PAGE_SIZE),
        )
        async with self._uow_factory(readonly=True) as uow:
            entries = await uow.audit_log_repository.search(query)
        return [AuditLogDTO.model_validate(e) for e in entries]

    async def get_stats(self, hours: int = 24) -> SecurityStatsDTO:
        since = self._clock() - timedelta(hours=hours)
        async with self._uow_factory(readonly=True) as uow:
            rows = await uow.audit_log_repository.count_by_type(since)

        totals = {name: 0 for name in _STAT_RULES}
        for event_type, success, count in rows:
            for name, rules in _STAT_RULES.items():
                for rule_type, rule_success in rules:
                    if rule_type.value == event_type and rule_success in (None, success):
                        totals[name] += count
        return SecurityStatsDTO(hours=hours, **totals)

    async def purge(self, retention_days: int) -> int:
        before = self._clock() - timedelta(days=retention_days)
        async with self._uow_factory() as uow:
            count = await uow.audit_log_repository.delete_before(before)
        logger.info("audit_log_purged", count=count, retention_days=retention_days)
        return count

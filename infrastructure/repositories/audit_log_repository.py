"""
安全审计日志仓储实现（只追加）
"""
from datetime import datetime
from typing import List

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from domain.audit.entity import AuditEvent, AuditLogEntry, AuditQuery, sanitize_details
from domain.audit.repository import AuditLogRepository
from infrastructure.models.audit_log import SecurityAuditLogModel


class SQLAlchemyAuditLogRepository(AuditLogRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: SecurityAuditLogModel) -> AuditLogEntry:
        return AuditLogEntry(
            id=model.id,
            event_type=model.event_type,
            event_category=model.event_category,
            success=bool(model.success),
            created_at=model.created_at,
            user_id=model.user_id,
            session_id=model.session_id,
            ip_address=model.ip_address,
            user_agent=model.user_agent,
            country_code=model.country_code,
            device_id=model.device_id,
            failure_reason=model.failure_reason,
            details=model.details or {},
        )

    async def add(self, event: AuditEvent, created_at: datetime) -> int:
        model = SecurityAuditLogModel(
            user_id=event.user_id,
            session_id=event.session_id,
            event_type=getattr(event.event_type, "value", event.event_type),
            event_category=event.resolved_category().value,
            ip_address=event.ip_address,
            user_agent=event.user_agent,
            country_code=event.country_code,
            device_id=event.device_id,
            success=event.success,
            failure_reason=event.failure_reason,
            # 仓储层再做一次脱敏，调用方绕过服务层时同样生效
            details=sanitize_details(event.details),
            created_at=created_at,
        )
        self.session.add(model)
        await self.session.flush()
        return model.id

    async def search(self, query: AuditQuery) -> List[AuditLogEntry]:
        stmt = select(SecurityAuditLogModel)
        if query.user_id is not None:
            stmt = stmt.where(SecurityAuditLogModel.user_id == query.user_id)
        if query.categories:
            stmt = stmt.where(SecurityAuditLogModel.event_category.in_(query.categories))
        if query.event_types:
            stmt = stmt.where(SecurityAuditLogModel.event_type.in_(query.event_types))
        if query.start is not None:
            stmt = stmt.where(SecurityAuditLogModel.created_at >= query.start)
        if query.end is not None:
            stmt = stmt.where(SecurityAuditLogModel.created_at <= query.end)
        if query.success is not None:
            stmt = stmt.where(SecurityAuditLogModel.success == query.success)
        # 同一时刻写入的记录按自增ID倒序
        stmt = (
            stmt.order_by(SecurityAuditLogModel.created_at.desc(), SecurityAuditLogModel.id.desc())
            .offset(query.offset)
            .limit(query.limit)
        )
        result = await self.session.execute(stmt)
        return [self._to_entity(m) for m in result.scalars().all()]

    async def count_by_type(self, since: datetime) -> List[tuple[str, bool, int]]:
        result = await self.session.execute(
            select(
                SecurityAuditLogModel.event_type,
                SecurityAuditLogModel.success,
                func.count(SecurityAuditLogModel.id),
            )
            .where(SecurityAuditLogModel.created_at > since)
            .group_by(SecurityAuditLogModel.event_type, SecurityAuditLogModel.success)
        )
        return [(event_type, bool(success), int(count)) for event_type, success, count in result.all()]

    async def delete_before(self, before: datetime) -> int:
        result = await self.session.execute(
            delete(SecurityAuditLogModel)
            .where(SecurityAuditLogModel.created_at < before)
        )
        return result.rowcount or 0

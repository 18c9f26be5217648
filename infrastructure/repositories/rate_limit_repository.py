"""
限流记录仓储实现 - upsert + 原子自增，不加更粗粒度的锁
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from domain.rate_limit.entity import RateLimitRecord, RateLimitScope
from domain.rate_limit.repository import RateLimitRepository
from infrastructure.models.base import new_uuid
from infrastructure.models.rate_limit import RateLimitModel
from infrastructure.repositories.upsert import dialect_insert


class SQLAlchemyRateLimitRepository(RateLimitRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: RateLimitModel) -> RateLimitRecord:
        return RateLimitRecord(
            limit_key=model.limit_key,
            scope=RateLimitScope(model.limit_type),
            attempts=model.attempts,
            first_attempt_at=model.first_attempt_at,
            last_attempt_at=model.last_attempt_at,
            locked_until=model.locked_until,
        )

    def _where(self, limit_key: str, scope: RateLimitScope):
        return (
            RateLimitModel.limit_key == limit_key,
            RateLimitModel.limit_type == scope.value,
        )

    async def get(self, limit_key: str, scope: RateLimitScope) -> Optional[RateLimitRecord]:
        result = await self.session.execute(
            select(RateLimitModel)
            .where(*self._where(limit_key, scope))
            .execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def increment(self, limit_key: str, scope: RateLimitScope, now: datetime) -> int:
        table = RateLimitModel.__table__
        stmt = dialect_insert(self.session, table).values(
            id=new_uuid(),
            limit_key=limit_key,
            limit_type=scope.value,
            attempts=1,
            first_attempt_at=now,
            last_attempt_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.limit_key, table.c.limit_type],
            set_={"attempts": table.c.attempts + 1, "last_attempt_at": now},
        )
        await self.session.execute(stmt)
        result = await self.session.execute(
            select(RateLimitModel.attempts).where(*self._where(limit_key, scope))
        )
        return int(result.scalar_one())

    async def set_locked_until(self, limit_key: str, scope: RateLimitScope, locked_until: datetime) -> None:
        await self.session.execute(
            update(RateLimitModel)
            .where(*self._where(limit_key, scope))
            .values(locked_until=locked_until)
        )

    async def delete(self, limit_key: str, scope: RateLimitScope) -> None:
        await self.session.execute(
            delete(RateLimitModel)
            .where(*self._where(limit_key, scope))
        )

    async def delete_stale(self, last_attempt_before: datetime, now: datetime) -> int:
        result = await self.session.execute(
            delete(RateLimitModel)
            .where(
                RateLimitModel.last_attempt_at < last_attempt_before,
                or_(RateLimitModel.locked_until.is_(None), RateLimitModel.locked_until < now),
            )
        )
        return result.rowcount or 0

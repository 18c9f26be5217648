"""
会话仓储实现

刷新令牌轮转使用比较并交换：``UPDATE ... WHERE refresh_token_hash = :old``，
并发刷新同一令牌时只有一个请求能命中。
"""
from datetime import datetime
from typing import List, Optional

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.session.entity import Session
from domain.session.repository import SessionRepository
from infrastructure.models.session import SessionModel

logger = get_logger(__name__)


class SQLAlchemySessionRepository(SessionRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: SessionModel) -> Session:
        return Session(
            id=model.id,
            user_id=model.user_id,
            token_family_id=model.token_family_id,
            refresh_token_hash=model.refresh_token_hash,
            refresh_expires_at=model.refresh_expires_at,
            absolute_expires_at=model.absolute_expires_at,
            last_activity_at=model.last_activity_at,
            device_id=model.device_id,
            device_fingerprint=model.device_fingerprint,
            device_name=model.device_name,
            ip_address=model.ip_address,
            user_agent=model.user_agent,
            country_code=model.country_code,
            city=model.city,
            is_trusted=bool(model.is_trusted),
            trust_until=model.trust_until,
            previous_refresh_token_hash=model.previous_refresh_token_hash,
            refreshed_at=model.refreshed_at,
            created_at=model.created_at,
            revoked_at=model.revoked_at,
            revoked_reason=model.revoked_reason,
        )

    async def create(self, session: Session) -> Session:
        model = SessionModel(
            id=session.id,
            user_id=session.user_id,
            token_family_id=session.token_family_id,
            refresh_token_hash=session.refresh_token_hash,
            refresh_expires_at=session.refresh_expires_at,
            absolute_expires_at=session.absolute_expires_at,
            last_activity_at=session.last_activity_at,
            device_id=session.device_id,
            device_fingerprint=session.device_fingerprint,
            device_name=session.device_name,
            ip_address=session.ip_address,
            user_agent=session.user_agent,
            country_code=session.country_code,
            city=session.city,
            is_trusted=session.is_trusted,
            trust_until=session.trust_until,
            created_at=session.created_at,
        )
        self.session.add(model)
        await self.session.flush()
        return self._to_entity(model)

    async def get_by_id(self, session_id: str) -> Optional[Session]:
        result = await self.session.execute(
            select(SessionModel).where(SessionModel.id == session_id)
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def get_by_refresh_hash(self, token_hash: str, *, for_update: bool = False) -> Optional[Session]:
        stmt = select(SessionModel).where(SessionModel.refresh_token_hash == token_hash)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def get_by_previous_refresh_hash(self, token_hash: str) -> Optional[Session]:
        result = await self.session.execute(
            select(SessionModel)
            .where(SessionModel.previous_refresh_token_hash == token_hash)
            .limit(1)
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def rotate_refresh_token(
        self,
        session_id: str,
        old_hash: str,
        new_hash: str,
        refresh_expires_at: datetime,
        now: datetime,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> bool:
        values = {
            "refresh_token_hash": new_hash,
            "previous_refresh_token_hash": old_hash,
            "refresh_expires_at": refresh_expires_at,
            "last_activity_at": now,
            "refreshed_at": now,
        }
        if ip_address:
            values["ip_address"] = ip_address
        if user_agent:
            values["user_agent"] = user_agent
        result = await self.session.execute(
            update(SessionModel)
            .where(
                SessionModel.id == session_id,
                SessionModel.refresh_token_hash == old_hash,
                SessionModel.revoked_at.is_(None),
            )
            .values(**values)
        )
        return result.rowcount == 1

    async def revoke(self, session_id: str, reason: str, now: datetime) -> bool:
        result = await self.session.execute(
            update(SessionModel)
            .where(SessionModel.id == session_id, SessionModel.revoked_at.is_(None))
            .values(revoked_at=now, revoked_reason=reason)
        )
        return result.rowcount > 0

    async def revoke_all_for_user(
        self, user_id: str, reason: str, now: datetime, except_session_id: Optional[str] = None
    ) -> int:
        stmt = update(SessionModel).where(
            SessionModel.user_id == user_id,
            SessionModel.revoked_at.is_(None),
        )
        if except_session_id:
            stmt = stmt.where(SessionModel.id != except_session_id)
        result = await self.session.execute(
            stmt.values(revoked_at=now, revoked_reason=reason)
        )
        return result.rowcount or 0

    async def revoke_family(self, family_id: str, reason: str, now: datetime) -> int:
        result = await self.session.execute(
            update(SessionModel)
            .where(SessionModel.token_family_id == family_id, SessionModel.revoked_at.is_(None))
            .values(revoked_at=now, revoked_reason=reason)
        )
        count = result.rowcount or 0
        if count:
            logger.warning("token_family_revoked", family_id=family_id, reason=reason, count=count)
        return count

    async def touch(self, session_id: str, now: datetime) -> None:
        await self.session.execute(
            update(SessionModel)
            .where(SessionModel.id == session_id, SessionModel.revoked_at.is_(None))
            .values(last_activity_at=now)
        )

    async def list_active_for_user(self, user_id: str, now: datetime) -> List[Session]:
        result = await self.session.execute(
            select(SessionModel)
            .where(
                SessionModel.user_id == user_id,
                SessionModel.revoked_at.is_(None),
                SessionModel.refresh_expires_at > now,
                SessionModel.absolute_expires_at > now,
            )
            .order_by(SessionModel.last_activity_at.desc(), SessionModel.id.desc())
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def exists_for_device(self, user_id: str, device_id: str) -> bool:
        result = await self.session.execute(
            select(SessionModel.id)
            .where(SessionModel.user_id == user_id, SessionModel.device_id == device_id)
            .limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def recent_countries(self, user_id: str, since: datetime) -> List[str]:
        result = await self.session.execute(
            select(SessionModel.country_code)
            .where(
                SessionModel.user_id == user_id,
                SessionModel.created_at > since,
                SessionModel.country_code.is_not(None),
            )
            .distinct()
        )
        return [row for row in result.scalars().all() if row]

    async def last_activity_at(self, user_id: str) -> Optional[datetime]:
        result = await self.session.execute(
            select(func.max(SessionModel.last_activity_at)).where(
                SessionModel.user_id == user_id,
                SessionModel.revoked_at.is_(None),
            )
        )
        return result.scalar_one_or_none()

    async def delete_stale(self, before: datetime) -> int:
        result = await self.session.execute(
            delete(SessionModel)
            .where(
                or_(
                    and_(SessionModel.revoked_at.is_not(None), SessionModel.revoked_at < before),
                    SessionModel.refresh_expires_at < before,
                    SessionModel.absolute_expires_at < before,
                )
            )
        )
        return result.rowcount or 0

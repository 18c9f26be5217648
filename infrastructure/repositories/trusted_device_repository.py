"""
受信任设备仓储实现
"""
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from domain.device.entity import TrustedDevice
from domain.device.repository import TrustedDeviceRepository
from infrastructure.models.base import new_uuid
from infrastructure.models.trusted_device import TrustedDeviceModel
from infrastructure.repositories.upsert import dialect_insert


class SQLAlchemyTrustedDeviceRepository(TrustedDeviceRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: TrustedDeviceModel) -> TrustedDevice:
        return TrustedDevice(
            id=model.id,
            user_id=model.user_id,
            device_id=model.device_id,
            expires_at=model.expires_at,
            device_fingerprint=model.device_fingerprint,
            device_name=model.device_name,
            ip_address=model.ip_address,
            user_agent=model.user_agent,
            last_used_at=model.last_used_at,
            created_at=model.created_at,
            revoked_at=model.revoked_at,
        )

    async def _find(self, user_id: str, device_id: str) -> Optional[TrustedDeviceModel]:
        result = await self.session.execute(
            select(TrustedDeviceModel).where(
                TrustedDeviceModel.user_id == user_id,
                TrustedDeviceModel.device_id == device_id,
            )
        )
        return result.scalar_one_or_none()

    async def get_active(self, user_id: str, device_id: str, now: datetime) -> Optional[TrustedDevice]:
        result = await self.session.execute(
            select(TrustedDeviceModel).where(
                TrustedDeviceModel.user_id == user_id,
                TrustedDeviceModel.device_id == device_id,
                TrustedDeviceModel.revoked_at.is_(None),
                TrustedDeviceModel.expires_at > now,
            )
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def upsert(self, device: TrustedDevice) -> TrustedDevice:
        table = TrustedDeviceModel.__table__
        stmt = dialect_insert(self.session, table).values(
            id=device.id or new_uuid(),
            user_id=device.user_id,
            device_id=device.device_id,
            device_fingerprint=device.device_fingerprint,
            device_name=device.device_name,
            ip_address=device.ip_address,
            user_agent=device.user_agent,
            expires_at=device.expires_at,
            last_used_at=device.last_used_at,
            created_at=device.created_at,
            revoked_at=None,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.user_id, table.c.device_id],
            set_={
                "device_fingerprint": stmt.excluded.device_fingerprint,
                "device_name": stmt.excluded.device_name,
                "ip_address": stmt.excluded.ip_address,
                "user_agent": stmt.excluded.user_agent,
                "expires_at": stmt.excluded.expires_at,
                "last_used_at": stmt.excluded.last_used_at,
                "revoked_at": None,
            },
        )
        await self.session.execute(stmt)
        model = await self._find(device.user_id, device.device_id)
        # 同一会话中可能已加载过旧行
        await self.session.refresh(model)
        return self._to_entity(model)

    async def touch(self, record_id: str, now: datetime) -> None:
        await self.session.execute(
            update(TrustedDeviceModel)
            .where(TrustedDeviceModel.id == record_id)
            .values(last_used_at=now)
        )

    async def revoke(self, user_id: str, device_id: str, now: datetime) -> bool:
        result = await self.session.execute(
            update(TrustedDeviceModel)
            .where(
                TrustedDeviceModel.user_id == user_id,
                TrustedDeviceModel.device_id == device_id,
                TrustedDeviceModel.revoked_at.is_(None),
            )
            .values(revoked_at=now)
        )
        return result.rowcount > 0

    async def revoke_all_for_user(self, user_id: str, now: datetime) -> int:
        result = await self.session.execute(
            update(TrustedDeviceModel)
            .where(TrustedDeviceModel.user_id == user_id, TrustedDeviceModel.revoked_at.is_(None))
            .values(revoked_at=now)
        )
        return result.rowcount or 0

    async def list_active_for_user(self, user_id: str, now: datetime) -> List[TrustedDevice]:
        result = await self.session.execute(
            select(TrustedDeviceModel)
            .where(
                TrustedDeviceModel.user_id == user_id,
                TrustedDeviceModel.revoked_at.is_(None),
                TrustedDeviceModel.expires_at > now,
            )
            .order_by(TrustedDeviceModel.created_at.desc())
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def exists(self, user_id: str, device_id: str) -> bool:
        result = await self.session.execute(
            select(TrustedDeviceModel.id)
            .where(TrustedDeviceModel.user_id == user_id, TrustedDeviceModel.device_id == device_id)
            .limit(1)
        )
        return result.scalar_one_or_none() is not None

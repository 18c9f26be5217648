"""
设备信任服务 - 受信任设备管理与风险信号（新设备 / 新国家 / 长期未活动）
"""
from datetime import timedelta
from typing import Callable, Optional

from application.dto import TrustedDeviceDTO
from application.services.audit_service import AuditService
from core.config import SecuritySettings, settings
from core.logging_config import get_logger
from domain.audit.entity import SecurityEventType
from domain.common.context import RequestContext
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.device.entity import DeviceInfo, TrustStatus, TrustedDevice
from shared.clock import Clock, utc_now

logger = get_logger(__name__)

LOCATION_HISTORY_DAYS = 30


class DeviceTrustService:

    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        audit: AuditService,
        config: Optional[SecuritySettings] = None,
        clock: Clock = utc_now,
    ):
        self._uow_factory = uow_factory
        self._audit = audit
        self._config = config or settings.security
        self._clock = clock

    async def is_trusted(
        self, user_id: str, device_id: Optional[str], fingerprint: Optional[str] = None
    ) -> TrustStatus:
        """指纹变化时仍视为受信任，但带上 fingerprint_changed 由调用方决定策略"""
        if not device_id:
            return TrustStatus(trusted=False)
        now = self._clock()
        async with self._uow_factory() as uow:
            record = await uow.trusted_device_repository.get_active(user_id, device_id, now)
            if record is None:
                return TrustStatus(trusted=False)
            await uow.trusted_device_repository.touch(record.id, now)

        changed = bool(fingerprint and record.device_fingerprint and fingerprint != record.device_fingerprint)
        if changed:
            logger.warning("trusted_device_fingerprint_changed", user_id=user_id, device_id=device_id)
        return TrustStatus(trusted=True, fingerprint_changed=changed, device_record_id=record.id)

    async def trust_device(
        self, user_id: str, device: DeviceInfo, context: Optional[RequestContext] = None
    ) -> TrustedDevice:
        context = context or RequestContext()
        now = self._clock()
        expires_at = now + timedelta(days=self._config.device_trust_days)
        async with self._uow_factory() as uow:
            record = await uow.trusted_device_repository.upsert(
                TrustedDevice(
                    id=None,
                    user_id=user_id,
                    device_id=device.device_id,
                    expires_at=expires_at,
                    device_fingerprint=device.fingerprint,
                    device_name=device.device_name,
                    ip_address=context.ip_address,
                    user_agent=context.user_agent,
                    last_used_at=now,
                    created_at=now,
                )
            )

        await self._audit.log(
            SecurityEventType.DEVICE_TRUSTED,
            success=True,
            user_id=user_id,
            device_id=device.device_id,
            context=context,
            details={"deviceName": device.device_name, "trustDays": self._config.device_trust_days},
        )
        return record

    async def revoke_device_trust(
        self,
        user_id: str,
        device_id: str,
        context: Optional[RequestContext] = None,
        admin_user_id: Optional[str] = None,
    ) -> bool:
        async with self._uow_factory() as uow:
            revoked = await uow.trusted_device_repository.revoke(user_id, device_id, self._clock())

        if revoked:
            await self._audit.log(
                SecurityEventType.DEVICE_REVOKED,
                success=True,
                user_id=user_id,
                device_id=device_id,
                context=context,
                details={"revokedBy": admin_user_id or user_id},
            )
        return revoked

    async def revoke_all_trusted_devices(
        self, user_id: str, context: Optional[RequestContext] = None, reason: str = "user_revoke"
    ) -> int:
        async with self._uow_factory() as uow:
            count = await uow.trusted_device_repository.revoke_all_for_user(user_id, self._clock())

        await self._audit.log(
            SecurityEventType.DEVICE_REVOKED,
            success=True,
            user_id=user_id,
            context=context,
            details={"reason": reason, "devicesRevoked": count, "revokedAll": True},
        )
        return count

    async def list_trusted_devices(self, user_id: str) -> list[TrustedDeviceDTO]:
        async with self._uow_factory(readonly=True) as uow:
            records = await uow.trusted_device_repository.list_active_for_user(user_id, self._clock())
        return [TrustedDeviceDTO.model_validate(r) for r in records]

    async def is_new_device(self, user_id: str, device_id: Optional[str]) -> bool:
        """该设备从未出现在会话或受信任设备记录中"""
        if not device_id:
            return True
        async with self._uow_factory(readonly=True) as uow:
            if await uow.session_repository.exists_for_device(user_id, device_id):
                return False
            return not await uow.trusted_device_repository.exists(user_id, device_id)

    async def has_location_changed(self, user_id: str, country_code: Optional[str]) -> bool:
        """没有历史时不算变化"""
        if not country_code:
            return False
        since = self._clock() - timedelta(days=LOCATION_HISTORY_DAYS)
        async with self._uow_factory(readonly=True) as uow:
            countries = await uow.session_repository.recent_countries(user_id, since)
        if not countries:
            return False
        return country_code.upper() not in {c.upper() for c in countries}

    async def has_been_inactive(self, user_id: str, days: Optional[int] = None) -> bool:
        """最近会话活动（无则取 last_login_at）早于阈值，或从无记录"""
        threshold_days = self._config.mfa_inactivity_days if days is None else days
        async with self._uow_factory(readonly=True) as uow:
            last_activity = await uow.session_repository.last_activity_at(user_id)
            if last_activity is None:
                user = await uow.user_repository.get_by_id(user_id)
                last_activity = user.last_login_at if user else None
        if last_activity is None:
            return True
        return last_activity < self._clock() - timedelta(days=threshold_days)

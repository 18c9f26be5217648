"""
MFA 仓储实现 - 设置与验证码挑战
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from domain.mfa.entity import MfaChallenge, MfaSettings
from domain.mfa.repository import MfaChallengeRepository, MfaSettingsRepository
from infrastructure.models.base import new_uuid
from infrastructure.models.mfa import MfaChallengeModel, MfaSettingsModel
from infrastructure.repositories.upsert import dialect_insert


class SQLAlchemyMfaSettingsRepository(MfaSettingsRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: MfaSettingsModel) -> MfaSettings:
        return MfaSettings(
            user_id=model.user_id,
            email_otp_enabled=bool(model.email_otp_enabled),
            totp_enabled=bool(model.totp_enabled),
            webauthn_enabled=bool(model.webauthn_enabled),
            preferred_method=model.preferred_method,
            require_mfa_always=bool(model.require_mfa_always),
        )

    async def _load(self, user_id: str) -> Optional[MfaSettingsModel]:
        result = await self.session.execute(
            select(MfaSettingsModel).where(MfaSettingsModel.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def get(self, user_id: str) -> Optional[MfaSettings]:
        model = await self._load(user_id)
        return self._to_entity(model) if model else None

    async def set_email_otp(self, user_id: str, enabled: bool, now: datetime) -> MfaSettings:
        table = MfaSettingsModel.__table__
        stmt = dialect_insert(self.session, table).values(
            user_id=user_id,
            email_otp_enabled=enabled,
            totp_enabled=False,
            webauthn_enabled=False,
            preferred_method="email",
            require_mfa_always=False,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.user_id],
            set_={"email_otp_enabled": enabled, "updated_at": now},
        )
        await self.session.execute(stmt)
        model = await self._load(user_id)
        await self.session.refresh(model)
        return self._to_entity(model)


class SQLAlchemyMfaChallengeRepository(MfaChallengeRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: MfaChallengeModel) -> MfaChallenge:
        return MfaChallenge(
            id=model.id,
            user_id=model.user_id,
            otp_hash=model.otp_hash,
            expires_at=model.expires_at,
            max_attempts=model.max_attempts,
            attempts=model.attempts or 0,
            challenge_type=model.challenge_type,
            session_id=model.session_id,
            trigger_reason=model.trigger_reason,
            ip_address=model.ip_address,
            user_agent=model.user_agent,
            verified_at=model.verified_at,
            created_at=model.created_at,
        )

    async def expire_pending_for_user(self, user_id: str, now: datetime) -> int:
        result = await self.session.execute(
            update(MfaChallengeModel)
            .where(
                MfaChallengeModel.user_id == user_id,
                MfaChallengeModel.verified_at.is_(None),
                MfaChallengeModel.expires_at > now,
            )
            .values(expires_at=now)
        )
        return result.rowcount or 0

    async def create(self, challenge: MfaChallenge) -> MfaChallenge:
        model = MfaChallengeModel(
            id=challenge.id or new_uuid(),
            user_id=challenge.user_id,
            session_id=challenge.session_id,
            challenge_type=challenge.challenge_type,
            otp_hash=challenge.otp_hash,
            expires_at=challenge.expires_at,
            attempts=challenge.attempts,
            max_attempts=challenge.max_attempts,
            trigger_reason=challenge.trigger_reason,
            ip_address=challenge.ip_address,
            user_agent=challenge.user_agent,
            created_at=challenge.created_at,
        )
        self.session.add(model)
        await self.session.flush()
        return self._to_entity(model)

    async def get_by_id(self, challenge_id: str, *, for_update: bool = False) -> Optional[MfaChallenge]:
        stmt = select(MfaChallengeModel).where(MfaChallengeModel.id == challenge_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def increment_attempts(self, challenge_id: str) -> None:
        await self.session.execute(
            update(MfaChallengeModel)
            .where(MfaChallengeModel.id == challenge_id)
            .values(attempts=MfaChallengeModel.attempts + 1)
        )

    async def mark_verified(self, challenge_id: str, now: datetime) -> None:
        await self.session.execute(
            update(MfaChallengeModel)
            .where(MfaChallengeModel.id == challenge_id)
            .values(verified_at=now)
        )

    async def replace_code(self, challenge_id: str, otp_hash: str) -> None:
        await self.session.execute(
            update(MfaChallengeModel)
            .where(MfaChallengeModel.id == challenge_id)
            .values(otp_hash=otp_hash, attempts=0)
        )

    async def count_live_for_user(self, user_id: str, now: datetime) -> int:
        result = await self.session.execute(
            select(func.count(MfaChallengeModel.id)).where(
                MfaChallengeModel.user_id == user_id,
                MfaChallengeModel.verified_at.is_(None),
                MfaChallengeModel.expires_at > now,
                MfaChallengeModel.attempts < MfaChallengeModel.max_attempts,
            )
        )
        return int(result.scalar_one() or 0)

    async def delete_expired_before(self, before: datetime) -> int:
        result = await self.session.execute(
            delete(MfaChallengeModel)
            .where(MfaChallengeModel.expires_at < before)
        )
        return result.rowcount or 0

"""
MFA 仓储接口
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from .entity import MfaChallenge, MfaSettings


class MfaSettingsRepository(ABC):

    @abstractmethod
    async def get(self, user_id: str) -> Optional[MfaSettings]:
        pass

    @abstractmethod
    async def set_email_otp(self, user_id: str, enabled: bool, now: datetime) -> MfaSettings:
        """upsert email OTP 开关"""
        pass


class MfaChallengeRepository(ABC):

    @abstractmethod
    async def expire_pending_for_user(self, user_id: str, now: datetime) -> int:
        """将用户所有未验证挑战的 expires_at 设为 now"""
        pass

    @abstractmethod
    async def create(self, challenge: MfaChallenge) -> MfaChallenge:
        pass

    @abstractmethod
    async def get_by_id(self, challenge_id: str, *, for_update: bool = False) -> Optional[MfaChallenge]:
        pass

    @abstractmethod
    async def increment_attempts(self, challenge_id: str) -> None:
        pass

    @abstractmethod
    async def mark_verified(self, challenge_id: str, now: datetime) -> None:
        pass

    @abstractmethod
    async def replace_code(self, challenge_id: str, otp_hash: str) -> None:
        """替换验证码并将 attempts 归零"""
        pass

    @abstractmethod
    async def count_live_for_user(self, user_id: str, now: datetime) -> int:
        pass

    @abstractmethod
    async def delete_expired_before(self, before: datetime) -> int:
        pass

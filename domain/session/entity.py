"""
会话领域实体

一个会话即一条刷新令牌链：每次刷新替换 ``refresh_token_hash``，
``token_family_id`` 在整个生命周期内保持不变。
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional


@dataclass
class Session:
    id: str
    user_id: str
    token_family_id: str
    refresh_token_hash: str
    refresh_expires_at: datetime
    absolute_expires_at: datetime
    last_activity_at: datetime
    device_id: Optional[str] = None
    device_fingerprint: Optional[str] = None
    device_name: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    country_code: Optional[str] = None
    city: Optional[str] = None
    is_trusted: bool = False
    trust_until: Optional[datetime] = None
    previous_refresh_token_hash: Optional[str] = None
    refreshed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    revoked_at: Optional[datetime] = None
    revoked_reason: Optional[str] = None

    @property
    def is_revoked(self) -> bool:
        return self.revoked_at is not None

    def unusable_reason(self, now: datetime) -> Optional[str]:
        if self.revoked_at is not None:
            return "revoked"
        if now >= self.refresh_expires_at:
            return "expired"
        if now >= self.absolute_expires_at:
            return "absolute_expiry"
        return None

    def rotated_within(self, now: datetime, seconds: int) -> bool:
        """最近一次轮转距今不超过 seconds 秒"""
        if seconds <= 0 or self.refreshed_at is None:
            return False
        return now - self.refreshed_at <= timedelta(seconds=seconds)

    def next_refresh_expiry(self, now: datetime, refresh_ttl: timedelta) -> datetime:
        """新的刷新期限不能超过绝对期限"""
        return min(now + refresh_ttl, self.absolute_expires_at)

    @property
    def location(self) -> str:
        parts = [p for p in (self.city, self.country_code) if p]
        return ", ".join(parts) or "Unknown"

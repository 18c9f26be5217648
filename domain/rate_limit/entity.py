"""
限流领域 - 作用域、记录与判定规则
"""
from __future__ import annotations

import hashlib
import hmac
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional


class RateLimitScope(str, Enum):
    LOGIN_IP = "login_ip"
    LOGIN_USER = "login_user"
    MFA_USER = "mfa_user"
    PASSWORD_RESET_IP = "password_reset_ip"

    @property
    def is_ip_keyed(self) -> bool:
        return self in (RateLimitScope.LOGIN_IP, RateLimitScope.PASSWORD_RESET_IP)


def rate_limit_key(scope: RateLimitScope, identifier: str, secret: str) -> str:
    """IP 类作用域使用 HMAC-SHA256 哈希（取前 32 位），其余统一小写"""
    if scope.is_ip_keyed:
        digest = hmac.new(secret.encode("utf-8"), identifier.encode("utf-8"), hashlib.sha256)
        return digest.hexdigest()[:32]
    return identifier.strip().lower()


@dataclass
class RateLimitRecord:
    limit_key: str
    scope: RateLimitScope
    attempts: int
    first_attempt_at: datetime
    last_attempt_at: datetime
    locked_until: Optional[datetime] = None

    def is_locked(self, now: datetime) -> bool:
        return self.locked_until is not None and now < self.locked_until

    def window_expired(self, now: datetime, window: timedelta) -> bool:
        return now > self.first_attempt_at + window


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    retry_after: Optional[int] = None
    locked: bool = False


def seconds_until(now: datetime, until: datetime) -> int:
    return max(0, math.ceil((until - now).total_seconds()))


@dataclass(frozen=True)
class LockStatus:
    locked: bool
    until: Optional[datetime] = None
    retry_after: Optional[int] = None

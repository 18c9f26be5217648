"""
设备领域 - 设备识别、指纹与受信任设备实体
"""
from __future__ import annotations

import hashlib
import secrets
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

UNKNOWN = "Unknown"
UNKNOWN_DEVICE = "Unknown Device"

# 顺序敏感：Edge/Opera 的 UA 同样包含 chrome/safari
_BROWSER_RULES: tuple[tuple[tuple[str, ...], str], ...] = (
    (("firefox",), "Firefox"),
    (("edg/",), "Edge"),
    (("chrome",), "Chrome"),
    (("safari",), "Safari"),
    (("opera", "opr"), "Opera"),
)

_OS_RULES: tuple[tuple[tuple[str, ...], str], ...] = (
    (("windows",), "Windows"),
    (("mac os x", "macos"), "macOS"),
    (("linux",), "Linux"),
    (("android",), "Android"),
    (("iphone", "ipad"), "iOS"),
    (("cros",), "ChromeOS"),
)


@dataclass(frozen=True)
class UserAgentInfo:
    browser: str
    os: str
    device_label: str


def _first_match(ua: str, rules) -> str:
    for needles, name in rules:
        if any(n in ua for n in needles):
            return name
    return UNKNOWN


def parse_user_agent(user_agent: Optional[str]) -> UserAgentInfo:
    """按固定顺序的子串匹配解析浏览器与操作系统"""
    if not user_agent:
        return UserAgentInfo(browser=UNKNOWN, os=UNKNOWN, device_label=UNKNOWN_DEVICE)
    ua = user_agent.lower()
    browser = _first_match(ua, _BROWSER_RULES)
    os_name = _first_match(ua, _OS_RULES)
    return UserAgentInfo(browser=browser, os=os_name, device_label=f"{browser} on {os_name}")


@dataclass(frozen=True)
class DeviceCharacteristics:
    user_agent: Optional[str] = None
    accept_language: Optional[str] = None
    screen_resolution: Optional[str] = None
    timezone: Optional[str] = None
    platform: Optional[str] = None


def derive_fingerprint(characteristics: DeviceCharacteristics) -> str:
    """SHA-256(小写后以 | 连接的特征)，取前 32 位十六进制"""
    parts = (
        characteristics.user_agent,
        characteristics.accept_language,
        characteristics.screen_resolution,
        characteristics.timezone,
        characteristics.platform,
    )
    data = "|".join((p or "").lower() for p in parts)
    return hashlib.sha256(data.encode("utf-8")).hexdigest()[:32]


def generate_device_id() -> str:
    return secrets.token_hex(16)


@dataclass(frozen=True)
class DeviceInfo:
    """一次请求所识别出的设备"""

    device_id: str
    fingerprint: str
    device_name: str = UNKNOWN_DEVICE
    browser: str = UNKNOWN
    os: str = UNKNOWN

    @classmethod
    def from_client(
        cls,
        characteristics: DeviceCharacteristics,
        *,
        device_id: Optional[str] = None,
        fingerprint: Optional[str] = None,
    ) -> "DeviceInfo":
        """客户端提供的 device_id / 指纹优先，否则生成或推导"""
        parsed = parse_user_agent(characteristics.user_agent)
        return cls(
            device_id=device_id or generate_device_id(),
            fingerprint=fingerprint or derive_fingerprint(characteristics),
            device_name=parsed.device_label,
            browser=parsed.browser,
            os=parsed.os,
        )


@dataclass
class TrustedDevice:
    """受信任设备 - (user_id, device_id) 唯一"""

    id: Optional[str]
    user_id: str
    device_id: str
    expires_at: datetime
    device_fingerprint: Optional[str] = None
    device_name: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    last_used_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    revoked_at: Optional[datetime] = None


@dataclass(frozen=True)
class TrustStatus:
    trusted: bool
    fingerprint_changed: bool = False
    device_record_id: Optional[str] = None

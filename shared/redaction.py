"""Sensitive key detection shared by the audit sanitizer and log redaction."""
from typing import Any

SENSITIVE_KEY_FRAGMENTS = (
    "password",
    "token",
    "secret",
    "key",
    "hash",
    "otp",
    "code",
    "credential",
    "authorization",
    "cookie",
)


def is_sensitive_key(key: Any) -> bool:
    """True when the lowercased key contains any sensitive fragment."""
    lowered = str(key).lower()
    return any(fragment in lowered for fragment in SENSITIVE_KEY_FRAGMENTS)


__all__ = ["SENSITIVE_KEY_FRAGMENTS", "is_sensitive_key"]

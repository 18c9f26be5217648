"""
密码策略 - 强度校验与评分（纯函数，无 IO）
"""
from __future__ import annotations

import re
import secrets
from dataclasses import dataclass, field
from typing import Optional

from core.config import PasswordPolicySettings

SPECIAL_CHARS = r"""!@#$%^&*()_+\-=\[\]{};':"\\|,.<>/?`~"""
_SPECIAL_RE = re.compile(f"[{SPECIAL_CHARS}]")

# 精简版常见密码表，大小写不敏感
COMMON_PASSWORDS = frozenset({
    "password123456",
    "123456789012",
    "qwertyuiop12",
    "letmein123456",
    "welcome12345",
    "admin1234567",
    "password1234",
    "changeme1234",
    "iloveyou1234",
    "sunshine1234",
    "princess1234",
    "football1234",
    "monkey1234567",
    "shadow12345678",
    "master12345678",
})

SEQUENCES = (
    "0123456789",
    "abcdefghijklmnopqrstuvwxyz",
    "qwertyuiop",
    "asdfghjkl",
    "zxcvbnm",
)


class PasswordError:
    """校验错误码"""

    REQUIRED = "password_required"
    TOO_SHORT = "too_short"
    MISSING_UPPERCASE = "missing_uppercase"
    MISSING_LOWERCASE = "missing_lowercase"
    MISSING_NUMBER = "missing_number"
    MISSING_SPECIAL = "missing_special"
    COMMON = "common_password"
    CONTAINS_EMAIL = "contains_email"
    CONTAINS_FIRST_NAME = "contains_first_name"
    CONTAINS_LAST_NAME = "contains_last_name"
    REPEATED = "repeated_characters"
    SEQUENTIAL = "sequential_characters"


@dataclass(frozen=True)
class PasswordHints:
    """用于检测密码是否包含个人信息"""

    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None


@dataclass
class PasswordValidation:
    valid: bool
    errors: list[str] = field(default_factory=list)


def has_sequential_chars(password: str, min_length: int = 4) -> bool:
    """是否包含长度为 min_length 的正序或逆序序列（数字、字母表、键盘行）"""
    lower = password.lower()
    for seq in SEQUENCES:
        for i in range(len(seq) - min_length + 1):
            forward = seq[i:i + min_length]
            if forward in lower or forward[::-1] in lower:
                return True
    return False


def _has_repeats(password: str, run: int) -> bool:
    return re.search(r"(.)\1{%d,}" % (run - 1), password) is not None


def validate_password(
    password: str,
    hints: Optional[PasswordHints] = None,
    policy: Optional[PasswordPolicySettings] = None,
) -> PasswordValidation:
    policy = policy or PasswordPolicySettings()
    if not password:
        return PasswordValidation(valid=False, errors=[PasswordError.REQUIRED])

    errors: list[str] = []
    if len(password) < policy.min_length:
        errors.append(PasswordError.TOO_SHORT)
    if policy.require_uppercase and not re.search(r"[A-Z]", password):
        errors.append(PasswordError.MISSING_UPPERCASE)
    if policy.require_lowercase and not re.search(r"[a-z]", password):
        errors.append(PasswordError.MISSING_LOWERCASE)
    if policy.require_number and not re.search(r"[0-9]", password):
        errors.append(PasswordError.MISSING_NUMBER)
    if policy.require_special and not _SPECIAL_RE.search(password):
        errors.append(PasswordError.MISSING_SPECIAL)

    lower = password.lower()
    if lower in COMMON_PASSWORDS:
        errors.append(PasswordError.COMMON)

    hints = hints or PasswordHints()
    if hints.email:
        local_part = hints.email.split("@")[0].lower()
        if len(local_part) >= 3 and local_part in lower:
            errors.append(PasswordError.CONTAINS_EMAIL)
    if hints.first_name and len(hints.first_name) >= 3 and hints.first_name.lower() in lower:
        errors.append(PasswordError.CONTAINS_FIRST_NAME)
    if hints.last_name and len(hints.last_name) >= 3 and hints.last_name.lower() in lower:
        errors.append(PasswordError.CONTAINS_LAST_NAME)

    if _has_repeats(password, 4):
        errors.append(PasswordError.REPEATED)
    if has_sequential_chars(password, 4):
        errors.append(PasswordError.SEQUENTIAL)

    return PasswordValidation(valid=not errors, errors=errors)


def password_strength(password: str) -> int:
    """0..100 的强度评分"""
    if not password:
        return 0

    score = min(len(password) * 2, 30)

    classes = [
        bool(re.search(r"[a-z]", password)),
        bool(re.search(r"[A-Z]", password)),
        bool(re.search(r"[0-9]", password)),
        bool(re.search(r"[^a-zA-Z0-9]", password)),
    ]
    score += 10 * sum(classes)
    score += 5 * sum(classes)

    if _has_repeats(password, 3):
        score -= 10
    if has_sequential_chars(password, 3):
        score -= 10
    if password.lower() in COMMON_PASSWORDS:
        score -= 30

    return max(0, min(100, score))


def strength_label(score: int) -> str:
    if score < 30:
        return "Weak"
    if score < 50:
        return "Fair"
    if score < 70:
        return "Good"
    if score < 90:
        return "Strong"
    return "Excellent"


def generate_secure_password(length: int = 16) -> str:
    lowercase = "abcdefghijklmnopqrstuvwxyz"
    uppercase = "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
    numbers = "0123456789"
    special = "!@#$%^&*()_+-=[]{}|;:,.<>?"
    pool = lowercase + uppercase + numbers + special

    chars = [
        secrets.choice(lowercase),
        secrets.choice(uppercase),
        secrets.choice(numbers),
        secrets.choice(special),
    ]
    chars.extend(secrets.choice(pool) for _ in range(max(length, 4) - len(chars)))
    secrets.SystemRandom().shuffle(chars)
    return "".join(chars)


def password_requirements(policy: Optional[PasswordPolicySettings] = None) -> dict:
    policy = policy or PasswordPolicySettings()
    parts = [
        label
        for enabled, label in (
            (policy.require_uppercase, "uppercase"),
            (policy.require_lowercase, "lowercase"),
            (policy.require_number, "number"),
            (policy.require_special, "special character"),
        )
        if enabled
    ]
    return {
        "min_length": policy.min_length,
        "require_uppercase": policy.require_uppercase,
        "require_lowercase": policy.require_lowercase,
        "require_number": policy.require_number,
        "require_special": policy.require_special,
        "description": (
            f"Password must be at least {policy.min_length} characters and include {', '.join(parts)}."
        ),
    }

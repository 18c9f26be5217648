"""Infrastructure models package exports."""
from .base import Base, metadata
from .user import UserModel
from .session import SessionModel
from .trusted_device import TrustedDeviceModel
from .mfa import MfaChallengeModel, MfaSettingsModel
from .rate_limit import RateLimitModel
from .audit_log import SecurityAuditLogModel

__all__ = [
    "Base",
    "metadata",
    "UserModel",
    "SessionModel",
    "TrustedDeviceModel",
    "MfaChallengeModel",
    "MfaSettingsModel",
    "RateLimitModel",
    "SecurityAuditLogModel",
]

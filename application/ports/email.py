"""Application-owned email port.

The MFA engine only needs ``send`` and ``is_configured``; the transport
(Mailgun, SMTP, a test stub) lives in infrastructure.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol, runtime_checkable


@dataclass(frozen=True)
class EmailMessage:
    to: str
    subject: str
    text: str
    html: Optional[str] = None


@dataclass(frozen=True)
class EmailSendResult:
    id: Optional[str]
    message: Optional[str] = None


class EmailDeliveryError(Exception):
    """邮件服务拒绝或无法投递"""


@runtime_checkable
class EmailSender(Protocol):

    def is_configured(self) -> bool:
        """未配置时调用方应记录日志并继续，而不是失败"""
        ...

    async def send(self, message: EmailMessage) -> EmailSendResult:
        """发送邮件；失败抛出 EmailDeliveryError"""
        ...

"""
Mailgun 邮件发送适配器

``POST {base_url}/v3/{domain}/messages``，表单提交，HTTP Basic 认证（用户名固定为 ``api``）。
"""
from typing import Optional

import httpx

from application.ports.email import EmailDeliveryError, EmailMessage, EmailSendResult
from core.config import MailgunSettings, settings
from core.logging_config import get_logger
from infrastructure.external.api_clients.base import APIError, BaseAPIClient

logger = get_logger(__name__)


class MailgunEmailSender(BaseAPIClient):
    def __init__(
        self,
        config: Optional[MailgunSettings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._config = config or settings.mailgun
        super().__init__(
            base_url=self._config.base_url,
            timeout=self._config.timeout,
            max_retries=self._config.max_retries,
            auth=("api", self._config.api_key or ""),
            transport=transport,
        )

    def is_configured(self) -> bool:
        return bool(self._config.api_key and self._config.domain)

    async def send(self, message: EmailMessage) -> EmailSendResult:
        if not self.is_configured():
            raise EmailDeliveryError("Mailgun is not configured")

        form = {
            "from": self._config.from_address,
            "to": message.to,
            "subject": message.subject,
            "text": message.text,
        }
        if message.html:
            form["html"] = message.html

        try:
            response = await self.post(f"/v3/{self._config.domain}/messages", data=form)
        except APIError as exc:
            logger.error("mailgun_send_failed", status_code=exc.status_code, error=exc.message)
            raise EmailDeliveryError(exc.message) from exc

        data = response.data if isinstance(response.data, dict) else {}
        logger.info("mailgun_sent", message_id=data.get("id"))
        return EmailSendResult(id=data.get("id"), message=data.get("message"))

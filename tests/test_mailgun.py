import base64
from urllib.parse import parse_qs

import httpx
import pytest

from application.ports.email import EmailDeliveryError, EmailMessage
from core.config import MailgunSettings
from infrastructure.external.email import MailgunEmailSender

MESSAGE = EmailMessage(to="alice@example.com", subject="Code", text="123456", html="<b>123456</b>")


def _settings(**overrides) -> MailgunSettings:
    values = {"api_key": "key-123", "domain": "mg.example.com", "max_retries": 0}
    values.update(overrides)
    return MailgunSettings(**values)


async def test_send_posts_form():
    captured = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(200, json={"id": "<abc@mg.example.com>", "message": "Queued. Thank you."})

    async with MailgunEmailSender(_settings(), transport=httpx.MockTransport(handler)) as sender:
        result = await sender.send(MESSAGE)

    assert result.id == "<abc@mg.example.com>"
    [request] = captured
    assert request.method == "POST"
    assert request.url.path == "/v3/mg.example.com/messages"
    assert request.headers["authorization"] == "Basic " + base64.b64encode(b"api:key-123").decode()
    form = parse_qs(request.content.decode())
    assert form["to"] == ["alice@example.com"]
    assert form["from"] == ["Anchor <no-reply@anchor.local>"]
    assert form["html"] == ["<b>123456</b>"]


@pytest.mark.parametrize("status", [400, 500])
async def test_rejection_raises_delivery_error(status):
    transport = httpx.MockTransport(lambda request: httpx.Response(status, json={"message": "Forbidden"}))
    async with MailgunEmailSender(_settings(), transport=transport) as sender:
        with pytest.raises(EmailDeliveryError):
            await sender.send(MESSAGE)


async def test_server_errors_are_retried():
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) == 1:
            return httpx.Response(503)
        return httpx.Response(200, json={"id": "<retry@mg>", "message": "Queued"})

    sender = MailgunEmailSender(_settings(max_retries=1), transport=httpx.MockTransport(handler))
    sender.retry_delay = 0
    try:
        result = await sender.send(MESSAGE)
    finally:
        await sender.close()

    assert len(calls) == 2
    assert result.id == "<retry@mg>"


async def test_unconfigured():
    sender = MailgunEmailSender(MailgunSettings())
    assert not sender.is_configured()
    with pytest.raises(EmailDeliveryError):
        await sender.send(MESSAGE)

from datetime import datetime, timezone
from http import HTTPStatus

import pytest

from core.exceptions import to_error_response
from domain.common.exceptions import (
    REAUTH_MESSAGE,
    AccountLockedException,
    InvalidTokenException,
    MfaExceededException,
    RateLimitedException,
    RefreshExpiredException,
    SessionExpiredException,
    SessionRevokedException,
)
from shared.codes import BusinessCode


def test_account_locked():
    until = datetime(2025, 1, 1, 0, 30, tzinfo=timezone.utc)
    status, body = to_error_response(AccountLockedException(until, 1800), request_id="req-1")

    assert status is HTTPStatus.LOCKED
    assert body.code == BusinessCode.ACCOUNT_LOCKED
    assert body.error.details == {"locked_until": until.isoformat(), "retry_after": 1800}
    assert body.error.request_id == "req-1"


def test_rate_limited():
    status, body = to_error_response(RateLimitedException(900, "login_ip"))
    assert status is HTTPStatus.TOO_MANY_REQUESTS
    assert body.error.details == {"retry_after": 900}


def test_mfa_exceeded_is_429():
    status, _ = to_error_response(MfaExceededException())
    assert status is HTTPStatus.TOO_MANY_REQUESTS


@pytest.mark.parametrize(
    "exc",
    [InvalidTokenException(), SessionRevokedException("logout"), RefreshExpiredException(), SessionExpiredException()],
)
def test_refresh_failures_share_message(exc):
    status, body = to_error_response(exc)
    assert status is HTTPStatus.UNAUTHORIZED
    assert body.message == REAUTH_MESSAGE


def test_refresh_failures_are_indistinguishable():
    failures = [
        InvalidTokenException(reuse_detected=True),
        SessionRevokedException("logout"),
        RefreshExpiredException(),
        SessionExpiredException(),
    ]
    payloads = set()
    for exc in failures:
        status, body = to_error_response(exc, request_id="req-1")
        payloads.add(
            (
                status,
                body.code,
                body.message,
                body.error.type,
                body.error.message_key,
                repr(body.error.details),
            )
        )

    assert len(payloads) == 1
    status, code, _, error_type, _, details = payloads.pop()
    assert status is HTTPStatus.UNAUTHORIZED
    assert code == BusinessCode.TOKEN_INVALID
    assert error_type == "ReauthenticationRequired"
    assert details == "None"


def test_unexpected_errors_are_generic():
    status, body = to_error_response(RuntimeError("connection to db-primary:5432 refused"))

    assert status is HTTPStatus.INTERNAL_SERVER_ERROR
    assert body.code == BusinessCode.SYSTEM_ERROR
    assert body.message == "Internal server error"
    assert "db-primary" not in body.model_dump_json()

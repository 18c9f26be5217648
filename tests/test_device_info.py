import hashlib

import pytest

from domain.device.entity import (
    UNKNOWN_DEVICE,
    DeviceCharacteristics,
    DeviceInfo,
    derive_fingerprint,
    parse_user_agent,
)

CHROME_MAC = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
EDGE_WINDOWS = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36 Edg/120.0.2210.91"
)
FIREFOX_WINDOWS = "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0"


@pytest.mark.parametrize(
    "user_agent, label",
    [
        (CHROME_MAC, "Chrome on macOS"),
        (EDGE_WINDOWS, "Edge on Windows"),
        (FIREFOX_WINDOWS, "Firefox on Windows"),
        ("curl/8.4.0", "Unknown on Unknown"),
        (None, UNKNOWN_DEVICE),
    ],
)
def test_parse_user_agent(user_agent, label):
    assert parse_user_agent(user_agent).device_label == label


def test_fingerprint_is_case_insensitive():
    upper = DeviceCharacteristics(user_agent=CHROME_MAC.upper(), accept_language="EN-US", timezone="UTC")
    lower = DeviceCharacteristics(user_agent=CHROME_MAC.lower(), accept_language="en-us", timezone="utc")

    assert derive_fingerprint(upper) == derive_fingerprint(lower)
    expected = hashlib.sha256(f"{CHROME_MAC.lower()}|en-us||utc|".encode()).hexdigest()[:32]
    assert derive_fingerprint(lower) == expected


def test_from_client_prefers_supplied_identifiers():
    chars = DeviceCharacteristics(user_agent=CHROME_MAC)

    supplied = DeviceInfo.from_client(chars, device_id="dev-1", fingerprint="fp-1")
    assert (supplied.device_id, supplied.fingerprint) == ("dev-1", "fp-1")
    assert (supplied.browser, supplied.os) == ("Chrome", "macOS")

    derived = DeviceInfo.from_client(chars)
    assert len(derived.device_id) == 32
    assert derived.fingerprint == derive_fingerprint(chars)
    assert DeviceInfo.from_client(chars).device_id != derived.device_id

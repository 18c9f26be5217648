from dataclasses import replace
from datetime import timedelta

import pytest

from domain.common.context import RequestContext

pytestmark = pytest.mark.asyncio


async def test_trusted_device_round_trip(core, make_user, device, context, clock):
    user = await make_user()
    assert not (await core.device_trust.is_trusted(user.id, device.device_id)).trusted

    record = await core.device_trust.trust_device(user.id, device, context)
    assert record.expires_at == clock() + timedelta(days=30)

    status = await core.device_trust.is_trusted(user.id, device.device_id, device.fingerprint)
    assert status.trusted
    assert not status.fingerprint_changed

    [event] = await core.audit.get_user_audit_logs(user.id, event_type="device_trusted")
    assert event.details == {"deviceName": "Chrome on macOS", "trustDays": 30}


async def test_fingerprint_change_is_flagged(core, make_user, device, context):
    user = await make_user()
    await core.device_trust.trust_device(user.id, device, context)

    status = await core.device_trust.is_trusted(user.id, device.device_id, "fp-other")
    assert status.trusted
    assert status.fingerprint_changed


async def test_trust_expires(core, make_user, device, context, clock):
    user = await make_user()
    await core.device_trust.trust_device(user.id, device, context)

    clock.advance(days=29, hours=23)
    assert (await core.device_trust.is_trusted(user.id, device.device_id)).trusted
    clock.advance(hours=1)
    assert not (await core.device_trust.is_trusted(user.id, device.device_id)).trusted


async def test_revoke_and_retrust(core, make_user, device, context):
    user = await make_user()
    await core.device_trust.trust_device(user.id, device, context)

    assert await core.device_trust.revoke_device_trust(user.id, device.device_id, context)
    assert not (await core.device_trust.is_trusted(user.id, device.device_id)).trusted
    assert not await core.device_trust.revoke_device_trust(user.id, device.device_id, context)

    # 再次信任同一设备会复用记录并清除撤销时间
    await core.device_trust.trust_device(user.id, device, context)
    assert (await core.device_trust.is_trusted(user.id, device.device_id)).trusted
    assert len(await core.device_trust.list_trusted_devices(user.id)) == 1


async def test_revoke_all_trusted_devices(core, make_user, device, context):
    user = await make_user()
    await core.device_trust.trust_device(user.id, device, context)
    await core.device_trust.trust_device(user.id, replace(device, device_id="d2"), context)

    assert await core.device_trust.revoke_all_trusted_devices(user.id, context) == 2
    assert await core.device_trust.list_trusted_devices(user.id) == []


async def test_new_device_detection(core, make_user, device, context):
    user = await make_user()
    assert await core.device_trust.is_new_device(user.id, device.device_id)
    assert await core.device_trust.is_new_device(user.id, None)

    await core.tokens.create_session(user, device, context)
    assert not await core.device_trust.is_new_device(user.id, device.device_id)
    assert await core.device_trust.is_new_device(user.id, "d2")


async def test_location_change(core, make_user, device, context, clock):
    user = await make_user()
    # 没有历史时不算变化
    assert not await core.device_trust.has_location_changed(user.id, "CA")

    await core.tokens.create_session(user, device, context)
    assert not await core.device_trust.has_location_changed(user.id, "us")
    assert await core.device_trust.has_location_changed(user.id, "CA")
    assert not await core.device_trust.has_location_changed(user.id, None)

    clock.advance(days=31)
    assert not await core.device_trust.has_location_changed(user.id, "CA")


async def test_inactivity(core, make_user, device, clock):
    user = await make_user()
    assert await core.device_trust.has_been_inactive(user.id)

    await core.tokens.create_session(user, device, RequestContext(country_code="US"))
    assert not await core.device_trust.has_been_inactive(user.id)

    clock.advance(days=31)
    assert await core.device_trust.has_been_inactive(user.id)


async def test_inactivity_falls_back_to_last_login(core, make_user, clock):
    user = await make_user(last_login_at=clock())
    assert not await core.device_trust.has_been_inactive(user.id)

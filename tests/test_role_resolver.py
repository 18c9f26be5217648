import pytest

from infrastructure.adapters.role_resolver import LegacyRoleResolver


class FakeMonotonic:
    def __init__(self):
        self.value = 1000.0

    def __call__(self) -> float:
        return self.value


@pytest.fixture
def monotonic():
    return FakeMonotonic()


@pytest.fixture
def resolver(uow_factory, monotonic):
    return LegacyRoleResolver(uow_factory, cache_seconds=60, monotonic=monotonic)


@pytest.mark.parametrize(
    "role, expected",
    [(None, "client"), ("", "client"), ("editor", "admin"), ("Client", "client"), ("superadmin", "superadmin")],
)
async def test_static_mapping(resolver, role, expected):
    assert await resolver.resolve(role) == expected


async def test_admin_promotion_is_cached(resolver, monotonic, make_user):
    assert await resolver.resolve("admin") == "superadmin"

    await make_user(email="root@example.com", role="superadmin")
    monotonic.value += 30
    assert await resolver.resolve("admin") == "superadmin"

    monotonic.value += 31
    assert await resolver.resolve("admin") == "admin"

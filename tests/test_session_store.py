"""Tests for the session store and its backends."""

from decimal import Decimal

import pytest

from ussd_engine.ussd.session_store import (
    InMemorySessionBackend,
    RedisSessionBackend,
    SessionNotFoundError,
    SessionStore,
    build_session_store,
)
from ussd_engine.ussd.types import BundleChoice, BundleGroup, ServiceType


class FakeRedis:
    """Just enough of redis.asyncio.Redis for the backend."""

    def __init__(self):
        self.data: dict[str, str] = {}
        self.expiry: dict[str, int | None] = {}
        self.closed = False

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value, ex=None):
        self.data[key] = value
        self.expiry[key] = ex

    async def delete(self, key):
        self.data.pop(key, None)

    async def ping(self):
        return True

    async def aclose(self):
        self.closed = True


class TestSessionStore:
    async def test_create_get_delete(self):
        store = SessionStore()
        await store.create("S1", mobile_number="233241234567")

        state = await store.get("S1")
        assert state is not None
        assert state.mobile_number == "233241234567"
        assert await store.exists("S1")

        await store.delete("S1")
        assert await store.get("S1") is None
        assert not await store.exists("S1")

    async def test_update_merges_and_survives_round_trip(self):
        store = SessionStore()
        await store.create("S1")
        group = BundleGroup(
            name="Data Bundles",
            bundles=[BundleChoice(display="1GB", value="mtn_1gb", amount=Decimal("10.00"))],
        )
        await store.update("S1", service_type=ServiceType.DATA_BUNDLE, bundle_groups=[group])
        await store.update("S1", total_amount=Decimal("10.00"))

        state = await store.get("S1")
        assert state.service_type == ServiceType.DATA_BUNDLE
        assert state.bundle_groups[0].bundles[0].amount == Decimal("10.00")
        assert state.total_amount == Decimal("10.00")

    async def test_update_missing_session_raises(self):
        store = SessionStore()
        with pytest.raises(SessionNotFoundError):
            await store.update("nope", network="MTN")

    async def test_delete_missing_is_noop(self):
        store = SessionStore()
        await store.delete("nope")

    async def test_create_resets_existing(self):
        store = SessionStore()
        await store.create("S1", network="MTN")
        await store.create("S1")
        assert (await store.get("S1")).network is None


class TestRedisBackend:
    async def test_ttl_and_prefix(self):
        client = FakeRedis()
        store = SessionStore(RedisSessionBackend(client, ttl_seconds=120))
        await store.create("S1", network="AT")

        assert "ussd:session:S1" in client.data
        assert client.expiry["ussd:session:S1"] == 120
        assert (await store.get("S1")).network == "AT"

        await store.close()
        assert client.closed

    async def test_no_ttl_by_default(self):
        client = FakeRedis()
        store = SessionStore(RedisSessionBackend(client))
        await store.create("S1")
        assert client.expiry["ussd:session:S1"] is None

    async def test_ping(self):
        assert await SessionStore(RedisSessionBackend(FakeRedis())).ping()


def test_build_memory_store():
    store = build_session_store("memory", "redis://unused", None)
    assert isinstance(store.backend, InMemorySessionBackend)


def test_build_unknown_backend():
    with pytest.raises(ValueError):
        build_session_store("memcached", "", None)

"""Tests for the tenant-scoped entity caches."""

import redis

from product_search.cache import InMemoryCacheStore, RedisCacheStore, create_cache_store
from product_search.config import Settings

from fakes import FakeClock


class FakeRedis:
    """Dict-backed subset of the redis client used by the cache."""

    def __init__(self, fail: bool = False) -> None:
        self.data = {}
        self.fail = fail
        self.expiries = {}

    def get(self, key):
        if self.fail:
            raise redis.ConnectionError("down")
        return self.data.get(key)

    def setex(self, key, ttl, value):
        if self.fail:
            raise redis.ConnectionError("down")
        self.data[key] = value.encode("utf-8")
        self.expiries[key] = ttl

    def scan_iter(self, match):
        _, tenant, collection = match.split(":")
        for key in list(self.data):
            _, key_tenant, key_collection = key.split(":")
            if tenant in ("*", key_tenant) and collection in ("*", key_collection):
                yield key

    def delete(self, *keys):
        for key in keys:
            self.data.pop(key, None)


def test_hit_within_ttl_returns_same_mapping():
    clock = FakeClock()
    cache = InMemoryCacheStore(60, clock=clock)
    data = {"B1": {"brand_id": "B1"}}

    cache.set("acme", "brands", data)
    clock.advance(59)

    assert cache.get("acme", "brands").data is data


def test_entry_expires_after_ttl():
    clock = FakeClock()
    cache = InMemoryCacheStore(60, clock=clock)
    cache.set("acme", "brands", {})

    clock.advance(60)

    assert cache.get("acme", "brands") is None


def test_tenants_are_isolated():
    cache = InMemoryCacheStore(60, clock=FakeClock())
    cache.set("acme", "brands", {"B1": {"name": "Acme"}})

    assert cache.get("globex", "brands") is None
    assert cache.get("acme", "brands").data == {"B1": {"name": "Acme"}}


def test_clear_by_collection_and_tenant():
    cache = InMemoryCacheStore(60, clock=FakeClock())
    for tenant in ("acme", "globex"):
        for collection in ("brands", "tags"):
            cache.set(tenant, collection, {})

    cache.clear("brands")
    assert cache.get("acme", "brands") is None
    assert cache.get("globex", "tags") is not None

    cache.clear_tenant("globex", "tags")
    assert cache.get("globex", "tags") is None
    assert cache.get("acme", "tags") is not None

    cache.clear_tenant("acme")
    assert cache.get("acme", "tags") is None

    cache.set("acme", "tags", {})
    cache.clear()
    assert cache.get("acme", "tags") is None


def test_redis_store_round_trips_and_scopes_keys():
    client = FakeRedis()
    cache = RedisCacheStore(client, 60)

    cache.set("acme", "brands", {"B1": {"name": "Acme"}})
    cache.set("globex", "brands", {})

    assert "entity-cache:acme:brands" in client.data
    assert client.expiries["entity-cache:acme:brands"] == 60
    assert cache.get("acme", "brands").data == {"B1": {"name": "Acme"}}

    cache.clear_tenant("acme")
    assert cache.get("acme", "brands") is None
    assert cache.get("globex", "brands") is not None


def test_redis_errors_degrade_to_misses():
    cache = RedisCacheStore(FakeRedis(fail=True), 60)

    entry = cache.set("acme", "brands", {"B1": {}})

    assert entry.data == {"B1": {}}
    assert cache.get("acme", "brands") is None


def test_redis_garbage_is_a_miss():
    client = FakeRedis()
    client.data["entity-cache:acme:brands"] = b"not json"

    assert RedisCacheStore(client, 60).get("acme", "brands") is None


def test_memory_backend_is_default():
    store = create_cache_store(Settings(entity_cache_backend="memory", entity_cache_ttl_seconds=30))

    assert isinstance(store, InMemoryCacheStore)
    assert store.ttl_seconds == 30

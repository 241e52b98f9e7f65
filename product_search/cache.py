"""Tenant-scoped entity caches with an in-memory primary and optional Redis backend.

Entries are keyed by ``(tenant, collection)`` so tenants never share data.
Staleness is bounded only by the TTL; concurrent misses may reload the same
entry twice and the last write wins.
"""
from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Protocol, Tuple

import redis

from .config import Settings, settings

logger = logging.getLogger(__name__)

REDIS_KEY_PREFIX = "entity-cache"


@dataclass
class CacheEntry:
    data: Dict[str, Any]
    loaded_at: float


class CacheStore(Protocol):
    def get(self, tenant: str, collection: str) -> Optional[CacheEntry]: ...

    def set(self, tenant: str, collection: str, data: Dict[str, Any]) -> CacheEntry: ...

    def clear(self, collection: Optional[str] = None) -> None: ...

    def clear_tenant(self, tenant: str, collection: Optional[str] = None) -> None: ...


class InMemoryCacheStore:
    """Process-local store; a hit hands back the very mapping that was stored."""

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._store: Dict[Tuple[str, str], CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, tenant: str, collection: str) -> Optional[CacheEntry]:
        key = (tenant, collection)
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            if self._clock() - entry.loaded_at >= self.ttl_seconds:
                self._store.pop(key, None)
                return None
            return entry

    def set(self, tenant: str, collection: str, data: Dict[str, Any]) -> CacheEntry:
        entry = CacheEntry(data=data, loaded_at=self._clock())
        with self._lock:
            self._store[(tenant, collection)] = entry
        return entry

    def clear(self, collection: Optional[str] = None) -> None:
        with self._lock:
            if collection is None:
                self._store.clear()
                return
            for key in [key for key in self._store if key[1] == collection]:
                del self._store[key]

    def clear_tenant(self, tenant: str, collection: Optional[str] = None) -> None:
        with self._lock:
            for key in [key for key in self._store if key[0] == tenant]:
                if collection is None or key[1] == collection:
                    del self._store[key]


@dataclass
class RedisCacheStore:
    """Shared store for multi-worker deployments. Hits return decoded copies."""

    client: redis.Redis
    ttl_seconds: float

    @staticmethod
    def _key(tenant: str, collection: str) -> str:
        return f"{REDIS_KEY_PREFIX}:{tenant}:{collection}"

    def get(self, tenant: str, collection: str) -> Optional[CacheEntry]:
        try:
            raw = self.client.get(self._key(tenant, collection))
        except redis.RedisError as exc:
            logger.warning("Redis get failed: %s", exc)
            return None
        if not raw:
            return None
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            return None
        return CacheEntry(data=payload.get("data", {}), loaded_at=payload.get("loaded_at", 0.0))

    def set(self, tenant: str, collection: str, data: Dict[str, Any]) -> CacheEntry:
        entry = CacheEntry(data=data, loaded_at=time.time())
        try:
            self.client.setex(
                self._key(tenant, collection),
                max(1, int(self.ttl_seconds)),
                json.dumps({"data": data, "loaded_at": entry.loaded_at}, default=str),
            )
        except redis.RedisError as exc:
            logger.warning("Redis set failed: %s", exc)
        return entry

    def _delete_matching(self, pattern: str) -> None:
        try:
            keys = list(self.client.scan_iter(match=pattern))
            if keys:
                self.client.delete(*keys)
        except redis.RedisError as exc:
            logger.warning("Redis clear failed for %s: %s", pattern, exc)

    def clear(self, collection: Optional[str] = None) -> None:
        self._delete_matching(f"{REDIS_KEY_PREFIX}:*:{collection or '*'}")

    def clear_tenant(self, tenant: str, collection: Optional[str] = None) -> None:
        self._delete_matching(f"{REDIS_KEY_PREFIX}:{tenant}:{collection or '*'}")


def create_cache_store(config: Settings = settings) -> CacheStore:
    """Build the entity cache configured by ``ENTITY_CACHE_BACKEND``."""
    if config.entity_cache_backend.lower() == "redis":
        try:
            client = redis.Redis(host=config.redis_host, port=config.redis_port, decode_responses=False)
            client.ping()
            logger.info("Using Redis entity cache at %s:%s", config.redis_host, config.redis_port)
            return RedisCacheStore(client, config.entity_cache_ttl_seconds)
        except redis.RedisError:
            logger.warning("Redis not available, using in-memory entity cache")
    return InMemoryCacheStore(config.entity_cache_ttl_seconds)

"""Shared fixtures."""
from __future__ import annotations

import pytest

from fakes import FakeClock, FakeEngine, FakeStore
from product_search.cache import InMemoryCacheStore
from product_search.config import Settings
from product_search.enricher import ResponseEnricher


@pytest.fixture
def config() -> Settings:
    return Settings(solr_core="products", default_tenant="default", entity_cache_ttl_seconds=60)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock: FakeClock) -> InMemoryCacheStore:
    return InMemoryCacheStore(60, clock=clock)


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def enricher(store: FakeStore, cache: InMemoryCacheStore, engine: FakeEngine, config: Settings) -> ResponseEnricher:
    return ResponseEnricher(store, cache, engine=engine, config=config)

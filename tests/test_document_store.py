"""Tests for the MongoDB-backed document store, with the driver replaced by dict fakes."""

import pytest
from pymongo.errors import ServerSelectionTimeoutError

from product_search.document_store import PRODUCTS_COLLECTION, DocumentStoreError, MongoDocumentStore


class FakeCursor:
    def __init__(self, docs):
        self.docs = docs

    async def to_list(self, length=None):
        return list(self.docs)


class FakeCollection:
    def __init__(self, docs, error=None):
        self.docs = docs
        self.error = error
        self.calls = []

    def find(self, query, projection=None):
        self.calls.append((query, projection))
        if self.error is not None:
            raise self.error
        codes = (query.get("entity_code") or {}).get("$in")
        return FakeCursor([doc for doc in self.docs if codes is None or doc.get("entity_code") in codes])


class FakeClient:
    def __init__(self, databases):
        self.databases = databases
        self.closed = False

    def __getitem__(self, name):
        return self.databases.setdefault(name, {})

    async def close(self):
        self.closed = True


def _store(collections):
    return MongoDocumentStore(client=FakeClient({"acme": collections}))


@pytest.mark.asyncio
async def test_find_all_reads_tenant_database():
    brands = FakeCollection([{"brand_id": "B1"}, {"brand_id": "B2"}])
    store = _store({"brands": brands})

    assert await store.find_all("acme", "brands") == [{"brand_id": "B1"}, {"brand_id": "B2"}]
    assert brands.calls == [({}, {"_id": 0})]


@pytest.mark.asyncio
async def test_find_products_only_current_records():
    products = FakeCollection([{"entity_code": "E1"}, {"entity_code": "E2"}])
    store = _store({PRODUCTS_COLLECTION: products})

    found = await store.find_products("acme", ["E1", "E9"])

    assert found == [{"entity_code": "E1"}]
    assert products.calls[0][0] == {"entity_code": {"$in": ["E1", "E9"]}, "isCurrent": True}


@pytest.mark.asyncio
async def test_find_products_without_codes_skips_query():
    products = FakeCollection([{"entity_code": "E1"}])
    store = _store({PRODUCTS_COLLECTION: products})

    assert await store.find_products("acme", []) == []
    assert products.calls == []


@pytest.mark.asyncio
async def test_driver_errors_become_store_errors():
    store = _store({"brands": FakeCollection([], error=ServerSelectionTimeoutError("no servers"))})

    with pytest.raises(DocumentStoreError):
        await store.find_all("acme", "brands")


@pytest.mark.asyncio
async def test_close_closes_client():
    client = FakeClient({})
    store = MongoDocumentStore(client=client)

    await store.close()

    assert client.closed is True

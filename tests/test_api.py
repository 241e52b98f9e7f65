"""HTTP surface tests with the service dependency replaced by in-process fakes."""

import pytest
from fastapi.testclient import TestClient

from product_search.main import app, get_service, parse_filter_params
from product_search.service import SearchService
from product_search.solr_client import EngineError

from fakes import FakeEngine, make_doc, ungrouped


@pytest.fixture
def api(enricher, config):
    engine = FakeEngine([ungrouped([make_doc("E1", "Vaso")])])
    service = SearchService(engine, enricher, config=config)
    app.dependency_overrides[get_service] = lambda: service
    with TestClient(app) as client:
        yield client, engine, service
    app.dependency_overrides.clear()


def test_post_search(api):
    client, engine, _ = api

    response = client.post("/api/search/search", json={"text": "vaso", "lang": "it", "rows": 5})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["data"]["results"][0]["entity_code"] == "E1"
    assert body["data"]["results"][0]["name"] == "Vaso"
    assert engine.queries[0]["limit"] == 5


def test_missing_lang_is_rejected(api):
    client, engine, _ = api

    response = client.post("/api/search/search", json={"text": "vaso"})

    assert response.status_code == 422
    assert engine.queries == []


def test_engine_error_body(api):
    client, engine, _ = api
    engine.error = EngineError("undefined field foo", status_code=400)

    response = client.post("/api/search/search", json={"lang": "it"})

    assert response.status_code == 400
    assert response.json() == {
        "error": "Search failed",
        "details": {"code": "SOLR_ERROR", "message": "undefined field foo", "statusCode": 400},
    }


def test_get_search_collects_filters(api):
    client, engine, _ = api

    response = client.get(
        "/api/search/search",
        params=[("q", "vaso"), ("lang", "it"), ("filter_brand_id", "B1"), ("filter_brand_id", "B2"), ("rows", "3")],
    )

    assert response.status_code == 200
    query = engine.queries[0]
    assert "brand_id:(B1 OR B2)" in query["filter"]
    assert query["limit"] == 3


def test_get_search_rejects_bad_rows(api):
    client, _, _ = api

    response = client.get("/api/search/search", params={"lang": "it", "rows": "-1"})

    assert response.status_code == 400


def test_parse_filter_params():
    items = [
        ("filter_brand_id", "B1"),
        ("filter_brand_id", "B2"),
        ("filter_tag_id[]", "T1"),
        ("filter_stock_status", "in_stock,pre_order"),
        ("filter_category_id", "C1"),
        ("lang", "it"),
    ]

    assert parse_filter_params(items) == {
        "brand_id": ["B1", "B2"],
        "tag_id": "T1",
        "stock_status": ["in_stock", "pre_order"],
        "category_id": "C1",
    }


def test_tenant_header_selects_core(api):
    client, engine, _ = api

    client.post("/api/search/search", json={"lang": "it"}, headers={"X-Tenant-DB": "acme"})

    assert engine.cores == ["acme"]


def test_facet_endpoint(api):
    client, engine, _ = api
    engine.responses = [{"facets": {"count": 2, "stock_status": {"buckets": [{"val": "in_stock", "count": 2}]}}}]

    response = client.post("/api/search/facet", json={"lang": "it", "facet_fields": ["stock_status"]})

    assert response.status_code == 200
    assert response.json()["facet_results"]["stock_status"][0]["label"] == "In stock"
    assert engine.queries[0]["limit"] == 0


def test_cache_clear_is_scoped_to_tenant(api, cache):
    client, _, _ = api
    cache.set("acme", "brands", {})
    cache.set("globex", "brands", {})

    response = client.post("/api/search/cache/clear", json={"collection": "brands"}, headers={"X-Tenant-DB": "acme"})

    assert response.json() == {"cleared": True, "scope": "acme", "collection": "brands"}
    assert cache.get("acme", "brands") is None
    assert cache.get("globex", "brands") is not None

    client.post("/api/search/cache/clear", json={"all_tenants": True})
    assert cache.get("globex", "brands") is None


def test_health(api):
    client, _, _ = api

    response = client.get("/health", headers={"X-Tenant-DB": "acme"})

    assert response.json() == {"engine": "ok", "core": "acme", "tenant": "acme"}

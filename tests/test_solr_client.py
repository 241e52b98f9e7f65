"""Tests for the search engine HTTP client."""

import json

import httpx
import pytest

from product_search.solr_client import EngineError, SolrClient


def _client(handler):
    return SolrClient("http://solr:8983/solr/", "products", transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_query_is_posted_as_json_to_core():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"response": {"numFound": 0, "start": 0, "docs": []}})

    client = _client(handler)
    result = await client.search({"query": "*:*", "limit": 5})
    await client.aclose()

    assert seen["path"] == "/solr/products/query"
    assert seen["body"] == {"query": "*:*", "limit": 5}
    assert result["response"]["numFound"] == 0


@pytest.mark.asyncio
async def test_core_override():
    paths = []

    def handler(request):
        paths.append(request.url.path)
        return httpx.Response(200, json={})

    client = _client(handler)
    await client.search({"query": "*:*"}, core="acme")
    await client.aclose()

    assert paths == ["/solr/acme/query"]


@pytest.mark.asyncio
async def test_engine_error_carries_status_and_message():
    def handler(request):
        return httpx.Response(400, json={"error": {"msg": "undefined field foo", "code": 400}})

    client = _client(handler)
    with pytest.raises(EngineError) as excinfo:
        await client.search({"query": "foo:bar"})
    await client.aclose()

    assert excinfo.value.status_code == 400
    assert str(excinfo.value) == "undefined field foo"
    assert "undefined field foo" in excinfo.value.body


@pytest.mark.asyncio
async def test_error_without_json_body():
    client = _client(lambda request: httpx.Response(500, text="<html>boom</html>"))

    with pytest.raises(EngineError) as excinfo:
        await client.search({"query": "*:*"})
    await client.aclose()

    assert excinfo.value.status_code == 500
    assert "HTTP 500" in str(excinfo.value)


@pytest.mark.asyncio
async def test_unreachable_engine_is_503():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = _client(handler)
    with pytest.raises(EngineError) as excinfo:
        await client.search({"query": "*:*"})
    await client.aclose()

    assert excinfo.value.status_code == 503


@pytest.mark.asyncio
async def test_malformed_json_is_502():
    client = _client(lambda request: httpx.Response(200, text="not json"))

    with pytest.raises(EngineError) as excinfo:
        await client.search({"query": "*:*"})
    await client.aclose()

    assert excinfo.value.status_code == 502


@pytest.mark.asyncio
async def test_ping():
    def handler(request):
        if request.url.path == "/solr/products/admin/ping":
            return httpx.Response(200, json={"status": "OK"})
        return httpx.Response(404)

    client = _client(handler)

    assert await client.ping() is True
    assert await client.ping("missing") is False
    await client.aclose()

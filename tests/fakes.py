"""In-process stand-ins for the engine, the document store and the cache clock."""
from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Sequence

EMPTY_RESPONSE = {"response": {"numFound": 0, "start": 0, "docs": []}}


class FakeEngine:
    """Replays canned responses in order and records every query."""

    def __init__(
        self,
        responses: Optional[List[Dict[str, Any]]] = None,
        error: Optional[Exception] = None,
        handler: Optional[Callable[[Dict[str, Any]], Dict[str, Any]]] = None,
    ) -> None:
        self.responses = list(responses or [])
        self.error = error
        self.handler = handler
        self.queries: List[Dict[str, Any]] = []
        self.cores: List[Optional[str]] = []

    async def search(self, query: Dict[str, Any], core: Optional[str] = None) -> Dict[str, Any]:
        self.queries.append(query)
        self.cores.append(core)
        if self.error is not None:
            raise self.error
        if self.handler is not None:
            return self.handler(query)
        if self.responses:
            return self.responses.pop(0)
        return EMPTY_RESPONSE

    async def ping(self, core: Optional[str] = None) -> bool:
        return True


class FakeStore:
    """``collections`` and ``products`` are keyed by tenant."""

    def __init__(
        self,
        collections: Optional[Dict[str, Dict[str, List[Dict[str, Any]]]]] = None,
        products: Optional[Dict[str, List[Dict[str, Any]]]] = None,
        error: Optional[Exception] = None,
    ) -> None:
        self.collections = collections or {}
        self.products = products or {}
        self.error = error
        self.find_all_calls: List[tuple] = []
        self.find_products_calls: List[tuple] = []

    async def find_all(self, tenant: str, collection: str) -> List[Dict[str, Any]]:
        self.find_all_calls.append((tenant, collection))
        if self.error is not None:
            raise self.error
        return [dict(doc) for doc in self.collections.get(tenant, {}).get(collection, [])]

    async def find_products(self, tenant: str, entity_codes: Sequence[str]) -> List[Dict[str, Any]]:
        self.find_products_calls.append((tenant, list(entity_codes)))
        if self.error is not None:
            raise self.error
        return [dict(doc) for doc in self.products.get(tenant, []) if doc.get("entity_code") in entity_codes]


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_doc(entity_code: str, name: str = "", lang: str = "it", **fields: Any) -> Dict[str, Any]:
    """Engine document as indexed."""
    doc: Dict[str, Any] = {"id": entity_code, "entity_code": entity_code, "sku": f"SKU-{entity_code}"}
    if name:
        doc[f"name_text_{lang}"] = name
    doc.update(fields)
    return doc


def ungrouped(docs: List[Dict[str, Any]], **extra: Any) -> Dict[str, Any]:
    return {"response": {"numFound": len(docs), "start": 0, "docs": docs}, **extra}

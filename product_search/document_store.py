"""Read-only access to the per-tenant document store.

Each tenant owns one MongoDB database named after the tenant. Only two
lookups are needed: a whole taxonomy collection, and current product
records by entity code.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Protocol, Sequence

from pymongo import AsyncMongoClient
from pymongo.errors import PyMongoError

from .config import settings

logger = logging.getLogger(__name__)

PRODUCTS_COLLECTION = "pimproducts"


class DocumentStoreError(Exception):
    """The document store could not answer a lookup."""


class DocumentStore(Protocol):
    async def find_all(self, tenant: str, collection: str) -> List[Dict[str, Any]]: ...

    async def find_products(self, tenant: str, entity_codes: Sequence[str]) -> List[Dict[str, Any]]: ...


class MongoDocumentStore:
    def __init__(self, url: str = settings.mongo_url, client: Optional[AsyncMongoClient] = None) -> None:
        self._client = client if client is not None else AsyncMongoClient(url)

    async def find_all(self, tenant: str, collection: str) -> List[Dict[str, Any]]:
        try:
            cursor = self._client[tenant][collection].find({}, {"_id": 0})
            return await cursor.to_list(None)
        except PyMongoError as exc:
            raise DocumentStoreError(f"Failed to load {tenant}.{collection}: {exc}") from exc

    async def find_products(self, tenant: str, entity_codes: Sequence[str]) -> List[Dict[str, Any]]:
        if not entity_codes:
            return []
        try:
            cursor = self._client[tenant][PRODUCTS_COLLECTION].find(
                {"entity_code": {"$in": list(entity_codes)}, "isCurrent": True},
                {"_id": 0},
            )
            products = await cursor.to_list(None)
        except PyMongoError as exc:
            raise DocumentStoreError(f"Failed to load products from {tenant}: {exc}") from exc
        logger.debug("Loaded %s of %s products from %s", len(products), len(entity_codes), tenant)
        return products

    async def close(self) -> None:
        await self._client.close()

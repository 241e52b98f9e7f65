"""Search engine client factory.

The engine is a Solr core spoken to through its JSON request API
(``POST /<core>/query``). One client serves every tenant; the core is chosen
per call.
"""
from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Dict, Optional, Protocol

import httpx

from .config import settings

logger = logging.getLogger(__name__)


class EngineError(Exception):
    """Engine rejected the query or could not be reached."""

    def __init__(self, message: str, status_code: int = 500, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class SearchEngine(Protocol):
    async def search(self, query: Dict[str, Any], core: Optional[str] = None) -> Dict[str, Any]: ...

    async def ping(self, core: Optional[str] = None) -> bool: ...


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return f"Search engine returned HTTP {response.status_code}"
    error = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(error, dict) and error.get("msg"):
        return str(error["msg"])
    return f"Search engine returned HTTP {response.status_code}"


class SolrClient:
    def __init__(
        self,
        base_url: str,
        core: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.core = core
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            transport=transport,
        )

    async def search(self, query: Dict[str, Any], core: Optional[str] = None) -> Dict[str, Any]:
        target = core or self.core
        try:
            response = await self._client.post(f"/{target}/query", json=query)
        except httpx.HTTPError as exc:
            logger.error("Search engine request to core %s failed: %s", target, exc)
            raise EngineError(f"Search engine unreachable: {exc}", status_code=503, body=str(exc)) from exc

        if not response.is_success:
            message = _error_message(response)
            logger.warning("Search engine error core=%s status=%s msg=%s", target, response.status_code, message)
            raise EngineError(message, status_code=response.status_code, body=response.text)

        try:
            return response.json()
        except ValueError as exc:
            raise EngineError("Search engine returned malformed JSON", status_code=502, body=response.text) from exc

    async def ping(self, core: Optional[str] = None) -> bool:
        try:
            response = await self._client.get(f"/{core or self.core}/admin/ping", params={"wt": "json"})
        except httpx.HTTPError:
            return False
        return response.is_success

    async def aclose(self) -> None:
        await self._client.aclose()


@lru_cache(maxsize=1)
def get_client() -> SolrClient:
    logger.info("Using search engine at %s (default core %s)", settings.solr_url, settings.solr_core)
    return SolrClient(settings.solr_url, settings.solr_core, timeout=settings.solr_timeout_seconds)

"""FastAPI application wiring the search service."""
from __future__ import annotations

import logging
from functools import lru_cache
from typing import Dict, Iterable, List, Optional, Tuple

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from .cache import create_cache_store
from .config import settings
from .document_store import MongoDocumentStore
from .enricher import ResponseEnricher
from .models import (
    CacheClearRequest,
    ErrorDetails,
    ErrorResponse,
    FacetRequest,
    FacetResponse,
    FilterValue,
    GroupOptions,
    SearchEnvelope,
    SearchRequest,
    SortOption,
)
from .service import SearchService
from .solr_client import EngineError, get_client

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_LEVEL = logging.getLevelName(settings.log_level.upper())

# ``force=True`` replaces uvicorn's default handlers so module loggers share one format.
logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT, force=True)
for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "httpx"):
    logging.getLogger(name).setLevel(LOG_LEVEL)

logger = logging.getLogger(__name__)
logger.info("Logging configured at %s", settings.log_level.upper())

FILTER_PREFIX = "filter_"
TENANT_HEADER = "X-Tenant-DB"
ENGINE_ERRORS = {500: {"model": ErrorResponse}, 503: {"model": ErrorResponse}}

app = FastAPI(title="Product Search Service")


@lru_cache(maxsize=1)
def get_store() -> MongoDocumentStore:
    return MongoDocumentStore(settings.mongo_url)


@lru_cache(maxsize=1)
def get_service() -> SearchService:
    engine = get_client()
    enricher = ResponseEnricher(get_store(), create_cache_store(settings), engine=engine)
    return SearchService(engine, enricher)


def get_tenant(x_tenant_db: Optional[str] = Header(None, alias=TENANT_HEADER)) -> str:
    return (x_tenant_db or "").strip() or settings.default_tenant


@app.exception_handler(EngineError)
async def engine_error_handler(request: Request, exc: EngineError) -> JSONResponse:
    status = exc.status_code if exc.status_code >= 400 else 500
    body = ErrorResponse(
        error="Search failed",
        details=ErrorDetails(code="SOLR_ERROR", message=str(exc), statusCode=exc.status_code),
    )
    return JSONResponse(status_code=status, content=body.model_dump())


@app.on_event("startup")
async def startup_event() -> None:
    logger.info(
        "Search engine %s (default core %s), document store %s",
        settings.solr_url,
        settings.solr_core,
        settings.mongo_url,
    )


@app.on_event("shutdown")
async def shutdown_event() -> None:
    if get_service.cache_info().currsize:
        await get_client().aclose()
        await get_store().close()


@app.get("/health")
async def health(service: SearchService = Depends(get_service), tenant: str = Depends(get_tenant)) -> dict:
    core = settings.core_for(tenant)
    reachable = await service.engine.ping(core)
    return {"engine": "ok" if reachable else "unavailable", "core": core, "tenant": tenant}


@app.post("/api/search/search", response_model=SearchEnvelope, responses=ENGINE_ERRORS)
async def search(
    body: SearchRequest,
    service: SearchService = Depends(get_service),
    tenant: str = Depends(get_tenant),
) -> dict:
    return await service.search(body, tenant)


def parse_filter_params(items: Iterable[Tuple[str, str]]) -> Dict[str, FilterValue]:
    """Collect ``filter_<name>`` params: repeated, comma-separated and ``[]`` forms."""
    filters: Dict[str, FilterValue] = {}
    for key, raw in items:
        if not key.startswith(FILTER_PREFIX):
            continue
        name = key[len(FILTER_PREFIX):]
        if name.endswith("[]"):
            name = name[:-2]
        values = [part.strip() for part in raw.split(",") if part.strip()] if "," in raw else [raw]
        existing = filters.get(name)
        if existing is None:
            filters[name] = values[0] if len(values) == 1 else values
        elif isinstance(existing, list):
            existing.extend(values)
        else:
            filters[name] = [str(existing), *values]
    return filters


def _flag(value: Optional[str], default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() not in {"false", "0", "no"}


def search_request_from_params(request: Request) -> SearchRequest:
    params = request.query_params
    sort_field = params.get("sort_field")
    group_field = params.get("group_field")
    facet_fields: Optional[List[str]] = None
    if params.get("facet_fields"):
        facet_fields = [name.strip() for name in params["facet_fields"].split(",") if name.strip()]
    try:
        return SearchRequest(
            text=params.get("text") or params.get("q"),
            lang=params.get("lang") or settings.default_lang,
            start=params.get("start") or 0,
            rows=params.get("rows"),
            filters=parse_filter_params(params.multi_items()),
            sort=SortOption(field=sort_field, order=params.get("sort_order") or "desc") if sort_field else None,
            include_faceting=_flag(params.get("include_faceting"), True),
            group_variants=_flag(params.get("group_variants"), False),
            group=(
                GroupOptions(field=group_field, limit=params.get("group_limit"), sort=params.get("group_sort"))
                if group_field
                else None
            ),
            facet_fields=facet_fields,
        )
    except ValidationError as exc:
        errors = exc.errors(include_url=False, include_context=False, include_input=False)
        raise HTTPException(status_code=400, detail=errors) from exc


@app.get("/api/search/search", response_model=SearchEnvelope, responses=ENGINE_ERRORS)
async def search_get(
    request: Request,
    service: SearchService = Depends(get_service),
    tenant: str = Depends(get_tenant),
) -> dict:
    return await service.search(search_request_from_params(request), tenant)


@app.post("/api/search/facet", response_model=FacetResponse, responses=ENGINE_ERRORS)
async def facet(
    body: FacetRequest,
    service: SearchService = Depends(get_service),
    tenant: str = Depends(get_tenant),
) -> dict:
    return await service.facet(body, tenant)


@app.post("/api/search/cache/clear")
async def clear_cache(
    body: Optional[CacheClearRequest] = None,
    service: SearchService = Depends(get_service),
    tenant: str = Depends(get_tenant),
) -> dict:
    if service.enricher is None:
        return {"cleared": False}
    body = body or CacheClearRequest()
    if body.all_tenants:
        if body.collection:
            service.enricher.clear_cache(body.collection)
        else:
            service.enricher.clear_all_caches()
        scope = "all"
    else:
        service.enricher.clear_tenant_cache(tenant, body.collection)
        scope = tenant
    logger.info("Cleared entity cache scope=%s collection=%s", scope, body.collection or "*")
    return {"cleared": True, "scope": scope, "collection": body.collection}

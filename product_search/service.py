"""Search orchestration: build, query, transform, enrich."""
from __future__ import annotations

import logging
from time import perf_counter
from typing import Any, Dict, List, Optional

from .config import Settings, settings
from .enricher import EnrichmentError, ResponseEnricher, merge_media_from_parent
from .models import FacetRequest, SearchRequest
from .query_builder import (
    VARIANT_GROUP_FIELD,
    build_facet_only_query,
    build_filter_clause,
    build_search_query,
    resolve_group,
)
from .solr_client import EngineError, SearchEngine
from .transformer import (
    PARENT_PENDING_KEY,
    transform_document,
    transform_facet_response,
    transform_search_response,
)

logger = logging.getLogger(__name__)


def _ms(start: float, end: float) -> float:
    return (end - start) * 1000


def strip_pending_markers(results: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [
        {key: value for key, value in row.items() if key != PARENT_PENDING_KEY} if PARENT_PENDING_KEY in row else row
        for row in results
    ]


def regroup(grouped: Dict[str, Any], results: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Put enriched rows back into their groups; ``results`` is the groups' docs concatenated."""
    rows = iter(results)
    groups = [{**group, "docs": [next(rows) for _ in group["docs"]]} for group in grouped["groups"]]
    return {**grouped, "groups": groups}


class SearchService:
    def __init__(
        self,
        engine: SearchEngine,
        enricher: Optional[ResponseEnricher] = None,
        config: Settings = settings,
    ) -> None:
        self.engine = engine
        self.enricher = enricher
        self.config = config

    async def search(self, request: SearchRequest, tenant: Optional[str] = None) -> Dict[str, Any]:
        """Run a search for ``tenant``. Engine failures propagate as :class:`EngineError`."""
        tenant = tenant or self.config.default_tenant
        lang = request.lang or self.config.default_lang
        start = perf_counter()

        query = build_search_query(request, self.config)
        built = perf_counter()

        raw = await self.engine.search(query, core=self.config.core_for(tenant))
        queried = perf_counter()

        group = resolve_group(request)
        group_field = group.field if group else None
        data = transform_search_response(raw, lang, group_field, request.group_variants, start=request.start)
        transformed = perf_counter()

        variant_mode = request.group_variants and group_field == VARIANT_GROUP_FIELD
        data = await self._enrich(data, tenant, lang, variant_mode)
        if group_field is None:
            data["results"] = await self.attach_variants(data["results"], tenant, lang)
        finished = perf_counter()

        logger.info(
            "timing: search tenant=%s build=%.1fms engine=%.1fms transform=%.1fms enrich=%.1fms "
            "total=%.1fms results=%s numFound=%s",
            tenant,
            _ms(start, built),
            _ms(built, queried),
            _ms(queried, transformed),
            _ms(transformed, finished),
            _ms(start, finished),
            len(data["results"]),
            data["numFound"],
        )
        return {"success": True, "data": data}

    async def _enrich(self, data: Dict[str, Any], tenant: str, lang: str, variant_mode: bool) -> Dict[str, Any]:
        if self.enricher is None:
            return {**data, "results": strip_pending_markers(data["results"])}

        try:
            if variant_mode:
                results = await self.enricher.enrich_variant_grouped_results(data["results"], tenant, lang)
            else:
                results = await self.enricher.enrich_search_results(data["results"], tenant, lang)
        except EnrichmentError:
            logger.warning("Enrichment failed for tenant %s, returning engine results", tenant, exc_info=True)
            results = strip_pending_markers(data["results"])
        else:
            if data.get("grouped") and not variant_mode:
                data = {**data, "grouped": regroup(data["grouped"], results)}

        data = {**data, "results": results}
        if data.get("facet_results"):
            data["facet_results"] = await self._enrich_facets(data["facet_results"], tenant, lang)
        return data

    async def _enrich_facets(
        self, facets: Dict[str, List[Dict[str, Any]]], tenant: str, lang: str
    ) -> Dict[str, List[Dict[str, Any]]]:
        if self.enricher is None:
            return facets
        try:
            return await self.enricher.enrich_facet_results(facets, tenant, lang)
        except EnrichmentError:
            logger.warning("Facet enrichment failed for tenant %s", tenant, exc_info=True)
            return facets

    async def facet(self, request: FacetRequest, tenant: Optional[str] = None) -> Dict[str, Any]:
        """Facet counts only; no documents are fetched."""
        tenant = tenant or self.config.default_tenant
        lang = request.lang or self.config.default_lang
        start = perf_counter()
        raw = await self.engine.search(build_facet_only_query(request, self.config), core=self.config.core_for(tenant))
        response = transform_facet_response(raw)
        response["facet_results"] = await self._enrich_facets(response["facet_results"], tenant, lang)
        logger.info(
            "timing: facet tenant=%s fields=%s total=%.1fms",
            tenant,
            ",".join(request.facet_fields),
            _ms(start, perf_counter()),
        )
        return response

    async def attach_variants(self, products: List[Dict[str, Any]], tenant: str, lang: str) -> List[Dict[str, Any]]:
        """Give parents listed with ``variants_entity_code`` their variant documents."""
        codes = list(
            dict.fromkeys(code for product in products for code in product.get("variants_entity_code") or [] if code)
        )
        if not codes:
            return products

        query = {
            "query": "*:*",
            "filter": [build_filter_clause("entity_code", codes)],
            "limit": len(codes),
            "fields": "*",
        }
        try:
            raw = await self.engine.search(query, core=self.config.core_for(tenant))
        except EngineError:
            logger.warning("Variant lookup failed for tenant %s", tenant, exc_info=True)
            return products

        docs = (raw.get("response") or {}).get("docs") or []
        variants_by_code = {doc.get("entity_code"): transform_document(doc, lang) for doc in docs}

        attached = []
        for product in products:
            variants = [
                variants_by_code[code] for code in product.get("variants_entity_code") or [] if code in variants_by_code
            ]
            if not variants:
                attached.append(product)
                continue
            variants = [merge_media_from_parent(variant, product) for variant in variants]
            has_promo = product.get("has_active_promo")
            if any(variant.get("has_active_promo") is True for variant in variants):
                has_promo = True
            attached.append({**product, "variants": variants, "has_active_promo": has_promo})
        return attached

"""Enrich transformed engine results with fresh tenant data.

The document store is the source of truth for taxonomy entities and for a
product's attributes, media, packaging and promotions; engine values are the
fallback. Taxonomy collections are cached per tenant through a
:class:`~product_search.cache.CacheStore`, product records are fetched per
request in one batch. Row order is never changed.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Dict, Iterable, List, Optional, Sequence, Tuple

from .cache import CacheStore
from .config import Settings, settings
from .document_store import DocumentStore, DocumentStoreError
from .facet_config import config_for, extract_attribute_slug
from .pricing import embed_promotions_in_packaging, enrich_packaging_with_unit_prices
from .solr_client import EngineError, SearchEngine
from .transformer import (
    PARENT_PENDING_KEY,
    decode_attributes,
    decode_specifications,
    get_multilingual_value,
    image_from_images,
    is_attribute_entry,
    localize_hierarchy,
    localize_labels,
    parse_json_field,
    visible_attributes,
)

logger = logging.getLogger(__name__)

# entity name -> (collection, id field)
ENTITY_COLLECTIONS: Dict[str, Tuple[str, str]] = {
    "brands": ("brands", "brand_id"),
    "categories": ("categories", "category_id"),
    "collections": ("collections", "collection_id"),
    "product_types": ("producttypes", "product_type_id"),
    "product_types_by_code": ("producttypes", "code"),
    "tags": ("tags", "tag_id"),
}
SEARCH_ENTITIES = ("brands", "categories", "collections", "product_types", "tags")
ATTRIBUTE_LABELS = "attribute_labels"

INTERNAL_FIELDS = frozenset({"_id", "__v"})
LOCALIZED_ENTITY_FIELDS = ("name", "label", "slug", "description", "details")
STORE_SCALAR_FIELDS = ("price", "vat_rate", "stock_status")
PARENT_TEXT_FIELDS = ("slug", "description", "short_description", "long_description", "features")
PARENT_COPY_FIELDS = (
    "sku",
    "ean",
    "price",
    "vat_rate",
    "quantity",
    "unit",
    "stock_status",
    "parent_entity_code",
    "parent_sku",
    "variants_entity_code",
    "variants_sku",
    "share_images_with_variants",
    "share_media_with_variants",
    "product_model",
    "status",
    "completeness_score",
    "priority_score",
    "created_at",
    "updated_at",
)


class EnrichmentError(Exception):
    """Enrichment data could not be loaded or merged; engine results remain valid."""


def sanitize_entity(entity: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in entity.items() if key not in INTERNAL_FIELDS}


def merge_entity(stored: Optional[Dict[str, Any]], engine: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Overlay stored fields on the engine copy.

    ``None`` never overwrites, and an empty list is treated as "no override".
    """
    if not stored:
        return engine
    if not engine:
        return sanitize_entity(stored)
    merged = dict(engine)
    for key, value in stored.items():
        if key in INTERNAL_FIELDS or value is None:
            continue
        if isinstance(value, list) and not value:
            continue
        merged[key] = value
    return merged


def localize_entity(entity: Optional[Dict[str, Any]], lang: str) -> Optional[Dict[str, Any]]:
    if not entity:
        return entity
    localized = sanitize_entity(entity)
    for key in LOCALIZED_ENTITY_FIELDS:
        if isinstance(localized.get(key), dict):
            localized[key] = get_multilingual_value(localized[key], lang)
    if isinstance(localized.get("hierarchy"), list):
        localized["hierarchy"] = localize_hierarchy(localized["hierarchy"], lang)
    return localized


def entity_label(entity: Dict[str, Any], lang: str) -> Optional[str]:
    return get_multilingual_value(entity.get("label") or entity.get("name"), lang)


def price_packaging(
    packaging: Optional[List[Dict[str, Any]]],
    promotions: Optional[List[Dict[str, Any]]],
) -> Optional[List[Dict[str, Any]]]:
    return enrich_packaging_with_unit_prices(embed_promotions_in_packaging(packaging, promotions))


def _append_unique(own: Optional[List[Dict[str, Any]]], inherited: Optional[List[Dict[str, Any]]]) -> List[Dict[str, Any]]:
    merged = list(own or [])
    seen = {item.get("url") for item in merged if isinstance(item, dict)}
    for item in inherited or []:
        url = item.get("url")
        if url is not None and url in seen:
            continue
        merged.append(item)
        if url is not None:
            seen.add(url)
    return merged


def merge_media_from_parent(
    variant: Dict[str, Any],
    parent: Dict[str, Any],
    share_images: Optional[bool] = None,
    share_media: Optional[bool] = None,
) -> Dict[str, Any]:
    """Append the parent's shared images/gallery/media after the variant's own, deduplicated by URL."""
    if share_images is None:
        share_images = parent.get("share_images_with_variants") is True
    if share_media is None:
        share_media = parent.get("share_media_with_variants") is True
    if not (share_images or share_media):
        return variant

    merged = dict(variant)
    if share_images:
        merged["images"] = _append_unique(variant.get("images"), parent.get("images"))
        merged["image_count"] = len(merged["images"])
        if variant.get("gallery") or parent.get("gallery"):
            merged["gallery"] = _append_unique(variant.get("gallery"), parent.get("gallery"))
        if not merged.get("image"):
            merged["image"] = image_from_images(merged["images"])
    if share_media:
        merged["media"] = _append_unique(variant.get("media"), parent.get("media"))
    return merged


def collect_attribute_labels(data: Dict[str, Any]) -> Dict[str, Any]:
    """``slug -> label`` (plain text or ``{lang: text}``) from either attribute encoding."""
    labels: Dict[str, Any] = {}
    if any(is_attribute_entry(entry) for entry in data.values()):
        for slug, entry in data.items():
            if isinstance(entry, dict) and entry.get("label"):
                labels[slug] = entry["label"]
        return labels

    for lang_code, entries in data.items():
        if isinstance(entries, list):
            pairs: Iterable[Tuple[Any, Any]] = ((entry.get("key"), entry) for entry in entries if isinstance(entry, dict))
        elif isinstance(entries, dict):
            pairs = entries.items()
        else:
            continue
        for slug, entry in pairs:
            if not slug or not isinstance(entry, dict) or not entry.get("label"):
                continue
            per_lang = labels.setdefault(slug, {})
            if isinstance(per_lang, dict):
                per_lang[lang_code] = get_multilingual_value(entry["label"], lang_code)
    return labels


async def _gather_all(*loads: Awaitable[Any]) -> List[Any]:
    """Await every load, then re-raise the first failure."""
    results = await asyncio.gather(*loads, return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException):
            raise result
    return results


def _unique(codes: Iterable[Optional[str]]) -> List[str]:
    return list(dict.fromkeys(code for code in codes if code))


class ResponseEnricher:
    def __init__(
        self,
        store: DocumentStore,
        cache: CacheStore,
        engine: Optional[SearchEngine] = None,
        config: Settings = settings,
    ) -> None:
        self.store = store
        self.cache = cache
        self.engine = engine
        self.config = config

    # -- loaders ---------------------------------------------------------

    async def load_entities(self, tenant: str, name: str) -> Dict[str, Dict[str, Any]]:
        """Tenant taxonomy collection keyed by id, served from the cache within the TTL."""
        entry = self.cache.get(tenant, name)
        if entry is not None:
            return entry.data

        collection, id_field = ENTITY_COLLECTIONS[name]
        try:
            documents = await self.store.find_all(tenant, collection)
        except DocumentStoreError as exc:
            raise EnrichmentError(str(exc)) from exc
        data = {str(doc[id_field]): sanitize_entity(doc) for doc in documents if doc.get(id_field)}
        logger.debug("Loaded %s %s for tenant %s", len(data), name, tenant)
        return self.cache.set(tenant, name, data).data

    async def load_product_data(self, tenant: str, entity_codes: Sequence[str]) -> Dict[str, Dict[str, Any]]:
        try:
            records = await self.store.find_products(tenant, _unique(entity_codes))
        except DocumentStoreError as exc:
            raise EnrichmentError(str(exc)) from exc
        return {record["entity_code"]: record for record in records if record.get("entity_code")}

    async def load_attribute_labels(self, tenant: str, lang: str) -> Dict[str, str]:
        entry = self.cache.get(tenant, ATTRIBUTE_LABELS)
        if entry is None:
            entry = self.cache.set(tenant, ATTRIBUTE_LABELS, await self._sample_attribute_labels(tenant))
        resolved = {}
        for slug, label in entry.data.items():
            text = get_multilingual_value(label, lang)
            if text:
                resolved[slug] = text
        return resolved

    async def _sample_attribute_labels(self, tenant: str) -> Dict[str, Any]:
        """Read attribute labels off one indexed document that carries attributes."""
        if self.engine is None:
            return {}
        query = {"query": "*:*", "filter": ["attributes_json:*"], "limit": 1, "fields": ["attributes_json"]}
        try:
            raw = await self.engine.search(query, core=self.config.core_for(tenant))
        except EngineError as exc:
            raise EnrichmentError(f"Failed to load attribute labels: {exc}") from exc
        docs = (raw.get("response") or {}).get("docs") or []
        if not docs:
            return {}
        parsed = parse_json_field(docs[0].get("attributes_json"), lambda data: data if isinstance(data, dict) else None)
        return collect_attribute_labels(parsed or {})

    async def _load(
        self, tenant: str, entity_codes: Sequence[str]
    ) -> Tuple[Dict[str, Dict[str, Dict[str, Any]]], Dict[str, Dict[str, Any]]]:
        loaded = await _gather_all(
            *(self.load_entities(tenant, name) for name in SEARCH_ENTITIES),
            self.load_product_data(tenant, entity_codes),
        )
        entities = dict(zip(SEARCH_ENTITIES, loaded[:-1]))
        return entities, loaded[-1]

    # -- per-product merge -------------------------------------------------

    @staticmethod
    def _merge_cached(entity: Any, entity_map: Dict[str, Dict[str, Any]], id_field: str, lang: str) -> Any:
        if not isinstance(entity, dict):
            return entity
        entity_id = entity.get(id_field)
        if not entity_id:
            return localize_entity(entity, lang)
        return localize_entity(merge_entity(entity_map.get(str(entity_id)), entity), lang)

    def _merge_taxonomy(
        self, product: Dict[str, Any], entities: Dict[str, Dict[str, Dict[str, Any]]], lang: str
    ) -> Dict[str, Any]:
        collections = product.get("collections")
        tags = product.get("tags")
        return {
            "brand": self._merge_cached(product.get("brand"), entities["brands"], "brand_id", lang),
            "category": self._merge_cached(product.get("category"), entities["categories"], "category_id", lang),
            "product_type": self._merge_cached(
                product.get("product_type"), entities["product_types"], "product_type_id", lang
            ),
            "collections": (
                [self._merge_cached(item, entities["collections"], "collection_id", lang) for item in collections]
                if isinstance(collections, list)
                else collections
            ),
            "tags": (
                [self._merge_cached(item, entities["tags"], "tag_id", lang) for item in tags]
                if isinstance(tags, list)
                else tags
            ),
        }

    @staticmethod
    def _shared_media(record: Dict[str, Any], lang: str) -> Dict[str, Any]:
        return {
            "images": record.get("images"),
            "gallery": record.get("gallery"),
            "media": localize_labels(record.get("media"), lang),
            "share_images_with_variants": record.get("share_images_with_variants"),
            "share_media_with_variants": record.get("share_media_with_variants"),
        }

    @staticmethod
    def _record_overrides(record: Dict[str, Any], lang: str) -> Dict[str, Any]:
        overrides = {name: record.get(name) for name in STORE_SCALAR_FIELDS}
        overrides.update(
            {
                "attributes": decode_attributes(record.get("attributes"), lang),
                "images": record.get("images"),
                "media": localize_labels(record.get("media"), lang),
                "packaging_options": localize_labels(record.get("packaging_options"), lang),
                "promotions": localize_labels(record.get("promotions"), lang),
            }
        )
        return overrides

    def _enrich_product(
        self,
        product: Dict[str, Any],
        records: Dict[str, Dict[str, Any]],
        entities: Dict[str, Dict[str, Dict[str, Any]]],
        lang: str,
        parent: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        enriched = {**product, **self._merge_taxonomy(product, entities, lang)}
        record = records.get(product.get("entity_code") or "")
        if record:
            enriched = merge_entity(self._record_overrides(record, lang), enriched)
        enriched["attributes"] = visible_attributes(enriched.get("attributes"))
        enriched["packaging_options"] = price_packaging(enriched.get("packaging_options"), enriched.get("promotions"))

        if parent is None:
            parent_record = records.get(product.get("parent_entity_code") or "")
            if parent_record and parent_record.get("entity_code") != product.get("entity_code"):
                parent = self._shared_media(parent_record, lang)
        if parent is not None:
            enriched = merge_media_from_parent(enriched, parent)
        return enriched

    def _build_parent(
        self,
        placeholder: Dict[str, Any],
        records: Dict[str, Dict[str, Any]],
        entities: Dict[str, Dict[str, Dict[str, Any]]],
        lang: str,
    ) -> Dict[str, Any]:
        """Fill a variant-group placeholder from the parent's stored record."""
        entity_code = placeholder["entity_code"]
        record = records.get(entity_code)
        parent = {key: value for key, value in placeholder.items() if key not in (PARENT_PENDING_KEY, "variants")}

        if record:
            images = record.get("images")
            parent.update({name: record.get(name) for name in PARENT_COPY_FIELDS})
            parent.update({name: get_multilingual_value(record.get(name), lang) for name in PARENT_TEXT_FIELDS})
            parent.update(
                {
                    "name": get_multilingual_value(record.get("name"), lang) or record.get("sku") or entity_code,
                    "images": images,
                    "image_count": len(images) if isinstance(images, list) else record.get("image_count"),
                    "image": record.get("image") or image_from_images(images),
                    "gallery": record.get("gallery"),
                    "media": localize_labels(record.get("media"), lang),
                    "attributes": visible_attributes(decode_attributes(record.get("attributes"), lang)),
                    "technical_specifications": decode_specifications(record.get("technical_specifications"), lang),
                    "promotions": localize_labels(record.get("promotions"), lang),
                    "packaging_options": price_packaging(
                        localize_labels(record.get("packaging_options"), lang),
                        localize_labels(record.get("promotions"), lang),
                    ),
                    "has_active_promo": record.get("has_active_promo"),
                }
            )
            parent.update(self._merge_taxonomy(record, entities, lang))
        else:
            logger.debug("No stored record for parent %s", entity_code)

        parent["entity_code"] = entity_code
        parent["is_parent"] = True
        shared = self._shared_media(record, lang) if record else None
        variants = [
            self._enrich_product(variant, records, entities, lang, parent=shared)
            for variant in placeholder.get("variants") or []
        ]
        parent["variants"] = variants
        if any(variant.get("has_active_promo") is True for variant in variants):
            parent["has_active_promo"] = True
        return parent

    # -- public entry points -----------------------------------------------

    async def enrich_search_results(self, results: List[Dict[str, Any]], tenant: str, lang: str) -> List[Dict[str, Any]]:
        """Return enriched copies of ``results`` in the same order."""
        if not results:
            return results
        codes = _unique(
            code for product in results for code in (product.get("entity_code"), product.get("parent_entity_code"))
        )
        entities, records = await self._load(tenant, codes)
        try:
            return [self._enrich_product(product, records, entities, lang) for product in results]
        except (TypeError, ValueError, KeyError, AttributeError) as exc:
            raise EnrichmentError(f"Failed to merge stored product data: {exc}") from exc

    async def enrich_variant_grouped_results(
        self, results: List[Dict[str, Any]], tenant: str, lang: str
    ) -> List[Dict[str, Any]]:
        """Rebuild parent placeholders and enrich their variants with one batched lookup."""
        if not results:
            return results
        codes: List[Optional[str]] = []
        for row in results:
            codes.append(row.get("entity_code"))
            codes.append(row.get("parent_entity_code"))
            codes.extend(variant.get("entity_code") for variant in row.get("variants") or [])
        entities, records = await self._load(tenant, _unique(codes))
        try:
            return [
                self._build_parent(row, records, entities, lang)
                if row.get(PARENT_PENDING_KEY)
                else self._enrich_product(row, records, entities, lang)
                for row in results
            ]
        except (TypeError, ValueError, KeyError, AttributeError) as exc:
            raise EnrichmentError(f"Failed to rebuild variant groups: {exc}") from exc

    async def enrich_facet_results(
        self, facets: Optional[Dict[str, List[Dict[str, Any]]]], tenant: str, lang: str
    ) -> Optional[Dict[str, List[Dict[str, Any]]]]:
        """Attach entity labels/records and attribute display names to facet values."""
        if not facets:
            return facets

        entity_names: List[str] = []
        for field_name in facets:
            entity = getattr(config_for(field_name), "entity", None)
            if entity and entity not in entity_names:
                entity_names.append(entity)
        needs_labels = any(extract_attribute_slug(field_name) for field_name in facets)

        loads = [self.load_entities(tenant, name) for name in entity_names]
        if needs_labels:
            loads.append(self.load_attribute_labels(tenant, lang))
        loaded = await _gather_all(*loads)
        entity_maps = dict(zip(entity_names, loaded))
        attribute_labels = loaded[-1] if needs_labels else {}

        enriched: Dict[str, List[Dict[str, Any]]] = {}
        for field_name, values in facets.items():
            slug = extract_attribute_slug(field_name)
            if slug is not None:
                key_label = attribute_labels.get(slug)
                enriched[field_name] = [{**value, "key_label": key_label or value["key_label"]} for value in values]
                continue

            entity_map = entity_maps.get(getattr(config_for(field_name), "entity", None) or "")
            if not entity_map:
                enriched[field_name] = values
                continue
            rows = []
            for value in values:
                entity = entity_map.get(value["value"])
                if entity is None:
                    rows.append(value)
                    continue
                rows.append(
                    {**value, "label": entity_label(entity, lang) or value["label"], "entity": sanitize_entity(entity)}
                )
            enriched[field_name] = rows
        return enriched

    # -- cache administration ----------------------------------------------

    def clear_all_caches(self) -> None:
        self.cache.clear()

    def clear_cache(self, name: str) -> None:
        self.cache.clear(name)

    def clear_tenant_cache(self, tenant: str, name: Optional[str] = None) -> None:
        self.cache.clear_tenant(tenant, name)

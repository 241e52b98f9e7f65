"""Turn raw engine responses into the canonical product shape.

Engine documents are denormalized: localized text lives in
``<field>_text_<lang>`` keys and rich sub-objects (taxonomy, media, pricing)
are stored as JSON strings. Everything here is pure and synchronous; a
malformed JSON field only loses that field.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, TypeVar

from .facet_config import facet_key_label, facet_value_label, get_multilingual_field
from .query_builder import VARIANT_GROUP_FIELD

logger = logging.getLogger(__name__)

T = TypeVar("T")

LANGUAGE_FALLBACK = ("it", "en")
PARENT_PENDING_KEY = "needs_parent_enrichment"
HIDDEN_FLAG = "show_in_storefront"
NULL_GROUP = "null"


def get_multilingual_value(value: Any, lang: str) -> Any:
    """Pick ``lang`` from a ``{lang: text}`` mapping, falling back to it, en, then any."""
    if not value:
        return None
    if not isinstance(value, dict):
        return value
    for code in (lang, *LANGUAGE_FALLBACK):
        if value.get(code):
            return value[code]
    for candidate in value.values():
        if candidate:
            return candidate
    return None


def pick_language(mapping: Dict[str, T], lang: str) -> Optional[T]:
    for code in (lang, *LANGUAGE_FALLBACK):
        if code in mapping:
            return mapping[code]
    return next(iter(mapping.values()), None)


def resolve_localized_field(doc: Dict[str, Any], name: str, lang: str) -> Any:
    """Value of ``<name>_text_<lang>`` with language fallback."""
    for code in (lang, *LANGUAGE_FALLBACK):
        value = doc.get(get_multilingual_field(name, code))
        if value:
            return value
    prefix = get_multilingual_field(name, "")
    for key, value in doc.items():
        if key.startswith(prefix) and value:
            return value
    return None


def first_value(value: Any) -> Any:
    """Unwrap single-element lists the engine returns for multi-valued fields."""
    if isinstance(value, list):
        return value[0] if value else None
    return value


def parse_json_field(raw: Any, transform: Callable[[Any], Optional[T]]) -> Optional[T]:
    if raw is None or raw == "":
        return None
    try:
        data = json.loads(raw) if isinstance(raw, str) else raw
        return transform(data)
    except (ValueError, TypeError, LookupError, AttributeError) as exc:
        logger.debug("Skipping malformed JSON field: %s", exc)
        return None


def localize_hierarchy(items: Optional[Iterable[Dict[str, Any]]], lang: str) -> Optional[List[Dict[str, Any]]]:
    if not items:
        return None
    return [
        {**item, "name": get_multilingual_value(item.get("name"), lang), "slug": get_multilingual_value(item.get("slug"), lang)}
        for item in items
    ]


def is_attribute_entry(value: Any) -> bool:
    return isinstance(value, dict) and ("label" in value or "value" in value)


def _normalize_attribute(entry: Dict[str, Any], lang: str, key: Optional[str] = None) -> Dict[str, Any]:
    attribute_key = entry.get("key") or key or ""
    return {
        **entry,
        "key": str(attribute_key),
        "label": get_multilingual_value(entry.get("label"), lang) or attribute_key,
        "value": entry.get("value"),
        "order": entry.get("order"),
    }


def _decode_flat_attributes(data: Dict[str, Any], lang: str) -> List[Dict[str, Any]]:
    attributes = [
        _normalize_attribute(entry, lang, key=slug) for slug, entry in data.items() if isinstance(entry, dict)
    ]
    # Entries without an order go last.
    attributes.sort(key=lambda item: (item["order"] is None, item["order"] if item["order"] is not None else 0))
    return attributes


def decode_attributes(data: Any, lang: str) -> Optional[List[Dict[str, Any]]]:
    """Normalize either stored attribute encoding into one ordered list.

    Accepted shapes: ``{lang: [{key, label, value}, ...]}``, ``{lang: {slug: {...}}}``,
    a plain list, and the flat ``{slug: {label, value, order}}`` form.
    """
    if isinstance(data, list):
        return [_normalize_attribute(entry, lang) for entry in data if isinstance(entry, dict)]
    if not isinstance(data, dict) or not data:
        return None
    if any(is_attribute_entry(value) for value in data.values()):
        return _decode_flat_attributes(data, lang)
    localized = pick_language(data, lang)
    if isinstance(localized, list):
        return [_normalize_attribute(entry, lang) for entry in localized if isinstance(entry, dict)]
    if isinstance(localized, dict):
        return _decode_flat_attributes(localized, lang)
    return None


def visible_attributes(attributes: Optional[List[Dict[str, Any]]]) -> Optional[List[Dict[str, Any]]]:
    """Drop storefront-hidden attributes and strip the visibility flag from the rest."""
    if attributes is None:
        return None
    return [
        {key: value for key, value in attribute.items() if key != HIDDEN_FLAG}
        for attribute in attributes
        if attribute.get(HIDDEN_FLAG) is not False
    ]


def decode_specifications(data: Any, lang: str) -> Optional[List[Dict[str, Any]]]:
    specs = data
    if isinstance(data, dict):
        specs = pick_language(data, lang)
    if not isinstance(specs, list):
        return None
    return [
        {**spec, "label": get_multilingual_value(spec.get("label"), lang) or spec.get("key")}
        for spec in specs
        if isinstance(spec, dict)
    ]


def _list_of(data: Any, item: Callable[[Dict[str, Any]], Dict[str, Any]]) -> Optional[List[Dict[str, Any]]]:
    if not isinstance(data, list):
        return None
    return [item(entry) for entry in data if isinstance(entry, dict)]


def _brand(data: Dict[str, Any], lang: str) -> Dict[str, Any]:
    return {
        "brand_id": data.get("brand_id"),
        "label": get_multilingual_value(data.get("label") or data.get("name"), lang),
        "slug": data.get("slug"),
        "description": get_multilingual_value(data.get("description"), lang),
        "logo_url": data.get("logo_url"),
        "website_url": data.get("website_url"),
        "is_active": data.get("is_active"),
        "product_count": data.get("product_count"),
        "display_order": data.get("display_order"),
        "parent_brand_id": data.get("parent_brand_id"),
        "brand_family": data.get("brand_family"),
        "level": data.get("level"),
        "path": data.get("path"),
        "hierarchy": data.get("hierarchy"),
    }


def _category(data: Dict[str, Any], doc: Dict[str, Any], lang: str) -> Dict[str, Any]:
    return {
        "category_id": data.get("category_id"),
        "name": get_multilingual_value(data.get("name"), lang),
        "slug": get_multilingual_value(data.get("slug"), lang),
        "details": get_multilingual_value(data.get("details"), lang),
        "image": data.get("image"),
        "icon": data.get("icon"),
        "breadcrumb": doc.get(f"category_breadcrumb_{lang}"),
        "description": get_multilingual_value(data.get("description"), lang),
        "is_active": data.get("is_active"),
        "product_count": data.get("product_count"),
        "display_order": data.get("display_order"),
        "parent_id": data.get("parent_id"),
        "level": data.get("level"),
        "path": data.get("path"),
        "hierarchy": localize_hierarchy(data.get("hierarchy"), lang),
    }


def _localize_type_specs(specs: Any, lang: str) -> Optional[List[Dict[str, Any]]]:
    return _list_of(
        specs,
        lambda spec: {
            "key": spec.get("key"),
            "label": get_multilingual_value(spec.get("label"), lang),
            "value": spec.get("value"),
            "unit": spec.get("unit"),
        },
    )


def _product_type(data: Dict[str, Any], lang: str) -> Dict[str, Any]:
    return {
        "product_type_id": data.get("product_type_id"),
        "code": data.get("code"),
        "name": get_multilingual_value(data.get("name"), lang),
        "slug": get_multilingual_value(data.get("slug"), lang),
        "description": get_multilingual_value(data.get("description"), lang),
        "is_active": data.get("is_active"),
        "product_count": data.get("product_count"),
        "display_order": data.get("display_order"),
        "technical_specifications": _localize_type_specs(data.get("technical_specifications"), lang),
        "parent_type_id": data.get("parent_type_id"),
        "level": data.get("level"),
        "path": data.get("path"),
        "hierarchy": localize_hierarchy(data.get("hierarchy"), lang),
        "inherited_technical_specifications": _localize_type_specs(
            data.get("inherited_technical_specifications"), lang
        ),
    }


def _collection(data: Dict[str, Any], lang: str) -> Dict[str, Any]:
    return {
        "collection_id": data.get("collection_id"),
        "name": get_multilingual_value(data.get("name"), lang),
        "slug": get_multilingual_value(data.get("slug"), lang),
        "description": get_multilingual_value(data.get("description"), lang),
        "is_active": data.get("is_active"),
        "product_count": data.get("product_count"),
        "display_order": data.get("display_order"),
        "parent_collection_id": data.get("parent_collection_id"),
        "level": data.get("level"),
        "path": data.get("path"),
        "hierarchy": localize_hierarchy(data.get("hierarchy"), lang),
    }


def _tag(data: Dict[str, Any], lang: str) -> Dict[str, Any]:
    group = data.get("tag_group_data")
    return {
        "tag_id": data.get("tag_id"),
        "name": get_multilingual_value(data.get("name"), lang),
        "slug": data.get("slug"),
        "description": get_multilingual_value(data.get("description"), lang),
        "color": data.get("color"),
        "is_active": data.get("is_active"),
        "tag_category": data.get("tag_category"),
        "tag_group": data.get("tag_group"),
        "tag_group_data": (
            {**group, "group_name": get_multilingual_value(group.get("group_name"), lang)}
            if isinstance(group, dict)
            else None
        ),
    }


def localize_labels(items: Any, lang: str) -> Optional[List[Dict[str, Any]]]:
    """Resolve the ``label`` of each entry (media, promotions, packaging)."""
    return _list_of(items, lambda item: {**item, "label": get_multilingual_value(item.get("label"), lang)})


def image_from_images(images: Optional[List[Dict[str, Any]]]) -> Optional[Dict[str, Any]]:
    """Main image built from the first gallery entry."""
    if not images or not isinstance(images[0], dict):
        return None
    first = images[0]
    url = first.get("url")
    return {
        "id": first.get("cdn_key") or url,
        "thumbnail": url,
        "medium": url,
        "large": url,
        "original": url,
    }


def _main_image(doc: Dict[str, Any], images: Optional[List[Dict[str, Any]]]) -> Optional[Dict[str, Any]]:
    image = parse_json_field(doc.get("image_json"), lambda data: data if isinstance(data, dict) else None)
    thumbnail = (image or {}).get("thumbnail") or ""
    if image is None or "placeholder" in thumbnail:
        return image_from_images(images) or image
    return image


ANALYTICS_FIELDS = ("views_30d", "clicks_30d", "add_to_cart_30d", "conversions_30d", "priority_score")


def transform_document(doc: Dict[str, Any], lang: str) -> Dict[str, Any]:
    """Engine document -> canonical product for ``lang``."""
    sku = doc.get("sku")
    images = parse_json_field(doc.get("images_json"), lambda data: data if isinstance(data, list) else None)

    analytics = None
    if any(doc.get(name) is not None for name in ANALYTICS_FIELDS):
        analytics = {name: doc.get(name) for name in ANALYTICS_FIELDS}

    return {
        "id": doc.get("id"),
        "sku": sku,
        "entity_code": doc.get("entity_code") or "",
        "ean": doc.get("ean"),
        "name": resolve_localized_field(doc, "name", lang) or sku or doc.get("entity_code"),
        "slug": resolve_localized_field(doc, "slug", lang) or (sku.lower() if isinstance(sku, str) else None),
        "description": resolve_localized_field(doc, "description", lang),
        "short_description": resolve_localized_field(doc, "short_description", lang),
        "long_description": resolve_localized_field(doc, "long_description", lang),
        "features": resolve_localized_field(doc, "features", lang),
        "price": doc.get("price"),
        "vat_rate": doc.get("vat_rate"),
        "quantity": doc.get("quantity"),
        "sold": doc.get("sold"),
        "unit": doc.get("unit"),
        "stock_status": doc.get("stock_status"),
        "cover_image_url": doc.get("cover_image_url"),
        "image_count": doc.get("image_count"),
        "has_video": first_value(doc.get("has_video")),
        "image": _main_image(doc, images),
        "images": images,
        "gallery": parse_json_field(doc.get("gallery_json"), lambda data: data if isinstance(data, list) else None),
        "media": parse_json_field(doc.get("media_json"), lambda data: localize_labels(data, lang)),
        "brand": parse_json_field(doc.get("brand_json"), lambda data: _brand(data, lang)),
        "category": parse_json_field(doc.get("category_json"), lambda data: _category(data, doc, lang)),
        "product_type": parse_json_field(doc.get("product_type_json"), lambda data: _product_type(data, lang)),
        "collections": parse_json_field(
            doc.get("collections_json"), lambda data: _list_of(data, lambda item: _collection(item, lang)) or []
        ),
        "tags": parse_json_field(doc.get("tags_json"), lambda data: _list_of(data, lambda item: _tag(item, lang))),
        "attributes": parse_json_field(
            doc.get("attributes_json"), lambda data: visible_attributes(decode_attributes(data, lang))
        ),
        "technical_specifications": parse_json_field(
            doc.get("technical_specifications_json"), lambda data: decode_specifications(data, lang)
        ),
        "has_active_promo": first_value(doc.get("has_active_promo")),
        "promo_codes": doc.get("promo_codes"),
        "promotions": parse_json_field(doc.get("promotions_json"), lambda data: localize_labels(data, lang)),
        "packaging_options": parse_json_field(doc.get("packaging_json"), lambda data: localize_labels(data, lang)),
        "is_parent": first_value(doc.get("is_parent")),
        "parent_entity_code": doc.get("parent_entity_code"),
        "parent_sku": doc.get("parent_sku"),
        "variants_sku": doc.get("variants_sku"),
        "variants_entity_code": doc.get("variants_entity_code"),
        "share_images_with_variants": first_value(doc.get("share_images_with_variants")),
        "share_media_with_variants": first_value(doc.get("share_media_with_variants")),
        "include_faceting": first_value(doc.get("include_faceting")),
        "version": doc.get("version"),
        "isCurrent": first_value(doc.get("is_current")),
        "isCurrentPublished": first_value(doc.get("is_current_published")),
        "status": doc.get("status"),
        "product_status": doc.get("product_status"),
        "product_status_description": resolve_localized_field(doc, "product_status_description", lang),
        "product_model": doc.get("product_model"),
        "completeness_score": doc.get("completeness_score"),
        "priority_score": doc.get("priority_score"),
        "analytics": analytics,
        "meta_title": resolve_localized_field(doc, "meta_title", lang),
        "meta_description": resolve_localized_field(doc, "meta_description", lang),
        "source": parse_json_field(doc.get("source_json"), lambda data: data if isinstance(data, dict) else None),
        "created_at": doc.get("created_at"),
        "updated_at": doc.get("updated_at"),
        "published_at": doc.get("published_at"),
    }


def _facet_key(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _facet_values(field_name: str, pairs: Iterable[Sequence[Any]]) -> List[Dict[str, Any]]:
    key_label = facet_key_label(field_name)
    values = []
    for raw_value, raw_count in pairs:
        count = int(raw_count or 0)
        if count <= 0:
            continue
        value = _facet_key(raw_value)
        values.append(
            {
                "value": value,
                "count": count,
                "label": facet_value_label(field_name, value),
                "key_label": key_label,
            }
        )
    return values


def transform_json_facets(facets: Dict[str, Any]) -> Dict[str, List[Dict[str, Any]]]:
    results: Dict[str, List[Dict[str, Any]]] = {}
    for field_name, data in facets.items():
        if field_name == "count" or not isinstance(data, dict):
            continue
        buckets = data.get("buckets")
        if buckets is None:
            continue
        values = _facet_values(field_name, ((bucket.get("val"), bucket.get("count")) for bucket in buckets))
        results[field_name] = values
    return results


def transform_legacy_facets(facet_fields: Dict[str, List[Any]]) -> Dict[str, List[Dict[str, Any]]]:
    """``[value, count, value, count, ...]`` arrays from ``facet_counts``."""
    results: Dict[str, List[Dict[str, Any]]] = {}
    for field_name, flat in facet_fields.items():
        values = _facet_values(field_name, zip(flat[0::2], flat[1::2]))
        if values:
            results[field_name] = values
    return results


def transform_facets(raw: Dict[str, Any]) -> Optional[Dict[str, List[Dict[str, Any]]]]:
    if raw.get("facets"):
        return transform_json_facets(raw["facets"])
    legacy = (raw.get("facet_counts") or {}).get("facet_fields")
    if legacy:
        return transform_legacy_facets(legacy)
    return None


def transform_facet_response(raw: Dict[str, Any]) -> Dict[str, Any]:
    return {"facet_results": transform_facets(raw) or {}}


def _transform_groups(groups: List[Dict[str, Any]], lang: str) -> List[Dict[str, Any]]:
    transformed = []
    for group in groups:
        doclist = group.get("doclist") or {}
        group_value = group.get("groupValue")
        transformed.append(
            {
                "groupValue": NULL_GROUP if group_value is None else str(group_value),
                "numFound": doclist.get("numFound", 0),
                "docs": [transform_document(doc, lang) for doc in doclist.get("docs", [])],
            }
        )
    return transformed


def _grouped_block(field_name: str, group_data: Dict[str, Any], groups: List[Dict[str, Any]]) -> Dict[str, Any]:
    ngroups = group_data.get("ngroups")
    return {
        "field": field_name,
        "ngroups": ngroups if ngroups is not None else len(groups),
        "matches": group_data.get("matches", 0),
        "groups": groups,
    }


def _grouped_start(raw: Dict[str, Any], start: Optional[int]) -> int:
    """Grouped replies carry no ``response`` block; the offset comes from the request."""
    if start is not None:
        return start
    params = (raw.get("responseHeader") or {}).get("params") or {}
    try:
        return int(params.get("start", 0))
    except (TypeError, ValueError):
        return 0


def transform_grouped_response(
    raw: Dict[str, Any], lang: str, group_field: str, start: Optional[int] = None
) -> Dict[str, Any]:
    group_data = raw["grouped"][group_field]
    groups = _transform_groups(group_data.get("groups", []), lang)
    grouped = _grouped_block(group_field, group_data, groups)
    flat = [doc for group in groups for doc in group["docs"]]
    return {
        "results": flat,
        "numFound": grouped["ngroups"],
        "matches": grouped["matches"],
        "start": _grouped_start(raw, start),
        "facet_results": transform_facets(raw),
        "grouped": grouped,
    }


def transform_variant_grouped_response(raw: Dict[str, Any], lang: str, start: Optional[int] = None) -> Dict[str, Any]:
    """Group value is the parent's entity code; every doc in a group is a variant.

    Parents get a placeholder that the enricher fills from the document store.
    Documents without a parent (null group) are returned as they are.
    """
    group_data = raw["grouped"][VARIANT_GROUP_FIELD]
    groups = _transform_groups(group_data.get("groups", []), lang)
    results: List[Dict[str, Any]] = []
    for raw_group, group in zip(group_data.get("groups", []), groups):
        variants = group["docs"]
        if not variants:
            continue
        if raw_group.get("groupValue") is None:
            results.extend(variants)
            continue
        results.append(
            {
                "entity_code": group["groupValue"],
                "is_parent": True,
                PARENT_PENDING_KEY: True,
                "variants": list(variants),
            }
        )
    grouped = _grouped_block(VARIANT_GROUP_FIELD, group_data, groups)
    return {
        "results": results,
        "numFound": grouped["ngroups"],
        "matches": grouped["matches"],
        "start": _grouped_start(raw, start),
        "facet_results": transform_facets(raw),
        "grouped": grouped,
    }


def transform_search_response(
    raw: Dict[str, Any],
    lang: str,
    group_field: Optional[str] = None,
    group_variants: bool = False,
    start: Optional[int] = None,
) -> Dict[str, Any]:
    grouped = raw.get("grouped") or {}
    if group_field and group_field in grouped:
        if group_variants and group_field == VARIANT_GROUP_FIELD:
            return transform_variant_grouped_response(raw, lang, start)
        return transform_grouped_response(raw, lang, group_field, start)

    response = raw.get("response") or {}
    return {
        "results": [transform_document(doc, lang) for doc in response.get("docs", [])],
        "numFound": response.get("numFound", 0),
        "start": response.get("start", 0),
        "facet_results": transform_facets(raw),
    }

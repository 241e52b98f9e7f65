"""Facet registry and engine field-name mapping.

Static facets are declared in :data:`FACET_FIELDS`. Dynamic product
attributes are indexed as ``attribute_<slug>_<suffix>`` where the suffix is
``s`` (string), ``b`` (boolean) or ``f`` (numeric); their configuration is
derived from the field name on demand.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Tuple, Union


class FacetKind(str, Enum):
    FLAT = "flat"
    HIERARCHICAL = "hierarchical"
    BOOLEAN = "boolean"
    RANGE = "range"


@dataclass(frozen=True)
class FacetRange:
    label: str
    start: Optional[float] = None
    end: Optional[float] = None


@dataclass(frozen=True)
class FacetFieldConfig:
    kind: FacetKind
    label: str
    labels: Dict[str, str] = field(default_factory=dict)
    # Name of the tenant entity collection whose records describe the values.
    entity: Optional[str] = None
    ranges: Tuple[FacetRange, ...] = ()


@dataclass(frozen=True)
class DynamicAttributeFacet:
    field: str
    slug: str
    value_type: str
    kind: FacetKind
    labels: Dict[str, str] = field(default_factory=dict)

    @property
    def label(self) -> str:
        # Placeholder until the attribute label cache resolves the real one.
        return self.slug.replace("_", " ").capitalize()


FacetConfig = Union[FacetFieldConfig, DynamicAttributeFacet]

BOOLEAN_LABELS = {"true": "Yes", "false": "No"}

_TREE = FacetKind.HIERARCHICAL

FACET_FIELDS: Dict[str, FacetFieldConfig] = {
    "category_id": FacetFieldConfig(_TREE, "Category", entity="categories"),
    "category_ancestors": FacetFieldConfig(_TREE, "Category", entity="categories"),
    "brand_id": FacetFieldConfig(_TREE, "Brand", entity="brands"),
    "brand_ancestors": FacetFieldConfig(_TREE, "Brand", entity="brands"),
    "brand_family": FacetFieldConfig(FacetKind.FLAT, "Brand family"),
    "product_type_id": FacetFieldConfig(_TREE, "Product type", entity="product_types"),
    "product_type_ancestors": FacetFieldConfig(_TREE, "Product type", entity="product_types"),
    "product_type_code": FacetFieldConfig(FacetKind.FLAT, "Product type", entity="product_types_by_code"),
    "collection_ids": FacetFieldConfig(_TREE, "Collection", entity="collections"),
    "collection_ancestors": FacetFieldConfig(_TREE, "Collection", entity="collections"),
    "tag_groups": FacetFieldConfig(FacetKind.FLAT, "Tags", entity="tags"),
    "tag_categories": FacetFieldConfig(FacetKind.FLAT, "Tag category"),
    "promo_codes": FacetFieldConfig(FacetKind.FLAT, "Promotion"),
    "product_model": FacetFieldConfig(FacetKind.FLAT, "Model"),
    "parent_entity_code": FacetFieldConfig(FacetKind.FLAT, "Parent product"),
    "stock_status": FacetFieldConfig(
        FacetKind.FLAT,
        "Availability",
        labels={
            "in_stock": "In stock",
            "out_of_stock": "Out of stock",
            "pre_order": "Pre-order",
            "low_stock": "Low stock",
        },
    ),
    "status": FacetFieldConfig(
        FacetKind.FLAT,
        "Status",
        labels={"draft": "Draft", "published": "Published", "archived": "Archived"},
    ),
    "has_active_promo": FacetFieldConfig(
        FacetKind.BOOLEAN, "On promotion", labels={"true": "On promotion", "false": "Regular price"}
    ),
    "has_video": FacetFieldConfig(FacetKind.BOOLEAN, "Has video", labels=dict(BOOLEAN_LABELS)),
    "is_parent": FacetFieldConfig(FacetKind.BOOLEAN, "Has variants", labels=dict(BOOLEAN_LABELS)),
    "price": FacetFieldConfig(
        FacetKind.RANGE,
        "Price",
        ranges=(
            FacetRange("0 - 50", 0, 50),
            FacetRange("50 - 100", 50, 100),
            FacetRange("100 - 150", 100, 150),
            FacetRange("150 - 200", 150, 200),
            FacetRange("200 - 500", 200, 500),
            FacetRange("500+", 500, None),
        ),
    ),
}

# Identifier-like facets where an empty or missing value must never surface
# as a bucket of its own.
NON_EMPTY_FACET_FIELDS = frozenset(
    {"product_model", "parent_entity_code", "brand_id", "category_id", "product_type_id", "product_type_code"}
)

# Public filter names that differ from the indexed field names.
FILTER_FIELD_MAP: Dict[str, str] = {
    "brand": "brand_id",
    "category": "category_id",
    "product_type": "product_type_id",
    "collection": "collection_ids",
    "collections": "collection_ids",
    "tag": "tag_groups",
    "tags": "tag_groups",
    "promo": "promo_codes",
    "model": "product_model",
    "parent": "parent_entity_code",
}

SORT_FIELD_MAP: Dict[str, str] = {
    "relevance": "score",
    "newest": "created_at",
    "popularity": "priority_score",
    "priority": "priority_score",
    "completeness": "completeness_score",
    "price": "price",
}

# Sorts on the non-analyzed, lowercased per-language copy of the text field.
LOCALIZED_SORT_FIELDS = {"name": "name_sort", "description": "description_sort"}

ATTRIBUTE_FIELD_RE = re.compile(r"^attribute_(?P<slug>.+)_(?P<suffix>[sbf])$")
_ATTRIBUTE_VALUE_TYPES = {"s": "string", "b": "boolean", "f": "number"}


def get_multilingual_field(name: str, lang: str) -> str:
    return f"{name}_text_{lang}"


def get_filter_field(name: str) -> str:
    return FILTER_FIELD_MAP.get(name, name)


def get_sort_field(name: str, lang: str) -> str:
    if name in LOCALIZED_SORT_FIELDS:
        return f"{LOCALIZED_SORT_FIELDS[name]}_{lang}"
    return SORT_FIELD_MAP.get(name, name)


def extract_attribute_slug(field_name: str) -> Optional[str]:
    """``attribute_colore_s`` -> ``colore``; ``None`` for anything else."""
    match = ATTRIBUTE_FIELD_RE.match(field_name)
    return match.group("slug") if match else None


def dynamic_attribute_facet(field_name: str) -> Optional[DynamicAttributeFacet]:
    match = ATTRIBUTE_FIELD_RE.match(field_name)
    if not match:
        return None
    suffix = match.group("suffix")
    if suffix == "b":
        return DynamicAttributeFacet(
            field_name, match.group("slug"), "boolean", FacetKind.BOOLEAN, labels=dict(BOOLEAN_LABELS)
        )
    return DynamicAttributeFacet(field_name, match.group("slug"), _ATTRIBUTE_VALUE_TYPES[suffix], FacetKind.FLAT)


def config_for(field_name: str) -> Optional[FacetConfig]:
    """Static registry entry for ``field_name``, else a derived attribute facet."""
    static = FACET_FIELDS.get(field_name)
    if static is not None:
        return static
    return dynamic_attribute_facet(field_name)


def range_label(config: FacetFieldConfig, value: str) -> Optional[str]:
    """Label of the configured bucket starting at ``value`` (engine range bucket key)."""
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return None
    for bucket in config.ranges:
        if bucket.start is not None and float(bucket.start) == numeric:
            return bucket.label
    return None


def facet_value_label(field_name: str, value: str) -> str:
    config = config_for(field_name)
    if config is None:
        return value
    if config.labels and value in config.labels:
        return config.labels[value]
    if config.kind == FacetKind.BOOLEAN:
        return BOOLEAN_LABELS.get(value, value)
    if config.kind == FacetKind.RANGE and isinstance(config, FacetFieldConfig):
        return range_label(config, value) or value
    return value


def facet_key_label(field_name: str) -> str:
    config = config_for(field_name)
    return config.label if config is not None else field_name

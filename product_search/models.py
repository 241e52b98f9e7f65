"""Pydantic models for request/response payloads."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

FilterValue = Union[bool, int, float, str, List[str]]


class SortOption(BaseModel):
    field: str = Field(..., description="Public sort name (price, newest, name, ...) or engine field")
    order: Literal["asc", "desc"] = "desc"


class GroupOptions(BaseModel):
    field: str = Field(..., description="Field to group by, e.g. brand_id or product_model")
    limit: Optional[int] = Field(None, description="Max docs per group (default 3, -1 for all)")
    sort: Optional[str] = Field(None, description="Sort within each group, e.g. 'price asc'")
    ngroups: Optional[bool] = None
    main: Optional[bool] = None
    truncate: Optional[bool] = None


class SearchRequest(BaseModel):
    text: Optional[str] = Field(None, description="Free-text query")
    lang: str = Field(..., min_length=2, description="Language code (it, en, de, ...)")
    start: int = Field(0, ge=0)
    rows: Optional[int] = Field(None, ge=0)
    filters: Dict[str, FilterValue] = Field(default_factory=dict)
    sort: Optional[SortOption] = None
    fuzzy: bool = False
    fuzzy_num: int = Field(1, ge=1, le=2)
    include_faceting: bool = True
    group_variants: bool = False
    group: Optional[GroupOptions] = None
    facet_fields: Optional[List[str]] = None


class FacetRequest(BaseModel):
    text: Optional[str] = None
    lang: str = Field(..., min_length=2)
    filters: Dict[str, FilterValue] = Field(default_factory=dict)
    facet_fields: List[str] = Field(..., min_length=1)
    facet_limit: Optional[int] = Field(None, ge=1)
    facet_mincount: Optional[int] = Field(None, ge=0)
    facet_sort: Optional[Literal["count", "index"]] = None
    include_faceting: bool = True


class AttributeData(BaseModel):
    model_config = ConfigDict(extra="allow")

    key: str
    label: Optional[str] = None
    value: Any = None
    order: Optional[float] = None


class PackagingOption(BaseModel):
    model_config = ConfigDict(extra="allow")

    pkg_id: Optional[Union[str, int]] = None
    code: Optional[str] = None
    label: Optional[str] = None
    qty: Optional[float] = None
    uom: Optional[str] = None
    is_default: Optional[bool] = None
    is_smallest: Optional[bool] = None
    is_sellable: Optional[bool] = None
    pricing: Optional[Dict[str, Any]] = None
    promotions: Optional[List[Dict[str, Any]]] = None


class Product(BaseModel):
    """Canonical product shape returned to callers."""

    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    sku: Optional[str] = None
    entity_code: str = ""
    ean: Optional[Union[List[str], str]] = None

    name: Optional[str] = None
    slug: Optional[str] = None
    description: Optional[str] = None
    short_description: Optional[str] = None
    long_description: Optional[str] = None

    price: Optional[float] = None
    vat_rate: Optional[float] = None
    stock_status: Optional[str] = None

    cover_image_url: Optional[str] = None
    image_count: Optional[int] = None
    image: Optional[Dict[str, Any]] = None
    images: Optional[List[Dict[str, Any]]] = None
    gallery: Optional[List[Dict[str, Any]]] = None
    media: Optional[List[Dict[str, Any]]] = None

    brand: Optional[Dict[str, Any]] = None
    category: Optional[Dict[str, Any]] = None
    product_type: Optional[Dict[str, Any]] = None
    collections: Optional[List[Dict[str, Any]]] = None
    tags: Optional[List[Dict[str, Any]]] = None

    attributes: Optional[List[AttributeData]] = None
    technical_specifications: Optional[List[Dict[str, Any]]] = None

    has_active_promo: Optional[bool] = None
    promotions: Optional[List[Dict[str, Any]]] = None
    packaging_options: Optional[List[PackagingOption]] = None

    is_parent: Optional[bool] = None
    parent_entity_code: Optional[str] = None
    variants_entity_code: Optional[List[str]] = None
    variants: Optional[List["Product"]] = None

    created_at: Optional[Union[datetime, str]] = None
    updated_at: Optional[Union[datetime, str]] = None


class FacetValue(BaseModel):
    model_config = ConfigDict(extra="allow")

    value: str
    count: int
    label: str
    key_label: str
    entity: Optional[Dict[str, Any]] = None


FacetResults = Dict[str, List[FacetValue]]


class ProductGroup(BaseModel):
    groupValue: str
    numFound: int
    docs: List[Product]


class GroupedResults(BaseModel):
    field: str
    ngroups: int
    matches: int
    groups: List[ProductGroup]


class SearchResponse(BaseModel):
    results: List[Product]
    numFound: int
    start: int
    matches: Optional[int] = None
    facet_results: Optional[FacetResults] = None
    grouped: Optional[GroupedResults] = None


class SearchEnvelope(BaseModel):
    success: bool = True
    data: SearchResponse


class FacetResponse(BaseModel):
    facet_results: FacetResults = Field(default_factory=dict)


class CacheClearRequest(BaseModel):
    collection: Optional[str] = Field(None, description="Entity cache to clear (brands, categories, ...); all when omitted")
    all_tenants: bool = False


class ErrorDetails(BaseModel):
    code: str
    message: str
    statusCode: Optional[int] = None


class ErrorResponse(BaseModel):
    error: str
    details: Optional[ErrorDetails] = None

"""Compile search and facet requests into engine JSON queries.

Ranking model for free text:

* every (stopword-filtered) term is required and is matched against the
  weighted field table below with up to three tiers per field: exact,
  ``term*`` prefix and ``*term*`` contains;
* each term's disjunction is raised to a position boost of
  ``1.5 * (n - i)`` so earlier words weigh more;
* terms found in the first characters of the product name, and adjacent
  word pairs of the raw query found in the name, get large extra boosts;
* documents with more images win ties.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from .config import Settings, settings
from .facet_config import (
    NON_EMPTY_FACET_FIELDS,
    FacetFieldConfig,
    FacetKind,
    FacetRange,
    config_for,
    get_filter_field,
    get_multilingual_field,
    get_sort_field,
)
from .models import FacetRequest, FilterValue, GroupOptions, SearchRequest, SortOption
from .stopwords import filter_search_stopwords

logger = logging.getLogger(__name__)

MATCH_ALL = "*:*"

POSITION_BOOST_STEP = 1.5
# Term must start within this many characters of the lowercase name.
NAME_LOCALITY_CHARS = 25
NAME_LOCALITY_BOOST = 5000
PHRASE_BOOST = 3000
PHRASE_EARLY_CHARS = 20
PHRASE_EARLY_BOOST = 8000
# (lower, upper, boost); upper ``None`` is open-ended. Bands must not overlap.
IMAGE_COUNT_BOOSTS: Tuple[Tuple[int, Optional[int], float], ...] = (
    (1, 2, 2),
    (3, 4, 4),
    (5, None, 6),
)

DEFAULT_GROUP_LIMIT = 3
VARIANT_GROUP_FIELD = "parent_entity_code"
DEFAULT_RANGE_START = 0
DEFAULT_RANGE_END = 10000
DEFAULT_RANGE_GAP = 100

_SPECIAL_CHARS_RE = re.compile(r'([+\-&|!(){}\[\]^"~*?:\\/])')
_SPECIAL_CHARS_NO_WILDCARD_RE = re.compile(r'([+\-&|!(){}\[\]^"~?:\\/])')
_REGEX_SPECIAL_RE = re.compile(r"([^\w\s])")
_NEEDS_QUOTES_RE = re.compile(r'[\s:()\[\]{}"]')
_WHITESPACE_RE = re.compile(r"(\s)")


@dataclass(frozen=True)
class SearchField:
    name: str
    exact: Optional[float]
    prefix: Optional[float] = None
    contains: Optional[float] = None
    localized: str = ""  # "text" -> name_text_<lang>, "sort" -> name_sort_<lang>
    fuzzy: bool = False

    def engine_field(self, lang: str) -> str:
        if self.localized == "text":
            return get_multilingual_field(self.name, lang)
        if self.localized == "sort":
            return f"{self.name}_{lang}"
        return self.name


# Identifier fields outrank every text field; name fields outrank the
# secondary text fields. ``exact=None`` is a prefix-only field, ``prefix=None``
# disables wildcarding.
SEARCH_FIELDS: Tuple[SearchField, ...] = (
    SearchField("entity_code", exact=1000, prefix=300),
    SearchField("ean", exact=1000),
    SearchField("sku", exact=900, prefix=250),
    SearchField("parent_entity_code", exact=700),
    SearchField("parent_sku", exact=700),
    SearchField("name", exact=100, prefix=40, localized="text", fuzzy=True),
    SearchField("name", exact=80, prefix=30, fuzzy=True),
    SearchField("name_sort", exact=None, prefix=60, contains=15, localized="sort"),
    SearchField("brand_label", exact=20, prefix=8, fuzzy=True),
    SearchField("short_description", exact=15, prefix=5, contains=3, localized="text", fuzzy=True),
    SearchField("description", exact=10, prefix=4, contains=2, localized="text", fuzzy=True),
    SearchField("features", exact=8, prefix=3, localized="text", fuzzy=True),
    SearchField("attributes", exact=8, prefix=3, localized="text", fuzzy=True),
    SearchField("technical_specifications", exact=6, prefix=2, localized="text", fuzzy=True),
    SearchField("meta_title", exact=5, prefix=2, localized="text", fuzzy=True),
    SearchField("meta_description", exact=4, localized="text", fuzzy=True),
    SearchField("tags", exact=5, prefix=2, fuzzy=True),
)

NAME_SORT_FIELD = "name_sort"


def _num(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else repr(float(value))


def escape_query_chars(text: str, keep_wildcard: bool = False) -> str:
    """Backslash-escape Lucene query syntax characters."""
    pattern = _SPECIAL_CHARS_NO_WILDCARD_RE if keep_wildcard else _SPECIAL_CHARS_RE
    return pattern.sub(r"\\\1", text)


def escape_regex_chars(text: str) -> str:
    return _REGEX_SPECIAL_RE.sub(r"\\\1", text)


def split_terms(text: Optional[str]) -> List[str]:
    if not text:
        return []
    return text.strip().lower().split()


def position_boost(index: int, total: int) -> float:
    """Boost of the term at ``index`` among ``total`` search terms."""
    if total <= 1:
        return 1.0
    return POSITION_BOOST_STEP * (total - index)


def build_image_boost() -> List[str]:
    clauses = []
    for lower, upper, boost in IMAGE_COUNT_BOOSTS:
        upper_repr = "*" if upper is None else str(upper)
        clauses.append(f"image_count:[{lower} TO {upper_repr}]^{_num(boost)}")
    return clauses


def build_term_clause(term: str, lang: str, fuzzy: bool = False, fuzzy_num: int = 1) -> str:
    escaped = escape_query_chars(term)
    parts: List[str] = []
    for search_field in SEARCH_FIELDS:
        field_name = search_field.engine_field(lang)
        if search_field.exact is not None:
            if fuzzy and search_field.fuzzy:
                parts.append(f"{field_name}:{escaped}~{fuzzy_num}^{_num(search_field.exact)}")
            else:
                parts.append(f"{field_name}:{escaped}^{_num(search_field.exact)}")
        if search_field.prefix is not None:
            parts.append(f"{field_name}:{escaped}*^{_num(search_field.prefix)}")
        if search_field.contains is not None:
            parts.append(f"{field_name}:*{escaped}*^{_num(search_field.contains)}")
    return "(" + " OR ".join(parts) + ")"


def build_name_locality_boost(terms: Sequence[str], lang: str) -> List[str]:
    field_name = f"{NAME_SORT_FIELD}_{lang}"
    return [
        f"{field_name}:/.{{0,{NAME_LOCALITY_CHARS}}}{escape_regex_chars(term)}.*/^{NAME_LOCALITY_BOOST}"
        for term in terms
    ]


def build_phrase_boost(raw_terms: Sequence[str], lang: str) -> List[str]:
    field_name = f"{NAME_SORT_FIELD}_{lang}"
    clauses: List[str] = []
    for first, second in zip(raw_terms, raw_terms[1:]):
        phrase = f"{escape_regex_chars(first)} {escape_regex_chars(second)}"
        clauses.append(f"{field_name}:/.*{phrase}.*/^{PHRASE_BOOST}")
        clauses.append(f"{field_name}:/.{{0,{PHRASE_EARLY_CHARS}}}{phrase}.*/^{PHRASE_EARLY_BOOST}")
    return clauses


def build_main_query(text: Optional[str], lang: str, fuzzy: bool = False, fuzzy_num: int = 1) -> str:
    """Main relevance query for ``text``; match-all plus image boost when blank."""
    raw_terms = split_terms(text)
    if not raw_terms:
        return " ".join([f"+{MATCH_ALL}", *build_image_boost()])

    search_terms = filter_search_stopwords(raw_terms, lang)
    total = len(search_terms)
    clauses = [
        f"+{build_term_clause(term, lang, fuzzy, fuzzy_num)}^{_num(position_boost(index, total))}"
        for index, term in enumerate(search_terms)
    ]
    clauses.extend(build_name_locality_boost(search_terms, lang))
    clauses.extend(build_phrase_boost(raw_terms, lang))
    clauses.extend(build_image_boost())
    logger.debug("main query raw=%s terms=%s", raw_terms, search_terms)
    return " ".join(clauses)


def _format_filter_value(value: Union[str, int, float]) -> str:
    text = str(value)
    if "*" in text:
        return _WHITESPACE_RE.sub(r"\\\1", escape_query_chars(text, keep_wildcard=True))
    if _NEEDS_QUOTES_RE.search(text):
        return '"' + text.replace("\\", "\\\\").replace('"', '\\"') + '"'
    return escape_query_chars(text)


def build_filter_clause(field_name: str, value: FilterValue) -> Optional[str]:
    if isinstance(value, bool):
        return f"{field_name}:{str(value).lower()}"
    if isinstance(value, (int, float)):
        return f"{field_name}:{_num(value)}"
    if isinstance(value, str):
        return f"{field_name}:{_format_filter_value(value)}"
    if isinstance(value, list) and value:
        if len(value) == 1:
            return build_filter_clause(field_name, value[0])
        return f"{field_name}:(" + " OR ".join(_format_filter_value(item) for item in value) + ")"
    return None


def build_range_filter(field_name: str, lower: Optional[float], upper: Optional[float]) -> Optional[str]:
    if lower is None and upper is None:
        return None
    lower_repr = "*" if lower is None else _num(lower)
    upper_repr = "*" if upper is None else _num(upper)
    return f"{field_name}:[{lower_repr} TO {upper_repr}]"


def build_filter_queries(filters: Optional[Dict[str, FilterValue]], include_faceting: bool = True) -> List[str]:
    fq: List[str] = []
    if include_faceting:
        fq.append("include_faceting:true")
    if not filters:
        return fq

    for key, value in filters.items():
        if value is None or key in ("price_min", "price_max"):
            continue
        clause = build_filter_clause(get_filter_field(key), value)
        if clause:
            fq.append(clause)

    price_filter = build_range_filter("price", _as_number(filters.get("price_min")), _as_number(filters.get("price_max")))
    if price_filter:
        fq.append(price_filter)
    return fq


def _as_number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def build_sort_clause(sort: Optional[SortOption], lang: str, has_text: bool) -> str:
    if sort is None:
        return "score desc" if has_text else "created_at desc"
    return f"{get_sort_field(sort.field, lang)} {sort.order}"


def resolve_group(request: SearchRequest) -> Optional[GroupOptions]:
    """Effective grouping; ``group_variants`` wins over an explicit ``group``."""
    if request.group_variants:
        return GroupOptions(field=VARIANT_GROUP_FIELD, limit=-1, ngroups=True)
    return request.group


def build_group_params(group: GroupOptions, global_sort: Optional[str] = None) -> Dict[str, Any]:
    params: Dict[str, Any] = {
        "group": True,
        "group.field": group.field,
        "group.limit": group.limit if group.limit is not None else DEFAULT_GROUP_LIMIT,
        "group.ngroups": group.ngroups if group.ngroups is not None else True,
    }
    if group.sort:
        params["group.sort"] = group.sort
    elif global_sort:
        params["group.sort"] = global_sort
    if group.main:
        params["group.main"] = True
    if group.truncate is not False:
        params["group.truncate"] = True
    return params


def _range_gap(ranges: Sequence[FacetRange]) -> float:
    first = ranges[0] if ranges else None
    if first is not None and first.start is not None and first.end is not None:
        return first.end - first.start
    return DEFAULT_RANGE_GAP


def build_range_facet(field_name: str, config: FacetFieldConfig) -> Dict[str, Any]:
    ranges = config.ranges
    start = ranges[0].start if ranges and ranges[0].start is not None else DEFAULT_RANGE_START
    end = ranges[-1].end if ranges and ranges[-1].end is not None else DEFAULT_RANGE_END
    return {
        "type": "range",
        "field": get_filter_field(field_name),
        "start": start,
        "end": end,
        "gap": _range_gap(ranges),
    }


def build_facet_query(
    facet_fields: Sequence[str],
    limit: Optional[int] = None,
    mincount: Optional[int] = None,
    sort: Optional[str] = None,
    config: Settings = settings,
) -> Dict[str, Dict[str, Any]]:
    facet: Dict[str, Dict[str, Any]] = {}
    for field_name in facet_fields:
        field_config = config_for(field_name)
        if (
            isinstance(field_config, FacetFieldConfig)
            and field_config.kind == FacetKind.RANGE
            and field_config.ranges
        ):
            facet[field_name] = build_range_facet(field_name, field_config)
            continue
        engine_field = get_filter_field(field_name)
        terms: Dict[str, Any] = {
            "type": "terms",
            "field": engine_field,
            "limit": limit or config.facet_limit,
            "mincount": mincount or config.facet_mincount,
            "sort": sort or "count",
        }
        if field_name in NON_EMPTY_FACET_FIELDS:
            terms["domain"] = {"filter": f'{engine_field}:[* TO *] -{engine_field}:""'}
        facet[field_name] = terms
    return facet


def clamp_rows(rows: Optional[int], config: Settings = settings) -> int:
    return min(rows or config.default_rows, config.max_rows)


def build_search_query(request: SearchRequest, config: Settings = settings) -> Dict[str, Any]:
    """Engine JSON query for a search request."""
    lang = request.lang or config.default_lang
    has_text = bool(split_terms(request.text))
    sort = build_sort_clause(request.sort, lang, has_text)
    filters = build_filter_queries(request.filters, request.include_faceting)

    query: Dict[str, Any] = {
        "query": build_main_query(request.text, lang, request.fuzzy, request.fuzzy_num),
        "offset": request.start,
        "limit": clamp_rows(request.rows, config),
        "fields": "*",
    }
    if filters:
        query["filter"] = filters

    group = resolve_group(request)
    if group is not None:
        query["params"] = build_group_params(group, sort)
    else:
        query["sort"] = sort

    if request.facet_fields:
        query["facet"] = build_facet_query(request.facet_fields, config=config)
    return query


def build_facet_only_query(request: FacetRequest, config: Settings = settings) -> Dict[str, Any]:
    """Facet-only query: no documents, match-all unless text is given."""
    lang = request.lang or config.default_lang
    main_query = build_main_query(request.text, lang) if split_terms(request.text) else MATCH_ALL
    query: Dict[str, Any] = {
        "query": main_query,
        "offset": 0,
        "limit": 0,
        "facet": build_facet_query(
            request.facet_fields,
            request.facet_limit,
            request.facet_mincount,
            request.facet_sort,
            config=config,
        ),
    }
    filters = build_filter_queries(request.filters, request.include_faceting)
    if filters:
        query["filter"] = filters
    return query


def build_query_params(request: SearchRequest, config: Settings = settings) -> Dict[str, Union[str, List[str]]]:
    """Classic ``/select`` parameters for engines without the JSON request API."""
    lang = request.lang or config.default_lang
    has_text = bool(split_terms(request.text))
    params: Dict[str, Union[str, List[str]]] = {
        "q": build_main_query(request.text, lang, request.fuzzy, request.fuzzy_num),
        "sort": build_sort_clause(request.sort, lang, has_text),
        "start": str(request.start),
        "rows": str(clamp_rows(request.rows, config)),
    }
    fq = build_filter_queries(request.filters, request.include_faceting)
    if fq:
        params["fq"] = fq
    if request.facet_fields:
        params["facet"] = "true"
        params["facet.field"] = [get_filter_field(name) for name in request.facet_fields]
        params["facet.limit"] = str(config.facet_limit)
        params["facet.mincount"] = str(config.facet_mincount)
    return params

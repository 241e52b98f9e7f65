"""Tests for the relevance query compiler."""

import re

from product_search.config import Settings
from product_search.models import FacetRequest, GroupOptions, SearchRequest, SortOption
from product_search.query_builder import (
    build_facet_only_query,
    build_facet_query,
    build_filter_clause,
    build_filter_queries,
    build_main_query,
    build_name_locality_boost,
    build_phrase_boost,
    build_query_params,
    build_search_query,
    build_sort_clause,
    build_term_clause,
    escape_query_chars,
    position_boost,
    split_terms,
)

IMAGE_BOOST = "image_count:[1 TO 2]^2 image_count:[3 TO 4]^4 image_count:[5 TO *]^6"
CLAUSE_RE = re.compile(r"^name_sort_it:/(?P<pattern>.+)/\^(?P<boost>\d+)$")


def test_position_boost_is_strictly_decreasing():
    for total in range(2, 8):
        boosts = [position_boost(index, total) for index in range(total)]
        assert boosts[0] == 1.5 * total
        assert boosts[-1] == 1.5
        assert all(earlier > later for earlier, later in zip(boosts, boosts[1:]))


def test_single_term_has_neutral_boost():
    assert position_boost(0, 1) == 1.0


def test_escape_query_chars():
    assert escape_query_chars("a+b:c") == r"a\+b\:c"
    assert escape_query_chars("ab*") == r"ab\*"
    assert escape_query_chars("ab*", keep_wildcard=True) == "ab*"


def test_blank_text_matches_all_with_image_boost():
    assert build_main_query(None, "it") == f"+*:* {IMAGE_BOOST}"
    assert build_main_query("   ", "it") == f"+*:* {IMAGE_BOOST}"


def test_term_clause_weights_and_tiers():
    clause = build_term_clause("vaso", "it")

    assert clause.startswith("(") and clause.endswith(")")
    assert "entity_code:vaso^1000" in clause
    assert "entity_code:vaso*^300" in clause
    assert "ean:vaso^1000" in clause
    assert "name_text_it:vaso^100" in clause
    assert "name_text_it:vaso*^40" in clause
    assert "name_sort_it:vaso*^60" in clause
    assert "name_sort_it:*vaso*^15" in clause
    # name_sort is prefix/contains only
    assert "name_sort_it:vaso^" not in clause


def test_fuzzy_applies_to_text_fields_only():
    clause = build_term_clause("vaso", "it", fuzzy=True, fuzzy_num=2)

    assert "name_text_it:vaso~2^100" in clause
    assert "entity_code:vaso^1000" in clause
    assert "entity_code:vaso~" not in clause


def test_main_query_requires_every_filtered_term():
    query = build_main_query("vaso per bagno", "it")

    assert query.count("+(") == 2
    assert "^3 " in query  # first of two terms: 1.5 * 2
    assert "name_sort_it:/.{0,25}vaso.*/^5000" in query
    assert "name_sort_it:/.{0,25}per.*/" not in query
    # phrase boosts come from the raw query, stopwords included
    assert "name_sort_it:/.*vaso per.*/^3000" in query
    assert "name_sort_it:/.{0,20}per bagno.*/^8000" in query
    assert query.endswith(IMAGE_BOOST)


def _regex_score(name: str, text: str, lang: str = "it") -> int:
    terms = split_terms(text)
    score = 0
    for clause in build_name_locality_boost(terms, lang) + build_phrase_boost(terms, lang):
        match = CLAUSE_RE.match(clause)
        assert match, clause
        if re.fullmatch(match.group("pattern"), name.lower()):
            score += int(match.group("boost"))
    return score


def test_early_name_match_outranks_partial_match():
    """All four terms early in the name beat a name that only shares one."""

    text = "vaso wc sospeso geberit"
    full = "Vaso WC sospeso Geberit Aquaclean"
    partial = "Vaso generico"

    locality = build_name_locality_boost(split_terms(text), "it")
    matched = [c for c in locality if re.fullmatch(CLAUSE_RE.match(c).group("pattern"), full.lower())]
    assert len(matched) == 4
    assert _regex_score(full, text) > _regex_score(partial, text)


def test_filter_queries():
    filters = {
        "brand": "ACME",
        "price_min": 10,
        "price_max": 50,
        "is_new": True,
        "tags": ["a b", "c"],
        "sku": "AB*",
    }

    assert build_filter_queries(filters) == [
        "include_faceting:true",
        "brand_id:ACME",
        "is_new:true",
        'tag_groups:("a b" OR c)',
        "sku:AB*",
        "price:[10 TO 50]",
    ]


def test_wildcard_filter_values_escape_whitespace():
    assert build_filter_clause("sku", "vaso sosp*") == r"sku:vaso\ sosp*"
    assert build_filter_clause("sku", ["AB 1*", "CD"]) == r"sku:(AB\ 1* OR CD)"
    assert build_filter_queries({"sku": "a\tb*"}, include_faceting=False) == ["sku:a\\\tb*"]


def test_filter_queries_without_faceting_flag():
    assert build_filter_queries({"stock_status": "in_stock"}, include_faceting=False) == ["stock_status:in_stock"]
    assert build_filter_queries({"price_min": 5}, include_faceting=False) == ["price:[5 TO *]"]


def test_sort_defaults():
    assert build_sort_clause(None, "it", has_text=True) == "score desc"
    assert build_sort_clause(None, "it", has_text=False) == "created_at desc"
    assert build_sort_clause(SortOption(field="name", order="asc"), "en", True) == "name_sort_en asc"
    assert build_sort_clause(SortOption(field="price"), "it", True) == "price desc"
    assert build_sort_clause(SortOption(field="newest"), "it", True) == "created_at desc"


def test_variant_grouping_moves_sort_into_group_params():
    query = build_search_query(SearchRequest(lang="it", group_variants=True))

    assert "sort" not in query
    params = query["params"]
    assert params["group"] is True
    assert params["group.field"] == "parent_entity_code"
    assert params["group.limit"] == -1
    assert params["group.ngroups"] is True
    assert params["group.sort"] == "created_at desc"
    assert params["group.truncate"] is True


def test_generic_grouping_defaults_to_three_docs():
    request = SearchRequest(text="vaso", lang="it", group=GroupOptions(field="brand_id", sort="price asc"))
    params = build_search_query(request)["params"]

    assert params["group.field"] == "brand_id"
    assert params["group.limit"] == 3
    assert params["group.sort"] == "price asc"


def test_rows_are_clamped():
    config = Settings(default_rows=10, max_rows=50)

    assert build_search_query(SearchRequest(lang="it", rows=1000), config)["limit"] == 50
    assert build_search_query(SearchRequest(lang="it"), config)["limit"] == 10


def test_search_query_shape():
    query = build_search_query(SearchRequest(text="vaso", lang="it", start=20, facet_fields=["brand_id"]))

    assert query["offset"] == 20
    assert query["fields"] == "*"
    assert query["sort"] == "score desc"
    assert query["filter"] == ["include_faceting:true"]
    assert "brand_id" in query["facet"]


def test_facet_query_kinds():
    facet = build_facet_query(["brand_id", "price", "attribute_colore_s"], config=Settings(facet_limit=100, facet_mincount=1))

    assert facet["brand_id"] == {
        "type": "terms",
        "field": "brand_id",
        "limit": 100,
        "mincount": 1,
        "sort": "count",
        "domain": {"filter": 'brand_id:[* TO *] -brand_id:""'},
    }
    assert facet["price"] == {"type": "range", "field": "price", "start": 0, "end": 10000, "gap": 50}
    assert facet["attribute_colore_s"]["type"] == "terms"
    assert "domain" not in facet["attribute_colore_s"]


def test_facet_only_query_fetches_no_documents():
    query = build_facet_only_query(FacetRequest(lang="it", facet_fields=["brand_id"], facet_limit=5))

    assert query["query"] == "*:*"
    assert query["limit"] == 0
    assert query["facet"]["brand_id"]["limit"] == 5
    assert query["filter"] == ["include_faceting:true"]


def test_query_params_form():
    params = build_query_params(
        SearchRequest(text="vaso", lang="it", filters={"brand": "ACME"}, facet_fields=["brand"]),
        Settings(default_rows=20, max_rows=100, facet_limit=100, facet_mincount=1),
    )

    assert params["q"].startswith("+(")
    assert params["sort"] == "score desc"
    assert params["start"] == "0"
    assert params["rows"] == "20"
    assert params["fq"] == ["include_faceting:true", "brand_id:ACME"]
    assert params["facet.field"] == ["brand_id"]

"""Regression tests for stopword filtering of query terms."""

from product_search.stopwords import STOPWORDS, filter_search_stopwords


def test_single_term_is_never_filtered():
    """A lone stopword is still the whole query."""

    assert filter_search_stopwords(["il"], "it") == ["il"]
    assert filter_search_stopwords(["the"], "en") == ["the"]


def test_stopwords_are_dropped():
    assert filter_search_stopwords(["vaso", "per", "bagno"], "it") == ["vaso", "bagno"]
    assert filter_search_stopwords(["cover", "for", "the", "phone"], "en") == ["cover", "phone"]


def test_all_stopwords_returns_original_terms():
    assert filter_search_stopwords(["il", "di"], "it") == ["il", "di"]


def test_unknown_language_passes_through():
    assert filter_search_stopwords(["the", "cat"], "xx") == ["the", "cat"]


def test_never_returns_empty_for_non_empty_input():
    samples = [
        ["a"],
        ["il", "lo", "la"],
        ["vaso", "wc"],
        ["and", "or", "not"],
        ["der", "die", "das"],
    ]
    for lang in STOPWORDS:
        for terms in samples:
            assert filter_search_stopwords(terms, lang)

from itertools import islice

from tableside.utils.slug import normalize_slug, slug_candidates


def test_normalize_slug_strips_accents_and_symbols():
    assert normalize_slug("  Café  & Bar!! ") == "cafe-bar"
    assert normalize_slug("") == ""


def test_slug_candidates_add_numeric_suffixes():
    assert list(islice(slug_candidates("Casa Tableside"), 3)) == ["casa-tableside", "casa-tableside-2", "casa-tableside-3"]


def test_short_or_empty_names_use_fallback():
    assert next(slug_candidates("!!")) == "restaurant"
    assert next(slug_candidates("ab")) == "ab-restaurant"

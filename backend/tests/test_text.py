import pytest

from wikihub.services.text import (
    extract_text,
    humanize_slug,
    normalize_slug,
    query_terms,
    to_tsquery,
    trigram_similarity,
    trigrams,
)


class TestExtractText:

    def test_drops_markup_and_scripts(self):
        html = "<h1>Air rune</h1><style>p{}</style><p>Used   for\nspells.</p>"
        assert extract_text(html) == "Air rune Used for spells."

    def test_truncates(self):
        assert extract_text("<p>" + "a" * 50 + "</p>", max_chars=10) == "a" * 10

    def test_empty(self):
        assert extract_text("") == ""


class TestSlugs:

    def test_normalize_slug(self):
        assert normalize_slug(" abyssal  whip ") == "Abyssal_whip"

    def test_humanize_slug(self):
        assert humanize_slug("Abyssal_whip") == "Abyssal whip"
        assert humanize_slug("pubs__manual_12") == "manual 12"


class TestQueryTerms:

    def test_strips_punctuation(self):
        assert query_terms("abyssal whip!! (t&c)") == ["abyssal", "whip", "tc"]

    def test_tsquery_and_joins(self):
        assert to_tsquery("rune  platebody") == "rune & platebody"

    @pytest.mark.parametrize("query", ["", "   ", "!!! ??"])
    def test_tsquery_none_without_terms(self, query):
        assert to_tsquery(query) is None


class TestTrigrams:

    def test_padding_matches_pg_trgm(self):
        assert trigrams("cat") == {"  c", " ca", "cat", "at "}

    def test_identical_titles_score_one(self):
        assert trigram_similarity("Category", "category") == 1.0

    def test_partial_overlap(self):
        # 9 shared trigrams out of 14 distinct
        assert trigram_similarity("Category", "Category theory") == pytest.approx(9 / 14)

    def test_no_words(self):
        assert trigram_similarity("", "Category") == 0.0

from wikihub.services.diff import DELETED, EQUAL, INSERTED, diff_html, diff_stats, tokenize


def _rebuild(spans, drop):
    return "".join(s.text for s in spans if s.kind != drop)


class TestTokenize:

    def test_tags_words_and_whitespace(self):
        assert tokenize("<p>Air  rune</p>") == ["<p>", "Air", "  ", "rune", "</p>"]

    def test_stray_angle_bracket(self):
        assert "".join(tokenize("a < b")) == "a < b"


class TestDiffHtml:

    def test_identical_input_is_one_equal_span(self):
        spans = diff_html("<p>same</p>", "<p>same</p>")
        assert [s.kind for s in spans] == [EQUAL]
        assert diff_stats(spans)["unchanged"] is True

    def test_changed_word_is_local(self):
        old = "<p>The whip is slow.</p>"
        new = "<p>The whip is fast.</p>"

        spans = diff_html(old, new)

        assert [s.kind for s in spans] == [EQUAL, DELETED, INSERTED, EQUAL]
        assert spans[1].text == "slow."
        assert spans[2].text == "fast."

    def test_both_sides_can_be_rebuilt(self):
        old = "<h1>Rune</h1><p>Used for spells.</p>"
        new = "<h1>Air rune</h1><p>Used for air spells.</p><p>Sold in shops.</p>"

        spans = diff_html(old, new)

        assert _rebuild(spans, INSERTED) == old
        assert _rebuild(spans, DELETED) == new

    def test_empty_old_is_all_inserted(self):
        spans = diff_html("", "<p>new</p>")
        assert [(s.kind, s.text) for s in spans] == [(INSERTED, "<p>new</p>")]

    def test_stats_count_changed_chars(self):
        stats = diff_stats(diff_html("<p>ab</p>", "<p>abcd</p>"))
        assert stats == {"deleted_chars": 2, "inserted_chars": 4, "unchanged": False}

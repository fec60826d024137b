"""
Tests for the keyword miner.
"""

import pytest

from app.services.feedback.keyword_miner import match_terms, mine_keywords, top_issues


class TestMatchTerms:
    """Table-driven checks of vocabulary matching."""

    @pytest.mark.parametrize(
        "text, expected",
        [
            ("El servicio tardó mucho", {"servicio", "tarda"}),
            ("La comida estaba FRÍA y salada", {"comida", "fría", "salado"}),
            ("Mesero grosero", {"mesero", "grosero"}),
            ("Muy caro para lo que es", {"caro"}),
            ("Todo excelente, gracias", set()),
            ("", set()),
            (None, set()),
        ],
    )
    def test_matches(self, text, expected):
        assert set(match_terms(text)) == expected

    def test_term_counted_once_per_text(self):
        assert match_terms("lento lento lento, muy lento").count("lento") == 1

    def test_variant_counts_under_canonical_term(self):
        assert "tarda" in match_terms("Tardaron una hora")
        assert "tardó" not in match_terms("Tardaron una hora")

    def test_short_stem_matches_longer_words(self):
        assert set(match_terms("Vi un ratón")) == {"rat"}
        assert "rat" in match_terms("Esperamos un buen rato")

    def test_custom_vocabulary(self):
        assert match_terms("El wifi no sirve", vocabulary=("wifi",)) == ["wifi"]


class TestMineKeywords:
    """Tests for mine_keywords accumulation."""

    def test_counts_across_texts(self):
        counts = mine_keywords(["comida fría", "la comida tarda", "tardó la cuenta"])

        assert counts["comida"] == 2
        assert counts["tarda"] == 2
        assert counts["cuenta"] == 1

    def test_accumulates_into_existing_counts(self):
        counts = {"tarda": 3}
        mine_keywords(["tardó mucho"], counts)
        assert counts["tarda"] == 4


class TestTopIssues:
    """Tests for top_issues ranking."""

    def test_sorted_by_count_and_truncated(self):
        counts = {"a": 1, "b": 5, "c": 3, "d": 2, "e": 4, "f": 6}
        assert top_issues(counts) == [("f", 6), ("b", 5), ("e", 4), ("c", 3), ("d", 2)]

    def test_ties_keep_first_seen_order(self):
        counts = {"ruido": 2, "sucio": 2, "caro": 2}
        assert [term for term, _ in top_issues(counts)] == ["ruido", "sucio", "caro"]

    def test_empty(self):
        assert top_issues({}) == []

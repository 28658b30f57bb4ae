"""Tests for correlation id derivation."""

from answerscope.utils.hash import calculate_correlation_id, normalize_query


class TestNormalizeQuery:
    def test_lowercases_and_collapses_whitespace(self):
        assert normalize_query("  Best   CRM\tfor Startups ") == "best crm for startups"


class TestCorrelationId:
    def test_stable_for_equivalent_queries(self):
        """Formatting differences do not change the id."""
        a = calculate_correlation_id("b1", "acme", "chatgpt", "Best CRM")
        b = calculate_correlation_id("b1", "acme", "chatgpt", "  best   crm ")

        assert a == b
        assert len(a) == 32

    def test_differs_per_component(self):
        base = calculate_correlation_id("b1", "acme", "chatgpt", "q")

        assert base != calculate_correlation_id("b2", "acme", "chatgpt", "q")
        assert base != calculate_correlation_id("b1", "other", "chatgpt", "q")
        assert base != calculate_correlation_id("b1", "acme", "copilot", "q")

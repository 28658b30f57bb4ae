"""Tests for brand position extraction."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from answerscope.models.enrichment import BrandProfile, CompetitorProfile
from answerscope.services.scoring.position import (
    PositionEnricher,
    compute_positions,
    find_term_positions,
    names_from_metadata,
    sanitize_names,
    share_of_answers,
    tokenize,
    visibility_index,
)
from answerscope.utils.exceptions import EnrichmentError


@pytest.fixture
def brand():
    return BrandProfile(
        brand_id="acme",
        name="Acme",
        aliases=["Acme CRM"],
        competitors=[CompetitorProfile(name="Globex", aliases=["Globex Corp"])],
    )


class TestTokenize:
    def test_normalizes_case_quotes_and_possessives(self):
        assert tokenize("Acme's \"Best\" CRM!") == ["acme", "best", "crm"]

    def test_empty(self):
        assert tokenize("") == []


class TestFindTermPositions:
    def test_single_token_positions_are_one_indexed(self):
        tokens = tokenize("acme and globex and acme")

        assert find_term_positions(tokens, "Acme") == [1, 5]

    def test_multi_token_term(self):
        tokens = tokenize("we like Acme CRM more than acme")

        assert find_term_positions(tokens, "Acme CRM") == [3]

    def test_blank_term(self):
        assert find_term_positions(["a"], "  ") == []


class TestScores:
    def test_visibility_index(self):
        # 0.6 / log10(10) + 0.4 * 2 / 6
        assert visibility_index([1, 5], 6) == 0.73

    def test_visibility_without_mentions(self):
        assert visibility_index([], 10) == 0.0

    def test_visibility_empty_answer(self):
        assert visibility_index([], 0) is None

    def test_share_of_answers(self):
        assert share_of_answers(2, 1) == 66.67
        assert share_of_answers(0, 3) == 0.0
        assert share_of_answers(0, 0) is None


class TestNames:
    def test_sanitize_dedupes_case_insensitively(self):
        values = ["Acme One", "acme one", "x", 42, " 'Acme Pro' "]

        assert sanitize_names(values) == ["Acme One", "Acme Pro"]

    def test_names_from_metadata_accepts_strings_and_lists(self):
        metadata = {"products": "Acme One, Acme Pro", "aliases": ["AcmeCRM"]}

        assert names_from_metadata(metadata) == ["Acme One", "Acme Pro", "AcmeCRM"]


class TestComputePositions:
    def test_brand_and_competitor_positions(self, brand):
        result = compute_positions("Acme and Globex compete. Acme wins.", brand)

        assert result.brand_positions == [1, 5]
        assert result.brand_first_position == 1
        assert result.brand_mentions == 2
        assert result.competitor_positions == {"Globex": [3]}
        assert result.word_count == 6
        assert result.visibility_index == 0.73
        assert result.share_of_answers == 66.67

    def test_alias_overlap_counted_once(self, brand):
        result = compute_positions("Acme CRM is popular", brand)

        assert result.brand_positions == [1]

    def test_brand_absent(self, brand):
        result = compute_positions("Globex Corp leads", brand)

        assert result.brand_first_position is None
        assert result.visibility_index == 0.0
        assert result.share_of_answers == 0.0
        assert result.competitor_positions == {"Globex": [1]}

    def test_product_names_extend_brand_terms(self, brand):
        result = compute_positions(
            "Try Rocket Suite today", brand, brand_products=["Rocket Suite"]
        )

        assert result.brand_positions == [2]
        assert result.product_names == ["Rocket Suite"]


class TestPositionEnricher:
    """Tests for both enrichment paths."""

    @pytest.mark.asyncio
    async def test_llm_products_feed_positions(self, brand, sample_result):
        client = MagicMock()
        client.complete_json = AsyncMock(
            return_value={
                "brand_products": ["startups"],
                "competitor_products": {"Globex": ["slow"]},
            }
        )

        result = await PositionEnricher().enrich_with_llm(
            client, "sk", sample_result, brand
        )

        assert 7 in result.brand_positions
        assert result.competitor_positions["Globex"] == [8, 12]
        assert client.complete_json.await_args.args[2] == "sk"

    @pytest.mark.asyncio
    async def test_llm_wrong_shape(self, brand, sample_result):
        client = MagicMock()
        client.complete_json = AsyncMock(return_value={"brand_products": "Acme"})

        with pytest.raises(EnrichmentError):
            await PositionEnricher().enrich_with_llm(client, "sk", sample_result, brand)

    def test_rules_use_metadata_products(self, brand, sample_result):
        result = sample_result.model_copy(update={"metadata": {"products": "startups"}})

        position = PositionEnricher().enrich_with_rules(result, brand)

        assert position.product_names == ["startups"]
        assert position.brand_positions[:2] == [1, 7]

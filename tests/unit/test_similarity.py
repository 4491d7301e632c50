"""
Unit tests for product-to-product similarity.
"""

import pytest

from personalization.config import RecommendationConfig
from personalization.errors import NotFoundError
from personalization.scoring.similarity import SimilarityScorer


@pytest.fixture
def scorer(product_gateway):
    return SimilarityScorer(product_gateway, RecommendationConfig())


class TestCompare:
    """Feature-level comparison of two products."""

    def test_identical_products_score_100(self, scorer, make_product):
        a = make_product("a", specifications={"socket": "AM5"}, colors=["black"])
        b = make_product("b", specifications={"socket": "AM5"}, colors=["black"])

        score, matched, _ = scorer.compare(a, b)

        assert score == 100
        assert matched == ["brand", "price", "socket", "colors"]

    def test_comparison_is_symmetric(self, scorer, make_product):
        a = make_product(
            "a",
            brandId="x",
            price=1_000_000,
            specifications={"socket": "AM5", "chipset": "B650"},
            colors=["black", "white"],
            useCases=["gaming"],
        )
        b = make_product(
            "b",
            brandId="y",
            price=1_300_000,
            specifications={"socket": "AM5", "memory": "DDR5"},
            colors=["black"],
        )

        assert scorer.compare(a, b)[0] == scorer.compare(b, a)[0]

    def test_price_within_threshold_is_full_match(self, scorer):
        assert scorer.price_similarity(1_000_000, 1_040_000) == 1.0

    def test_price_similarity_degrades_with_distance(self, scorer):
        # |diff| / average = 1_000_000 / 1_500_000
        assert scorer.price_similarity(1_000_000, 2_000_000) == pytest.approx(1 / 3)

    def test_spec_key_on_one_side_counts_as_mismatch(self, scorer, make_product):
        a = make_product("a", brandId=None, price=0, specifications={"socket": "AM5"})
        b = make_product("b", brandId=None, price=0, specifications={})

        score, matched, parts = scorer.compare(a, b)

        assert parts == {"specifications": 0.0}
        assert score == 0
        assert matched == []


class TestSimilarityScoring:
    """End-to-end similarity over the product gateway double."""

    async def test_same_category_candidates_without_reference(self, scorer, product_gateway):
        result = await scorer.score("p1", limit=10)

        ids = [p.product_id for p in result.similar_products]
        assert result.reference_product.product_id == "p1"
        assert "p1" not in ids
        assert "p4" not in ids
        assert ids[0] == "p2"
        assert result.similar_products[0].matched_features == ["brand", "colors"]
        product_gateway.list_products.assert_awaited_once_with(
            category_id="cat-cpu", limit=100
        )

    async def test_unknown_reference_raises_not_found(self, scorer):
        with pytest.raises(NotFoundError):
            await scorer.score("nope", limit=10)

    async def test_ineligible_candidates_are_excluded(self, scorer):
        result = await scorer.score("p2", limit=10)

        ids = [p.product_id for p in result.similar_products]
        assert "draft" not in ids and "inactive" not in ids

    async def test_limit(self, scorer):
        result = await scorer.score("p1", limit=1)

        assert len(result.similar_products) == 1

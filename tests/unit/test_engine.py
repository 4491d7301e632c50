"""
Unit tests for the engine facade: input validation, the cache-aside path
and delegation to the scorers and the segmentation service.
"""

import json
from datetime import timedelta

import pytest

from personalization.cache import ResultCache
from personalization.config import CACHE_TTL_RECOMMENDATIONS
from personalization.engine import PersonalizationEngine
from personalization.errors import NotFoundError, ValidationError
from personalization.gateways import BestEffortDispatcher
from personalization.models import BehaviorEvent, FavoritesResult, ScoredProduct, utcnow


@pytest.fixture
def recent_event():
    """Events relative to the wall clock, for operations that read utcnow()."""

    def factory(product_id, event_type="view", days_ago=1):
        return BehaviorEvent(
            subject_id="user-1",
            event_type=event_type,
            entity_type="product",
            entity_id=product_id,
            timestamp=utcnow() - timedelta(days=days_ago),
        )

    return factory


@pytest.fixture
def cached_engine(
    behavior_gateway, order_gateway, product_gateway, customer_gateway, mock_async_redis
):
    return PersonalizationEngine(
        behavior=behavior_gateway,
        orders=order_gateway,
        products=product_gateway,
        customers=customer_gateway,
        cache=ResultCache(mock_async_redis, enabled=True),
        dispatcher=BestEffortDispatcher(),
    )


class TestValidation:
    """Malformed input is rejected before any collaborator is called."""

    async def test_blank_subject(self, engine, behavior_gateway):
        with pytest.raises(ValidationError):
            await engine.get_favorites("   ")

        behavior_gateway.get_events.assert_not_called()

    async def test_missing_product_id(self, engine):
        with pytest.raises(ValidationError):
            await engine.get_similar(None)

    @pytest.mark.parametrize("limit", [0, -5, 101])
    async def test_limit_out_of_range(self, engine, limit):
        with pytest.raises(ValidationError):
            await engine.get_favorites("user-1", limit=limit)

    async def test_non_positive_time_window(self, engine):
        with pytest.raises(ValidationError):
            await engine.get_favorites("user-1", time_window_days=0)

    async def test_unknown_strategy(self, engine):
        with pytest.raises(ValidationError) as exc_info:
            await engine.get_personalized("user-1", strategy="random")

        assert exc_info.value.details["allowed"] == ["hybrid", "collaborative", "content"]

    async def test_inverted_budget(self, engine):
        with pytest.raises(ValidationError):
            await engine.get_compatible("psu", [], budget_min=5_000_000, budget_max=1_000_000)

    @pytest.mark.parametrize("components", [[{"specifications": {}}], [42]])
    async def test_malformed_components(self, engine, components):
        with pytest.raises(ValidationError):
            await engine.get_compatible("motherboard", components)

    async def test_empty_batch(self, engine):
        with pytest.raises(ValidationError):
            await engine.analyze_batch([])


class TestCacheAside:
    """Results are served from cache when present and written back otherwise."""

    async def test_cache_hit_skips_computation(
        self, cached_engine, mock_async_redis, behavior_gateway
    ):
        hit = FavoritesResult(
            favorites=[ScoredProduct(product_id="p1", score=4.5)], time_window=30
        )
        mock_async_redis.get.return_value = json.dumps(hit.model_dump(mode="json"))

        result = await cached_engine.get_favorites("user-1")

        assert result.from_cache is True
        assert result.favorites[0].product_id == "p1"
        behavior_gateway.get_events.assert_not_called()

    async def test_computed_result_is_written_with_ttl(
        self, cached_engine, mock_async_redis, behavior_gateway, recent_event
    ):
        behavior_gateway.get_events.return_value = [recent_event("p1", "purchase")]

        result = await cached_engine.get_favorites("user-1")
        await cached_engine.cache.flush_pending()

        assert result.from_cache is False
        assert [f.product_id for f in result.favorites] == ["p1"]
        key, payload = mock_async_redis.set.await_args[0]
        assert key.startswith("rec:favorites:user-1:")
        assert json.loads(payload)["favorites"][0]["product_id"] == "p1"
        assert mock_async_redis.set.await_args[1] == {"ex": CACHE_TTL_RECOMMENDATIONS}

    async def test_empty_result_is_not_cached(self, cached_engine, mock_async_redis):
        result = await cached_engine.get_favorites("user-1")
        await cached_engine.cache.flush_pending()

        assert result.favorites == []
        mock_async_redis.set.assert_not_called()

    async def test_undecodable_hit_is_recomputed(
        self, cached_engine, mock_async_redis, behavior_gateway
    ):
        mock_async_redis.get.return_value = json.dumps({"favorites": "nonsense"})

        result = await cached_engine.get_favorites("user-1")

        assert result.from_cache is False
        behavior_gateway.get_events.assert_awaited_once()

    async def test_clear_cache_without_backend(self, engine):
        assert await engine.clear_cache("rec:favorites:") == 0


class TestDelegation:
    async def test_favorites_only_eligible_products(self, engine, behavior_gateway, recent_event):
        behavior_gateway.get_events.return_value = [
            recent_event("draft", "purchase"),
            recent_event("inactive", "purchase"),
            recent_event("p2", "view"),
        ]

        result = await engine.get_favorites("user-1")

        assert [f.product_id for f in result.favorites] == ["p2"]

    async def test_similar_unknown_product(self, engine):
        with pytest.raises(NotFoundError):
            await engine.get_similar("nope")

    async def test_content_cold_start_explains_itself(self, engine):
        result = await engine.get_personalized("user-1", strategy="content")

        assert result.recommendations == []
        assert result.strategy == "content"
        assert result.message
        assert result.breakdown is None

    async def test_hybrid_reports_breakdown(self, engine):
        result = await engine.get_personalized("user-1", component_type=" CPU ")

        assert result.strategy == "hybrid"
        assert {"collaborative", "content"} <= set(result.breakdown)

    async def test_compatible_accepts_nested_product_documents(self, engine, product_gateway):
        result = await engine.get_compatible(
            "cpu",
            [
                {
                    "type": "Motherboard",
                    "product": {"_id": "mb", "specifications": {"socket": "AM5"}},
                }
            ],
        )

        assert result.filters.socket == "AM5"
        assert result.component_type == "cpu"

    async def test_segment_lookup_delegates(self, engine, customer_gateway):
        record = await engine.analyze_customer("user-1", force=True)

        assert record.type == "potential"
        customer_gateway.update_segmentation.assert_awaited_once()

    async def test_close_releases_gateways(
        self, engine, behavior_gateway, order_gateway, product_gateway, customer_gateway
    ):
        await engine.close()

        for gateway in (behavior_gateway, order_gateway, product_gateway, customer_gateway):
            gateway.close.assert_awaited_once()


class TestBuildSuggestions:
    """Build suggestions on top of compatibility scoring."""

    async def test_requires_category(self, engine):
        with pytest.raises(ValidationError):
            await engine.get_build_suggestions({}, "  ")

    @pytest.mark.parametrize("config", [["cpu"], {"cpu": 42}])
    async def test_malformed_config(self, engine, config):
        with pytest.raises(ValidationError):
            await engine.get_build_suggestions(config, "cat-cpu")

    async def test_at_most_six_suggestions(self, engine, product_gateway, make_product):
        product_gateway.list_products.return_value = [
            make_product(f"cpu-{i}", views=i) for i in range(10)
        ]

        result = await engine.get_build_suggestions(None, "cat-cpu", limit=20)

        assert len(result.recommendations) == 6
        assert result.fallback is True
        assert product_gateway.list_products.await_args.kwargs["limit"] == 18

    async def test_config_map_becomes_components(self, engine):
        result = await engine.get_build_suggestions(
            {"motherboard": {"productId": "mb-1", "specifications": {"socket": "AM5"}}},
            "cat-cpu",
        )

        assert result.filters.socket == "AM5"
        assert [c.product_id for c in result.current_components] == ["mb-1"]
        assert result.component_type == "cpu"

    async def test_cached_under_its_own_key(self, cached_engine, mock_async_redis):
        await cached_engine.get_build_suggestions({}, "cat-cpu")
        await cached_engine.cache.flush_pending()

        key = mock_async_redis.set.await_args[0][0]
        assert key.startswith("rec:build_suggestions:cat-cpu:")

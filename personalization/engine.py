"""
Entry point for every recommendation and segmentation operation.

Recommendation operations share one shape: validate the input, look the
result up in the cache, otherwise compute it, schedule a background cache
write and return a result model whose `from_cache` tells the two paths apart.
"""

import inspect
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Sequence,
    Type,
    TypeVar,
)

import redis.asyncio as redis
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from personalization.cache import ResultCache
from personalization.config import (
    CACHE_TTL_RECOMMENDATIONS,
    RecommendationConfig,
    SegmentationConfig,
)
from personalization.errors import ValidationError
from personalization.gateways import (
    BehaviorGateway,
    BestEffortDispatcher,
    CustomerGateway,
    NotificationSink,
    OrderGateway,
    ProductGateway,
)
from personalization.logging import setup_logging
from personalization.models import (
    STRATEGIES,
    AnalyzeAllResult,
    BatchItem,
    BuildSuggestionsResult,
    CompatibleResult,
    FavoritesResult,
    PersonalizedResult,
    SegmentationRecord,
    SegmentStats,
    SelectedComponent,
    SimilarResult,
)
from personalization.observability import metrics
from personalization.scoring.collaborative import CollaborativeScorer
from personalization.scoring.compatibility import CompatibilityScorer
from personalization.scoring.content import ContentScorer
from personalization.scoring.favorites import FavoriteScorer
from personalization.scoring.hybrid import HybridScorer
from personalization.scoring.similarity import SimilarityScorer
from personalization.segmentation.classifier import SegmentationService

logger = setup_logging("engine.log")

MAX_LIMIT = 100

ResultT = TypeVar("ResultT", bound=BaseModel)


def _require(value: Optional[str], name: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{name} is required", {"field": name})
    return str(value).strip()


def _check_limit(limit: Optional[int], default: int) -> int:
    if limit is None:
        limit = default
    if limit < 1 or limit > MAX_LIMIT:
        raise ValidationError(
            f"limit must be between 1 and {MAX_LIMIT}", {"field": "limit", "value": limit}
        )
    return limit


class PersonalizationEngine:
    def __init__(
        self,
        behavior: BehaviorGateway,
        orders: OrderGateway,
        products: ProductGateway,
        customers: CustomerGateway,
        cache: ResultCache,
        dispatcher: Optional[BestEffortDispatcher] = None,
        sinks: Sequence[NotificationSink] = (),
        recommendation_config: Optional[RecommendationConfig] = None,
        segmentation_config: Optional[SegmentationConfig] = None,
    ):
        self.behavior = behavior
        self.orders = orders
        self.products = products
        self.customers = customers
        self.cache = cache
        self.dispatcher = dispatcher or BestEffortDispatcher()
        self.sinks = list(sinks)
        self.config = recommendation_config or RecommendationConfig()

        self.favorites = FavoriteScorer(behavior, products, self.config)
        self.content = ContentScorer(behavior, orders, products, cache, self.config)
        self.collaborative = CollaborativeScorer(behavior, products, cache, self.config)
        self.hybrid = HybridScorer(self.collaborative, self.content, self.config.hybrid)
        self.compatibility = CompatibilityScorer(products, cache, self.config)
        self.similarity = SimilarityScorer(products, self.config)
        self.segmentation = SegmentationService(
            customers,
            orders,
            behavior,
            self.dispatcher,
            self.sinks,
            segmentation_config or SegmentationConfig(),
        )

    async def _cached(
        self,
        strategy: str,
        subject: str,
        model: Type[ResultT],
        compute: Callable[[], Awaitable[ResultT]],
        is_empty: Callable[[ResultT], bool],
        **params: Any,
    ) -> ResultT:
        key = self.cache.key(strategy, subject, **params)
        cached = await self.cache.get(key)
        if cached is not None:
            try:
                result = model.model_validate(cached)
            except PydanticValidationError as e:
                logger.warning(f"Ignoring stale cache entry {key}: {e.error_count()} errors")
            else:
                result.from_cache = True
                metrics.recommendation_requests.labels(strategy=strategy, outcome="cached").inc()
                return result

        result = await compute()
        if is_empty(result):
            # cold-start answers are not cached so new activity shows up at once
            metrics.recommendation_requests.labels(strategy=strategy, outcome="empty").inc()
            return result

        metrics.recommendation_requests.labels(strategy=strategy, outcome="computed").inc()
        self.cache.set_background(key, result.model_dump(mode="json"), CACHE_TTL_RECOMMENDATIONS)
        return result

    # -------------------------------------------------------------------------
    # Recommendations
    # -------------------------------------------------------------------------

    async def get_favorites(
        self,
        subject_id: str,
        time_window_days: Optional[int] = None,
        limit: Optional[int] = None,
        category: Optional[str] = None,
    ) -> FavoritesResult:
        subject_id = _require(subject_id, "subject_id")
        window = time_window_days
        if window is None:
            window = self.config.favorites.time_window_days
        if window < 1:
            raise ValidationError("time_window_days must be positive", {"value": window})
        limit = _check_limit(limit, self.config.default_favorites_limit)

        return await self._cached(
            "favorites",
            subject_id,
            FavoritesResult,
            lambda: self.favorites.score(subject_id, window, limit, category),
            lambda r: not r.favorites,
            window=window,
            limit=limit,
            category=category,
        )

    async def get_similar(
        self, product_id: str, limit: Optional[int] = None, category: Optional[str] = None
    ) -> SimilarResult:
        product_id = _require(product_id, "product_id")
        limit = _check_limit(limit, self.config.default_similar_limit)

        return await self._cached(
            "similar",
            product_id,
            SimilarResult,
            lambda: self.similarity.score(product_id, limit, category),
            lambda r: not r.similar_products,
            limit=limit,
            category=category,
        )

    async def get_personalized(
        self,
        subject_id: str,
        component_type: Optional[str] = None,
        strategy: str = "hybrid",
        limit: Optional[int] = None,
    ) -> PersonalizedResult:
        subject_id = _require(subject_id, "subject_id")
        if strategy not in STRATEGIES:
            raise ValidationError(
                f"Unknown strategy '{strategy}'",
                {"strategy": strategy, "allowed": list(STRATEGIES)},
            )
        limit = _check_limit(limit, self.config.default_personalized_limit)
        if component_type is not None:
            component_type = component_type.strip().lower() or None

        async def compute() -> PersonalizedResult:
            if strategy == "hybrid":
                result, breakdown = await self.hybrid.score(subject_id, component_type, limit)
                return PersonalizedResult(
                    recommendations=result.recommendations,
                    strategy=strategy,
                    message=result.message,
                    breakdown=breakdown,
                )
            scorer = self.collaborative if strategy == "collaborative" else self.content
            result = await scorer.score(subject_id, component_type, limit)
            return PersonalizedResult(
                recommendations=result.recommendations,
                strategy=strategy,
                message=result.message,
            )

        return await self._cached(
            strategy,
            subject_id,
            PersonalizedResult,
            compute,
            lambda r: not r.recommendations,
            component_type=component_type,
            limit=limit,
        )

    async def get_compatible(
        self,
        component_type: str,
        current_components: Sequence[Any] = (),
        limit: Optional[int] = None,
        budget_min: Optional[float] = None,
        budget_max: Optional[float] = None,
        brand_preferences: Optional[Dict[str, float]] = None,
    ) -> CompatibleResult:
        component_type = _require(component_type, "component_type").lower()
        limit = _check_limit(limit, self.config.default_compatible_limit)
        if budget_min is not None and budget_max is not None and budget_min > budget_max:
            raise ValidationError(
                "budget_min must not exceed budget_max",
                {"budget_min": budget_min, "budget_max": budget_max},
            )
        try:
            components = [
                c if isinstance(c, SelectedComponent) else SelectedComponent.model_validate(c)
                for c in current_components
            ]
        except PydanticValidationError as e:
            raise ValidationError(
                "Malformed current_components", {"errors": e.error_count()}
            ) from e

        return await self._cached(
            "compatible",
            component_type,
            CompatibleResult,
            lambda: self.compatibility.score(
                component_type, components, limit, budget_min, budget_max, brand_preferences
            ),
            lambda r: not r.recommendations,
            components=[c.model_dump(mode="json") for c in components],
            limit=limit,
            budget_min=budget_min,
            budget_max=budget_max,
            brand_preferences=brand_preferences,
        )

    async def get_build_suggestions(
        self,
        current_config: Optional[Mapping[str, Any]],
        category_id: str,
        limit: Optional[int] = None,
    ) -> BuildSuggestionsResult:
        category_id = _require(category_id, "category_id")
        cap = self.config.compatibility.build_suggestion_limit
        limit = min(_check_limit(limit, cap), cap)
        if current_config is None:
            current_config = {}
        if not isinstance(current_config, Mapping):
            raise ValidationError(
                "current_config must map component types to selections",
                {"field": "current_config"},
            )
        try:
            components = self.compatibility.components_from_config(current_config)
        except PydanticValidationError as e:
            raise ValidationError(
                "Malformed current_config", {"errors": e.error_count()}
            ) from e

        return await self._cached(
            "build_suggestions",
            category_id,
            BuildSuggestionsResult,
            lambda: self.compatibility.suggest(category_id, components, limit),
            lambda r: not r.recommendations,
            components=[
                c.model_dump(mode="json") for c in sorted(components, key=lambda c: c.type)
            ],
            limit=limit,
        )

    async def clear_cache(self, prefix: Optional[str] = None) -> int:
        return await self.cache.clear(prefix)

    # -------------------------------------------------------------------------
    # Segmentation
    # -------------------------------------------------------------------------

    async def analyze_customer(self, subject_id: str, force: bool = False) -> SegmentationRecord:
        return await self.segmentation.analyze_customer(subject_id, force=force)

    async def analyze_batch(
        self,
        subject_ids: Sequence[str],
        batch_size: Optional[int] = None,
        force: bool = False,
    ) -> List[BatchItem]:
        if not subject_ids:
            raise ValidationError("subject_ids must not be empty")
        return await self.segmentation.analyze_batch(subject_ids, batch_size, force)

    async def analyze_all(
        self, force: bool = True, batch_size: Optional[int] = None
    ) -> AnalyzeAllResult:
        return await self.segmentation.analyze_all(force=force, batch_size=batch_size)

    async def get_segmentation_stats(
        self, force_reanalyze: bool = False
    ) -> Dict[str, SegmentStats]:
        return await self.segmentation.get_segmentation_stats(force_reanalyze)

    async def customers_by_segment(
        self, segment: str, page: int = 1, limit: int = 20
    ) -> Dict[str, Any]:
        return await self.segmentation.customers_by_segment(segment, page, limit)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def close(self) -> None:
        """Wait for pending side effects, then release gateway connections."""
        await self.cache.flush_pending()
        await self.dispatcher.drain()
        for gateway in (self.behavior, self.orders, self.products, self.customers):
            await gateway.close()
        for sink in self.sinks:
            close = getattr(sink, "close", None)
            if close is None:
                continue
            outcome = close()
            if inspect.isawaitable(outcome):
                await outcome


def build_engine(
    redis_client: Optional[redis.Redis],
    sinks: Sequence[NotificationSink] = (),
) -> PersonalizationEngine:
    """Engine wired to the collaborator services named in the environment."""
    return PersonalizationEngine(
        behavior=BehaviorGateway(),
        orders=OrderGateway(),
        products=ProductGateway(),
        customers=CustomerGateway(),
        cache=ResultCache(redis_client),
        dispatcher=BestEffortDispatcher(),
        sinks=sinks,
    )

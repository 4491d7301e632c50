"""
Content-based scoring: match catalog products against the subject's learned
preference profile.

Cold start (no learned brand preference) is an expected state and returns an
empty result with an explanatory message.
"""

import time
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from personalization.cache import ResultCache
from personalization.config import (
    CACHE_TTL_PREFERENCES,
    CACHE_TTL_PRODUCT_POOL,
    RecommendationConfig,
)
from personalization.errors import ExternalServiceError
from personalization.features.preferences import build_profile, interacted_product_ids
from personalization.gateways.behavior import BehaviorGateway
from personalization.gateways.orders import OrderGateway
from personalization.gateways.products import ProductGateway
from personalization.logging import setup_logging
from personalization.models import (
    PreferenceProfile,
    Product,
    ScoredProduct,
    ScoringResult,
    as_utc,
    utcnow,
)
from personalization.observability import metrics
from personalization.scoring.common import (
    eligible_candidates,
    fetch_products,
    load_catalog,
    overlap_ratio,
    rank,
    weighted_match,
)

logger = setup_logging("scoring.log")


def profile_matches(
    product: Product, profile: PreferenceProfile
) -> Dict[str, Optional[float]]:
    """Per-feature match in [0, 1]; None where the profile has no data."""
    price = None
    if profile.price_band is not None:
        low, high = profile.price_band
        price = 1.0 if low <= product.price <= high else 0.0
    return {
        "brand": None if profile.brands.is_empty else profile.brands.get(product.brand_id),
        "category": (
            None if profile.categories.is_empty else profile.categories.get(product.category_id)
        ),
        "price": price,
        "color": overlap_ratio(product.colors, profile.colors) if profile.colors else None,
        "use_case": (
            overlap_ratio(product.use_cases, profile.use_cases) if profile.use_cases else None
        ),
    }


def match_reasons(matches: Dict[str, Optional[float]], profile: PreferenceProfile) -> List[str]:
    reasons = []
    if matches.get("brand"):
        reasons.append("Matches a brand you prefer")
    if matches.get("category"):
        reasons.append("From a category you browse often")
    if matches.get("price") and profile.price_band:
        low, high = profile.price_band
        reasons.append(f"Within your usual price range ({low:,.0f} - {high:,.0f})")
    if matches.get("color"):
        reasons.append("Available in colors you like")
    if matches.get("use_case"):
        reasons.append("Suits your typical use cases")
    return reasons


class ContentScorer:
    strategy = "content"

    def __init__(
        self,
        behavior: BehaviorGateway,
        orders: OrderGateway,
        products: ProductGateway,
        cache: ResultCache,
        config: RecommendationConfig,
    ):
        self.behavior = behavior
        self.orders = orders
        self.products = products
        self.cache = cache
        self.config = config

    async def load_profile(self, subject_id: str, now: datetime) -> PreferenceProfile:
        key = self.cache.key("profile", subject_id)
        cached = await self.cache.get(key)
        if cached is not None:
            try:
                profile = PreferenceProfile.model_validate(cached)
            except PydanticValidationError as e:
                logger.warning(f"Rebuilding stale profile {key}: {e.error_count()} errors")
            else:
                if profile.expires_at and as_utc(profile.expires_at) > now:
                    return profile

        settings = self.config.content
        events = await self.behavior.get_events(
            subject_id, limit=settings.event_fetch_limit
        )
        try:
            orders = await self.orders.get_orders(
                subject_id, limit=settings.order_fetch_limit
            )
        except ExternalServiceError as e:
            logger.warning(
                f"Orders unavailable for {subject_id}, profiling from events: {e.message}"
            )
            orders = []

        product_ids = interacted_product_ids(
            events, orders, settings.profile_product_limit
        )
        products_by_id = await fetch_products(self.products, product_ids)
        profile = build_profile(
            events,
            orders,
            products_by_id,
            self.config,
            now,
            ttl_seconds=CACHE_TTL_PREFERENCES,
        )
        self.cache.set_background(
            key, profile.model_dump(mode="json"), CACHE_TTL_PREFERENCES
        )
        return profile

    def score_product(
        self, product: Product, profile: PreferenceProfile
    ) -> Optional[ScoredProduct]:
        matches = profile_matches(product, profile)
        score = weighted_match(matches, self.config.content.weights)
        if score <= 0:
            return None
        return ScoredProduct(
            product_id=product.product_id,
            score=score,
            reasons=match_reasons(matches, profile),
            product=product,
            scores={k: round(v, 4) for k, v in matches.items() if v is not None},
        )

    async def score(
        self,
        subject_id: str,
        component_type: Optional[str],
        limit: int,
        now: Optional[datetime] = None,
    ) -> ScoringResult:
        now = now or utcnow()
        profile = await self.load_profile(subject_id, now)
        if profile.is_cold_start:
            logger.info(f"Content-based cold start for {subject_id}")
            return ScoringResult(message=self.config.content.insufficient_data_message)

        catalog = await load_catalog(
            self.products,
            self.cache,
            self.config.catalog_fetch_limit,
            CACHE_TTL_PRODUCT_POOL,
        )
        candidates = eligible_candidates(
            catalog, exclude=profile.excluded_products, component_type=component_type
        )

        start_time = time.time()
        scored = [
            result
            for result in (self.score_product(p, profile) for p in candidates)
            if result is not None
        ]
        metrics.scoring_duration.labels(strategy=self.strategy).observe(
            time.time() - start_time
        )
        return ScoringResult(recommendations=rank(scored, limit))

"""
Collaborative-style scoring.

Cross-user data is not available to this layer, so "people with a similar
pattern" is approximated by comparing the catalog against the attributes of
the products the subject actually interacted with. Products the subject
already knows are never recommended back.
"""

import time
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from personalization.cache import ResultCache
from personalization.config import CACHE_TTL_PRODUCT_POOL, RecommendationConfig
from personalization.features.interactions import aggregate_interactions, weighted_score
from personalization.gateways.behavior import BehaviorGateway
from personalization.gateways.products import ProductGateway
from personalization.logging import setup_logging
from personalization.models import (
    BehaviorEvent,
    PreferenceProfile,
    Product,
    ScoredProduct,
    ScoringResult,
    WeightMap,
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


class CollaborativeScorer:
    strategy = "collaborative"

    def __init__(
        self,
        behavior: BehaviorGateway,
        products: ProductGateway,
        cache: ResultCache,
        config: RecommendationConfig,
    ):
        self.behavior = behavior
        self.products = products
        self.cache = cache
        self.config = config

    def extract_user_products(
        self, events: Sequence[BehaviorEvent]
    ) -> Tuple[List[Tuple[str, float]], List[str]]:
        """
        Returns (interacted products by descending net score, every known id).

        Products removed `removal_threshold` times or more, and products whose
        net interaction score is not positive, are dropped from the first list.
        """
        settings = self.config.collaborative
        tallies = aggregate_interactions(events)
        interacted = []
        for pid, tally in tallies.items():
            if tally.removes >= settings.removal_threshold:
                continue
            score = weighted_score(tally.counts, self.config.interaction_weights)
            if score > 0:
                interacted.append((pid, score))
        interacted.sort(key=lambda pair: (-pair[1], pair[0]))
        return interacted, sorted(tallies)

    def derive_preferences(
        self,
        user_products: Sequence[Tuple[Product, float]],
        known: Sequence[str],
    ) -> PreferenceProfile:
        brand_counts: Dict[str, float] = {}
        category_counts: Dict[str, float] = {}
        prices = []
        colors = set()
        use_cases = set()
        for product, weight in user_products:
            if product.brand_id:
                brand_counts[product.brand_id] = brand_counts.get(product.brand_id, 0.0) + weight
            if product.category_id:
                category_counts[product.category_id] = (
                    category_counts.get(product.category_id, 0.0) + weight
                )
            if product.price > 0:
                prices.append(product.price)
            colors.update(product.colors)
            use_cases.update(product.use_cases)

        band = None
        if prices:
            margin = self.config.collaborative.price_margin
            band = (min(prices) * (1 - margin), max(prices) * (1 + margin))

        return PreferenceProfile(
            brands=WeightMap.from_counts(brand_counts),
            categories=WeightMap.from_counts(category_counts),
            price_band=band,
            colors=sorted(colors),
            use_cases=sorted(use_cases),
            known_products=list(known),
        )

    def popularity(self, product: Product) -> float:
        return min(
            product.popularity / self.config.collaborative.popularity_normalization, 1.0
        )

    def score_product(
        self, product: Product, preferences: PreferenceProfile
    ) -> Optional[ScoredProduct]:
        price = None
        if preferences.price_band is not None:
            low, high = preferences.price_band
            price = 1.0 if low <= product.price <= high else 0.0
        matches = {
            "brand": (
                None
                if preferences.brands.is_empty
                else preferences.brands.get(product.brand_id)
            ),
            "category": (
                None
                if preferences.categories.is_empty
                else preferences.categories.get(product.category_id)
            ),
            "price": price,
            "popularity": self.popularity(product),
            "color": (
                overlap_ratio(product.colors, preferences.colors) if preferences.colors else None
            ),
            "use_case": (
                overlap_ratio(product.use_cases, preferences.use_cases)
                if preferences.use_cases
                else None
            ),
        }
        score = weighted_match(matches, self.config.collaborative.weights)
        if score <= 0:
            return None

        reasons = []
        if matches["brand"]:
            reasons.append("Same brand as products you interacted with")
        if matches["category"]:
            reasons.append("Similar to products you interacted with")
        if matches["price"]:
            reasons.append("Priced like products you interacted with")
        if matches["popularity"] >= 0.5:
            reasons.append("Popular with other shoppers")
        if matches["color"] or matches["use_case"]:
            reasons.append("Shares features with products you liked")

        return ScoredProduct(
            product_id=product.product_id,
            score=score,
            reasons=reasons,
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
        settings = self.config.collaborative
        events = await self.behavior.get_events(subject_id, limit=settings.event_fetch_limit)
        interacted, known = self.extract_user_products(events)
        if not interacted:
            logger.info(f"Collaborative cold start for {subject_id}")
            return ScoringResult(message=settings.insufficient_data_message)

        top = interacted[: settings.user_products_limit]
        resolved = await fetch_products(self.products, [pid for pid, _ in top])
        user_products = [(resolved[pid], weight) for pid, weight in top if pid in resolved]
        if not user_products:
            return ScoringResult(message=settings.insufficient_data_message)

        preferences = self.derive_preferences(user_products, known)
        catalog = await load_catalog(
            self.products,
            self.cache,
            self.config.catalog_fetch_limit,
            CACHE_TTL_PRODUCT_POOL,
        )
        candidates = eligible_candidates(
            catalog, exclude=known, component_type=component_type
        )

        start_time = time.time()
        scored = [
            result
            for result in (self.score_product(p, preferences) for p in candidates)
            if result is not None
        ]
        metrics.scoring_duration.labels(strategy=self.strategy).observe(
            time.time() - start_time
        )
        return ScoringResult(recommendations=rank(scored, limit))

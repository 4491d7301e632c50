"""
Favorite products: what a subject keeps coming back to within a time window.

score = sum(count * interaction weight)
        * (1 + (1 - days_since_last / window) * recency_factor)
        * (1 - min(max_penalty, penalty_per_removal * removals))

Products removed from the cart too often are dropped outright, whatever
their score.
"""

import time
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from personalization.config import RecommendationConfig
from personalization.features.interactions import (
    InteractionCounts,
    aggregate_interactions,
    weighted_score,
)
from personalization.gateways.behavior import BehaviorGateway
from personalization.gateways.products import ProductGateway
from personalization.logging import setup_logging
from personalization.models import (
    FavoritesResult,
    Product,
    ScoredProduct,
    days_between,
    is_eligible,
    utcnow,
)
from personalization.observability import metrics
from personalization.scoring.common import fetch_products

logger = setup_logging("scoring.log")

_REASON_LABELS = {
    "purchase": "Purchased",
    "add_to_cart": "Added to cart",
    "click": "Clicked",
    "view": "Viewed",
}


def _matches_category(product: Product, category: Optional[str]) -> bool:
    if not category:
        return True
    wanted = category.strip().lower()
    return wanted in (
        (product.category_id or "").lower(),
        (product.category_name or "").lower(),
    )


class FavoriteScorer:
    def __init__(
        self,
        behavior: BehaviorGateway,
        products: ProductGateway,
        config: RecommendationConfig,
    ):
        self.behavior = behavior
        self.products = products
        self.config = config

    def is_excluded(self, tally: InteractionCounts) -> bool:
        rules = self.config.favorites
        if tally.removes >= rules.max_remove_count:
            return True
        return tally.removes > tally.adds and tally.removes >= rules.remove_margin_threshold

    def score_tally(
        self, tally: InteractionCounts, window_days: int, now: datetime
    ) -> float:
        rules = self.config.favorites
        base = weighted_score(tally.counts, self.config.interaction_weights)
        days_ago = max(0, days_between(now, tally.last_interaction))
        recency = 1 + (1 - days_ago / window_days) * rules.recency_factor
        penalty = min(
            rules.max_removal_penalty, rules.removal_penalty_per_event * tally.removes
        )
        return base * recency * (1 - penalty)

    def rank_interactions(
        self,
        tallies: Dict[str, InteractionCounts],
        window_days: int,
        now: datetime,
    ) -> List[Tuple[InteractionCounts, float]]:
        ranked = []
        for tally in tallies.values():
            if self.is_excluded(tally):
                metrics.candidates_excluded.labels(reason="removed").inc()
                continue
            score = self.score_tally(tally, window_days, now)
            if score <= 0:
                continue
            ranked.append((tally, score))
        ranked.sort(key=lambda pair: (-pair[1], pair[0].product_id))
        return ranked

    def _reasons(self, tally: InteractionCounts, now: datetime) -> List[str]:
        reasons = [
            f"{label} {tally.counts[event_type]} time(s)"
            for event_type, label in _REASON_LABELS.items()
            if tally.counts.get(event_type)
        ]
        days_ago = max(0, days_between(now, tally.last_interaction))
        reasons.append(f"Last interaction {days_ago} day(s) ago")
        return reasons

    async def score(
        self,
        subject_id: str,
        time_window_days: int,
        limit: int,
        category: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> FavoritesResult:
        now = now or utcnow()
        since = now - timedelta(days=time_window_days)
        events = await self.behavior.get_events(
            subject_id, limit=self.config.favorites.event_fetch_limit, since=since
        )

        start_time = time.time()
        ranked = self.rank_interactions(
            aggregate_interactions(events, since=since), time_window_days, now
        )
        metrics.scoring_duration.labels(strategy="favorites").observe(
            time.time() - start_time
        )

        favorites: List[ScoredProduct] = []
        chunk = max(limit, 10)
        for offset in range(0, len(ranked), chunk):
            window = ranked[offset : offset + chunk]
            resolved = await fetch_products(
                self.products, [tally.product_id for tally, _ in window]
            )
            for tally, score in window:
                product = resolved.get(tally.product_id)
                if product is None or not is_eligible(product):
                    continue
                if not _matches_category(product, category):
                    continue
                favorites.append(
                    ScoredProduct(
                        product_id=tally.product_id,
                        score=round(score, 2),
                        reasons=self._reasons(tally, now),
                        product=product,
                        interactions=dict(tally.counts),
                    )
                )
            if len(favorites) >= limit:
                break
        favorites = favorites[:limit]

        by_category: Dict[str, List[ScoredProduct]] = {}
        for favorite in favorites:
            key = favorite.product.category_name or favorite.product.category_id or "uncategorized"
            by_category.setdefault(key, []).append(favorite)

        logger.info(
            f"Favorites for {subject_id}: {len(favorites)} of {len(ranked)} scored products"
        )
        return FavoritesResult(
            favorites=favorites, by_category=by_category, time_window=time_window_days
        )

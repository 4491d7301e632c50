"""
Preference profile extraction.

Brand/category weights are learned from product interactions (weighted by
event type) and completed order lines. Removal history shapes the profile:
a product removed from the cart `removal_threshold` times or more teaches
nothing and is excluded from candidates; one removed fewer times contributes
at a reduced weight.
"""

from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from personalization.config import RecommendationConfig
from personalization.features.interactions import removal_counts
from personalization.models import (
    BehaviorEvent,
    OrderSummary,
    PreferenceProfile,
    Product,
    WeightMap,
)


def price_band(prices: Sequence[float]) -> Optional[Tuple[float, float]]:
    """Interquartile price range (p25, p75); None without observations."""
    observed = [p for p in prices if p and p > 0]
    if not observed:
        return None
    p25, p75 = np.percentile(np.asarray(observed, dtype=float), [25, 75])
    return float(p25), float(p75)


def interacted_product_ids(
    events: Iterable[BehaviorEvent], orders: Iterable[OrderSummary], limit: int
) -> List[str]:
    """Distinct product ids, most recent first, bounded by `limit`."""
    seen: Dict[str, datetime] = {}
    for event in events:
        pid = event.product_id
        if pid and (pid not in seen or event.timestamp > seen[pid]):
            seen[pid] = event.timestamp
    for order in orders:
        if not order.counts_toward_rfm:
            continue
        for item in order.items:
            if item.product_id not in seen or order.created_at > seen[item.product_id]:
                seen[item.product_id] = order.created_at
    ranked = sorted(seen.items(), key=lambda kv: kv[1], reverse=True)
    return [pid for pid, _ in ranked[:limit]]


def build_profile(
    events: Sequence[BehaviorEvent],
    orders: Sequence[OrderSummary],
    products_by_id: Mapping[str, Product],
    config: RecommendationConfig,
    now: datetime,
    ttl_seconds: int = 3600,
) -> PreferenceProfile:
    content = config.content
    weights = config.interaction_weights
    removed = removal_counts(events)
    excluded = {
        pid for pid, count in removed.items() if count >= content.removal_threshold
    }

    brand_counts: Dict[str, float] = {}
    category_counts: Dict[str, float] = {}
    prices: List[float] = []
    colors = set()
    use_cases = set()
    known = set()

    def learn(product: Product, weight: float) -> None:
        if product.brand_id:
            brand_counts[product.brand_id] = brand_counts.get(product.brand_id, 0.0) + weight
        if product.category_id:
            category_counts[product.category_id] = (
                category_counts.get(product.category_id, 0.0) + weight
            )
        colors.update(product.colors)
        use_cases.update(product.use_cases)

    for event in events:
        pid = event.product_id
        if not pid:
            continue
        known.add(pid)
        if pid in excluded:
            continue
        weight = weights.get(event.event_type, 0)
        if weight <= 0:
            continue
        product = products_by_id.get(pid)
        if product is None:
            continue
        if removed.get(pid):
            weight *= content.partial_removal_factor
        learn(product, weight)
        if product.price > 0:
            prices.append(product.price)

    purchase_weight = weights.get("purchase", 0)
    for order in orders:
        if not order.counts_toward_rfm:
            continue
        for item in order.items:
            known.add(item.product_id)
            if item.price > 0:
                prices.append(item.price)
            if item.product_id in excluded:
                continue
            product = products_by_id.get(item.product_id)
            if product is not None and purchase_weight > 0:
                learn(product, purchase_weight)

    return PreferenceProfile(
        brands=WeightMap.from_counts(brand_counts),
        categories=WeightMap.from_counts(category_counts),
        price_band=price_band(prices),
        colors=sorted(colors),
        use_cases=sorted(use_cases),
        known_products=sorted(known),
        excluded_products=sorted(excluded),
        removal_counts=removed,
        expires_at=now + timedelta(seconds=ttl_seconds),
    )

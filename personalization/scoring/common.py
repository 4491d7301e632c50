import asyncio
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from pydantic import ValidationError as PydanticValidationError

from personalization.cache import ResultCache
from personalization.errors import EngineError
from personalization.gateways.products import ProductGateway
from personalization.logging import setup_logging
from personalization.models import Product, ScoredProduct, is_eligible
from personalization.observability import metrics
from personalization.scoring.components import matches_component_type

logger = setup_logging("scoring.log")


def eligible_candidates(
    products: Iterable[Product],
    exclude: Iterable[str] = (),
    component_type: Optional[str] = None,
    category_id: Optional[str] = None,
) -> List[Product]:
    """
    The one candidate filter every strategy goes through.

    Drops ineligible products (not published or inactive), explicitly excluded
    ids, and products outside the requested component type or category.
    """
    excluded = set(exclude)
    candidates = []
    for product in products:
        if not is_eligible(product):
            metrics.candidates_excluded.labels(reason="ineligible").inc()
            continue
        if product.product_id in excluded:
            metrics.candidates_excluded.labels(reason="excluded").inc()
            continue
        if category_id and product.category_id != category_id:
            continue
        if not matches_component_type(product, component_type):
            continue
        candidates.append(product)
    return candidates


def weighted_match(
    matches: Mapping[str, Optional[float]], weights: Mapping[str, float]
) -> int:
    """
    round(sum(matched weight) / sum(possible weight) * 100).

    A feature whose match is None has no data on the preference side and is
    left out of the possible weight.
    """
    possible = 0.0
    matched = 0.0
    for feature, match in matches.items():
        if match is None:
            continue
        weight = weights.get(feature, 0)
        possible += weight
        matched += weight * max(0.0, min(1.0, match))
    if possible <= 0:
        return 0
    return int(round(matched / possible * 100))


def overlap_ratio(values: Sequence[str], preferred: Iterable[str]) -> float:
    """Share of the candidate's values the subject has shown interest in."""
    if not values:
        return 0.0
    wanted = set(preferred)
    distinct = set(values)
    return len(distinct & wanted) / len(distinct)


def jaccard(a: Iterable[str], b: Iterable[str]) -> float:
    left, right = set(a), set(b)
    union = left | right
    if not union:
        return 0.0
    return len(left & right) / len(union)


def rank(scored: List[ScoredProduct], limit: int) -> List[ScoredProduct]:
    # ties broken by product id so equal inputs always give equal orderings
    ordered = sorted(scored, key=lambda s: (-s.score, s.product_id))
    return ordered[:limit]


def products_from_cache(cached: Any, key: str) -> Optional[List[Product]]:
    """
    Decode a cached product pool; None when absent or no longer decodable.

    A pool written by an older release may not match the current Product
    model. Such an entry counts as a miss and is overwritten on recompute.
    """
    if cached is None:
        return None
    try:
        return [Product.model_validate(p) for p in cached]
    except (PydanticValidationError, TypeError) as e:
        logger.warning(f"Ignoring stale product pool {key}: {e}")
        return None


async def fetch_products(
    gateway: ProductGateway, product_ids: Sequence[str]
) -> Dict[str, Product]:
    """Resolve products by id concurrently; unresolvable ids are skipped."""
    unique = list(dict.fromkeys(product_ids))
    results = await asyncio.gather(
        *(gateway.get_product(pid) for pid in unique), return_exceptions=True
    )
    resolved: Dict[str, Product] = {}
    for pid, result in zip(unique, results):
        if isinstance(result, EngineError):
            logger.warning(f"Could not resolve product {pid}: {result.message}")
            continue
        if isinstance(result, BaseException):
            raise result
        if result is not None:
            resolved[pid] = result
    return resolved


async def load_catalog(
    gateway: ProductGateway,
    cache: ResultCache,
    limit: int,
    ttl: int,
    category_id: Optional[str] = None,
) -> List[Product]:
    """
    Published, active catalog slice, cached as a product pool.

    The catalog is essential: a failing product service surfaces as
    ExternalServiceError.
    """
    key = cache.key("pool", category_id or "all", limit=limit)
    pool = products_from_cache(await cache.get(key), key)
    if pool is not None:
        return pool

    products = await gateway.list_products(category_id=category_id, limit=limit)
    if products:
        cache.set_background(key, [p.model_dump(mode="json") for p in products], ttl)
    return products

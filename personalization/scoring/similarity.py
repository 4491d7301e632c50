import time
from typing import Dict, List, Optional, Tuple

from personalization.config import RecommendationConfig
from personalization.errors import NotFoundError
from personalization.gateways.products import ProductGateway
from personalization.logging import setup_logging
from personalization.models import Product, ScoredProduct, SimilarResult
from personalization.observability import metrics
from personalization.scoring.common import eligible_candidates, jaccard, rank

logger = setup_logging("scoring.log")


class SimilarityScorer:
    """
    Products like a reference product, within its category.

    Features: brand (exact), price (closeness), a fixed set of specification
    keys (exact-match ratio), colors and use-cases (Jaccard). Only features
    present on both sides count toward the possible weight, so comparing A to
    B and B to A applies the same rules.
    """

    strategy = "similarity"

    def __init__(self, products: ProductGateway, config: RecommendationConfig):
        self.products = products
        self.config = config

    def price_similarity(self, reference_price: float, price: float) -> float:
        diff = abs(reference_price - price)
        if diff <= reference_price * self.config.similarity.price_diff_threshold:
            return 1.0
        average = (reference_price + price) / 2
        return max(0.0, 1 - diff / average)

    def compare(
        self, reference: Product, candidate: Product
    ) -> Tuple[int, List[str], Dict[str, float]]:
        settings = self.config.similarity
        parts: Dict[str, float] = {}
        matched: List[str] = []

        if reference.brand_id and candidate.brand_id:
            parts["brand"] = 1.0 if reference.brand_id == candidate.brand_id else 0.0
            if parts["brand"]:
                matched.append("brand")

        if reference.price > 0 and candidate.price > 0:
            parts["price"] = self.price_similarity(reference.price, candidate.price)
            if parts["price"] == 1.0:
                matched.append("price")

        spec_total = 0
        spec_matches = 0
        for key in settings.spec_keys:
            left = reference.specifications.get(key)
            right = candidate.specifications.get(key)
            if not left and not right:
                continue
            spec_total += 1
            if left == right:
                spec_matches += 1
                matched.append(key)
        if spec_total:
            parts["specifications"] = spec_matches / spec_total

        if reference.colors and candidate.colors:
            parts["colors"] = jaccard(reference.colors, candidate.colors)
            if parts["colors"]:
                matched.append("colors")

        if reference.use_cases and candidate.use_cases:
            parts["use_cases"] = jaccard(reference.use_cases, candidate.use_cases)
            if parts["use_cases"]:
                matched.append("use_cases")

        total = 0.0
        possible = 0.0
        for name, value in parts.items():
            weight = settings.weights.get(name, 0)
            total += value * weight
            possible += weight
        score = int(round(total / possible * 100)) if possible > 0 else 0
        return score, matched, parts

    def _reasons(self, matched: List[str]) -> List[str]:
        labels = {
            "brand": "Same brand",
            "price": "Similar price",
            "colors": "Shares colors",
            "use_cases": "Built for the same use cases",
        }
        reasons = [labels[m] for m in matched if m in labels]
        specs = [m for m in matched if m not in labels]
        if specs:
            reasons.append(f"Same {', '.join(specs)}")
        return reasons

    async def score(
        self, product_id: str, limit: int, category: Optional[str] = None
    ) -> SimilarResult:
        reference = await self.products.get_product(product_id)
        if reference is None:
            raise NotFoundError(
                f"Product {product_id} not found", {"product_id": product_id}
            )

        category_id = category or reference.category_id
        catalog = await self.products.list_products(
            category_id=category_id,
            limit=self.config.similarity.candidate_fetch_limit,
        )
        candidates = eligible_candidates(
            catalog, exclude=[reference.product_id], category_id=category_id
        )

        start_time = time.time()
        scored = []
        for candidate in candidates:
            score, matched, parts = self.compare(reference, candidate)
            if score <= 0:
                continue
            scored.append(
                ScoredProduct(
                    product_id=candidate.product_id,
                    score=score,
                    reasons=self._reasons(matched),
                    product=candidate,
                    matched_features=matched,
                    scores={k: round(v, 4) for k, v in parts.items()},
                )
            )
        metrics.scoring_duration.labels(strategy=self.strategy).observe(
            time.time() - start_time
        )

        logger.info(f"Similar to {product_id}: {len(scored)} of {len(candidates)} candidates")
        return SimilarResult(reference_product=reference, similar_products=rank(scored, limit))

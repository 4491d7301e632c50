"""
Compatibility scoring for PC builds.

Requirements come from the components already selected: CPU socket, RAM
type, motherboard form factor, and cumulative power draw plus overhead.
Each candidate of the target type is checked against the requirements that
apply to that type; one whose applicable checks all fail is dropped.

Without applicable checks (nothing selected yet, or nothing relevant to the
target type), or when every candidate is dropped, the result falls back to
the eligible pool in popularity order.
"""

import math
import re
import time
from collections import Counter
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from personalization.cache import ResultCache
from personalization.config import CACHE_TTL_PRODUCT_POOL, RecommendationConfig
from personalization.gateways.products import ProductGateway
from personalization.logging import setup_logging
from personalization.models import (
    BuildSuggestionsResult,
    CompatibleResult,
    Product,
    Requirements,
    ScoredProduct,
    SelectedComponent,
    is_eligible,
)
from personalization.observability import metrics
from personalization.scoring.common import (
    eligible_candidates,
    fetch_products,
    products_from_cache,
    rank,
)
from personalization.scoring.components import component_type_of

logger = setup_logging("scoring.log")

_NUMBER = re.compile(r"\d+(?:\.\d+)?")


def _as_number(value: Any) -> float:
    """Spec values arrive as numbers or strings such as "65W"."""
    if isinstance(value, bool) or value is None:
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    match = _NUMBER.search(str(value))
    return float(match.group()) if match else 0.0


def _as_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple, set)):
        return [str(v) for v in value]
    return [str(value)]


class CompatibilityScorer:
    strategy = "compatibility"

    def __init__(
        self,
        products: ProductGateway,
        cache: ResultCache,
        config: RecommendationConfig,
    ):
        self.products = products
        self.cache = cache
        self.config = config

    def extract_requirements(
        self,
        components: Sequence[SelectedComponent],
        budget_min: Optional[float] = None,
        budget_max: Optional[float] = None,
        brand_preferences: Optional[Dict[str, float]] = None,
    ) -> Requirements:
        socket = None
        ram_type = None
        form_factor = None
        power = 0.0
        for component in components:
            specs = component.specifications
            if specs.get("socket"):
                socket = str(specs["socket"])
            if component.type == "ram" and specs.get("type"):
                ram_type = str(specs["type"])
            if component.type == "motherboard" and specs.get("formFactor"):
                form_factor = str(specs["formFactor"])
            power += _as_number(specs.get("powerConsumption") or specs.get("tdp"))

        power_requirement = 0
        if power > 0:
            power_requirement = math.ceil(
                power * (1 + self.config.compatibility.power_overhead)
            )

        return Requirements(
            socket=socket,
            ram_type=ram_type,
            form_factor=form_factor,
            power_requirement=power_requirement,
            budget_min=budget_min,
            budget_max=budget_max,
            brand_preferences=brand_preferences,
        )

    def check(
        self, product: Product, requirements: Requirements, component_type: str
    ) -> Dict[str, str]:
        """Applicable requirement checks for this target type -> match/mismatch."""
        specs = product.specifications
        checks: Dict[str, str] = {}

        if requirements.socket and component_type in ("motherboard", "cpu"):
            checks["socket"] = "match" if specs.get("socket") == requirements.socket else "mismatch"

        if requirements.ram_type and component_type == "motherboard":
            supported = _as_list(specs.get("ramTypes"))
            checks["ram_type"] = "match" if requirements.ram_type in supported else "mismatch"

        if requirements.form_factor and component_type == "case":
            supported = _as_list(specs.get("supportedFormFactors"))
            checks["form_factor"] = (
                "match" if requirements.form_factor in supported else "mismatch"
            )

        if requirements.power_requirement > 0 and component_type == "psu":
            wattage = _as_number(specs.get("wattage") or specs.get("power"))
            checks["power"] = (
                "match" if wattage >= requirements.power_requirement else "mismatch"
            )

        return checks

    @staticmethod
    def compatibility_score(checks: Dict[str, str]) -> int:
        if not checks:
            return 0
        passed = sum(1 for outcome in checks.values() if outcome == "match")
        return int(round(passed / len(checks) * 100))

    def price_score(
        self, price: float, budget_min: Optional[float], budget_max: Optional[float]
    ) -> float:
        """Peaks at the budget midpoint; neutral without a budget."""
        neutral = self.config.compatibility.neutral_score
        if not budget_min and not budget_max:
            return neutral
        if budget_min and price < budget_min:
            return max(0, round(price / budget_min * 50))
        if budget_max and price > budget_max:
            return max(0, round(budget_max / price * 50))
        if budget_min and budget_max and budget_max > budget_min:
            position = (price - budget_min) / (budget_max - budget_min)
            return round(100 - abs(position - 0.5) * 40)
        return 100

    def brand_score(
        self, brand_id: Optional[str], preferences: Optional[Dict[str, float]]
    ) -> float:
        neutral = self.config.compatibility.neutral_score
        if not preferences or not brand_id or not preferences.get(brand_id):
            return neutral
        return round(preferences[brand_id] * 100)

    def popularity_score(self, product: Product) -> float:
        normalization = self.config.compatibility.popularity_normalization
        return min(product.popularity / normalization, 1.0) * 100

    def final_score(self, scores: Dict[str, float]) -> int:
        weights = self.config.compatibility.weights
        total = 0.0
        total_weight = 0.0
        for name, value in scores.items():
            weight = weights.get(name, 0)
            total += value * weight
            total_weight += weight
        return int(round(total / total_weight)) if total_weight > 0 else 0

    def reasons(
        self, product: Product, checks: Dict[str, str], requirements: Requirements
    ) -> List[str]:
        specs = product.specifications
        reasons = []
        if checks.get("socket") == "match":
            reasons.append(f"Socket {specs.get('socket')} fits your selected components")
        if checks.get("ram_type") == "match":
            reasons.append(f"Supports {requirements.ram_type} like your selected RAM")
        if checks.get("form_factor") == "match":
            reasons.append(f"Fits a {requirements.form_factor} motherboard")
        if checks.get("power") == "match":
            wattage = specs.get("wattage") or specs.get("power")
            reasons.append(
                f"{wattage}W covers the estimated {requirements.power_requirement}W draw"
            )
        return reasons

    async def product_pool(self, component_type: str) -> List[Product]:
        """Eligible products of one component type, cached as a pool."""
        key = self.cache.key("pool", component_type)
        pool = products_from_cache(await self.cache.get(key), key)
        if pool is not None:
            return pool

        products = await self.products.list_products(
            limit=self.config.compatibility.product_fetch_limit
        )
        pool = eligible_candidates(products, component_type=component_type)
        if pool:
            self.cache.set_background(
                key, [p.model_dump(mode="json") for p in pool], CACHE_TTL_PRODUCT_POOL
            )
        return pool

    def _base_scores(
        self, product: Product, requirements: Requirements
    ) -> Dict[str, float]:
        return {
            "price": self.price_score(
                product.price, requirements.budget_min, requirements.budget_max
            ),
            "brand": self.brand_score(product.brand_id, requirements.brand_preferences),
            "popularity": self.popularity_score(product),
        }

    def _popular(
        self,
        pool: Sequence[Product],
        requirements: Requirements,
        component_type: str,
        limit: int,
    ) -> List[ScoredProduct]:
        """Every product of the pool, most viewed first."""
        popular = []
        for product in pool:
            checks = self.check(product, requirements, component_type)
            scores = self._base_scores(product, requirements)
            reasons = self.reasons(product, checks, requirements)
            reasons.append(f"Popular {component_type} choice")
            popular.append(
                ScoredProduct(
                    product_id=product.product_id,
                    score=self.final_score(scores),
                    reasons=reasons,
                    product=product,
                    scores=scores,
                    compatibility=checks,
                )
            )
        popular.sort(key=lambda s: (-s.scores["popularity"], -s.score, s.product_id))
        return popular[:limit]

    def rank_pool(
        self,
        pool: Sequence[Product],
        requirements: Requirements,
        component_type: str,
        limit: int,
    ) -> Tuple[List[ScoredProduct], bool]:
        """
        Rank a pool against the requirements; returns (ranked, fallback).

        Products whose applicable checks all fail are dropped. When no check
        applies, or nothing survives, the whole pool is ranked by popularity
        instead and fallback is True.
        """
        start_time = time.time()
        scored: List[ScoredProduct] = []
        checked_any = False
        for product in pool:
            checks = self.check(product, requirements, component_type)
            if not checks:
                continue
            checked_any = True
            compatibility = self.compatibility_score(checks)
            if compatibility == 0:
                metrics.candidates_excluded.labels(reason="incompatible").inc()
                continue
            scores = self._base_scores(product, requirements)
            scores["compatibility"] = compatibility
            scored.append(
                ScoredProduct(
                    product_id=product.product_id,
                    score=self.final_score(scores),
                    reasons=self.reasons(product, checks, requirements),
                    product=product,
                    scores=scores,
                    compatibility=checks,
                )
            )

        if scored:
            ranked = rank(scored, limit)
        else:
            if checked_any:
                logger.info(f"No compatible {component_type} left, using popular products")
            ranked = self._popular(pool, requirements, component_type, limit)
        metrics.scoring_duration.labels(strategy=self.strategy).observe(
            time.time() - start_time
        )
        return ranked, not scored

    async def score(
        self,
        component_type: str,
        components: Sequence[SelectedComponent],
        limit: int,
        budget_min: Optional[float] = None,
        budget_max: Optional[float] = None,
        brand_preferences: Optional[Dict[str, float]] = None,
    ) -> CompatibleResult:
        component_type = component_type.strip().lower()
        requirements = self.extract_requirements(
            components, budget_min, budget_max, brand_preferences
        )
        pool = await self.product_pool(component_type)

        ranked, fallback = self.rank_pool(pool, requirements, component_type, limit)
        ranked = await self._with_full_products(ranked)
        logger.info(
            f"Compatible {component_type}: {len(ranked)} of {len(pool)} candidates"
            f" (fallback={fallback})"
        )
        return CompatibleResult(
            component_type=component_type,
            recommendations=ranked,
            filters=requirements,
            fallback=fallback,
        )

    @staticmethod
    def components_from_config(current_config: Mapping[str, Any]) -> List[SelectedComponent]:
        """
        Build-configuration map -> selected components.

        Each entry maps a component type to either a lightweight selection
        ({"productId", "specifications"}) or a full product document. Empty
        selections are skipped.
        """
        components = []
        for component_type, selection in current_config.items():
            if not selection:
                continue
            data = selection
            if isinstance(selection, dict):
                if "productId" not in selection and ("_id" in selection or "id" in selection):
                    data = {"product": selection}
                data = {**data, "type": component_type}
            components.append(SelectedComponent.model_validate(data))
        return components

    async def suggest(
        self,
        category_id: str,
        components: Sequence[SelectedComponent],
        limit: int,
    ) -> BuildSuggestionsResult:
        """
        Suggestions for the next part of a build, drawn from one category.

        The category's most viewed products are checked against the parts
        already chosen. With nothing chosen, or nothing compatible, the most
        popular products of the category are suggested instead.
        """
        products = await self.products.list_products(
            category_id=category_id,
            limit=limit * self.config.compatibility.build_fetch_multiplier,
            sort_by="views",
        )
        pool = eligible_candidates(products)
        requirements = self.extract_requirements(components)
        types = Counter(t for t in map(component_type_of, pool) if t is not None)
        component_type = types.most_common(1)[0][0] if types else None

        if components and component_type is not None:
            ranked, fallback = self.rank_pool(pool, requirements, component_type, limit)
        else:
            ranked = self._popular(pool, requirements, component_type or "build", limit)
            fallback = True
        ranked = await self._with_full_products(ranked)
        logger.info(
            f"Build suggestions for category {category_id}: {len(ranked)} of"
            f" {len(pool)} candidates (type={component_type}, fallback={fallback})"
        )
        return BuildSuggestionsResult(
            category_id=category_id,
            component_type=component_type,
            recommendations=ranked,
            filters=requirements,
            current_components=list(components),
            fallback=fallback,
        )

    async def _with_full_products(
        self, ranked: List[ScoredProduct]
    ) -> List[ScoredProduct]:
        # pools hold lightweight projections; final results carry full products
        full = await fetch_products(self.products, [item.product_id for item in ranked])
        enriched = []
        for item in ranked:
            product = full.get(item.product_id)
            if product is not None:
                if not is_eligible(product):
                    continue
                item.product = product
            enriched.append(item)
        return enriched

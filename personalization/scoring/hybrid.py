import asyncio
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from personalization.config import HybridConfig
from personalization.errors import EngineError
from personalization.logging import setup_logging
from personalization.models import ScoredProduct, ScoringResult
from personalization.observability import metrics
from personalization.scoring.collaborative import CollaborativeScorer
from personalization.scoring.common import rank
from personalization.scoring.content import ContentScorer

logger = setup_logging("scoring.log")


def merge(
    collaborative: List[ScoredProduct],
    content: List[ScoredProduct],
    config: HybridConfig,
) -> List[ScoredProduct]:
    """
    Blend two ranked lists by product id.

    In both lists: c * collaborative_weight + t * content_weight.
    In one list only: that score times its list's weight.
    Reasons are unioned in first-seen order.
    """
    merged: Dict[str, ScoredProduct] = {}
    for items, weight, label in (
        (collaborative, config.collaborative_weight, "collaborative"),
        (content, config.content_weight, "content"),
    ):
        for item in items:
            existing = merged.get(item.product_id)
            if existing is None:
                merged[item.product_id] = ScoredProduct(
                    product_id=item.product_id,
                    score=item.score * weight,
                    reasons=list(dict.fromkeys(item.reasons)),
                    product=item.product,
                    scores={label: item.score},
                )
                continue
            existing.score += item.score * weight
            existing.reasons = list(dict.fromkeys(existing.reasons + item.reasons))
            existing.scores[label] = item.score
            if existing.product is None:
                existing.product = item.product

    for item in merged.values():
        item.score = round(item.score, 2)
    return sorted(merged.values(), key=lambda s: (-s.score, s.product_id))


class HybridScorer:
    """Runs collaborative and content scoring side by side and blends them."""

    strategy = "hybrid"

    def __init__(
        self,
        collaborative: CollaborativeScorer,
        content: ContentScorer,
        config: HybridConfig,
    ):
        self.collaborative = collaborative
        self.content = content
        self.config = config

    async def _run(
        self, scorer, subject_id, component_type, limit, now
    ) -> Tuple[ScoringResult, Optional[str]]:
        try:
            return await scorer.score(subject_id, component_type, limit, now), None
        except EngineError as e:
            # one failing strategy must not sink the blend
            metrics.strategy_failures.labels(strategy=scorer.strategy).inc()
            logger.warning(f"{scorer.strategy} scoring failed for {subject_id}: {e.message}")
            return ScoringResult(), e.message

    async def score(
        self,
        subject_id: str,
        component_type: Optional[str],
        limit: int,
        now: Optional[datetime] = None,
    ) -> Tuple[ScoringResult, Dict[str, Any]]:
        # each side gets headroom so the blend can still fill `limit`
        depth = limit * 2
        (collab, collab_error), (content, content_error) = await asyncio.gather(
            self._run(self.collaborative, subject_id, component_type, depth, now),
            self._run(self.content, subject_id, component_type, depth, now),
        )

        recommendations = rank(
            merge(collab.recommendations, content.recommendations, self.config), limit
        )
        breakdown = {
            "collaborative": {
                "count": len(collab.recommendations),
                "weight": self.config.collaborative_weight,
                "message": collab.message,
                "error": collab_error,
            },
            "content": {
                "count": len(content.recommendations),
                "weight": self.config.content_weight,
                "message": content.message,
                "error": content_error,
            },
        }
        message = None if recommendations else self.config.insufficient_data_message
        return ScoringResult(recommendations=recommendations, message=message), breakdown

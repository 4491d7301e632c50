from datetime import datetime
from typing import Dict, Iterable, Mapping, Optional

from pydantic import BaseModel, Field

from personalization.models import BehaviorEvent

COUNTED_EVENTS = ("view", "click", "add_to_cart", "remove_from_cart", "purchase")


class InteractionCounts(BaseModel):
    """Per-product interaction tally for one subject."""

    product_id: str
    counts: Dict[str, int] = Field(default_factory=dict)
    last_interaction: datetime

    @property
    def adds(self) -> int:
        return self.counts.get("add_to_cart", 0)

    @property
    def removes(self) -> int:
        return self.counts.get("remove_from_cart", 0)


def aggregate_interactions(
    events: Iterable[BehaviorEvent], since: Optional[datetime] = None
) -> Dict[str, InteractionCounts]:
    tallies: Dict[str, InteractionCounts] = {}
    for event in events:
        product_id = event.product_id
        if not product_id or event.event_type not in COUNTED_EVENTS:
            continue
        if since is not None and event.timestamp < since:
            continue

        tally = tallies.get(product_id)
        if tally is None:
            tally = InteractionCounts(
                product_id=product_id, last_interaction=event.timestamp
            )
            tallies[product_id] = tally
        tally.counts[event.event_type] = tally.counts.get(event.event_type, 0) + 1
        if event.timestamp > tally.last_interaction:
            tally.last_interaction = event.timestamp
    return tallies


def weighted_score(counts: Mapping[str, int], weights: Mapping[str, float]) -> float:
    return float(sum(count * weights.get(event_type, 0) for event_type, count in counts.items()))


def removal_counts(events: Iterable[BehaviorEvent]) -> Dict[str, int]:
    removed: Dict[str, int] = {}
    for event in events:
        if event.event_type == "remove_from_cart" and event.product_id:
            removed[event.product_id] = removed.get(event.product_id, 0) + 1
    return removed

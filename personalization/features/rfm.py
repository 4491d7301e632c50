"""
Recency / Frequency / Monetary and engagement metrics for one customer.

All functions are pure in their inputs and the analysis instant `now`.
"""

from datetime import datetime, timedelta
from typing import Optional, Sequence

from personalization.config import SegmentationConfig
from personalization.models import (
    BehaviorEvent,
    BehaviorMetrics,
    Customer,
    OrderSummary,
    RFMMetrics,
    days_between,
)


def completed_orders(orders: Sequence[OrderSummary]) -> list:
    return [o for o in orders if o.counts_toward_rfm]


def last_order_at(orders: Sequence[OrderSummary]) -> Optional[datetime]:
    completed = completed_orders(orders)
    if not completed:
        return None
    return max(o.created_at for o in completed)


def days_since_registration(
    customer: Customer, now: datetime, config: SegmentationConfig
) -> int:
    if customer.first_seen_at is None:
        return config.no_activity_days
    return days_between(now, customer.first_seen_at)


def compute_rfm(
    customer: Customer,
    orders: Sequence[OrderSummary],
    now: datetime,
    config: SegmentationConfig,
) -> RFMMetrics:
    completed = completed_orders(orders)

    # recency falls back from last order to last seen to registration
    if completed:
        last_activity = max(o.created_at for o in completed)
    elif customer.last_seen_at:
        last_activity = customer.last_seen_at
    else:
        last_activity = customer.first_seen_at or now
    recency = max(0, days_between(now, last_activity))

    window_start = now - timedelta(days=config.analysis_window_days)
    recent = [o for o in completed if o.created_at >= window_start]

    return RFMMetrics(
        recency=recency,
        frequency=len(recent),
        monetary=float(sum(o.total for o in recent)),
        last_activity_date=last_activity,
        total_orders=len(completed),
    )


def compute_behavior(
    events: Sequence[BehaviorEvent],
    now: datetime,
    config: SegmentationConfig,
    last_order: Optional[datetime] = None,
) -> BehaviorMetrics:
    window_start = now - timedelta(days=config.loyal_recency_days)
    recent = [e for e in events if e.timestamp >= window_start]
    important = sum(1 for e in recent if e.event_type in config.important_events)
    engagement = important * config.important_event_weight + len(recent)

    # last activity is the latest event or completed order, whichever is newer
    candidates = [e.timestamp for e in events]
    if last_order is not None:
        candidates.append(last_order)
    if candidates:
        days_inactive = max(0, days_between(now, max(candidates)))
    else:
        days_inactive = config.no_activity_days

    return BehaviorMetrics(
        recent_event_count=len(recent),
        engagement_score=engagement,
        days_since_last_activity=days_inactive,
        recent_important_event_count=important,
    )


def rfm_score(rfm: RFMMetrics, config: SegmentationConfig) -> int:
    """
    Weighted 0-100 score: R*0.4 + F*0.4 + M*0.2 with each part normalized.

    R: 0 days -> 100, recency_max_days or more -> 0
    F: frequency * frequency_multiplier, capped at 100
    M: monetary / high_monetary * 100, capped at 100
    """
    recency = rfm.recency if rfm.recency is not None else config.no_activity_days
    recency_score = max(0.0, 100 - recency * (100 / config.recency_max_days))
    frequency_score = min(100.0, rfm.frequency * config.frequency_multiplier)
    monetary_score = min(100.0, rfm.monetary / config.high_monetary * 100)

    w_recency, w_frequency, w_monetary = config.rfm_weights
    score = (
        recency_score * w_recency
        + frequency_score * w_frequency
        + monetary_score * w_monetary
    )
    return int(round(score))

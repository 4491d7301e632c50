"""
Segment decision table.

RULES is evaluated top to bottom and the first matching rule wins; the order
is part of the behavior. In particular `new_customer` must stay first: a
customer registered less than `new_customer_days` ago is always `potential`.
"""

from typing import Callable, List, NamedTuple, Tuple

from pydantic import BaseModel

from personalization.config import SegmentationConfig
from personalization.models import BehaviorMetrics, RFMMetrics


class SegmentContext(BaseModel):
    rfm: RFMMetrics
    behavior: BehaviorMetrics
    total_orders: int
    days_since_registration: int
    rfm_score: int
    config: SegmentationConfig

    @property
    def days_inactive(self) -> int:
        return self.behavior.days_since_last_activity

    @property
    def effective_recency(self) -> int:
        if self.rfm.recency is not None:
            return self.rfm.recency
        return self.behavior.days_since_last_activity

    @property
    def established(self) -> bool:
        return self.days_since_registration >= self.config.new_customer_days


class Rule(NamedTuple):
    name: str
    segment: str
    predicate: Callable[[SegmentContext], bool]
    reasons: Callable[[SegmentContext], List[str]]


def _millions(amount: float) -> str:
    return f"{amount / 1_000_000:.1f}M"


RULES: Tuple[Rule, ...] = (
    Rule(
        "new_customer",
        "potential",
        lambda c: c.days_since_registration < c.config.new_customer_days,
        lambda c: [
            f"New customer (registered {c.days_since_registration} days ago)",
            "No purchase history yet"
            if c.total_orders == 0
            else f"Early stage: {c.total_orders} order(s)",
        ],
    ),
    Rule(
        "never_engaged",
        "potential",
        lambda c: (
            c.total_orders == 0
            and c.behavior.recent_event_count == 0
            and c.days_inactive >= c.config.no_activity_days
        ),
        lambda c: [
            f"Registered {c.days_since_registration} days ago",
            "No recorded activity",
            "Waiting for a first interaction",
        ],
    ),
    Rule(
        "churned",
        "churned",
        lambda c: (
            c.established
            and c.days_inactive >= c.config.churn_days
            and c.total_orders >= c.config.min_orders_churned
        ),
        lambda c: [
            f"Inactive for {c.days_inactive} days",
            f"Previous purchase history: {c.total_orders} order(s)",
            "Extended period of inactivity",
        ],
    ),
    Rule(
        "loyal_high_value",
        "loyal",
        lambda c: (
            c.established
            and c.days_inactive <= c.config.loyal_recency_days
            and c.rfm.frequency >= c.config.min_frequency_loyal
            and c.rfm.monetary >= c.config.high_monetary
        ),
        lambda c: [
            f"Active within the last {c.days_inactive} days",
            f"High frequency: {c.rfm.frequency} orders this month",
            f"High spend: {_millions(c.rfm.monetary)} this month",
        ],
    ),
    Rule(
        "loyal_engaged",
        "loyal",
        lambda c: (
            c.established
            and c.days_inactive <= c.config.loyal_recency_days
            and c.rfm.frequency >= c.config.min_frequency_loyal
            and c.behavior.engagement_score >= c.config.min_engagement_loyal
        ),
        lambda c: [
            f"Active within the last {c.days_inactive} days",
            f"High frequency: {c.rfm.frequency} orders this month",
            f"Strong engagement: {c.behavior.engagement_score}",
        ],
    ),
    Rule(
        "loyal_high_spend",
        "loyal",
        lambda c: (
            c.established
            and c.days_inactive <= c.config.loyal_recency_days
            and c.rfm.frequency >= c.config.min_frequency_high_spend
            and c.rfm.monetary >= c.config.high_monetary
        ),
        lambda c: [
            f"Active within the last {c.days_inactive} days",
            f"Repeat buyer: {c.rfm.frequency} orders this month",
            f"High spend: {_millions(c.rfm.monetary)} this month",
        ],
    ),
    Rule(
        "declining",
        "at_risk",
        lambda c: (
            c.established
            and c.config.at_risk_start_days <= c.days_inactive < c.config.at_risk_end_days
            and c.total_orders >= c.config.min_orders_churned
        ),
        lambda c: [
            f"Inactive for {c.days_inactive} days",
            f"Previous purchase history: {c.total_orders} order(s)",
            "Engagement is dropping",
        ],
    ),
    Rule(
        "lapsing",
        "at_risk",
        lambda c: (
            c.established
            and c.config.at_risk_start_days <= c.effective_recency < c.config.churn_days
            and c.total_orders >= c.config.min_orders_at_risk
        ),
        lambda c: [
            f"No recent orders for {c.effective_recency} days",
            f"Previous purchase history: {c.total_orders} order(s)",
            "Engagement is dropping",
        ],
    ),
    Rule(
        "browsing",
        "potential",
        lambda c: (
            c.established
            and c.days_inactive <= c.config.new_customer_days
            and c.rfm.frequency <= c.config.max_frequency_potential
            and (
                c.behavior.recent_important_event_count > 0
                or c.behavior.engagement_score > c.config.min_engagement_potential
            )
        ),
        lambda c: [
            f"Recently active ({c.days_inactive} days ago)",
            "No purchases yet"
            if c.rfm.frequency == 0
            else f"Low purchase frequency: {c.rfm.frequency}",
            "Showing purchase intent"
            if c.behavior.recent_important_event_count > 0
            else "Actively browsing",
        ],
    ),
    Rule(
        "default",
        "potential",
        lambda c: True,
        lambda c: [
            f"Moderate activity ({c.days_inactive} days ago)",
            f"Frequency: {c.rfm.frequency} order(s) this month",
        ],
    ),
)


def clamp_score(segment: str, rfm_score: int, config: SegmentationConfig) -> int:
    low, high = config.score_ranges[segment]
    return max(low, min(high, rfm_score))


def classify(
    context: SegmentContext, rules: Tuple[Rule, ...] = RULES
) -> Tuple[Rule, int, List[str]]:
    """First matching rule, the clamped score, and its reasons."""
    for rule in rules:
        if rule.predicate(context):
            score = clamp_score(rule.segment, context.rfm_score, context.config)
            return rule, score, rule.reasons(context)
    raise LookupError("decision table has no catch-all rule")

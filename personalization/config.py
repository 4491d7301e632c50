import os
from types import MappingProxyType
from typing import Any, Mapping, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

# redis
REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
CACHE_ENABLED = os.getenv("CACHE_ENABLED", "true").lower() == "true"
CACHE_KEY_PREFIX = "rec:"
CACHE_TTL_RECOMMENDATIONS = int(os.getenv("CACHE_TTL_RECOMMENDATIONS", 900))
CACHE_TTL_PREFERENCES = int(os.getenv("CACHE_TTL_PREFERENCES", 3600))
CACHE_TTL_PRODUCT_POOL = int(os.getenv("CACHE_TTL_PRODUCT_POOL", 3600))

# collaborators
IDENTITY_SERVICE_URL = os.getenv("IDENTITY_SERVICE_URL", "http://localhost:3001")
ORDER_SERVICE_URL = os.getenv("ORDER_SERVICE_URL", "http://localhost:3002")
PRODUCT_SERVICE_URL = os.getenv("PRODUCT_SERVICE_URL", "http://localhost:3003")
VOUCHER_SERVICE_URL = os.getenv("VOUCHER_SERVICE_URL", "http://localhost:3004")
IDENTITY_TIMEOUT_SECONDS = float(os.getenv("IDENTITY_TIMEOUT_SECONDS", 15))
ORDER_TIMEOUT_SECONDS = float(os.getenv("ORDER_TIMEOUT_SECONDS", 10))
PRODUCT_TIMEOUT_SECONDS = float(os.getenv("PRODUCT_TIMEOUT_SECONDS", 10))
VOUCHER_TIMEOUT_SECONDS = float(os.getenv("VOUCHER_TIMEOUT_SECONDS", 10))

# kafka
KAFKA_BOOTSTRAP_SERVERS = os.getenv("KAFKA_BOOTSTRAP_SERVERS", "localhost:9092")
KAFKA_TOPIC_SEGMENTATION = os.getenv("KAFKA_TOPIC_SEGMENTATION", "segmentation_changes")
KAFKA_ENABLED = os.getenv("KAFKA_ENABLED", "false").lower() == "true"
KAFKA_MAX_BLOCK_MS = int(os.getenv("KAFKA_MAX_BLOCK_MS", 5000))

SERVICE_NAME = "personalization-engine"

SECONDS_PER_DAY = 86400


def _read_only(**entries: Any):
    return Field(default_factory=lambda: MappingProxyType(dict(entries)))


class _Frozen(BaseModel):
    """
    Immutable settings. Mapping fields are stored as read-only views so a
    shared instance cannot be changed through its weight tables either.
    """

    model_config = ConfigDict(frozen=True)

    @field_validator("*")
    @classmethod
    def _freeze_mappings(cls, value: Any) -> Any:
        if isinstance(value, Mapping) and not isinstance(value, MappingProxyType):
            return MappingProxyType(dict(value))
        return value


class FavoriteConfig(_Frozen):
    time_window_days: int = 30
    recency_factor: float = 0.5
    max_remove_count: int = 3
    remove_margin_threshold: int = 2
    removal_penalty_per_event: float = 0.2
    max_removal_penalty: float = 0.6
    event_fetch_limit: int = 1000


class ContentConfig(_Frozen):
    weights: Mapping[str, float] = _read_only(
        brand=30,
        category=30,
        price=20,
        color=10,
        use_case=10,
    )
    removal_threshold: int = 3
    partial_removal_factor: float = 0.5
    event_fetch_limit: int = 1000
    order_fetch_limit: int = 100
    profile_product_limit: int = 50
    insufficient_data_message: str = "Insufficient data for content-based filtering"


class CollaborativeConfig(_Frozen):
    weights: Mapping[str, float] = _read_only(
        brand=30,
        category=25,
        price=20,
        popularity=15,
        color=5,
        use_case=5,
    )
    removal_threshold: int = 3
    user_products_limit: int = 10
    event_fetch_limit: int = 500
    price_margin: float = 0.2
    popularity_normalization: float = 100
    insufficient_data_message: str = "Insufficient data for collaborative filtering"


class HybridConfig(_Frozen):
    collaborative_weight: float = 0.6
    content_weight: float = 0.4
    insufficient_data_message: str = "Insufficient data for personalized recommendations"


class CompatibilityConfig(_Frozen):
    weights: Mapping[str, float] = _read_only(
        compatibility=50,
        price=20,
        brand=20,
        popularity=10,
    )
    power_overhead: float = 0.2
    popularity_normalization: float = 1000
    neutral_score: float = 50
    product_fetch_limit: int = 100
    build_suggestion_limit: int = 6
    build_fetch_multiplier: int = 3


class SimilarityConfig(_Frozen):
    weights: Mapping[str, float] = _read_only(
        brand=20,
        price=30,
        specifications=30,
        colors=10,
        use_cases=10,
    )
    price_diff_threshold: float = 0.05
    spec_keys: Tuple[str, ...] = ("socket", "chipset", "memory", "formFactor")
    candidate_fetch_limit: int = 100


class RecommendationConfig(_Frozen):
    """Scoring weights and limits shared by every recommendation strategy."""

    interaction_weights: Mapping[str, float] = _read_only(
        view=1,
        click=2,
        add_to_cart=3,
        remove_from_cart=-2,
        purchase=5,
    )
    favorites: FavoriteConfig = Field(default_factory=FavoriteConfig)
    content: ContentConfig = Field(default_factory=ContentConfig)
    collaborative: CollaborativeConfig = Field(default_factory=CollaborativeConfig)
    hybrid: HybridConfig = Field(default_factory=HybridConfig)
    compatibility: CompatibilityConfig = Field(default_factory=CompatibilityConfig)
    similarity: SimilarityConfig = Field(default_factory=SimilarityConfig)
    catalog_fetch_limit: int = 100
    default_personalized_limit: int = 20
    default_favorites_limit: int = 20
    default_similar_limit: int = 10
    default_compatible_limit: int = 10


class SegmentationConfig(_Frozen):
    """Thresholds for RFM metrics and the segment decision table."""

    loyal_recency_days: int = 7
    new_customer_days: int = 14
    at_risk_start_days: int = 14
    at_risk_end_days: int = 30
    churn_days: int = 90
    analysis_window_days: int = 30
    high_monetary: float = 5_000_000
    min_frequency_loyal: int = 10
    min_frequency_high_spend: int = 3
    rfm_weights: Tuple[float, float, float] = (0.4, 0.4, 0.2)
    recency_max_days: int = 90
    frequency_multiplier: float = 10
    important_events: Tuple[str, ...] = (
        "view",
        "add_to_cart",
        "checkout_start",
        "purchase",
    )
    important_event_weight: int = 2
    min_engagement_loyal: int = 20
    min_engagement_potential: int = 10
    no_activity_days: int = 999
    max_frequency_potential: int = 1
    min_orders_at_risk: int = 3
    min_orders_churned: int = 1
    score_ranges: Mapping[str, Tuple[int, int]] = _read_only(
        churned=(0, 29),
        at_risk=(30, 49),
        potential=(50, 79),
        loyal=(80, 100),
    )
    freshness_days: int = 5
    batch_size: int = 10
    order_fetch_limit: int = 1000
    event_fetch_limit: int = 1000

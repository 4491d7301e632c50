from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from personalization.config import SECONDS_PER_DAY

SegmentType = Literal["potential", "loyal", "at_risk", "churned"]
SEGMENT_TYPES: Tuple[str, ...] = ("potential", "loyal", "at_risk", "churned")

Strategy = Literal["hybrid", "collaborative", "content"]
STRATEGIES: Tuple[str, ...] = ("hybrid", "collaborative", "content")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def days_between(later: datetime, earlier: datetime) -> int:
    """Whole days elapsed from `earlier` to `later` (floored)."""
    return int((as_utc(later) - as_utc(earlier)).total_seconds() // SECONDS_PER_DAY)


def _ref_id(value: Any) -> Optional[str]:
    # collaborators send references either as plain ids or populated documents
    if value is None:
        return None
    if isinstance(value, dict):
        value = value.get("_id") or value.get("id")
        return str(value) if value is not None else None
    return str(value)


class _Record(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# -----------------------------------------------------------------------------
# Inputs read from collaborators
# -----------------------------------------------------------------------------


class BehaviorEvent(_Record):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    subject_id: Optional[str] = Field(None, alias="userId")
    event_type: str = Field(alias="eventType")
    entity_type: Optional[str] = Field(None, alias="entityType")
    entity_id: Optional[str] = Field(None, alias="entityId")
    metadata: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime

    @field_validator("subject_id", "entity_id", mode="before")
    @classmethod
    def _stringify_ids(cls, value: Any) -> Optional[str]:
        return _ref_id(value)

    @field_validator("timestamp")
    @classmethod
    def _utc_timestamp(cls, value: datetime) -> datetime:
        return as_utc(value)

    @property
    def product_id(self) -> Optional[str]:
        if self.entity_type not in (None, "product"):
            return None
        return self.entity_id


class OrderItem(_Record):
    product_id: str = Field(alias="productId")
    price: float = 0.0
    quantity: int = 1

    @field_validator("product_id", mode="before")
    @classmethod
    def _stringify_product(cls, value: Any) -> Optional[str]:
        return _ref_id(value)


class OrderSummary(_Record):
    order_id: str = Field(alias="_id")
    customer_id: Optional[str] = Field(None, alias="customerId")
    status: Optional[str] = None
    payment_status: Optional[str] = Field(None, alias="paymentStatus")
    total: float = 0.0
    created_at: datetime = Field(alias="createdAt")
    items: List[OrderItem] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _flatten(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if "_id" not in data and "id" in data:
            data["_id"] = data["id"]
        if "createdAt" not in data and "created_at" in data:
            data["createdAt"] = data["created_at"]
        pricing = data.get("pricing")
        if isinstance(pricing, dict) and "total" not in data:
            data["total"] = pricing.get("total", 0)
        payment = data.get("payment")
        if isinstance(payment, dict) and "paymentStatus" not in data:
            data["paymentStatus"] = payment.get("status")
        return data

    @field_validator("order_id", "customer_id", mode="before")
    @classmethod
    def _stringify_ids(cls, value: Any) -> Optional[str]:
        return _ref_id(value)

    @field_validator("created_at")
    @classmethod
    def _utc_created(cls, value: datetime) -> datetime:
        return as_utc(value)

    @property
    def counts_toward_rfm(self) -> bool:
        return self.status == "completed" or self.payment_status == "paid"


class Product(_Record):
    product_id: str = Field(alias="_id")
    name: str = ""
    brand_id: Optional[str] = Field(None, alias="brandId")
    category_id: Optional[str] = Field(None, alias="categoryId")
    category_name: Optional[str] = Field(None, alias="categoryName")
    price: float = 0.0
    specifications: Dict[str, Any] = Field(default_factory=dict)
    colors: List[str] = Field(default_factory=list)
    use_cases: List[str] = Field(default_factory=list, alias="useCases")
    popularity: int = Field(0, alias="views")
    status: Optional[str] = None
    is_active: bool = Field(False, alias="isActive")

    @model_validator(mode="before")
    @classmethod
    def _flatten(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if "_id" not in data and "id" in data:
            data["_id"] = data["id"]
        category = data.get("category") or data.get("categoryId")
        if isinstance(category, dict) and "categoryName" not in data:
            data["categoryName"] = category.get("name")
        if "categoryId" not in data and isinstance(data.get("category"), dict):
            data["categoryId"] = data["category"]
        pricing = data.get("pricing")
        if isinstance(pricing, dict) and "price" not in data:
            data["price"] = pricing.get("salePrice") or pricing.get("originalPrice") or 0
        specs = data.get("specifications") or {}
        if "useCases" not in data and isinstance(specs, dict) and specs.get("useCases"):
            data["useCases"] = specs["useCases"]
        colors = data.get("colors")
        if isinstance(colors, list):
            data["colors"] = [
                c.get("name") if isinstance(c, dict) else c
                for c in colors
                if c and (not isinstance(c, dict) or c.get("name"))
            ]
        return data

    @field_validator("product_id", "brand_id", "category_id", mode="before")
    @classmethod
    def _stringify_ids(cls, value: Any) -> Optional[str]:
        return _ref_id(value)

    @field_validator("specifications", mode="before")
    @classmethod
    def _specs_dict(cls, value: Any) -> Dict[str, Any]:
        return value if isinstance(value, dict) else {}

    @property
    def is_eligible(self) -> bool:
        return is_eligible(self)


def is_eligible(product: Product) -> bool:
    """Only published, active products may ever be recommended."""
    return product.status == "published" and product.is_active is True


class SelectedComponent(_Record):
    type: str
    product_id: Optional[str] = Field(None, alias="productId")
    specifications: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _from_product(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        product = data.get("product")
        if isinstance(product, dict):
            data.setdefault("specifications", product.get("specifications") or {})
            data.setdefault("productId", product.get("_id") or product.get("id"))
        return data

    @field_validator("type")
    @classmethod
    def _lower_type(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("product_id", mode="before")
    @classmethod
    def _stringify_product(cls, value: Any) -> Optional[str]:
        return _ref_id(value)


# -----------------------------------------------------------------------------
# Derived preference structures
# -----------------------------------------------------------------------------


class WeightMap(BaseModel):
    """
    Key -> weight in [0, 1], normalized by the largest raw count.

    The strongest key always carries weight 1.0, so weights are comparable
    across keys within one profile.
    """

    weights: Dict[str, float] = Field(default_factory=dict)

    @classmethod
    def from_counts(cls, counts: Mapping[str, float]) -> "WeightMap":
        positive = {key: value for key, value in counts.items() if key and value > 0}
        if not positive:
            return cls()
        top = max(positive.values())
        return cls(weights={key: value / top for key, value in positive.items()})

    def get(self, key: Optional[str]) -> float:
        if not key:
            return 0.0
        return self.weights.get(key, 0.0)

    @property
    def is_empty(self) -> bool:
        return not self.weights

    def top(self, n: int) -> List[str]:
        return [
            key
            for key, _ in sorted(self.weights.items(), key=lambda kv: (-kv[1], kv[0]))[:n]
        ]


class PreferenceProfile(BaseModel):
    brands: WeightMap = Field(default_factory=WeightMap)
    categories: WeightMap = Field(default_factory=WeightMap)
    price_band: Optional[Tuple[float, float]] = None
    colors: List[str] = Field(default_factory=list)
    use_cases: List[str] = Field(default_factory=list)
    known_products: List[str] = Field(default_factory=list)
    excluded_products: List[str] = Field(default_factory=list)
    removal_counts: Dict[str, int] = Field(default_factory=dict)
    expires_at: Optional[datetime] = None

    @property
    def is_cold_start(self) -> bool:
        return self.brands.is_empty


# -----------------------------------------------------------------------------
# Segmentation
# -----------------------------------------------------------------------------


class _CamelRecord(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore"
    )


class RFMMetrics(_CamelRecord):
    recency: Optional[int] = None
    frequency: int = 0
    monetary: float = 0.0
    last_activity_date: Optional[datetime] = None
    total_orders: int = Field(0, exclude=True)


class BehaviorMetrics(_CamelRecord):
    recent_event_count: int = 0
    engagement_score: int = 0
    days_since_last_activity: int = 999
    recent_important_event_count: int = 0


class SegmentationMetadata(_CamelRecord):
    total_orders: int = 0
    total_behavior_events: int = 0
    days_since_registration: Optional[int] = None


class SegmentationRecord(_CamelRecord):
    type: SegmentType
    score: int = Field(ge=0, le=100)
    rfm_score: int = Field(0, ge=0, le=100)
    reasons: List[str] = Field(default_factory=list)
    rfm: RFMMetrics = Field(default_factory=RFMMetrics)
    behavior: BehaviorMetrics = Field(default_factory=BehaviorMetrics)
    last_analyzed: datetime
    metadata: SegmentationMetadata = Field(default_factory=SegmentationMetadata)

    @field_validator("last_analyzed")
    @classmethod
    def _utc_analyzed(cls, value: datetime) -> datetime:
        return as_utc(value)


class Customer(_Record):
    customer_id: str = Field(alias="_id")
    user_id: Optional[str] = Field(None, alias="userId")
    first_seen_at: Optional[datetime] = Field(None, alias="firstSeenAt")
    last_seen_at: Optional[datetime] = Field(None, alias="lastSeenAt")
    segmentation: Optional[SegmentationRecord] = None

    @model_validator(mode="before")
    @classmethod
    def _id_alias(cls, data: Any) -> Any:
        if isinstance(data, dict) and "_id" not in data and "id" in data:
            data = {**data, "_id": data["id"]}
        return data

    @field_validator("customer_id", "user_id", mode="before")
    @classmethod
    def _stringify_ids(cls, value: Any) -> Optional[str]:
        return _ref_id(value)

    @field_validator("segmentation", mode="before")
    @classmethod
    def _drop_unclassified(cls, value: Any) -> Any:
        # customers never analyzed carry an empty segmentation stub
        if isinstance(value, dict) and not value.get("type"):
            return None
        return value

    @field_validator("first_seen_at", "last_seen_at")
    @classmethod
    def _utc_dates(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value) if value else value


class SegmentStats(BaseModel):
    count: int = 0
    avg_score: float = Field(0.0, alias="avgScore")

    model_config = ConfigDict(populate_by_name=True)


class BatchItem(BaseModel):
    subject_id: str
    segmentation: Optional[SegmentationRecord] = None
    error: Optional[str] = None


class AnalyzeAllResult(BaseModel):
    total: int = 0
    processed: int = 0
    success: int = 0
    failed: int = 0
    duration_ms: int = 0
    results: List[BatchItem] = Field(default_factory=list)


# -----------------------------------------------------------------------------
# Recommendation results
# -----------------------------------------------------------------------------


class ScoredProduct(BaseModel):
    product_id: str
    score: float
    reasons: List[str] = Field(default_factory=list)
    product: Optional[Product] = None
    matched_features: List[str] = Field(default_factory=list)
    scores: Dict[str, float] = Field(default_factory=dict)
    compatibility: Dict[str, str] = Field(default_factory=dict)
    interactions: Dict[str, int] = Field(default_factory=dict)


class ScoringResult(BaseModel):
    """Output of one strategy; empty with a message on cold start."""

    recommendations: List[ScoredProduct] = Field(default_factory=list)
    message: Optional[str] = None


class FavoritesResult(BaseModel):
    favorites: List[ScoredProduct] = Field(default_factory=list)
    by_category: Dict[str, List[ScoredProduct]] = Field(default_factory=dict)
    time_window: int
    from_cache: bool = False


class SimilarResult(BaseModel):
    reference_product: Product
    similar_products: List[ScoredProduct] = Field(default_factory=list)
    from_cache: bool = False


class PersonalizedResult(BaseModel):
    recommendations: List[ScoredProduct] = Field(default_factory=list)
    strategy: Strategy
    message: Optional[str] = None
    breakdown: Optional[Dict[str, Any]] = None
    from_cache: bool = False


class Requirements(BaseModel):
    socket: Optional[str] = None
    ram_type: Optional[str] = None
    form_factor: Optional[str] = None
    power_requirement: int = 0
    budget_min: Optional[float] = None
    budget_max: Optional[float] = None
    brand_preferences: Optional[Dict[str, float]] = None


class CompatibleResult(BaseModel):
    component_type: str
    recommendations: List[ScoredProduct] = Field(default_factory=list)
    filters: Requirements = Field(default_factory=Requirements)
    fallback: bool = False
    from_cache: bool = False


class BuildSuggestionsResult(BaseModel):
    category_id: str
    component_type: Optional[str] = None
    recommendations: List[ScoredProduct] = Field(default_factory=list)
    filters: Requirements = Field(default_factory=Requirements)
    current_components: List[SelectedComponent] = Field(default_factory=list)
    fallback: bool = False
    from_cache: bool = False

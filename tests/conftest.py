"""
Shared pytest fixtures for the test suite.

Fixtures provide reusable test doubles and configuration for both
unit and integration tests.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from personalization.cache import ResultCache
from personalization.config import RecommendationConfig, SegmentationConfig
from personalization.engine import PersonalizationEngine
from personalization.gateways import (
    BehaviorGateway,
    BestEffortDispatcher,
    CustomerGateway,
    OrderGateway,
    ProductGateway,
)
from personalization.models import BehaviorEvent, Customer, OrderSummary, Product

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


# -----------------------------------------------------------------------------
# Mock Redis Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture
def mock_async_redis():
    """
    Async mock Redis client for the cache and the FastAPI app.
    """
    redis_mock = AsyncMock()
    redis_mock.ping = AsyncMock(return_value=True)
    redis_mock.get = AsyncMock(return_value=None)
    redis_mock.set = AsyncMock(return_value=True)
    redis_mock.delete = AsyncMock(return_value=1)
    redis_mock.aclose = AsyncMock()
    return redis_mock


@pytest.fixture
def disabled_cache():
    """Cache without a backend: every read misses, every write is a no-op."""
    return ResultCache(None)


# -----------------------------------------------------------------------------
# Sample Data Factories
# -----------------------------------------------------------------------------


@pytest.fixture
def now():
    """Fixed analysis instant so day arithmetic is deterministic."""
    return NOW


@pytest.fixture
def make_product():
    def factory(product_id, **overrides):
        data = {
            "_id": product_id,
            "name": f"Product {product_id}",
            "brandId": "brand-a",
            "categoryId": "cat-cpu",
            "categoryName": "CPU",
            "price": 5_000_000,
            "status": "published",
            "isActive": True,
            "views": 100,
        }
        data.update(overrides)
        return Product.model_validate(data)

    return factory


@pytest.fixture
def make_event():
    def factory(product_id, event_type="view", days_ago=1, subject="user-1"):
        return BehaviorEvent.model_validate(
            {
                "userId": subject,
                "eventType": event_type,
                "entityType": "product",
                "entityId": product_id,
                "timestamp": NOW - timedelta(days=days_ago),
            }
        )

    return factory


@pytest.fixture
def make_order():
    def factory(order_id, total=1_000_000, days_ago=1, status="completed", items=None):
        return OrderSummary.model_validate(
            {
                "_id": order_id,
                "status": status,
                "total": total,
                "createdAt": NOW - timedelta(days=days_ago),
                "items": items or [],
            }
        )

    return factory


@pytest.fixture
def make_customer():
    def factory(registered_days_ago=60, last_seen_days_ago=None, segmentation=None):
        data = {
            "_id": "cust-1",
            "userId": "user-1",
            "firstSeenAt": NOW - timedelta(days=registered_days_ago),
        }
        if last_seen_days_ago is not None:
            data["lastSeenAt"] = NOW - timedelta(days=last_seen_days_ago)
        if segmentation is not None:
            data["segmentation"] = segmentation
        return Customer.model_validate(data)

    return factory


@pytest.fixture
def catalog(make_product):
    """Small eligible catalog plus one draft and one inactive product."""
    return [
        make_product("p1", brandId="brand-a", price=4_000_000, colors=["black"]),
        make_product("p2", brandId="brand-a", price=5_000_000, colors=["black"]),
        make_product("p3", brandId="brand-b", price=9_000_000, colors=["white"]),
        make_product("p4", brandId="brand-b", categoryId="cat-gpu", categoryName="GPU"),
        make_product("draft", status="draft"),
        make_product("inactive", isActive=False),
    ]


# -----------------------------------------------------------------------------
# Gateway Doubles
# -----------------------------------------------------------------------------


@pytest.fixture
def behavior_gateway():
    gateway = AsyncMock(spec=BehaviorGateway)
    gateway.name = "behavior"
    gateway.get_events.return_value = []
    return gateway


@pytest.fixture
def order_gateway():
    gateway = AsyncMock(spec=OrderGateway)
    gateway.name = "orders"
    gateway.get_orders.return_value = []
    return gateway


@pytest.fixture
def product_gateway(catalog):
    """Serves `catalog` for listings and id lookups."""
    by_id = {p.product_id: p for p in catalog}
    gateway = AsyncMock(spec=ProductGateway)
    gateway.name = "products"
    gateway.get_product.side_effect = lambda pid: by_id.get(pid)
    gateway.list_products.return_value = list(catalog)
    return gateway


@pytest.fixture
def customer_gateway(make_customer):
    gateway = AsyncMock(spec=CustomerGateway)
    gateway.name = "customers"
    gateway.get_customer.return_value = make_customer()
    gateway.update_segmentation.return_value = None
    gateway.get_segmentation_stats.return_value = {}
    gateway.list_customer_ids.return_value = []
    return gateway


@pytest.fixture
def notification_sink():
    sink = MagicMock()
    sink.name = "voucher"
    sink.segmentation_changed = AsyncMock(return_value=None)
    return sink


@pytest.fixture
def recommendation_config():
    return RecommendationConfig()


@pytest.fixture
def segmentation_config():
    return SegmentationConfig()


@pytest.fixture
def engine(
    behavior_gateway,
    order_gateway,
    product_gateway,
    customer_gateway,
    disabled_cache,
    notification_sink,
):
    return PersonalizationEngine(
        behavior=behavior_gateway,
        orders=order_gateway,
        products=product_gateway,
        customers=customer_gateway,
        cache=disabled_cache,
        dispatcher=BestEffortDispatcher(),
        sinks=[notification_sink],
    )

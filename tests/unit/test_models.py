"""
Unit tests for the records read from collaborators and the derived structures.
"""

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError as PydanticValidationError

from personalization.models import (
    BehaviorEvent,
    Customer,
    OrderSummary,
    Product,
    SegmentationRecord,
    SelectedComponent,
    WeightMap,
    days_between,
)


class TestProduct:
    """Catalog documents are flattened into one product shape."""

    def test_full_document(self):
        product = Product.model_validate(
            {
                "id": 17,
                "brandId": {"_id": "b1", "name": "Brand"},
                "category": {"_id": "c1", "name": "Motherboard"},
                "pricing": {"originalPrice": 3_000_000, "salePrice": None},
                "colors": ["black", {"name": "white"}, None],
                "specifications": {"useCases": ["office"]},
                "status": "published",
                "isActive": True,
            }
        )

        assert product.product_id == "17"
        assert product.brand_id == "b1"
        assert product.category_id == "c1"
        assert product.category_name == "Motherboard"
        assert product.price == 3_000_000
        assert product.colors == ["black", "white"]
        assert product.use_cases == ["office"]

    def test_non_dict_specifications_become_empty(self):
        product = Product.model_validate({"_id": "p", "specifications": "n/a"})

        assert product.specifications == {}

    @pytest.mark.parametrize(
        "status, active, eligible",
        [
            ("published", True, True),
            ("draft", True, False),
            ("published", False, False),
            (None, True, False),
        ],
    )
    def test_eligibility(self, status, active, eligible):
        product = Product.model_validate({"_id": "p", "status": status, "isActive": active})

        assert product.is_eligible is eligible


class TestOrderSummary:
    def test_flattens_nested_pricing_and_payment(self):
        order = OrderSummary.model_validate(
            {
                "id": "o1",
                "status": "pending",
                "pricing": {"total": 250_000},
                "payment": {"status": "paid"},
                "created_at": "2026-01-01T00:00:00",
            }
        )

        assert order.order_id == "o1"
        assert order.total == 250_000
        assert order.payment_status == "paid"
        assert order.created_at.tzinfo is not None

    @pytest.mark.parametrize(
        "status, payment, counts",
        [
            ("completed", None, True),
            ("processing", "paid", True),
            ("cancelled", "refunded", False),
        ],
    )
    def test_counts_toward_rfm(self, status, payment, counts):
        order = OrderSummary.model_validate(
            {
                "_id": "o",
                "status": status,
                "paymentStatus": payment,
                "createdAt": "2026-01-01T00:00:00Z",
            }
        )

        assert order.counts_toward_rfm is counts


class TestBehaviorEvent:
    def test_non_product_entity_has_no_product(self):
        event = BehaviorEvent.model_validate(
            {
                "eventType": "view",
                "entityType": "category",
                "entityId": "c1",
                "timestamp": "2026-01-01T00:00:00Z",
            }
        )

        assert event.product_id is None

    def test_populated_entity_reference(self):
        event = BehaviorEvent.model_validate(
            {
                "eventType": "click",
                "entityId": {"_id": "p9"},
                "timestamp": "2026-01-01T00:00:00Z",
            }
        )

        assert event.product_id == "p9"


class TestCustomer:
    def test_unanalyzed_stub_is_dropped(self):
        customer = Customer.model_validate(
            {"id": "c1", "userId": "u1", "segmentation": {"type": None, "score": 0}}
        )

        assert customer.customer_id == "c1"
        assert customer.segmentation is None

    def test_stored_segmentation_is_parsed(self):
        customer = Customer.model_validate(
            {
                "_id": "c1",
                "segmentation": {
                    "type": "at_risk",
                    "score": 40,
                    "lastAnalyzed": "2026-02-01T00:00:00Z",
                },
            }
        )

        assert customer.segmentation.type == "at_risk"


class TestSegmentationRecord:
    def test_score_outside_range_is_rejected(self):
        with pytest.raises(PydanticValidationError):
            SegmentationRecord(type="loyal", score=101, last_analyzed=datetime.now(timezone.utc))

    def test_unknown_segment_is_rejected(self):
        with pytest.raises(PydanticValidationError):
            SegmentationRecord(type="vip", score=50, last_analyzed=datetime.now(timezone.utc))


class TestWeightMap:
    def test_normalized_by_strongest_key(self):
        weights = WeightMap.from_counts({"a": 4, "b": 2, "c": 0, "": 9})

        assert weights.weights == {"a": 1.0, "b": 0.5}
        assert weights.get("b") == 0.5
        assert weights.get("missing") == 0.0
        assert weights.get(None) == 0.0

    def test_top_breaks_ties_by_key(self):
        weights = WeightMap.from_counts({"z": 1, "a": 1, "m": 3})

        assert weights.top(2) == ["m", "a"]

    def test_empty(self):
        assert WeightMap.from_counts({}).is_empty


def test_selected_component_type_is_normalized():
    component = SelectedComponent.model_validate({"type": "  GPU "})

    assert component.type == "gpu"
    assert component.specifications == {}


def test_days_between_floors_partial_days():
    later = datetime(2026, 3, 2, 12, tzinfo=timezone.utc)

    assert days_between(later, datetime(2026, 3, 1, 13)) == 0
    assert days_between(later, datetime(2026, 2, 28, 12, tzinfo=timezone.utc)) == 2

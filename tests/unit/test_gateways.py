"""
Unit tests for the collaborator gateways, using httpx.MockTransport in place
of the network.
"""

import json
import threading
from datetime import datetime, timezone
from unittest.mock import MagicMock

import httpx
import pytest

from personalization.errors import ExternalServiceError, NotFoundError
from personalization.gateways import (
    BehaviorGateway,
    CustomerGateway,
    KafkaSegmentationPublisher,
    OrderGateway,
    ProductGateway,
    VoucherGateway,
)
from personalization.models import SegmentationRecord


def client_for(handler):
    return httpx.AsyncClient(
        transport=httpx.MockTransport(handler), base_url="http://collaborator"
    )


def respond(payload, status_code=200):
    return lambda request: httpx.Response(status_code, json=payload)


@pytest.fixture
def record():
    return SegmentationRecord(
        type="loyal",
        score=90,
        last_analyzed=datetime(2026, 3, 2, tzinfo=timezone.utc),
    )


class TestGatewayErrors:
    """Transport and status failures map onto the engine's error taxonomy."""

    async def test_server_error_is_external_service_error(self):
        gateway = OrderGateway(client=client_for(respond({"message": "boom"}, 500)))

        with pytest.raises(ExternalServiceError) as exc_info:
            await gateway.get_orders("user-1")

        assert exc_info.value.details["status"] == 500
        assert exc_info.value.details["gateway"] == "orders"

    async def test_timeout_is_external_service_error(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        gateway = BehaviorGateway(client=client_for(handler))

        with pytest.raises(ExternalServiceError, match="timed out"):
            await gateway.get_events("user-1")

    async def test_connection_error_is_external_service_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        gateway = CustomerGateway(client=client_for(handler))

        with pytest.raises(ExternalServiceError):
            await gateway.get_customer("user-1")

    async def test_not_found_without_empty_semantics(self, record):
        gateway = CustomerGateway(client=client_for(respond({}, 404)))

        with pytest.raises(NotFoundError):
            await gateway.update_segmentation("cust-1", record)

    async def test_invalid_json_is_external_service_error(self):
        gateway = OrderGateway(
            client=client_for(lambda request: httpx.Response(200, content=b"<html>"))
        )

        with pytest.raises(ExternalServiceError, match="invalid JSON"):
            await gateway.get_orders("user-1")


class TestBehaviorGateway:
    async def test_parses_envelope_and_sorts_newest_first(self):
        seen = {}

        def handler(request):
            seen["url"] = request.url
            return httpx.Response(
                200,
                json={
                    "status": "success",
                    "data": {
                        "events": [
                            {
                                "userId": "user-1",
                                "eventType": "view",
                                "entityType": "product",
                                "entityId": "p1",
                                "timestamp": "2026-03-01T10:00:00Z",
                            },
                            {
                                "userId": "user-1",
                                "eventType": "purchase",
                                "entityType": "product",
                                "entityId": "p2",
                                "timestamp": "2026-03-02T10:00:00Z",
                            },
                        ]
                    },
                },
            )

        gateway = BehaviorGateway(client=client_for(handler))

        events = await gateway.get_events("user-1", limit=50)

        assert [e.product_id for e in events] == ["p2", "p1"]
        assert seen["url"].path == "/behavior/internal/user/user-1"
        assert seen["url"].params["limit"] == "50"
        assert "eventType" not in seen["url"].params

    async def test_unknown_subject_has_no_events(self):
        gateway = BehaviorGateway(client=client_for(respond({}, 404)))

        assert await gateway.get_events("ghost") == []


class TestOrderGateway:
    async def test_flattens_pricing_and_payment(self):
        gateway = OrderGateway(
            client=client_for(
                respond(
                    {
                        "data": {
                            "orders": [
                                {
                                    "_id": "o1",
                                    "status": "processing",
                                    "pricing": {"total": 1_500_000},
                                    "payment": {"status": "paid"},
                                    "createdAt": "2026-03-01T00:00:00Z",
                                    "items": [{"productId": {"_id": "p1"}, "price": 1_500_000}],
                                }
                            ]
                        }
                    }
                )
            )
        )

        orders = await gateway.get_orders("user-1")

        assert orders[0].total == 1_500_000
        assert orders[0].counts_toward_rfm
        assert orders[0].items[0].product_id == "p1"

    async def test_unknown_subject_has_no_orders(self):
        gateway = OrderGateway(client=client_for(respond({}, 404)))

        assert await gateway.get_orders("ghost") == []


class TestProductGateway:
    async def test_get_product_flattens_document(self):
        gateway = ProductGateway(
            client=client_for(
                respond(
                    {
                        "data": {
                            "_id": "p1",
                            "name": "Ryzen 7",
                            "brandId": {"_id": "amd", "name": "AMD"},
                            "category": {"_id": "cat-cpu", "name": "CPU"},
                            "pricing": {"originalPrice": 9_000_000, "salePrice": 8_000_000},
                            "colors": [{"name": "black"}, {"name": ""}],
                            "specifications": {"socket": "AM5", "useCases": ["gaming"]},
                            "status": "published",
                            "isActive": True,
                        }
                    }
                )
            )
        )

        product = await gateway.get_product("p1")

        assert product.brand_id == "amd"
        assert product.category_id == "cat-cpu"
        assert product.category_name == "CPU"
        assert product.price == 8_000_000
        assert product.colors == ["black"]
        assert product.use_cases == ["gaming"]
        assert product.is_eligible

    async def test_missing_product_is_none(self):
        gateway = ProductGateway(client=client_for(respond({}, 404)))

        assert await gateway.get_product("nope") is None

    async def test_error_envelope_is_none(self):
        gateway = ProductGateway(
            client=client_for(respond({"status": "error", "message": "bad id"}))
        )

        assert await gateway.get_product("bad") is None

    async def test_lightweight_listing_falls_back_to_full(self):
        paths = []

        def handler(request):
            paths.append(request.url.path)
            if request.url.path.endswith("/lightweight"):
                return httpx.Response(503)
            return httpx.Response(200, json={"data": {"products": [{"_id": "p1"}]}})

        gateway = ProductGateway(client=client_for(handler))

        products = await gateway.list_products(category_id="cat-cpu")

        assert [p.product_id for p in products] == ["p1"]
        assert paths == ["/products/internal/lightweight", "/products"]

    async def test_malformed_product_is_external_service_error(self):
        gateway = ProductGateway(
            client=client_for(
                respond({"data": {"_id": "p-bad", "price": "not-a-number"}})
            )
        )

        with pytest.raises(ExternalServiceError) as exc_info:
            await gateway.get_product("p-bad")

        assert exc_info.value.details["product_id"] == "p-bad"

    async def test_listing_skips_malformed_documents(self):
        gateway = ProductGateway(
            client=client_for(
                respond(
                    {"data": {"products": [{"_id": "p1"}, {"price": 3}, {"_id": "p2"}]}}
                )
            )
        )

        products = await gateway.list_products(lightweight=False)

        assert [p.product_id for p in products] == ["p1", "p2"]

    async def test_sorted_listing_requests_descending_order(self):
        seen = {}

        def handler(request):
            seen["params"] = request.url.params
            return httpx.Response(200, json={"data": []})

        gateway = ProductGateway(client=client_for(handler))

        await gateway.list_products(category_id="cat-gpu", sort_by="views")

        assert seen["params"]["sortBy"] == "views"
        assert seen["params"]["sortOrder"] == "desc"
        assert seen["params"]["categoryId"] == "cat-gpu"


class TestCustomerGateway:
    async def test_update_segmentation_sends_camel_case_record(self, record):
        sent = {}

        def handler(request):
            sent["method"] = request.method
            sent["path"] = request.url.path
            sent["body"] = json.loads(request.content)
            return httpx.Response(200, json={"status": "success"})

        gateway = CustomerGateway(client=client_for(handler))

        await gateway.update_segmentation("cust-1", record)

        assert sent["method"] == "PATCH"
        assert sent["path"] == "/customers/internal/cust-1/segmentation"
        assert sent["body"]["segmentation"]["type"] == "loyal"
        assert "lastAnalyzed" in sent["body"]["segmentation"]

    async def test_unanalyzed_customer_has_no_segmentation(self):
        gateway = CustomerGateway(
            client=client_for(
                respond({"data": {"_id": "c1", "userId": "u1", "segmentation": {"type": None}}})
            )
        )

        customer = await gateway.get_customer("u1")

        assert customer.customer_id == "c1"
        assert customer.segmentation is None

    async def test_list_customer_ids_accepts_documents_or_strings(self):
        gateway = CustomerGateway(
            client=client_for(respond({"data": [{"userId": "u1"}, "u2", {"id": "u3"}]}))
        )

        assert await gateway.list_customer_ids() == ["u1", "u2", "u3"]


class TestNotificationSinks:
    async def test_voucher_gateway_posts_change(self, record):
        sent = {}

        def handler(request):
            sent["path"] = request.url.path
            sent["body"] = json.loads(request.content)
            return httpx.Response(200, json={"status": "success"})

        gateway = VoucherGateway(client=client_for(handler))

        await gateway.segmentation_changed("u1", "c1", None, record)

        assert sent["path"] == "/voucher-triggers/segmentation"
        assert sent["body"]["oldSegmentation"] is None
        assert sent["body"]["newSegmentation"]["type"] == "loyal"

    async def test_kafka_publisher_keys_by_customer(self, record):
        producer = MagicMock()
        publisher = KafkaSegmentationPublisher(producer=producer, topic="segments")

        await publisher.segmentation_changed("u1", "c1", None, record)

        topic = producer.send.call_args[0][0]
        kwargs = producer.send.call_args[1]
        assert topic == "segments"
        assert kwargs["key"] == b"c1"
        assert kwargs["value"]["customerId"] == "c1"
        assert "timestamp" in kwargs["value"]

    async def test_kafka_send_runs_off_the_event_loop(self, record):
        loop_thread = threading.get_ident()
        send_threads = []
        producer = MagicMock()
        producer.send.side_effect = lambda *args, **kwargs: send_threads.append(
            threading.get_ident()
        )
        publisher = KafkaSegmentationPublisher(producer=producer, topic="segments")

        await publisher.segmentation_changed("u1", "c1", None, record)

        assert len(send_threads) == 1
        assert send_threads[0] != loop_thread

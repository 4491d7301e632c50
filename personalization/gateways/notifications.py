"""
Best-effort notification of segment changes.

Sinks receive (user_id, customer_id, old record, new record). The dispatcher
runs each delivery as a background task: the caller never waits on it and a
failing sink is logged, counted and forgotten.
"""

import asyncio
import json
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Set

import httpx
from kafka import KafkaProducer

from personalization.config import (
    KAFKA_BOOTSTRAP_SERVERS,
    KAFKA_MAX_BLOCK_MS,
    KAFKA_TOPIC_SEGMENTATION,
    VOUCHER_SERVICE_URL,
    VOUCHER_TIMEOUT_SECONDS,
)
from personalization.gateways.base import GatewayClient
from personalization.logging import setup_logging
from personalization.models import SegmentationRecord
from personalization.observability import metrics

logger = setup_logging("notifications.log")


def _change_payload(
    user_id: str,
    customer_id: str,
    old: Optional[SegmentationRecord],
    new: SegmentationRecord,
) -> Dict[str, Any]:
    return {
        "userId": user_id,
        "customerId": customer_id,
        "oldSegmentation": old.model_dump(mode="json", by_alias=True) if old else None,
        "newSegmentation": new.model_dump(mode="json", by_alias=True),
    }


class NotificationSink(Protocol):
    name: str

    async def segmentation_changed(
        self,
        user_id: str,
        customer_id: str,
        old: Optional[SegmentationRecord],
        new: SegmentationRecord,
    ) -> None: ...


class VoucherGateway(GatewayClient):
    """Triggers segment-based voucher campaigns on the voucher service."""

    name = "voucher"

    def __init__(
        self,
        base_url: str = VOUCHER_SERVICE_URL,
        timeout: float = VOUCHER_TIMEOUT_SECONDS,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(base_url, timeout, client)

    async def segmentation_changed(
        self,
        user_id: str,
        customer_id: str,
        old: Optional[SegmentationRecord],
        new: SegmentationRecord,
    ) -> None:
        await self._post(
            "/voucher-triggers/segmentation",
            "segmentation_changed",
            json=_change_payload(user_id, customer_id, old, new),
        )


class KafkaSegmentationPublisher:
    """Publishes segment changes to a Kafka topic for downstream consumers."""

    name = "kafka"

    def __init__(
        self,
        producer: Optional[KafkaProducer] = None,
        topic: str = KAFKA_TOPIC_SEGMENTATION,
    ):
        self.topic = topic
        self._producer = producer or KafkaProducer(
            bootstrap_servers=KAFKA_BOOTSTRAP_SERVERS,
            max_block_ms=KAFKA_MAX_BLOCK_MS,
            value_serializer=lambda x: json.dumps(x).encode("utf-8"),
        )

    async def segmentation_changed(
        self,
        user_id: str,
        customer_id: str,
        old: Optional[SegmentationRecord],
        new: SegmentationRecord,
    ) -> None:
        event = _change_payload(user_id, customer_id, old, new)
        event["timestamp"] = time.time()
        # send() can block on broker metadata; keep it off the event loop
        await asyncio.to_thread(
            self._producer.send,
            self.topic,
            key=customer_id.encode("utf-8"),
            value=event,
        )

    def close(self) -> None:
        self._producer.close()


class BestEffortDispatcher:
    """
    Submit-and-forget execution of side effects.

    submit() schedules the coroutine and returns immediately; any exception
    it raises is logged and swallowed. Each submission runs at most once.
    """

    def __init__(self):
        self._pending: Set[asyncio.Task] = set()

    def submit(self, label: str, factory: Callable[[], Awaitable[Any]]) -> asyncio.Task:
        task = asyncio.create_task(self._run(label, factory))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _run(self, label: str, factory: Callable[[], Awaitable[Any]]) -> None:
        try:
            await factory()
        except Exception as e:
            metrics.notification_failures.labels(sink=label).inc()
            logger.error(f"Best-effort dispatch '{label}' failed: {e}")

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        """Wait for in-flight submissions (shutdown and tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

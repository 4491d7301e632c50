import asyncio
import time
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence

from personalization.config import SegmentationConfig
from personalization.errors import EngineError, NotFoundError, ValidationError
from personalization.features.rfm import (
    compute_behavior,
    compute_rfm,
    days_since_registration,
    last_order_at,
    rfm_score,
)
from personalization.gateways.behavior import BehaviorGateway
from personalization.gateways.customers import CustomerGateway
from personalization.gateways.notifications import BestEffortDispatcher, NotificationSink
from personalization.gateways.orders import OrderGateway
from personalization.logging import setup_logging
from personalization.models import (
    SEGMENT_TYPES,
    AnalyzeAllResult,
    BatchItem,
    BehaviorEvent,
    Customer,
    OrderSummary,
    SegmentationMetadata,
    SegmentationRecord,
    SegmentStats,
    utcnow,
)
from personalization.observability import metrics
from personalization.segmentation.rules import RULES, Rule, SegmentContext, classify

logger = setup_logging("segmentation.log")

UNCLASSIFIED = "unclassified"


class SegmentationService:
    """
    Assigns each customer to potential / loyal / at_risk / churned.

    A record analyzed less than `freshness_days` ago is reused unless the
    caller forces re-analysis. Fresh records are written back to the customer
    service; a change of segment is announced to every sink without waiting.
    """

    def __init__(
        self,
        customers: CustomerGateway,
        orders: OrderGateway,
        behavior: BehaviorGateway,
        dispatcher: BestEffortDispatcher,
        sinks: Sequence[NotificationSink] = (),
        config: Optional[SegmentationConfig] = None,
        rules: Sequence[Rule] = RULES,
    ):
        self.customers = customers
        self.orders = orders
        self.behavior = behavior
        self.dispatcher = dispatcher
        self.sinks = list(sinks)
        self.config = config or SegmentationConfig()
        self.rules = tuple(rules)

    def is_fresh(self, record: Optional[SegmentationRecord], now: datetime) -> bool:
        if record is None:
            return False
        return now - record.last_analyzed < timedelta(days=self.config.freshness_days)

    async def _orders(self, subject_id: str) -> List[OrderSummary]:
        try:
            return await self.orders.get_orders(
                subject_id, limit=self.config.order_fetch_limit
            )
        except EngineError as e:
            logger.warning(f"Orders unavailable for {subject_id}, using none: {e.message}")
            return []

    async def _events(self, subject_id: str) -> List[BehaviorEvent]:
        try:
            return await self.behavior.get_events(
                subject_id, limit=self.config.event_fetch_limit
            )
        except EngineError as e:
            logger.warning(f"Events unavailable for {subject_id}, using none: {e.message}")
            return []

    def build_record(
        self,
        customer: Customer,
        orders: Sequence[OrderSummary],
        events: Sequence[BehaviorEvent],
        now: datetime,
    ) -> SegmentationRecord:
        """Pure classification of one customer's history at instant `now`."""
        rfm = compute_rfm(customer, orders, now, self.config)
        behavior = compute_behavior(events, now, self.config, last_order_at(orders))
        registered = days_since_registration(customer, now, self.config)
        context = SegmentContext(
            rfm=rfm,
            behavior=behavior,
            total_orders=rfm.total_orders,
            days_since_registration=registered,
            rfm_score=rfm_score(rfm, self.config),
            config=self.config,
        )
        rule, score, reasons = classify(context, self.rules)
        logger.debug(f"Customer {customer.customer_id} matched rule {rule.name}")
        return SegmentationRecord(
            type=rule.segment,
            score=score,
            rfm_score=context.rfm_score,
            reasons=reasons,
            rfm=rfm,
            behavior=behavior,
            last_analyzed=now,
            metadata=SegmentationMetadata(
                total_orders=rfm.total_orders,
                total_behavior_events=len(events),
                days_since_registration=registered,
            ),
        )

    async def analyze_customer(
        self, subject_id: str, force: bool = False, now: Optional[datetime] = None
    ) -> SegmentationRecord:
        if not subject_id or not subject_id.strip():
            raise ValidationError("subject_id is required")
        now = now or utcnow()

        customer = await self.customers.get_customer(subject_id)
        if customer is None:
            raise NotFoundError(
                f"Customer for user {subject_id} not found", {"subject_id": subject_id}
            )

        previous = customer.segmentation
        if not force and self.is_fresh(previous, now):
            metrics.segmentation_results.labels(segment=previous.type, source="cached").inc()
            logger.info(f"Reusing fresh segmentation for {subject_id}: {previous.type}")
            return previous

        orders, events = await asyncio.gather(
            self._orders(subject_id), self._events(subject_id)
        )
        record = self.build_record(customer, orders, events, now)

        await self.customers.update_segmentation(customer.customer_id, record)
        metrics.segmentation_results.labels(segment=record.type, source="computed").inc()
        logger.info(
            f"Segmented {subject_id} as {record.type} "
            f"(score={record.score}, rfm={record.rfm_score})"
        )

        if previous is None or previous.type != record.type:
            metrics.segmentation_changes.labels(
                from_segment=previous.type if previous else UNCLASSIFIED,
                to_segment=record.type,
            ).inc()
            self._notify(subject_id, customer.customer_id, previous, record)
        return record

    def _notify(
        self,
        user_id: str,
        customer_id: str,
        old: Optional[SegmentationRecord],
        new: SegmentationRecord,
    ) -> None:
        for sink in self.sinks:
            self.dispatcher.submit(
                sink.name,
                lambda sink=sink: sink.segmentation_changed(user_id, customer_id, old, new),
            )

    async def _analyze_item(self, subject_id: str, force: bool) -> BatchItem:
        record = await self.analyze_customer(subject_id, force=force)
        return BatchItem(subject_id=subject_id, segmentation=record)

    async def analyze_batch(
        self,
        subject_ids: Sequence[str],
        batch_size: Optional[int] = None,
        force: bool = False,
    ) -> List[BatchItem]:
        """Analyze in chunks; one failing customer never affects the others."""
        batch_size = batch_size or self.config.batch_size
        if batch_size < 1:
            raise ValidationError("batch_size must be positive", {"batch_size": batch_size})

        items: List[BatchItem] = []
        for start in range(0, len(subject_ids), batch_size):
            chunk = list(subject_ids[start:start + batch_size])
            outcomes = await asyncio.gather(
                *(self._analyze_item(sid, force) for sid in chunk),
                return_exceptions=True,
            )
            for subject_id, outcome in zip(chunk, outcomes):
                if isinstance(outcome, BaseException):
                    if not isinstance(outcome, Exception):
                        raise outcome
                    metrics.segmentation_batch_failures.inc()
                    message = getattr(outcome, "message", None) or str(outcome)
                    logger.error(f"Segmentation failed for {subject_id}: {message}")
                    items.append(BatchItem(subject_id=subject_id, error=message))
                else:
                    items.append(outcome)
        return items

    async def analyze_all(
        self, force: bool = True, batch_size: Optional[int] = None
    ) -> AnalyzeAllResult:
        start_time = time.time()
        subject_ids = await self.customers.list_customer_ids()
        logger.info(f"Analyzing {len(subject_ids)} customers (force={force})")

        results = await self.analyze_batch(subject_ids, batch_size=batch_size, force=force)
        failed = sum(1 for item in results if item.error is not None)
        duration_ms = int((time.time() - start_time) * 1000)
        logger.info(
            f"Analysis finished: {len(results) - failed} ok, {failed} failed in {duration_ms}ms"
        )
        return AnalyzeAllResult(
            total=len(subject_ids),
            processed=len(results),
            success=len(results) - failed,
            failed=failed,
            duration_ms=duration_ms,
            results=results,
        )

    async def get_segmentation_stats(
        self, force_reanalyze: bool = False
    ) -> Dict[str, SegmentStats]:
        if force_reanalyze:
            try:
                await self.analyze_all(force=True)
            except EngineError as e:
                logger.warning(f"Re-analysis before stats failed: {e.message}")

        raw = await self.customers.get_segmentation_stats()
        stats = {segment: SegmentStats() for segment in (*SEGMENT_TYPES, UNCLASSIFIED)}
        for segment, values in raw.items():
            if isinstance(values, dict):
                stats[segment] = SegmentStats.model_validate(values)
        return stats

    async def customers_by_segment(
        self, segment: str, page: int = 1, limit: int = 20
    ) -> Dict[str, Any]:
        if segment not in SEGMENT_TYPES:
            raise ValidationError(
                f"Unknown segment type '{segment}'",
                {"segment": segment, "allowed": list(SEGMENT_TYPES)},
            )
        if page < 1 or limit < 1:
            raise ValidationError("page and limit must be positive")
        return await self.customers.list_customers_by_segment(segment, page, limit)

from personalization.gateways.behavior import BehaviorGateway
from personalization.gateways.customers import CustomerGateway
from personalization.gateways.notifications import (
    BestEffortDispatcher,
    KafkaSegmentationPublisher,
    NotificationSink,
    VoucherGateway,
)
from personalization.gateways.orders import OrderGateway
from personalization.gateways.products import ProductGateway

__all__ = [
    "BehaviorGateway",
    "BestEffortDispatcher",
    "CustomerGateway",
    "KafkaSegmentationPublisher",
    "NotificationSink",
    "OrderGateway",
    "ProductGateway",
    "VoucherGateway",
]

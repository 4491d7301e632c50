from typing import List, Optional

import httpx

from personalization.config import ORDER_SERVICE_URL, ORDER_TIMEOUT_SECONDS
from personalization.gateways.base import GatewayClient
from personalization.models import OrderSummary


class OrderGateway(GatewayClient):
    name = "orders"

    def __init__(
        self,
        base_url: str = ORDER_SERVICE_URL,
        timeout: float = ORDER_TIMEOUT_SECONDS,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(base_url, timeout, client)

    async def get_orders(
        self,
        subject_id: str,
        limit: int = 1000,
        skip: int = 0,
        status: Optional[str] = None,
        payment_status: Optional[str] = None,
    ) -> List[OrderSummary]:
        payload = await self._get(
            f"/orders/internal/user/{subject_id}",
            "get_orders",
            params={
                "limit": limit,
                "skip": skip,
                "status": status,
                "paymentStatus": payment_status,
            },
            empty_on_404=True,
        )
        if payload is None:
            return []
        raw_orders = payload.get("orders", []) if isinstance(payload, dict) else payload
        return [OrderSummary.model_validate(o) for o in raw_orders or []]

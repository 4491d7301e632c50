from typing import Any, Dict, List, Optional

import httpx

from personalization.config import IDENTITY_SERVICE_URL, IDENTITY_TIMEOUT_SECONDS
from personalization.gateways.base import GatewayClient
from personalization.models import Customer, SegmentationRecord


class CustomerGateway(GatewayClient):
    """
    Customer records on the identity service.

    update_segmentation is the only write this engine performs against
    external state.
    """

    name = "customers"

    def __init__(
        self,
        base_url: str = IDENTITY_SERVICE_URL,
        timeout: float = IDENTITY_TIMEOUT_SECONDS,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(base_url, timeout, client)

    async def get_customer(self, subject_id: str) -> Optional[Customer]:
        payload = await self._get(
            f"/customers/internal/user/{subject_id}", "get_customer", empty_on_404=True
        )
        if not payload:
            return None
        return Customer.model_validate(payload)

    async def update_segmentation(
        self, customer_id: str, record: SegmentationRecord
    ) -> None:
        await self._patch(
            f"/customers/internal/{customer_id}/segmentation",
            "update_segmentation",
            json={"segmentation": record.model_dump(mode="json", by_alias=True)},
        )

    async def get_segmentation_stats(self) -> Dict[str, Any]:
        payload = await self._get(
            "/customers/internal/segmentation/stats", "get_segmentation_stats"
        )
        return payload or {}

    async def list_customer_ids(self) -> List[str]:
        """Subject ids of every customer, most recently updated first."""
        payload = await self._get("/customers/internal/ids", "list_customer_ids")
        ids = []
        for entry in payload or []:
            if isinstance(entry, dict):
                entry = entry.get("userId") or entry.get("id") or entry.get("_id")
            if entry:
                ids.append(str(entry))
        return ids

    async def list_customers_by_segment(
        self, segment: str, page: int = 1, limit: int = 20
    ) -> Dict[str, Any]:
        payload = await self._get(
            f"/customers/internal/segmentation/{segment}/users",
            "list_customers_by_segment",
            params={"page": page, "limit": limit},
        )
        return payload or {"users": [], "pagination": {}}

from datetime import datetime
from typing import List, Optional

import httpx

from personalization.config import IDENTITY_SERVICE_URL, IDENTITY_TIMEOUT_SECONDS
from personalization.gateways.base import GatewayClient
from personalization.models import BehaviorEvent


class BehaviorGateway(GatewayClient):
    """Read-only access to the behavior events recorded by the identity service."""

    name = "behavior"

    def __init__(
        self,
        base_url: str = IDENTITY_SERVICE_URL,
        timeout: float = IDENTITY_TIMEOUT_SECONDS,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(base_url, timeout, client)

    async def get_events(
        self,
        subject_id: str,
        limit: int = 1000,
        page: int = 1,
        event_type: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> List[BehaviorEvent]:
        """Events for one subject, newest first; unknown subjects have no events."""
        payload = await self._get(
            f"/behavior/internal/user/{subject_id}",
            "get_events",
            params={
                "limit": limit,
                "page": page,
                "eventType": event_type,
                "startDate": since.isoformat() if since else None,
            },
            empty_on_404=True,
        )
        if payload is None:
            return []
        raw_events = payload.get("events", []) if isinstance(payload, dict) else payload
        events = [BehaviorEvent.model_validate(e) for e in raw_events or []]
        return sorted(events, key=lambda e: e.timestamp, reverse=True)

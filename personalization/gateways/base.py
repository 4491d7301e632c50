import time
from typing import Any, Dict, Optional

import httpx

from personalization.errors import ExternalServiceError, NotFoundError
from personalization.logging import setup_logging
from personalization.observability import gateway_span, metrics

logger = setup_logging("gateways.log")


def unwrap(body: Any) -> Any:
    """Collaborators answer either bare payloads or {"status": ..., "data": ...}."""
    if isinstance(body, dict) and "data" in body:
        return body["data"]
    return body


class GatewayClient:
    """
    Thin async HTTP client shared by every collaborator gateway.

    Every call carries the client's timeout; timeouts, transport errors and
    non-2xx answers surface as ExternalServiceError.
    """

    name = "gateway"

    def __init__(
        self,
        base_url: str,
        timeout: float,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def close(self) -> None:
        await self._client.aclose()

    async def ping(self) -> None:
        """Readiness check: any HTTP answer means the collaborator is reachable."""
        try:
            await self._client.get("/health")
        except httpx.HTTPError as e:
            raise ExternalServiceError(
                f"{self.name} service unreachable", {"gateway": self.name}
            ) from e

    async def _request(
        self,
        method: str,
        path: str,
        operation: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Any] = None,
        empty_on_404: bool = False,
    ) -> Any:
        if params:
            params = {key: value for key, value in params.items() if value is not None}

        start_time = time.time()
        details = {"gateway": self.name, "path": path}
        try:
            with gateway_span(self.name, operation, path=path) as span:
                try:
                    response = await self._client.request(
                        method, path, params=params, json=json
                    )
                except httpx.TimeoutException as e:
                    metrics.gateway_failures.labels(
                        gateway=self.name, reason="timeout"
                    ).inc()
                    raise ExternalServiceError(
                        f"{self.name} service timed out", details
                    ) from e
                except httpx.HTTPError as e:
                    metrics.gateway_failures.labels(
                        gateway=self.name, reason="http_error"
                    ).inc()
                    raise ExternalServiceError(
                        f"{self.name} service request failed: {e}", details
                    ) from e

                span.set_attribute("http.status_code", response.status_code)

                if response.status_code == 404:
                    if empty_on_404:
                        return None
                    raise NotFoundError(
                        f"{self.name} resource not found", {**details, "status": 404}
                    )

                if response.is_error:
                    metrics.gateway_failures.labels(
                        gateway=self.name, reason="status"
                    ).inc()
                    raise ExternalServiceError(
                        f"{self.name} service returned {response.status_code}",
                        {**details, "status": response.status_code},
                    )

                if not response.content:
                    return None
                try:
                    return unwrap(response.json())
                except ValueError as e:
                    raise ExternalServiceError(
                        f"{self.name} service returned invalid JSON", details
                    ) from e
        finally:
            metrics.gateway_request_duration.labels(
                gateway=self.name, operation=operation
            ).observe(time.time() - start_time)

    async def _get(self, path: str, operation: str, **kwargs: Any) -> Any:
        return await self._request("GET", path, operation, **kwargs)

    async def _post(self, path: str, operation: str, **kwargs: Any) -> Any:
        return await self._request("POST", path, operation, **kwargs)

    async def _patch(self, path: str, operation: str, **kwargs: Any) -> Any:
        return await self._request("PATCH", path, operation, **kwargs)

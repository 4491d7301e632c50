from typing import Any, List, Optional

import httpx
from pydantic import ValidationError as PydanticValidationError

from personalization.config import PRODUCT_SERVICE_URL, PRODUCT_TIMEOUT_SECONDS
from personalization.errors import ExternalServiceError
from personalization.gateways.base import GatewayClient
from personalization.logging import setup_logging
from personalization.models import Product

logger = setup_logging("gateways.log")


def _product_list(payload: Any) -> List[dict]:
    if payload is None:
        return []
    if isinstance(payload, dict):
        return payload.get("products") or payload.get("items") or []
    return payload


def _parse_products(documents: List[dict]) -> List[Product]:
    """Malformed catalog documents are skipped, not fatal to the listing."""
    products = []
    for document in documents:
        try:
            products.append(Product.model_validate(document))
        except PydanticValidationError as e:
            logger.warning(f"Skipping malformed product document: {e.error_count()} errors")
    return products


class ProductGateway(GatewayClient):
    """Catalog reads: by id, or filtered lists in lightweight or full projection."""

    name = "products"

    def __init__(
        self,
        base_url: str = PRODUCT_SERVICE_URL,
        timeout: float = PRODUCT_TIMEOUT_SECONDS,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(base_url, timeout, client)

    async def get_product(self, product_id: str) -> Optional[Product]:
        payload = await self._get(
            f"/products/{product_id}", "get_product", empty_on_404=True
        )
        if not payload:
            return None
        if isinstance(payload, dict) and payload.get("status") == "error":
            # some error answers arrive with a 200 status
            return None
        try:
            return Product.model_validate(payload)
        except PydanticValidationError as e:
            raise ExternalServiceError(
                "products service returned a malformed product",
                {"gateway": self.name, "product_id": product_id, "errors": e.error_count()},
            ) from e

    async def list_products(
        self,
        status: str = "published",
        is_active: bool = True,
        category_id: Optional[str] = None,
        min_price: Optional[float] = None,
        max_price: Optional[float] = None,
        limit: int = 100,
        lightweight: bool = True,
        sort_by: Optional[str] = None,
    ) -> List[Product]:
        params = {
            "status": status,
            "isActive": str(is_active).lower(),
            "categoryId": category_id,
            "minPrice": min_price,
            "maxPrice": max_price,
            "limit": limit,
            "sortBy": sort_by,
            "sortOrder": "desc" if sort_by else None,
        }
        if lightweight:
            try:
                payload = await self._get(
                    "/products/internal/lightweight",
                    "list_products_lightweight",
                    params=params,
                )
                return _parse_products(_product_list(payload))
            except ExternalServiceError as e:
                logger.warning(
                    f"Lightweight product listing failed, using full listing: {e.message}"
                )

        payload = await self._get("/products", "list_products", params=params)
        return _parse_products(_product_list(payload))

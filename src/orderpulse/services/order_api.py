"""REST snapshot client for orders.

Learn: the real-time feed only carries deltas. When the session needs the
full picture (an order opened from a permalink, the order history on login,
or an order a delta referenced before we had seen it) it falls back to the
storefront REST API:

    GET /orders/{id}  → {"success": true, "order": {...}}
    GET /orders/me    → {"success": true, "orders": [...]}
"""

from typing import Any, Optional

import httpx
import structlog

from orderpulse.schemas.order import TrackedOrder

logger = structlog.get_logger()


class OrderApiError(Exception):
    """Raised when the order API returns an error or an unusable body."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class OrderNotFoundError(OrderApiError):
    pass


class OrderApiClient:
    """Thin async wrapper around the storefront order endpoints."""

    def __init__(
        self,
        base_url: str,
        *,
        token: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._token = token
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
        )

    def set_token(self, token: Optional[str]) -> None:
        self._token = token

    async def fetch_order_by_id(self, order_id: str) -> TrackedOrder:
        body = await self._get(f"/orders/{order_id}")
        order = body.get("order")
        if not isinstance(order, dict):
            raise OrderApiError("Response did not include an order")
        return TrackedOrder.model_validate(order)

    async def fetch_my_orders(self) -> list[TrackedOrder]:
        body = await self._get("/orders/me")
        orders = body.get("orders")
        if not isinstance(orders, list):
            raise OrderApiError("Response did not include an order list")
        return [TrackedOrder.model_validate(o) for o in orders]

    async def _get(self, path: str) -> dict[str, Any]:
        r = await self._client.get(path, headers=self._headers())
        if r.status_code == 404:
            raise OrderNotFoundError(_error_message(r, "Order not found"), status_code=404)
        if r.status_code >= 400:
            logger.warning("orderpulse.api.error", path=path, status_code=r.status_code)
            raise OrderApiError(_error_message(r, "Request failed"), status_code=r.status_code)
        try:
            body = r.json()
        except ValueError as e:
            raise OrderApiError(f"Invalid JSON response: {e}", status_code=r.status_code) from e
        if not isinstance(body, dict) or not body.get("success", False):
            message = body.get("message") if isinstance(body, dict) else None
            raise OrderApiError(message or "Request was not successful", status_code=r.status_code)
        return body

    def _headers(self) -> dict[str, str]:
        if not self._token:
            return {}
        return {"Authorization": f"Bearer {self._token}"}

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "OrderApiClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()


def _error_message(r: httpx.Response, default: str) -> str:
    try:
        body = r.json()
    except ValueError:
        return default
    if isinstance(body, dict):
        return body.get("message") or body.get("error") or default
    return default

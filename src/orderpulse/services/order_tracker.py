"""Order tracker — follow one order from an order-detail view.

Learn: start_tracking() prefers the reconciler's copy and falls back to a
REST snapshot (permalinks open orders the session has never seen). The
snapshot is folded into the reconciler, then the order becomes the tracking
focus, which joins its room. From then on every delta for it lands in the
reconciler, and `tracker.order` always reads the live merged copy.

REST failures are logged and reported as None; they never escape into the
event pipeline.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import httpx
import structlog
from pydantic import ValidationError

from orderpulse.events.types import (
    CANCELLED,
    DELIVERY,
    PICKUP,
    STATUS_FLOW,
    TERMINAL_STATUSES,
)
from orderpulse.schemas.order import DeliveryInfo, TrackedOrder
from orderpulse.services.order_api import OrderApiClient, OrderApiError
from orderpulse.services.order_reconciler import OrderReconciler

logger = structlog.get_logger()

# Fallback completion estimates when no delivery ETA was pushed
_ESTIMATE_MINUTES = {PICKUP: 15, DELIVERY: 60}
_DEFAULT_ESTIMATE_MINUTES = 30


def status_display(status: str) -> str:
    """'driver_assigned' -> 'Driver Assigned'."""
    return status.replace("_", " ").title()


def is_active(order: Optional[TrackedOrder]) -> bool:
    return order is not None and order.status not in TERMINAL_STATUSES


def order_progress(order: Optional[TrackedOrder]) -> float:
    """Percentage along the status flow; 0 for cancelled or unknown statuses."""
    if order is None or order.status == CANCELLED or order.status not in STATUS_FLOW:
        return 0.0
    index = STATUS_FLOW.index(order.status)
    return (index + 1) / len(STATUS_FLOW) * 100


def estimated_completion(
    order: Optional[TrackedOrder],
    delivery: Optional[DeliveryInfo] = None,
) -> Optional[datetime]:
    """Pushed delivery ETA if any, else created_at plus a per-order-type estimate."""
    if order is None:
        return None
    if delivery is not None and delivery.estimated_delivery_time is not None:
        return delivery.estimated_delivery_time
    if order.estimated_delivery_time is not None:
        return order.estimated_delivery_time
    if order.created_at is None:
        return None
    minutes = _ESTIMATE_MINUTES.get(order.order_type or "", _DEFAULT_ESTIMATE_MINUTES)
    return order.created_at + timedelta(minutes=minutes)


class OrderTracker:
    def __init__(
        self,
        reconciler: OrderReconciler,
        api: OrderApiClient,
        *,
        auto_track: bool = True,
    ):
        self.reconciler = reconciler
        self.api = api
        self.auto_track = auto_track
        self._order_id: Optional[str] = None
        self._fallback: Optional[TrackedOrder] = None
        self.last_update: Optional[datetime] = None

    @property
    def order_id(self) -> Optional[str]:
        return self._order_id

    @property
    def order(self) -> Optional[TrackedOrder]:
        """Live copy from the reconciler; the last known copy if it was deleted."""
        if self._order_id is None:
            return None
        return self.reconciler.get_order_by_id(self._order_id) or self._fallback

    async def start_tracking(self, order_id: str) -> Optional[TrackedOrder]:
        order_id = str(order_id)
        order = self.reconciler.get_order_by_id(order_id)
        if order is None:
            order = await self._fetch(order_id)
            if order is None:
                return None
            order = self.reconciler.apply_snapshot(order) or order

        self._order_id = order_id
        self._fallback = order
        if self.auto_track:
            self.reconciler.set_current_order_for_tracking(order)
        self.last_update = datetime.now(timezone.utc)
        logger.info("orderpulse.tracker.started", order_id=order_id, status=order.status)
        return order

    def stop_tracking(self) -> None:
        if self._order_id is None:
            return
        logger.info("orderpulse.tracker.stopped", order_id=self._order_id)
        self._order_id = None
        self._fallback = None
        if self.auto_track:
            self.reconciler.set_current_order_for_tracking(None)

    async def backfill(self, order_id: str) -> Optional[TrackedOrder]:
        """Fetch an order a delta referenced before we had it. Applied only if still absent."""
        order = await self._fetch(order_id)
        if order is None or self.reconciler.get_order_by_id(order.id) is not None:
            return None
        logger.info("orderpulse.tracker.backfilled", order_id=order.id)
        return self.reconciler.apply_snapshot(order)

    def touch(self, _payload: Any = None) -> None:
        """Reconciler observer: note when the tracked order last changed."""
        current = self.order
        # Merges produce new objects, so identity tells us whether it changed
        if current is not None and current is not self._fallback:
            self._fallback = current
            self.last_update = datetime.now(timezone.utc)

    def summary(self) -> Optional[dict[str, Any]]:
        order = self.order
        if order is None:
            return None
        delivery = self.reconciler.get_delivery_info(order.id)
        return {
            "order_id": order.id,
            "order_number": order.order_number,
            "status": order.status,
            "status_display": status_display(order.status),
            "progress": order_progress(order),
            "active": is_active(order),
            "total": order.total,
            "last_updated": order.updated_at or order.created_at,
            "estimated_completion": estimated_completion(order, delivery),
        }

    async def _fetch(self, order_id: str) -> Optional[TrackedOrder]:
        try:
            return await self.api.fetch_order_by_id(order_id)
        except (OrderApiError, httpx.HTTPError, ValidationError) as e:
            logger.warning("orderpulse.tracker.fetch_failed", order_id=order_id, error=str(e))
            return None

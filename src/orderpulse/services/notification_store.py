"""Notification store — bounded, newest-first feed with unread tracking.

Learn: the unread counter is maintained incrementally but must always equal
the number of unread entries in the feed. Every mutation adjusts it by
exactly what changed:
- add: +1 for the new entry, minus any unread entries evicted past the cap
- mark_as_read: -1 only if the entry exists and was unread (floored at 0)
- mark_all_as_read / clear: reset to 0

Order-class events also raise a short toast; everything else is recorded
silently.
"""

import secrets
import time
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

import structlog
from pydantic import ValidationError

from orderpulse.events.types import (
    DELIVERY_TRACKING_UPDATE,
    GENERAL,
    ORDER_STATUS_UPDATE,
    ORDER_UPDATE_NOTIFICATION_TYPES,
    TOAST_NOTIFICATION_TYPES,
)
from orderpulse.realtime.observable import Observable
from orderpulse.schemas.notification import Notification
from orderpulse.schemas.order import CustomerOrderUpdate, DeliveryUpdate, order_id_of
from orderpulse.services.alerts import LogToaster, Toaster

logger = structlog.get_logger()

FILTER_ALL = "all"
FILTER_ORDER_UPDATES = "order_updates"
FILTER_DELIVERY = "delivery"


def new_notification_id() -> str:
    """Time + random component: unique in practice, not by construction."""
    return f"{time.time_ns():x}-{secrets.token_hex(4)}"


class NotificationStore(Observable):
    """In-memory feed of the most recent notifications."""

    def __init__(
        self,
        *,
        max_items: int = 50,
        toaster: Optional[Toaster] = None,
        toast_types: frozenset[str] = TOAST_NOTIFICATION_TYPES,
        toast_auto_close: float = 5.0,
    ):
        super().__init__()
        self.max_items = max_items
        self._toaster = toaster or LogToaster()
        self.toast_types = toast_types
        self.toast_auto_close = toast_auto_close
        self._items: list[Notification] = []
        self._unread = 0

    @property
    def notifications(self) -> list[Notification]:
        """Newest first. A copy; mutate through the store's methods."""
        return list(self._items)

    @property
    def unread_count(self) -> int:
        return self._unread

    def get(self, notification_id: str) -> Optional[Notification]:
        return next((n for n in self._items if n.id == notification_id), None)

    # ─── Mutations ────────────────────────────────────────

    def add_notification(self, event: Any) -> Optional[Notification]:
        """Record an inbound notification event. Malformed events are skipped."""
        if not isinstance(event, Mapping):
            logger.warning("orderpulse.notifications.malformed", payload_type=type(event).__name__)
            return None
        try:
            notification = Notification(
                id=new_notification_id(),
                type=event.get("type") or GENERAL,
                title=event.get("title") or "",
                message=event.get("message") or "",
                order_id=event.get("order_id") or order_id_of(event.get("order")),
                order_number=event.get("order_number") or _order_number(event.get("order")),
                priority=event.get("priority"),
                timestamp=event.get("timestamp") or datetime.now(timezone.utc),
                read=False,
            )
        except ValidationError as e:
            logger.warning("orderpulse.notifications.malformed", error=str(e))
            return None

        self._items.insert(0, notification)
        evicted = self._items[self.max_items:]
        del self._items[self.max_items:]
        self._unread += 1 - sum(1 for n in evicted if not n.read)
        self._unread = max(0, self._unread)

        logger.debug(
            "orderpulse.notifications.added",
            notification_type=notification.type,
            unread=self._unread,
        )
        if notification.type in self.toast_types:
            self._toaster.show(
                notification.message,
                level="info",
                auto_close=self.toast_auto_close,
            )
        self._notify(self)
        return notification

    def mark_as_read(self, notification_id: str) -> bool:
        """Mark one entry read. Returns False for unknown or already-read ids."""
        for index, notification in enumerate(self._items):
            if notification.id != notification_id:
                continue
            if notification.read:
                return False
            self._items[index] = notification.model_copy(update={"read": True})
            self._unread = max(0, self._unread - 1)
            self._notify(self)
            return True
        return False

    def mark_all_as_read(self) -> None:
        self._items = [
            n if n.read else n.model_copy(update={"read": True})
            for n in self._items
        ]
        self._unread = 0
        self._notify(self)

    def clear_notifications(self) -> None:
        self._items = []
        self._unread = 0
        self._notify(self)

    # ─── Queries ──────────────────────────────────────────

    def filter_notifications(self, category: str = FILTER_ALL) -> list[Notification]:
        """Feed entries for one UI tab: all, order_updates or delivery."""
        if category == FILTER_ORDER_UPDATES:
            return [n for n in self._items if n.type in ORDER_UPDATE_NOTIFICATION_TYPES]
        if category == FILTER_DELIVERY:
            return [n for n in self._items if n.type == DELIVERY_TRACKING_UPDATE]
        return list(self._items)


def _order_number(order: Any) -> Optional[str]:
    if isinstance(order, Mapping):
        return order.get("orderNumber") or order.get("order_number")
    return getattr(order, "order_number", None)


# ─── Event → notification builders ───────────────────────


def notification_from_order_update(payload: Any) -> Optional[dict[str, Any]]:
    """Turn a customer_order_update payload into a feed event, or None if unusable."""
    if not isinstance(payload, Mapping):
        return None
    try:
        update = CustomerOrderUpdate.model_validate(payload)
    except ValidationError:
        return None
    number = _order_number(update.order)
    message = update.message
    if not message and update.new_status:
        message = f"Order #{number or '?'} is now {update.new_status.replace('_', ' ')}"
    if not message:
        return None
    return {
        "type": update.type or ORDER_STATUS_UPDATE,
        "title": f"Order #{number}" if number else "Order update",
        "message": message,
        "order_id": order_id_of(update.order),
        "order_number": number,
        "timestamp": update.timestamp,
    }


def notification_from_delivery_update(payload: Any) -> Optional[dict[str, Any]]:
    """Turn a delivery_update payload into a (silent) feed event."""
    if not isinstance(payload, Mapping):
        return None
    try:
        update = DeliveryUpdate.model_validate(payload)
    except ValidationError:
        return None
    status = (update.status or "updated").replace("_", " ")
    return {
        "type": DELIVERY_TRACKING_UPDATE,
        "title": "Delivery update",
        "message": f"Your order is {status}",
        "order_id": update.order_id,
    }

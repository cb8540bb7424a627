"""Order event emitter — turns order changes into websocket frames.

Learn: the store backend calls one method per order change; the emitter fans
that out to Redis channels, and every websocket relay subscribed to those
channels forwards the frames to its client:

    order_created   → customer channel: customer_order_update (order_created)
                      order room:       single_order_update (created)
    order_updated   → customer channel: customer_order_update (order_status_update)
                                        delivery_update (delivery-ish statuses)
                      order room:       single_order_update (updated + changes)
    order_deleted   → order room:       single_order_update (deleted)
    notify_customer → customer channel: customer_notification

Customer events are only sent when the order names its customer.
"""

from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Mapping, Optional

import structlog

from orderpulse.events.types import (
    CUSTOMER_NOTIFICATION,
    CUSTOMER_ORDER_UPDATE,
    DELIVERY_TRACKING_STATUSES,
    DELIVERY_TRACKING_UPDATE,
    DELIVERY_UPDATE,
    OP_CREATED,
    OP_DELETED,
    OP_UPDATED,
    ORDER_CREATED,
    ORDER_STATUS_UPDATE,
    SINGLE_ORDER_UPDATE,
)
from orderpulse.realtime.pubsub import customer_channel, order_channel, publish_event

logger = structlog.get_logger()

Publisher = Callable[[str, str, Any], Awaitable[None]]

_STATUS_MESSAGES = {
    "pending": "Your order #{n} has been placed and is awaiting confirmation",
    "processing": "Great news! Your order #{n} is being prepared by the store",
    "ready_for_pickup": "Your order #{n} is ready for pickup at the store",
    "ready_for_delivery": "Your order #{n} is ready and waiting for driver assignment",
    "driver_assigned": "A driver has been assigned to deliver your order #{n}",
    "picked_up": "Your order #{n} has been picked up and is on its way!",
    "in_transit": "Your order #{n} is on its way to you!",
    "delivered": "Your order #{n} has been successfully delivered. Thank you!",
    "cancelled": "Your order #{n} has been cancelled",
}

_STATUS_PRIORITIES = {
    "pending": "high",
    "ready_for_delivery": "high",
    "cancelled": "high",
    "delivered": "low",
}


def status_message(status: str, order_number: Any) -> str:
    template = _STATUS_MESSAGES.get(status)
    if template is None:
        return f"Your order #{order_number} status has been updated to {status}"
    return template.format(n=order_number)


def status_priority(status: str) -> str:
    return _STATUS_PRIORITIES.get(status, "medium")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _order_id(order: Mapping[str, Any]) -> str:
    return str(order.get("_id") or order.get("id"))


def _customer_id(order: Mapping[str, Any]) -> Optional[str]:
    customer = order.get("customer")
    if isinstance(customer, Mapping):
        customer = customer.get("_id") or customer.get("id")
    return str(customer) if customer else None


class OrderEventEmitter:
    def __init__(self, publisher: Optional[Publisher] = None):
        self.publish = publisher or publish_event

    async def order_created(self, order: Mapping[str, Any]) -> None:
        order_id = _order_id(order)
        order_number = order.get("orderNumber")
        customer = _customer_id(order)
        if customer:
            await self.publish(customer_channel(customer), CUSTOMER_ORDER_UPDATE, {
                "type": ORDER_CREATED,
                "order": dict(order),
                "message": f"Your order #{order_number} has been placed successfully",
                "timestamp": _now(),
            })
        await self.publish(order_channel(order_id), SINGLE_ORDER_UPDATE, {
            "type": SINGLE_ORDER_UPDATE,
            "order": dict(order),
            "operation": OP_CREATED,
            "timestamp": _now(),
        })
        logger.info("orderpulse.emitter.order_created", order_id=order_id)

    async def order_updated(
        self,
        order: Mapping[str, Any],
        updated_fields: Mapping[str, Any],
        previous_status: Optional[str] = None,
    ) -> None:
        """Emit the events for an order change.

        `updated_fields` is the set of fields the change touched; a status
        key in it is what makes this a customer-visible status change.
        """
        order_id = _order_id(order)
        customer = _customer_id(order)
        new_status = updated_fields.get("status")

        if new_status and customer:
            channel = customer_channel(customer)
            await self.publish(channel, CUSTOMER_ORDER_UPDATE, {
                "type": ORDER_STATUS_UPDATE,
                "order": dict(order),
                "message": status_message(new_status, order.get("orderNumber")),
                "priority": status_priority(new_status),
                "timestamp": _now(),
                "previousStatus": previous_status,
                "newStatus": new_status,
            })
            if new_status in DELIVERY_TRACKING_STATUSES:
                await self.publish(channel, DELIVERY_UPDATE, {
                    "type": DELIVERY_TRACKING_UPDATE,
                    "orderId": order_id,
                    "status": new_status,
                    "estimatedDeliveryTime": order.get("estimatedDeliveryTime"),
                    "orderType": order.get("orderType"),
                })

        await self.publish(order_channel(order_id), SINGLE_ORDER_UPDATE, {
            "type": SINGLE_ORDER_UPDATE,
            "order": dict(order),
            "operation": OP_UPDATED,
            "timestamp": _now(),
            "changes": dict(updated_fields),
        })
        logger.info(
            "orderpulse.emitter.order_updated",
            order_id=order_id,
            status=new_status,
            fields=sorted(updated_fields),
        )

    async def order_deleted(self, order_id: str) -> None:
        order_id = str(order_id)
        await self.publish(order_channel(order_id), SINGLE_ORDER_UPDATE, {
            "type": SINGLE_ORDER_UPDATE,
            "orderId": order_id,
            "operation": OP_DELETED,
            "timestamp": _now(),
        })
        logger.info("orderpulse.emitter.order_deleted", order_id=order_id)

    async def notify_customer(self, customer_id: str, notification: Mapping[str, Any]) -> None:
        await self.publish(customer_channel(str(customer_id)), CUSTOMER_NOTIFICATION, {
            **notification,
            "timestamp": _now(),
        })

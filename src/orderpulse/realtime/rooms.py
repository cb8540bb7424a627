"""Per-order room subscriptions.

The relay broadcasts `single_order_update` for an order only to clients that
joined that order's room. Joins and leaves are sent only while connected;
nothing is queued. Re-joining after a reconnect is the reconciler's job
(OrderReconciler.rejoin_current_room runs on every `connect`).
"""

import structlog

from orderpulse.events.types import JOIN_ORDER_ROOM, LEAVE_ORDER_ROOM
from orderpulse.realtime.connection import ConnectionManager

logger = structlog.get_logger()


class RoomSubscriptions:
    def __init__(self, connection: ConnectionManager):
        self.connection = connection

    def join_order_room(self, order_id: str) -> bool:
        """Ask the server for deltas of one order. Returns False when not connected."""
        return self._send(JOIN_ORDER_ROOM, order_id)

    def leave_order_room(self, order_id: str) -> bool:
        return self._send(LEAVE_ORDER_ROOM, order_id)

    def _send(self, event: str, order_id: str) -> bool:
        if not self.connection.is_connected:
            logger.debug("orderpulse.rooms.skipped", event_name=event, order_id=order_id)
            return False
        sent = self.connection.emit(event, str(order_id))
        if sent:
            logger.info("orderpulse.rooms.sent", event_name=event, order_id=order_id)
        return sent

"""Event type constants.

Learn: Centralizing event names as constants prevents typos between the
emitter (server side) and the listeners (client side). The wire contract is
the set of strings below; payload shapes live in orderpulse.schemas.
"""

# ─── Connection lifecycle (transport → client) ──────────

CONNECT = "connect"
DISCONNECT = "disconnect"
CONNECT_ERROR = "connect_error"
RECONNECT = "reconnect"
RECONNECT_ERROR = "reconnect_error"
CONNECTION_STATUS = "connection_status"

LIFECYCLE_EVENTS = frozenset({
    CONNECT,
    DISCONNECT,
    CONNECT_ERROR,
    RECONNECT,
    RECONNECT_ERROR,
})

# Disconnect reasons that are deliberate and must not trigger a retry
CLIENT_DISCONNECT = "io client disconnect"
SERVER_DISCONNECT = "io server disconnect"
TRANSPORT_CLOSE = "transport close"

DELIBERATE_DISCONNECT_REASONS = frozenset({CLIENT_DISCONNECT, SERVER_DISCONNECT})

# ─── Inbound order events (server → client) ─────────────

CUSTOMER_NOTIFICATION = "customer_notification"
CUSTOMER_ORDER_UPDATE = "customer_order_update"
SINGLE_ORDER_UPDATE = "single_order_update"
DELIVERY_UPDATE = "delivery_update"
ORDER_STATS_UPDATE = "order_stats_update"

# ─── Outbound (client → server) ─────────────────────────

JOIN_ORDER_ROOM = "join_order_room"
LEAVE_ORDER_ROOM = "leave_order_room"
PING = "ping"
PONG = "pong"

# ─── single_order_update operations ─────────────────────

OP_CREATED = "created"
OP_UPDATED = "updated"
OP_DELETED = "deleted"

DELTA_OPERATIONS = frozenset({OP_CREATED, OP_UPDATED, OP_DELETED})

# ─── Notification types ─────────────────────────────────

ORDER_CREATED = "order_created"
ORDER_STATUS_UPDATE = "order_status_update"
DELIVERY_TRACKING_UPDATE = "delivery_tracking_update"
ORDER_COMPLETED = "order_completed"
ORDER_CANCELLED = "order_cancelled"
GENERAL = "general"

# Types that also raise a transient toast
TOAST_NOTIFICATION_TYPES = frozenset({ORDER_CREATED, ORDER_STATUS_UPDATE})

ORDER_UPDATE_NOTIFICATION_TYPES = frozenset({
    ORDER_CREATED,
    ORDER_STATUS_UPDATE,
    ORDER_COMPLETED,
    ORDER_CANCELLED,
})

# ─── Order statuses ─────────────────────────────────────

PENDING = "pending"
PROCESSING = "processing"
READY_FOR_PICKUP = "ready_for_pickup"
READY_FOR_DELIVERY = "ready_for_delivery"
DRIVER_ASSIGNED = "driver_assigned"
PICKED_UP = "picked_up"
IN_TRANSIT = "in_transit"
DELIVERED = "delivered"
CANCELLED = "cancelled"

STATUS_FLOW = (
    PENDING,
    PROCESSING,
    READY_FOR_PICKUP,
    READY_FOR_DELIVERY,
    DRIVER_ASSIGNED,
    PICKED_UP,
    IN_TRANSIT,
    DELIVERED,
)

TERMINAL_STATUSES = frozenset({DELIVERED, CANCELLED})

# Statuses that also produce a delivery_update for the customer
DELIVERY_TRACKING_STATUSES = frozenset({IN_TRANSIT, READY_FOR_DELIVERY, DRIVER_ASSIGNED})

# ─── Order types ────────────────────────────────────────

PICKUP = "pickup"
DELIVERY = "delivery"

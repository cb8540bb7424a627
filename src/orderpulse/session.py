"""Realtime session — composition root of the notification pipeline.

Learn: instead of a module-level socket singleton, the application builds one
RealtimeSession per signed-in session and hands it to whatever renders the
UI. The session owns exactly one of each component and wires them:

    ConnectionManager ──events──▶ NotificationStore   (feed + toasts)
                      └─events──▶ OrderReconciler     (authoritative orders)
    OrderReconciler   ──join/leave──▶ RoomSubscriptions ──emit──▶ ConnectionManager
    OrderTracker      ──REST fallback──▶ OrderApiClient

Usage:
    async with RealtimeSession(token=token) as session:
        await session.tracker.start_tracking(order_id)
        ...
"""

import asyncio
from typing import Any, Optional

import structlog

from orderpulse.config import Settings, settings as default_settings
from orderpulse.events.types import (
    CONNECT,
    CUSTOMER_NOTIFICATION,
    CUSTOMER_ORDER_UPDATE,
    DELIVERY_UPDATE,
    ORDER_STATS_UPDATE,
    SINGLE_ORDER_UPDATE,
)
from orderpulse.realtime.connection import CallLater, ConnectionManager
from orderpulse.realtime.rooms import RoomSubscriptions
from orderpulse.realtime.transport import TransportFactory, websocket_transport_factory
from orderpulse.services.alerts import LogToaster, Toaster
from orderpulse.services.notification_store import (
    NotificationStore,
    notification_from_delivery_update,
    notification_from_order_update,
)
from orderpulse.services.order_api import OrderApiClient
from orderpulse.services.order_reconciler import OrderReconciler
from orderpulse.services.order_tracker import OrderTracker

logger = structlog.get_logger()


class RealtimeSession:
    def __init__(
        self,
        config: Optional[Settings] = None,
        *,
        token: Optional[str] = None,
        transport_factory: Optional[TransportFactory] = None,
        toaster: Optional[Toaster] = None,
        call_later: Optional[CallLater] = None,
        api: Optional[OrderApiClient] = None,
    ):
        self.config = config or default_settings
        token = token if token is not None else self.config.token
        toaster = toaster or LogToaster()

        self.connection = ConnectionManager(
            self.config.resolved_socket_url,
            token=token,
            transport_factory=transport_factory
            or websocket_transport_factory(open_timeout=self.config.connect_timeout),
            max_attempts=self.config.reconnect_max_attempts,
            base_delay=self.config.reconnect_delay,
            max_delay=self.config.reconnect_delay_max,
            call_later=call_later,
            toaster=toaster,
        )
        self.rooms = RoomSubscriptions(self.connection)
        self.notifications = NotificationStore(
            max_items=self.config.notification_limit,
            toaster=toaster,
            toast_auto_close=self.config.toast_auto_close,
        )
        self.orders = OrderReconciler(self.rooms)
        self.api = api or OrderApiClient(
            self.config.api_url,
            token=token,
            timeout=self.config.http_timeout,
        )
        self.tracker = OrderTracker(self.orders, self.api)
        self.orders.subscribe(self.tracker.touch)

        if self.config.backfill_unknown_orders:
            self.orders.on_unknown_order = self._schedule_backfill

        self._backfills: set[asyncio.Task] = set()
        self._started = False

    # ─── Lifecycle ────────────────────────────────────────

    def start(self) -> None:
        """Register event handlers. Connects immediately when a token is present."""
        if self._started:
            return
        self._started = True
        self.connection.on(CONNECT, self.orders.rejoin_current_room)
        self.connection.on(CUSTOMER_NOTIFICATION, self.notifications.add_notification)
        self.connection.on(CUSTOMER_ORDER_UPDATE, self._on_customer_order_update)
        self.connection.on(SINGLE_ORDER_UPDATE, self.orders.handle_single_order_update)
        self.connection.on(DELIVERY_UPDATE, self._on_delivery_update)
        self.connection.on(ORDER_STATS_UPDATE, self.orders.handle_order_stats_update)
        logger.info("orderpulse.session.started", url=self.connection.url)

    async def load_order_history(self) -> int:
        """Seed the reconciler from GET /orders/me. Returns how many orders arrived."""
        orders = await self.api.fetch_my_orders()
        self.orders.load_orders(orders)
        return len(orders)

    def set_token(self, token: Optional[str]) -> None:
        """Login/logout: re-authenticate the connection and the REST client."""
        self.api.set_token(token)
        self.connection.set_token(token)

    async def close(self) -> None:
        self.tracker.stop_tracking()
        self.connection.disconnect()
        for task in list(self._backfills):
            task.cancel()
        await self.api.aclose()
        self._started = False
        logger.info("orderpulse.session.closed")

    async def __aenter__(self) -> "RealtimeSession":
        self.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    # ─── Event routing ────────────────────────────────────

    def _on_customer_order_update(self, payload: Any) -> None:
        self.orders.handle_customer_order_update(payload)
        event = notification_from_order_update(payload)
        if event is not None:
            self.notifications.add_notification(event)

    def _on_delivery_update(self, payload: Any) -> None:
        self.orders.handle_delivery_update(payload)
        event = notification_from_delivery_update(payload)
        if event is not None:
            self.notifications.add_notification(event)

    def _schedule_backfill(self, order_id: str) -> None:
        task = asyncio.get_running_loop().create_task(self.tracker.backfill(order_id))
        self._backfills.add(task)
        task.add_done_callback(self._backfills.discard)

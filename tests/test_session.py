"""Realtime session tests — event routing between the components.

Learn: these tests build a real RealtimeSession and only fake its edges
(transport, scheduler, toaster, REST transport). Events fired into the fake
transport travel the same path a websocket frame would.
"""

import asyncio

import httpx
import pytest
from conftest import make_order

from orderpulse.events.types import (
    CONNECT,
    CUSTOMER_NOTIFICATION,
    CUSTOMER_ORDER_UPDATE,
    DELIVERY_UPDATE,
    DISCONNECT,
    JOIN_ORDER_ROOM,
    ORDER_STATS_UPDATE,
    SINGLE_ORDER_UPDATE,
    TRANSPORT_CLOSE,
)
from orderpulse.realtime.connection import ConnectionState
from orderpulse.services.order_api import OrderApiClient
from orderpulse.session import RealtimeSession


@pytest.fixture()
def make_session(config, transports, scheduler, toaster, api_stub):
    sessions = []

    def build(**overrides):
        cfg = config.model_copy(update=overrides)
        session = RealtimeSession(
            cfg,
            transport_factory=transports,
            toaster=toaster,
            call_later=scheduler,
            api=OrderApiClient(cfg.api_url, token=cfg.token, transport=httpx.MockTransport(api_stub)),
        )
        sessions.append(session)
        return session

    return build


@pytest.mark.asyncio
async def test_start_connects_with_configured_token(make_session, transports):
    session = make_session()
    session.start()

    assert len(transports.created) == 1
    assert transports.last.url == "ws://shop.test/ws"
    assert transports.last.token == "tok-1"
    await session.close()


@pytest.mark.asyncio
async def test_order_created_reaches_orders_feed_and_toast(make_session, transports, toaster):
    async with make_session() as session:
        transports.last.fire(CONNECT)
        transports.last.fire(CUSTOMER_ORDER_UPDATE, {
            "type": "order_created",
            "order": make_order("a1"),
            "message": "Your order #ORD-a1 has been placed successfully",
        })

        assert [o.id for o in session.orders.orders] == ["a1"]
        assert session.notifications.unread_count == 1
        assert toaster.messages == ["Your order #ORD-a1 has been placed successfully"]


@pytest.mark.asyncio
async def test_customer_notification_is_recorded(make_session, transports):
    async with make_session() as session:
        transports.last.fire(CONNECT)
        transports.last.fire(CUSTOMER_NOTIFICATION, {"type": "general", "message": "Weekend sale"})

        assert session.notifications.notifications[0].message == "Weekend sale"
        assert session.orders.orders == []


@pytest.mark.asyncio
async def test_deltas_and_delivery_updates_are_routed(make_session, transports, toaster):
    async with make_session() as session:
        transports.last.fire(CONNECT)
        transports.last.fire(SINGLE_ORDER_UPDATE, {"operation": "created", "order": make_order("a1")})
        transports.last.fire(SINGLE_ORDER_UPDATE, {
            "operation": "updated",
            "orderId": "a1",
            "changes": {"status": "driver_assigned"},
        })
        transports.last.fire(DELIVERY_UPDATE, {
            "type": "delivery_tracking_update",
            "orderId": "a1",
            "status": "driver_assigned",
            "orderType": "delivery",
        })
        transports.last.fire(ORDER_STATS_UPDATE, {"stats": {"total": 1}})

        assert session.orders.get_order_by_id("a1").status == "driver_assigned"
        assert session.orders.get_delivery_info("a1").status == "driver_assigned"
        assert session.orders.order_stats == {"total": 1}
        # Delivery updates are recorded in the feed without a toast
        assert session.notifications.notifications[0].type == "delivery_tracking_update"
        assert toaster.shown == []


@pytest.mark.asyncio
async def test_focused_room_is_joined_on_every_connect(make_session, transports, scheduler):
    async with make_session() as session:
        session.orders.set_current_order_for_tracking(make_order("a1"))
        assert transports.last.sent == []

        transports.last.fire(CONNECT)
        assert transports.last.sent == [(JOIN_ORDER_ROOM, "a1")]

        transports.last.fire(DISCONNECT, TRANSPORT_CLOSE)
        scheduler.fire_next()
        transports.last.fire(CONNECT)
        assert transports.last.sent == [(JOIN_ORDER_ROOM, "a1")]
        assert len(transports.created) == 2


@pytest.mark.asyncio
async def test_tracking_an_order_end_to_end(make_session, transports, api_stub):
    api_stub.orders["a1"] = make_order("a1", status="processing")

    async with make_session() as session:
        transports.last.fire(CONNECT)
        await session.tracker.start_tracking("a1")
        transports.last.fire(SINGLE_ORDER_UPDATE, {
            "operation": "updated",
            "orderId": "a1",
            "changes": {"status": "in_transit"},
        })

        assert transports.last.sent == [(JOIN_ORDER_ROOM, "a1")]
        assert session.tracker.order.status == "in_transit"
        assert session.tracker.summary()["progress"] == 87.5


@pytest.mark.asyncio
async def test_load_order_history(make_session, api_stub):
    api_stub.orders["b"] = make_order("b")
    api_stub.orders["a"] = make_order("a")

    async with make_session() as session:
        assert await session.load_order_history() == 2
        assert [o.id for o in session.orders.orders] == ["b", "a"]


@pytest.mark.asyncio
async def test_unknown_updates_are_dropped_by_default(make_session, transports, api_stub):
    api_stub.orders["a1"] = make_order("a1", status="processing")

    async with make_session() as session:
        transports.last.fire(CONNECT)
        transports.last.fire(SINGLE_ORDER_UPDATE, {"operation": "updated", "orderId": "a1", "changes": {}})

        assert session.orders.orders == []
        assert api_stub.requests == []


@pytest.mark.asyncio
async def test_backfill_fetches_unknown_orders_when_enabled(make_session, transports, api_stub):
    api_stub.orders["a1"] = make_order("a1", status="processing")

    async with make_session(backfill_unknown_orders=True) as session:
        transports.last.fire(CONNECT)
        transports.last.fire(SINGLE_ORDER_UPDATE, {"operation": "updated", "orderId": "a1", "changes": {}})
        await asyncio.gather(*session._backfills)

        assert session.orders.get_order_by_id("a1").status == "processing"


@pytest.mark.asyncio
async def test_logout_and_login(make_session, transports):
    async with make_session() as session:
        transports.last.fire(CONNECT)

        session.set_token(None)
        assert session.connection.state == ConnectionState.DISCONNECTED

        session.set_token("tok-2")
        transports.last.fire(CONNECT)
        transports.last.fire(CUSTOMER_NOTIFICATION, {"message": "welcome back"})

        assert transports.last.token == "tok-2"
        assert session.notifications.notifications[0].message == "welcome back"


@pytest.mark.asyncio
async def test_close_tears_everything_down(make_session, transports):
    session = make_session()
    session.start()
    transports.last.fire(CONNECT)

    await session.close()

    assert transports.last.closed
    assert session.connection.listener_count() == 0
    assert session.connection.state == ConnectionState.DISCONNECTED

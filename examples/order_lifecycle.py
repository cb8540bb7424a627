#!/usr/bin/env python3
"""
orderpulse lifecycle demo — push one order through its statuses and watch it arrive.

Publishes created → processing → ready_for_delivery → driver_assigned →
in_transit → delivered through Redis while a RealtimeSession, connected to
the relay over a real websocket, tracks the order and prints what it sees.

Run with: python examples/order_lifecycle.py

Requires: pip install -e .
Relay must be running:  orderpulse serve  (Redis at ORDERPULSE_REDIS_URL)
"""

import asyncio
import sys
import uuid

import httpx

from orderpulse.auth.jwt import create_access_token
from orderpulse.config import settings
from orderpulse.realtime.pubsub import close_redis, init_redis
from orderpulse.services.order_events import OrderEventEmitter
from orderpulse.session import RealtimeSession

RELAY = f"http://localhost:{settings.port}"
STEPS = ["processing", "ready_for_delivery", "driver_assigned", "in_transit", "delivered"]


def check_relay() -> None:
    try:
        resp = httpx.get(f"{RELAY}/api/health", timeout=5)
    except httpx.ConnectError:
        print(f"ERROR: Relay not reachable at {RELAY}")
        print("Start it with:  orderpulse serve")
        sys.exit(1)
    health = resp.json()
    print(f"  Relay: {'✓' if health['server'] == 'ok' else '✗'}")
    print(f"  Redis: {'✓' if health['redis'] == 'ok' else '✗'}")
    if health["redis"] != "ok":
        sys.exit(1)


async def main():
    print("Checking relay health...")
    check_relay()

    customer_id = f"demo-{uuid.uuid4().hex[:6]}"
    order = {
        "_id": uuid.uuid4().hex[:24],
        "orderNumber": "DEMO-1001",
        "status": "pending",
        "orderType": "delivery",
        "customer": customer_id,
        "items": [{"product": "Single Malt 12yo", "quantity": 1}],
        "total": 64.99,
    }

    await init_redis()
    emitter = OrderEventEmitter()
    config = settings.model_copy(update={
        "token": create_access_token(customer_id),
        "socket_url": f"ws://localhost:{settings.port}/ws",
    })

    # The REST API is not part of the demo; seed the session from the created event instead
    async with RealtimeSession(config) as session:
        session.orders.subscribe(
            lambda orders: print(f"   order {order['orderNumber']}: {orders.current_order.status}")
            if orders.current_order else None
        )
        await asyncio.sleep(1)
        print(f"\n1. Connected: {session.connection.is_connected}")

        print("\n2. Creating order...")
        await emitter.order_created(order)
        await asyncio.sleep(0.5)
        session.orders.set_current_order_for_tracking(session.orders.get_order_by_id(order["_id"]))
        await asyncio.sleep(0.5)

        print("\n3. Moving through statuses...")
        previous = "pending"
        for status in STEPS:
            order["status"] = status
            await emitter.order_updated(order, {"status": status}, previous_status=previous)
            previous = status
            await asyncio.sleep(0.5)

        print(f"\n4. Notifications ({session.notifications.unread_count} unread):")
        for n in session.notifications.notifications:
            print(f"   [{n.type}] {n.message}")

    await close_redis()
    print("\n✓ Done")


if __name__ == "__main__":
    asyncio.run(main())

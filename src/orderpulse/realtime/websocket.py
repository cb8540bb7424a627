"""WebSocket endpoint — real-time order events for storefront clients.

Learn: Each client connects to /ws?token=JWT. The handler:
1. Authenticates via the JWT query param; `sub` is the customer id
2. Subscribes to the customer's Redis channel
3. Subscribes/unsubscribes per-order rooms on join_order_room/leave_order_room
4. Forwards every Redis message to the WebSocket client

This is a long-lived connection — one per signed-in browser tab.
"""

import asyncio
from datetime import datetime, timezone

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from orderpulse.auth.jwt import TokenError, verify_token
from orderpulse.events.types import (
    CONNECTION_STATUS,
    JOIN_ORDER_ROOM,
    LEAVE_ORDER_ROOM,
    PING,
    PONG,
)
from orderpulse.realtime.frames import FrameError, decode_frame, encode_frame
from orderpulse.realtime.pubsub import customer_channel, get_redis, order_channel

logger = structlog.get_logger()
router = APIRouter()


@router.websocket("/ws")
async def customer_websocket(websocket: WebSocket):
    """WebSocket endpoint for a customer's order events.

    Learn: Two concurrent tasks run:
    1. Redis listener — reads from pub/sub, sends to WebSocket
    2. Client listener — reads room joins/leaves and pings from the client

    When either side disconnects, both tasks are cancelled cleanly.
    """
    # ── Authentication ──────────────────────────────────────
    token = websocket.query_params.get("token")
    if not token:
        await websocket.close(code=4001, reason="Authentication required")
        return
    try:
        claims = verify_token(token)
    except TokenError:
        await websocket.close(code=4001, reason="Invalid or expired token")
        return
    customer_id = str(claims["sub"])

    # ── Connection accepted ─────────────────────────────────
    await websocket.accept()

    r = get_redis()
    pubsub = r.pubsub()
    await pubsub.subscribe(customer_channel(customer_id))
    rooms: set[str] = set()
    logger.info("orderpulse.ws.connected", customer_id=customer_id)

    await websocket.send_text(encode_frame(CONNECTION_STATUS, {
        "type": "connected",
        "message": "Connected to real-time order updates",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }))

    async def redis_listener():
        """Forward Redis messages to the WebSocket client."""
        try:
            async for message in pubsub.listen():
                if message["type"] == "message":
                    await websocket.send_text(message["data"])
        except asyncio.CancelledError:
            pass

    async def client_listener():
        """Handle room membership and pings from the client."""
        try:
            while True:
                raw = await websocket.receive_text()
                try:
                    event, data = decode_frame(raw)
                except FrameError:
                    continue
                if event == JOIN_ORDER_ROOM and data:
                    channel = order_channel(str(data))
                    if channel not in rooms:
                        rooms.add(channel)
                        await pubsub.subscribe(channel)
                        logger.info("orderpulse.ws.room_joined", customer_id=customer_id, order_id=str(data))
                elif event == LEAVE_ORDER_ROOM and data:
                    channel = order_channel(str(data))
                    if channel in rooms:
                        rooms.discard(channel)
                        await pubsub.unsubscribe(channel)
                        logger.info("orderpulse.ws.room_left", customer_id=customer_id, order_id=str(data))
                elif event == PING:
                    await websocket.send_text(encode_frame(PONG))
        except (WebSocketDisconnect, asyncio.CancelledError):
            pass

    redis_task = asyncio.create_task(redis_listener())
    client_task = asyncio.create_task(client_listener())

    try:
        # Wait for either to finish (usually client disconnect)
        done, pending = await asyncio.wait(
            [redis_task, client_task],
            return_when=asyncio.FIRST_COMPLETED,
        )
        for task in pending:
            task.cancel()
    finally:
        await pubsub.unsubscribe()
        await pubsub.aclose()
        if websocket.client_state == WebSocketState.CONNECTED:
            await websocket.close()
        logger.info("orderpulse.ws.disconnected", customer_id=customer_id, rooms=len(rooms))

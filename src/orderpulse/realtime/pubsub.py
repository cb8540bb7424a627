"""Redis pub/sub — order event broadcasting between emitters and websockets.

Learn: Redis pub/sub is fire-and-forget. If no one is listening, the message
is lost. That's fine for order status pushes: the client reconciles against
REST snapshots whenever it (re)opens an order.

Channel naming:
    orderpulse:customer:{customer_id}   customer-scoped events
    orderpulse:order:{order_id}         per-order room (single_order_update)

Messages on every channel are already websocket frames
({"type": ..., "data": ...}), so the relay forwards them untouched.
"""

from typing import Any, Optional

import redis.asyncio as aioredis

from orderpulse.config import settings
from orderpulse.realtime.frames import encode_frame

# Global Redis connection pool (initialized in lifespan)
_redis: Optional[aioredis.Redis] = None


async def init_redis() -> aioredis.Redis:
    """Initialize the Redis connection pool."""
    global _redis
    _redis = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
    )
    # Verify connection
    await _redis.ping()
    return _redis


async def close_redis() -> None:
    """Close the Redis connection pool."""
    global _redis
    if _redis:
        await _redis.aclose()
        _redis = None


def get_redis() -> aioredis.Redis:
    """Get the Redis connection (must be initialized first)."""
    if _redis is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis


def customer_channel(customer_id: str) -> str:
    return f"orderpulse:customer:{customer_id}"


def order_channel(order_id: str) -> str:
    return f"orderpulse:order:{order_id}"


async def publish_event(
    channel: str,
    event_type: str,
    data: Any,
    redis: Optional[aioredis.Redis] = None,
) -> None:
    """Publish one event frame to a channel."""
    r = redis or get_redis()
    await r.publish(channel, encode_frame(event_type, data))

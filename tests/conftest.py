"""Test fixtures — fake transports, a manual scheduler, recording sinks.

Learn: nothing in the client pipeline needs a network or a real clock.
The ConnectionManager takes a transport factory and a `call_later`, so tests
hand it fakes and drive the connection by hand:

    manager.connect()
    transports.last.fire("connect_error", OSError("refused"))
    scheduler.fire_next()          # the retry the manager scheduled

The relay side swaps the Redis pool for an in-memory FakeRedis.
"""

import asyncio
from typing import Any, Optional

import httpx
import pytest
import pytest_asyncio

from orderpulse.config import Settings
from orderpulse.events.types import CONNECT
from orderpulse.realtime.connection import ConnectionManager
from orderpulse.services.order_api import OrderApiClient


# ─── Client-side fakes ───────────────────────────────────


class FakeTransport:
    def __init__(self, url: str, token: Optional[str], sink):
        self.url = url
        self.token = token
        self.sink = sink
        self.opened = False
        self.closed = False
        self.sent: list[tuple[str, Any]] = []

    @property
    def connected(self) -> bool:
        return self.opened and not self.closed

    def open(self) -> None:
        self.opened = True

    def close(self) -> None:
        self.closed = True

    def emit(self, event: str, data: Any = None) -> None:
        self.sent.append((event, data))

    def fire(self, event: str, data: Any = None) -> None:
        """Simulate something arriving from the socket."""
        self.sink(event, data)


class FakeTransportFactory:
    def __init__(self):
        self.created: list[FakeTransport] = []

    def __call__(self, url, token, sink) -> FakeTransport:
        transport = FakeTransport(url, token, sink)
        self.created.append(transport)
        return transport

    @property
    def last(self) -> FakeTransport:
        return self.created[-1]


class FakeTimer:
    def __init__(self, delay: float, callback):
        self.delay = delay
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    """Stands in for loop.call_later; timers fire only when the test says so."""

    def __init__(self):
        self.timers: list[FakeTimer] = []

    def __call__(self, delay: float, callback) -> FakeTimer:
        timer = FakeTimer(delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def delays(self) -> list[float]:
        return [t.delay for t in self.timers]

    @property
    def pending(self) -> list[FakeTimer]:
        return [t for t in self.timers if not t.cancelled and not t.fired]

    def fire_next(self) -> None:
        timer = self.pending[0]
        timer.fired = True
        timer.callback()


class RecordingToaster:
    def __init__(self):
        self.shown: list[tuple[str, str, Optional[float]]] = []

    def show(self, message: str, *, level: str = "info", auto_close: Optional[float] = None) -> None:
        self.shown.append((message, level, auto_close))

    @property
    def messages(self) -> list[str]:
        return [m for m, _, _ in self.shown]


class RecordingRooms:
    """RoomSubscriptions stand-in that is always connected."""

    def __init__(self):
        self.joined: list[str] = []
        self.left: list[str] = []

    def join_order_room(self, order_id: str) -> bool:
        self.joined.append(order_id)
        return True

    def leave_order_room(self, order_id: str) -> bool:
        self.left.append(order_id)
        return True


def make_order(order_id: str = "a1", status: str = "pending", **extra) -> dict:
    """An order as the storefront serializes it (camelCase, Mongo-style _id)."""
    order = {
        "_id": order_id,
        "orderNumber": f"ORD-{order_id}",
        "status": status,
        "items": [{"product": "p1", "quantity": 2}],
        "total": 42.5,
        "orderType": "delivery",
        "createdAt": "2024-05-01T12:00:00+00:00",
        "customer": "cust-1",
    }
    order.update(extra)
    return order


@pytest.fixture()
def transports():
    return FakeTransportFactory()


@pytest.fixture()
def scheduler():
    return FakeScheduler()


@pytest.fixture()
def toaster():
    return RecordingToaster()


@pytest.fixture()
def rooms():
    return RecordingRooms()


@pytest.fixture()
def manager(transports, scheduler, toaster):
    return ConnectionManager(
        "ws://shop.test/ws",
        token="tok-1",
        transport_factory=transports,
        call_later=scheduler,
        toaster=toaster,
    )


@pytest.fixture()
def connected(manager, transports):
    """A manager whose first transport completed its handshake."""
    manager.connect()
    transports.last.fire(CONNECT)
    return manager


@pytest.fixture()
def config():
    return Settings(
        api_url="http://shop.test/api",
        token="tok-1",
        environment="development",
    )


# ─── REST fakes ──────────────────────────────────────────


class OrderApiStub:
    """Serves GET /orders/{id} and /orders/me from an in-memory dict."""

    def __init__(self, orders: Optional[dict[str, dict]] = None):
        self.orders = orders or {}
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path.removeprefix("/api")
        if path == "/orders/me":
            return httpx.Response(200, json={"success": True, "orders": list(self.orders.values())})
        order_id = path.removeprefix("/orders/")
        if order_id in self.orders:
            return httpx.Response(200, json={"success": True, "order": self.orders[order_id]})
        return httpx.Response(404, json={"success": False, "message": "Order not found"})


@pytest.fixture()
def api_stub():
    return OrderApiStub()


@pytest_asyncio.fixture()
async def api(api_stub):
    client = OrderApiClient(
        "http://shop.test/api",
        token="tok-1",
        transport=httpx.MockTransport(api_stub),
    )
    yield client
    await client.aclose()


# ─── Relay fakes ─────────────────────────────────────────


class FakePubSub:
    def __init__(self, backlog: Optional[list[dict]] = None):
        self.channels: list[str] = []
        self.backlog = list(backlog or [])
        self.closed = False

    async def subscribe(self, *channels: str) -> None:
        self.channels.extend(channels)

    async def unsubscribe(self, *channels: str) -> None:
        if not channels:
            self.channels.clear()
        for channel in channels:
            self.channels.remove(channel)

    async def listen(self):
        for message in self.backlog:
            yield message
        # Nothing else arrives; block until cancelled
        await asyncio.Event().wait()

    async def aclose(self) -> None:
        self.closed = True


class FakeRedis:
    def __init__(self, backlog: Optional[list[dict]] = None):
        self.published: list[tuple[str, str]] = []
        self.pubsubs: list[FakePubSub] = []
        self.backlog = backlog

    async def ping(self) -> bool:
        return True

    async def publish(self, channel: str, message: str) -> int:
        self.published.append((channel, message))
        return 1

    def pubsub(self) -> FakePubSub:
        ps = FakePubSub(self.backlog)
        self.pubsubs.append(ps)
        return ps


@pytest.fixture()
def fake_redis(monkeypatch):
    from orderpulse.realtime import pubsub

    redis = FakeRedis()
    monkeypatch.setattr(pubsub, "_redis", redis)
    return redis

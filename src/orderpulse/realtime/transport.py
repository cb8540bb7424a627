"""Websocket transport — one physical connection to the event relay.

Learn: a transport is deliberately dumb. It opens one socket, reports what
happens through a single `sink(event, data)` callback, and never retries.
Reconnect policy belongs to the ConnectionManager, which builds a fresh
transport for each attempt. That keeps exactly one reconnect authority.

Events reported to the sink:
- "connect"           handshake completed
- "connect_error"     handshake failed (data = the exception)
- "disconnect"        an open socket closed (data = reason string)
- anything else       a decoded inbound frame (data = payload)

Two tasks run while the socket is open, mirroring the relay endpoint:
1. reader — decodes frames and hands them to the sink in arrival order
2. writer — drains the outbound queue so emits are sent in call order

A transport closed by its owner reports nothing further.
"""

import asyncio
from typing import Any, Callable, Optional, Protocol
from urllib.parse import urlencode, urlsplit, urlunsplit

import structlog
import websockets
from websockets.exceptions import WebSocketException

from orderpulse.events.types import (
    CONNECT,
    CONNECT_ERROR,
    DISCONNECT,
    SERVER_DISCONNECT,
    TRANSPORT_CLOSE,
)
from orderpulse.realtime.frames import FrameError, decode_frame, encode_frame

logger = structlog.get_logger()

EventSink = Callable[[str, Any], None]


class Transport(Protocol):
    """What the ConnectionManager needs from a connection."""

    @property
    def connected(self) -> bool: ...

    def open(self) -> None: ...

    def close(self) -> None: ...

    def emit(self, event: str, data: Any = None) -> None: ...


TransportFactory = Callable[[str, Optional[str], EventSink], Transport]

# Normal closure initiated by the server
_NORMAL_CLOSE = 1000


def with_token(url: str, token: Optional[str]) -> str:
    """Attach the auth token as a `token` query parameter."""
    if not token:
        return url
    parts = urlsplit(url)
    query = f"{parts.query}&" if parts.query else ""
    query += urlencode({"token": token})
    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))


class WebSocketTransport:
    """Transport over a `websockets` client connection."""

    def __init__(
        self,
        url: str,
        token: Optional[str],
        sink: EventSink,
        *,
        open_timeout: float = 20.0,
    ):
        self.url = url
        self._token = token
        self._sink = sink
        self.open_timeout = open_timeout
        self._ws = None
        self._task: Optional[asyncio.Task] = None
        self._outbox: asyncio.Queue[str] = asyncio.Queue()
        self._closing = False

    @property
    def connected(self) -> bool:
        return self._ws is not None and not self._closing

    def open(self) -> None:
        """Start the handshake in the background. Must be called inside a running loop."""
        if self._task is not None:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    def close(self) -> None:
        self._closing = True
        if self._task is not None and not self._task.done():
            self._task.cancel()

    def emit(self, event: str, data: Any = None) -> None:
        self._outbox.put_nowait(encode_frame(event, data))

    # ─── Connection loop ──────────────────────────────────

    async def _run(self) -> None:
        try:
            ws = await websockets.connect(
                with_token(self.url, self._token),
                open_timeout=self.open_timeout,
            )
        except (OSError, TimeoutError, WebSocketException) as e:
            if not self._closing:
                self._sink(CONNECT_ERROR, e)
            return

        self._ws = ws
        self._sink(CONNECT, None)

        reader = asyncio.create_task(self._reader(ws))
        writer = asyncio.create_task(self._writer(ws))
        try:
            done, pending = await asyncio.wait(
                [reader, writer],
                return_when=asyncio.FIRST_COMPLETED,
            )
            for task in pending:
                task.cancel()
            for task in done:
                if not task.cancelled() and task.exception() is not None:
                    logger.debug("orderpulse.transport.closed_with_error", error=str(task.exception()))
        except asyncio.CancelledError:
            reader.cancel()
            writer.cancel()
            await ws.close()
            raise
        finally:
            self._ws = None

        await ws.close()
        if not self._closing:
            reason = SERVER_DISCONNECT if ws.close_code == _NORMAL_CLOSE else TRANSPORT_CLOSE
            self._sink(DISCONNECT, reason)

    async def _reader(self, ws) -> None:
        async for raw in ws:
            try:
                event, data = decode_frame(raw)
            except FrameError as e:
                logger.warning("orderpulse.transport.bad_frame", error=str(e))
                continue
            self._sink(event, data)

    async def _writer(self, ws) -> None:
        while True:
            frame = await self._outbox.get()
            await ws.send(frame)


def websocket_transport_factory(open_timeout: float = 20.0) -> TransportFactory:
    """Build a TransportFactory producing WebSocketTransport instances."""

    def factory(url: str, token: Optional[str], sink: EventSink) -> Transport:
        return WebSocketTransport(url, token, sink, open_timeout=open_timeout)

    return factory

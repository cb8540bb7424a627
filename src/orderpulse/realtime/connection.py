"""Connection manager — the single owner of the event-stream connection.

Learn: one ConnectionManager per session, constructed by the session's root
composition (see orderpulse.session), never a module-level global. It is the
only reconnect authority: stores and reconcilers listen to its events and
status, they never retry on their own.

State machine:

    disconnected → connecting → connected
    connected → reconnecting → connected        (retry succeeded)
    reconnecting → disconnected                 (retry budget exhausted)

Reconnect policy:
- Triggered by `connect_error` or by a `disconnect` whose reason is not
  deliberate ("io client disconnect", "io server disconnect").
- Delay for the n-th retry (n from 0) is min(base × 2^n, cap).
- The attempt counter counts retries and resets on every successful connect.
  A dropped connection is not itself a failed attempt.
- When the `max_attempts`-th retry fails the manager gives up, marks the
  status `lost` and raises exactly one "Connection lost" alert. Nothing
  retries after that, and registering a listener does not reconnect. Only an
  explicit connect() or reconnect() starts over with a fresh budget.
- At most one retry timer is pending at any time.

Failures never raise to callers. They are recorded on the status (error
message + timestamp) and fanned out to listeners as lifecycle events.
"""

import asyncio
import functools
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional

import structlog

from orderpulse.events.types import (
    CLIENT_DISCONNECT,
    CONNECT,
    CONNECT_ERROR,
    DELIBERATE_DISCONNECT_REASONS,
    DISCONNECT,
    RECONNECT,
    RECONNECT_ERROR,
)
from orderpulse.realtime.observable import Observable
from orderpulse.realtime.transport import Transport, TransportFactory, websocket_transport_factory
from orderpulse.services.alerts import LogToaster, Toaster

logger = structlog.get_logger()

Handler = Callable[[Any], None]
CallLater = Callable[[float, Callable[[], None]], Any]

CONNECTION_LOST_MESSAGE = "Connection lost. Please refresh the page."


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


@dataclass(frozen=True)
class ConnectionStatus:
    """Observable snapshot of the connection, handed to status observers."""

    state: ConnectionState
    attempts: int = 0
    error: Optional[str] = None
    error_at: Optional[datetime] = None
    next_retry_in: Optional[float] = None
    lost: bool = False


def backoff_delay(attempt: int, base: float = 1.0, cap: float = 10.0) -> float:
    """Delay before retry number `attempt` (0-based): min(base × 2^attempt, cap)."""
    return min(base * (2 ** attempt), cap)


def _loop_call_later(delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
    return asyncio.get_running_loop().call_later(delay, callback)


class ConnectionManager(Observable):
    """Owns one transport at a time, its listeners and its reconnect timer."""

    def __init__(
        self,
        url: str,
        *,
        token: Optional[str] = None,
        transport_factory: Optional[TransportFactory] = None,
        max_attempts: int = 5,
        base_delay: float = 1.0,
        max_delay: float = 10.0,
        call_later: Optional[CallLater] = None,
        toaster: Optional[Toaster] = None,
    ):
        super().__init__()
        self.url = url
        self._token = token
        self._factory = transport_factory or websocket_transport_factory()
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._call_later = call_later or _loop_call_later
        self._toaster = toaster or LogToaster()

        self._transport: Optional[Transport] = None
        self._generation = 0
        self._listeners: dict[str, list[Handler]] = {}
        self._timer: Optional[Any] = None

        self._state = ConnectionState.DISCONNECTED
        self._attempts = 0
        self._error: Optional[str] = None
        self._error_at: Optional[datetime] = None
        self._next_retry_in: Optional[float] = None
        self._lost = False

    # ─── Read-only state ──────────────────────────────────

    @property
    def token(self) -> Optional[str]:
        return self._token

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    @property
    def transport(self) -> Optional[Transport]:
        return self._transport

    @property
    def status(self) -> ConnectionStatus:
        return ConnectionStatus(
            state=self._state,
            attempts=self._attempts,
            error=self._error,
            error_at=self._error_at,
            next_retry_in=self._next_retry_in,
            lost=self._lost,
        )

    # ─── Lifecycle ────────────────────────────────────────

    def connect(self) -> Optional[Transport]:
        """Open the connection if none is live. Returns the transport handle.

        Without a token this logs and returns None: anonymous sessions do
        not receive push updates.
        """
        if not self._token:
            logger.info("orderpulse.connection.no_token")
            return None
        if self._transport is not None and self._state != ConnectionState.DISCONNECTED:
            return self._transport
        # A fresh connect gets a fresh retry budget
        self._cancel_timer()
        self._attempts = 0
        self._lost = False
        self._open_transport(ConnectionState.CONNECTING)
        return self._transport

    def disconnect(self) -> None:
        """Tear down the connection and drop every registered listener. Idempotent."""
        self._teardown()
        self._listeners.clear()

    def reconnect(self) -> Optional[Transport]:
        """Force a fresh connection. The old transport is closed before the new one opens."""
        logger.info("orderpulse.connection.manual_reconnect")
        self._cancel_timer()
        self._discard_transport()
        self._attempts = 0
        self._lost = False
        self._error = None
        self._error_at = None
        if not self._token:
            logger.info("orderpulse.connection.no_token")
            self._set_state(ConnectionState.DISCONNECTED)
            return None
        self._open_transport(ConnectionState.CONNECTING)
        return self._transport

    def set_token(self, token: Optional[str]) -> None:
        """Login/logout hook. Listeners survive so the next login resumes delivery."""
        if token == self._token:
            return
        self._token = token
        if not token:
            logger.info("orderpulse.connection.token_removed")
            self._teardown()
            return
        if self._listeners or self._transport is not None:
            self.reconnect()

    # ─── Listeners + emit ─────────────────────────────────

    def on(self, event: str, handler: Handler) -> None:
        """Register a handler. Connects lazily when no transport exists yet.

        A lost connection stays down: only `reconnect()` starts it again.
        """
        self._listeners.setdefault(event, []).append(handler)
        if self._transport is None and not self._lost:
            self.connect()

    def off(self, event: str, handler: Handler) -> None:
        handlers = self._listeners.get(event)
        if handlers and handler in handlers:
            handlers.remove(handler)

    def listener_count(self, event: Optional[str] = None) -> int:
        if event is not None:
            return len(self._listeners.get(event, []))
        return sum(len(h) for h in self._listeners.values())

    def emit(self, event: str, data: Any = None) -> bool:
        """Send an event to the server. Returns False (and drops it) unless connected."""
        if not self.is_connected or self._transport is None:
            logger.debug("orderpulse.connection.emit_dropped", event_name=event)
            return False
        self._transport.emit(event, data)
        return True

    # ─── Transport events ─────────────────────────────────

    def _handle_event(self, generation: int, event: str, data: Any) -> None:
        if generation != self._generation:
            logger.debug("orderpulse.connection.stale_event", event_name=event)
            return

        if event == CONNECT:
            retried_after = self._attempts
            self._on_connected()
            self._fan_out(CONNECT, data)
            if retried_after:
                self._fan_out(RECONNECT, retried_after)
            return

        if event == CONNECT_ERROR:
            retrying = self._state == ConnectionState.RECONNECTING
            self._on_connect_error(data)
            self._fan_out(CONNECT_ERROR, data)
            if retrying:
                self._fan_out(RECONNECT_ERROR, data)
            return

        if event == DISCONNECT:
            self._on_disconnected(data)

        self._fan_out(event, data)

    def _on_connected(self) -> None:
        self._cancel_timer()
        if self._attempts:
            logger.info("orderpulse.connection.reconnected", attempts=self._attempts)
        else:
            logger.info("orderpulse.connection.connected", url=self.url)
        self._attempts = 0
        self._error = None
        self._error_at = None
        self._lost = False
        self._set_state(ConnectionState.CONNECTED)

    def _on_connect_error(self, error: Any) -> None:
        self._record_error(error)
        logger.warning("orderpulse.connection.connect_error", error=self._error, attempts=self._attempts)
        self._schedule_retry()

    def _on_disconnected(self, reason: Any) -> None:
        logger.info("orderpulse.connection.disconnected", reason=reason)
        if reason in DELIBERATE_DISCONNECT_REASONS:
            self._cancel_timer()
            self._discard_transport()
            self._set_state(ConnectionState.DISCONNECTED)
            return
        self._schedule_retry()

    def _fan_out(self, event: str, data: Any) -> None:
        for handler in self._listeners.get(event, []).copy():
            try:
                handler(data)
            except Exception:
                logger.exception("orderpulse.connection.handler_failed", event_name=event)

    # ─── Retry scheduling ─────────────────────────────────

    def _schedule_retry(self) -> None:
        if self._timer is not None:
            return
        if self._attempts >= self.max_attempts:
            self._give_up()
            return
        self._attempts += 1
        delay = backoff_delay(self._attempts - 1, self.base_delay, self.max_delay)
        self._next_retry_in = delay
        logger.info("orderpulse.connection.retry_scheduled", attempt=self._attempts, delay=delay)
        self._timer = self._call_later(delay, self._retry)
        self._set_state(ConnectionState.RECONNECTING)

    def _retry(self) -> None:
        self._timer = None
        self._next_retry_in = None
        if not self._token:
            self._teardown()
            return
        self._open_transport(ConnectionState.RECONNECTING)

    def _give_up(self) -> None:
        logger.error(
            "orderpulse.connection.lost",
            attempts=self._attempts,
            error=self._error,
        )
        self._discard_transport()
        self._next_retry_in = None
        self._lost = True
        self._set_state(ConnectionState.DISCONNECTED)
        self._toaster.show(CONNECTION_LOST_MESSAGE, level="error")

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._next_retry_in = None

    # ─── Internals ────────────────────────────────────────

    def _open_transport(self, state: ConnectionState) -> None:
        self._discard_transport()
        self._generation += 1
        sink = functools.partial(self._handle_event, self._generation)
        self._transport = self._factory(self.url, self._token, sink)
        self._set_state(state)
        self._transport.open()

    def _discard_transport(self) -> None:
        if self._transport is None:
            return
        # Bump the generation first so late events from the old transport are ignored
        self._generation += 1
        transport, self._transport = self._transport, None
        try:
            transport.close()
        except Exception:
            logger.exception("orderpulse.connection.close_failed")

    def _teardown(self) -> None:
        self._cancel_timer()
        had_transport = self._transport is not None
        self._discard_transport()
        self._attempts = 0
        self._lost = False
        if had_transport:
            logger.info("orderpulse.connection.closed", reason=CLIENT_DISCONNECT)
        self._set_state(ConnectionState.DISCONNECTED)

    def _record_error(self, error: Any) -> None:
        self._error = str(error) if error is not None else "unknown error"
        self._error_at = datetime.now(timezone.utc)

    def _set_state(self, state: ConnectionState) -> None:
        self._state = state
        self._notify(self.status)

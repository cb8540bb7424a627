"""orderpulse CLI — follow an order live, inspect snapshots, run the relay.

Usage:
    orderpulse watch 665f1c...              # Live status, notifications, connection state
    orderpulse order 665f1c...              # One REST snapshot
    orderpulse serve --port 5001            # Run the websocket relay (uvicorn)

The token and URLs default to ORDERPULSE_TOKEN / ORDERPULSE_API_URL.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import json
import logging
import sys
from typing import Any, Optional

import click
import httpx
import structlog

from orderpulse import __version__
from orderpulse.config import Settings, settings
from orderpulse.events.types import TERMINAL_STATUSES
from orderpulse.realtime.connection import ConnectionState, ConnectionStatus
from orderpulse.services.order_api import OrderApiClient, OrderApiError, OrderNotFoundError
from orderpulse.services.order_tracker import order_progress, status_display

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run(coro):
    """Run an async coroutine from synchronous Click handler.

    Handles nested event loops (e.g. when invoked via Click CliRunner
    inside an existing async context like tests) by offloading to a thread.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        # No running loop: normal CLI invocation
        return asyncio.run(coro)
    else:
        # Already inside an event loop (e.g. test runner), so run in a thread
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()


def _config(token: Optional[str], api_url: Optional[str]) -> Settings:
    update: dict[str, Any] = {}
    if token:
        update["token"] = token
    if api_url:
        update["api_url"] = api_url.rstrip("/")
    return settings.model_copy(update=update)


def _configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    structlog.configure(wrapper_class=structlog.make_filtering_bound_logger(level))


def _pretty_json(data: dict | list) -> str:
    return json.dumps(data, indent=2, default=str)


def _status_color(status: str) -> str:
    """Map order and connection states to click colors."""
    colors = {
        "pending": "yellow",
        "processing": "yellow",
        "ready_for_pickup": "cyan",
        "ready_for_delivery": "cyan",
        "driver_assigned": "blue",
        "picked_up": "blue",
        "in_transit": "magenta",
        "delivered": "green",
        "cancelled": "red",
        "connected": "green",
        "connecting": "yellow",
        "reconnecting": "yellow",
        "disconnected": "red",
    }
    return colors.get(status, "white")


class ClickToaster:
    """Toaster that prints alerts to the terminal."""

    def show(self, message: str, *, level: str = "info", auto_close: Optional[float] = None) -> None:
        fg = "red" if level == "error" else "cyan"
        click.secho(f"  ! {message}", fg=fg, err=level == "error")


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="orderpulse")
def main():
    """orderpulse — real-time order status for the storefront."""


# ---------------------------------------------------------------------------
# orderpulse watch
# ---------------------------------------------------------------------------


@main.command()
@click.argument("order_id")
@click.option("--token", envvar="ORDERPULSE_TOKEN", help="Customer JWT (or set ORDERPULSE_TOKEN)")
@click.option("--api-url", help="Storefront API base URL (or set ORDERPULSE_API_URL)")
@click.option("--verbose", "-v", is_flag=True, help="Show connection debug logs")
def watch(order_id: str, token: Optional[str], api_url: Optional[str], verbose: bool):
    """Follow one order live until it is delivered or cancelled.

    Exits 0 on a terminal status, 1 if the order cannot be loaded or the
    connection is lost for good.
    """
    _configure_logging(verbose)
    config = _config(token, api_url)
    if not config.token:
        click.secho("Error: --token required (or set ORDERPULSE_TOKEN env var)", fg="red", err=True)
        sys.exit(1)
    sys.exit(_run(_watch_impl(order_id, config)))


async def _watch_impl(order_id: str, config: Settings, **session_kwargs: Any) -> int:
    from orderpulse.session import RealtimeSession

    done = asyncio.Event()
    outcome = {"code": 0}
    last = {"state": None, "status": None, "seen": set()}

    def on_status(status: ConnectionStatus) -> None:
        if status.state != last["state"]:
            last["state"] = status.state
            line = click.style(status.state.value, fg=_status_color(status.state.value))
            if status.state == ConnectionState.RECONNECTING and status.next_retry_in:
                line += f" (attempt {status.attempts}, retry in {status.next_retry_in:.0f}s)"
            click.echo(f"  connection: {line}")
        if status.lost:
            outcome["code"] = 1
            done.set()

    def on_orders(_reconciler: Any) -> None:
        order = session.tracker.order
        if order is None or order.status == last["status"]:
            return
        last["status"] = order.status
        label = click.style(status_display(order.status), fg=_status_color(order.status))
        click.echo(f"  order #{order.order_number or order.id}: {label} ({order_progress(order):.0f}%)")
        if order.status in TERMINAL_STATUSES:
            done.set()

    def on_notifications(store: Any) -> None:
        for n in reversed(store.notifications):
            if n.id not in last["seen"]:
                last["seen"].add(n.id)
                click.echo(f"  notification: {n.message}")

    session = RealtimeSession(config, toaster=ClickToaster(), **session_kwargs)
    session.connection.subscribe(on_status)
    session.orders.subscribe(on_orders)
    session.notifications.subscribe(on_notifications)

    async with session:
        order = await session.tracker.start_tracking(order_id)
        if order is None:
            click.secho(f"Could not load order {order_id}", fg="red", err=True)
            return 1
        click.secho(f"Watching order #{order.order_number or order.id}", bold=True)
        on_orders(session.orders)
        if not done.is_set():
            await done.wait()
    return outcome["code"]


# ---------------------------------------------------------------------------
# orderpulse order
# ---------------------------------------------------------------------------


@main.command()
@click.argument("order_id")
@click.option("--token", envvar="ORDERPULSE_TOKEN", help="Customer JWT (or set ORDERPULSE_TOKEN)")
@click.option("--api-url", help="Storefront API base URL (or set ORDERPULSE_API_URL)")
@click.option("--json", "as_json", is_flag=True, help="Print the raw order as JSON")
def order(order_id: str, token: Optional[str], api_url: Optional[str], as_json: bool):
    """Print one order snapshot from the REST API."""
    sys.exit(_run(_order_impl(order_id, _config(token, api_url), as_json)))


async def _order_impl(
    order_id: str,
    config: Settings,
    as_json: bool,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> int:
    async with OrderApiClient(
        config.api_url,
        token=config.token,
        timeout=config.http_timeout,
        transport=transport,
    ) as api:
        try:
            snapshot = await api.fetch_order_by_id(order_id)
        except OrderNotFoundError:
            click.secho(f"Order {order_id} not found", fg="red", err=True)
            return 1
        except (OrderApiError, httpx.HTTPError) as e:
            click.secho(f"Error: {e}", fg="red", err=True)
            return 1

    if as_json:
        click.echo(_pretty_json(snapshot.model_dump(mode="json")))
        return 0

    status_str = click.style(status_display(snapshot.status), fg=_status_color(snapshot.status))
    click.secho(f"Order #{snapshot.order_number or snapshot.id}", bold=True)
    click.echo(f"  Status:   {status_str} ({order_progress(snapshot):.0f}%)")
    click.echo(f"  Type:     {snapshot.order_type or '—'}")
    click.echo(f"  Items:    {len(snapshot.items)}")
    if snapshot.total is not None:
        click.echo(f"  Total:    ${snapshot.total:.2f}")
    if snapshot.estimated_delivery_time is not None:
        click.echo(f"  ETA:      {snapshot.estimated_delivery_time:%Y-%m-%d %H:%M}")
    return 0


# ---------------------------------------------------------------------------
# orderpulse serve
# ---------------------------------------------------------------------------


@main.command()
@click.option("--host", default=None, help="Bind address (default ORDERPULSE_HOST)")
@click.option("--port", default=None, type=int, help="Port (default ORDERPULSE_PORT)")
@click.option("--reload", is_flag=True, help="Reload on code changes")
def serve(host: Optional[str], port: Optional[int], reload: bool):
    """Run the websocket relay server."""
    import uvicorn

    uvicorn.run(
        "orderpulse.main:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
    )


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    main()

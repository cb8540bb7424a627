"""CLI tests.

Learn: click commands are thin wrappers around async *_impl functions. The
impls take injectable fakes, so most tests await them directly and read the
terminal output through capsys; CliRunner covers argument handling.
"""

import asyncio

import httpx
import pytest
from click.testing import CliRunner
from conftest import make_order

from orderpulse import __version__
from orderpulse.cli.main import _order_impl, _status_color, _watch_impl, main
from orderpulse.events.types import CONNECT, CONNECT_ERROR, SINGLE_ORDER_UPDATE
from orderpulse.services.order_api import OrderApiClient


async def _until(predicate, timeout: float = 2.0) -> None:
    async def poll():
        while not predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(poll(), timeout)


@pytest.fixture()
def stub_api(api_stub):
    return OrderApiClient("http://shop.test/api", token="tok-1", transport=httpx.MockTransport(api_stub))


def test_version():
    result = CliRunner().invoke(main, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_watch_requires_token():
    result = CliRunner().invoke(main, ["watch", "a1"], env={"ORDERPULSE_TOKEN": None})
    assert result.exit_code == 1
    assert "--token required" in result.output


def test_status_colors():
    assert _status_color("delivered") == "green"
    assert _status_color("cancelled") == "red"
    assert _status_color("reconnecting") == "yellow"
    assert _status_color("unheard-of") == "white"


@pytest.mark.asyncio
async def test_order_prints_snapshot(config, api_stub, capsys):
    api_stub.orders["a1"] = make_order("a1", status="ready_for_pickup", orderType="pickup")

    code = await _order_impl("a1", config, False, transport=httpx.MockTransport(api_stub))

    out = capsys.readouterr().out
    assert code == 0
    assert "Order #ORD-a1" in out
    assert "Ready For Pickup" in out
    assert "$42.50" in out


@pytest.mark.asyncio
async def test_order_json(config, api_stub, capsys):
    api_stub.orders["a1"] = make_order("a1")

    code = await _order_impl("a1", config, True, transport=httpx.MockTransport(api_stub))

    assert code == 0
    assert '"order_number": "ORD-a1"' in capsys.readouterr().out


@pytest.mark.asyncio
async def test_order_not_found(config, api_stub, capsys):
    code = await _order_impl("ghost", config, False, transport=httpx.MockTransport(api_stub))

    assert code == 1
    assert "not found" in capsys.readouterr().err


@pytest.mark.asyncio
async def test_watch_exits_when_order_is_delivered(config, transports, scheduler, api_stub, stub_api, capsys):
    api_stub.orders["a1"] = make_order("a1", status="in_transit")
    task = asyncio.create_task(
        _watch_impl("a1", config, transport_factory=transports, call_later=scheduler, api=stub_api)
    )

    await _until(lambda: transports.created)
    transports.last.fire(CONNECT)
    await _until(lambda: transports.last.sent)
    transports.last.fire(SINGLE_ORDER_UPDATE, {
        "operation": "updated",
        "orderId": "a1",
        "changes": {"status": "delivered"},
    })

    assert await asyncio.wait_for(task, 2.0) == 0
    out = capsys.readouterr().out
    assert "Watching order #ORD-a1" in out
    assert "In Transit" in out
    assert "Delivered (100%)" in out
    assert transports.last.closed


@pytest.mark.asyncio
async def test_watch_exits_when_connection_is_lost(config, transports, scheduler, api_stub, stub_api, capsys):
    api_stub.orders["a1"] = make_order("a1", status="processing")
    task = asyncio.create_task(
        _watch_impl("a1", config, transport_factory=transports, call_later=scheduler, api=stub_api)
    )

    await _until(lambda: transports.created)
    for _ in range(6):
        transports.last.fire(CONNECT_ERROR, OSError("connection refused"))
        if scheduler.pending:
            scheduler.fire_next()

    assert await asyncio.wait_for(task, 2.0) == 1
    captured = capsys.readouterr()
    assert "Connection lost. Please refresh the page." in captured.err
    assert "reconnecting" in captured.out


@pytest.mark.asyncio
async def test_watch_unknown_order(config, transports, scheduler, stub_api, capsys):
    code = await _watch_impl("ghost", config, transport_factory=transports, call_later=scheduler, api=stub_api)

    assert code == 1
    assert "Could not load order ghost" in capsys.readouterr().err

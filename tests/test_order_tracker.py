"""Order tracker tests — REST fallback, live copy, progress helpers."""

from datetime import datetime, timedelta, timezone

import pytest
from conftest import make_order

from orderpulse.events.types import OP_CREATED, OP_DELETED, OP_UPDATED
from orderpulse.schemas.order import DeliveryInfo, TrackedOrder
from orderpulse.services.order_reconciler import OrderReconciler
from orderpulse.services.order_tracker import (
    OrderTracker,
    estimated_completion,
    is_active,
    order_progress,
    status_display,
)


@pytest.fixture()
def reconciler(rooms):
    return OrderReconciler(rooms)


@pytest.fixture()
def tracker(reconciler, api):
    t = OrderTracker(reconciler, api)
    reconciler.subscribe(t.touch)
    return t


@pytest.mark.asyncio
async def test_known_order_is_tracked_without_fetching(tracker, reconciler, rooms, api_stub):
    reconciler.apply_delta(OP_CREATED, order=make_order("a1"))

    order = await tracker.start_tracking("a1")

    assert order.id == "a1"
    assert api_stub.requests == []
    assert rooms.joined == ["a1"]
    assert reconciler.current_order.id == "a1"


@pytest.mark.asyncio
async def test_unknown_order_falls_back_to_rest(tracker, reconciler, rooms, api_stub):
    api_stub.orders["a1"] = make_order("a1", status="processing")

    order = await tracker.start_tracking("a1")

    assert order.status == "processing"
    assert reconciler.get_order_by_id("a1") is not None
    assert rooms.joined == ["a1"]


@pytest.mark.asyncio
async def test_failed_fetch_tracks_nothing(tracker, reconciler, rooms):
    assert await tracker.start_tracking("ghost") is None
    assert tracker.order is None
    assert rooms.joined == []


@pytest.mark.asyncio
async def test_tracked_order_follows_deltas_and_survives_delete(tracker, reconciler):
    reconciler.apply_delta(OP_CREATED, order=make_order("a1"))
    await tracker.start_tracking("a1")

    reconciler.apply_delta(OP_UPDATED, order_id="a1", changes={"status": "in_transit"})
    assert tracker.order.status == "in_transit"

    reconciler.apply_delta(OP_DELETED, order_id="a1")
    assert tracker.order.status == "in_transit"


@pytest.mark.asyncio
async def test_stop_tracking_leaves_room(tracker, reconciler, rooms):
    reconciler.apply_delta(OP_CREATED, order=make_order("a1"))
    await tracker.start_tracking("a1")

    tracker.stop_tracking()

    assert rooms.left == ["a1"]
    assert tracker.order is None
    assert reconciler.current_order is None


@pytest.mark.asyncio
async def test_backfill_only_applies_absent_orders(tracker, reconciler, api_stub):
    api_stub.orders["a1"] = make_order("a1", status="processing")

    backfilled = await tracker.backfill("a1")
    assert backfilled.status == "processing"

    reconciler.apply_delta(OP_UPDATED, order_id="a1", changes={"status": "delivered"})
    assert await tracker.backfill("a1") is None
    assert reconciler.get_order_by_id("a1").status == "delivered"


@pytest.mark.asyncio
async def test_summary(tracker, reconciler):
    reconciler.apply_delta(OP_CREATED, order=make_order("a1", status="processing", orderType="pickup"))
    await tracker.start_tracking("a1")

    summary = tracker.summary()

    assert summary["status_display"] == "Processing"
    assert summary["progress"] == 25.0
    assert summary["active"] is True
    assert summary["estimated_completion"] == datetime(2024, 5, 1, 12, 15, tzinfo=timezone.utc)


def test_progress_and_display_helpers():
    assert order_progress(TrackedOrder(id="x", status="pending")) == 12.5
    assert order_progress(TrackedOrder(id="x", status="delivered")) == 100.0
    assert order_progress(TrackedOrder(id="x", status="cancelled")) == 0.0
    assert order_progress(TrackedOrder(id="x", status="mystery")) == 0.0
    assert order_progress(None) == 0.0
    assert status_display("ready_for_pickup") == "Ready For Pickup"
    assert is_active(TrackedOrder(id="x", status="in_transit")) is True
    assert is_active(TrackedOrder(id="x", status="cancelled")) is False


def test_estimated_completion_prefers_pushed_eta():
    created = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    order = TrackedOrder(id="x", created_at=created, order_type="delivery")
    pushed = DeliveryInfo(
        order_id="x",
        estimated_delivery_time=created + timedelta(minutes=20),
        updated_at=created,
    )

    assert estimated_completion(order) == created + timedelta(minutes=60)
    assert estimated_completion(order, pushed) == created + timedelta(minutes=20)
    assert estimated_completion(TrackedOrder(id="y", created_at=created)) == created + timedelta(minutes=30)
    assert estimated_completion(TrackedOrder(id="z")) is None

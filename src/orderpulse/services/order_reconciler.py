"""Order reconciler — the session's authoritative view of its orders.

Learn: two feeds write into the same order set:
1. REST snapshots (order history, a directly opened order)
2. Real-time deltas (created / updated / deleted) from the connection

Reconciliation rules:
- `created` inserts at the front; if the id is already known it is treated
  as `updated` (creation is idempotent under out-of-order delivery)
- `updated` shallow-merges into the existing entry; an unknown id is dropped
  (we cannot update what we never observed) and only logged
- `deleted` removes the entry and clears the tracking focus if it pointed there
- the server is authoritative for status: transitions are never validated

Deltas are applied synchronously in the order the connection delivers them.
Malformed payloads are logged and skipped, never raised.
"""

from collections import OrderedDict
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Optional, Union

import structlog
from pydantic import ValidationError

from orderpulse.events.types import (
    OP_CREATED,
    OP_DELETED,
    OP_UPDATED,
    ORDER_CREATED,
    TERMINAL_STATUSES,
)
from orderpulse.realtime.observable import Observable
from orderpulse.realtime.rooms import RoomSubscriptions
from orderpulse.schemas.order import (
    CustomerOrderUpdate,
    DeliveryInfo,
    DeliveryUpdate,
    OrderStatsUpdate,
    SingleOrderUpdate,
    TrackedOrder,
    order_id_of,
)

logger = structlog.get_logger()

OrderLike = Union[TrackedOrder, Mapping[str, Any]]


class OrderReconciler(Observable):
    """Merges deltas and snapshots into one de-duplicated, newest-first order set."""

    def __init__(
        self,
        rooms: Optional[RoomSubscriptions] = None,
        *,
        on_unknown_order: Optional[Callable[[str], None]] = None,
    ):
        super().__init__()
        self.rooms = rooms
        self.on_unknown_order = on_unknown_order
        self._orders: "OrderedDict[str, TrackedOrder]" = OrderedDict()
        self._current_id: Optional[str] = None
        self._deliveries: dict[str, DeliveryInfo] = {}
        self._stats: dict[str, Any] = {}

    # ─── Read-only views ──────────────────────────────────

    @property
    def orders(self) -> list[TrackedOrder]:
        """Newest first."""
        return list(self._orders.values())

    @property
    def current_order(self) -> Optional[TrackedOrder]:
        if self._current_id is None:
            return None
        return self._orders.get(self._current_id)

    @property
    def order_stats(self) -> dict[str, Any]:
        return dict(self._stats)

    @property
    def delivery_updates(self) -> dict[str, DeliveryInfo]:
        return dict(self._deliveries)

    # ─── Queries (pure) ───────────────────────────────────

    def get_order_by_id(self, order_id: str) -> Optional[TrackedOrder]:
        return self._orders.get(str(order_id))

    def get_orders_by_status(self, status: str) -> list[TrackedOrder]:
        return [o for o in self._orders.values() if o.status == status]

    def get_active_orders(self) -> list[TrackedOrder]:
        return [o for o in self._orders.values() if o.status not in TERMINAL_STATUSES]

    def get_delivery_info(self, order_id: str) -> Optional[DeliveryInfo]:
        return self._deliveries.get(str(order_id))

    # ─── Deltas ───────────────────────────────────────────

    def apply_delta(
        self,
        operation: str,
        order: Optional[OrderLike] = None,
        order_id: Optional[str] = None,
        changes: Optional[Mapping[str, Any]] = None,
    ) -> Optional[TrackedOrder]:
        """Apply one created/updated/deleted delta. Returns the resulting order, if any."""
        if operation == OP_CREATED:
            return self._apply_created(order, changes)
        if operation == OP_UPDATED:
            return self._apply_updated(order, order_id, changes)
        if operation == OP_DELETED:
            self._apply_deleted(order_id or order_id_of(order))
            return None
        logger.warning("orderpulse.orders.unknown_operation", operation=operation)
        return None

    def _apply_created(
        self,
        order: Optional[OrderLike],
        changes: Optional[Mapping[str, Any]],
    ) -> Optional[TrackedOrder]:
        if order is None:
            logger.warning("orderpulse.orders.created_without_order")
            return None
        order_id = order_id_of(order)
        if order_id in self._orders:
            logger.debug("orderpulse.orders.duplicate_create", order_id=order_id)
            return self._apply_updated(order, order_id, changes)
        try:
            tracked = _as_order(order)
        except ValidationError as e:
            logger.warning("orderpulse.orders.malformed", operation=OP_CREATED, error=str(e))
            return None
        self._orders[tracked.id] = tracked
        self._orders.move_to_end(tracked.id, last=False)
        logger.info("orderpulse.orders.created", order_id=tracked.id, status=tracked.status)
        self._notify(self)
        return tracked

    def _apply_updated(
        self,
        order: Optional[OrderLike],
        order_id: Optional[str],
        changes: Optional[Mapping[str, Any]],
    ) -> Optional[TrackedOrder]:
        target_id = order_id_of(order) or (str(order_id) if order_id is not None else None)
        if target_id is None:
            logger.warning("orderpulse.orders.update_without_id")
            return None
        existing = self._orders.get(target_id)
        if existing is None:
            logger.info("orderpulse.orders.unknown_update", order_id=target_id)
            if self.on_unknown_order is not None:
                self.on_unknown_order(target_id)
            return None

        patch: dict[str, Any] = {}
        if order is not None:
            patch.update(_as_mapping(order))
        if changes:
            patch.update(changes)
        try:
            merged = existing.merged(patch)
        except ValidationError as e:
            logger.warning("orderpulse.orders.malformed", operation=OP_UPDATED, error=str(e))
            return None
        self._orders[target_id] = merged
        if merged.status != existing.status:
            logger.info(
                "orderpulse.orders.status_changed",
                order_id=target_id,
                old_status=existing.status,
                new_status=merged.status,
            )
        self._notify(self)
        return merged

    def _apply_deleted(self, order_id: Optional[str]) -> None:
        if order_id is None:
            logger.warning("orderpulse.orders.delete_without_id")
            return
        removed = self._orders.pop(str(order_id), None)
        focused = self._current_id == str(order_id)
        if focused:
            self._current_id = None
            if self.rooms is not None:
                self.rooms.leave_order_room(str(order_id))
        if removed is None and not focused:
            logger.debug("orderpulse.orders.unknown_delete", order_id=order_id)
            return
        logger.info("orderpulse.orders.deleted", order_id=order_id)
        self._notify(self)

    # ─── Snapshots ────────────────────────────────────────

    def apply_snapshot(self, order: OrderLike) -> Optional[TrackedOrder]:
        """Upsert a full REST snapshot. A known order keeps its place in the list."""
        try:
            snapshot = _as_order(order)
        except ValidationError as e:
            logger.warning("orderpulse.orders.malformed", operation="snapshot", error=str(e))
            return None
        is_new = snapshot.id not in self._orders
        self._orders[snapshot.id] = snapshot
        if is_new:
            self._orders.move_to_end(snapshot.id, last=False)
        self._notify(self)
        return snapshot

    def load_orders(self, orders: list[OrderLike]) -> None:
        """Upsert an order-history snapshot (newest first). Never removes entries."""
        for order in reversed(orders):
            try:
                snapshot = _as_order(order)
            except ValidationError as e:
                logger.warning("orderpulse.orders.malformed", operation="load", error=str(e))
                continue
            is_new = snapshot.id not in self._orders
            self._orders[snapshot.id] = snapshot
            if is_new:
                self._orders.move_to_end(snapshot.id, last=False)
        logger.info("orderpulse.orders.loaded", count=len(orders), total=len(self._orders))
        self._notify(self)

    # ─── Tracking focus ───────────────────────────────────

    def set_current_order_for_tracking(self, order: Optional[OrderLike]) -> None:
        """Move the tracking focus: leave the old order's room, join the new one's.

        Setting the already-focused order again refreshes its data but does not
        re-join. The focused order is upserted into the set.
        """
        new_id = order_id_of(order)
        if new_id is not None and new_id == self._current_id:
            self._upsert_focus(order)
            return

        if self._current_id is not None and self.rooms is not None:
            self.rooms.leave_order_room(self._current_id)

        if order is None:
            self._current_id = None
            self._notify(self)
            return

        if self._upsert_focus(order) is None:
            self._current_id = None
            self._notify(self)
            return
        self._current_id = new_id
        if self.rooms is not None:
            self.rooms.join_order_room(new_id)
        self._notify(self)

    def _upsert_focus(self, order: OrderLike) -> Optional[TrackedOrder]:
        existing = self._orders.get(order_id_of(order))
        if existing is None:
            return self.apply_snapshot(order)
        if isinstance(order, TrackedOrder) and order is existing:
            return existing
        return self._apply_updated(order, None, None)

    def rejoin_current_room(self, _payload: Any = None) -> bool:
        """Re-issue the join for the focused order. Runs on every (re)connect."""
        if self._current_id is None or self.rooms is None:
            return False
        return self.rooms.join_order_room(self._current_id)

    # ─── Delivery + stats ─────────────────────────────────

    def apply_delivery_update(
        self,
        order_id: str,
        status: Optional[str],
        estimated_time: Optional[datetime] = None,
        order_type: Optional[str] = None,
    ) -> Optional[DeliveryInfo]:
        """Overwrite the delivery record for a known order (last write wins)."""
        order_id = str(order_id)
        if order_id not in self._orders:
            logger.info("orderpulse.orders.unknown_delivery_update", order_id=order_id)
            return None
        info = DeliveryInfo(
            order_id=order_id,
            status=status,
            estimated_delivery_time=estimated_time,
            order_type=order_type,
            updated_at=datetime.now(timezone.utc),
        )
        self._deliveries[order_id] = info
        self._notify(self)
        return info

    def apply_order_stats(self, stats: Mapping[str, Any]) -> None:
        self._stats = dict(stats)
        self._notify(self)

    # ─── Event adapters ───────────────────────────────────

    def handle_single_order_update(self, payload: Any) -> Optional[TrackedOrder]:
        update = _parse(SingleOrderUpdate, payload)
        if update is None:
            return None
        if update.operation is None:
            logger.warning("orderpulse.orders.missing_operation")
            return None
        return self.apply_delta(
            update.operation,
            order=update.order,
            order_id=update.order_id,
            changes=update.changes,
        )

    def handle_customer_order_update(self, payload: Any) -> Optional[TrackedOrder]:
        """customer_order_update carries a full order: insert when created, else merge."""
        update = _parse(CustomerOrderUpdate, payload)
        if update is None or update.order is None:
            return None
        order_id = order_id_of(update.order)
        if order_id in self._orders:
            return self._apply_updated(update.order, order_id, None)
        if update.type == ORDER_CREATED:
            return self._apply_created(update.order, None)
        logger.info("orderpulse.orders.unknown_update", order_id=order_id)
        return None

    def handle_delivery_update(self, payload: Any) -> Optional[DeliveryInfo]:
        update = _parse(DeliveryUpdate, payload)
        if update is None:
            return None
        return self.apply_delivery_update(
            update.order_id,
            update.status,
            update.estimated_delivery_time,
            update.order_type,
        )

    def handle_order_stats_update(self, payload: Any) -> None:
        update = _parse(OrderStatsUpdate, payload)
        if update is not None:
            self.apply_order_stats(update.stats)


def _as_order(order: OrderLike) -> TrackedOrder:
    if isinstance(order, TrackedOrder):
        return order
    return TrackedOrder.model_validate(dict(order))


def _as_mapping(order: OrderLike) -> dict[str, Any]:
    if isinstance(order, TrackedOrder):
        # Only the fields the sender actually set, so defaults never clobber known values
        return order.model_dump(exclude_unset=True)
    return dict(order)


def _parse(model, payload: Any):
    if not isinstance(payload, Mapping):
        logger.warning("orderpulse.orders.malformed", schema=model.__name__)
        return None
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        logger.warning("orderpulse.orders.malformed", schema=model.__name__, error=str(e))
        return None

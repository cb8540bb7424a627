"""Pydantic schemas for tracked orders and inbound order events.

Learn: the server speaks camelCase (`_id`, `orderNumber`, `orderType`) while
Python code reads snake_case. Every aliased field accepts both spellings, so a
REST snapshot, a real-time delta and a locally built dict all validate the
same way. Orders keep unknown keys (`extra="allow"`) because a shallow merge
must never drop a field just because this schema does not name it.
"""

from datetime import datetime
from typing import Any, Mapping, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from orderpulse.events.types import PENDING


def _aka(*names: str) -> AliasChoices:
    return AliasChoices(*names)


def _coerce_id(v):
    return str(v) if v is not None else v


# ─── Orders ──────────────────────────────────────────────


class TrackedOrder(BaseModel):
    """One order in the session's authoritative order set."""

    id: str = Field(validation_alias=_aka("_id", "id"))
    order_number: Optional[str] = Field(None, validation_alias=_aka("orderNumber", "order_number"))
    status: str = PENDING
    items: list[dict[str, Any]] = Field(default_factory=list)
    subtotal: Optional[float] = None
    tax: Optional[float] = None
    total: Optional[float] = None
    order_type: Optional[str] = Field(None, validation_alias=_aka("orderType", "order_type"))
    estimated_delivery_time: Optional[datetime] = Field(
        None, validation_alias=_aka("estimatedDeliveryTime", "estimated_delivery_time")
    )
    created_at: Optional[datetime] = Field(None, validation_alias=_aka("createdAt", "created_at"))
    updated_at: Optional[datetime] = Field(None, validation_alias=_aka("updatedAt", "updated_at"))

    model_config = ConfigDict(extra="allow", frozen=True)

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v):
        return _coerce_id(v)

    def merged(self, changes: Mapping[str, Any]) -> "TrackedOrder":
        """Shallow-merge `changes` over this order. Keys absent from `changes` survive.

        The id never changes through a merge.
        """
        data = self.model_dump()
        data.update(normalize_order_keys(changes))
        data["id"] = self.id
        return TrackedOrder.model_validate(data)


def _wire_key_map() -> dict[str, str]:
    mapping: dict[str, str] = {}
    for name, field in TrackedOrder.model_fields.items():
        alias = field.validation_alias
        if isinstance(alias, AliasChoices):
            for choice in alias.choices:
                if isinstance(choice, str):
                    mapping[choice] = name
    return mapping


_WIRE_KEYS = _wire_key_map()


def normalize_order_keys(data: Mapping[str, Any]) -> dict[str, Any]:
    """Rename wire keys (`orderType`) to field names (`order_type`); keep the rest."""
    return {_WIRE_KEYS.get(key, key): value for key, value in data.items()}


def order_id_of(order: Any) -> Optional[str]:
    """Extract an order id from a TrackedOrder, a wire dict, or a bare id."""
    if order is None:
        return None
    if isinstance(order, TrackedOrder):
        return order.id
    if isinstance(order, Mapping):
        raw = order.get("_id", order.get("id"))
        return str(raw) if raw is not None else None
    return str(order)


class DeliveryInfo(BaseModel):
    """Latest delivery-tracking record for one order. Overwritten, never merged."""

    order_id: str
    status: Optional[str] = None
    estimated_delivery_time: Optional[datetime] = None
    order_type: Optional[str] = None
    updated_at: datetime

    model_config = ConfigDict(frozen=True)


# ─── Inbound payloads ────────────────────────────────────


class CustomerOrderUpdate(BaseModel):
    """customer_order_update: {order, type, message, newStatus, previousStatus}."""

    order: Optional[dict[str, Any]] = None
    type: Optional[str] = None
    message: Optional[str] = None
    new_status: Optional[str] = Field(None, validation_alias=_aka("newStatus", "new_status"))
    previous_status: Optional[str] = Field(
        None, validation_alias=_aka("previousStatus", "previous_status")
    )
    timestamp: Optional[datetime] = None


class SingleOrderUpdate(BaseModel):
    """single_order_update: {order, operation, orderId, changes}."""

    order: Optional[dict[str, Any]] = None
    operation: Optional[str] = None
    order_id: Optional[str] = Field(None, validation_alias=_aka("orderId", "order_id"))
    changes: Optional[dict[str, Any]] = None

    @field_validator("order_id", mode="before")
    @classmethod
    def coerce_order_id(cls, v):
        return _coerce_id(v)


class DeliveryUpdate(BaseModel):
    """delivery_update: {orderId, status, estimatedDeliveryTime, orderType}."""

    order_id: str = Field(validation_alias=_aka("orderId", "order_id"))
    status: Optional[str] = None
    estimated_delivery_time: Optional[datetime] = Field(
        None, validation_alias=_aka("estimatedDeliveryTime", "estimated_delivery_time")
    )
    order_type: Optional[str] = Field(None, validation_alias=_aka("orderType", "order_type"))
    type: Optional[str] = None

    @field_validator("order_id", mode="before")
    @classmethod
    def coerce_order_id(cls, v):
        return _coerce_id(v)


class OrderStatsUpdate(BaseModel):
    """order_stats_update: {stats}. The stats object is passed through untouched."""

    stats: dict[str, Any] = Field(default_factory=dict)

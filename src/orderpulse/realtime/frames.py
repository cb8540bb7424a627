"""Websocket frame codec.

Every frame, in both directions, is one JSON text message:

    {"type": "single_order_update", "data": {...}}

`data` is whatever the event carries: an object, a bare order id string for
room joins, or null for events without a payload.
"""

import json
from typing import Any, Optional, Union


class FrameError(ValueError):
    """Raised when a frame is not a JSON object with a string `type`."""


def encode_frame(event: str, data: Any = None) -> str:
    return json.dumps({"type": event, "data": data}, default=str)


def decode_frame(raw: Union[str, bytes]) -> tuple[str, Optional[Any]]:
    """Decode one frame into (event, data). Raises FrameError on malformed input."""
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    try:
        message = json.loads(raw)
    except json.JSONDecodeError as e:
        raise FrameError(f"Invalid JSON frame: {e}") from e
    if not isinstance(message, dict) or not isinstance(message.get("type"), str):
        raise FrameError("Frame must be an object with a string 'type'")
    return message["type"], message.get("data")

"""Pydantic schema for feed notifications.

Notifications are immutable records; marking one read replaces it with a copy.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from orderpulse.events.types import GENERAL


class Notification(BaseModel):
    id: str
    type: str = GENERAL
    title: str = ""
    message: str = Field(..., min_length=1)
    order_id: Optional[str] = None
    order_number: Optional[str] = None
    priority: Optional[str] = None
    timestamp: datetime
    read: bool = False

    model_config = ConfigDict(frozen=True)

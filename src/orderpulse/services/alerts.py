"""User-facing alerts (toasts).

The pipeline never decides how an alert looks. It hands a message and a level
to a Toaster; a UI shell renders a toast, the CLI prints a coloured line, and
the default just logs.
"""

from typing import Optional, Protocol

import structlog

logger = structlog.get_logger()


class Toaster(Protocol):
    def show(
        self,
        message: str,
        *,
        level: str = "info",
        auto_close: Optional[float] = None,
    ) -> None: ...


class LogToaster:
    """Toaster that writes alerts to the structured log."""

    def show(
        self,
        message: str,
        *,
        level: str = "info",
        auto_close: Optional[float] = None,
    ) -> None:
        log = logger.error if level == "error" else logger.info
        log("orderpulse.alert", message=message, alert_level=level, auto_close=auto_close)

"""Observer registry shared by the session components.

Learn: components mutate their own state synchronously and then notify
observers. A UI layer (or the CLI) subscribes and re-reads whatever it
renders; nothing here knows how the data is displayed.
"""

from typing import Any, Callable

import structlog

logger = structlog.get_logger()

Observer = Callable[[Any], None]


class Observable:
    """Mixin holding a list of observers called after each state change."""

    def __init__(self):
        self._observers: list[Observer] = []

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """Register an observer. Returns a callable that unregisters it."""
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def _notify(self, payload: Any) -> None:
        # Copy so an observer may unsubscribe itself while being called
        for observer in self._observers.copy():
            try:
                observer(payload)
            except Exception:
                logger.exception("orderpulse.observer_failed", source=type(self).__name__)

"""Process-wide event bus for cross-component signals.

The emitters are created once at import and live for the whole process;
there is no teardown. Listeners unsubscribe through the callable returned
by subscribe().
"""

import logging
from typing import Any, Callable

logger = logging.getLogger(__name__)

Listener = Callable[..., Any]


class EventEmitter:
    """Minimal synchronous emitter."""

    def __init__(self, name: str):
        self.name = name
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def emit(self, *args: Any) -> None:
        """Call every listener; one failing listener does not stop the rest."""
        for listener in list(self._listeners):
            try:
                listener(*args)
            except Exception as e:
                logger.error(f"{self.name} listener failed: {e}")

    @property
    def listener_count(self) -> int:
        return len(self._listeners)


# Reminder lists should reload
refresh_events = EventEmitter("refresh")

# Calendar drift was found; payload is a list of ChangedCalendarEvent
calendar_change_events = EventEmitter("calendar_change")

"""Readiness and error notifications for collaborators."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional

from ..errors import ErrorKind
from ..models import utc_now

logger = logging.getLogger(__name__)


class EventType(Enum):
    READY = "ready"
    ERROR = "error"
    SYNCED = "synced"


@dataclass
class SyncEvent:
    """Notification sent to subscribers."""
    type: EventType
    message: str
    error_kind: Optional[ErrorKind] = None
    at: datetime = field(default_factory=utc_now)


Listener = Callable[[SyncEvent], None]


class SyncNotifier:
    """Delivers events synchronously to every subscribed listener."""

    def __init__(self):
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener``; returns a function that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def emit(self, event: SyncEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                # One broken listener must not starve the others
                logger.error(f"Listener {listener!r} failed on {event.type.value} event: {e}")

    def ready(self, message: str) -> None:
        self.emit(SyncEvent(EventType.READY, message))

    def error(self, kind: ErrorKind, message: str) -> None:
        self.emit(SyncEvent(EventType.ERROR, message, error_kind=kind))

    def synced(self, message: str) -> None:
        self.emit(SyncEvent(EventType.SYNCED, message))

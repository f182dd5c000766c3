"""Structured update events.

The pipeline reports what it is doing as a stream of :class:`UpdateEvent`
records. Subscribers (the CLI progress display, tests, an application UI)
receive each event as it is emitted; every event is also forwarded to the
package logger so nothing reported to a user is missing from the log file.
"""

from __future__ import annotations

import enum
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional

__all__ = ["EventLevel", "UpdateEvent", "EventLog", "EventSubscriber"]

logger = logging.getLogger(__name__)


class EventLevel(str, enum.Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    SUCCESS = "success"

    @property
    def marker(self) -> str:
        return _MARKERS[self]

    @property
    def log_level(self) -> int:
        return _LOG_LEVELS[self]


_MARKERS = {
    EventLevel.INFO: "[*]",
    EventLevel.WARNING: "[!]",
    EventLevel.ERROR: "[×]",
    EventLevel.SUCCESS: "[✓]",
}

_LOG_LEVELS = {
    EventLevel.INFO: logging.INFO,
    EventLevel.WARNING: logging.WARNING,
    EventLevel.ERROR: logging.ERROR,
    EventLevel.SUCCESS: logging.INFO,
}


@dataclass(frozen=True)
class UpdateEvent:
    """One entry of the update event stream."""

    level: EventLevel
    message: str
    progress: Optional[float] = None
    artifact: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def render(self) -> str:
        prefix = f"{self.level.marker} "
        if self.artifact:
            prefix += f"{self.artifact}: "
        return prefix + self.message


EventSubscriber = Callable[[UpdateEvent], None]


class EventLog:
    """Collect update events and fan them out to subscribers.

    Progress events are delivered to subscribers but not kept in
    :attr:`events` or logged at INFO, so a long download does not flood the
    history.
    """

    def __init__(self) -> None:
        self._events: List[UpdateEvent] = []
        self._subscribers: List[EventSubscriber] = []
        self._lock = threading.Lock()

    @property
    def events(self) -> List[UpdateEvent]:
        with self._lock:
            return list(self._events)

    def subscribe(self, subscriber: EventSubscriber) -> Callable[[], None]:
        """Register ``subscriber``; the returned callable unregisters it."""

        with self._lock:
            self._subscribers.append(subscriber)

        def _unsubscribe() -> None:
            with self._lock:
                if subscriber in self._subscribers:
                    self._subscribers.remove(subscriber)

        return _unsubscribe

    def clear(self) -> None:
        with self._lock:
            self._events.clear()

    def emit(self, event: UpdateEvent) -> UpdateEvent:
        is_progress = event.progress is not None and event.level is EventLevel.INFO
        with self._lock:
            if not is_progress:
                self._events.append(event)
            subscribers = list(self._subscribers)
        logger.log(
            logging.DEBUG if is_progress else event.level.log_level,
            event.render(),
            extra={"stage": "update", "artifact": event.artifact, "progress": event.progress},
        )
        for subscriber in subscribers:
            subscriber(event)
        return event

    def info(self, message: str, *, artifact: Optional[str] = None) -> UpdateEvent:
        return self.emit(UpdateEvent(EventLevel.INFO, message, artifact=artifact))

    def warning(self, message: str, *, artifact: Optional[str] = None) -> UpdateEvent:
        return self.emit(UpdateEvent(EventLevel.WARNING, message, artifact=artifact))

    def error(self, message: str, *, artifact: Optional[str] = None) -> UpdateEvent:
        return self.emit(UpdateEvent(EventLevel.ERROR, message, artifact=artifact))

    def success(self, message: str, *, artifact: Optional[str] = None) -> UpdateEvent:
        return self.emit(UpdateEvent(EventLevel.SUCCESS, message, artifact=artifact))

    def progress(self, message: str, fraction: float, *, artifact: Optional[str] = None) -> UpdateEvent:
        return self.emit(UpdateEvent(EventLevel.INFO, message, progress=fraction, artifact=artifact))

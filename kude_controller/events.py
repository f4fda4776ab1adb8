"""Recorder for events emitted by the controllers.

Events are short notes attached to a resource about something that happened
while reconciling it, such as a failed clone or a completed run. They are kept
in a bounded in memory buffer and mirrored to the log.
"""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
import logging

from .manifest import NamedResource

__all__ = [
    "EventType",
    "Event",
    "EventRecorder",
]

_LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_EVENTS = 1000


class EventType(StrEnum):
    """Severity of an event."""

    NORMAL = "Normal"
    WARNING = "Warning"


@dataclass(frozen=True)
class Event:
    """A single recorded event."""

    resource_id: NamedResource
    type: EventType
    reason: str
    message: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class EventRecorder:
    """Records events for resources."""

    def __init__(self, max_events: int = DEFAULT_MAX_EVENTS) -> None:
        self._events: deque[Event] = deque(maxlen=max_events)

    def normal(self, resource_id: NamedResource, reason: str, message: str) -> None:
        """Record an informational event."""
        self._record(Event(resource_id, EventType.NORMAL, reason, message))
        _LOGGER.info("%s %s: %s", resource_id, reason, message)

    def warning(self, resource_id: NamedResource, reason: str, message: str) -> None:
        """Record a warning event."""
        self._record(Event(resource_id, EventType.WARNING, reason, message))
        _LOGGER.warning("%s %s: %s", resource_id, reason, message)

    def _record(self, event: Event) -> None:
        self._events.append(event)

    @property
    def events(self) -> list[Event]:
        """Return all recorded events, oldest first."""
        return list(self._events)

    def events_for(self, resource_id: NamedResource) -> list[Event]:
        """Return the events recorded for a resource, oldest first."""
        return [event for event in self._events if event.resource_id == resource_id]

    def reasons_for(self, resource_id: NamedResource) -> list[str]:
        return [event.reason for event in self.events_for(resource_id)]

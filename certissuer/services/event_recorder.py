"""Event recording for reconciled resources."""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Callable, Optional

from certissuer.models.event import Event, EventType
from certissuer.models.meta import Resource

logger = logging.getLogger("certissuer")


class EventRecorder(ABC):
    """Records events against resources."""

    @abstractmethod
    def event(self, obj: Resource, event_type: EventType, reason: str, message: str) -> None:
        """
        Record an event.

        Args:
            obj: Involved resource
            event_type: Normal or Warning
            reason: Short reason, usually the reconciler name
            message: Human-readable message
        """


class LoggingEventRecorder(EventRecorder):
    """Writes events to the application log."""

    def event(self, obj: Resource, event_type: EventType, reason: str, message: str) -> None:
        level = logging.WARNING if event_type == EventType.WARNING else logging.INFO
        logger.log(level, f'{obj.kind} "{obj.key}": {event_type.value} {reason} {message}')


class InMemoryEventRecorder(EventRecorder):
    """Keeps events in a list, in the order they were recorded."""

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self.events: list[Event] = []
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def event(self, obj: Resource, event_type: EventType, reason: str, message: str) -> None:
        self.events.append(
            Event(
                type=event_type,
                reason=reason,
                message=message,
                involved_kind=obj.kind,
                involved_key=obj.key,
                timestamp=self.clock(),
            )
        )

    def messages(self) -> list[str]:
        """Events rendered as "<type> <reason> <message>"."""
        return [str(e) for e in self.events]

"""Event bus implementations for promotion lifecycle events."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Protocol
from uuid import UUID, uuid4


@dataclass(slots=True)
class Event:
    """Event envelope; ``run_id`` ties every event to one promotion run."""

    event_type: str
    run_id: UUID
    payload: dict[str, Any]
    event_id: UUID = field(default_factory=uuid4)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class EventBus(Protocol):
    """Abstract event bus interface."""

    def publish(self, event: Event) -> None:
        """Publish an event to the bus."""

    def close(self) -> None:
        """Release connections held by the bus."""


class InMemoryEventBus:
    """In-process bus that keeps every published event in publish order."""

    def __init__(self) -> None:
        self._events: list[Event] = []
        self._lock = Lock()

    def publish(self, event: Event) -> None:
        with self._lock:
            self._events.append(event)

    @property
    def events(self) -> list[Event]:
        with self._lock:
            return list(self._events)

    def types(self) -> list[str]:
        return [event.event_type for event in self.events]

    def of_type(self, event_type: str) -> list[Event]:
        return [event for event in self.events if event.event_type == event_type]

    def close(self) -> None:
        """Nothing to release for the in-process bus."""

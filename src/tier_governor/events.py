"""
Event Recorder

Append-only, time-ordered log of notable occurrences during a run.
Insertion order is chronological order. No deduplication, no capacity
bound, no removal of individual events.

Kinds:
- info:      lifecycle and de-escalation notes
- warning:   instability building
- critical:  source failure
- migration: escalation to Cloud (threshold or manual override)

Usage:
    recorder = EventRecorder()
    recorder.info("Run started in STANDARD mode", unit_index=0)
    for event in recorder.events:
        print(event.to_event_string())
"""

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from threading import Lock
from typing import Any, Callable, Dict, List, Tuple


class EventKind(Enum):
    """Event severity / category."""
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"
    MIGRATION = "migration"


def _new_event_id() -> str:
    return uuid.uuid4().hex[:8]


@dataclass(frozen=True)
class Event:
    """An immutable event record."""
    kind: EventKind
    message: str
    unit_index: int
    event_id: str = field(default_factory=_new_event_id)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_event_string(self) -> str:
        return f"[{self.kind.value.upper()}] #{self.unit_index}: {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.event_id,
            "timestamp": self.timestamp.isoformat(),
            "kind": self.kind.value,
            "message": self.message,
            "unit_index": self.unit_index,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Event":
        return cls(
            kind=EventKind(d["kind"]),
            message=d["message"],
            unit_index=int(d["unit_index"]),
            event_id=d["id"],
            timestamp=datetime.fromisoformat(d["timestamp"]),
        )


EventListener = Callable[[Event], None]


class EventRecorder:
    """
    Append-only event log.

    Thread-safe: appends and reads take a lock, readers get a snapshot.
    Listeners are called after the append, outside the lock.
    """

    def __init__(self):
        self._events: List[Event] = []
        self._lock = Lock()
        self._listeners: List[EventListener] = []

    def subscribe(self, listener: EventListener):
        self._listeners.append(listener)

    def record(self, kind: EventKind, message: str, unit_index: int) -> Event:
        """Append one event with a fresh id and the current time."""
        event = Event(kind=EventKind(kind), message=message, unit_index=unit_index)
        with self._lock:
            self._events.append(event)
        for listener in list(self._listeners):
            listener(event)
        return event

    def info(self, message: str, unit_index: int) -> Event:
        return self.record(EventKind.INFO, message, unit_index)

    def warning(self, message: str, unit_index: int) -> Event:
        return self.record(EventKind.WARNING, message, unit_index)

    def critical(self, message: str, unit_index: int) -> Event:
        return self.record(EventKind.CRITICAL, message, unit_index)

    def migration(self, message: str, unit_index: int) -> Event:
        return self.record(EventKind.MIGRATION, message, unit_index)

    @property
    def events(self) -> Tuple[Event, ...]:
        with self._lock:
            return tuple(self._events)

    def by_kind(self, kind: EventKind) -> List[Event]:
        with self._lock:
            return [e for e in self._events if e.kind == kind]

    def for_unit(self, unit_index: int) -> List[Event]:
        with self._lock:
            return [e for e in self._events if e.unit_index == unit_index]

    def reset(self):
        """Empty the log. Only used at run and replay boundaries."""
        with self._lock:
            self._events = []

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

    def to_json(self) -> str:
        with self._lock:
            return json.dumps([e.to_dict() for e in self._events], indent=2)

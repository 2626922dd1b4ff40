from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List, Optional, Protocol

logger = logging.getLogger(__name__)

STORE = "store"
RECALL = "recall"
CONSOLIDATION = "consolidation"
PRUNE = "prune"
DEGRADED = "degraded"


@dataclass
class Event:
    timestamp: float
    name: str
    payload: Dict[str, Any] = field(default_factory=dict)


Listener = Callable[[Event], None]


class EventStore(Protocol):
    def append(self, event: Event) -> None:
        ...

    def tail(self, n: int = 10) -> List[Event]:
        ...

    def query(self, name: Optional[str] = None, limit: int = 50) -> List[Event]:
        ...


class InMemoryEventStore:
    def __init__(self, capacity: int = 10_000) -> None:
        self._events: Deque[Event] = deque(maxlen=capacity)

    def append(self, event: Event) -> None:
        self._events.append(event)

    def tail(self, n: int = 10) -> List[Event]:
        if n <= 0:
            return []
        return list(self._events)[-n:]

    def query(self, name: Optional[str] = None, limit: int = 50) -> List[Event]:
        if name is None:
            return list(self._events)[-limit:]
        matches = [e for e in self._events if e.name == name]
        return matches[-limit:]

    def __len__(self) -> int:
        return len(self._events)


class EventLog:
    """Outbound event feed for dashboards and logging.

    Every emitted event is appended to the backing store and handed to each
    subscribed listener.  A listener that raises is logged and skipped; it
    never breaks the operation that emitted the event.
    """

    def __init__(self, store: Optional[EventStore] = None) -> None:
        self._store = store or InMemoryEventStore()
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def emit(self, name: str, **payload: Any) -> Event:
        event = Event(timestamp=time.time(), name=name, payload=payload)
        self._store.append(event)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as exc:
                logger.warning("Event listener failed on %r: %s", name, exc)
        return event

    def tail(self, n: int = 10) -> List[Event]:
        return self._store.tail(n)

    def query(self, name: Optional[str] = None, limit: int = 50) -> List[Event]:
        return self._store.query(name=name, limit=limit)

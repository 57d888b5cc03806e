from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, FrozenSet, List, Optional, Protocol, Tuple

from library_lending.log import get_logger
from library_lending.models import Member

logger = get_logger("events")


class EventKind(Enum):
    BOOK_BORROWED = "Book Borrowed"
    BOOK_RETURNED = "Book Returned"
    BOOK_ADDED = "Book Added"
    BOOK_REMOVED = "Book Removed"
    MEMBER_REGISTERED = "Member Registered"
    MEMBER_UPDATED = "Member Updated"
    MEMBER_DEACTIVATED = "Member Deactivated"
    OVERDUE_NOTIFICATION = "Overdue Notification"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class LibraryEvent:
    kind: EventKind
    description: str
    data: Any = None
    timestamp: datetime = field(default_factory=datetime.now)


EventSink = Callable[[LibraryEvent], None]


@dataclass(frozen=True)
class _Subscription:
    sink: EventSink
    priority: int
    kinds: Optional[FrozenSet[EventKind]]

    def wants(self, kind: EventKind) -> bool:
        return self.kinds is None or kind in self.kinds


class EventPublisher:
    """
    Delivers events to registered sinks, lowest priority number first.

    Delivery is best effort: a sink that raises is logged and skipped, and the
    remaining sinks still receive the event.
    """

    def __init__(self) -> None:
        self._subs: Tuple[_Subscription, ...] = ()
        self._lock = threading.Lock()

    def subscribe(self, sink: EventSink, priority: int = 0, kinds: Optional[List[EventKind]] = None) -> None:
        with self._lock:
            if any(s.sink is sink for s in self._subs):
                return
            sub = _Subscription(sink, priority, frozenset(kinds) if kinds else None)
            # sorted() is stable, so equal priorities keep registration order
            self._subs = tuple(sorted(self._subs + (sub,), key=lambda s: s.priority))

    def unsubscribe(self, sink: EventSink) -> None:
        with self._lock:
            self._subs = tuple(s for s in self._subs if s.sink is not sink)

    def sinkCount(self) -> int:
        return len(self._subs)

    def publish(self, event: LibraryEvent) -> int:
        """
        Returns the number of sinks that accepted the event without raising.
        """
        delivered = 0
        for sub in self._subs:
            if not sub.wants(event.kind):
                continue
            try:
                sub.sink(event)
                delivered += 1
            except Exception as e:
                logger.exception("Event sink failed | kind=%s sink=%r | %s", event.kind.name, sub.sink, e)
        return delivered


class Notifier(Protocol):
    def notify(self, member: Member, message: str) -> bool:
        """Deliver a message to the member; False if it could not be sent."""
        ...


class CollectingNotifier:
    """
    Notifier that keeps messages in memory instead of delivering them.

    Members without an email address are treated as unreachable.
    """

    def __init__(self) -> None:
        self.sent: List[Tuple[str, str]] = []
        self._lock = threading.Lock()

    def notify(self, member: Member, message: str) -> bool:
        if not message or not message.strip():
            return False
        if "@" not in (member.person.email or ""):
            return False
        with self._lock:
            self.sent.append((member.memberId, message))
        return True

"""Progress reporting for research runs.

:class:`ResearchPipeline` and :class:`FieldResearchLoop` publish domain
events on an injected :class:`EventBus`; the planner, router and
cross-validation engine never see it.  Subscriptions match by event family,
so a handler registered for ``DomainEvent`` observes every event of a run.

A handler that raises is logged and skipped.  :class:`EventStore` records a
run's events for inspection and can replay them into another bus.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from collections.abc import Callable, Iterable

from item_research.domain.events import DomainEvent

logger = logging.getLogger(__name__)

Handler = Callable[[DomainEvent], None]


# ===================================================================== #
#  Event Bus                                                             #
# ===================================================================== #


class EventBus:
    """Synchronous observer registry keyed by event class.

    Catch-all handlers run first, then handlers registered for the event's
    own class and each of its base classes (most specific first).  Within a
    class, handlers run in registration order.

    Usage::

        bus = EventBus()
        bus.subscribe(GoalCompleted, lambda e: print(e.goal_type, e.confidence))
        pipeline = ResearchPipeline(router, event_bus=bus)
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._by_type: dict[type[DomainEvent], list[Handler]] = defaultdict(list)
        self._catch_all: list[Handler] = []

    def subscribe(self, event_type: type[DomainEvent], handler: Handler) -> None:
        """Call *handler* for every *event_type* event, subclasses included."""
        with self._lock:
            self._by_type[event_type].append(handler)

    def subscribe_all(self, handler: Handler) -> None:
        with self._lock:
            self._catch_all.append(handler)

    def unsubscribe(self, event_type: type[DomainEvent], handler: Handler) -> bool:
        """Drop one registration of *handler*; ``False`` if it was not registered."""
        with self._lock:
            registered = self._by_type.get(event_type)
            if not registered or handler not in registered:
                return False
            registered.remove(handler)
            return True

    def handlers_for(self, event_type: type[DomainEvent]) -> list[Handler]:
        """Handlers an *event_type* event would reach, in call order."""
        with self._lock:
            ordered = list(self._catch_all)
            for klass in event_type.__mro__:
                ordered.extend(self._by_type.get(klass, ()))
        return ordered

    def publish(self, event: DomainEvent) -> None:
        for handler in self.handlers_for(type(event)):
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "EventBus: handler %r failed on %s for item %r",
                    handler,
                    type(event).__name__,
                    event.source_id,
                )

    def publish_many(self, events: Iterable[DomainEvent]) -> None:
        for event in events:
            self.publish(event)

    def handler_count(self, event_type: type[DomainEvent] | None = None) -> int:
        """Registrations for exactly *event_type*, or all registrations."""
        with self._lock:
            if event_type is not None:
                return len(self._by_type.get(event_type, ()))
            return len(self._catch_all) + sum(len(hs) for hs in self._by_type.values())

    def clear(self) -> None:
        with self._lock:
            self._by_type.clear()
            self._catch_all.clear()


# ===================================================================== #
#  Event Store                                                           #
# ===================================================================== #


class EventStore:
    """Bounded in-memory record of published events.

    Parameters
    ----------
    max_size:
        Keep at most this many events, dropping the oldest.  ``0`` keeps
        everything.

    Record every event of a run with ``bus.subscribe_all(store.append)``.
    """

    def __init__(self, max_size: int = 0) -> None:
        if max_size < 0:
            raise ValueError(f"max_size must be >= 0, got {max_size}")
        self._max_size = max_size
        self._events: list[DomainEvent] = []
        self._lock = threading.Lock()

    def append(self, event: DomainEvent) -> None:
        with self._lock:
            self._events.append(event)
            overflow = len(self._events) - self._max_size
            if self._max_size and overflow > 0:
                del self._events[:overflow]

    def query(
        self,
        event_type: type[DomainEvent] | None = None,
        source_id: str | None = None,
        since: float | None = None,
    ) -> list[DomainEvent]:
        """Stored events in publication order, filtered by class, item and time."""
        with self._lock:
            events = list(self._events)
        return [
            e
            for e in events
            if (event_type is None or isinstance(e, event_type))
            and (source_id is None or e.source_id == source_id)
            and (since is None or e.timestamp >= since)
        ]

    def latest(
        self, event_type: type[DomainEvent], source_id: str | None = None
    ) -> DomainEvent | None:
        matches = self.query(event_type, source_id)
        return matches[-1] if matches else None

    def replay(self, bus: EventBus, source_id: str | None = None) -> int:
        """Publish the stored events of *source_id* (or all) on *bus*."""
        events = self.query(source_id=source_id)
        logger.debug("EventStore: replaying %d events for %r", len(events), source_id)
        bus.publish_many(events)
        return len(events)

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

    def clear(self) -> None:
        with self._lock:
            self._events.clear()

"""Tests for EventBus and EventStore."""

from __future__ import annotations

import pytest

from item_research.domain.enums import GoalType
from item_research.domain.events import (
    DomainEvent,
    GoalCompleted,
    ResearchStopped,
    TaskExecuted,
)
from item_research.infrastructure.event_bus import EventBus, EventStore


class TestEventBus:
    """Test synchronous EventBus subscribe, publish, unsubscribe."""

    def test_typed_subscription_filters_events(self) -> None:
        bus = EventBus()
        received: list[DomainEvent] = []
        bus.subscribe(GoalCompleted, received.append)

        bus.publish(GoalCompleted(source_id="item-1", goal_id="g1", goal_type=GoalType.RESEARCH_MARKET))
        bus.publish(TaskExecuted(source_id="item-1", tool="keepa_lookup"))

        assert len(received) == 1
        assert isinstance(received[0], GoalCompleted)

    def test_subscribe_all(self) -> None:
        bus = EventBus()
        received: list[DomainEvent] = []
        bus.subscribe_all(received.append)
        bus.publish_many([TaskExecuted(tool="a"), ResearchStopped(reason="budget_exhausted")])
        assert len(received) == 2

    def test_unsubscribe(self) -> None:
        bus = EventBus()
        received: list[DomainEvent] = []
        bus.subscribe(TaskExecuted, received.append)
        assert bus.unsubscribe(TaskExecuted, received.append) is True
        assert bus.unsubscribe(TaskExecuted, received.append) is False
        bus.publish(TaskExecuted(tool="a"))
        assert received == []

    def test_failing_handler_does_not_block_others(self) -> None:
        bus = EventBus()
        received: list[DomainEvent] = []

        def broken(event: DomainEvent) -> None:
            raise RuntimeError("observer down")

        bus.subscribe(TaskExecuted, broken)
        bus.subscribe(TaskExecuted, received.append)
        bus.publish(TaskExecuted(tool="a"))
        assert len(received) == 1

    def test_base_class_subscription_sees_subclasses(self) -> None:
        bus = EventBus()
        received: list[DomainEvent] = []
        bus.subscribe(DomainEvent, received.append)
        bus.publish(TaskExecuted(tool="a"))
        bus.publish(ResearchStopped(reason="completed"))
        assert [type(e) for e in received] == [TaskExecuted, ResearchStopped]

    def test_dispatch_order(self) -> None:
        bus = EventBus()
        calls: list[str] = []
        bus.subscribe(DomainEvent, lambda e: calls.append("base"))
        bus.subscribe(TaskExecuted, lambda e: calls.append("typed"))
        bus.subscribe_all(lambda e: calls.append("all"))
        bus.publish(TaskExecuted(tool="a"))
        assert calls == ["all", "typed", "base"]

    def test_handler_count_and_clear(self) -> None:
        bus = EventBus()
        bus.subscribe(TaskExecuted, lambda e: None)
        bus.subscribe_all(lambda e: None)
        assert bus.handler_count(TaskExecuted) == 1
        assert bus.handler_count() == 2
        bus.clear()
        assert bus.handler_count() == 0


class TestEventStore:

    def test_query_by_type_and_item(self) -> None:
        store = EventStore()
        store.append(TaskExecuted(source_id="item-1", tool="a"))
        store.append(TaskExecuted(source_id="item-2", tool="b"))
        store.append(ResearchStopped(source_id="item-1"))

        assert len(store) == 3
        assert len(store.query(TaskExecuted)) == 2
        assert len(store.query(source_id="item-1")) == 2
        assert len(store.query(TaskExecuted, source_id="item-2")) == 1

    def test_max_size_keeps_latest(self) -> None:
        store = EventStore(max_size=2)
        for tool in ("a", "b", "c"):
            store.append(TaskExecuted(tool=tool))
        assert [e.tool for e in store.query()] == ["b", "c"]  # type: ignore[attr-defined]

    def test_since_filter(self) -> None:
        store = EventStore()
        store.append(TaskExecuted(timestamp=10.0, tool="a"))
        store.append(TaskExecuted(timestamp=20.0, tool="b"))
        assert [e.tool for e in store.query(since=15.0)] == ["b"]  # type: ignore[attr-defined]

    def test_latest(self) -> None:
        store = EventStore()
        assert store.latest(GoalCompleted) is None
        store.append(GoalCompleted(source_id="item-1", goal_id="g1"))
        store.append(GoalCompleted(source_id="item-1", goal_id="g2"))
        store.append(GoalCompleted(source_id="item-2", goal_id="g3"))
        latest = store.latest(GoalCompleted, source_id="item-1")
        assert isinstance(latest, GoalCompleted)
        assert latest.goal_id == "g2"

    def test_replay_one_item(self) -> None:
        store = EventStore()
        store.append(TaskExecuted(source_id="item-1", tool="a"))
        store.append(TaskExecuted(source_id="item-2", tool="b"))
        bus = EventBus()
        received: list[DomainEvent] = []
        bus.subscribe_all(received.append)
        assert store.replay(bus, source_id="item-2") == 1
        assert received[0].source_id == "item-2"

    def test_negative_max_size_rejected(self) -> None:
        with pytest.raises(ValueError, match="max_size"):
            EventStore(max_size=-1)

    def test_wired_to_bus(self) -> None:
        bus = EventBus()
        store = EventStore()
        bus.subscribe_all(store.append)
        bus.publish(TaskExecuted(tool="a"))
        assert len(store) == 1
        store.clear()
        assert len(store) == 0

"""Tests for domain events."""

from __future__ import annotations

import time

import pytest

from item_research.domain.enums import GoalType, ResearchPhase, RouteTarget
from item_research.domain.events import (
    DomainEvent,
    GoalCompleted,
    PhaseTransitioned,
    RouteSelected,
    TaskExecuted,
)


class TestDomainEvents:

    def test_timestamp_defaults_to_now(self) -> None:
        before = time.time()
        event = TaskExecuted(source_id="item-1", tool="keepa_lookup")
        assert before <= event.timestamp <= time.time()

    def test_events_are_frozen(self) -> None:
        event = GoalCompleted(goal_id="g1", goal_type=GoalType.RESEARCH_MARKET, confidence=0.9)
        with pytest.raises(AttributeError):
            event.confidence = 0.1  # type: ignore[misc]

    def test_all_events_are_domain_events(self) -> None:
        events = [
            RouteSelected(phase=ResearchPhase.PARALLEL, route=RouteTarget.EXECUTE_GATHER_METADATA),
            PhaseTransitioned(
                from_phase=ResearchPhase.IDENTIFICATION, to_phase=ResearchPhase.PARALLEL
            ),
        ]
        assert all(isinstance(e, DomainEvent) for e in events)

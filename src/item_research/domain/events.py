"""Domain events for the item research core.

Every event is a frozen dataclass inheriting from ``DomainEvent``.  The
pipeline interpreter publishes them on an injected
:class:`~item_research.infrastructure.event_bus.EventBus`; the planner, router
and cross-validation engine themselves never emit events.

All events carry a ``timestamp`` and a ``source_id`` identifying the item
being researched.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field

from .enums import GoalType, ResearchPhase, RouteTarget
from .values import ResearchTask

# ---------------------------------------------------------------------------
# Base event
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DomainEvent:
    """Base class for all domain events."""

    timestamp: float = field(default_factory=time.time)
    source_id: str = ""


# ---------------------------------------------------------------------------
# Field research events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TaskPlanned(DomainEvent):
    """The planner chose the next research task."""

    task: ResearchTask | None = None
    iteration: int = 0


@dataclass(frozen=True)
class TaskExecuted(DomainEvent):
    """A research task ran and its observations were folded in."""

    tool: str = ""
    fields_updated: tuple[str, ...] = ()
    cost: float = 0.0
    succeeded: bool = True


@dataclass(frozen=True)
class FieldUpdated(DomainEvent):
    """A field's value, confidence or status changed."""

    field_name: str = ""
    confidence: float = 0.0
    status: str = ""


@dataclass(frozen=True)
class ResearchStopped(DomainEvent):
    """Field research for an item ended."""

    reason: str = ""
    iterations: int = 0
    total_cost: float = 0.0


# ---------------------------------------------------------------------------
# Goal / phase events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RouteSelected(DomainEvent):
    """The goal-phase router chose the next step."""

    phase: ResearchPhase | None = None
    route: RouteTarget | None = None
    reason: str = ""


@dataclass(frozen=True)
class GoalCompleted(DomainEvent):
    """A research goal was marked completed."""

    goal_id: str = ""
    goal_type: GoalType | None = None
    confidence: float = 0.0


@dataclass(frozen=True)
class PhaseTransitioned(DomainEvent):
    """The pipeline moved from one macro phase to the next."""

    from_phase: ResearchPhase | None = None
    to_phase: ResearchPhase | None = None


@dataclass(frozen=True)
class StepFailed(DomainEvent):
    """A pipeline step handler raised."""

    route: str = ""
    error: str = ""

"""Value objects for the item research domain.

Value objects are immutable and compared by value.  Every class here is a
frozen ``dataclass``; collection fields are tuples or read-only mappings so
instances can be shared freely between the planner, the router and callers.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from .enums import (
    ConflictSeverity,
    FieldDataType,
    ResearchDecision,
    ResearchMode,
    ResearchPhase,
    RouteTarget,
    SourceGroup,
)


def clamp_unit(value: float) -> float:
    """Clamp *value* into ``[0, 1]``; NaN maps to 0."""
    if math.isnan(value):
        return 0.0
    return min(1.0, max(0.0, float(value)))


# ===================================================================== #
#  Observations                                                          #
# ===================================================================== #


@dataclass(frozen=True)
class FieldDataSource:
    """A single observation of a field value from one external provider.

    Attributes
    ----------
    source_type:
        Provider identifier (``"keepa"``, ``"vision_ai"``, ``"ebay_sold"``...).
        Mapped to a :class:`SourceGroup` by the cross-validation engine.
    confidence:
        Provider-reported confidence, clamped into ``[0, 1]``.
    timestamp:
        Observation time (seconds since epoch).
    raw_value:
        The observed value, or ``None`` when the provider only reported
        confidence without a concrete value.
    cost:
        USD spent obtaining this observation.
    """

    source_type: str
    confidence: float
    timestamp: float = 0.0
    raw_value: Any = None
    cost: float = 0.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "confidence", clamp_unit(self.confidence))

    @property
    def has_value(self) -> bool:
        return self.raw_value is not None


@dataclass(frozen=True)
class FieldConfidenceScore:
    """Aggregated confidence of a field plus the observations behind it."""

    value: float
    sources: tuple[FieldDataSource, ...] = ()
    last_updated: float = 0.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "value", clamp_unit(self.value))
        if not isinstance(self.sources, tuple):
            object.__setattr__(self, "sources", tuple(self.sources))


# ===================================================================== #
#  Cross-validation results                                              #
# ===================================================================== #


@dataclass(frozen=True)
class Conflict:
    """Two cross-group observations of one field that disagree."""

    field_name: str
    value1: Any
    source1: str
    group1: SourceGroup
    value2: Any
    source2: str
    group2: SourceGroup
    severity: ConflictSeverity
    timestamp: float = 0.0

    @property
    def is_major(self) -> bool:
        return self.severity is ConflictSeverity.MAJOR


@dataclass(frozen=True)
class CrossValidatedField:
    """Reconciled confidence for one field after cross-validation."""

    field_name: str
    value: Any
    base_confidence: float
    cross_validated_confidence: float
    sources: tuple[FieldDataSource, ...] = ()
    independent_group_count: int = 0
    agreement_score: float = 1.0
    conflicts: tuple[Conflict, ...] = ()
    corroboration_multiplier: float = 1.0

    @property
    def has_conflicts(self) -> bool:
        return bool(self.conflicts)

    @property
    def major_conflict_count(self) -> int:
        return sum(1 for c in self.conflicts if c.is_major)


@dataclass(frozen=True)
class CrossValidationResult:
    """Cross-validation of every field of an item."""

    fields: Mapping[str, CrossValidatedField] = field(default_factory=dict)
    total_conflicts: int = 0
    fields_with_multiple_independent_sources: int = 0
    average_corroboration: float = 1.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "fields", MappingProxyType(dict(self.fields)))

    @property
    def conflicts(self) -> tuple[Conflict, ...]:
        return tuple(c for f in self.fields.values() for c in f.conflicts)


# ===================================================================== #
#  Category schema                                                       #
# ===================================================================== #


@dataclass(frozen=True)
class FieldDefinition:
    """One field of a category schema, used to seed an item's field states."""

    name: str
    display_name: str = ""
    required: bool = False
    required_by: tuple[str, ...] = ()
    data_type: FieldDataType = FieldDataType.STRING
    allowed_values: tuple[Any, ...] = ()


# ===================================================================== #
#  Planning inputs                                                       #
# ===================================================================== #


@dataclass(frozen=True)
class ResearchConstraints:
    """Resource envelope of one item's research run.

    ``required_confidence`` is the threshold at which a required field counts
    as complete; ``recommended_confidence`` is the looser threshold applied to
    optional fields when scoring completeness.
    """

    max_cost_usd: float = 0.50
    max_time_ms: float = 90_000
    max_iterations: int = 10
    required_confidence: float = 0.75
    recommended_confidence: float = 0.55
    mode: ResearchMode = ResearchMode.BALANCED

    def __post_init__(self) -> None:
        if self.max_cost_usd < 0:
            raise ValueError(f"max_cost_usd must be >= 0, got {self.max_cost_usd}")
        if self.max_time_ms < 0:
            raise ValueError(f"max_time_ms must be >= 0, got {self.max_time_ms}")
        if self.max_iterations < 0:
            raise ValueError(f"max_iterations must be >= 0, got {self.max_iterations}")
        for name in ("required_confidence", "recommended_confidence"):
            value = getattr(self, name)
            if not (0.0 <= value <= 1.0):
                raise ValueError(f"{name} must be in [0, 1], got {value}")


@dataclass(frozen=True)
class ResearchContext:
    """What is already known about the item and which providers are configured."""

    has_upc: bool = False
    has_brand: bool = False
    has_model: bool = False
    has_category: bool = False
    has_images: bool = False
    image_count: int = 0
    keepa_configured: bool = False
    amazon_configured: bool = False
    upc_database_configured: bool = False

    def flag(self, name: str) -> bool:
        """Return the boolean context flag *name* (unknown names are false)."""
        return bool(getattr(self, name, False))


@dataclass(frozen=True)
class ToolSpec:
    """Declarative description of one research tool.

    Attributes
    ----------
    tool_id:
        Stable identifier used in task history and the boost table.
    priority:
        Base planning score.
    estimated_cost:
        Expected USD cost of a single invocation.
    estimated_time_ms:
        Expected latency of a single invocation.
    provides_fields:
        Field names the tool can fill.  ``"*"`` makes the tool a wildcard
        that can attempt any field.
    requires:
        :class:`ResearchContext` flags that must all be true.
    requires_any:
        :class:`ResearchContext` flags of which at least one must be true.
    """

    tool_id: str
    display_name: str = ""
    priority: float = 50.0
    estimated_cost: float = 0.0
    estimated_time_ms: float = 1000.0
    provides_fields: tuple[str, ...] = ()
    requires: tuple[str, ...] = ()
    requires_any: tuple[str, ...] = ()

    WILDCARD = "*"

    def __post_init__(self) -> None:
        if not self.tool_id:
            raise ValueError("tool_id must be non-empty")
        if self.estimated_cost < 0:
            raise ValueError(f"estimated_cost must be >= 0, got {self.estimated_cost}")
        for name in ("provides_fields", "requires", "requires_any"):
            value = getattr(self, name)
            if not isinstance(value, tuple):
                object.__setattr__(self, name, tuple(value))

    @property
    def is_wildcard(self) -> bool:
        return self.WILDCARD in self.provides_fields

    def declares(self, field_name: str) -> bool:
        """True when the tool names *field_name* explicitly."""
        return field_name in self.provides_fields

    def can_provide(self, field_name: str) -> bool:
        return self.is_wildcard or self.declares(field_name)

    def prerequisites_met(self, context: ResearchContext) -> bool:
        if not all(context.flag(name) for name in self.requires):
            return False
        if self.requires_any and not any(context.flag(name) for name in self.requires_any):
            return False
        return True


# ===================================================================== #
#  Planning outputs                                                      #
# ===================================================================== #


@dataclass(frozen=True)
class ResearchTask:
    """The single next action chosen by the planner."""

    task_id: str
    tool: str
    target_fields: tuple[str, ...]
    priority: float
    estimated_cost: float = 0.0
    estimated_time_ms: float = 0.0
    reasoning: str = ""

    @property
    def primary_field(self) -> str:
        return self.target_fields[0] if self.target_fields else ""


@dataclass(frozen=True)
class ContinueDecision:
    """Whether another research iteration should run, and why."""

    should_continue: bool
    reason: str
    fields_needing_work: tuple[str, ...] = ()
    budget_remaining: float = 0.0
    iterations_remaining: int = 0


@dataclass(frozen=True)
class FieldEvaluationResult:
    """Evaluation of an item's field states between iterations."""

    decision: ResearchDecision
    reason: str
    fields_needing_research: tuple[str, ...] = ()
    completion_score: float = 0.0
    budget_remaining: float = 0.0
    iterations_remaining: int = 0


@dataclass(frozen=True)
class CostEstimate:
    """Projected cost of researching every remaining field once."""

    estimated_cost: float = 0.0
    estimated_iterations: int = 0
    fields_covered: tuple[str, ...] = ()


@dataclass(frozen=True)
class RouteDecision:
    """The router's choice of next step, with the phase it was made in."""

    phase: ResearchPhase
    route: RouteTarget
    goal_id: str | None = None
    reason: str = ""

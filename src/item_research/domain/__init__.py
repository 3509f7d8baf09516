"""Domain layer for the item research core.

Re-exports all public domain types so that consumers can write::

    from item_research.domain import FieldState, ResearchGoal, GoalType
"""

# -- Enumerations -------------------------------------------------------------
from .enums import (
    ConflictSeverity,
    FieldDataType,
    FieldStatus,
    GoalStatus,
    GoalType,
    ResearchDecision,
    ResearchMode,
    ResearchPhase,
    RouteTarget,
    SourceGroup,
    TerminationReason,
)

# -- Value Objects ------------------------------------------------------------
from .values import (
    Conflict,
    ContinueDecision,
    CostEstimate,
    CrossValidatedField,
    CrossValidationResult,
    FieldConfidenceScore,
    FieldDefinition,
    FieldDataSource,
    FieldEvaluationResult,
    ResearchConstraints,
    ResearchContext,
    ResearchTask,
    RouteDecision,
    ToolSpec,
)

# -- Entities -----------------------------------------------------------------
from .entities import FieldState, ResearchGoal

# -- Aggregates ---------------------------------------------------------------
from .aggregates import ItemFieldStates, ResearchTaskHistory

# -- Domain Events ------------------------------------------------------------
from .events import (
    DomainEvent,
    FieldUpdated,
    GoalCompleted,
    PhaseTransitioned,
    ResearchStopped,
    RouteSelected,
    StepFailed,
    TaskExecuted,
    TaskPlanned,
)

# -- Exceptions ---------------------------------------------------------------
from .exceptions import ConfigurationError, ItemResearchError, PipelineError

__all__ = [
    # enums
    "ConflictSeverity",
    "FieldDataType",
    "FieldStatus",
    "GoalStatus",
    "GoalType",
    "ResearchDecision",
    "ResearchMode",
    "ResearchPhase",
    "RouteTarget",
    "SourceGroup",
    "TerminationReason",
    # values
    "Conflict",
    "ContinueDecision",
    "CostEstimate",
    "CrossValidatedField",
    "CrossValidationResult",
    "FieldConfidenceScore",
    "FieldDefinition",
    "FieldDataSource",
    "FieldEvaluationResult",
    "ResearchConstraints",
    "ResearchContext",
    "ResearchTask",
    "RouteDecision",
    "ToolSpec",
    # entities
    "FieldState",
    "ResearchGoal",
    # aggregates
    "ItemFieldStates",
    "ResearchTaskHistory",
    # events
    "DomainEvent",
    "FieldUpdated",
    "GoalCompleted",
    "PhaseTransitioned",
    "ResearchStopped",
    "RouteSelected",
    "StepFailed",
    "TaskExecuted",
    "TaskPlanned",
    # exceptions
    "ConfigurationError",
    "ItemResearchError",
    "PipelineError",
]

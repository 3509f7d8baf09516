"""Service layer for the item research core.

Re-exports public service types for convenient top-level access::

    from item_research.services import (
        CrossValidationEngine, values_agree, conflict_severity,
        FieldStateManager,
        ResearchTaskPlanner, research_context_from_states,
        GoalRouter,
        FieldResearchLoop, ResearchPipeline, PipelineState, StopReason,
    )
"""

from item_research.services.cross_validation import (
    CrossValidationEngine,
    conflict_severity,
    values_agree,
)
from item_research.services.field_state import (
    AllowedValueMatch,
    FieldStateManager,
    FieldSummary,
    ReadinessCheck,
)
from item_research.services.goal_routing import (
    GoalRouter,
    GoalSetUpdate,
    assembly_completion_confidence,
    dependencies_satisfied,
    find_goal,
    is_goal_completed,
    later_phase,
    market_completion_confidence,
    metadata_completion_confidence,
    ready_goals,
    update_goal,
)
from item_research.services.pipeline import (
    FieldResearchLoop,
    FieldResearchResult,
    Observation,
    PipelineResult,
    PipelineState,
    ResearchPipeline,
    StopReason,
    TaskOutcome,
    make_metadata_handler,
)
from item_research.services.planning import (
    ResearchTaskPlanner,
    ScoredCandidate,
    research_context_from_states,
)

__all__ = [
    # cross-validation
    "CrossValidationEngine",
    "conflict_severity",
    "values_agree",
    # field state
    "AllowedValueMatch",
    "FieldStateManager",
    "FieldSummary",
    "ReadinessCheck",
    # goal routing
    "GoalRouter",
    "GoalSetUpdate",
    "assembly_completion_confidence",
    "dependencies_satisfied",
    "find_goal",
    "is_goal_completed",
    "later_phase",
    "market_completion_confidence",
    "metadata_completion_confidence",
    "ready_goals",
    "update_goal",
    # pipeline
    "FieldResearchLoop",
    "FieldResearchResult",
    "Observation",
    "PipelineResult",
    "PipelineState",
    "ResearchPipeline",
    "StopReason",
    "TaskOutcome",
    "make_metadata_handler",
    # planning
    "ResearchTaskPlanner",
    "ScoredCandidate",
    "research_context_from_states",
]

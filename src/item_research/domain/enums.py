"""Enumerations for the item research domain.

All enums use string values so they serialize cleanly to JSON and survive a
round trip through LangGraph state and caller-owned checkpoints.
"""

from __future__ import annotations

from enum import Enum


class SourceGroup(Enum):
    """Independence group of an observation's provider.

    Two sources in the same group share an upstream and never count as
    independent corroboration of each other.
    """

    CATALOG = "catalog"
    VISION = "vision"
    TEXT_EXTRACTION = "text_extraction"
    MARKETPLACE_EBAY = "marketplace_ebay"
    WEB_SEARCH = "web_search"
    USER_INPUT = "user_input"
    CODE_LOOKUP = "code_lookup"


class ConflictSeverity(Enum):
    """How strongly two observations disagree."""

    MINOR = "minor"
    MAJOR = "major"


class FieldStatus(Enum):
    """Lifecycle status of a single tracked item field."""

    PENDING = "pending"
    RESEARCHING = "researching"
    COMPLETE = "complete"
    FAILED = "failed"
    USER_REQUIRED = "user_required"

    @property
    def is_terminal(self) -> bool:
        return self in (FieldStatus.COMPLETE, FieldStatus.FAILED, FieldStatus.USER_REQUIRED)


class FieldDataType(Enum):
    """Declared value type of a field in a category schema."""

    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    ARRAY = "array"
    ENUM = "enum"


class ResearchMode(Enum):
    """Preset resource envelope for a research run."""

    FAST = "fast"
    BALANCED = "balanced"
    THOROUGH = "thorough"


class ResearchDecision(Enum):
    """Outcome of evaluating an item's field states between iterations."""

    CONTINUE = "continue"
    COMPLETE = "complete"
    STOP_WITH_WARNINGS = "stop_with_warnings"


class GoalType(Enum):
    """Macro research goals of the pipeline."""

    IDENTIFY_PRODUCT = "IDENTIFY_PRODUCT"
    GATHER_METADATA = "GATHER_METADATA"
    RESEARCH_MARKET = "RESEARCH_MARKET"
    ASSEMBLE_LISTING = "ASSEMBLE_LISTING"


class GoalStatus(Enum):
    """Lifecycle status of a research goal."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    BLOCKED = "blocked"
    SKIPPED = "skipped"


class ResearchPhase(Enum):
    """Macro phase of the pipeline: identification -> parallel -> assembly -> done."""

    IDENTIFICATION = "identification"
    PARALLEL = "parallel"
    ASSEMBLY = "assembly"
    DONE = "done"


class RouteTarget(Enum):
    """Next step the goal-phase router hands control to."""

    EXECUTE_IDENTIFICATION = "execute_identification"
    COMPLETE_IDENTIFICATION_GOAL = "complete_identification_goal"
    EXECUTE_GATHER_METADATA = "execute_gather_metadata"
    COMPLETE_METADATA_GOAL = "complete_metadata_goal"
    EXECUTE_MARKET_RESEARCH = "execute_market_research"
    COMPLETE_MARKET_GOAL = "complete_market_goal"
    TRANSITION_TO_ASSEMBLY = "transition_to_assembly"
    EXECUTE_ASSEMBLY = "execute_assembly"
    COMPLETE_ASSEMBLY_GOAL = "complete_assembly_goal"
    PERSIST_RESULTS = "persist_results"


class TerminationReason(Enum):
    """Why the task planner stopped proposing work for an item."""

    ITERATION_LIMIT = "iteration_limit"
    NO_PROGRESS = "no_progress"
    BUDGET_EXHAUSTED = "budget_exhausted"
    TIME_LIMIT = "time_limit"
    NO_RESEARCHABLE_FIELDS = "no_researchable_fields"
    NO_ELIGIBLE_TOOL = "no_eligible_tool"

"""Item research core.

Decision engine of an autonomous item research pipeline: a cross-validation
engine reconciling multi-source field observations, a research task planner
choosing the next tool to run, and a goal-phase router sequencing the
identification, metadata / market research and listing assembly stages.
"""

__version__ = "0.1.0"

from item_research.graph import build_research_graph, make_initial_state
from item_research.services import (
    CrossValidationEngine,
    FieldStateManager,
    GoalRouter,
    ResearchPipeline,
    ResearchTaskPlanner,
)

__all__ = [
    "CrossValidationEngine",
    "FieldStateManager",
    "GoalRouter",
    "ResearchPipeline",
    "ResearchTaskPlanner",
    "build_research_graph",
    "make_initial_state",
]

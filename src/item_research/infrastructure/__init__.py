"""Infrastructure layer for the item research core.

Re-exports the public API surface for convenience::

    from item_research.infrastructure import (
        EventBus, EventStore,
        ToolCatalog, default_tool_catalog,
        PlannerConfig, CrossValidationConfig, GoalRouterConfig,
    )
"""

from item_research.infrastructure.catalog import (
    ToolCatalog,
    default_tool_catalog,
    field_schema_from_dict,
    load_field_schema,
)
from item_research.infrastructure.config import (
    RESEARCH_MODE_CONSTRAINTS,
    ContextBoost,
    CrossValidationConfig,
    FieldStateConfig,
    GoalRouterConfig,
    PipelineConfig,
    PlannerConfig,
    constraints_for_mode,
    load_config_from_json,
)
from item_research.infrastructure.event_bus import EventBus, EventStore

__all__ = [
    "ContextBoost",
    "CrossValidationConfig",
    "EventBus",
    "EventStore",
    "FieldStateConfig",
    "GoalRouterConfig",
    "PipelineConfig",
    "PlannerConfig",
    "RESEARCH_MODE_CONSTRAINTS",
    "ToolCatalog",
    "constraints_for_mode",
    "default_tool_catalog",
    "field_schema_from_dict",
    "load_config_from_json",
    "load_field_schema",
]

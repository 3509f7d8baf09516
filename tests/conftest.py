"""Shared fixtures for the item research test suite."""

from __future__ import annotations

import itertools

import pytest

from item_research.domain.aggregates import ItemFieldStates
from item_research.domain.enums import FieldDataType
from item_research.domain.values import (
    FieldDataSource,
    FieldDefinition,
    ResearchConstraints,
    ResearchContext,
)
from item_research.infrastructure.config import constraints_for_mode
from item_research.infrastructure.event_bus import EventBus
from item_research.services.cross_validation import CrossValidationEngine
from item_research.services.field_state import FieldStateManager
from item_research.services.goal_routing import GoalRouter
from item_research.services.planning import ResearchTaskPlanner

# ---------------------------------------------------------------------------
# Service fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def engine() -> CrossValidationEngine:
    return CrossValidationEngine()


@pytest.fixture
def manager() -> FieldStateManager:
    return FieldStateManager()


@pytest.fixture
def planner() -> ResearchTaskPlanner:
    return ResearchTaskPlanner()


@pytest.fixture
def router() -> GoalRouter:
    """Router with deterministic goal ids ``goal-1`` .. ``goal-4``."""
    counter = itertools.count(1)
    return GoalRouter(id_factory=lambda: f"goal-{next(counter)}")


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


# ---------------------------------------------------------------------------
# Item fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def definitions() -> tuple[FieldDefinition, ...]:
    """A small apparel-like schema: brand and model required, three optional fields."""
    return (
        FieldDefinition("brand", required=True, required_by=("ebay",)),
        FieldDefinition("model", required=True, required_by=("ebay",)),
        FieldDefinition("mpn"),
        FieldDefinition("weight", data_type=FieldDataType.NUMBER),
        FieldDefinition(
            "color",
            data_type=FieldDataType.ENUM,
            allowed_values=("Black", "White", "Navy Blue"),
        ),
    )


@pytest.fixture
def empty_states(
    manager: FieldStateManager, definitions: tuple[FieldDefinition, ...]
) -> ItemFieldStates:
    return manager.initialize(definitions)


@pytest.fixture
def brand_model_states(
    manager: FieldStateManager, definitions: tuple[FieldDefinition, ...]
) -> ItemFieldStates:
    """Brand and model entered by the seller; mpn, weight and color still open."""
    return manager.observe(
        manager.initialize(definitions),
        [
            ("brand", "Sony", FieldDataSource("user_input", 1.0, raw_value="Sony")),
            ("model", "WH-1000XM4", FieldDataSource("user_input", 1.0, raw_value="WH-1000XM4")),
        ],
    )


@pytest.fixture
def brand_model_context() -> ResearchContext:
    return ResearchContext(has_brand=True, has_model=True)


@pytest.fixture
def balanced_constraints() -> ResearchConstraints:
    return constraints_for_mode("balanced")


@pytest.fixture
def dollar_constraints() -> ResearchConstraints:
    """$1 budget, 10 iterations."""
    return ResearchConstraints(max_cost_usd=1.0, max_iterations=10)

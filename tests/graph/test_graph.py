"""Integration tests for the research pipeline graph."""

from __future__ import annotations

from typing import Any

from item_research.domain.enums import GoalStatus, ResearchPhase
from item_research.domain.events import GoalCompleted, PhaseTransitioned
from item_research.domain.values import ResearchConstraints, ResearchContext
from item_research.graph.graph import build_research_graph, make_initial_state
from item_research.services.field_state import FieldStateManager
from item_research.services.goal_routing import GoalRouter
from item_research.services.pipeline import (
    FieldResearchLoop,
    ResearchPipeline,
    TaskOutcome,
    make_metadata_handler,
)
from item_research.services.planning import ResearchTaskPlanner

CONFIG = {"recursion_limit": 100}


class TestBuildResearchGraph:

    def test_graph_compiles(self) -> None:
        app = build_research_graph()
        assert app is not None

    def test_graph_with_checkpointer(self) -> None:
        from langgraph.checkpoint.memory import MemorySaver
        app = build_research_graph(checkpointer=MemorySaver())
        assert app is not None

    def test_compiles_with_interrupt(self) -> None:
        app = build_research_graph(interrupt_before=["persist_results"])
        assert app is not None


class TestGraphInvoke:

    def test_runs_to_completion(self, router: GoalRouter) -> None:
        app = build_research_graph(router)
        result = app.invoke(make_initial_state(router, item_id="item-1"), CONFIG)

        assert result["stop_reason"] == "completed"
        assert result["route_history"] == [
            "execute_identification",
            "execute_identification",
            "execute_identification",
            "complete_identification_goal",
            "execute_gather_metadata",
            "execute_market_research",
            "transition_to_assembly",
            "execute_assembly",
            "persist_results",
        ]
        assert result["phase"] is ResearchPhase.DONE
        assert all(g.status is GoalStatus.COMPLETED for g in result["goals"])

    def test_events(self, router: GoalRouter) -> None:
        app = build_research_graph(router)
        result = app.invoke(make_initial_state(router, item_id="item-1"), CONFIG)
        events = result["events"]
        assert sum(isinstance(e, GoalCompleted) for e in events) == 4
        assert [e.to_phase for e in events if isinstance(e, PhaseTransitioned)] == [
            ResearchPhase.PARALLEL,
            ResearchPhase.ASSEMBLY,
            ResearchPhase.DONE,
        ]

    def test_reaches_max_steps(self, router: GoalRouter) -> None:
        app = build_research_graph(router)
        result = app.invoke(make_initial_state(router, max_steps=3), CONFIG)
        assert result["step"] == 3
        assert result["stop_reason"] == "max_steps"
        assert result["phase"] is ResearchPhase.IDENTIFICATION

    def test_handlers_drive_completion(self, router: GoalRouter) -> None:
        app = build_research_graph(
            router,
            identify=lambda s: {"identification_confidence": 0.9},
            research_market=lambda s: {"comp_count": 4},
            assemble=lambda s: {"listing": {"title": "Sony WH-1000XM4"}},
        )
        result = app.invoke(make_initial_state(router), CONFIG)
        assert result["route_history"][:2] == [
            "execute_identification",
            "complete_identification_goal",
        ]
        confidences = [g.confidence for g in result["goals"]]
        assert confidences == [0.9, 0.5, 0.6, 0.85]
        assert result["listing"] == {"title": "Sony WH-1000XM4"}

    def test_checkpointed_run(self, router: GoalRouter) -> None:
        from langgraph.checkpoint.memory import MemorySaver
        app = build_research_graph(router, checkpointer=MemorySaver())
        config: dict[str, Any] = {**CONFIG, "configurable": {"thread_id": "item-1"}}
        result = app.invoke(make_initial_state(router, item_id="item-1"), config)
        assert result["stop_reason"] == "completed"


class TestHostsAgree:

    def test_same_routes_as_interpreter(self) -> None:
        identify = lambda s: {"identification_confidence": 0.7}  # noqa: E731
        pipeline_router = GoalRouter(id_factory=iter(["a", "b", "c", "d"]).__next__)
        graph_router = GoalRouter(id_factory=iter(["a", "b", "c", "d"]).__next__)

        pipeline = ResearchPipeline(pipeline_router, identify=identify, clock=lambda: 0.0)
        interpreted = pipeline.run(pipeline.initial_state("item-1"))

        app = build_research_graph(graph_router, identify=identify, clock=lambda: 0.0)
        graphed = app.invoke(make_initial_state(graph_router, item_id="item-1"), CONFIG)

        assert [r.value for r in interpreted.routes] == graphed["route_history"]
        assert interpreted.state.goals == tuple(graphed["goals"])

    def test_metadata_handler_runs_in_graph(
        self,
        router: GoalRouter,
        planner: ResearchTaskPlanner,
        manager: FieldStateManager,
        brand_model_states: Any,
        brand_model_context: ResearchContext,
        dollar_constraints: ResearchConstraints,
    ) -> None:
        loop = FieldResearchLoop(planner, manager, lambda t, s: TaskOutcome(succeeded=False))
        app = build_research_graph(
            router,
            identify=lambda s: {"identification_confidence": 0.9},
            gather_metadata=make_metadata_handler(loop, dollar_constraints, brand_model_context),
        )
        result = app.invoke(make_initial_state(router, field_states=brand_model_states), CONFIG)
        assert result["field_states"].iterations == 2
        assert result["goals"][1].status is GoalStatus.COMPLETED

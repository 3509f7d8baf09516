"""LangGraph node functions for the research pipeline.

Each node takes a ``ResearchGraphState`` and returns a partial update dict.
Nodes are built by ``make_*`` factories that close over the
:class:`~item_research.services.goal_routing.GoalRouter` and the injected step
handlers, so the compiled graph carries no strategies in its state and stays
checkpointable.

Step handlers have the same contract as under
:class:`~item_research.services.pipeline.ResearchPipeline`: they receive a
:class:`~item_research.services.pipeline.PipelineState` snapshot and return a
mapping of attribute updates.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

from item_research.domain.enums import GoalType, ResearchPhase, RouteTarget
from item_research.domain.events import GoalCompleted, PhaseTransitioned, RouteSelected
from item_research.infrastructure.config import PipelineConfig
from item_research.services.goal_routing import (
    GoalRouter,
    GoalSetUpdate,
    find_goal,
    later_phase,
)
from item_research.services.pipeline import (
    PipelineState,
    StepHandler,
    StopReason,
    check_handler_updates,
)

logger = logging.getLogger(__name__)

Node = Callable[[dict[str, Any]], dict[str, Any]]

_EXECUTION_GOALS = {
    RouteTarget.EXECUTE_IDENTIFICATION: GoalType.IDENTIFY_PRODUCT,
    RouteTarget.EXECUTE_GATHER_METADATA: GoalType.GATHER_METADATA,
    RouteTarget.EXECUTE_MARKET_RESEARCH: GoalType.RESEARCH_MARKET,
    RouteTarget.EXECUTE_ASSEMBLY: GoalType.ASSEMBLE_LISTING,
}


def _phase_update(
    state: dict[str, Any], phase: ResearchPhase | None, clock: Callable[[], float]
) -> tuple[dict[str, Any], list[Any]]:
    current = state.get("phase", ResearchPhase.IDENTIFICATION)
    if phase is None:
        return {}, []
    target = later_phase(phase, current)
    if target is current:
        return {}, []
    logger.info("Graph: phase %s -> %s", current.value, target.value)
    event = PhaseTransitioned(
        timestamp=clock(),
        source_id=state.get("item_id", ""),
        from_phase=current,
        to_phase=target,
    )
    return {"phase": target}, [event]


def _goal_update(
    state: dict[str, Any], update: GoalSetUpdate, clock: Callable[[], float]
) -> dict[str, Any]:
    result: dict[str, Any] = {
        "goals": update.goals,
        "completed_goal_ids": update.completed_goal_ids,
    }
    events: list[Any] = []
    if update.completed_goal is not None:
        goal = update.completed_goal
        events.append(
            GoalCompleted(
                timestamp=clock(),
                source_id=state.get("item_id", ""),
                goal_id=goal.goal_id,
                goal_type=goal.goal_type,
                confidence=goal.confidence,
            )
        )
    phase_result, phase_events = _phase_update(state, update.phase, clock)
    result.update(phase_result)
    events.extend(phase_events)
    if events:
        result["events"] = events
    return result


# ===================================================================== #
#  Router node                                                           #
# ===================================================================== #


def make_router_node(router: GoalRouter, clock: Callable[[], float] = time.time) -> Node:
    """Ask the router for the next route and record it in state.

    Reads ``goals``, ``completed_goal_ids``, ``phase``, the identification
    counters, ``step`` and ``max_steps``.  Writes ``route``, ``step``,
    ``phase``, ``events`` and ``route_history``; writes ``stop_reason`` once
    ``max_steps`` routed steps have run.
    """

    def router_node(state: dict[str, Any]) -> dict[str, Any]:
        step = state.get("step", 0)
        max_steps = state.get("max_steps", PipelineConfig().max_steps)
        if step >= max_steps:
            logger.warning("Graph: max steps (%d) reached", max_steps)
            return {"stop_reason": StopReason.MAX_STEPS.value}

        decision = router.route(
            tuple(state.get("goals", ())),
            tuple(state.get("completed_goal_ids", ())),
            state.get("identification_confidence", 0.0),
            state.get("identification_attempts", 0),
            current_phase=state.get("phase"),
        )
        logger.debug("Graph step %d: %s (%s)", step + 1, decision.route.value, decision.reason)

        result: dict[str, Any] = {
            "step": step + 1,
            "route": decision.route.value,
            "route_history": [decision.route.value],
        }
        events: list[Any] = [
            RouteSelected(
                timestamp=clock(),
                source_id=state.get("item_id", ""),
                phase=decision.phase,
                route=decision.route,
                reason=decision.reason,
            )
        ]
        phase_result, phase_events = _phase_update(state, decision.phase, clock)
        result.update(phase_result)
        result["events"] = events + phase_events
        return result

    return router_node


# ===================================================================== #
#  Execution nodes                                                       #
# ===================================================================== #


def make_execute_node(
    router: GoalRouter, route: RouteTarget, handler: StepHandler | None = None
) -> Node:
    """Start the route's goal and run *handler* on the resulting snapshot.

    The identification node also counts an identification attempt.
    """
    if route not in _EXECUTION_GOALS:
        raise ValueError(f"{route.value} is not an execution route")
    goal_type = _EXECUTION_GOALS[route]

    def execute_node(state: dict[str, Any]) -> dict[str, Any]:
        goals = tuple(state.get("goals", ()))
        goal = find_goal(goals, goal_type)
        updates: dict[str, Any] = {
            "goals": router.start_goal(goals, goal.goal_id if goal is not None else None)
        }
        if route is RouteTarget.EXECUTE_IDENTIFICATION:
            updates["identification_attempts"] = state.get("identification_attempts", 0) + 1
        if handler is not None:
            snapshot = PipelineState.from_mapping({**state, **updates})
            updates.update(check_handler_updates(route.value, handler(snapshot), route))
        return updates

    return execute_node


def make_persist_node(handler: StepHandler | None = None) -> Node:
    """Run the persist handler and mark the run completed."""

    def persist_node(state: dict[str, Any]) -> dict[str, Any]:
        updates: dict[str, Any] = {}
        if handler is not None:
            route = RouteTarget.PERSIST_RESULTS
            updates = check_handler_updates(
                route.value, handler(PipelineState.from_mapping(state)), route
            )
        updates["stop_reason"] = StopReason.COMPLETED.value
        return updates

    return persist_node


# ===================================================================== #
#  Completion and transition nodes                                       #
# ===================================================================== #


def make_completion_node(
    router: GoalRouter, route: RouteTarget, clock: Callable[[], float] = time.time
) -> Node:
    """Score and complete the goal behind a ``complete_*`` route.

    Also handles ``transition_to_assembly``.
    """
    completions: dict[RouteTarget, Callable[[dict[str, Any], tuple, tuple], GoalSetUpdate]] = {
        RouteTarget.COMPLETE_IDENTIFICATION_GOAL: lambda s, g, c: router.complete_identification(
            g, c, s.get("identification_confidence", 0.0), clock()
        ),
        RouteTarget.COMPLETE_METADATA_GOAL: lambda s, g, c: router.complete_metadata(
            g, c, s.get("field_states"), clock()
        ),
        RouteTarget.COMPLETE_MARKET_GOAL: lambda s, g, c: router.complete_market(
            g, c, s.get("comp_count", 0), clock()
        ),
        RouteTarget.COMPLETE_ASSEMBLY_GOAL: lambda s, g, c: router.complete_assembly(
            g, c, s.get("listing") is not None, clock()
        ),
        RouteTarget.TRANSITION_TO_ASSEMBLY: lambda s, g, c: router.transition_to_assembly(g, c),
    }
    if route not in completions:
        raise ValueError(f"{route.value} is not a completion route")
    complete = completions[route]

    def completion_node(state: dict[str, Any]) -> dict[str, Any]:
        goals = tuple(state.get("goals", ()))
        completed = tuple(state.get("completed_goal_ids", ()))
        return _goal_update(state, complete(state, goals, completed), clock)

    return completion_node

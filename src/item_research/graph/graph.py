"""Build the research pipeline StateGraph.

``build_research_graph()`` wires a router node, one node per route target and
the conditional edge between them into a compiled LangGraph.  Execution nodes
for metadata, market research and assembly flow straight into their
completion node; every other node returns to the router, and persisting
results ends the run::

    START -> router -> <route> -> ... -> router -> persist_results -> END
"""

import time
from collections.abc import Callable
from typing import Any

from langgraph.graph import END, START, StateGraph

from item_research.domain.aggregates import ItemFieldStates
from item_research.domain.enums import ResearchPhase, RouteTarget
from item_research.graph.edges import next_route
from item_research.graph.nodes import (
    make_completion_node,
    make_execute_node,
    make_persist_node,
    make_router_node,
)
from item_research.graph.state import ResearchGraphState
from item_research.infrastructure.config import PipelineConfig
from item_research.services.goal_routing import GoalRouter
from item_research.services.pipeline import StepHandler

ROUTER_NODE = "router"

_FOLLOW_UPS = {
    RouteTarget.EXECUTE_GATHER_METADATA: RouteTarget.COMPLETE_METADATA_GOAL,
    RouteTarget.EXECUTE_MARKET_RESEARCH: RouteTarget.COMPLETE_MARKET_GOAL,
    RouteTarget.EXECUTE_ASSEMBLY: RouteTarget.COMPLETE_ASSEMBLY_GOAL,
}


def build_research_graph(
    router: GoalRouter | None = None,
    identify: StepHandler | None = None,
    gather_metadata: StepHandler | None = None,
    research_market: StepHandler | None = None,
    assemble: StepHandler | None = None,
    persist: StepHandler | None = None,
    clock: Callable[[], float] = time.time,
    checkpointer: Any | None = None,
    interrupt_before: list[str] | None = None,
    interrupt_after: list[str] | None = None,
) -> Any:
    """Build and compile the research pipeline StateGraph.

    Parameters
    ----------
    router:
        Goal-phase router.  Defaults to ``GoalRouter()``.
    identify, gather_metadata, research_market, assemble, persist:
        Step handlers ``handler(PipelineState) -> updates``.  Missing
        handlers make their node a pure goal bookkeeping step.
    clock:
        Source of completion and event timestamps.
    checkpointer:
        Optional LangGraph checkpointer for persistence.
    interrupt_before:
        Node names to interrupt before (human-in-the-loop).
    interrupt_after:
        Node names to interrupt after (human-in-the-loop).

    Returns
    -------
    CompiledStateGraph
        A compiled graph ready for ``.invoke()`` or ``.stream()``.  A full
        run takes roughly 20 supersteps; raise ``recursion_limit`` in the
        invoke config when identification may take several attempts.
    """
    router = router or GoalRouter()
    graph = StateGraph(ResearchGraphState)

    handlers = {
        RouteTarget.EXECUTE_IDENTIFICATION: identify,
        RouteTarget.EXECUTE_GATHER_METADATA: gather_metadata,
        RouteTarget.EXECUTE_MARKET_RESEARCH: research_market,
        RouteTarget.EXECUTE_ASSEMBLY: assemble,
    }

    graph.add_node(ROUTER_NODE, make_router_node(router, clock))
    for route, handler in handlers.items():
        graph.add_node(route.value, make_execute_node(router, route, handler))
    for route in (
        RouteTarget.COMPLETE_IDENTIFICATION_GOAL,
        RouteTarget.COMPLETE_METADATA_GOAL,
        RouteTarget.COMPLETE_MARKET_GOAL,
        RouteTarget.COMPLETE_ASSEMBLY_GOAL,
        RouteTarget.TRANSITION_TO_ASSEMBLY,
    ):
        graph.add_node(route.value, make_completion_node(router, route, clock))
    graph.add_node(RouteTarget.PERSIST_RESULTS.value, make_persist_node(persist))

    # Edges
    graph.add_edge(START, ROUTER_NODE)
    graph.add_conditional_edges(
        ROUTER_NODE,
        next_route,
        {**{route.value: route.value for route in RouteTarget}, "__end__": END},
    )
    for route in RouteTarget:
        if route is RouteTarget.PERSIST_RESULTS:
            graph.add_edge(route.value, END)
        elif route in _FOLLOW_UPS:
            graph.add_edge(route.value, _FOLLOW_UPS[route].value)
        else:
            graph.add_edge(route.value, ROUTER_NODE)

    compile_kwargs: dict[str, Any] = {}
    if checkpointer is not None:
        compile_kwargs["checkpointer"] = checkpointer
    if interrupt_before:
        compile_kwargs["interrupt_before"] = interrupt_before
    if interrupt_after:
        compile_kwargs["interrupt_after"] = interrupt_after

    return graph.compile(**compile_kwargs)


def make_initial_state(
    router: GoalRouter | None = None,
    item_id: str = "",
    field_states: ItemFieldStates | None = None,
    max_steps: int | None = None,
) -> dict[str, Any]:
    """Initial graph input: the default goal DAG in the identification phase."""
    router = router or GoalRouter()
    return {
        "item_id": item_id,
        "goals": router.create_default_goals(),
        "completed_goal_ids": (),
        "phase": ResearchPhase.IDENTIFICATION,
        "identification_confidence": 0.0,
        "identification_attempts": 0,
        "field_states": field_states,
        "comp_count": 0,
        "listing": None,
        "step": 0,
        "max_steps": max_steps if max_steps is not None else PipelineConfig().max_steps,
        "events": [],
        "route_history": [],
    }

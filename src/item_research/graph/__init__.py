"""LangGraph host for the research pipeline.

Public API
----------
build_research_graph
    Build and compile the router-driven macro-phase graph.
make_initial_state
    Initial graph input with the default goal DAG.
ResearchGraphState
    The TypedDict state flowing through the graph.

Node factories (for advanced customisation):
    make_router_node, make_execute_node, make_completion_node, make_persist_node

Edge functions:
    next_route
"""

from item_research.graph.edges import next_route
from item_research.graph.graph import build_research_graph, make_initial_state
from item_research.graph.nodes import (
    make_completion_node,
    make_execute_node,
    make_persist_node,
    make_router_node,
)
from item_research.graph.state import ResearchGraphState

__all__ = [
    "ResearchGraphState",
    "build_research_graph",
    "make_completion_node",
    "make_execute_node",
    "make_initial_state",
    "make_persist_node",
    "make_router_node",
    "next_route",
]

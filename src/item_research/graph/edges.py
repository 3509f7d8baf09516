"""Conditional edge functions for the research LangGraph.

These functions determine routing between nodes based on the current state.
"""

from __future__ import annotations

from typing import Any

from item_research.domain.enums import RouteTarget


def next_route(state: dict[str, Any]) -> str:
    """After the router node, jump to the node named by ``state["route"]``.

    Returns ``"__end__"`` once a stop reason has been recorded.
    """
    if state.get("stop_reason"):
        return "__end__"
    return state.get("route") or RouteTarget.PERSIST_RESULTS.value

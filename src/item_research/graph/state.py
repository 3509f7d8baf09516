"""LangGraph state definition for the research pipeline.

Defines ``ResearchGraphState``, a ``TypedDict`` that flows through the
LangGraph ``StateGraph``.  Its routing keys mirror
:class:`~item_research.services.pipeline.PipelineState` so the same step
handlers run under either host.  Append-only channels use
``Annotated[list, operator.add]`` so that each node can emit new items
without overwriting previous entries.

Note: We intentionally do NOT use ``from __future__ import annotations`` because
LangGraph needs to resolve type hints at runtime via ``get_type_hints()``.
"""

import operator
from typing import Annotated, Any, TypedDict

from item_research.domain.aggregates import ItemFieldStates
from item_research.domain.entities import ResearchGoal
from item_research.domain.enums import ResearchPhase


class ResearchGraphState(TypedDict, total=False):
    """State flowing through the research LangGraph.

    Fields are grouped into:

    * **Loop control** -- step counter, limit, termination info.
    * **Goal state** -- goal set, completed ids, phase, identification counters.
    * **Item data** -- field states, market comps, assembled listing.
    * **Accumulation channels** -- append-reducers for history.
    """

    # -- Loop control --------------------------------------------------------
    step: int
    max_steps: int
    route: str
    stop_reason: str

    # -- Goal state ----------------------------------------------------------
    item_id: str
    goals: tuple[ResearchGoal, ...]
    completed_goal_ids: tuple[str, ...]
    phase: ResearchPhase
    identification_confidence: float
    identification_attempts: int

    # -- Item data -----------------------------------------------------------
    field_states: ItemFieldStates | None
    comp_count: int
    listing: Any

    # -- Accumulation channels (append-reducers) -----------------------------
    events: Annotated[list, operator.add]
    route_history: Annotated[list, operator.add]

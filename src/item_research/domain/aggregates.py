"""Aggregates for the item research domain.

``ItemFieldStates`` is the consistency boundary around an item's fields: the
per-field states plus the derived completeness counters and the resources
spent so far.  ``ResearchTaskHistory`` records what the planner has already
tried.  Both are immutable snapshots; services return new instances.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field, replace
from types import MappingProxyType

from .entities import FieldState


# ===================================================================== #
#  ItemFieldStates                                                       #
# ===================================================================== #


@dataclass(frozen=True)
class ItemFieldStates:
    """All tracked fields of one item plus derived completeness metrics.

    The metric attributes are maintained by
    :class:`~item_research.services.field_state.FieldStateManager`; this class
    only stores them.

    Attributes
    ----------
    fields:
        Field name -> :class:`FieldState`, in schema order.
    completion_score:
        Weighted completeness in ``[0, 1]``.
    ready_to_publish:
        ``True`` once every required field is complete.
    total_cost:
        Cumulative USD spent on this item.
    total_time_ms:
        Cumulative tool time spent on this item.
    iterations:
        Number of research iterations applied.
    """

    fields: Mapping[str, FieldState] = field(default_factory=dict)
    required_fields_complete: int = 0
    required_fields_total: int = 0
    recommended_fields_complete: int = 0
    recommended_fields_total: int = 0
    completion_score: float = 0.0
    ready_to_publish: bool = False
    total_cost: float = 0.0
    total_time_ms: float = 0.0
    iterations: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "fields", MappingProxyType(dict(self.fields)))

    # -- access -------------------------------------------------------------

    def get(self, name: str) -> FieldState | None:
        return self.fields.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self.fields

    def __iter__(self) -> Iterator[FieldState]:
        return iter(self.fields.values())

    def __len__(self) -> int:
        return len(self.fields)

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(self.fields)

    def value_of(self, name: str) -> object:
        state = self.fields.get(name)
        return state.value if state is not None else None

    # -- transitions --------------------------------------------------------

    def with_field(self, state: FieldState) -> ItemFieldStates:
        """Return a copy with *state* replacing (or adding) its field."""
        updated = dict(self.fields)
        updated[state.name] = state
        return replace(self, fields=updated)

    def with_usage(self, cost: float = 0.0, time_ms: float = 0.0, iterations: int = 0) -> ItemFieldStates:
        return replace(
            self,
            total_cost=self.total_cost + cost,
            total_time_ms=self.total_time_ms + time_ms,
            iterations=self.iterations + iterations,
        )

    def progress_hash(self) -> str:
        """Stable digest of field values, confidences and statuses.

        Two snapshots with the same hash represent no research progress.
        """
        payload = [
            [s.name, s.value, round(s.confidence, 4), s.status.value]
            for s in sorted(self.fields.values(), key=lambda s: s.name)
        ]
        encoded = json.dumps(payload, sort_keys=True, default=str)
        return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


# ===================================================================== #
#  ResearchTaskHistory                                                   #
# ===================================================================== #


@dataclass(frozen=True)
class ResearchTaskHistory:
    """What the planner has already tried for one item."""

    attempts_by_tool: Mapping[str, int] = field(default_factory=dict)
    failed_tools: frozenset[str] = frozenset()
    consecutive_no_progress: int = 0
    last_field_states_hash: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "attempts_by_tool", MappingProxyType(dict(self.attempts_by_tool)))
        if not isinstance(self.failed_tools, frozenset):
            object.__setattr__(self, "failed_tools", frozenset(self.failed_tools))

    def attempts_for(self, tool_id: str) -> int:
        return self.attempts_by_tool.get(tool_id, 0)

    def has_failed(self, tool_id: str) -> bool:
        return tool_id in self.failed_tools

    def with_attempt(self, tool_id: str) -> ResearchTaskHistory:
        attempts = dict(self.attempts_by_tool)
        attempts[tool_id] = attempts.get(tool_id, 0) + 1
        return replace(self, attempts_by_tool=attempts)

    def with_failure(self, tool_id: str) -> ResearchTaskHistory:
        return replace(self, failed_tools=self.failed_tools | {tool_id})

    def with_progress_hash(self, digest: str) -> ResearchTaskHistory:
        """Fold a new field-states digest into the no-progress counter."""
        if self.last_field_states_hash and digest == self.last_field_states_hash:
            streak = self.consecutive_no_progress + 1
        else:
            streak = 0
        return replace(self, consecutive_no_progress=streak, last_field_states_hash=digest)

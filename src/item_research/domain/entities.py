"""Domain entities for the item research core.

Entities have identity (a field name, a goal id) and a lifecycle.  They are
frozen dataclasses: every transition returns a *new* instance via
``dataclasses.replace`` so callers can keep the previous snapshot around.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any

from .enums import FieldDataType, FieldStatus, GoalStatus, GoalType
from .values import FieldConfidenceScore, FieldDataSource, clamp_unit


# ===================================================================== #
#  FieldState                                                            #
# ===================================================================== #


@dataclass(frozen=True)
class FieldState:
    """Research state of a single item field.

    Created from a category schema when an item enters the pipeline, folded
    forward on every tool result, and excluded from planning once it reaches
    a terminal status (``complete``, ``failed`` or ``user_required``).

    Attributes
    ----------
    name:
        Schema field name (``"brand"``, ``"mpn"``...).
    required_by:
        Marketplaces or schemas that require the field.
    allowed_values:
        Permitted values for ``enum`` fields; empty otherwise.
    score:
        Confidence of the current value and every observation behind it.
        Read it through :attr:`confidence`, :attr:`sources` and
        :attr:`last_updated`; replace it with :meth:`with_score`.
    attempts:
        Number of observations folded into this field so far.
    """

    name: str
    display_name: str = ""
    value: Any = None
    score: FieldConfidenceScore = field(default_factory=lambda: FieldConfidenceScore(0.0))
    required: bool = False
    required_by: tuple[str, ...] = ()
    data_type: FieldDataType = FieldDataType.STRING
    allowed_values: tuple[Any, ...] = ()
    attempts: int = 0
    status: FieldStatus = FieldStatus.PENDING

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("FieldState.name must be non-empty")
        if not self.display_name:
            object.__setattr__(self, "display_name", self.name.replace("_", " ").title())

    @property
    def confidence(self) -> float:
        return self.score.value

    @property
    def sources(self) -> tuple[FieldDataSource, ...]:
        return self.score.sources

    @property
    def last_updated(self) -> float:
        return self.score.last_updated

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def has_value(self) -> bool:
        return self.value is not None

    def with_status(self, status: FieldStatus) -> FieldState:
        return replace(self, status=status)

    def with_score(
        self,
        confidence: float | None = None,
        sources: tuple[FieldDataSource, ...] | None = None,
        last_updated: float | None = None,
    ) -> FieldState:
        """Copy with the given parts of :attr:`score` replaced."""
        score = self.score
        return replace(
            self,
            score=FieldConfidenceScore(
                value=score.value if confidence is None else confidence,
                sources=score.sources if sources is None else sources,
                last_updated=score.last_updated if last_updated is None else last_updated,
            ),
        )


# ===================================================================== #
#  ResearchGoal                                                          #
# ===================================================================== #


@dataclass(frozen=True)
class ResearchGoal:
    """A macro goal of the research pipeline.

    Goals form a small DAG through ``dependencies`` (goal ids).  A goal is
    immutable once completed: :meth:`complete` on a completed goal returns it
    unchanged.
    """

    goal_id: str
    goal_type: GoalType
    status: GoalStatus = GoalStatus.PENDING
    confidence: float = 0.0
    dependencies: tuple[str, ...] = ()
    attempts: int = 0
    max_attempts: int = 3
    required_confidence: float = 0.85
    completed_at: float | None = None

    def __post_init__(self) -> None:
        if not self.goal_id:
            raise ValueError("ResearchGoal.goal_id must be non-empty")
        object.__setattr__(self, "confidence", clamp_unit(self.confidence))
        if not isinstance(self.dependencies, tuple):
            object.__setattr__(self, "dependencies", tuple(self.dependencies))

    @property
    def is_completed(self) -> bool:
        return self.status is GoalStatus.COMPLETED

    @property
    def attempts_exhausted(self) -> bool:
        return self.attempts >= self.max_attempts

    def start(self) -> ResearchGoal:
        """Mark the goal in progress (no-op unless pending)."""
        if self.status is not GoalStatus.PENDING:
            return self
        return replace(self, status=GoalStatus.IN_PROGRESS)

    def record_attempt(self) -> ResearchGoal:
        if self.is_completed:
            return self
        return replace(self, attempts=self.attempts + 1)

    def complete(self, confidence: float, completed_at: float) -> ResearchGoal:
        """Return a completed copy of the goal, or ``self`` if already completed."""
        if self.is_completed:
            return self
        return replace(
            self,
            status=GoalStatus.COMPLETED,
            confidence=clamp_unit(confidence),
            completed_at=completed_at,
        )

    def fail(self) -> ResearchGoal:
        if self.is_completed:
            return self
        return replace(self, status=GoalStatus.FAILED)

"""Cross-validation of multi-source field observations.

Observations of the same field arrive from many untrusted providers.  The
engine groups providers into independence groups, detects disagreements
between groups, and turns the evidence into a single reconciled confidence:

* one independent group is penalised (x0.80), two are neutral (x1.00),
  three or more are rewarded (x1.10);
* every cross-group conflict deducts from that multiplier (0.10 major,
  0.05 minor) down to a floor of 0.50;
* the result is capped at 0.98.

Sources that share a group never corroborate each other and never conflict
with each other.

The comparison helpers at module level are pure functions with explicit
tolerances; :class:`CrossValidationEngine` binds them to a
:class:`~item_research.infrastructure.config.CrossValidationConfig`.
"""

from __future__ import annotations

import logging
import math
import numbers
from collections.abc import Iterable, Mapping, Sequence
from itertools import combinations
from typing import Any

import numpy as np

from item_research.domain.enums import ConflictSeverity, SourceGroup
from item_research.domain.values import (
    Conflict,
    CrossValidatedField,
    CrossValidationResult,
    FieldConfidenceScore,
    FieldDataSource,
)
from item_research.infrastructure.config import CrossValidationConfig

logger = logging.getLogger(__name__)


# ===================================================================== #
#  Value comparison                                                      #
# ===================================================================== #


def _normalize(value: Any) -> Any:
    if isinstance(value, np.ndarray):
        return value.tolist()
    if isinstance(value, np.generic):
        return value.item()
    return value


def _is_number(value: Any) -> bool:
    return isinstance(value, numbers.Real) and not isinstance(value, bool)


def _relative_difference(a: float, b: float) -> float:
    """``|a - b| / |mean(a, b)|``; ``inf`` when the mean is zero or undefined."""
    mean = abs(a / 2 + b / 2)
    if mean == 0 or not math.isfinite(mean):
        return math.inf
    return abs(a - b) / mean


def _perfect_matching(left: Sequence[Any], right: Sequence[Any], tolerance: float) -> bool:
    """True if every element of *left* pairs one-to-one with an agreeing element of *right*.

    Kuhn's augmenting-path algorithm over the agreement graph, so duplicates
    are matched as a multiset and the relation stays symmetric.
    """
    n = len(left)
    adjacency = [
        [j for j in range(n) if values_agree(left[i], right[j], tolerance)] for i in range(n)
    ]
    match_of_right: list[int] = [-1] * n

    def augment(i: int, seen: list[bool]) -> bool:
        for j in adjacency[i]:
            if seen[j]:
                continue
            seen[j] = True
            if match_of_right[j] == -1 or augment(match_of_right[j], seen):
                match_of_right[j] = i
                return True
        return False

    return all(augment(i, [False] * n) for i in range(n))


def values_agree(a: Any, b: Any, tolerance: float = 0.05) -> bool:
    """Decide whether two observed values describe the same thing.

    * ``None`` agrees only with ``None``.
    * Strings compare trimmed and case-insensitively.
    * Numbers agree within *tolerance* relative to their mean (exactly when
      the mean is zero); NaN agrees with NaN.
    * Lists and tuples agree when they have the same length and their
      elements can be paired one-to-one (order-insensitive).
    * Booleans compare only with booleans; mismatched types never agree.

    The relation is reflexive and symmetric.
    """
    a, b = _normalize(a), _normalize(b)
    if a is None or b is None:
        return a is None and b is None

    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a == b

    if _is_number(a) and _is_number(b):
        if math.isnan(a) or math.isnan(b):
            return math.isnan(a) and math.isnan(b)
        if a == b:
            return True
        return _relative_difference(float(a), float(b)) <= tolerance

    if isinstance(a, str) and isinstance(b, str):
        return a.strip().lower() == b.strip().lower()

    if isinstance(a, (list, tuple)) and isinstance(b, (list, tuple)):
        if len(a) != len(b):
            return False
        return _perfect_matching(a, b, tolerance)

    if type(a) is not type(b):
        return False
    return bool(a == b)


def conflict_severity(a: Any, b: Any, minor_threshold: float = 0.20) -> ConflictSeverity:
    """Classify a disagreement between two concrete values.

    Strings are a minor conflict when one contains the other
    (``"Sony"`` vs ``"Sony Corporation"``); numbers are minor within
    *minor_threshold* relative difference.  Everything else is major.
    """
    a, b = _normalize(a), _normalize(b)
    if isinstance(a, str) and isinstance(b, str):
        x, y = a.strip().lower(), b.strip().lower()
        if x in y or y in x:
            return ConflictSeverity.MINOR
        return ConflictSeverity.MAJOR
    if _is_number(a) and _is_number(b):
        if _relative_difference(float(a), float(b)) <= minor_threshold:
            return ConflictSeverity.MINOR
        return ConflictSeverity.MAJOR
    return ConflictSeverity.MAJOR


# ===================================================================== #
#  Engine                                                                #
# ===================================================================== #


class CrossValidationEngine:
    """Turns multi-source observations into reconciled per-field confidence.

    Parameters
    ----------
    config:
        Constants and the source-group table.  Defaults to
        ``CrossValidationConfig()``.
    """

    def __init__(self, config: CrossValidationConfig | None = None) -> None:
        self._config = config or CrossValidationConfig()
        self._config.validate()
        self._groups = {
            source: SourceGroup(group) for source, group in self._config.source_groups.items()
        }
        self._default_group = SourceGroup(self._config.default_group)

    @property
    def config(self) -> CrossValidationConfig:
        return self._config

    # -- grouping -----------------------------------------------------------

    def source_group(self, source_type: str) -> SourceGroup:
        """Independence group of *source_type*; unknown types count as web search."""
        return self._groups.get(source_type, self._default_group)

    def represented_groups(self, sources: Iterable[FieldDataSource]) -> frozenset[SourceGroup]:
        return frozenset(self.source_group(s.source_type) for s in sources)

    def independent_group_count(self, sources: Iterable[FieldDataSource]) -> int:
        return len(self.represented_groups(sources))

    # -- comparison ---------------------------------------------------------

    def values_agree(self, a: Any, b: Any) -> bool:
        return values_agree(a, b, self._config.numeric_tolerance)

    def conflict_severity(self, a: Any, b: Any) -> ConflictSeverity:
        return conflict_severity(a, b, self._config.numeric_minor_threshold)

    def detect_conflicts(
        self, field_name: str, sources: Sequence[FieldDataSource]
    ) -> tuple[Conflict, ...]:
        """Every disagreeing cross-group pair with concrete values on both sides."""
        conflicts: list[Conflict] = []
        for first, second in combinations(sources, 2):
            group1 = self.source_group(first.source_type)
            group2 = self.source_group(second.source_type)
            if group1 is group2:
                continue
            if not (first.has_value and second.has_value):
                continue
            if self.values_agree(first.raw_value, second.raw_value):
                continue
            conflicts.append(
                Conflict(
                    field_name=field_name,
                    value1=first.raw_value,
                    source1=first.source_type,
                    group1=group1,
                    value2=second.raw_value,
                    source2=second.source_type,
                    group2=group2,
                    severity=self.conflict_severity(first.raw_value, second.raw_value),
                    timestamp=max(first.timestamp, second.timestamp),
                )
            )
        if conflicts:
            logger.debug(
                "CrossValidation: %d conflict(s) on '%s'", len(conflicts), field_name
            )
        return tuple(conflicts)

    # -- scoring ------------------------------------------------------------

    def base_multiplier(self, independent_count: int) -> float:
        cfg = self._config
        if independent_count <= 1:
            return cfg.single_group_multiplier
        if independent_count == 2:
            return cfg.two_group_multiplier
        return cfg.max_multiplier

    def corroboration_multiplier(
        self, sources: Sequence[FieldDataSource], conflicts: Sequence[Conflict]
    ) -> float:
        cfg = self._config
        majors = sum(1 for c in conflicts if c.severity is ConflictSeverity.MAJOR)
        minors = len(conflicts) - majors
        multiplier = (
            self.base_multiplier(self.independent_group_count(sources))
            - majors * cfg.major_conflict_penalty
            - minors * cfg.minor_conflict_penalty
        )
        return max(cfg.min_multiplier, multiplier)

    def agreement_score(
        self, sources: Sequence[FieldDataSource], conflicts: Sequence[Conflict]
    ) -> float:
        """``1 - conflicts / C(groups, 2)`` clamped to ``[0, 1]``."""
        groups = self.independent_group_count(sources)
        pairs = groups * (groups - 1) // 2
        if pairs == 0:
            return 1.0
        return min(1.0, max(0.0, 1.0 - len(conflicts) / pairs))

    def cross_validated_confidence(
        self,
        base_confidence: float,
        sources: Sequence[FieldDataSource],
        conflicts: Sequence[Conflict],
    ) -> tuple[float, float, float]:
        """Return ``(confidence, multiplier, agreement_score)``."""
        multiplier = self.corroboration_multiplier(sources, conflicts)
        confidence = min(self._config.max_confidence, max(0.0, base_confidence * multiplier))
        return confidence, multiplier, self.agreement_score(sources, conflicts)

    def cross_validate_field(
        self, field_name: str, value: Any, score: FieldConfidenceScore
    ) -> CrossValidatedField:
        sources = score.sources
        conflicts = self.detect_conflicts(field_name, sources)
        confidence, multiplier, agreement = self.cross_validated_confidence(
            score.value, sources, conflicts
        )
        return CrossValidatedField(
            field_name=field_name,
            value=value,
            base_confidence=score.value,
            cross_validated_confidence=confidence,
            sources=sources,
            independent_group_count=self.independent_group_count(sources),
            agreement_score=agreement,
            conflicts=conflicts,
            corroboration_multiplier=multiplier,
        )

    def cross_validate_all(
        self, fields: Mapping[str, tuple[Any, FieldConfidenceScore]]
    ) -> CrossValidationResult:
        """Cross-validate every ``name -> (value, score)`` entry."""
        validated = {
            name: self.cross_validate_field(name, value, score)
            for name, (value, score) in fields.items()
        }
        multipliers = [f.corroboration_multiplier for f in validated.values()]
        average = float(np.mean(multipliers)) if multipliers else 1.0
        return CrossValidationResult(
            fields=validated,
            total_conflicts=sum(len(f.conflicts) for f in validated.values()),
            fields_with_multiple_independent_sources=sum(
                1 for f in validated.values() if f.independent_group_count >= 2
            ),
            average_corroboration=average,
        )

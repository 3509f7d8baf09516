"""Field state management for items under research.

:class:`FieldStateManager` seeds an item's :class:`ItemFieldStates` from a
category schema, folds every tool observation into the matching field and
keeps the aggregate completeness metrics current.  All operations are pure:
they return a new ``ItemFieldStates`` and leave the input untouched.

Confidence merge
----------------
Every provider carries a trust weight.  A lone observation is discounted by
its provider's weight; once several observations exist the field confidence
is their trust-weighted mean.  The displayed value only changes when a new
observation's weighted confidence beats the best existing one by the
configured margin (10% by default).

Cross-validation
----------------
The merged confidence is only a base score.  :meth:`FieldStateManager.observe`
and :meth:`FieldStateManager.initialize` pass every observed field through the
:class:`CrossValidationEngine`, so the confidence and status the planner
reads reflect how many independent source groups back each value.
:meth:`update_field` is the raw fold underneath and skips that step.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, replace
from typing import Any

from item_research.domain.aggregates import ItemFieldStates
from item_research.domain.entities import FieldState
from item_research.domain.enums import FieldStatus
from item_research.domain.values import (
    CrossValidationResult,
    FieldConfidenceScore,
    FieldDataSource,
    FieldDefinition,
)
from item_research.infrastructure.config import FieldStateConfig
from item_research.services.cross_validation import CrossValidationEngine

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReadinessCheck:
    """Whether every required field has a value at sufficient confidence."""

    ready: bool
    completion_score: float
    missing_fields: tuple[str, ...] = ()
    low_confidence_fields: tuple[tuple[str, float], ...] = ()
    required_fields_complete: int = 0
    required_fields_total: int = 0


@dataclass(frozen=True)
class FieldSummary:
    """Display-oriented digest of an item's field states."""

    total_fields: int
    complete_fields: int
    incomplete_fields: int
    user_required_fields: tuple[str, ...]
    top_missing_fields: tuple[str, ...]
    fields_needing_research: tuple[str, ...]
    completion_score: float
    ready_to_publish: bool


@dataclass(frozen=True)
class AllowedValueMatch:
    """Result of mapping a free-form value onto an enum field's allowed values."""

    mapped_value: Any
    confidence: float
    valid: bool


def _is_empty(value: Any) -> bool:
    return value is None or value == ""


class FieldStateManager:
    """Creates and updates :class:`ItemFieldStates`.

    Parameters
    ----------
    config:
        Source weights and thresholds.  Defaults to ``FieldStateConfig()``.
    engine:
        Cross-validation engine applied by :meth:`observe`, :meth:`initialize`
        and :meth:`apply_cross_validation`.
    """

    PREFILL_SOURCE = "user_hint"
    PREFILL_CONFIDENCE = 0.85

    def __init__(
        self,
        config: FieldStateConfig | None = None,
        engine: CrossValidationEngine | None = None,
    ) -> None:
        self._config = config or FieldStateConfig()
        self._config.validate()
        self._engine = engine or CrossValidationEngine()

    @property
    def config(self) -> FieldStateConfig:
        return self._config

    # ------------------------------------------------------------------ #
    #  Creation                                                           #
    # ------------------------------------------------------------------ #

    def initialize(
        self,
        definitions: Iterable[FieldDefinition],
        existing_values: Mapping[str, Any] | None = None,
        threshold: float | None = None,
        timestamp: float = 0.0,
    ) -> ItemFieldStates:
        """Seed field states from a category schema.

        Values already known for the item (*existing_values*) are recorded as
        ``user_hint`` observations and then cross-validated like any other
        observation, so a lone hint does not complete a field on its own.
        """
        fields: dict[str, FieldState] = {}
        for definition in definitions:
            if definition.name in fields:
                existing = fields[definition.name]
                fields[definition.name] = replace(
                    existing,
                    required=existing.required or definition.required,
                    required_by=tuple(dict.fromkeys(existing.required_by + definition.required_by)),
                    allowed_values=definition.allowed_values or existing.allowed_values,
                )
                continue
            fields[definition.name] = FieldState(
                name=definition.name,
                display_name=definition.display_name,
                required=definition.required,
                required_by=definition.required_by,
                data_type=definition.data_type,
                allowed_values=definition.allowed_values,
                score=FieldConfidenceScore(0.0, last_updated=timestamp),
            )

        for name, value in (existing_values or {}).items():
            state = fields.get(name)
            if state is None or _is_empty(value):
                continue
            source = FieldDataSource(
                source_type=self.PREFILL_SOURCE,
                confidence=self.PREFILL_CONFIDENCE,
                timestamp=timestamp,
                raw_value=value,
            )
            fields[name] = replace(
                state.with_score(self.PREFILL_CONFIDENCE, (source,)),
                value=value,
                status=FieldStatus.RESEARCHING,
            )

        states, _ = self.apply_cross_validation(ItemFieldStates(fields=fields), threshold)
        return states

    # ------------------------------------------------------------------ #
    #  Updates                                                            #
    # ------------------------------------------------------------------ #

    def merge_confidence(self, sources: Sequence[FieldDataSource]) -> float:
        """Trust-weighted confidence of *sources* (see module docstring)."""
        if not sources:
            return 0.0
        if len(sources) == 1:
            only = sources[0]
            return min(1.0, only.confidence * self._config.weight_for(only.source_type))
        total_weight = 0.0
        weighted_sum = 0.0
        for source in sources:
            weight = self._config.weight_for(source.source_type)
            total_weight += weight
            weighted_sum += source.confidence * weight
        if total_weight == 0:
            return 0.0
        return min(1.0, weighted_sum / total_weight)

    def should_replace_value(self, state: FieldState, source: FieldDataSource) -> bool:
        if state.value is None:
            return True
        new_weighted = source.confidence * self._config.weight_for(source.source_type)
        best_existing = max(
            (s.confidence * self._config.weight_for(s.source_type) for s in state.sources),
            default=0.0,
        )
        return new_weighted > best_existing * self._config.replace_margin

    def update_field(
        self,
        states: ItemFieldStates,
        field_name: str,
        value: Any,
        source: FieldDataSource,
        threshold: float | None = None,
    ) -> ItemFieldStates:
        """Fold one observation of *field_name* into *states*.

        Unknown fields and empty values leave *states* unchanged.  The
        observation's cost is added to the item's running total.  The
        confidence is the merged base score; use :meth:`observe` to fold tool
        results through the cross-validation engine.
        """
        state = states.get(field_name)
        if state is None:
            logger.warning("FieldStateManager: update for unknown field '%s'", field_name)
            return states
        if _is_empty(value):
            return states

        threshold = self._threshold(threshold)
        sources = state.sources + (source,)
        confidence = self.merge_confidence(sources)
        updated = replace(
            state.with_score(confidence, sources, max(state.last_updated, source.timestamp)),
            value=value if self.should_replace_value(state, source) else state.value,
            attempts=state.attempts + 1,
            status=self._status_for(confidence, threshold),
        )
        logger.debug(
            "FieldStateManager: %s <- %s (confidence %.3f, %s)",
            field_name,
            source.source_type,
            confidence,
            updated.status.value,
        )
        new_states = states.with_field(updated).with_usage(cost=source.cost)
        return self.recalculate(new_states, threshold)

    def update_fields(
        self,
        states: ItemFieldStates,
        updates: Iterable[tuple[str, Any, FieldDataSource]],
        threshold: float | None = None,
    ) -> ItemFieldStates:
        """Apply a batch of ``(field_name, value, source)`` observations in order."""
        for field_name, value, source in updates:
            states = self.update_field(states, field_name, value, source, threshold)
        return states

    def observe(
        self,
        states: ItemFieldStates,
        updates: Iterable[tuple[str, Any, FieldDataSource]],
        threshold: float | None = None,
    ) -> ItemFieldStates:
        """Fold tool results into *states* and cross-validate the item.

        Every observed field ends up with its cross-validated confidence and
        the status that confidence implies.
        """
        states = self.update_fields(states, updates, threshold)
        states, _ = self.apply_cross_validation(states, threshold)
        return states

    def record_attempt(self, states: ItemFieldStates, field_names: Iterable[str]) -> ItemFieldStates:
        """Count a research attempt on fields that yielded no observation."""
        for name in field_names:
            state = states.get(name)
            if state is not None:
                states = states.with_field(replace(state, attempts=state.attempts + 1))
        return states

    def set_user_value(
        self,
        states: ItemFieldStates,
        field_name: str,
        value: Any,
        timestamp: float = 0.0,
        threshold: float | None = None,
    ) -> ItemFieldStates:
        source = FieldDataSource(
            source_type="user_input", confidence=1.0, timestamp=timestamp, raw_value=value
        )
        return self.update_field(states, field_name, value, source, threshold)

    def mark_as_user_required(self, states: ItemFieldStates, field_name: str) -> ItemFieldStates:
        return self._with_status(states, field_name, FieldStatus.USER_REQUIRED)

    def mark_as_failed(self, states: ItemFieldStates, field_name: str) -> ItemFieldStates:
        return self._with_status(states, field_name, FieldStatus.FAILED)

    # ------------------------------------------------------------------ #
    #  Metrics                                                            #
    # ------------------------------------------------------------------ #

    def recalculate(self, states: ItemFieldStates, threshold: float | None = None) -> ItemFieldStates:
        """Re-derive the completeness counters of *states*."""
        threshold = self._threshold(threshold)
        cfg = self._config
        required_complete = required_total = 0
        recommended_complete = recommended_total = 0
        for state in states:
            if state.required:
                required_total += 1
                if state.has_value and state.confidence >= threshold:
                    required_complete += 1
            else:
                recommended_total += 1
                if state.has_value and state.confidence >= cfg.recommended_threshold:
                    recommended_complete += 1

        required_score = required_complete / required_total if required_total else 1.0
        recommended_score = recommended_complete / recommended_total if recommended_total else 1.0
        return replace(
            states,
            required_fields_complete=required_complete,
            required_fields_total=required_total,
            recommended_fields_complete=recommended_complete,
            recommended_fields_total=recommended_total,
            completion_score=(
                required_score * cfg.required_weight + recommended_score * cfg.recommended_weight
            ),
            ready_to_publish=required_complete == required_total,
        )

    def check_readiness(self, states: ItemFieldStates, threshold: float | None = None) -> ReadinessCheck:
        threshold = self._threshold(threshold)
        missing: list[str] = []
        low: list[tuple[str, float]] = []
        complete = total = 0
        for state in states:
            if not state.required:
                continue
            total += 1
            if _is_empty(state.value):
                missing.append(state.name)
            elif state.confidence < threshold:
                low.append((state.name, state.confidence))
            else:
                complete += 1
        return ReadinessCheck(
            ready=not missing and not low,
            completion_score=complete / total if total else 1.0,
            missing_fields=tuple(missing),
            low_confidence_fields=tuple(low),
            required_fields_complete=complete,
            required_fields_total=total,
        )

    def summary(self, states: ItemFieldStates, threshold: float | None = None) -> FieldSummary:
        states = self.recalculate(states, threshold)
        complete = [s for s in states if s.status is FieldStatus.COMPLETE]
        incomplete = [s for s in states if s.status is not FieldStatus.COMPLETE]
        # sorted() is stable: required fields first, schema order otherwise
        missing = sorted((s for s in incomplete if s.value is None), key=lambda s: not s.required)
        needing = sorted(
            (s for s in incomplete if not s.is_terminal), key=lambda s: not s.required
        )
        return FieldSummary(
            total_fields=len(states),
            complete_fields=len(complete),
            incomplete_fields=len(incomplete),
            user_required_fields=tuple(
                s.name for s in incomplete if s.status is FieldStatus.USER_REQUIRED
            ),
            top_missing_fields=tuple(s.name for s in missing[:5]),
            fields_needing_research=tuple(s.name for s in needing),
            completion_score=states.completion_score,
            ready_to_publish=states.ready_to_publish,
        )

    # ------------------------------------------------------------------ #
    #  Cross-validation                                                   #
    # ------------------------------------------------------------------ #

    def cross_validate(self, states: ItemFieldStates) -> CrossValidationResult:
        """Cross-validate every field that has at least one observation."""
        scored = {
            s.name: (s.value, replace(s.score, value=self.merge_confidence(s.sources)))
            for s in states
            if s.sources
        }
        return self._engine.cross_validate_all(scored)

    def apply_cross_validation(
        self, states: ItemFieldStates, threshold: float | None = None
    ) -> tuple[ItemFieldStates, CrossValidationResult]:
        """Replace each observed field's confidence with its cross-validated value.

        The base confidence is always re-merged from the field's sources, so
        applying this twice gives the same result as applying it once.
        """
        threshold = self._threshold(threshold)
        result = self.cross_validate(states)
        for name, validated in result.fields.items():
            state = states.fields[name]
            if state.status in (FieldStatus.FAILED, FieldStatus.USER_REQUIRED):
                status = state.status
            else:
                status = self._status_for(validated.cross_validated_confidence, threshold)
            states = states.with_field(
                replace(
                    state.with_score(validated.cross_validated_confidence), status=status
                )
            )
        return self.recalculate(states, threshold), result

    # ------------------------------------------------------------------ #
    #  Enum mapping                                                       #
    # ------------------------------------------------------------------ #

    @staticmethod
    def match_allowed_value(value: Any, allowed_values: Sequence[str]) -> AllowedValueMatch:
        """Map a free-form *value* onto one of *allowed_values*.

        Exact (case-insensitive) matches score 1.0, containment 0.8, and word
        overlap ``0.5 + 0.3 * overlap_ratio``.
        """
        if value is None:
            return AllowedValueMatch(None, 0.0, False)
        if not allowed_values or not isinstance(value, str):
            return AllowedValueMatch(value, 1.0, True)

        normalized = value.strip().lower()
        for allowed in allowed_values:
            if allowed.lower() == normalized:
                return AllowedValueMatch(allowed, 1.0, True)
        for allowed in allowed_values:
            lowered = allowed.lower()
            if normalized in lowered or lowered in normalized:
                return AllowedValueMatch(allowed, 0.8, True)

        words = set(normalized.split())
        best, best_overlap = None, 0
        for allowed in allowed_values:
            overlap = len(words & set(allowed.lower().split()))
            if overlap > best_overlap:
                best, best_overlap = allowed, overlap
        if best is not None:
            ratio = best_overlap / max(len(words), 1)
            return AllowedValueMatch(best, 0.5 + ratio * 0.3, True)
        return AllowedValueMatch(None, 0.0, False)

    # ------------------------------------------------------------------ #
    #  Internals                                                          #
    # ------------------------------------------------------------------ #

    def _threshold(self, threshold: float | None) -> float:
        return self._config.completion_threshold if threshold is None else threshold

    @staticmethod
    def _status_for(confidence: float, threshold: float) -> FieldStatus:
        if confidence >= threshold:
            return FieldStatus.COMPLETE
        if confidence > 0:
            return FieldStatus.RESEARCHING
        return FieldStatus.PENDING

    @staticmethod
    def _with_status(states: ItemFieldStates, field_name: str, status: FieldStatus) -> ItemFieldStates:
        state = states.get(field_name)
        if state is None:
            return states
        return states.with_field(state.with_status(status))

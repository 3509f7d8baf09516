"""Tests for ItemFieldStates and ResearchTaskHistory."""

from __future__ import annotations

from dataclasses import replace

import pytest

from item_research.domain.aggregates import ItemFieldStates, ResearchTaskHistory
from item_research.domain.entities import FieldState
from item_research.domain.enums import FieldStatus
from item_research.domain.values import FieldConfidenceScore


def _states() -> ItemFieldStates:
    return ItemFieldStates(
        fields={
            "brand": FieldState("brand", value="Sony", score=FieldConfidenceScore(0.9), required=True),
            "color": FieldState("color"),
        }
    )


class TestItemFieldStates:

    def test_access(self) -> None:
        states = _states()
        assert "brand" in states
        assert len(states) == 2
        assert states.names == ("brand", "color")
        assert states.value_of("brand") == "Sony"
        assert states.value_of("missing") is None
        assert [s.name for s in states] == ["brand", "color"]

    def test_fields_are_read_only(self) -> None:
        with pytest.raises(TypeError):
            _states().fields["brand"] = FieldState("brand")  # type: ignore[index]

    def test_with_field_returns_copy(self) -> None:
        states = _states()
        updated = states.with_field(FieldState("color", value="Black"))
        assert updated.value_of("color") == "Black"
        assert states.value_of("color") is None

    def test_with_usage_accumulates(self) -> None:
        states = _states().with_usage(cost=0.02, time_ms=400, iterations=1)
        states = states.with_usage(cost=0.01, iterations=1)
        assert states.total_cost == pytest.approx(0.03)
        assert states.total_time_ms == pytest.approx(400)
        assert states.iterations == 2


class TestProgressHash:

    def test_stable_across_field_order(self) -> None:
        a = _states()
        b = ItemFieldStates(fields={"color": a.fields["color"], "brand": a.fields["brand"]})
        assert a.progress_hash() == b.progress_hash()

    def test_ignores_attempts_and_cost(self) -> None:
        states = _states()
        busier = states.with_field(replace(states.fields["color"], attempts=3)).with_usage(cost=1.0)
        assert busier.progress_hash() == states.progress_hash()

    def test_changes_with_value_confidence_or_status(self) -> None:
        states = _states()
        color = states.fields["color"]
        digests = {
            states.progress_hash(),
            states.with_field(replace(color, value="Black")).progress_hash(),
            states.with_field(color.with_score(0.4)).progress_hash(),
            states.with_field(replace(color, status=FieldStatus.FAILED)).progress_hash(),
        }
        assert len(digests) == 4


class TestResearchTaskHistory:

    def test_attempts_and_failures(self) -> None:
        history = ResearchTaskHistory().with_attempt("keepa_lookup").with_attempt("keepa_lookup")
        history = history.with_failure("vision_analysis")
        assert history.attempts_for("keepa_lookup") == 2
        assert history.attempts_for("upc_lookup") == 0
        assert history.has_failed("vision_analysis")
        assert not history.has_failed("keepa_lookup")

    def test_first_hash_starts_no_streak(self) -> None:
        history = ResearchTaskHistory().with_progress_hash("abc")
        assert history.consecutive_no_progress == 0
        assert history.last_field_states_hash == "abc"

    def test_repeated_hash_grows_streak(self) -> None:
        history = ResearchTaskHistory().with_progress_hash("abc")
        history = history.with_progress_hash("abc").with_progress_hash("abc")
        assert history.consecutive_no_progress == 2

    def test_new_hash_resets_streak(self) -> None:
        history = ResearchTaskHistory(consecutive_no_progress=2, last_field_states_hash="abc")
        assert history.with_progress_hash("def").consecutive_no_progress == 0

    def test_failed_tools_coerced_to_frozenset(self) -> None:
        history = ResearchTaskHistory(failed_tools={"x"})  # type: ignore[arg-type]
        assert isinstance(history.failed_tools, frozenset)

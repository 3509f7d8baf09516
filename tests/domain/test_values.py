"""Tests for domain value objects."""

from __future__ import annotations

import math

import pytest

from item_research.domain.enums import ConflictSeverity, SourceGroup
from item_research.domain.values import (
    Conflict,
    CrossValidatedField,
    CrossValidationResult,
    FieldConfidenceScore,
    FieldDataSource,
    ResearchConstraints,
    ResearchContext,
    ResearchTask,
    ToolSpec,
    clamp_unit,
)


class TestClampUnit:

    def test_clamps_out_of_range(self) -> None:
        assert clamp_unit(-0.2) == 0.0
        assert clamp_unit(1.7) == 1.0
        assert clamp_unit(0.42) == pytest.approx(0.42)

    def test_nan_maps_to_zero(self) -> None:
        assert clamp_unit(math.nan) == 0.0


# ===================================================================== #
#  Observations                                                          #
# ===================================================================== #


class TestFieldDataSource:

    def test_confidence_is_clamped(self) -> None:
        assert FieldDataSource("keepa", 1.4).confidence == 1.0
        assert FieldDataSource("keepa", -1.0).confidence == 0.0

    def test_has_value(self) -> None:
        assert FieldDataSource("keepa", 0.9, raw_value="Sony").has_value
        assert not FieldDataSource("keepa", 0.9).has_value

    def test_zero_is_a_value(self) -> None:
        assert FieldDataSource("keepa", 0.9, raw_value=0).has_value

    def test_frozen(self) -> None:
        source = FieldDataSource("keepa", 0.9)
        with pytest.raises(AttributeError):
            source.confidence = 0.1  # type: ignore[misc]


class TestFieldConfidenceScore:

    def test_sources_coerced_to_tuple(self) -> None:
        score = FieldConfidenceScore(0.5, sources=[FieldDataSource("keepa", 0.9)])
        assert isinstance(score.sources, tuple)


class TestCrossValidationRecords:

    def _conflict(self, severity: ConflictSeverity) -> Conflict:
        return Conflict(
            field_name="brand",
            value1="Sony",
            source1="keepa",
            group1=SourceGroup.CATALOG,
            value2="Bose",
            source2="vision_ai",
            group2=SourceGroup.VISION,
            severity=severity,
        )

    def test_major_conflict_count(self) -> None:
        validated = CrossValidatedField(
            field_name="brand",
            value="Sony",
            base_confidence=0.8,
            cross_validated_confidence=0.7,
            conflicts=(
                self._conflict(ConflictSeverity.MAJOR),
                self._conflict(ConflictSeverity.MINOR),
            ),
        )
        assert validated.has_conflicts
        assert validated.major_conflict_count == 1

    def test_result_flattens_conflicts(self) -> None:
        brand = CrossValidatedField(
            "brand", "Sony", 0.8, 0.7, conflicts=(self._conflict(ConflictSeverity.MAJOR),)
        )
        model = CrossValidatedField("model", "XM4", 0.8, 0.8)
        result = CrossValidationResult(fields={"brand": brand, "model": model}, total_conflicts=1)
        assert len(result.conflicts) == 1
        with pytest.raises(TypeError):
            result.fields["color"] = model  # type: ignore[index]


# ===================================================================== #
#  Planning inputs                                                       #
# ===================================================================== #


class TestResearchConstraints:

    def test_defaults_are_balanced(self) -> None:
        constraints = ResearchConstraints()
        assert constraints.max_cost_usd == pytest.approx(0.50)
        assert constraints.max_iterations == 10

    def test_negative_budget_rejected(self) -> None:
        with pytest.raises(ValueError, match="max_cost_usd"):
            ResearchConstraints(max_cost_usd=-1.0)

    def test_confidence_out_of_range_rejected(self) -> None:
        with pytest.raises(ValueError, match="required_confidence"):
            ResearchConstraints(required_confidence=1.5)


class TestResearchContext:

    def test_flag_lookup(self) -> None:
        context = ResearchContext(has_upc=True)
        assert context.flag("has_upc") is True
        assert context.flag("has_brand") is False
        assert context.flag("no_such_flag") is False


class TestToolSpec:

    def test_wildcard(self) -> None:
        tool = ToolSpec("web_search_general", provides_fields=(ToolSpec.WILDCARD,))
        assert tool.is_wildcard
        assert tool.can_provide("anything")
        assert not tool.declares("anything")

    def test_exact_tool(self) -> None:
        tool = ToolSpec("upc_lookup", provides_fields=("brand", "upc"))
        assert tool.declares("brand")
        assert not tool.can_provide("color")

    def test_requires_all(self) -> None:
        tool = ToolSpec("upc_lookup", requires=("has_upc", "upc_database_configured"))
        assert not tool.prerequisites_met(ResearchContext(has_upc=True))
        assert tool.prerequisites_met(
            ResearchContext(has_upc=True, upc_database_configured=True)
        )

    def test_requires_any(self) -> None:
        tool = ToolSpec("web_search_targeted", requires_any=("has_brand", "has_model"))
        assert not tool.prerequisites_met(ResearchContext())
        assert tool.prerequisites_met(ResearchContext(has_model=True))

    def test_lists_coerced_to_tuples(self) -> None:
        tool = ToolSpec("x", provides_fields=["brand"], requires=["has_upc"])  # type: ignore[arg-type]
        assert tool.provides_fields == ("brand",)
        assert tool.requires == ("has_upc",)

    def test_invalid_tool(self) -> None:
        with pytest.raises(ValueError, match="tool_id"):
            ToolSpec("")
        with pytest.raises(ValueError, match="estimated_cost"):
            ToolSpec("x", estimated_cost=-0.01)


class TestResearchTask:

    def test_primary_field(self) -> None:
        task = ResearchTask("task-1", "web_search_targeted", ("mpn", "color"), priority=109.0)
        assert task.primary_field == "mpn"
        assert ResearchTask("task-2", "x", (), priority=0.0).primary_field == ""

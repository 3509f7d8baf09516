"""Tests for configuration dataclasses and the JSON section loader."""

from __future__ import annotations

import json

import pytest

from item_research.domain.enums import ResearchMode
from item_research.infrastructure.config import (
    DEFAULT_SOURCE_GROUPS,
    RESEARCH_MODE_CONSTRAINTS,
    ContextBoost,
    CrossValidationConfig,
    FieldStateConfig,
    GoalRouterConfig,
    PipelineConfig,
    PlannerConfig,
    constraints_for_mode,
    load_config_from_json,
)


class TestCrossValidationConfig:

    def test_defaults_validate(self) -> None:
        CrossValidationConfig().validate()

    def test_unknown_group_rejected(self) -> None:
        cfg = CrossValidationConfig(source_groups={"keepa": "satellite"})
        with pytest.raises(ValueError, match="unknown source groups"):
            cfg.validate()

    def test_decreasing_multipliers_rejected(self) -> None:
        with pytest.raises(ValueError, match="non-decreasing"):
            CrossValidationConfig(two_group_multiplier=1.5).validate()

    def test_from_dict_extends_default_groups(self) -> None:
        cfg = CrossValidationConfig.from_dict(
            {"source_groups": {"poshmark": "web_search"}, "bogus": 1}
        )
        assert cfg.source_groups["poshmark"] == "web_search"
        assert cfg.source_groups["keepa"] == DEFAULT_SOURCE_GROUPS["keepa"]


class TestFieldStateConfig:

    def test_weight_for_unknown_source(self) -> None:
        cfg = FieldStateConfig()
        assert cfg.weight_for("keepa") == pytest.approx(0.90)
        assert cfg.weight_for("mystery") == pytest.approx(0.5)

    def test_weights_must_sum_to_one(self) -> None:
        with pytest.raises(ValueError, match="must equal 1"):
            FieldStateConfig(required_weight=0.8, recommended_weight=0.3).validate()

    def test_replace_margin_below_one_rejected(self) -> None:
        with pytest.raises(ValueError, match="replace_margin"):
            FieldStateConfig(replace_margin=0.9).validate()


class TestPlannerConfig:

    def test_boost_for_requires_all_flags(self) -> None:
        cfg = PlannerConfig()
        flags = {"has_brand": True, "has_model": False}
        assert cfg.boost_for("web_search_targeted", flags.get, 0) == 0.0
        flags["has_model"] = True
        assert cfg.boost_for("web_search_targeted", flags.get, 0) == pytest.approx(25.0)

    def test_boost_for_image_count(self) -> None:
        cfg = PlannerConfig()
        assert cfg.boost_for("vision_analysis", lambda _: False, 1) == 0.0
        assert cfg.boost_for("vision_analysis", lambda _: False, 2) == pytest.approx(15.0)

    def test_from_dict_builds_boosts(self) -> None:
        cfg = PlannerConfig.from_dict(
            {"context_boosts": [{"tool_id": "keepa_lookup", "bonus": 5, "requires": ["has_upc"]}]}
        )
        assert cfg.context_boosts == (ContextBoost("keepa_lookup", 5, ("has_upc",)),)

    def test_invalid_caps_rejected(self) -> None:
        with pytest.raises(ValueError, match="max_attempts_per_tool"):
            PlannerConfig(max_attempts_per_tool=0).validate()


class TestGoalRouterConfig:

    def test_tiers_sorted_descending(self) -> None:
        cfg = GoalRouterConfig(market_tiers=((3, 0.6), (10, 0.9), (5, 0.75)))
        assert cfg.market_tiers == ((10, 0.9), (5, 0.75), (3, 0.6))

    def test_to_dict_is_json_serializable(self) -> None:
        data = json.loads(json.dumps(GoalRouterConfig().to_dict()))
        assert GoalRouterConfig.from_dict(data) == GoalRouterConfig()

    def test_invalid_tier_rejected(self) -> None:
        with pytest.raises(ValueError, match="market tier"):
            GoalRouterConfig(market_tiers=((5, 1.5),)).validate()


class TestPipelineConfig:

    def test_research_mode(self) -> None:
        assert PipelineConfig(mode="fast").research_mode is ResearchMode.FAST

    def test_unknown_mode_rejected(self) -> None:
        with pytest.raises(ValueError, match="mode"):
            PipelineConfig(mode="reckless").validate()


class TestResearchModes:

    @pytest.mark.parametrize(
        ("mode", "cost", "iterations", "required"),
        [
            ("fast", 0.10, 3, 0.70),
            ("balanced", 0.50, 10, 0.75),
            ("thorough", 1.50, 25, 0.85),
        ],
    )
    def test_mode_presets(self, mode: str, cost: float, iterations: int, required: float) -> None:
        constraints = constraints_for_mode(mode)
        assert constraints.max_cost_usd == pytest.approx(cost)
        assert constraints.max_iterations == iterations
        assert constraints.required_confidence == pytest.approx(required)
        assert constraints.mode is ResearchMode(mode)

    def test_every_mode_has_constraints(self) -> None:
        assert set(RESEARCH_MODE_CONSTRAINTS) == set(ResearchMode)


class TestLoadConfigFromJson:

    def test_sections_are_typed(self) -> None:
        loaded = load_config_from_json(
            json.dumps(
                {
                    "planner": {"max_attempts_per_tool": 4},
                    "pipeline": {"max_steps": 20},
                    "custom": {"anything": True},
                }
            )
        )
        assert isinstance(loaded["planner"], PlannerConfig)
        assert loaded["planner"].max_attempts_per_tool == 4
        assert loaded["pipeline"].max_steps == 20
        assert loaded["custom"] == {"anything": True}

    def test_invalid_values_raise(self) -> None:
        with pytest.raises(ValueError):
            load_config_from_json(json.dumps({"pipeline": {"max_steps": 0}}))

    def test_top_level_must_be_object(self) -> None:
        with pytest.raises(ValueError, match="Top-level"):
            load_config_from_json("[1, 2]")

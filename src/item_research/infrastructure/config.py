"""Configuration dataclasses for the item research core.

Each config is a plain frozen ``dataclass`` with a ``validate()`` method that
raises ``ValueError`` on invalid combinations, plus ``to_dict()`` /
``from_dict()`` for JSON round trips.  Every tunable constant of the
cross-validation engine, the field state manager, the planner and the
goal-phase router lives here; the services read nothing from module state.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field, fields
from typing import Any

from item_research.domain.enums import ResearchMode, SourceGroup
from item_research.domain.values import ResearchConstraints


def _filter_fields(cls: type, data: dict[str, Any]) -> dict[str, Any]:
    valid_keys = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in valid_keys}


# ===================================================================== #
#  Cross-validation                                                      #
# ===================================================================== #

DEFAULT_SOURCE_GROUPS: dict[str, str] = {
    "amazon_catalog": "catalog",
    "keepa": "catalog",
    "keepa_lookup": "catalog",
    "amazon_sp_api": "catalog",
    "vision_ai": "vision",
    "vision_analysis": "vision",
    "vision_analysis_guided": "vision",
    "ocr": "text_extraction",
    "ocr_search": "text_extraction",
    "ocr_extraction": "text_extraction",
    "ebay_sold": "marketplace_ebay",
    "ebay_active": "marketplace_ebay",
    "ebay_api": "marketplace_ebay",
    "web_search": "web_search",
    "web_search_targeted": "web_search",
    "web_search_general": "web_search",
    "reverse_image_search": "web_search",
    "domain_knowledge_lookup": "web_search",
    "user_input": "user_input",
    "user_hint": "user_input",
    "upc_lookup": "code_lookup",
}


@dataclass(frozen=True)
class CrossValidationConfig:
    """Constants of the cross-validation engine.

    Attributes
    ----------
    numeric_tolerance:
        Relative difference under which two numbers agree.
    numeric_minor_threshold:
        Relative difference under which a numeric conflict is minor.
    single_group_multiplier / two_group_multiplier / max_multiplier:
        Corroboration multiplier for one, two and three-or-more independent
        source groups.
    min_multiplier:
        Floor of the multiplier after conflict penalties.
    major_conflict_penalty / minor_conflict_penalty:
        Multiplier deduction per conflict.
    max_confidence:
        Cap on cross-validated confidence; no amount of corroboration makes
        a field certain.
    source_groups:
        Provider source type -> :class:`SourceGroup` value.
    default_group:
        Group assigned to unknown source types.
    """

    numeric_tolerance: float = 0.05
    numeric_minor_threshold: float = 0.20
    single_group_multiplier: float = 0.80
    two_group_multiplier: float = 1.00
    max_multiplier: float = 1.10
    min_multiplier: float = 0.50
    major_conflict_penalty: float = 0.10
    minor_conflict_penalty: float = 0.05
    max_confidence: float = 0.98
    source_groups: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_SOURCE_GROUPS))
    default_group: str = "web_search"

    def validate(self) -> None:
        if not (0.0 <= self.numeric_tolerance <= self.numeric_minor_threshold):
            raise ValueError(
                "numeric_tolerance must be in [0, numeric_minor_threshold], "
                f"got {self.numeric_tolerance}"
            )
        if not (0.0 < self.min_multiplier <= self.single_group_multiplier):
            raise ValueError(
                f"min_multiplier must be in (0, single_group_multiplier], got {self.min_multiplier}"
            )
        if not (
            self.single_group_multiplier <= self.two_group_multiplier <= self.max_multiplier
        ):
            raise ValueError("group multipliers must be non-decreasing")
        if self.major_conflict_penalty < 0 or self.minor_conflict_penalty < 0:
            raise ValueError("conflict penalties must be >= 0")
        if not (0.0 < self.max_confidence <= 1.0):
            raise ValueError(f"max_confidence must be in (0, 1], got {self.max_confidence}")
        valid_groups = {g.value for g in SourceGroup}
        bad = sorted(
            f"{source}={group}"
            for source, group in self.source_groups.items()
            if group not in valid_groups
        )
        if bad:
            raise ValueError(f"unknown source groups: {', '.join(bad)}")
        if self.default_group not in valid_groups:
            raise ValueError(f"unknown default_group '{self.default_group}'")

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CrossValidationConfig:
        filtered = _filter_fields(cls, data)
        if "source_groups" in filtered:
            # Partial tables extend the defaults rather than replace them.
            filtered["source_groups"] = {**DEFAULT_SOURCE_GROUPS, **filtered["source_groups"]}
        cfg = cls(**filtered)
        cfg.validate()
        return cfg


# ===================================================================== #
#  Field state                                                           #
# ===================================================================== #

DEFAULT_SOURCE_WEIGHTS: dict[str, float] = {
    "upc_lookup": 0.95,
    "keepa": 0.90,
    "keepa_lookup": 0.90,
    "amazon_catalog": 0.88,
    "ebay_api": 0.90,
    "user_input": 1.0,
    "user_hint": 0.85,
    "vision_ai": 0.70,
    "vision_analysis": 0.70,
    "web_search": 0.65,
    "web_search_targeted": 0.65,
    "web_search_general": 0.65,
    "ocr": 0.75,
    "ocr_extraction": 0.75,
}


@dataclass(frozen=True)
class FieldStateConfig:
    """How observations are folded into field states.

    Attributes
    ----------
    source_weights:
        Trust weight per provider, applied to reported confidence.
    default_source_weight:
        Weight of providers missing from ``source_weights``.
    replace_margin:
        A new value replaces the current one only when its weighted
        confidence exceeds the best existing weighted confidence by this
        factor.
    completion_threshold:
        Confidence at which a field becomes ``complete`` when no research
        constraints are supplied.
    recommended_threshold:
        Confidence at which an optional field counts toward the
        recommended score.
    required_weight / recommended_weight:
        Blend of required and recommended completeness in the
        completion score.
    """

    source_weights: dict[str, float] = field(default_factory=lambda: dict(DEFAULT_SOURCE_WEIGHTS))
    default_source_weight: float = 0.5
    replace_margin: float = 1.1
    completion_threshold: float = 0.75
    recommended_threshold: float = 0.5
    required_weight: float = 0.7
    recommended_weight: float = 0.3

    def validate(self) -> None:
        for source, weight in self.source_weights.items():
            if not (0.0 <= weight <= 1.0):
                raise ValueError(f"source weight for '{source}' must be in [0, 1], got {weight}")
        if not (0.0 <= self.default_source_weight <= 1.0):
            raise ValueError(
                f"default_source_weight must be in [0, 1], got {self.default_source_weight}"
            )
        if self.replace_margin < 1.0:
            raise ValueError(f"replace_margin must be >= 1, got {self.replace_margin}")
        for name in ("completion_threshold", "recommended_threshold"):
            value = getattr(self, name)
            if not (0.0 <= value <= 1.0):
                raise ValueError(f"{name} must be in [0, 1], got {value}")
        if abs(self.required_weight + self.recommended_weight - 1.0) > 1e-9:
            raise ValueError("required_weight + recommended_weight must equal 1")

    def weight_for(self, source_type: str) -> float:
        return self.source_weights.get(source_type, self.default_source_weight)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FieldStateConfig:
        filtered = _filter_fields(cls, data)
        if "source_weights" in filtered:
            filtered["source_weights"] = {**DEFAULT_SOURCE_WEIGHTS, **filtered["source_weights"]}
        cfg = cls(**filtered)
        cfg.validate()
        return cfg


# ===================================================================== #
#  Planner                                                               #
# ===================================================================== #


@dataclass(frozen=True)
class ContextBoost:
    """Score bonus for a tool when the research context favours it.

    The boost applies when every flag in ``requires`` is true and the
    context holds at least ``min_image_count`` images.
    """

    tool_id: str
    bonus: float
    requires: tuple[str, ...] = ()
    min_image_count: int = 0

    def __post_init__(self) -> None:
        if not isinstance(self.requires, tuple):
            object.__setattr__(self, "requires", tuple(self.requires))


DEFAULT_CONTEXT_BOOSTS: tuple[ContextBoost, ...] = (
    ContextBoost("upc_lookup", 50.0, requires=("has_upc",)),
    ContextBoost("keepa_lookup", 40.0, requires=("has_upc",)),
    ContextBoost("vision_analysis", 15.0, min_image_count=2),
    ContextBoost("web_search_targeted", 25.0, requires=("has_brand", "has_model")),
)


@dataclass(frozen=True)
class PlannerConfig:
    """Termination caps and scoring weights of the research task planner.

    Attributes
    ----------
    max_attempts_per_tool:
        Attempts after which a tool is no longer offered for an item.
    max_consecutive_no_progress:
        Iterations without any field change before research stops.
    min_budget_usd:
        Remaining budget under which research stops.
    field_attempt_limit / low_confidence_floor:
        A field with at least ``field_attempt_limit`` attempts and a
        confidence under ``low_confidence_floor`` is exhausted.
    exact_match_bonus:
        Score bonus when a tool names the target field explicitly.
    cost_penalty:
        Score deduction per USD of estimated cost.
    attempt_penalty:
        Score deduction per previous attempt on the target field.
    wildcard_field_limit:
        Number of fields a wildcard tool targets at once.
    max_parallel_tasks:
        Default fan-out of :meth:`plan_parallel_tasks`.
    context_boosts:
        Declarative per-tool bonuses.
    """

    max_attempts_per_tool: int = 2
    max_consecutive_no_progress: int = 3
    min_budget_usd: float = 0.001
    field_attempt_limit: int = 3
    low_confidence_floor: float = 0.3
    exact_match_bonus: float = 20.0
    cost_penalty: float = 50.0
    attempt_penalty: float = 10.0
    wildcard_field_limit: int = 5
    max_parallel_tasks: int = 3
    context_boosts: tuple[ContextBoost, ...] = DEFAULT_CONTEXT_BOOSTS

    def validate(self) -> None:
        if self.max_attempts_per_tool < 1:
            raise ValueError(
                f"max_attempts_per_tool must be >= 1, got {self.max_attempts_per_tool}"
            )
        if self.max_consecutive_no_progress < 1:
            raise ValueError(
                "max_consecutive_no_progress must be >= 1, "
                f"got {self.max_consecutive_no_progress}"
            )
        if self.min_budget_usd < 0:
            raise ValueError(f"min_budget_usd must be >= 0, got {self.min_budget_usd}")
        if self.field_attempt_limit < 1:
            raise ValueError(f"field_attempt_limit must be >= 1, got {self.field_attempt_limit}")
        if not (0.0 <= self.low_confidence_floor <= 1.0):
            raise ValueError(
                f"low_confidence_floor must be in [0, 1], got {self.low_confidence_floor}"
            )
        if self.wildcard_field_limit < 1:
            raise ValueError(f"wildcard_field_limit must be >= 1, got {self.wildcard_field_limit}")
        if self.max_parallel_tasks < 1:
            raise ValueError(f"max_parallel_tasks must be >= 1, got {self.max_parallel_tasks}")

    def boost_for(self, tool_id: str, has_flag: Any, image_count: int) -> float:
        """Sum of the context boosts that apply to *tool_id*.

        *has_flag* is a callable mapping a context flag name to a bool.
        """
        total = 0.0
        for boost in self.context_boosts:
            if boost.tool_id != tool_id:
                continue
            if image_count < boost.min_image_count:
                continue
            if all(has_flag(name) for name in boost.requires):
                total += boost.bonus
        return total

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PlannerConfig:
        filtered = _filter_fields(cls, data)
        if "context_boosts" in filtered:
            filtered["context_boosts"] = tuple(
                b if isinstance(b, ContextBoost) else ContextBoost(**b)
                for b in filtered["context_boosts"]
            )
        cfg = cls(**filtered)
        cfg.validate()
        return cfg


# ===================================================================== #
#  Goal router                                                           #
# ===================================================================== #


@dataclass(frozen=True)
class GoalRouterConfig:
    """Thresholds of the goal-phase router and the phase completion scorers.

    ``market_tiers`` is a sequence of ``(min_comps, confidence)`` pairs
    checked from the highest ``min_comps`` down; fewer comps than every tier
    yields ``market_floor_confidence``.
    """

    identification_required_confidence: float = 0.85
    identification_max_attempts: int = 3
    goal_max_attempts: int = 3
    metadata_default_confidence: float = 0.5
    market_tiers: tuple[tuple[int, float], ...] = ((10, 0.90), (5, 0.75), (3, 0.60))
    market_floor_confidence: float = 0.30
    assembly_listing_confidence: float = 0.85
    assembly_no_listing_confidence: float = 0.50

    def __post_init__(self) -> None:
        tiers = tuple(sorted((tuple(t) for t in self.market_tiers), key=lambda t: -t[0]))
        object.__setattr__(self, "market_tiers", tiers)

    def validate(self) -> None:
        if not (0.0 <= self.identification_required_confidence <= 1.0):
            raise ValueError(
                "identification_required_confidence must be in [0, 1], "
                f"got {self.identification_required_confidence}"
            )
        if self.identification_max_attempts < 1:
            raise ValueError(
                "identification_max_attempts must be >= 1, "
                f"got {self.identification_max_attempts}"
            )
        if self.goal_max_attempts < 1:
            raise ValueError(f"goal_max_attempts must be >= 1, got {self.goal_max_attempts}")
        for min_comps, confidence in self.market_tiers:
            if min_comps < 0 or not (0.0 <= confidence <= 1.0):
                raise ValueError(f"invalid market tier ({min_comps}, {confidence})")
        for name in (
            "metadata_default_confidence",
            "market_floor_confidence",
            "assembly_listing_confidence",
            "assembly_no_listing_confidence",
        ):
            value = getattr(self, name)
            if not (0.0 <= value <= 1.0):
                raise ValueError(f"{name} must be in [0, 1], got {value}")

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["market_tiers"] = [list(t) for t in self.market_tiers]
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GoalRouterConfig:
        cfg = cls(**_filter_fields(cls, data))
        cfg.validate()
        return cfg


# ===================================================================== #
#  Pipeline                                                              #
# ===================================================================== #


@dataclass(frozen=True)
class PipelineConfig:
    """Guards of the pipeline interpreter loop.

    Attributes
    ----------
    max_steps:
        Hard upper limit on routed steps per item.
    mode:
        Research mode whose constraints seed field research.
    """

    max_steps: int = 50
    mode: str = ResearchMode.BALANCED.value

    def validate(self) -> None:
        if self.max_steps < 1:
            raise ValueError(f"max_steps must be >= 1, got {self.max_steps}")
        valid_modes = {m.value for m in ResearchMode}
        if self.mode not in valid_modes:
            raise ValueError(f"mode must be one of {sorted(valid_modes)}, got '{self.mode}'")

    @property
    def research_mode(self) -> ResearchMode:
        return ResearchMode(self.mode)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PipelineConfig:
        cfg = cls(**_filter_fields(cls, data))
        cfg.validate()
        return cfg


# ===================================================================== #
#  Research modes                                                        #
# ===================================================================== #

RESEARCH_MODE_CONSTRAINTS: dict[ResearchMode, ResearchConstraints] = {
    ResearchMode.FAST: ResearchConstraints(
        max_cost_usd=0.10,
        max_time_ms=30_000,
        max_iterations=3,
        required_confidence=0.70,
        recommended_confidence=0.50,
        mode=ResearchMode.FAST,
    ),
    ResearchMode.BALANCED: ResearchConstraints(
        max_cost_usd=0.50,
        max_time_ms=90_000,
        max_iterations=10,
        required_confidence=0.75,
        recommended_confidence=0.55,
        mode=ResearchMode.BALANCED,
    ),
    ResearchMode.THOROUGH: ResearchConstraints(
        max_cost_usd=1.50,
        max_time_ms=300_000,
        max_iterations=25,
        required_confidence=0.85,
        recommended_confidence=0.65,
        mode=ResearchMode.THOROUGH,
    ),
}


def constraints_for_mode(mode: ResearchMode | str) -> ResearchConstraints:
    """Return the preset :class:`ResearchConstraints` of *mode*."""
    return RESEARCH_MODE_CONSTRAINTS[ResearchMode(mode)]


# ===================================================================== #
#  Unified config loader                                                 #
# ===================================================================== #

_CONFIG_MAP: dict[str, type] = {
    "cross_validation": CrossValidationConfig,
    "field_state": FieldStateConfig,
    "planner": PlannerConfig,
    "goal_router": GoalRouterConfig,
    "pipeline": PipelineConfig,
}


def load_config_from_json(json_str: str) -> dict[str, Any]:
    """Parse a JSON string into a dict of typed config objects.

    The JSON is expected to be an object whose top-level keys correspond to
    config section names (``cross_validation``, ``field_state``,
    ``planner``, ``goal_router``, ``pipeline``).  Unknown sections are
    preserved as raw dicts.
    """
    raw = json.loads(json_str)
    if not isinstance(raw, dict):
        raise ValueError("Top-level JSON must be an object")
    result: dict[str, Any] = {}
    for section, data in raw.items():
        cls = _CONFIG_MAP.get(section)
        if cls is not None and isinstance(data, dict):
            result[section] = cls.from_dict(data)
        else:
            result[section] = data
    return result

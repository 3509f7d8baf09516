"""Research task planning.

:class:`ResearchTaskPlanner` decides, one iteration at a time, which research
tool to run next for an item and on which fields.  It is a pure function of
its arguments: the caller supplies field states, constraints, context,
counters and history, and receives either a :class:`ResearchTask` or ``None``
meaning "stop researching this item".  Stopping is a normal outcome, never an
error, and the planner raises nothing for well-formed input.

Termination checks (first match wins):

1. iteration cap reached;
2. too many consecutive iterations without progress;
3. remaining budget below the minimum spend;
4. elapsed time over the limit (only when the caller reports elapsed time);
5. no field still needs research.

Scoring considers every (tool, field) pair the tool can produce and whose
prerequisites hold, skipping failed tools, tools at their attempt cap and
tools that cost more than the remaining budget::

    score = priority + exact_match_bonus - cost_penalty * cost
            + context boosts - attempt_penalty * field.attempts

Ties break by field priority (required first, lower confidence, fewer
attempts, then name) and finally by catalog order.
"""

from __future__ import annotations

import hashlib
import json
import logging
import math
from collections.abc import Collection, Sequence
from dataclasses import dataclass, replace

from item_research.domain.aggregates import ItemFieldStates, ResearchTaskHistory
from item_research.domain.entities import FieldState
from item_research.domain.enums import ResearchDecision, ResearchMode, TerminationReason
from item_research.domain.values import (
    ContinueDecision,
    CostEstimate,
    FieldEvaluationResult,
    ResearchConstraints,
    ResearchContext,
    ResearchTask,
    ToolSpec,
)
from item_research.infrastructure.catalog import ToolCatalog, default_tool_catalog
from item_research.infrastructure.config import PlannerConfig, constraints_for_mode

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScoredCandidate:
    """One (tool, field) pair with its planning score."""

    tool: ToolSpec
    field: FieldState
    score: float
    field_rank: int
    tool_rank: int

    @property
    def sort_key(self) -> tuple[float, int, int]:
        return (-self.score, self.field_rank, self.tool_rank)


def _has_value(value: object) -> bool:
    return value is not None and value != ""


def research_context_from_states(
    states: ItemFieldStates,
    image_count: int = 0,
    keepa_configured: bool = False,
    amazon_configured: bool = False,
    upc_database_configured: bool = False,
) -> ResearchContext:
    """Derive the research context from what the field states already hold."""
    return ResearchContext(
        has_upc=_has_value(states.value_of("upc")),
        has_brand=_has_value(states.value_of("brand")),
        has_model=_has_value(states.value_of("model")),
        has_category=_has_value(states.value_of("category")),
        has_images=image_count > 0,
        image_count=image_count,
        keepa_configured=keepa_configured,
        amazon_configured=amazon_configured,
        upc_database_configured=upc_database_configured,
    )


class ResearchTaskPlanner:
    """Chooses the next research task for an item.

    Parameters
    ----------
    catalog:
        The tools available to the planner.  Defaults to
        :func:`default_tool_catalog`.
    config:
        Termination caps and scoring weights.
    """

    def __init__(
        self,
        catalog: ToolCatalog | None = None,
        config: PlannerConfig | None = None,
    ) -> None:
        self._catalog = catalog if catalog is not None else default_tool_catalog()
        self._config = config or PlannerConfig()
        self._config.validate()

    @property
    def catalog(self) -> ToolCatalog:
        return self._catalog

    @property
    def config(self) -> PlannerConfig:
        return self._config

    @staticmethod
    def default_constraints(mode: ResearchMode | str) -> ResearchConstraints:
        return constraints_for_mode(mode)

    # ------------------------------------------------------------------ #
    #  Field selection                                                    #
    # ------------------------------------------------------------------ #

    def researchable_fields(
        self, states: ItemFieldStates, constraints: ResearchConstraints
    ) -> list[FieldState]:
        """Fields that still need research, highest priority first.

        Terminal fields, exhausted fields (many attempts, still low
        confidence) and fields whose value already meets their threshold are
        excluded.
        """
        cfg = self._config
        researchable: list[FieldState] = []
        for state in states:
            if state.is_terminal:
                continue
            if state.attempts >= cfg.field_attempt_limit and state.confidence < cfg.low_confidence_floor:
                continue
            threshold = (
                constraints.required_confidence
                if state.required
                else constraints.recommended_confidence
            )
            if state.has_value and state.confidence >= threshold:
                continue
            researchable.append(state)
        researchable.sort(key=lambda s: (not s.required, s.confidence, s.attempts, s.name))
        return researchable

    # ------------------------------------------------------------------ #
    #  Scoring                                                            #
    # ------------------------------------------------------------------ #

    def score(self, tool: ToolSpec, state: FieldState, context: ResearchContext) -> float:
        """Planning score of running *tool* for *state*."""
        cfg = self._config
        score = tool.priority
        if tool.declares(state.name):
            score += cfg.exact_match_bonus
        score -= cfg.cost_penalty * tool.estimated_cost
        score += cfg.boost_for(tool.tool_id, context.flag, context.image_count)
        score -= cfg.attempt_penalty * state.attempts
        return score

    def _eligible_tools(
        self,
        context: ResearchContext,
        budget_remaining: float,
        history: ResearchTaskHistory,
        exclude: Collection[str] = (),
    ) -> list[tuple[int, ToolSpec]]:
        eligible: list[tuple[int, ToolSpec]] = []
        for rank, tool in enumerate(self._catalog):
            if tool.tool_id in exclude:
                continue
            if history.has_failed(tool.tool_id):
                logger.debug("Planner: skipping failed tool %s", tool.tool_id)
                continue
            if history.attempts_for(tool.tool_id) >= self._config.max_attempts_per_tool:
                logger.debug("Planner: skipping exhausted tool %s", tool.tool_id)
                continue
            if tool.estimated_cost > budget_remaining:
                continue
            if not tool.prerequisites_met(context):
                continue
            eligible.append((rank, tool))
        return eligible

    def candidates(
        self,
        fields: Sequence[FieldState],
        context: ResearchContext,
        budget_remaining: float,
        history: ResearchTaskHistory | None = None,
        exclude: Collection[str] = (),
    ) -> list[ScoredCandidate]:
        """Every eligible (tool, field) pair, best first.

        *fields* must already be in priority order; their position is the
        field tie-breaker.
        """
        history = history or ResearchTaskHistory()
        tools = self._eligible_tools(context, budget_remaining, history, exclude)
        scored = [
            ScoredCandidate(
                tool=tool,
                field=state,
                score=self.score(tool, state, context),
                field_rank=field_rank,
                tool_rank=tool_rank,
            )
            for field_rank, state in enumerate(fields)
            for tool_rank, tool in tools
            if tool.can_provide(state.name)
        ]
        scored.sort(key=lambda c: c.sort_key)
        return scored

    # ------------------------------------------------------------------ #
    #  Planning                                                           #
    # ------------------------------------------------------------------ #

    def termination_reason(
        self,
        states: ItemFieldStates,
        constraints: ResearchConstraints,
        current_cost: float = 0.0,
        current_iteration: int = 0,
        history: ResearchTaskHistory | None = None,
        elapsed_ms: float | None = None,
    ) -> TerminationReason | None:
        """The first termination check that fires, or ``None`` to keep going.

        Does not consider tool eligibility; see :meth:`plan_next_task`.
        """
        cfg = self._config
        history = history or ResearchTaskHistory()

        if current_iteration >= constraints.max_iterations:
            logger.debug(
                "Planner: max iterations reached (%d/%d)",
                current_iteration,
                constraints.max_iterations,
            )
            return TerminationReason.ITERATION_LIMIT

        if history.consecutive_no_progress >= cfg.max_consecutive_no_progress:
            logger.warning(
                "Planner: stopping after %d consecutive iterations without progress",
                history.consecutive_no_progress,
            )
            return TerminationReason.NO_PROGRESS

        budget_remaining = constraints.max_cost_usd - current_cost
        if budget_remaining < cfg.min_budget_usd:
            logger.debug("Planner: budget exhausted (%.4f remaining)", budget_remaining)
            return TerminationReason.BUDGET_EXHAUSTED

        if elapsed_ms is not None and elapsed_ms >= constraints.max_time_ms:
            logger.debug("Planner: time limit reached (%.0f ms)", elapsed_ms)
            return TerminationReason.TIME_LIMIT

        if not self.researchable_fields(states, constraints):
            logger.debug("Planner: no fields need research")
            return TerminationReason.NO_RESEARCHABLE_FIELDS

        return None

    def plan_next_task(
        self,
        states: ItemFieldStates,
        constraints: ResearchConstraints,
        context: ResearchContext,
        current_cost: float = 0.0,
        current_iteration: int = 0,
        history: ResearchTaskHistory | None = None,
        elapsed_ms: float | None = None,
    ) -> ResearchTask | None:
        """Return the next task to run, or ``None`` to stop researching."""
        history = history or ResearchTaskHistory()
        reason = self.termination_reason(
            states, constraints, current_cost, current_iteration, history, elapsed_ms
        )
        if reason is not None:
            return None

        fields = self.researchable_fields(states, constraints)
        budget_remaining = constraints.max_cost_usd - current_cost
        ranked = self.candidates(fields, context, budget_remaining, history)
        if not ranked:
            logger.debug("Planner: no eligible tool for %d open field(s)", len(fields))
            return None

        task = self._build_task(ranked[0], fields, context, states, current_iteration, current_cost)
        logger.info(
            "Planner: %s -> %s (score %.1f)", task.tool, ", ".join(task.target_fields), task.priority
        )
        return task

    def plan_parallel_tasks(
        self,
        states: ItemFieldStates,
        constraints: ResearchConstraints,
        context: ResearchContext,
        current_cost: float = 0.0,
        max_tasks: int | None = None,
        history: ResearchTaskHistory | None = None,
    ) -> list[ResearchTask]:
        """Plan up to *max_tasks* tasks with distinct tools for a fan-out round.

        Fields are visited in priority order; each takes its best remaining
        tool while the allocated cost stays within budget.
        """
        max_tasks = self._config.max_parallel_tasks if max_tasks is None else max_tasks
        budget_remaining = constraints.max_cost_usd - current_cost
        fields = self.researchable_fields(states, constraints)
        tasks: list[ResearchTask] = []
        used: set[str] = set()
        allocated = 0.0

        for state in fields:
            if len(tasks) >= max_tasks or allocated >= budget_remaining:
                break
            ranked = self.candidates(
                [state], context, budget_remaining - allocated, history, exclude=used
            )
            if not ranked:
                continue
            best = ranked[0]
            used.add(best.tool.tool_id)
            allocated += best.tool.estimated_cost
            tasks.append(
                self._build_task(best, fields, context, states, len(tasks), current_cost)
            )
        return tasks

    # ------------------------------------------------------------------ #
    #  Stop decisions                                                     #
    # ------------------------------------------------------------------ #

    def should_continue_research(
        self,
        states: ItemFieldStates,
        constraints: ResearchConstraints,
        current_cost: float = 0.0,
        current_iteration: int = 0,
    ) -> ContinueDecision:
        budget_remaining = constraints.max_cost_usd - current_cost
        iterations_remaining = constraints.max_iterations - current_iteration
        open_fields = tuple(s.name for s in self.researchable_fields(states, constraints))

        if budget_remaining < self._config.min_budget_usd:
            return ContinueDecision(
                should_continue=False,
                reason="Budget exhausted",
                fields_needing_work=open_fields,
                budget_remaining=0.0,
                iterations_remaining=max(0, iterations_remaining),
            )
        if iterations_remaining <= 0:
            return ContinueDecision(
                should_continue=False,
                reason="Maximum iterations reached",
                fields_needing_work=open_fields,
                budget_remaining=budget_remaining,
                iterations_remaining=0,
            )
        if states.ready_to_publish:
            return ContinueDecision(
                should_continue=False,
                reason="All required fields complete",
                budget_remaining=budget_remaining,
                iterations_remaining=iterations_remaining,
            )
        if not open_fields:
            return ContinueDecision(
                should_continue=False,
                reason="No researchable fields remaining",
                budget_remaining=budget_remaining,
                iterations_remaining=iterations_remaining,
            )
        return ContinueDecision(
            should_continue=True,
            reason=f"{len(open_fields)} fields need research",
            fields_needing_work=open_fields,
            budget_remaining=budget_remaining,
            iterations_remaining=iterations_remaining,
        )

    def evaluate_field_states(
        self,
        states: ItemFieldStates,
        constraints: ResearchConstraints,
        current_cost: float = 0.0,
        current_iteration: int = 0,
    ) -> FieldEvaluationResult:
        """Classify the item as ``continue``, ``complete`` or ``stop_with_warnings``."""
        decision = self.should_continue_research(states, constraints, current_cost, current_iteration)
        if decision.should_continue:
            outcome, reason = ResearchDecision.CONTINUE, decision.reason
        elif states.ready_to_publish:
            outcome = ResearchDecision.COMPLETE
            reason = "All required fields complete with sufficient confidence"
        else:
            outcome, reason = ResearchDecision.STOP_WITH_WARNINGS, decision.reason
        return FieldEvaluationResult(
            decision=outcome,
            reason=reason,
            fields_needing_research=(
                () if outcome is ResearchDecision.COMPLETE else decision.fields_needing_work
            ),
            completion_score=states.completion_score,
            budget_remaining=decision.budget_remaining,
            iterations_remaining=decision.iterations_remaining,
        )

    def estimate_remaining_cost(
        self,
        states: ItemFieldStates,
        constraints: ResearchConstraints,
        context: ResearchContext,
    ) -> CostEstimate:
        """Rough cost of covering every open field once, each tool paid once."""
        fields = self.researchable_fields(states, constraints)
        if not fields:
            return CostEstimate()

        total = 0.0
        covered: list[str] = []
        used: set[str] = set()
        for state in fields:
            ranked = self.candidates([state], context, math.inf)
            if not ranked:
                continue
            tool = ranked[0].tool
            if tool.tool_id not in used:
                used.add(tool.tool_id)
                total += tool.estimated_cost
            covered.append(state.name)

        return CostEstimate(
            estimated_cost=min(total, constraints.max_cost_usd),
            estimated_iterations=min(math.ceil(len(fields) / 3), constraints.max_iterations),
            fields_covered=tuple(covered),
        )

    # ------------------------------------------------------------------ #
    #  History                                                            #
    # ------------------------------------------------------------------ #

    @staticmethod
    def record_task_outcome(
        history: ResearchTaskHistory,
        tool_id: str,
        states_before: ItemFieldStates,
        states_after: ItemFieldStates,
        succeeded: bool = True,
    ) -> ResearchTaskHistory:
        """Fold one executed task into *history*.

        The tool's attempt count always grows; a tool that produced nothing
        joins ``failed_tools``; the no-progress streak grows when the field
        states did not change and resets otherwise.
        """
        updated = history.with_attempt(tool_id)
        if not succeeded:
            updated = updated.with_failure(tool_id)
        if not updated.last_field_states_hash:
            updated = replace(updated, last_field_states_hash=states_before.progress_hash())
        return updated.with_progress_hash(states_after.progress_hash())

    # ------------------------------------------------------------------ #
    #  Internals                                                          #
    # ------------------------------------------------------------------ #

    def _target_fields(self, best: ScoredCandidate, fields: Sequence[FieldState]) -> tuple[str, ...]:
        others = [s.name for s in fields if s.name != best.field.name]
        if best.tool.is_wildcard:
            extra = others[: self._config.wildcard_field_limit - 1]
        else:
            extra = [name for name in others if best.tool.declares(name)]
        return (best.field.name, *extra)

    def _build_task(
        self,
        best: ScoredCandidate,
        fields: Sequence[FieldState],
        context: ResearchContext,
        states: ItemFieldStates,
        sequence: int,
        current_cost: float,
    ) -> ResearchTask:
        target_fields = self._target_fields(best, fields)
        payload = json.dumps(
            [best.tool.tool_id, target_fields, sequence, round(current_cost, 6), states.progress_hash()]
        )
        digest = hashlib.sha256(payload.encode("utf-8")).hexdigest()
        return ResearchTask(
            task_id=f"task-{digest[:16]}",
            tool=best.tool.tool_id,
            target_fields=target_fields,
            priority=best.score,
            estimated_cost=best.tool.estimated_cost,
            estimated_time_ms=best.tool.estimated_time_ms,
            reasoning=self._reasoning(best, context),
        )

    @staticmethod
    def _reasoning(best: ScoredCandidate, context: ResearchContext) -> str:
        tool, state = best.tool, best.field
        reasons = [f'Using {tool.display_name or tool.tool_id} for "{state.display_name}"']
        if state.required:
            reasons.append("(required field)")
        if state.confidence > 0:
            reasons.append(f"Current confidence: {round(state.confidence * 100)}%")
        if tool.tool_id == "upc_lookup" and context.has_upc:
            reasons.append("UPC available for lookup")
        if tool.tool_id == "web_search_targeted" and context.has_brand and context.has_model:
            reasons.append("Brand and model known")
        if state.attempts > 0:
            reasons.append(f"Attempt {state.attempts + 1}")
        return " - ".join(reasons)

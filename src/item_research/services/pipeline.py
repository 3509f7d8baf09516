"""Pipeline interpreter for the item research core.

Two loops drive an item through research:

:class:`FieldResearchLoop`
    plan -> execute (injected executor) -> fold observations -> update
    history, until the planner reports a termination reason.
:class:`ResearchPipeline`
    an explicit finite-state machine over the goal-phase router: ask the
    router for the next route, dispatch it to a completion step, a phase
    transition or an injected step handler, and repeat until results are
    persisted.

Provider calls never happen here.  Executors and step handlers are plain
callables supplied by the caller; the planner, router and cross-validation
engine remain pure.  Progress is reported by publishing domain events on an
optional :class:`~item_research.infrastructure.event_bus.EventBus`.

Classes
-------
StopReason
    Why a pipeline run ended.
Observation, TaskOutcome
    What an executor hands back for one research task.
FieldResearchResult, PipelineResult
    Outcomes of the two loops.
PipelineState
    Immutable snapshot threaded through the interpreter.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any

from item_research.domain.aggregates import ItemFieldStates, ResearchTaskHistory
from item_research.domain.entities import ResearchGoal
from item_research.domain.enums import (
    GoalStatus,
    GoalType,
    ResearchPhase,
    RouteTarget,
    TerminationReason,
)
from item_research.domain.events import (
    DomainEvent,
    FieldUpdated,
    GoalCompleted,
    PhaseTransitioned,
    ResearchStopped,
    RouteSelected,
    StepFailed,
    TaskExecuted,
    TaskPlanned,
)
from item_research.domain.exceptions import PipelineError
from item_research.domain.values import (
    CrossValidationResult,
    FieldDataSource,
    FieldEvaluationResult,
    ResearchConstraints,
    ResearchContext,
    ResearchTask,
    RouteDecision,
)
from item_research.infrastructure.config import PipelineConfig, constraints_for_mode
from item_research.infrastructure.event_bus import EventBus
from item_research.services.field_state import FieldStateManager
from item_research.services.goal_routing import GoalRouter, GoalSetUpdate, later_phase
from item_research.services.planning import ResearchTaskPlanner

logger = logging.getLogger(__name__)


# ===================================================================== #
#  Stop Reason Enum                                                      #
# ===================================================================== #


class StopReason(Enum):
    """Reason the pipeline interpreter terminated."""

    COMPLETED = "completed"
    MAX_STEPS = "max_steps"
    ERROR = "error"


# ===================================================================== #
#  Executor contract                                                     #
# ===================================================================== #


@dataclass(frozen=True)
class Observation:
    """One value a research tool produced for one field."""

    field_name: str
    value: Any
    source: FieldDataSource


@dataclass(frozen=True)
class TaskOutcome:
    """Result of executing a :class:`ResearchTask`.

    Attributes
    ----------
    observations:
        Values produced by the tool.
    cost:
        Actual USD spent.  ``None`` charges the task's estimate.
    time_ms:
        Actual tool time.  ``None`` charges the task's estimate.
    succeeded:
        Whether the tool worked.  ``None`` means "succeeded if it produced
        at least one observation".
    error:
        Error text when the tool failed.
    """

    observations: tuple[Observation, ...] = ()
    cost: float | None = None
    time_ms: float | None = None
    succeeded: bool | None = None
    error: str = ""

    @property
    def ok(self) -> bool:
        if self.succeeded is None:
            return bool(self.observations)
        return self.succeeded


TaskExecutor = Callable[[ResearchTask, ItemFieldStates], TaskOutcome]
ContextSource = ResearchContext | Callable[[ItemFieldStates], ResearchContext]


# ===================================================================== #
#  Field research loop                                                   #
# ===================================================================== #


@dataclass
class FieldResearchResult:
    """Outcome of one :meth:`FieldResearchLoop.run`.

    Attributes
    ----------
    field_states:
        Final field states, with cross-validated confidences applied.
    history:
        Task history after the run; pass it back in to resume.
    tasks:
        Every task executed, in order.
    stop_reason:
        The termination check that ended the run.
    evaluation:
        ``continue`` / ``complete`` / ``stop_with_warnings`` verdict.
    cross_validation:
        Per-field cross-validation records.
    events:
        Domain events emitted during the run.
    """

    field_states: ItemFieldStates
    history: ResearchTaskHistory
    tasks: list[ResearchTask] = field(default_factory=list)
    stop_reason: TerminationReason = TerminationReason.ITERATION_LIMIT
    evaluation: FieldEvaluationResult | None = None
    cross_validation: CrossValidationResult | None = None
    events: list[DomainEvent] = field(default_factory=list)


class FieldResearchLoop:
    """Runs planned research tasks against an item until the planner stops.

    Budget, time and iteration counters are taken from the field states
    themselves (``total_cost``, ``total_time_ms``, ``iterations``), so a run
    can be resumed from a saved snapshot and history.

    Parameters
    ----------
    planner:
        Chooses each task.
    manager:
        Folds observations into field states.
    executor:
        ``executor(task, states) -> TaskOutcome``.  Exceptions raised by the
        executor are logged and count as a failed tool.
    event_bus:
        Optional bus for progress events.
    """

    def __init__(
        self,
        planner: ResearchTaskPlanner,
        manager: FieldStateManager,
        executor: TaskExecutor,
        event_bus: EventBus | None = None,
    ) -> None:
        self._planner = planner
        self._manager = manager
        self._executor = executor
        self._event_bus = event_bus

    @property
    def planner(self) -> ResearchTaskPlanner:
        return self._planner

    @property
    def manager(self) -> FieldStateManager:
        return self._manager

    def run(
        self,
        states: ItemFieldStates,
        constraints: ResearchConstraints,
        context: ContextSource,
        item_id: str = "",
        history: ResearchTaskHistory | None = None,
    ) -> FieldResearchResult:
        """Research *states* until a termination check fires.

        *context* is either a fixed :class:`ResearchContext` or a callable
        deriving it from the current states, so that identifiers discovered
        mid-run (brand, model, UPC) unlock the tools that need them.
        Incoming confidences are cross-validated before the first planning
        call.
        """
        history = history or ResearchTaskHistory()
        threshold = constraints.required_confidence
        tasks: list[ResearchTask] = []
        events: list[DomainEvent] = []
        states, _ = self._manager.apply_cross_validation(states, threshold)

        while True:
            reason = self._planner.termination_reason(
                states,
                constraints,
                current_cost=states.total_cost,
                current_iteration=states.iterations,
                history=history,
                elapsed_ms=states.total_time_ms,
            )
            if reason is not None:
                break

            current_context = context(states) if callable(context) else context
            task = self._planner.plan_next_task(
                states,
                constraints,
                current_context,
                current_cost=states.total_cost,
                current_iteration=states.iterations,
                history=history,
                elapsed_ms=states.total_time_ms,
            )
            if task is None:
                reason = TerminationReason.NO_ELIGIBLE_TOOL
                break

            tasks.append(task)
            self._emit(events, TaskPlanned(source_id=item_id, task=task, iteration=states.iterations))

            before = states
            outcome = self._execute(task, states)
            states = self._fold(states, task, outcome, threshold)
            history = self._planner.record_task_outcome(
                history, task.tool, before, states, succeeded=outcome.ok
            )

            updated = tuple(
                name
                for name in dict.fromkeys(o.field_name for o in outcome.observations)
                if name in states and states.fields[name] != before.get(name)
            )
            self._emit(
                events,
                TaskExecuted(
                    source_id=item_id,
                    tool=task.tool,
                    fields_updated=updated,
                    cost=states.total_cost - before.total_cost,
                    succeeded=outcome.ok,
                ),
            )
            for name in updated:
                state = states.fields[name]
                self._emit(
                    events,
                    FieldUpdated(
                        source_id=item_id,
                        field_name=name,
                        confidence=state.confidence,
                        status=state.status.value,
                    ),
                )

        # Re-run for the per-field records; the confidences are already applied.
        states, cross_validation = self._manager.apply_cross_validation(states, threshold)
        evaluation = self._planner.evaluate_field_states(
            states, constraints, states.total_cost, states.iterations
        )
        logger.info(
            "FieldResearchLoop: stopped (%s) after %d iteration(s), cost %.4f, completion %.2f",
            reason.value,
            states.iterations,
            states.total_cost,
            states.completion_score,
        )
        self._emit(
            events,
            ResearchStopped(
                source_id=item_id,
                reason=reason.value,
                iterations=states.iterations,
                total_cost=states.total_cost,
            ),
        )
        return FieldResearchResult(
            field_states=states,
            history=history,
            tasks=tasks,
            stop_reason=reason,
            evaluation=evaluation,
            cross_validation=cross_validation,
            events=events,
        )

    # -- internals ----------------------------------------------------------

    def _execute(self, task: ResearchTask, states: ItemFieldStates) -> TaskOutcome:
        try:
            return self._executor(task, states)
        except Exception as exc:
            logger.exception("FieldResearchLoop: tool %s raised", task.tool)
            return TaskOutcome(succeeded=False, error=str(exc))

    def _fold(
        self,
        states: ItemFieldStates,
        task: ResearchTask,
        outcome: TaskOutcome,
        threshold: float,
    ) -> ItemFieldStates:
        """Apply *outcome* and charge the task's cost, time and one iteration.

        Observations go through the cross-validation engine, so the next
        planning call sees cross-validated confidences and statuses.
        """
        before_cost = states.total_cost
        states = self._manager.observe(
            states,
            ((o.field_name, o.value, o.source) for o in outcome.observations),
            threshold,
        )
        observed = {o.field_name for o in outcome.observations}
        states = self._manager.record_attempt(
            states, [name for name in task.target_fields if name not in observed]
        )

        # Observation sources already carried part of the cost.
        cost = task.estimated_cost if outcome.cost is None else outcome.cost
        charged = states.total_cost - before_cost
        time_ms = task.estimated_time_ms if outcome.time_ms is None else outcome.time_ms
        return states.with_usage(cost=max(0.0, cost - charged), time_ms=time_ms, iterations=1)

    def _emit(self, events: list[DomainEvent], event: DomainEvent) -> None:
        events.append(event)
        if self._event_bus is not None:
            self._event_bus.publish(event)


# ===================================================================== #
#  Pipeline state                                                        #
# ===================================================================== #


@dataclass(frozen=True)
class PipelineState:
    """Everything the interpreter threads from one step to the next.

    Step handlers receive the current snapshot and return a mapping of
    attribute updates; the interpreter applies them with
    ``dataclasses.replace``.
    """

    item_id: str = ""
    goals: tuple[ResearchGoal, ...] = ()
    completed_goal_ids: tuple[str, ...] = ()
    phase: ResearchPhase = ResearchPhase.IDENTIFICATION
    identification_confidence: float = 0.0
    identification_attempts: int = 0
    field_states: ItemFieldStates | None = None
    comp_count: int = 0
    listing: Any = None

    def to_dict(self) -> dict[str, Any]:
        """Checkpoint of the routing state as plain JSON-friendly data.

        Field states and the listing are owned by the caller's own storage
        and are not included.
        """
        return {
            "item_id": self.item_id,
            "goals": [goal_to_dict(g) for g in self.goals],
            "completed_goal_ids": list(self.completed_goal_ids),
            "phase": self.phase.value,
            "identification_confidence": self.identification_confidence,
            "identification_attempts": self.identification_attempts,
            "comp_count": self.comp_count,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PipelineState:
        return cls(
            item_id=data.get("item_id", ""),
            goals=tuple(goal_from_dict(g) for g in data.get("goals", ())),
            completed_goal_ids=tuple(data.get("completed_goal_ids", ())),
            phase=ResearchPhase(data.get("phase", ResearchPhase.IDENTIFICATION.value)),
            identification_confidence=float(data.get("identification_confidence", 0.0)),
            identification_attempts=int(data.get("identification_attempts", 0)),
            comp_count=int(data.get("comp_count", 0)),
        )

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> PipelineState:
        """Build a snapshot from a live state mapping (e.g. LangGraph state).

        Keys that are not pipeline state attributes are ignored.
        """
        values = {k: v for k, v in data.items() if k in STATE_KEYS and v is not None}
        if "goals" in values:
            values["goals"] = tuple(values["goals"])
        if "completed_goal_ids" in values:
            values["completed_goal_ids"] = tuple(values["completed_goal_ids"])
        return cls(**values)


STATE_KEYS = frozenset(f.name for f in fields(PipelineState))


def check_handler_updates(
    name: str, updates: Mapping[str, Any] | None, route: RouteTarget
) -> dict[str, Any]:
    """Validate a step handler's partial update against :data:`STATE_KEYS`.

    Raises
    ------
    PipelineError
        If the handler returned keys that are not pipeline state attributes.
    """
    result = dict(updates or {})
    unknown = set(result) - STATE_KEYS
    if unknown:
        raise PipelineError(
            f"Handler '{name}' returned unknown state keys: {sorted(unknown)}",
            route=route.value,
            details={"keys": sorted(unknown)},
        )
    return result


def goal_to_dict(goal: ResearchGoal) -> dict[str, Any]:
    return {
        "goal_id": goal.goal_id,
        "goal_type": goal.goal_type.value,
        "status": goal.status.value,
        "confidence": goal.confidence,
        "dependencies": list(goal.dependencies),
        "attempts": goal.attempts,
        "max_attempts": goal.max_attempts,
        "required_confidence": goal.required_confidence,
        "completed_at": goal.completed_at,
    }


def goal_from_dict(data: Mapping[str, Any]) -> ResearchGoal:
    return ResearchGoal(
        goal_id=data["goal_id"],
        goal_type=GoalType(data["goal_type"]),
        status=GoalStatus(data.get("status", GoalStatus.PENDING.value)),
        confidence=data.get("confidence", 0.0),
        dependencies=tuple(data.get("dependencies", ())),
        attempts=data.get("attempts", 0),
        max_attempts=data.get("max_attempts", 3),
        required_confidence=data.get("required_confidence", 0.85),
        completed_at=data.get("completed_at"),
    )


StepHandler = Callable[[PipelineState], Mapping[str, Any]]


@dataclass
class PipelineResult:
    """Captures the outcome of a pipeline run.

    Attributes
    ----------
    state:
        The last pipeline snapshot (best effort when the run failed).
    steps_completed:
        Number of routed steps executed.
    routes:
        Every route taken, in order.
    stopped_reason:
        Why the interpreter terminated.
    events:
        All domain events emitted during the run.
    elapsed_seconds:
        Time of the run according to the injected clock.
    error:
        Error text when ``stopped_reason`` is ``ERROR``.
    """

    state: PipelineState
    steps_completed: int = 0
    routes: list[RouteTarget] = field(default_factory=list)
    stopped_reason: StopReason = StopReason.MAX_STEPS
    events: list[DomainEvent] = field(default_factory=list)
    elapsed_seconds: float = 0.0
    error: str = ""


# ===================================================================== #
#  Pipeline interpreter                                                  #
# ===================================================================== #


def _no_op(state: PipelineState) -> Mapping[str, Any]:
    return {}


class ResearchPipeline:
    """Finite-state-machine interpreter over :class:`GoalRouter`.

    Each step asks the router for a :class:`RouteDecision` and dispatches on
    its route:

    * ``execute_*`` routes start the goal, call the matching step handler
      and, for metadata, market and assembly, immediately complete the goal
      from what the handler produced;
    * ``complete_*`` routes score and complete a goal;
    * ``transition_to_assembly`` enters the assembly phase;
    * ``persist_results`` calls the persist handler and ends the run.

    Parameters
    ----------
    router:
        The goal-phase router.
    identify, gather_metadata, research_market, assemble, persist:
        Step handlers ``handler(state) -> updates``.  Missing handlers are
        no-ops.
    config:
        ``max_steps`` guard.
    event_bus:
        Optional bus for progress events.
    clock:
        Source of completion timestamps.  Defaults to ``time.time``.
    """

    def __init__(
        self,
        router: GoalRouter | None = None,
        identify: StepHandler | None = None,
        gather_metadata: StepHandler | None = None,
        research_market: StepHandler | None = None,
        assemble: StepHandler | None = None,
        persist: StepHandler | None = None,
        config: PipelineConfig | None = None,
        event_bus: EventBus | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._router = router or GoalRouter()
        self._config = config or PipelineConfig()
        self._config.validate()
        self._event_bus = event_bus
        self._clock = clock
        self._handlers: dict[str, StepHandler] = {
            "identify": identify or _no_op,
            "gather_metadata": gather_metadata or _no_op,
            "research_market": research_market or _no_op,
            "assemble": assemble or _no_op,
            "persist": persist or _no_op,
        }
        self._dispatch: dict[RouteTarget, Callable[[PipelineState, RouteDecision], PipelineState]] = {
            RouteTarget.EXECUTE_IDENTIFICATION: self._execute_identification,
            RouteTarget.COMPLETE_IDENTIFICATION_GOAL: self._complete_identification,
            RouteTarget.EXECUTE_GATHER_METADATA: self._execute_metadata,
            RouteTarget.COMPLETE_METADATA_GOAL: self._complete_metadata,
            RouteTarget.EXECUTE_MARKET_RESEARCH: self._execute_market,
            RouteTarget.COMPLETE_MARKET_GOAL: self._complete_market,
            RouteTarget.TRANSITION_TO_ASSEMBLY: self._transition_to_assembly,
            RouteTarget.EXECUTE_ASSEMBLY: self._execute_assembly,
            RouteTarget.COMPLETE_ASSEMBLY_GOAL: self._complete_assembly,
            RouteTarget.PERSIST_RESULTS: self._persist,
        }
        self._events: list[DomainEvent] = []

    @property
    def router(self) -> GoalRouter:
        return self._router

    def initial_state(
        self, item_id: str = "", field_states: ItemFieldStates | None = None
    ) -> PipelineState:
        """A fresh snapshot with the router's default goal DAG."""
        return PipelineState(
            item_id=item_id,
            goals=self._router.create_default_goals(),
            field_states=field_states,
        )

    def run(self, state: PipelineState) -> PipelineResult:
        """Drive *state* through the pipeline until results are persisted.

        Handler exceptions stop the run with ``StopReason.ERROR``; the last
        good snapshot is returned.
        """
        start_time = self._clock()
        self._events = []
        routes: list[RouteTarget] = []
        stop_reason = StopReason.MAX_STEPS
        error = ""
        step = 0
        route = ""

        try:
            for step in range(1, self._config.max_steps + 1):
                decision = self._router.route(
                    state.goals,
                    state.completed_goal_ids,
                    state.identification_confidence,
                    state.identification_attempts,
                    current_phase=state.phase,
                )
                route = decision.route.value
                routes.append(decision.route)
                logger.debug(
                    "Step %d: %s -> %s (%s)", step, decision.phase.value, route, decision.reason
                )
                self._publish(
                    RouteSelected(
                        timestamp=self._clock(),
                        source_id=state.item_id,
                        phase=decision.phase,
                        route=decision.route,
                        reason=decision.reason,
                    )
                )
                state = self._enter_phase(state, decision.phase)
                state = self._dispatch[decision.route](state, decision)

                if decision.route is RouteTarget.PERSIST_RESULTS:
                    stop_reason = StopReason.COMPLETED
                    break
            else:
                logger.warning(
                    "ResearchPipeline: max steps (%d) reached for item %s",
                    self._config.max_steps,
                    state.item_id,
                )
        except Exception as exc:
            logger.exception("ResearchPipeline: error at step %d (%s)", step, route)
            stop_reason = StopReason.ERROR
            error = str(exc)
            self._publish(
                StepFailed(
                    timestamp=self._clock(), source_id=state.item_id, route=route, error=error
                )
            )

        return PipelineResult(
            state=state,
            steps_completed=step,
            routes=routes,
            stopped_reason=stop_reason,
            events=list(self._events),
            elapsed_seconds=self._clock() - start_time,
            error=error,
        )

    # -- execution routes ---------------------------------------------------

    def _execute_identification(
        self, state: PipelineState, decision: RouteDecision
    ) -> PipelineState:
        state = replace(
            state,
            goals=self._router.start_goal(state.goals, decision.goal_id),
            identification_attempts=state.identification_attempts + 1,
        )
        return self._call("identify", state, decision.route)

    def _execute_metadata(self, state: PipelineState, decision: RouteDecision) -> PipelineState:
        state = replace(state, goals=self._router.start_goal(state.goals, decision.goal_id))
        state = self._call("gather_metadata", state, decision.route)
        return self._complete_metadata(state, decision)

    def _execute_market(self, state: PipelineState, decision: RouteDecision) -> PipelineState:
        state = replace(state, goals=self._router.start_goal(state.goals, decision.goal_id))
        state = self._call("research_market", state, decision.route)
        return self._complete_market(state, decision)

    def _execute_assembly(self, state: PipelineState, decision: RouteDecision) -> PipelineState:
        state = replace(state, goals=self._router.start_goal(state.goals, decision.goal_id))
        state = self._call("assemble", state, decision.route)
        return self._complete_assembly(state, decision)

    def _persist(self, state: PipelineState, decision: RouteDecision) -> PipelineState:
        return self._call("persist", state, decision.route)

    # -- completion routes --------------------------------------------------

    def _complete_identification(
        self, state: PipelineState, decision: RouteDecision
    ) -> PipelineState:
        update = self._router.complete_identification(
            state.goals, state.completed_goal_ids, state.identification_confidence, self._clock()
        )
        return self._apply_goal_update(state, update)

    def _complete_metadata(self, state: PipelineState, decision: RouteDecision) -> PipelineState:
        update = self._router.complete_metadata(
            state.goals, state.completed_goal_ids, state.field_states, self._clock()
        )
        return self._apply_goal_update(state, update)

    def _complete_market(self, state: PipelineState, decision: RouteDecision) -> PipelineState:
        update = self._router.complete_market(
            state.goals, state.completed_goal_ids, state.comp_count, self._clock()
        )
        return self._apply_goal_update(state, update)

    def _complete_assembly(self, state: PipelineState, decision: RouteDecision) -> PipelineState:
        update = self._router.complete_assembly(
            state.goals, state.completed_goal_ids, state.listing is not None, self._clock()
        )
        return self._apply_goal_update(state, update)

    def _transition_to_assembly(
        self, state: PipelineState, decision: RouteDecision
    ) -> PipelineState:
        update = self._router.transition_to_assembly(state.goals, state.completed_goal_ids)
        return self._apply_goal_update(state, update)

    # -- internals ----------------------------------------------------------

    def _call(self, name: str, state: PipelineState, route: RouteTarget) -> PipelineState:
        updates = check_handler_updates(name, self._handlers[name](state), route)
        return replace(state, **updates)

    def _apply_goal_update(self, state: PipelineState, update: GoalSetUpdate) -> PipelineState:
        state = replace(
            state, goals=update.goals, completed_goal_ids=update.completed_goal_ids
        )
        if update.completed_goal is not None:
            goal = update.completed_goal
            self._publish(
                GoalCompleted(
                    timestamp=self._clock(),
                    source_id=state.item_id,
                    goal_id=goal.goal_id,
                    goal_type=goal.goal_type,
                    confidence=goal.confidence,
                )
            )
        if update.phase is not None:
            state = self._enter_phase(state, update.phase)
        return state

    def _enter_phase(self, state: PipelineState, phase: ResearchPhase) -> PipelineState:
        target = later_phase(phase, state.phase)
        if target is state.phase:
            return state
        logger.info(
            "ResearchPipeline: %s phase %s -> %s", state.item_id, state.phase.value, target.value
        )
        self._publish(
            PhaseTransitioned(
                timestamp=self._clock(),
                source_id=state.item_id,
                from_phase=state.phase,
                to_phase=target,
            )
        )
        return replace(state, phase=target)

    def _publish(self, event: DomainEvent) -> None:
        self._events.append(event)
        if self._event_bus is not None:
            self._event_bus.publish(event)


# ===================================================================== #
#  Handler helpers                                                       #
# ===================================================================== #


def make_metadata_handler(
    loop: FieldResearchLoop,
    constraints: ResearchConstraints | None,
    context: ContextSource,
    config: PipelineConfig | None = None,
) -> StepHandler:
    """Build a ``gather_metadata`` handler that runs *loop* on the item's fields.

    With *constraints* left as ``None`` the loop runs under the preset of
    ``config.mode`` (``balanced`` by default).  The handler is a no-op for
    an item without field states.
    """
    limits = (
        constraints
        if constraints is not None
        else constraints_for_mode((config or PipelineConfig()).research_mode)
    )
    logger.debug(
        "make_metadata_handler: %s mode, $%.2f over %d iterations",
        limits.mode.value,
        limits.max_cost_usd,
        limits.max_iterations,
    )

    def gather_metadata(state: PipelineState) -> Mapping[str, Any]:
        if state.field_states is None:
            logger.warning("gather_metadata: item %s has no field states", state.item_id)
            return {}
        result = loop.run(state.field_states, limits, context, item_id=state.item_id)
        return {"field_states": result.field_states}

    return gather_metadata

"""Goal-phase routing.

The pipeline moves through four macro phases::

    identification -> parallel -> assembly -> done

driven by a small goal DAG: IDENTIFY_PRODUCT gates ``parallel``;
GATHER_METADATA and RESEARCH_MARKET both depend on it and are eligible
together; ASSEMBLE_LISTING depends on both and gates ``done``.

:class:`GoalRouter` answers "which step runs next?" from the goal set, the
ids of completed goals and the identification counters.  It also owns the
phase-completion steps, which score a finished phase and mark its goal
completed.  Every operation is pure and tolerant of partial goal sets: a
missing goal never raises and never deadlocks the pipeline.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Collection, Iterable, Sequence
from dataclasses import dataclass, replace
from typing import Any

from item_research.domain.aggregates import ItemFieldStates
from item_research.domain.entities import ResearchGoal
from item_research.domain.enums import FieldStatus, GoalStatus, GoalType, ResearchPhase, RouteTarget
from item_research.domain.values import RouteDecision
from item_research.infrastructure.config import GoalRouterConfig

logger = logging.getLogger(__name__)

_PHASE_ORDER = (
    ResearchPhase.IDENTIFICATION,
    ResearchPhase.PARALLEL,
    ResearchPhase.ASSEMBLY,
    ResearchPhase.DONE,
)


def later_phase(a: ResearchPhase, b: ResearchPhase | None) -> ResearchPhase:
    """The more advanced of two phases (``None`` is ignored)."""
    if b is None:
        return a
    return a if _PHASE_ORDER.index(a) >= _PHASE_ORDER.index(b) else b


@dataclass(frozen=True)
class GoalSetUpdate:
    """Result of a completion or transition step.

    ``phase`` is ``None`` when the step leaves the current phase alone.
    """

    goals: tuple[ResearchGoal, ...]
    completed_goal_ids: tuple[str, ...]
    phase: ResearchPhase | None = None
    completed_goal: ResearchGoal | None = None

    @property
    def changed(self) -> bool:
        return self.completed_goal is not None


# ===================================================================== #
#  Goal-set helpers                                                      #
# ===================================================================== #


def find_goal(goals: Iterable[ResearchGoal], goal_type: GoalType) -> ResearchGoal | None:
    """First goal of *goal_type*, or ``None``."""
    return next((g for g in goals if g.goal_type is goal_type), None)


def is_goal_completed(goal: ResearchGoal | None, completed_goal_ids: Collection[str]) -> bool:
    if goal is None:
        return False
    return goal.is_completed or goal.goal_id in completed_goal_ids


def dependencies_satisfied(
    goal: ResearchGoal,
    goals: Sequence[ResearchGoal],
    completed_goal_ids: Collection[str] = (),
) -> bool:
    """True when every dependency is completed.

    A dependency that names no goal in *goals* is vacuously satisfied.
    """
    by_id = {g.goal_id: g for g in goals}
    for dep_id in goal.dependencies:
        dep = by_id.get(dep_id)
        if dep is None:
            continue
        if not is_goal_completed(dep, completed_goal_ids):
            return False
    return True


def ready_goals(
    goals: Sequence[ResearchGoal], completed_goal_ids: Collection[str] = ()
) -> list[ResearchGoal]:
    """Pending goals whose dependencies are satisfied, in goal-set order."""
    return [
        g
        for g in goals
        if g.status is GoalStatus.PENDING
        and g.goal_id not in completed_goal_ids
        and dependencies_satisfied(g, goals, completed_goal_ids)
    ]


def update_goal(
    goals: Sequence[ResearchGoal], goal_id: str, **changes: Any
) -> tuple[ResearchGoal, ...]:
    """Return *goals* with the goal *goal_id* replaced by an updated copy.

    Completed goals are immutable and are returned unchanged.
    """
    return tuple(
        replace(g, **changes) if g.goal_id == goal_id and not g.is_completed else g
        for g in goals
    )


# ===================================================================== #
#  Completion scoring                                                    #
# ===================================================================== #


def metadata_completion_confidence(
    states: ItemFieldStates | None, default: float = 0.5
) -> float:
    """Share of tracked fields that are complete; *default* with no snapshot."""
    if states is None:
        return default
    complete = sum(1 for s in states if s.status is FieldStatus.COMPLETE)
    return complete / max(len(states), 1)


def market_completion_confidence(
    comp_count: int,
    tiers: Sequence[tuple[int, float]] = ((10, 0.90), (5, 0.75), (3, 0.60)),
    floor: float = 0.30,
) -> float:
    """Confidence of market research from the number of validated comps."""
    for min_comps, confidence in sorted(tiers, key=lambda t: -t[0]):
        if comp_count >= min_comps:
            return confidence
    return floor


def assembly_completion_confidence(
    has_listing: bool, with_listing: float = 0.85, without_listing: float = 0.50
) -> float:
    return with_listing if has_listing else without_listing


# ===================================================================== #
#  Router                                                                #
# ===================================================================== #


class GoalRouter:
    """Decides the next pipeline step from goal completion state.

    Parameters
    ----------
    config:
        Identification thresholds and completion scoring constants.
    id_factory:
        Produces goal ids for :meth:`create_default_goals`.  Defaults to
        random UUIDs; inject a deterministic factory for replayable runs.
    """

    def __init__(
        self,
        config: GoalRouterConfig | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self._config = config or GoalRouterConfig()
        self._config.validate()
        self._id_factory = id_factory or (lambda: str(uuid.uuid4()))

    @property
    def config(self) -> GoalRouterConfig:
        return self._config

    # -- goal set -----------------------------------------------------------

    def create_default_goals(self) -> tuple[ResearchGoal, ...]:
        """The standard four-goal DAG, all pending."""
        cfg = self._config
        identify = ResearchGoal(
            goal_id=self._id_factory(),
            goal_type=GoalType.IDENTIFY_PRODUCT,
            max_attempts=cfg.identification_max_attempts,
            required_confidence=cfg.identification_required_confidence,
        )
        metadata = ResearchGoal(
            goal_id=self._id_factory(),
            goal_type=GoalType.GATHER_METADATA,
            dependencies=(identify.goal_id,),
            max_attempts=cfg.goal_max_attempts,
        )
        market = ResearchGoal(
            goal_id=self._id_factory(),
            goal_type=GoalType.RESEARCH_MARKET,
            dependencies=(identify.goal_id,),
            max_attempts=cfg.goal_max_attempts,
        )
        assemble = ResearchGoal(
            goal_id=self._id_factory(),
            goal_type=GoalType.ASSEMBLE_LISTING,
            dependencies=(metadata.goal_id, market.goal_id),
            max_attempts=cfg.goal_max_attempts,
        )
        return (identify, metadata, market, assemble)

    # -- phase --------------------------------------------------------------

    def determine_phase(
        self, goals: Sequence[ResearchGoal], completed_goal_ids: Collection[str] = ()
    ) -> ResearchPhase:
        """Phase implied by the goal set alone."""
        identify = find_goal(goals, GoalType.IDENTIFY_PRODUCT)
        if identify is not None and not is_goal_completed(identify, completed_goal_ids):
            return ResearchPhase.IDENTIFICATION
        metadata = find_goal(goals, GoalType.GATHER_METADATA)
        market = find_goal(goals, GoalType.RESEARCH_MARKET)
        if is_goal_completed(metadata, completed_goal_ids) and is_goal_completed(
            market, completed_goal_ids
        ):
            return ResearchPhase.ASSEMBLY
        return ResearchPhase.PARALLEL

    # -- routing ------------------------------------------------------------

    def route(
        self,
        goals: Sequence[ResearchGoal],
        completed_goal_ids: Collection[str] = (),
        identification_confidence: float = 0.0,
        identification_attempts: int = 0,
        current_phase: ResearchPhase | None = None,
    ) -> RouteDecision:
        """Choose the next step.

        *current_phase* is the phase the caller last recorded.  The router
        never moves backwards from it, so forced transitions (deadlock
        breaking, missing goals) stick.  When the caller tracks its phase,
        assembly is only entered through ``transition_to_assembly``.
        """
        determined = self.determine_phase(goals, completed_goal_ids)
        if current_phase is not None and determined is ResearchPhase.ASSEMBLY:
            determined = ResearchPhase.PARALLEL
        phase = later_phase(determined, current_phase)

        if phase is ResearchPhase.IDENTIFICATION:
            decision = self._route_identification(
                goals, completed_goal_ids, identification_confidence, identification_attempts
            )
            if decision is not None:
                return decision
            phase = ResearchPhase.PARALLEL

        if phase is ResearchPhase.PARALLEL:
            return self._route_parallel(goals, completed_goal_ids)

        if phase is ResearchPhase.ASSEMBLY:
            assemble = find_goal(goals, GoalType.ASSEMBLE_LISTING)
            if is_goal_completed(assemble, completed_goal_ids):
                logger.info("Router: assembly complete, persisting results")
                return RouteDecision(
                    ResearchPhase.DONE,
                    RouteTarget.PERSIST_RESULTS,
                    assemble.goal_id if assemble else None,
                    "Assembly complete",
                )
            return RouteDecision(
                ResearchPhase.ASSEMBLY,
                RouteTarget.EXECUTE_ASSEMBLY,
                assemble.goal_id if assemble else None,
                "Assembly pending",
            )

        return RouteDecision(ResearchPhase.DONE, RouteTarget.PERSIST_RESULTS, None, "Pipeline done")

    def _route_identification(
        self,
        goals: Sequence[ResearchGoal],
        completed_goal_ids: Collection[str],
        confidence: float,
        attempts: int,
    ) -> RouteDecision | None:
        identify = find_goal(goals, GoalType.IDENTIFY_PRODUCT)
        if identify is None or is_goal_completed(identify, completed_goal_ids):
            return None
        target = self.identification_phase_router(goals, confidence, attempts)
        reason = (
            f"confidence {confidence:.2f}, attempts {max(attempts, identify.attempts)}"
            f"/{identify.max_attempts}"
        )
        return RouteDecision(ResearchPhase.IDENTIFICATION, target, identify.goal_id, reason)

    def identification_phase_router(
        self,
        goals: Sequence[ResearchGoal],
        identification_confidence: float,
        identification_attempts: int = 0,
    ) -> RouteTarget:
        """Complete identification once confident enough or out of attempts."""
        identify = find_goal(goals, GoalType.IDENTIFY_PRODUCT)
        if identify is None:
            required = self._config.identification_required_confidence
            max_attempts = self._config.identification_max_attempts
            attempts = identification_attempts
        else:
            required = identify.required_confidence
            max_attempts = identify.max_attempts
            attempts = max(identification_attempts, identify.attempts)

        if identification_confidence >= required:
            logger.info(
                "Router: identification confidence %.2f >= %.2f, completing",
                identification_confidence,
                required,
            )
            return RouteTarget.COMPLETE_IDENTIFICATION_GOAL
        if attempts >= max_attempts:
            logger.warning(
                "Router: identification attempts exhausted (%d), continuing with best guess",
                max_attempts,
            )
            return RouteTarget.COMPLETE_IDENTIFICATION_GOAL
        return RouteTarget.EXECUTE_IDENTIFICATION

    def _route_parallel(
        self, goals: Sequence[ResearchGoal], completed_goal_ids: Collection[str]
    ) -> RouteDecision:
        metadata = find_goal(goals, GoalType.GATHER_METADATA)
        market = find_goal(goals, GoalType.RESEARCH_MARKET)
        metadata_done = metadata is None or is_goal_completed(metadata, completed_goal_ids)
        market_done = market is None or is_goal_completed(market, completed_goal_ids)

        if metadata_done and market_done:
            logger.info("Router: parallel goals complete, transitioning to assembly")
            return RouteDecision(
                ResearchPhase.PARALLEL,
                RouteTarget.TRANSITION_TO_ASSEMBLY,
                None,
                "Metadata and market research complete",
            )
        if metadata_done:
            return RouteDecision(
                ResearchPhase.PARALLEL,
                RouteTarget.EXECUTE_MARKET_RESEARCH,
                market.goal_id,
                "Market research outstanding",
            )
        if market_done:
            return RouteDecision(
                ResearchPhase.PARALLEL,
                RouteTarget.EXECUTE_GATHER_METADATA,
                metadata.goal_id,
                "Metadata outstanding",
            )

        ready = {g.goal_id for g in ready_goals(goals, completed_goal_ids)}
        if metadata.goal_id in ready:
            return RouteDecision(
                ResearchPhase.PARALLEL,
                RouteTarget.EXECUTE_GATHER_METADATA,
                metadata.goal_id,
                "Metadata first",
            )
        if market.goal_id in ready:
            return RouteDecision(
                ResearchPhase.PARALLEL,
                RouteTarget.EXECUTE_MARKET_RESEARCH,
                market.goal_id,
                "Market research ready",
            )
        logger.warning("Router: no ready goals in parallel phase, forcing assembly")
        return RouteDecision(
            ResearchPhase.PARALLEL,
            RouteTarget.TRANSITION_TO_ASSEMBLY,
            None,
            "No ready parallel goals; forcing assembly",
        )

    def parallel_phase_router(
        self, goals: Sequence[ResearchGoal], completed_goal_ids: Collection[str] = ()
    ) -> RouteTarget:
        """Metadata first, then market research, then assembly."""
        metadata = find_goal(goals, GoalType.GATHER_METADATA)
        market = find_goal(goals, GoalType.RESEARCH_MARKET)
        if metadata is not None and not is_goal_completed(metadata, completed_goal_ids):
            return RouteTarget.EXECUTE_GATHER_METADATA
        if market is not None and not is_goal_completed(market, completed_goal_ids):
            return RouteTarget.EXECUTE_MARKET_RESEARCH
        return RouteTarget.TRANSITION_TO_ASSEMBLY

    # -- completion steps ---------------------------------------------------

    def complete_goal(
        self,
        goals: Sequence[ResearchGoal],
        completed_goal_ids: Sequence[str],
        goal_type: GoalType,
        confidence: float,
        completed_at: float = 0.0,
        phase: ResearchPhase | None = None,
    ) -> GoalSetUpdate:
        """Mark the goal of *goal_type* completed with *confidence*.

        No-op (besides *phase*) when the goal is absent or already completed.
        """
        goal = find_goal(goals, goal_type)
        if goal is None:
            logger.warning("Router: no %s goal to complete", goal_type.value)
            return GoalSetUpdate(tuple(goals), tuple(completed_goal_ids), phase)
        if is_goal_completed(goal, completed_goal_ids):
            return GoalSetUpdate(tuple(goals), tuple(completed_goal_ids), phase)

        completed = goal.complete(confidence, completed_at)
        updated = tuple(completed if g.goal_id == goal.goal_id else g for g in goals)
        logger.info("Router: completed %s with confidence %.2f", goal_type.value, completed.confidence)
        return GoalSetUpdate(
            goals=updated,
            completed_goal_ids=(*completed_goal_ids, goal.goal_id),
            phase=phase,
            completed_goal=completed,
        )

    def complete_identification(
        self,
        goals: Sequence[ResearchGoal],
        completed_goal_ids: Sequence[str],
        identification_confidence: float,
        completed_at: float = 0.0,
    ) -> GoalSetUpdate:
        return self.complete_goal(
            goals,
            completed_goal_ids,
            GoalType.IDENTIFY_PRODUCT,
            identification_confidence,
            completed_at,
            phase=ResearchPhase.PARALLEL,
        )

    def complete_metadata(
        self,
        goals: Sequence[ResearchGoal],
        completed_goal_ids: Sequence[str],
        states: ItemFieldStates | None = None,
        completed_at: float = 0.0,
    ) -> GoalSetUpdate:
        confidence = metadata_completion_confidence(
            states, self._config.metadata_default_confidence
        )
        return self.complete_goal(
            goals, completed_goal_ids, GoalType.GATHER_METADATA, confidence, completed_at
        )

    def complete_market(
        self,
        goals: Sequence[ResearchGoal],
        completed_goal_ids: Sequence[str],
        comp_count: int = 0,
        completed_at: float = 0.0,
    ) -> GoalSetUpdate:
        confidence = market_completion_confidence(
            comp_count, self._config.market_tiers, self._config.market_floor_confidence
        )
        return self.complete_goal(
            goals, completed_goal_ids, GoalType.RESEARCH_MARKET, confidence, completed_at
        )

    def complete_assembly(
        self,
        goals: Sequence[ResearchGoal],
        completed_goal_ids: Sequence[str],
        has_listing: bool = False,
        completed_at: float = 0.0,
    ) -> GoalSetUpdate:
        confidence = assembly_completion_confidence(
            has_listing,
            self._config.assembly_listing_confidence,
            self._config.assembly_no_listing_confidence,
        )
        return self.complete_goal(
            goals,
            completed_goal_ids,
            GoalType.ASSEMBLE_LISTING,
            confidence,
            completed_at,
            phase=ResearchPhase.DONE,
        )

    def transition_to_assembly(
        self, goals: Sequence[ResearchGoal], completed_goal_ids: Sequence[str]
    ) -> GoalSetUpdate:
        """Enter the assembly phase and start the assembly goal if pending."""
        assemble = find_goal(goals, GoalType.ASSEMBLE_LISTING)
        updated = tuple(goals)
        if assemble is not None:
            updated = tuple(assemble.start() if g.goal_id == assemble.goal_id else g for g in goals)
        logger.info("Router: transitioning to assembly")
        return GoalSetUpdate(updated, tuple(completed_goal_ids), ResearchPhase.ASSEMBLY)

    def start_goal(
        self, goals: Sequence[ResearchGoal], goal_id: str | None
    ) -> tuple[ResearchGoal, ...]:
        """Mark *goal_id* in progress and count an attempt."""
        if goal_id is None:
            return tuple(goals)
        return tuple(g.start().record_attempt() if g.goal_id == goal_id else g for g in goals)

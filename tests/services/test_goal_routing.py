"""Tests for the goal-phase router and phase completion scoring."""

from __future__ import annotations

import pytest

from item_research.domain.aggregates import ItemFieldStates
from item_research.domain.entities import ResearchGoal
from item_research.domain.enums import GoalStatus, GoalType, ResearchPhase, RouteTarget
from item_research.services.goal_routing import (
    GoalRouter,
    assembly_completion_confidence,
    dependencies_satisfied,
    find_goal,
    later_phase,
    market_completion_confidence,
    metadata_completion_confidence,
    ready_goals,
    update_goal,
)


def _ids(goals: tuple[ResearchGoal, ...]) -> dict[GoalType, str]:
    return {g.goal_type: g.goal_id for g in goals}


def _complete(router: GoalRouter, goals, completed, goal_type: GoalType):  # type: ignore[no-untyped-def]
    update = router.complete_goal(goals, completed, goal_type, 0.9)
    return update.goals, update.completed_goal_ids


class TestDefaultGoals:

    def test_goal_dag(self, router: GoalRouter) -> None:
        goals = router.create_default_goals()
        ids = _ids(goals)
        assert [g.goal_type for g in goals] == list(GoalType)
        assert goals[0].dependencies == ()
        assert find_goal(goals, GoalType.GATHER_METADATA).dependencies == (ids[GoalType.IDENTIFY_PRODUCT],)  # type: ignore[union-attr]
        assert find_goal(goals, GoalType.ASSEMBLE_LISTING).dependencies == (  # type: ignore[union-attr]
            ids[GoalType.GATHER_METADATA],
            ids[GoalType.RESEARCH_MARKET],
        )
        assert goals[0].required_confidence == pytest.approx(0.85)

    def test_injected_ids(self, router: GoalRouter) -> None:
        assert [g.goal_id for g in router.create_default_goals()] == [
            "goal-1",
            "goal-2",
            "goal-3",
            "goal-4",
        ]


class TestGoalSetHelpers:

    def test_ready_goals_follow_dependencies(self, router: GoalRouter) -> None:
        goals = router.create_default_goals()
        assert [g.goal_type for g in ready_goals(goals)] == [GoalType.IDENTIFY_PRODUCT]
        goals, completed = _complete(router, goals, (), GoalType.IDENTIFY_PRODUCT)
        assert [g.goal_type for g in ready_goals(goals, completed)] == [
            GoalType.GATHER_METADATA,
            GoalType.RESEARCH_MARKET,
        ]

    def test_missing_dependency_is_satisfied(self) -> None:
        goal = ResearchGoal("g2", GoalType.GATHER_METADATA, dependencies=("ghost",))
        assert dependencies_satisfied(goal, [goal])

    def test_update_goal_leaves_completed_alone(self) -> None:
        done = ResearchGoal("g1", GoalType.IDENTIFY_PRODUCT).complete(0.9, 1.0)
        (result,) = update_goal([done], "g1", confidence=0.1)
        assert result.confidence == pytest.approx(0.9)

    def test_later_phase(self) -> None:
        assert later_phase(ResearchPhase.PARALLEL, ResearchPhase.IDENTIFICATION) is ResearchPhase.PARALLEL
        assert later_phase(ResearchPhase.PARALLEL, ResearchPhase.DONE) is ResearchPhase.DONE
        assert later_phase(ResearchPhase.ASSEMBLY, None) is ResearchPhase.ASSEMBLY


class TestIdentificationRouting:

    def test_low_confidence_keeps_identifying(self, router: GoalRouter) -> None:
        goals = router.create_default_goals()
        decision = router.route(goals, identification_confidence=0.5, identification_attempts=1)
        assert decision.phase is ResearchPhase.IDENTIFICATION
        assert decision.route is RouteTarget.EXECUTE_IDENTIFICATION
        assert decision.goal_id == "goal-1"

    @pytest.mark.parametrize(
        ("confidence", "attempts", "expected"),
        [
            (0.85, 0, RouteTarget.COMPLETE_IDENTIFICATION_GOAL),
            (0.84, 2, RouteTarget.EXECUTE_IDENTIFICATION),
            (0.10, 3, RouteTarget.COMPLETE_IDENTIFICATION_GOAL),
        ],
    )
    def test_threshold_and_attempts(
        self, router: GoalRouter, confidence: float, attempts: int, expected: RouteTarget
    ) -> None:
        goals = router.create_default_goals()
        assert router.identification_phase_router(goals, confidence, attempts) is expected

    def test_goal_attempts_count(self, router: GoalRouter) -> None:
        goals = router.create_default_goals()
        for _ in range(3):
            goals = router.start_goal(goals, "goal-1")
        assert goals[0].status is GoalStatus.IN_PROGRESS
        assert router.identification_phase_router(goals, 0.0, 0) is RouteTarget.COMPLETE_IDENTIFICATION_GOAL

    def test_missing_identify_goal_uses_config(self, router: GoalRouter) -> None:
        assert router.identification_phase_router((), 0.9) is RouteTarget.COMPLETE_IDENTIFICATION_GOAL
        assert router.identification_phase_router((), 0.5, 1) is RouteTarget.EXECUTE_IDENTIFICATION


class TestParallelRouting:

    def test_metadata_first(self, router: GoalRouter) -> None:
        goals, completed = _complete(router, router.create_default_goals(), (), GoalType.IDENTIFY_PRODUCT)
        decision = router.route(goals, completed)
        assert decision.phase is ResearchPhase.PARALLEL
        assert decision.route is RouteTarget.EXECUTE_GATHER_METADATA
        assert router.parallel_phase_router(goals, completed) is RouteTarget.EXECUTE_GATHER_METADATA

    def test_market_after_metadata(self, router: GoalRouter) -> None:
        goals, completed = _complete(router, router.create_default_goals(), (), GoalType.IDENTIFY_PRODUCT)
        goals, completed = _complete(router, goals, completed, GoalType.GATHER_METADATA)
        decision = router.route(goals, completed)
        assert decision.route is RouteTarget.EXECUTE_MARKET_RESEARCH
        assert decision.goal_id == "goal-3"

    def test_metadata_after_market(self, router: GoalRouter) -> None:
        goals, completed = _complete(router, router.create_default_goals(), (), GoalType.IDENTIFY_PRODUCT)
        goals, completed = _complete(router, goals, completed, GoalType.RESEARCH_MARKET)
        assert router.route(goals, completed).route is RouteTarget.EXECUTE_GATHER_METADATA

    def test_both_done_transitions(self, router: GoalRouter) -> None:
        goals, completed = _complete(router, router.create_default_goals(), (), GoalType.IDENTIFY_PRODUCT)
        goals, completed = _complete(router, goals, completed, GoalType.GATHER_METADATA)
        goals, completed = _complete(router, goals, completed, GoalType.RESEARCH_MARKET)
        decision = router.route(goals, completed, current_phase=ResearchPhase.PARALLEL)
        assert decision.route is RouteTarget.TRANSITION_TO_ASSEMBLY
        assert router.determine_phase(goals, completed) is ResearchPhase.ASSEMBLY

    def test_stateless_caller_jumps_to_assembly(self, router: GoalRouter) -> None:
        goals, completed = _complete(router, router.create_default_goals(), (), GoalType.IDENTIFY_PRODUCT)
        goals, completed = _complete(router, goals, completed, GoalType.GATHER_METADATA)
        goals, completed = _complete(router, goals, completed, GoalType.RESEARCH_MARKET)
        assert router.route(goals, completed).route is RouteTarget.EXECUTE_ASSEMBLY

    def test_deadlock_forces_assembly(self, router: GoalRouter) -> None:
        goals, completed = _complete(router, router.create_default_goals(), (), GoalType.IDENTIFY_PRODUCT)
        goals = router.start_goal(router.start_goal(goals, "goal-2"), "goal-3")
        decision = router.route(goals, completed)
        assert decision.route is RouteTarget.TRANSITION_TO_ASSEMBLY
        assert "forcing" in decision.reason

    def test_missing_parallel_goal_counts_as_done(self, router: GoalRouter) -> None:
        goals = router.create_default_goals()
        goals, completed = _complete(router, goals, (), GoalType.IDENTIFY_PRODUCT)
        without_market = tuple(g for g in goals if g.goal_type is not GoalType.RESEARCH_MARKET)
        assert router.route(without_market, completed).route is RouteTarget.EXECUTE_GATHER_METADATA

    def test_empty_goal_set_never_deadlocks(self, router: GoalRouter) -> None:
        assert router.route(()).route is RouteTarget.TRANSITION_TO_ASSEMBLY


class TestAssemblyRouting:

    def test_forced_phase_sticks(self, router: GoalRouter) -> None:
        goals, completed = _complete(router, router.create_default_goals(), (), GoalType.IDENTIFY_PRODUCT)
        update = router.transition_to_assembly(goals, completed)
        decision = router.route(update.goals, update.completed_goal_ids, current_phase=update.phase)
        assert decision.phase is ResearchPhase.ASSEMBLY
        assert decision.route is RouteTarget.EXECUTE_ASSEMBLY
        assert find_goal(update.goals, GoalType.ASSEMBLE_LISTING).status is GoalStatus.IN_PROGRESS  # type: ignore[union-attr]

    def test_assembly_done_persists(self, router: GoalRouter) -> None:
        goals = router.create_default_goals()
        completed: tuple[str, ...] = ()
        for goal_type in GoalType:
            goals, completed = _complete(router, goals, completed, goal_type)
        decision = router.route(goals, completed)
        assert decision.phase is ResearchPhase.DONE
        assert decision.route is RouteTarget.PERSIST_RESULTS

    def test_done_phase_persists(self, router: GoalRouter) -> None:
        decision = router.route(router.create_default_goals(), current_phase=ResearchPhase.DONE)
        assert decision.route is RouteTarget.PERSIST_RESULTS


class TestCompletionSteps:

    def test_complete_identification(self, router: GoalRouter) -> None:
        goals = router.create_default_goals()
        update = router.complete_identification(goals, (), 0.91, completed_at=42.0)
        assert update.changed
        assert update.phase is ResearchPhase.PARALLEL
        assert update.completed_goal_ids == ("goal-1",)
        assert update.completed_goal.confidence == pytest.approx(0.91)  # type: ignore[union-attr]
        assert update.completed_goal.completed_at == pytest.approx(42.0)  # type: ignore[union-attr]

    def test_completed_goal_is_immutable(self, router: GoalRouter) -> None:
        goals = router.create_default_goals()
        first = router.complete_identification(goals, (), 0.91)
        second = router.complete_identification(first.goals, first.completed_goal_ids, 0.2)
        assert not second.changed
        assert second.completed_goal_ids == ("goal-1",)
        assert second.goals[0].confidence == pytest.approx(0.91)

    def test_missing_goal_is_noop(self, router: GoalRouter) -> None:
        update = router.complete_market((), (), comp_count=12)
        assert not update.changed
        assert update.goals == ()

    def test_metadata_confidence_from_states(
        self, router: GoalRouter, brand_model_states: ItemFieldStates
    ) -> None:
        update = router.complete_metadata(router.create_default_goals(), (), brand_model_states)
        assert update.completed_goal.confidence == pytest.approx(2 / 5)  # type: ignore[union-attr]

    def test_assembly_moves_to_done(self, router: GoalRouter) -> None:
        update = router.complete_assembly(router.create_default_goals(), (), has_listing=True)
        assert update.phase is ResearchPhase.DONE
        assert update.completed_goal.confidence == pytest.approx(0.85)  # type: ignore[union-attr]


class TestCompletionScoring:

    def test_metadata_default(self) -> None:
        assert metadata_completion_confidence(None) == pytest.approx(0.5)

    def test_metadata_empty_snapshot(self) -> None:
        assert metadata_completion_confidence(ItemFieldStates()) == pytest.approx(0.0)

    @pytest.mark.parametrize(
        ("comps", "expected"),
        [(12, 0.90), (10, 0.90), (9, 0.75), (5, 0.75), (4, 0.60), (3, 0.60), (2, 0.30), (0, 0.30)],
    )
    def test_market_tiers(self, comps: int, expected: float) -> None:
        assert market_completion_confidence(comps) == pytest.approx(expected)

    def test_assembly(self) -> None:
        assert assembly_completion_confidence(True) == pytest.approx(0.85)
        assert assembly_completion_confidence(False) == pytest.approx(0.50)

"""
Unit tests for hierarchical planning: generation, status machine,
completion propagation and re-planning triggers.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock

from mazemind.agent.planning import (
    ActionType,
    PlanPriority,
    PlanStatus,
    PlanningContext,
    PlanningSystem,
)
from mazemind.agent.planning.plans import transition
from mazemind.agent.planning.prompts import (
    format_sim_time,
    parse_action_plan_response,
    parse_daily_plan_response,
)
from mazemind.errors import MalformedResponseError
from mazemind.world import Item, Position, SurvivalState

START = 1_000_000.0


def make_context(sim_time: float = START, position=(2, 2), items=None, exploration: float = 0.0, **levels):
    survival = SurvivalState(**{"hunger": 80, "thirst": 80, "energy": 80, "stress": 0, **levels})
    return PlanningContext(
        survival=survival,
        position=Position(*position),
        sim_time=sim_time,
        exploration_progress=exploration,
        known_items=list(items or []),
        exit_position=Position(8, 2),
    )


async def planned(planner: PlanningSystem, context: PlanningContext):
    await planner.decompose_initial_plans(context)
    return planner.get_current_daily_plan()


class TestHeuristicGeneration:

    @pytest.mark.asyncio
    async def test_goal_priority_order(self):
        planner = PlanningSystem()

        hungry = await planner.generate_daily_plan(make_context(hunger=25))
        thirsty = await planner.generate_daily_plan(make_context(thirst=25))
        tired = await planner.generate_daily_plan(make_context(energy=25))
        fresh = await planner.generate_daily_plan(make_context(exploration=0.2))
        mapped = await planner.generate_daily_plan(make_context(exploration=0.8))

        assert "food" in hungry.goal.lower()
        assert "water" in thirsty.goal.lower()
        assert "energy" in tired.goal.lower()
        assert "explore" in fresh.goal.lower()
        assert "exit" in mapped.goal.lower()

    @pytest.mark.asyncio
    async def test_priority_from_thresholds(self):
        planner = PlanningSystem()

        assert planner.determine_priority(make_context(hunger=10)) == PlanPriority.CRITICAL
        assert planner.determine_priority(make_context(thirst=35)) == PlanPriority.HIGH
        assert planner.determine_priority(make_context(exploration=0.1)) == PlanPriority.MEDIUM

    @pytest.mark.asyncio
    async def test_decomposition_shape(self):
        planner = PlanningSystem(hourly_plan_count=3, action_duration=300)

        plan = await planned(planner, make_context())

        assert len(plan.hourly_plans) == 3
        assert [h.start_time for h in plan.hourly_plans] == [START, START + 3600, START + 7200]
        assert len(plan.hourly_plans[0].actions) == 12
        assert plan.hourly_plans[1].actions == []
        assert plan.status == PlanStatus.IN_PROGRESS
        assert plan.hourly_plans[0].status == PlanStatus.IN_PROGRESS
        assert plan.hourly_plans[0].actions[0].status == PlanStatus.IN_PROGRESS
        assert plan.hourly_plans[0].actions[1].status == PlanStatus.PENDING

    @pytest.mark.asyncio
    async def test_seek_actions_carry_item_targets(self):
        planner = PlanningSystem()
        food = Item("food", Position(4, 2))

        plan = await planned(planner, make_context(hunger=25, items=[food]))
        action = plan.hourly_plans[0].actions[0]

        assert action.action_type == ActionType.SEEK_ITEM
        assert action.target_item == "food"
        assert action.target_position == Position(4, 2)

    @pytest.mark.asyncio
    async def test_plan_stored_in_memory(self, stream):
        planner = PlanningSystem(memory_stream=stream)

        plan = await planner.generate_daily_plan(make_context(hunger=10))
        record = stream.get_by_id(plan.memory_id)

        assert record.memory_type == "plan"
        assert record.importance == 7
        assert record.tags == ["daily_plan", "critical", "plan"]

    @pytest.mark.asyncio
    async def test_lazy_hour_decomposition(self):
        planner = PlanningSystem()
        await planned(planner, make_context())

        hourly = await planner.prepare_current_hour(make_context(sim_time=START + 3600))

        assert len(hourly.actions) == 12
        assert hourly.status == PlanStatus.IN_PROGRESS


class TestModelGeneration:

    @pytest.mark.asyncio
    async def test_model_responses_parsed(self):
        llm = MagicMock()
        llm.is_available.return_value = True
        llm.generate = AsyncMock(side_effect=[
            "GOAL: Drink from the fountain in the east wing\nREASONING: Thirst is dropping.\nPRIORITY: HIGH",
            "OBJECTIVE: Walk east along the main corridor",
            "ACTION: Seek water near the fountain\nTYPE: SEEK_ITEM",
        ])
        planner = PlanningSystem(llm=llm, hourly_plan_count=1, action_duration=3600)

        plan = await planned(planner, make_context(items=[Item("water", Position(6, 2))]))

        assert plan.goal == "Drink from the fountain in the east wing"
        assert plan.reasoning == "Thirst is dropping."
        assert plan.priority == PlanPriority.HIGH
        assert plan.hourly_plans[0].objective == "Walk east along the main corridor"
        action = plan.hourly_plans[0].actions[0]
        assert action.action_type == ActionType.SEEK_ITEM
        assert action.target_item == "water"
        assert action.target_position == Position(6, 2)

    @pytest.mark.asyncio
    async def test_model_failure_uses_heuristic(self):
        llm = MagicMock()
        llm.is_available.return_value = True
        llm.generate = AsyncMock(side_effect=RuntimeError("rate limited"))
        planner = PlanningSystem(llm=llm)

        plan = await planner.generate_daily_plan(make_context(thirst=25))

        assert plan.goal == "Locate water to restore hydration"

    def test_parsers(self):
        goal, reasoning, priority = parse_daily_plan_response("GOAL: Map the north\nPRIORITY: urgent")
        assert (goal, reasoning, priority) == ("Map the north", "", PlanPriority.MEDIUM)

        with pytest.raises(MalformedResponseError):
            parse_daily_plan_response("I think we should explore")

        assert parse_action_plan_response("ACTION: Look around\nTYPE: DANCE") == (
            "Look around", ActionType.EXPLORE
        )
        assert format_sim_time(3725) == "01:02:05"


class TestStatusMachine:

    @pytest.mark.asyncio
    async def test_terminal_states_are_final(self):
        planner = PlanningSystem()
        plan = await planned(planner, make_context())
        action = plan.hourly_plans[0].actions[1]

        assert transition(action, PlanStatus.COMPLETED) is True
        assert transition(action, PlanStatus.IN_PROGRESS) is False
        assert transition(action, PlanStatus.FAILED) is False
        assert action.status == PlanStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_no_return_to_pending(self):
        planner = PlanningSystem()
        plan = await planned(planner, make_context())
        action = plan.hourly_plans[0].actions[0]

        assert transition(action, PlanStatus.PENDING) is False
        assert action.status == PlanStatus.IN_PROGRESS

    @pytest.mark.asyncio
    async def test_completion_propagates_to_daily_plan(self):
        planner = PlanningSystem(hourly_plan_count=2, action_duration=1800)
        plan = await planned(planner, make_context())
        await planner.prepare_current_hour(make_context(sim_time=START + 3600))

        for hourly in plan.hourly_plans:
            for action in hourly.actions:
                assert planner.complete_action(action.id, START + 10) is True

        assert all(h.status == PlanStatus.COMPLETED for h in plan.hourly_plans)
        assert plan.status == PlanStatus.COMPLETED
        assert plan.completed_at == START + 10

    @pytest.mark.asyncio
    async def test_partial_completion_keeps_hour_open(self):
        planner = PlanningSystem(hourly_plan_count=1, action_duration=1800)
        plan = await planned(planner, make_context())
        first = plan.hourly_plans[0].actions[0]

        planner.complete_action(first.id)

        assert plan.hourly_plans[0].status == PlanStatus.IN_PROGRESS
        assert plan.status == PlanStatus.IN_PROGRESS

    def test_unknown_action_ids(self):
        planner = PlanningSystem()

        assert planner.complete_action("missing") is False
        assert planner.fail_action("missing", "gone") is False
        assert planner.start_action("missing") is False

    @pytest.mark.asyncio
    async def test_current_action_by_time(self):
        planner = PlanningSystem()
        plan = await planned(planner, make_context())
        actions = plan.hourly_plans[0].actions

        assert planner.get_current_action(START + 10) is actions[0]
        assert planner.get_current_action(START + 301) is actions[1]

        planner.fail_action(actions[1].id, "blocked")
        assert planner.get_current_action(START + 301) is None
        assert actions[1].failure_reason == "blocked"


class TestReplanTriggers:

    @pytest.mark.asyncio
    async def test_critical_resource(self):
        planner = PlanningSystem()
        await planned(planner, make_context())

        assert planner.monitor_for_replanning(make_context(thirst=14)) == "Critical thirst level detected"
        assert planner.monitor_for_replanning(make_context(thirst=15)) is None

    @pytest.mark.asyncio
    async def test_item_cluster_while_exploring(self):
        planner = PlanningSystem()
        plan = await planned(planner, make_context(exploration=0.1))
        assert "explor" in plan.goal.lower()
        items = [Item("food", Position(3, 2)), Item("water", Position(2, 4)), Item("energy", Position(5, 3))]

        reason = planner.monitor_for_replanning(make_context(items=items, exploration=0.1))

        assert reason == "Multiple items discovered, should gather before continuing exploration"

    @pytest.mark.asyncio
    async def test_no_plan_and_completed_plan(self):
        planner = PlanningSystem(hourly_plan_count=1, action_duration=3600)
        assert planner.monitor_for_replanning(make_context()) == "No active plan"

        plan = await planned(planner, make_context())
        planner.complete_action(plan.hourly_plans[0].actions[0].id)

        assert planner.monitor_for_replanning(make_context()) == "Daily plan completed"

    @pytest.mark.asyncio
    async def test_stuck_action_boundary(self):
        planner = PlanningSystem(action_duration=300, stuck_multiplier=3)
        plan = await planned(planner, make_context())
        action = plan.hourly_plans[0].actions[0]
        assert action.status == PlanStatus.IN_PROGRESS

        assert planner.has_significant_divergence(make_context(sim_time=action.start_time + 900)) is False
        assert planner.has_significant_divergence(make_context(sim_time=action.start_time + 901)) is True

    @pytest.mark.asyncio
    async def test_pending_action_is_never_stuck(self):
        planner = PlanningSystem(action_duration=300)
        plan = await planned(planner, make_context())
        action = plan.hourly_plans[0].actions[0]
        action.status = PlanStatus.PENDING

        assert planner.has_significant_divergence(make_context(sim_time=START + 10_000)) is False

    @pytest.mark.asyncio
    async def test_moving_away_from_target(self):
        planner = PlanningSystem(divergence_threshold=1.5)
        food = Item("food", Position(6, 2))
        await planned(planner, make_context(hunger=25, items=[food]))

        # distance 4, then 5 (within 4 * 1.5), then 8 (past 5 * 1.5)
        assert planner.has_significant_divergence(make_context(position=(2, 2), items=[food])) is False
        assert planner.has_significant_divergence(make_context(position=(1, 2), items=[food])) is False
        assert planner.has_significant_divergence(make_context(position=(0, 0), items=[food])) is True

    @pytest.mark.asyncio
    async def test_consume_without_item_in_reach(self):
        planner = PlanningSystem()
        plan = await planned(planner, make_context())
        action = plan.hourly_plans[0].actions[0]
        action.action_type = ActionType.CONSUME_ITEM
        action.target_position = None

        far = [Item("food", Position(9, 5))]
        near = [Item("food", Position(3, 3))]

        assert planner.has_significant_divergence(make_context(items=far)) is True
        assert planner.has_significant_divergence(make_context(items=near)) is False


class TestReplan:

    @pytest.mark.asyncio
    async def test_replan_abandons_and_restarts(self):
        planner = PlanningSystem()
        old = await planned(planner, make_context())

        replaced = await planner.replan("Critical hunger level detected", make_context(hunger=10, sim_time=START + 60))
        new = planner.get_current_daily_plan()

        assert replaced is True
        assert new is not old
        assert old.status == PlanStatus.ABANDONED
        assert old.abandoned_reason == "Critical hunger level detected"
        assert all(a.status == PlanStatus.ABANDONED for a in old.hourly_plans[0].actions)
        assert "food" in new.goal.lower()
        assert new.status == PlanStatus.IN_PROGRESS
        assert len(new.hourly_plans[0].actions) == 12
        assert new.hourly_plans[1].actions == []
        assert new.hourly_plans[0].actions[0].status == PlanStatus.IN_PROGRESS
        assert planner.replan_count == 1

    @pytest.mark.asyncio
    async def test_failed_regeneration_keeps_previous_plan(self):
        planner = PlanningSystem()
        old = await planned(planner, make_context())
        planner._create_daily_plan = AsyncMock(side_effect=RuntimeError("boom"))

        replaced = await planner.replan("Plan execution significantly diverged from expected", make_context())

        assert replaced is False
        assert planner.get_current_daily_plan() is old
        assert old.status == PlanStatus.IN_PROGRESS
        assert planner.replan_count == 0

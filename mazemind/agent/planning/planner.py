"""
PlanningSystem - hierarchical planning (Generative Agents)

Three levels:
1. Daily plan - one high-level goal
2. Hourly plans - an objective per simulated hour (next `hourly_plan_count` hours)
3. Action plans - concrete actions of `action_duration` seconds

Every generation step tries the language model first and falls back to a
deterministic heuristic on any failure.
"""

from typing import Any, Dict, List, Optional, Tuple
import uuid

from loguru import logger

from .plans import (
    HOUR_DURATION,
    ActionPlan,
    ActionType,
    DailyPlan,
    HourlyPlan,
    PlanPriority,
    PlanStatus,
    PlanningContext,
    transition,
)
from .prompts import (
    build_action_plan_prompt,
    build_daily_plan_prompt,
    build_hourly_plan_prompt,
    parse_action_plan_response,
    parse_daily_plan_response,
    parse_hourly_plan_response,
)
from mazemind.agent.memory.memory_stream import MemoryStream
from mazemind.providers.base import GenerateOptions, LLMProvider
from mazemind.providers.fallback import generate_or_fallback
from mazemind.world import Item

TAG = __name__

# heuristic goal keywords -> item kind sought
GOAL_ITEM_KEYWORDS = (
    ("food", "food"),
    ("water", "water"),
    ("energy", "energy"),
)


class PlanningSystem:
    """planning system - owns the current plan hierarchy of one character"""

    def __init__(
        self,
        memory_stream: Optional[MemoryStream] = None,
        llm: Optional[LLMProvider] = None,
        hourly_plan_count: int = 3,
        action_duration: float = 300,
        planning_temperature: float = 0.7,
        planning_max_tokens: int = 300,
        critical_hunger_threshold: float = 20,
        critical_thirst_threshold: float = 15,
        critical_energy_threshold: float = 10,
        low_resource_threshold: float = 30,
        nearby_item_radius: int = 5,
        nearby_item_count: int = 3,
        consume_item_radius: int = 2,
        divergence_threshold: float = 1.5,
        stuck_multiplier: float = 3,
    ):
        """
        Args:
            memory_stream: daily plans are stored here as plan memories (optional)
            llm: language model provider (optional)
            hourly_plan_count: hours planned ahead per daily plan
            action_duration: seconds per action plan
            planning_temperature: sampling temperature for plan prompts
            planning_max_tokens: token budget for the daily plan prompt
            critical_*_threshold: resource levels that force a re-plan
            low_resource_threshold: heuristic goals switch to a resource below this level
            nearby_item_radius: Manhattan radius of the item-cluster trigger
            nearby_item_count: items within the radius that trigger a re-plan
            consume_item_radius: a consume action needs an item this close
            divergence_threshold: re-plan when distance to target grows past last_distance * this
            stuck_multiplier: re-plan when an action runs longer than duration * this
        """
        self.memory_stream = memory_stream
        self.llm = llm
        self.hourly_plan_count = hourly_plan_count
        self.action_duration = action_duration
        self.planning_temperature = planning_temperature
        self.planning_max_tokens = planning_max_tokens
        self.critical_thresholds = {
            "hunger": critical_hunger_threshold,
            "thirst": critical_thirst_threshold,
            "energy": critical_energy_threshold,
        }
        self.low_resource_threshold = low_resource_threshold
        self.nearby_item_radius = nearby_item_radius
        self.nearby_item_count = nearby_item_count
        self.consume_item_radius = consume_item_radius
        self.divergence_threshold = divergence_threshold
        self.stuck_multiplier = stuck_multiplier

        # current plan hierarchy
        self.current_daily_plan: Optional[DailyPlan] = None
        self.current_hourly_plan: Optional[HourlyPlan] = None
        self.current_action_plan: Optional[ActionPlan] = None

        # divergence tracking
        self._last_distance_to_target: float = 0
        self._distance_action_id: Optional[str] = None

        self.plans_generated = 0
        self.replan_count = 0
        self.replan_history: List[Tuple[float, str]] = []

        logger.bind(tag=TAG).info(
            f"PlanningSystem initialized: hours={hourly_plan_count}, action_duration={action_duration}s, "
            f"divergence={divergence_threshold}, stuck_multiplier={stuck_multiplier}"
        )

    # ------------------------------------------------------------------
    # daily plans
    # ------------------------------------------------------------------

    async def generate_daily_plan(self, context: PlanningContext) -> DailyPlan:
        """Generate a daily plan and make it the current one"""
        plan = await self._create_daily_plan(context)
        self._activate(plan)
        return plan

    async def _create_daily_plan(self, context: PlanningContext) -> DailyPlan:
        async def from_llm() -> DailyPlan:
            response = await self.llm.generate(
                build_daily_plan_prompt(context),
                GenerateOptions(temperature=self.planning_temperature, max_tokens=self.planning_max_tokens),
            )
            goal, reasoning, priority = parse_daily_plan_response(response)
            return self._new_daily_plan(goal, reasoning, priority, context)

        plan = await generate_or_fallback(
            from_llm,
            lambda: self.generate_fallback_daily_plan(context),
            label="daily plan",
            available=self._llm_available(),
        )
        self.plans_generated += 1
        logger.bind(tag=TAG).info(f"Daily plan [{plan.priority.value}]: {plan.goal}")
        return plan

    def _new_daily_plan(
        self, goal: str, reasoning: str, priority: PlanPriority, context: PlanningContext
    ) -> DailyPlan:
        return DailyPlan(
            id=uuid.uuid4().hex,
            created_at=context.sim_time,
            goal=goal,
            reasoning=reasoning,
            priority=priority,
        )

    def generate_fallback_daily_plan(self, context: PlanningContext) -> DailyPlan:
        goal, reasoning = self._heuristic_goal(context)
        return self._new_daily_plan(goal, reasoning, self.determine_priority(context), context)

    def _heuristic_goal(self, context: PlanningContext) -> Tuple[str, str]:
        survival = context.survival
        low = self.low_resource_threshold
        if survival.hunger < low:
            return (
                "Find food sources to restore hunger levels",
                "Hunger is approaching critical levels. Must prioritize food finding before continuing exploration.",
            )
        if survival.thirst < low:
            return (
                "Locate water to restore hydration",
                "Thirst is becoming dangerous. Water must be the immediate priority.",
            )
        if survival.energy < low:
            return (
                "Find energy-restoring items and rest",
                "Energy is running low. Recovering strength comes before covering more ground.",
            )
        if context.exploration_progress < 0.5:
            return (
                "Systematically explore the maze to map unexplored corridors",
                "Less than half of the maze is mapped. Exploring methodically is the best way to find the exit.",
            )
        return (
            "Search for the maze exit in unexplored areas",
            "Survival resources are stable. Time to focus on finding the exit.",
        )

    def determine_priority(self, context: PlanningContext) -> PlanPriority:
        survival = context.survival
        if self.critical_need(context) is not None:
            return PlanPriority.CRITICAL
        if survival.hunger < 40 or survival.thirst < 40:
            return PlanPriority.HIGH
        if context.exploration_progress < 0.3:
            return PlanPriority.MEDIUM
        return PlanPriority.HIGH

    def critical_need(self, context: PlanningContext) -> Optional[str]:
        """first resource (hunger, thirst, energy) below its critical threshold"""
        levels = {
            "hunger": context.survival.hunger,
            "thirst": context.survival.thirst,
            "energy": context.survival.energy,
        }
        for need, threshold in self.critical_thresholds.items():
            if levels[need] < threshold:
                return need
        return None

    # ------------------------------------------------------------------
    # hourly plans
    # ------------------------------------------------------------------

    async def decompose_into_hourly_plans(self, daily_plan: DailyPlan, context: PlanningContext):
        """plan the next `hourly_plan_count` hours"""
        for hour in range(self.hourly_plan_count):
            hourly = await self.generate_hourly_plan(daily_plan, hour, context)
            daily_plan.hourly_plans.append(hourly)
        logger.bind(tag=TAG).debug(f"Decomposed daily plan into {len(daily_plan.hourly_plans)} hours")

    async def generate_hourly_plan(
        self, daily_plan: DailyPlan, hour: int, context: PlanningContext
    ) -> HourlyPlan:
        async def from_llm() -> str:
            response = await self.llm.generate(
                build_hourly_plan_prompt(daily_plan.goal, hour, context),
                GenerateOptions(temperature=self.planning_temperature, max_tokens=200),
            )
            return parse_hourly_plan_response(response)

        objective = await generate_or_fallback(
            from_llm,
            lambda: self._heuristic_objective(daily_plan, hour),
            label="hourly plan",
            available=self._llm_available(),
        )
        return HourlyPlan(
            id=uuid.uuid4().hex,
            parent_id=daily_plan.id,
            start_time=context.sim_time + hour * HOUR_DURATION,
            objective=objective,
        )

    @staticmethod
    def _heuristic_objective(daily_plan: DailyPlan, hour: int) -> str:
        goal = daily_plan.goal.lower()
        if "food" in goal:
            return f"Search corridors for food items (Hour {hour + 1})"
        if "water" in goal or "hydration" in goal:
            return f"Search for water sources (Hour {hour + 1})"
        if "energy" in goal or "rest" in goal:
            return f"Find energy items and rest (Hour {hour + 1})"
        if "explor" in goal:
            return f"Map unexplored corridors and check for items (Hour {hour + 1})"
        return f"Continue exploration toward the exit (Hour {hour + 1})"

    # ------------------------------------------------------------------
    # action plans
    # ------------------------------------------------------------------

    async def decompose_into_actions(
        self, hourly_plan: HourlyPlan, context: PlanningContext, daily_goal: Optional[str] = None
    ):
        """split an hour into `duration // action_duration` actions"""
        count = int(hourly_plan.duration // self.action_duration)
        for index in range(count):
            action = await self.generate_action_plan(hourly_plan, index, context, daily_goal)
            hourly_plan.actions.append(action)
        logger.bind(tag=TAG).debug(f"Decomposed hour '{hourly_plan.objective[:40]}' into {count} actions")

    async def generate_action_plan(
        self,
        hourly_plan: HourlyPlan,
        index: int,
        context: PlanningContext,
        daily_goal: Optional[str] = None,
    ) -> ActionPlan:
        start_time = hourly_plan.start_time + index * self.action_duration
        end_time = start_time + self.action_duration
        if daily_goal is None:
            daily_goal = self.current_daily_plan.goal if self.current_daily_plan else hourly_plan.objective

        async def from_llm() -> ActionPlan:
            response = await self.llm.generate(
                build_action_plan_prompt(hourly_plan.objective, daily_goal, context, start_time, end_time),
                GenerateOptions(temperature=self.planning_temperature, max_tokens=150),
            )
            description, action_type = parse_action_plan_response(response)
            action = self._new_action(hourly_plan, start_time, description, action_type)
            self._attach_targets(action, description, context)
            return action

        return await generate_or_fallback(
            from_llm,
            lambda: self._heuristic_action(hourly_plan, index, start_time, context),
            label="action plan",
            available=self._llm_available(),
        )

    def _new_action(
        self, hourly_plan: HourlyPlan, start_time: float, description: str, action_type: ActionType
    ) -> ActionPlan:
        return ActionPlan(
            id=uuid.uuid4().hex,
            parent_id=hourly_plan.id,
            start_time=start_time,
            duration=self.action_duration,
            action=description,
            action_type=action_type,
        )

    def _heuristic_action(
        self, hourly_plan: HourlyPlan, index: int, start_time: float, context: PlanningContext
    ) -> ActionPlan:
        objective = hourly_plan.objective.lower()
        item_kind = self._item_kind_for(objective)

        if item_kind is not None:
            description = f"Search corridor segment {index + 1} for {item_kind}"
            action_type = ActionType.SEEK_ITEM
        elif "rest" in objective or "sleep" in objective:
            description = f"Rest and recover (segment {index + 1})"
            action_type = ActionType.REST
        elif "reflect" in objective:
            description = "Reflect on recent experiences"
            action_type = ActionType.REFLECT
        elif "exit" in objective and context.exit_position is not None:
            description = f"Head toward the exit (segment {index + 1})"
            action_type = ActionType.MOVE
        else:
            description = f"Explore and map corridor section {index + 1}"
            action_type = ActionType.EXPLORE

        action = self._new_action(hourly_plan, start_time, description, action_type)
        self._attach_targets(action, objective, context)
        return action

    def _attach_targets(self, action: ActionPlan, text: str, context: PlanningContext):
        """target item / position for seek, consume and move actions"""
        if action.action_type in (ActionType.SEEK_ITEM, ActionType.CONSUME_ITEM):
            action.target_item = self._item_kind_for(text.lower())
            if action.target_item is not None:
                item = self._nearest_known_item(action.target_item, context)
                if item is not None:
                    action.target_position = item.position
        elif action.action_type == ActionType.MOVE and context.exit_position is not None:
            action.target_position = context.exit_position

    @staticmethod
    def _item_kind_for(text: str) -> Optional[str]:
        for keyword, kind in GOAL_ITEM_KEYWORDS:
            if keyword in text:
                return kind
        if "hydration" in text or "thirst" in text:
            return "water"
        if "hunger" in text:
            return "food"
        return None

    @staticmethod
    def _nearest_known_item(kind: str, context: PlanningContext) -> Optional[Item]:
        candidates = [i for i in context.known_items if i.kind == kind and not i.claimed]
        if not candidates:
            return None
        return min(candidates, key=lambda i: i.position.manhattan(context.position))

    # ------------------------------------------------------------------
    # whole-plan operations
    # ------------------------------------------------------------------

    async def decompose_initial_plans(self, context: PlanningContext) -> Optional[DailyPlan]:
        """
        Fill in the current daily plan: hours, first-hour actions, and mark
        the first hour and its first action in progress. Creates a daily
        plan first when none exists.
        """
        if self.current_daily_plan is None:
            await self.generate_daily_plan(context)

        plan = self.current_daily_plan
        if not plan.hourly_plans:
            await self.decompose_into_hourly_plans(plan, context)
        await self._start_plan(plan, context)
        return plan

    async def _start_plan(self, plan: DailyPlan, context: PlanningContext):
        if plan.hourly_plans:
            first_hour = plan.hourly_plans[0]
            if not first_hour.actions:
                await self.decompose_into_actions(first_hour, context, plan.goal)
            self.current_hourly_plan = first_hour
            transition(first_hour, PlanStatus.IN_PROGRESS)
            if first_hour.actions:
                self.current_action_plan = first_hour.actions[0]
                transition(first_hour.actions[0], PlanStatus.IN_PROGRESS)
        transition(plan, PlanStatus.IN_PROGRESS)

    async def prepare_current_hour(self, context: PlanningContext) -> Optional[HourlyPlan]:
        """Decompose the hour covering sim_time if it has no actions yet"""
        hourly = self._find_active_hourly_plan(context.sim_time)
        if hourly is None or hourly.actions or hourly.status.is_terminal:
            return hourly
        await self.decompose_into_actions(hourly, context)
        transition(hourly, PlanStatus.IN_PROGRESS)
        return hourly

    async def replan(self, reason: str, context: PlanningContext) -> bool:
        """
        Abandon the current daily plan and build a fresh one

        Only the first hour is decomposed into actions. When building the new
        plan fails the previous plan is kept untouched.

        Returns:
            whether a new plan replaced the old one
        """
        logger.bind(tag=TAG).info(f"Re-planning: {reason}")
        try:
            plan = await self._create_daily_plan(context)
            await self.decompose_into_hourly_plans(plan, context)
            if plan.hourly_plans:
                await self.decompose_into_actions(plan.hourly_plans[0], context, plan.goal)
        except Exception as e:
            logger.bind(tag=TAG).error(f"Re-planning failed, keeping previous plan: {e}")
            return False

        old = self.current_daily_plan
        if old is not None and old.is_active:
            self._abandon(old, reason)

        self._activate(plan)
        await self._start_plan(plan, context)

        self.replan_count += 1
        self.replan_history.append((context.sim_time, reason))
        return True

    def _abandon(self, plan: DailyPlan, reason: str):
        for hourly in plan.hourly_plans:
            for action in hourly.actions:
                if not action.status.is_terminal:
                    transition(action, PlanStatus.ABANDONED)
            if not hourly.status.is_terminal:
                transition(hourly, PlanStatus.ABANDONED)
        transition(plan, PlanStatus.ABANDONED)
        plan.abandoned_reason = reason
        logger.bind(tag=TAG).info(f"Abandoned plan '{plan.goal}': {reason}")

    def _activate(self, plan: DailyPlan):
        self.current_daily_plan = plan
        self.current_hourly_plan = None
        self.current_action_plan = None
        self._last_distance_to_target = 0
        self._distance_action_id = None
        self._store_plan_in_memory(plan)

    def _store_plan_in_memory(self, plan: DailyPlan):
        if self.memory_stream is None:
            return
        importance = 7 if plan.priority in (PlanPriority.CRITICAL, PlanPriority.HIGH) else 5
        record = self.memory_stream.add_plan(
            f"Daily plan: {plan.goal}. {plan.reasoning}".strip(),
            importance,
            tags=["daily_plan", plan.priority.value],
        )
        plan.memory_id = record.id

    # ------------------------------------------------------------------
    # plan retrieval
    # ------------------------------------------------------------------

    def get_current_action(self, sim_time: float) -> Optional[ActionPlan]:
        """the non-terminal action scheduled at sim_time"""
        if self.current_daily_plan is None or not self.current_daily_plan.is_active:
            return None

        hourly = self._find_active_hourly_plan(sim_time)
        if hourly is None:
            return None

        for action in hourly.actions:
            if action.start_time <= sim_time < action.end_time:
                if action.status.is_terminal:
                    return None
                self.current_action_plan = action
                return action
        return None

    def _find_active_hourly_plan(self, sim_time: float) -> Optional[HourlyPlan]:
        if self.current_daily_plan is None:
            return None
        for hourly in self.current_daily_plan.hourly_plans:
            if hourly.start_time <= sim_time < hourly.end_time:
                self.current_hourly_plan = hourly
                return hourly
        return None

    def find_action(self, action_id: str) -> Optional[Tuple[HourlyPlan, ActionPlan]]:
        if self.current_daily_plan is None:
            return None
        for hourly in self.current_daily_plan.hourly_plans:
            for action in hourly.actions:
                if action.id == action_id:
                    return hourly, action
        return None

    # ------------------------------------------------------------------
    # plan completion
    # ------------------------------------------------------------------

    def start_action(self, action_id: str) -> bool:
        found = self.find_action(action_id)
        if found is None:
            logger.bind(tag=TAG).warning(f"start_action: unknown action {action_id}")
            return False
        hourly, action = found
        changed = transition(action, PlanStatus.IN_PROGRESS)
        if changed:
            transition(hourly, PlanStatus.IN_PROGRESS)
            self.current_action_plan = action
        return changed

    def complete_action(self, action_id: str, now: Optional[float] = None) -> bool:
        """
        Mark an action completed; parents complete once all their children have

        Returns:
            whether the action changed state
        """
        found = self.find_action(action_id)
        if found is None:
            logger.bind(tag=TAG).warning(f"complete_action: unknown action {action_id}")
            return False

        hourly, action = found
        if not transition(action, PlanStatus.COMPLETED, now):
            return False

        logger.bind(tag=TAG).debug(f"Completed action: {action.action}")
        self._check_hourly_completion(hourly, now)
        return True

    def fail_action(self, action_id: str, reason: str = "") -> bool:
        found = self.find_action(action_id)
        if found is None:
            logger.bind(tag=TAG).warning(f"fail_action: unknown action {action_id}")
            return False
        _, action = found
        if not transition(action, PlanStatus.FAILED):
            return False
        action.failure_reason = reason or None
        logger.bind(tag=TAG).info(f"Action failed: {action.action} ({reason})")
        return True

    def _check_hourly_completion(self, hourly: HourlyPlan, now: Optional[float]):
        if hourly.actions and all(a.status == PlanStatus.COMPLETED for a in hourly.actions):
            if transition(hourly, PlanStatus.COMPLETED, now):
                logger.bind(tag=TAG).info(f"Hourly plan completed: {hourly.objective}")
                self._check_daily_completion(now)

    def _check_daily_completion(self, now: Optional[float]):
        plan = self.current_daily_plan
        if plan is None or not plan.hourly_plans:
            return
        if all(h.status == PlanStatus.COMPLETED for h in plan.hourly_plans):
            if transition(plan, PlanStatus.COMPLETED, now):
                logger.bind(tag=TAG).info(f"Daily plan completed: {plan.goal}")

    # ------------------------------------------------------------------
    # re-planning
    # ------------------------------------------------------------------

    def monitor_for_replanning(self, context: PlanningContext) -> Optional[str]:
        """
        Check the re-plan triggers, first match wins

        Returns:
            the reason, or None when the current plan should continue
        """
        need = self.critical_need(context)
        if need is not None:
            return f"Critical {need} level detected"

        plan = self.current_daily_plan
        nearby = [
            item for item in context.known_items
            if not item.claimed and item.position.manhattan(context.position) <= self.nearby_item_radius
        ]
        if (
            len(nearby) >= self.nearby_item_count
            and plan is not None
            and "explor" in plan.goal.lower()
        ):
            return "Multiple items discovered, should gather before continuing exploration"

        if plan is not None and plan.status == PlanStatus.COMPLETED:
            return "Daily plan completed"

        if plan is None or not plan.is_active:
            return "No active plan"

        if self.has_significant_divergence(context):
            return "Plan execution significantly diverged from expected"

        return None

    def should_replan(self, context: PlanningContext) -> bool:
        return self.monitor_for_replanning(context) is not None

    def has_significant_divergence(self, context: PlanningContext) -> bool:
        action = self.current_action_plan
        if action is None or action.status.is_terminal:
            return False

        # moving away from the target
        if action.target_position is not None:
            if self._distance_action_id != action.id:
                self._distance_action_id = action.id
                self._last_distance_to_target = 0
            distance = context.position.manhattan(action.target_position)
            if (
                self._last_distance_to_target > 0
                and distance > self._last_distance_to_target * self.divergence_threshold
            ):
                return True
            self._last_distance_to_target = distance

        # consume action with nothing to consume
        if action.action_type == ActionType.CONSUME_ITEM:
            item_nearby = any(
                not item.claimed
                and item.position.manhattan(context.position) <= self.consume_item_radius
                for item in context.known_items
            )
            if not item_nearby:
                return True

        # stuck on one action
        if action.status == PlanStatus.IN_PROGRESS:
            if context.sim_time - action.start_time > self.stuck_multiplier * action.duration:
                return True

        return False

    # ------------------------------------------------------------------
    # accessors
    # ------------------------------------------------------------------

    def get_current_daily_plan(self) -> Optional[DailyPlan]:
        return self.current_daily_plan

    def get_current_hourly_plan(self) -> Optional[HourlyPlan]:
        return self.current_hourly_plan

    def get_current_action_plan(self) -> Optional[ActionPlan]:
        return self.current_action_plan

    def _llm_available(self) -> bool:
        return self.llm is not None and self.llm.is_available()

    def get_statistics(self) -> Dict[str, Any]:
        plan = self.current_daily_plan
        actions = [a for h in plan.hourly_plans for a in h.actions] if plan else []
        return {
            'plans_generated': self.plans_generated,
            'replan_count': self.replan_count,
            'current_goal': plan.goal if plan else None,
            'current_status': plan.status.value if plan else None,
            'hourly_plans': len(plan.hourly_plans) if plan else 0,
            'actions_total': len(actions),
            'actions_completed': sum(1 for a in actions if a.status == PlanStatus.COMPLETED),
        }

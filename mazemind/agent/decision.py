"""
DecisionMaker - pick the character's next action

Priority cascade, first applicable wins:
1. active plan action for the current simulated time
2. critical survival override (urgent need + known nearby item), which
   also starts a background re-plan
3. reactive decision: language model, else heuristic pathing toward the exit

The critical override is checked before the plan action so it can override
any plan action that does not already serve the urgent need.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Set
import asyncio
import re
import time

from loguru import logger

from mazemind.agent.memory.memory_stream import MemoryStream
from mazemind.agent.memory.retrieve import RetrieveModule
from mazemind.agent.planning.planner import PlanningSystem
from mazemind.agent.planning.plans import ActionPlan, ActionType, PlanningContext, PlanStatus
from mazemind.errors import MalformedResponseError
from mazemind.providers.base import GenerateOptions, LLMProvider
from mazemind.providers.fallback import generate_or_fallback
from mazemind.world import (
    NEED_TO_ITEM,
    ItemLocator,
    MazeAccessor,
    Position,
    SurvivalAccessor,
)

TAG = __name__

MOVE = "move"
WAIT = "wait"
REFLECT = "reflect"

# tie order for the heuristic direction ranking
HEURISTIC_ORDER = ("north", "south", "east", "west")

DECISION_PROMPT = """CURRENT STATUS

POSITION: ({x}, {y})
{surroundings}

PHYSICAL STATE:
  Energy:  {energy:.0f}%
  Hunger:  {hunger:.0f}%
  Thirst:  {thirst:.0f}%
  Stress:  {stress:.0f}%
{warnings}
GOAL: {goal}

RECENT EXPERIENCES (last few memories)
{recent}

RELEVANT CONTEXT (retrieved from memory)
{relevant}

DECISION REQUIRED

Based on your current situation, memories, and goal, what should you do next?

AVAILABLE ACTIONS:
  - MOVE NORTH - Go north one tile
  - MOVE SOUTH - Go south one tile
  - MOVE EAST - Go east one tile
  - MOVE WEST - Go west one tile
  - WAIT - Stay in place and observe/rest

RESPONSE FORMAT (you must follow this exactly):
ACTION: [choose ONE action from above]
REASONING: [one clear sentence explaining why, referencing your memories or observations]

Now, make your decision:"""


@dataclass(frozen=True)
class Decision:
    action: str
    direction: Optional[str] = None
    reasoning: str = ""
    confidence: float = 0.5
    # which cascade level produced it: plan, override, llm, heuristic, throttle
    source: str = "heuristic"


@dataclass
class DecisionContext:
    """Read-only views of the world the decision maker consults"""
    maze: MazeAccessor
    survival: SurvivalAccessor
    items: ItemLocator
    get_position: Callable[[], Position]


def parse_decision(response: str) -> Decision:
    """`ACTION: MOVE <dir> | WAIT` plus `REASONING:`"""
    action_match = re.search(r'ACTION:\s*(MOVE\s+(NORTH|SOUTH|EAST|WEST)|WAIT)', response, re.I)
    if not action_match:
        raise MalformedResponseError(f"no ACTION in decision response: {response[:80]!r}")

    reasoning_match = re.search(r'REASONING:\s*(.+)', response, re.I)
    reasoning = reasoning_match.group(1).strip() if reasoning_match else "No reasoning provided"

    if action_match.group(2):
        return Decision(MOVE, action_match.group(2).lower(), reasoning, 0.8, source="llm")
    return Decision(WAIT, None, reasoning, 0.5, source="llm")


class DecisionMaker:
    """decision maker - one decision per call, never raises"""

    def __init__(
        self,
        context: DecisionContext,
        planner: Optional[PlanningSystem] = None,
        retriever: Optional[RetrieveModule] = None,
        memory_stream: Optional[MemoryStream] = None,
        llm: Optional[LLMProvider] = None,
        replan_context: Optional[Callable[[], PlanningContext]] = None,
        replan_gate: Optional[Callable[[str, float], bool]] = None,
        decision_interval: float = 3.0,
        override_item_radius: int = 10,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            context: maze, survival and item accessors plus the position source
            planner: planning system consulted for the active plan action (optional)
            retriever: retrieval engine for prompt context (optional)
            memory_stream: source of recent memories for prompt context (optional)
            llm: language model provider (optional)
            replan_context: builds the planning context for override re-plans
            replan_gate: called with (reason, now) before an override re-plan, False skips it
            decision_interval: minimum seconds between decisions
            override_item_radius: max Manhattan distance of an item worth an override
            clock: time source in seconds (shared with the planner's sim time)
        """
        self.context = context
        self.planner = planner
        self.retriever = retriever
        self.memory_stream = memory_stream
        self.llm = llm
        self.replan_context = replan_context
        self.replan_gate = replan_gate
        self.decision_interval = decision_interval
        self.override_item_radius = override_item_radius
        self.clock = clock

        self.last_decision_time: Optional[float] = None
        self.last_decision: Optional[Decision] = None
        self._visits: Dict[Position, int] = {}
        self._replan_tasks: Set[asyncio.Task] = set()
        self.decision_counts: Dict[str, int] = {}

        logger.bind(tag=TAG).info(f"DecisionMaker initialized: interval={decision_interval}s")

    async def make_decision(self, now: Optional[float] = None) -> Decision:
        """
        Decide the next action

        Args:
            now: current (simulated) time, defaults to the clock

        Returns:
            a Decision, also under total capability failure
        """
        if now is None:
            now = self.clock()

        if self.last_decision_time is not None and now - self.last_decision_time < self.decision_interval:
            return Decision(WAIT, None, "Waiting for decision interval", 1.0, source="throttle")
        self.last_decision_time = now

        try:
            decision = await self._decide(now)
        except Exception as e:
            logger.bind(tag=TAG).error(f"Decision cascade failed, using heuristic: {e}")
            decision = self.make_heuristic_decision()

        self.last_decision = decision
        self.decision_counts[decision.source] = self.decision_counts.get(decision.source, 0) + 1
        logger.bind(tag=TAG).debug(
            f"[{decision.source}] {decision.action} {decision.direction or ''} "
            f"({decision.confidence:.1f}): {decision.reasoning}"
        )
        return decision

    async def _decide(self, now: float) -> Decision:
        position = self.context.get_position()
        self._visits[position] = self._visits.get(position, 0) + 1

        action = self.planner.get_current_action(now) if self.planner is not None else None
        urgent = self.context.survival.get_most_urgent_need()

        if urgent is not None and not self._serves_need(action, urgent):
            override = self._critical_override(urgent, position)
            if override is not None:
                self._spawn_replan(f"Critical {urgent} level detected", now)
                return override

        if action is not None:
            if action.status == PlanStatus.PENDING:
                self.planner.start_action(action.id)
            decision = self._execute_plan_action(action, position)
            if decision is not None:
                self.planner.complete_action(action.id, now)
                return decision

        return await self.make_reactive_decision(position)

    # ------------------------------------------------------------------
    # 1. plan actions
    # ------------------------------------------------------------------

    @staticmethod
    def _serves_need(action: Optional[ActionPlan], need: str) -> bool:
        if action is None:
            return False
        if action.action_type not in (ActionType.SEEK_ITEM, ActionType.CONSUME_ITEM):
            return False
        return action.target_item == NEED_TO_ITEM.get(need)

    def _execute_plan_action(self, action: ActionPlan, position: Position) -> Optional[Decision]:
        """map a plan action onto a Decision, None when it cannot be carried out now"""
        action_type = action.action_type

        if action_type == ActionType.MOVE:
            if action.target_position is None:
                return self._explore(position, f"Plan: {action.action}")
            if position == action.target_position:
                return Decision(WAIT, None, f"Plan: reached target of '{action.action}'", 0.8, source="plan")
            direction = self._direction_toward(position, action.target_position)
            if direction is None:
                return None
            return Decision(MOVE, direction, f"Plan: {action.action}", 0.8, source="plan")

        if action_type == ActionType.EXPLORE:
            return self._explore(position, f"Plan: {action.action}")

        if action_type in (ActionType.SEEK_ITEM, ActionType.CONSUME_ITEM):
            if not action.target_item:
                return None
            item = self.context.items.find_nearest(action.target_item, position)
            if item is None:
                return None
            if item.position == position:
                return Decision(
                    WAIT, None, f"Plan: using the {item.kind} right here", 0.9, source="plan"
                )
            direction = self._direction_toward(position, item.position)
            if direction is None:
                return None
            return Decision(
                MOVE,
                direction,
                f"Plan: {action.action} (nearest {item.kind} at ({item.position.x}, {item.position.y}))",
                0.8,
                source="plan",
            )

        if action_type in (ActionType.REST, ActionType.WAIT):
            return Decision(WAIT, None, f"Plan: {action.action}", 0.8, source="plan")

        if action_type == ActionType.REFLECT:
            return Decision(REFLECT, None, f"Plan: {action.action}", 0.8, source="plan")

        return None

    def _explore(self, position: Position, reasoning: str) -> Optional[Decision]:
        """open direction leading to the least visited tile"""
        open_dirs = [d for d in HEURISTIC_ORDER if self.context.maze.can_move(position, d)]
        if not open_dirs:
            return None
        best = min(open_dirs, key=lambda d: self._visits.get(position.step(d), 0))
        return Decision(MOVE, best, reasoning, 0.6, source="plan")

    # ------------------------------------------------------------------
    # 2. critical survival override
    # ------------------------------------------------------------------

    def _critical_override(self, need: str, position: Position) -> Optional[Decision]:
        kind = NEED_TO_ITEM.get(need)
        if kind is None:
            return None
        item = self.context.items.find_nearest(kind, position, self.override_item_radius)
        if item is None:
            return None

        level = getattr(self.context.survival.get_state(), need, None)
        level_text = f" ({level:.0f}%)" if isinstance(level, (int, float)) else ""

        if item.position == position:
            return Decision(
                WAIT, None, f"Critical {need}{level_text}: using the {kind} right here", 0.95, source="override"
            )

        direction = self._direction_toward(position, item.position)
        if direction is None:
            return None
        return Decision(
            MOVE,
            direction,
            f"Critical {need}{level_text}: moving {direction} toward {kind} "
            f"at ({item.position.x}, {item.position.y})",
            0.9,
            source="override",
        )

    @property
    def replan_pending(self) -> bool:
        return any(not task.done() for task in self._replan_tasks)

    def _spawn_replan(self, reason: str, now: float):
        """fire-and-forget re-plan, at most one in flight, failures are logged"""
        if self.planner is None or self.replan_context is None or self.replan_pending:
            return
        if self.replan_gate is not None and not self.replan_gate(reason, now):
            return

        async def run():
            try:
                await self.planner.replan(reason, self.replan_context())
            except Exception as e:
                logger.bind(tag=TAG).error(f"Background re-plan failed: {e}")

        task = asyncio.get_running_loop().create_task(run())
        self._replan_tasks.add(task)
        task.add_done_callback(self._replan_tasks.discard)

    async def aclose(self):
        """Wait for background re-plans"""
        if self._replan_tasks:
            await asyncio.gather(*self._replan_tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # 3. reactive decisions
    # ------------------------------------------------------------------

    async def make_reactive_decision(self, position: Optional[Position] = None) -> Decision:
        if position is None:
            position = self.context.get_position()

        async def from_llm() -> Decision:
            prompt = await self.build_decision_prompt(position)
            response = await self.llm.generate(
                prompt,
                GenerateOptions(temperature=0.7, max_tokens=150, stop=["DECISION:", "What should"]),
            )
            decision = parse_decision(response)
            if decision.action == MOVE and not self.context.maze.can_move(position, decision.direction):
                raise MalformedResponseError(f"model chose a blocked direction: {decision.direction}")
            return decision

        return await generate_or_fallback(
            from_llm,
            lambda: self.make_heuristic_decision(position),
            label="decision",
            available=self.llm is not None and self.llm.is_available(),
        )

    async def build_decision_prompt(self, position: Position) -> str:
        state = self.context.survival.get_state()
        surroundings = self.context.maze.describe_surroundings(position)

        recent: List[str] = []
        if self.memory_stream is not None:
            recent = [m.description for m in self.memory_stream.get_recent(3)]

        relevant: List[str] = []
        if self.retriever is not None:
            query = f"I am at position ({position.x}, {position.y}). {surroundings}"
            results = await self.retriever.retrieve(query, k=3, stress_modifier=self.stress_modifier())
            relevant = [r.memory.description for r in results]

        warnings = []
        for need in ("hunger", "thirst", "energy"):
            level = getattr(state, need)
            if level < 20:
                warnings.append(f"CRITICAL: {need.capitalize()} dangerously low!")
            elif level < 40:
                warnings.append(f"WARNING: {need.capitalize()} is getting low.")

        return DECISION_PROMPT.format(
            x=position.x,
            y=position.y,
            surroundings=surroundings,
            energy=state.energy,
            hunger=state.hunger,
            thirst=state.thirst,
            stress=state.stress,
            warnings="\n".join(warnings) + "\n" if warnings else "",
            goal=self.current_goal(position),
            recent="\n".join(f"{i}. {m}" for i, m in enumerate(recent, 1)) or "No recent memories",
            relevant="\n".join(f"{i}. {m}" for i, m in enumerate(relevant, 1)) or "No relevant memories found",
        )

    def stress_modifier(self) -> float:
        """stress 0 -> 1.0 (clear head), stress 100 -> 0.5"""
        stress = max(0.0, min(100.0, self.context.survival.get_state().stress))
        return 1.0 - stress / 200

    def current_goal(self, position: Position) -> str:
        if self.planner is not None:
            plan = self.planner.get_current_daily_plan()
            if plan is not None and plan.is_active:
                return plan.goal

        exit_pos = self.context.maze.exit
        dx = exit_pos.x - position.x
        dy = exit_pos.y - position.y
        distance = (dx * dx + dy * dy) ** 0.5
        if abs(dx) > abs(dy):
            direction = "east" if dx > 0 else "west"
        else:
            direction = "south" if dy > 0 else "north"
        return f"Find the exit at ({exit_pos.x}, {exit_pos.y}). It's roughly {round(distance)} tiles to the {direction}."

    def make_heuristic_decision(self, position: Optional[Position] = None) -> Decision:
        """
        Deterministic pathing toward the exit

        Directions are ranked by progress toward the exit; the best open one
        that makes progress wins (0.7), else any open direction (0.5), else wait (0.3).
        """
        if position is None:
            position = self.context.get_position()
        exit_pos = self.context.maze.exit
        dx = exit_pos.x - position.x
        dy = exit_pos.y - position.y

        progress = {
            "north": -dy if dy < 0 else 0,
            "south": dy if dy > 0 else 0,
            "east": dx if dx > 0 else 0,
            "west": -dx if dx < 0 else 0,
        }
        ranked = sorted(HEURISTIC_ORDER, key=lambda d: progress[d], reverse=True)
        open_dirs = [d for d in ranked if self.context.maze.can_move(position, d)]

        for direction in open_dirs:
            if progress[direction] > 0:
                return Decision(MOVE, direction, f"Moving {direction} toward exit", 0.7)

        if open_dirs:
            return Decision(MOVE, open_dirs[0], f"Exploring {open_dirs[0]}", 0.5)

        return Decision(WAIT, None, "No valid moves available", 0.3)

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def _direction_toward(self, position: Position, target: Position) -> Optional[str]:
        """open direction that reduces the Manhattan distance most"""
        current = position.manhattan(target)
        best = None
        best_distance = current
        for direction in HEURISTIC_ORDER:
            if not self.context.maze.can_move(position, direction):
                continue
            distance = position.step(direction).manhattan(target)
            if distance < best_distance:
                best, best_distance = direction, distance
        return best

    def set_decision_interval(self, seconds: float):
        self.decision_interval = seconds

    def get_statistics(self) -> Dict[str, Any]:
        return {
            'decision_interval': self.decision_interval,
            'decisions': dict(self.decision_counts),
            'tiles_visited': len(self._visits),
            'replan_pending': self.replan_pending,
        }

"""
CognitiveAgent - per-character cognitive loop

Owns one memory stream, retrieval engine, reflection engine, planning
system and decision maker, and wires them together:

1. perceive -> observation memory (importance scored when not given)
2. tick:
   a. one decision (plan action / survival override / reactive)
   b. one reflection trigger check (runs in the background)
   c. one planning check (re-plan triggers, lazy hour decomposition)
3. aclose: wait for background reflection and re-plan tasks, save memories
"""

import asyncio
import random
import time
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from loguru import logger

from mazemind.agent.decision import Decision, DecisionContext, DecisionMaker
from mazemind.agent.memory import (
    EmbeddingGenerator,
    ImportanceScorer,
    MemoryRecord,
    MemoryStream,
    ReflectionNode,
    ReflectModule,
    RetrieveModule,
)
from mazemind.agent.planning import PlanningContext, PlanningSystem
from mazemind.config import MazeMindConfig
from mazemind.providers import HeuristicProvider, LLMProvider, OpenAIProvider
from mazemind.world import Position

TAG = __name__

NO_ACTIVE_PLAN = "No active plan"


class CognitiveAgent:
    """
    Cognitive agent for one character

    All state is owned by the agent; two agents never share a component.
    """

    def __init__(
        self,
        context: DecisionContext,
        config: Optional[MazeMindConfig] = None,
        llm: Optional[LLMProvider] = None,
        embedder=None,
        clock: Callable[[], float] = time.time,
        rng: Optional[random.Random] = None,
    ):
        """
        Args:
            context: maze, survival and item accessors plus the position source
            config: component settings (defaults when omitted)
            llm: language model provider (optional, heuristics otherwise)
            embedder: EmbeddingService (optional, relevance is 0 otherwise)
            clock: simulated time source in seconds, shared by every component
            rng: random source for retrieval stress noise
        """
        self.config = config or MazeMindConfig()
        self.context = context
        self.llm = llm
        self.embedder = embedder
        self.clock = clock
        self.name = self.config.agent_name

        memory = self.config.memory
        self.memory_stream = MemoryStream(
            max_memories=memory.max_memories,
            clock=clock,
            memory_file=memory.memory_file,
            autosave=memory.autosave,
        )
        if memory.memory_file:
            self.memory_stream.load_from_file()

        self.importance_scorer = ImportanceScorer(llm=llm, use_llm=memory.use_llm_for_importance)

        self.retriever = RetrieveModule(
            self.memory_stream,
            embedder=embedder,
            rng=rng,
            **self.config.retrieval.model_dump(),
        )

        self.reflector = ReflectModule(
            self.memory_stream,
            retriever=self.retriever,
            llm=llm,
            **self.config.reflection.model_dump(),
        )

        planning = self.config.planning.model_dump()
        self.replan_cooldown = planning.pop("replan_cooldown")
        self.planner = PlanningSystem(memory_stream=self.memory_stream, llm=llm, **planning)

        self.decision_maker = DecisionMaker(
            context,
            planner=self.planner,
            retriever=self.retriever,
            memory_stream=self.memory_stream,
            llm=llm,
            replan_context=self.build_planning_context,
            replan_gate=self._claim_replan,
            clock=clock,
            **self.config.decision.model_dump(),
        )

        self.visited: Set[Position] = set()
        self.last_decision: Optional[Decision] = None
        self.tick_count = 0
        self._last_replan: Dict[str, float] = {}
        self._last_observed: Optional[Tuple[Position, str]] = None
        self._running = False

        logger.bind(tag=TAG).info(
            f"CognitiveAgent '{self.name}' initialized: "
            f"llm={'on' if llm is not None and llm.is_available() else 'off'}, "
            f"embeddings={'on' if embedder is not None and embedder.is_available() else 'off'}"
        )

    @classmethod
    def from_config(
        cls,
        context: DecisionContext,
        config: Optional[MazeMindConfig] = None,
        clock: Callable[[], float] = time.time,
        rng: Optional[random.Random] = None,
    ) -> "CognitiveAgent":
        """Build the agent together with its language model and embedding providers"""
        config = config or MazeMindConfig()

        llm: LLMProvider = HeuristicProvider()
        if config.llm.enabled and (config.llm.api_key or config.llm.base_url):
            llm = OpenAIProvider(
                api_key=config.llm.api_key,
                base_url=config.llm.base_url,
                model=config.llm.model,
                timeout=config.llm.timeout,
            )

        embedder = EmbeddingGenerator(config.embedding.model_dump())
        return cls(context, config=config, llm=llm, embedder=embedder, clock=clock, rng=rng)

    # ------------------------------------------------------------------
    # perception
    # ------------------------------------------------------------------

    async def perceive(
        self,
        description: str,
        importance: Optional[int] = None,
        tags: Optional[List[str]] = None,
        location: Optional[Tuple[int, int]] = None,
    ) -> MemoryRecord:
        """
        Store an observation

        Args:
            description: what was perceived
            importance: 1-10, scored from the text when omitted
            tags: extra tags
            location: where it happened, defaults to the current position

        Returns:
            the stored record
        """
        if importance is None:
            importance = await self.importance_scorer.score_async(description)
        if location is None:
            location = self.context.get_position()
        return self.memory_stream.add_observation(description, importance, tags, location)

    async def observe_surroundings(self) -> Optional[MemoryRecord]:
        """Record the current tile and survival warnings when they changed since the last call"""
        position = self.context.get_position()
        description = self.context.maze.describe_surroundings(position)

        state = self.context.survival.get_state()
        warnings = [
            f"{need} is critical" for need in ("hunger", "thirst", "energy")
            if getattr(state, need) < 20
        ]
        if warnings:
            description = f"{description} My {' and '.join(warnings)}."

        if self._last_observed == (position, description):
            return None
        self._last_observed = (position, description)
        return await self.perceive(
            f"At ({position.x}, {position.y}): {description}",
            tags=["surroundings"],
            location=position,
        )

    # ------------------------------------------------------------------
    # tick
    # ------------------------------------------------------------------

    async def start(self):
        """Create and start the first daily plan"""
        try:
            await self.planner.decompose_initial_plans(self.build_planning_context())
        except Exception as e:
            logger.bind(tag=TAG).error(f"Initial planning failed: {e}")

    async def tick(self) -> Decision:
        """
        One decision, one reflection check and one planning check

        Returns:
            the decision for this tick
        """
        self.tick_count += 1
        now = self.clock()
        self.visited.add(self.context.get_position())

        decision = await self.decision_maker.make_decision(now)
        self.last_decision = decision

        try:
            self.reflector.check_and_reflect(now)
        except Exception as e:
            logger.bind(tag=TAG).error(f"Reflection check failed: {e}")

        for node in self.reflector.drain_completed():
            logger.bind(tag=TAG).info(f"[{self.name}] new level-{node.level} {node.category} insight: {node.content}")

        await self._planning_check(now)
        return decision

    async def _planning_check(self, now: float):
        try:
            # an override re-plan owns the plan hierarchy until it finishes
            if self.decision_maker.replan_pending:
                return

            context = self.build_planning_context()
            if self.planner.get_current_daily_plan() is None:
                await self.planner.decompose_initial_plans(context)
                return

            reason = self.planner.monitor_for_replanning(context)
            if reason is None and self._plan_horizon_elapsed(now):
                reason = NO_ACTIVE_PLAN
            if reason is not None and self._claim_replan(reason, now):
                await self.planner.replan(reason, context)

            await self.planner.prepare_current_hour(context)
        except Exception as e:
            logger.bind(tag=TAG).error(f"Planning check failed: {e}")

    def _claim_replan(self, reason: str, now: float) -> bool:
        """record a re-plan for reason unless it is still cooling down"""
        if self._in_cooldown(reason, now):
            return False
        self._last_replan[reason] = now
        return True

    def _in_cooldown(self, reason: str, now: float) -> bool:
        if reason == NO_ACTIVE_PLAN:
            return False
        last = self._last_replan.get(reason)
        return last is not None and now - last < self.replan_cooldown

    def _plan_horizon_elapsed(self, now: float) -> bool:
        plan = self.planner.get_current_daily_plan()
        if plan is None or not plan.is_active or not plan.hourly_plans:
            return False
        return now >= plan.hourly_plans[-1].end_time

    def build_planning_context(self) -> PlanningContext:
        position = self.context.get_position()
        maze = self.context.maze
        tiles = max(1, maze.width * maze.height)
        return PlanningContext(
            survival=self.context.survival.get_state(),
            position=position,
            sim_time=self.clock(),
            exploration_progress=min(1.0, len(self.visited) / tiles),
            known_items=self.context.items.known_items(),
            recent_memories=[m.description for m in self.memory_stream.get_recent(5)],
            recent_reflections=[n.content for n in self.reflector.get_recent_reflections(3)],
            surroundings=maze.describe_surroundings(position),
            exit_position=maze.exit,
        )

    # ------------------------------------------------------------------
    # loop
    # ------------------------------------------------------------------

    async def run(self, max_ticks: Optional[int] = None, tick_interval: float = 1.0) -> None:
        """Tick until stop() is called or max_ticks is reached"""
        self._running = True
        logger.bind(tag=TAG).info(f"Cognitive loop started for {self.name}")
        await self.start()

        ticks = 0
        while self._running and (max_ticks is None or ticks < max_ticks):
            await self.tick()
            ticks += 1
            await asyncio.sleep(tick_interval)

        self._running = False

    def stop(self) -> None:
        self._running = False
        logger.bind(tag=TAG).info(f"Cognitive loop stopping for {self.name}")

    async def reflect_now(self) -> List[ReflectionNode]:
        return await self.reflector.force_reflection()

    async def aclose(self):
        """Wait for background work and persist memories"""
        self._running = False
        await self.reflector.aclose()
        await self.decision_maker.aclose()
        if self.memory_stream.memory_file:
            self.memory_stream.save_to_file()

    def get_statistics(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'ticks': self.tick_count,
            'tiles_visited': len(self.visited),
            'memory': self.memory_stream.get_statistics(),
            'retrieval': self.retriever.get_statistics(),
            'reflection': self.reflector.get_statistics(),
            'planning': self.planner.get_statistics(),
            'decision': self.decision_maker.get_statistics(),
        }

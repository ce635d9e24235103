"""
Reflect module

Generative Agents reflection:
1. monitor accumulated importance, trigger reflection when the threshold is reached
   (with a time-based fallback)
2. generate high-level reflection questions
3. retrieve relevant memories per question
4. synthesize insights (language model, or deterministic pattern detectors)
5. store insights back into the memory stream and the reflection tree
6. build meta reflections once enough first-order reflections accumulate

Reflection runs as a background task: the per-tick trigger check never waits
for it, and a failing reflection is logged and dropped.
"""

from typing import Any, Dict, List, Optional
import asyncio
import re
import uuid

from loguru import logger

from .memory_record import OBSERVATION, PLAN, REFLECTION, MemoryRecord
from .memory_stream import MemoryStream
from .reflection_node import (
    CATEGORIES,
    EMOTIONAL,
    LEARNING,
    META,
    PATTERN,
    STRATEGY,
    ReflectionNode,
    ReflectionTree,
    infer_category,
)
from .retrieve import RetrieveModule
from mazemind.errors import MalformedResponseError
from mazemind.providers.base import GenerateOptions, LLMProvider
from mazemind.providers.fallback import generate_or_fallback

TAG = __name__

HEURISTIC_QUESTIONS = [
    "What patterns am I noticing in my recent experiences in the maze?",
    "What have I learned about this maze that could help me survive?",
    "What strategies should I use to find the exit more efficiently?",
]

QUESTION_PROMPT = """You are an introspective AI agent exploring a maze environment. Based on your recent experiences, generate {count} high-level questions that would help you synthesize these observations into deeper insights.

RECENT EXPERIENCES:
{memories}

Your questions should:
- Ask about patterns, themes, or underlying meanings
- Be open-ended and thought-provoking
- Help identify strategies, learnings, or behavioral patterns

FORMAT YOUR RESPONSE AS:
{format_lines}

Now generate {count} insightful questions based on the experiences above:"""

ANSWER_PROMPT = """You are an introspective AI agent reflecting on your experiences. Answer the following question thoughtfully based on your relevant memories.

QUESTION: {question}

RELEVANT EXPERIENCES:
{memories}

Provide a thoughtful, abstract insight that answers this question in 1-2 sentences.
It should synthesize patterns across multiple experiences and be useful for future decisions.

INSIGHT:"""

META_PROMPT = """You are an AI agent reflecting on your own reflections. Review your recent insights and identify broader patterns.

YOUR RECENT REFLECTIONS:
{reflections}

What higher-order pattern or principle connects these insights? Answer in 1-2 sentences.

META-INSIGHT:"""

CATEGORY_PROMPT = """Categorize the following reflection into ONE category:

REFLECTION: "{reflection}"

CATEGORIES: strategy, pattern, emotional, learning, social, meta

Respond with ONLY the category name:
CATEGORY:"""


def parse_questions(response: str, limit: int) -> List[str]:
    """`QUESTION_N:` lines, or a numbered list as a second chance"""
    questions = [
        q.strip() for q in re.findall(r'QUESTION_\d+:\s*(.+?)(?=QUESTION_\d+:|$)', response, re.S)
    ]
    questions = [q for q in questions if len(q) > 10]

    if not questions:
        for line in response.splitlines():
            numbered = re.match(r'^\s*\d+\.\s*(.+)$', line)
            if numbered and len(numbered.group(1).strip()) > 10:
                questions.append(numbered.group(1).strip())

    if not questions:
        raise MalformedResponseError(f"no questions in response: {response[:80]!r}")
    return questions[:limit]


def parse_insight(response: str) -> str:
    """Text after `INSIGHT:` / `META-INSIGHT:`, else the first substantial line"""
    match = re.search(r'(?:META-)?INSIGHT:\s*(.+?)(?=\n\n|$)', response, re.S)
    if match and match.group(1).strip():
        return match.group(1).strip()

    lines = [line.strip() for line in response.splitlines() if len(line.strip()) > 20]
    if not lines:
        raise MalformedResponseError(f"no insight in response: {response[:80]!r}")
    return lines[0]


def parse_category(response: str) -> str:
    match = re.search(r'CATEGORY:\s*(\w+)', response, re.I)
    if match and match.group(1).lower() in CATEGORIES:
        return match.group(1).lower()
    word = response.strip().split()[0].lower().strip('.:,') if response.strip() else ""
    if word in CATEGORIES:
        return word
    raise MalformedResponseError(f"no category in response: {response[:80]!r}")


def _format_memories(memories: List[MemoryRecord], limit: int = 20, numbered: bool = True) -> str:
    if not memories:
        return "(no memory)"
    if numbered:
        return "\n".join(f"{i}. {m.description}" for i, m in enumerate(memories[:limit], 1))
    return "\n".join(f"- {m.description}" for m in memories[:limit])


class ReflectModule:
    """
    reflection module - extract high-level insights from experiences

    The importance sum is fed by a memory stream listener, so every new
    observation or reflection counts, including the reflections this
    module writes itself.
    """

    def __init__(
        self,
        memory_stream: MemoryStream,
        retriever: Optional[RetrieveModule] = None,
        llm: Optional[LLMProvider] = None,
        threshold: int = 150,
        enable_time_fallback: bool = True,
        time_fallback_interval: float = 180,
        min_memories_for_reflection: int = 20,
        importance_threshold: int = 5,
        max_memories_per_reflection: int = 30,
        max_memories_per_question: int = 20,
        questions_per_reflection: int = 3,
        enable_meta_reflections: bool = True,
        min_reflections_for_meta: int = 5,
        min_meta_for_higher_order: int = 3,
        max_reflection_depth: int = 3,
        use_llm_categorization: bool = True,
        enabled: bool = True,
    ):
        """
        Args:
            memory_stream: store read from and written to
            retriever: retrieval engine used to answer questions (optional)
            llm: language model provider (optional)
            threshold: accumulated importance that triggers reflection
            enable_time_fallback: also reflect on a timer
            time_fallback_interval: seconds between timer reflections
            min_memories_for_reflection: memory count required by the timer trigger
            importance_threshold: minimum importance of memories reflected on
            max_memories_per_reflection: memories selected per reflection
            max_memories_per_question: memories retrieved per question
            questions_per_reflection: questions generated per reflection
            enable_meta_reflections: build level 2+ nodes
            min_reflections_for_meta: new level-1 nodes needed for a meta reflection
            min_meta_for_higher_order: new level-N nodes needed for a level N+1 node (N >= 2)
            max_reflection_depth: highest tree level built
            use_llm_categorization: ask the model for a category (keywords otherwise)
            enabled: whether reflection runs at all
        """
        self.memory_stream = memory_stream
        self.retriever = retriever
        self.llm = llm
        self.threshold = threshold
        self.enable_time_fallback = enable_time_fallback
        self.time_fallback_interval = time_fallback_interval
        self.min_memories_for_reflection = min_memories_for_reflection
        self.importance_threshold = importance_threshold
        self.max_memories_per_reflection = max_memories_per_reflection
        self.max_memories_per_question = max_memories_per_question
        self.questions_per_reflection = questions_per_reflection
        self.enable_meta_reflections = enable_meta_reflections
        self.min_reflections_for_meta = min_reflections_for_meta
        self.min_meta_for_higher_order = min_meta_for_higher_order
        self.max_reflection_depth = max_reflection_depth
        self.use_llm_categorization = use_llm_categorization
        self.enabled = enabled

        self.tree = ReflectionTree()

        # reflection state
        self.accumulated_importance: int = 0
        self.last_reflection_time: float = memory_stream.clock()
        self._pending_trigger: Optional[str] = None
        self._reflected_ids = set()
        # per level: number of nodes already summarized by the level above
        self._consumed_per_level: Dict[int, int] = {}

        self._task: Optional[asyncio.Task] = None
        self._completed: "asyncio.Queue[List[ReflectionNode]]" = asyncio.Queue()

        # statistics
        self.total_reflections = 0
        self.importance_sum_triggers = 0
        self.time_triggers = 0
        self.questions_generated = 0
        self.questions_answered = 0
        self.failed_reflections = 0

        memory_stream.add_listener(self._on_memory_added)

        logger.bind(tag=TAG).info(
            f"ReflectModule initialized: threshold={threshold}, questions={questions_per_reflection}, "
            f"time_fallback={time_fallback_interval if enable_time_fallback else 'off'}, enabled={enabled}"
        )

    # ------------------------------------------------------------------
    # triggering
    # ------------------------------------------------------------------

    def _on_memory_added(self, record: MemoryRecord):
        self.add_importance(record.importance)

    def add_importance(self, importance: int):
        """
        add to accumulated importance

        Crossing the threshold arms a trigger and resets the sum to 0 at once;
        the next check_and_reflect call starts the reflection.
        """
        self.accumulated_importance += importance
        if self.accumulated_importance >= self.threshold:
            logger.bind(tag=TAG).info(
                f"Importance sum {self.accumulated_importance} reached threshold {self.threshold}"
            )
            self.accumulated_importance = 0
            self.importance_sum_triggers += 1
            self._pending_trigger = "importance"

    def should_reflect(self, current_time: Optional[float] = None) -> Optional[str]:
        """
        Which trigger (if any) is due

        Returns:
            "importance", "time" or None
        """
        if not self.enabled:
            return None
        if self._pending_trigger:
            return self._pending_trigger

        if not self.enable_time_fallback:
            return None
        if current_time is None:
            current_time = self.memory_stream.clock()

        enough_memories = len(self.memory_stream) >= self.min_memories_for_reflection
        time_elapsed = current_time - self.last_reflection_time
        if enough_memories and time_elapsed >= self.time_fallback_interval:
            return "time"
        return None

    def check_and_reflect(self, current_time: Optional[float] = None) -> bool:
        """
        Per-tick trigger check, never waits for the reflection itself

        Returns:
            whether a background reflection was started
        """
        trigger = self.should_reflect(current_time)
        if trigger is None:
            return False

        if self.is_reflecting:
            logger.bind(tag=TAG).debug("Reflection already running, trigger deferred")
            return False

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.bind(tag=TAG).error("check_and_reflect called outside an event loop")
            return False

        if current_time is None:
            current_time = self.memory_stream.clock()

        self._pending_trigger = None
        self.last_reflection_time = current_time
        if trigger == "time":
            self.time_triggers += 1

        logger.bind(tag=TAG).info(f"Reflection triggered ({trigger})")
        self._task = loop.create_task(self._run_in_background(trigger))
        return True

    @property
    def is_reflecting(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _run_in_background(self, trigger: str):
        try:
            nodes = await self._reflect()
        except Exception as e:
            self.failed_reflections += 1
            logger.bind(tag=TAG).error(f"Background reflection ({trigger}) failed: {e}")
            return
        await self._completed.put(nodes)

    def drain_completed(self) -> List[ReflectionNode]:
        """Nodes produced by background reflections finished since the last drain"""
        nodes: List[ReflectionNode] = []
        while True:
            try:
                nodes.extend(self._completed.get_nowait())
            except asyncio.QueueEmpty:
                return nodes

    async def aclose(self):
        """Wait for a running background reflection"""
        if self._task is not None and not self._task.done():
            try:
                await self._task
            except Exception as e:
                logger.bind(tag=TAG).error(f"Reflection task failed during shutdown: {e}")

    # ------------------------------------------------------------------
    # public operations
    # ------------------------------------------------------------------

    async def force_reflection(self) -> List[ReflectionNode]:
        """Reflect immediately and wait for the result"""
        logger.bind(tag=TAG).info("Forcing immediate reflection")
        self.last_reflection_time = self.memory_stream.clock()
        try:
            return await self._reflect()
        except Exception as e:
            self.failed_reflections += 1
            logger.bind(tag=TAG).error(f"Forced reflection failed: {e}")
            return []

    async def reflect_on(self, topic: str) -> List[ReflectionNode]:
        """Answer one topic as a reflection question over the memories relevant to it"""
        logger.bind(tag=TAG).info(f"Reflecting on: {topic}")
        try:
            memories = await self._relevant_memories(topic, self._select_memories())
            if not memories:
                return []
            node = await self._answer_question(topic, memories)
            self._mark_reflected(memories)
            self.total_reflections += 1
            return [node]
        except Exception as e:
            self.failed_reflections += 1
            logger.bind(tag=TAG).error(f"Reflection on '{topic}' failed: {e}")
            return []

    def get_tree(self) -> ReflectionTree:
        return self.tree

    def get_recent_reflections(self, n: int = 5) -> List[ReflectionNode]:
        """latest n reflection nodes of any level, latest first"""
        nodes = sorted(reversed(self.tree.all_nodes()), key=lambda node: node.created, reverse=True)
        return nodes[:max(0, n)]

    # ------------------------------------------------------------------
    # pipeline
    # ------------------------------------------------------------------

    async def _reflect(self) -> List[ReflectionNode]:
        memories = self._select_memories()
        if not memories:
            logger.bind(tag=TAG).info("No memories to reflect on")
            return []

        try:
            nodes = await self._question_reflection(memories)
        except Exception as e:
            logger.bind(tag=TAG).warning(f"Question-driven reflection failed, using pattern detectors: {e}")
            nodes = self._pattern_reflection(memories)

        self._mark_reflected(memories)
        self.total_reflections += 1

        if self.enable_meta_reflections:
            try:
                nodes.extend(await self._build_higher_levels())
            except Exception as e:
                logger.bind(tag=TAG).error(f"Meta reflection failed: {e}")

        logger.bind(tag=TAG).info(f"Reflection complete: {len(nodes)} insights generated")
        return nodes

    def _select_memories(self) -> List[MemoryRecord]:
        """most important unreflected observations / reflections"""
        candidates = [
            m for m in self.memory_stream.get_all()
            if m.memory_type in (OBSERVATION, REFLECTION) and m.id not in self._reflected_ids
        ]
        important = [m for m in candidates if m.importance >= self.importance_threshold]
        if important:
            candidates = important

        candidates.sort(key=lambda m: (m.importance, m.created), reverse=True)
        return candidates[:self.max_memories_per_reflection]

    def _mark_reflected(self, memories: List[MemoryRecord]):
        self._reflected_ids.update(m.id for m in memories)

    async def _question_reflection(self, memories: List[MemoryRecord]) -> List[ReflectionNode]:
        questions = await self.generate_questions(memories)
        self.questions_generated += len(questions)

        nodes = []
        for question in questions:
            relevant = await self._relevant_memories(question, memories)
            nodes.append(await self._answer_question(question, relevant))
            self.questions_answered += 1
        return nodes

    async def generate_questions(self, memories: List[MemoryRecord]) -> List[str]:
        """high-level questions about the memories (model, else fixed heuristics)"""
        count = self.questions_per_reflection

        async def from_llm() -> List[str]:
            prompt = QUESTION_PROMPT.format(
                count=count,
                memories=_format_memories(memories),
                format_lines="\n".join(f"QUESTION_{i}: [question {i}]" for i in range(1, count + 1)),
            )
            response = await self.llm.generate(prompt, GenerateOptions(temperature=0.8, max_tokens=200))
            return parse_questions(response, count)

        return await generate_or_fallback(
            from_llm,
            lambda: HEURISTIC_QUESTIONS[:count],
            label="reflection questions",
            available=self._llm_available(),
        )

    async def _relevant_memories(self, question: str, default: List[MemoryRecord]) -> List[MemoryRecord]:
        if self.retriever is None:
            return default
        results = await self.retriever.retrieve(question, k=self.max_memories_per_question)
        memories = [r.memory for r in results if r.memory.memory_type != PLAN]
        return memories or default

    async def _answer_question(self, question: str, memories: List[MemoryRecord]) -> ReflectionNode:
        """synthesize one level-1 node and store it"""

        async def from_llm():
            prompt = ANSWER_PROMPT.format(
                question=question,
                memories=_format_memories(memories, limit=10, numbered=False),
            )
            response = await self.llm.generate(prompt, GenerateOptions(temperature=0.7, max_tokens=150))
            content = parse_insight(response)
            category = await self.categorize(content)
            return content, category, 0.8

        content, category, confidence = await generate_or_fallback(
            from_llm,
            lambda: self._heuristic_answer(question, memories),
            label="reflection answer",
            available=self._llm_available(),
        )
        return self._store_node(
            content=content,
            level=1,
            parent_ids=[m.id for m in memories[:10]],
            category=category,
            confidence=confidence,
            question=question,
        )

    async def categorize(self, content: str) -> str:
        async def from_llm() -> str:
            response = await self.llm.generate(
                CATEGORY_PROMPT.format(reflection=content),
                GenerateOptions(temperature=0.2, max_tokens=10),
            )
            return parse_category(response)

        return await generate_or_fallback(
            from_llm,
            lambda: infer_category(content),
            label="reflection category",
            available=self._llm_available() and self.use_llm_categorization,
        )

    def _heuristic_answer(self, question: str, memories: List[MemoryRecord]):
        """templated answer: the detector matching the question's theme, else a summary"""
        detected = self.detect_patterns(memories)
        wanted = infer_category(question)
        if 'pattern' in question.lower():
            wanted = PATTERN
        elif 'learn' in question.lower():
            wanted = LEARNING

        for insight in detected:
            if insight['category'] == wanted:
                return insight['insight'], insight['category'], insight['confidence']
        if detected:
            first = detected[0]
            return first['insight'], first['category'], first['confidence']

        top = max(memories, key=lambda m: m.importance) if memories else None
        if top is None:
            return "I have not experienced enough yet to draw conclusions.", LEARNING, 0.3
        content = (
            f"Looking back on {len(memories)} experiences, the most significant was: "
            f"{top.description}"
        )
        return content, wanted, 0.5

    def detect_patterns(self, memories: List[MemoryRecord]) -> List[Dict[str, Any]]:
        """
        deterministic pattern detectors over memory text

        Returns:
            list of {insight, category, confidence, based_on}
        """
        insights = []

        def matching(*keywords: str) -> List[MemoryRecord]:
            return [m for m in memories if any(k in m.description.lower() for k in keywords)]

        dead_ends = matching('dead end')
        if len(dead_ends) >= 3:
            insights.append({
                'insight': (
                    f"I've encountered {len(dead_ends)} dead ends recently. "
                    f"I should mark these areas mentally and try different paths."
                ),
                'category': PATTERN,
                'confidence': 0.8,
                'based_on': [m.id for m in dead_ends],
            })

        junctions = matching('junction')
        if len(junctions) >= 2:
            insights.append({
                'insight': (
                    "The maze has multiple junctions. "
                    "I need a systematic exploration strategy to avoid going in circles."
                ),
                'category': STRATEGY,
                'confidence': 0.7,
                'based_on': [m.id for m in junctions],
            })

        low_state = matching('low', 'critical')
        if low_state:
            insights.append({
                'insight': (
                    "My physical state is deteriorating. "
                    "I need to balance exploration with rest and resource management."
                ),
                'category': EMOTIONAL,
                'confidence': 0.9,
                'based_on': [m.id for m in low_state],
            })

        movement = matching('moved', 'heading')
        if movement:
            located = [m for m in movement if m.location is not None]
            if located:
                latest = max(located, key=lambda m: m.created).location
                where = f"I was last at ({latest.x}, {latest.y}). "
            else:
                where = ""
            insights.append({
                'insight': (
                    f"{where}I should keep track of where I've been "
                    f"to avoid redundant exploration."
                ),
                'category': LEARNING,
                'confidence': 0.6,
                'based_on': [m.id for m in movement[:5]],
            })

        return insights

    def _pattern_reflection(self, memories: List[MemoryRecord]) -> List[ReflectionNode]:
        nodes = []
        for insight in self.detect_patterns(memories):
            nodes.append(self._store_node(
                content=insight['insight'],
                level=1,
                parent_ids=insight['based_on'],
                category=insight['category'],
                confidence=insight['confidence'],
            ))
        return nodes

    async def _build_higher_levels(self) -> List[ReflectionNode]:
        """one node per level whose lower level has accumulated enough new nodes"""
        built = []
        for level in range(2, self.max_reflection_depth + 1):
            below = self.tree.nodes_at(level - 1)
            consumed = self._consumed_per_level.get(level - 1, 0)
            fresh = below[consumed:]
            needed = self.min_reflections_for_meta if level == 2 else self.min_meta_for_higher_order
            if len(fresh) < needed:
                break

            node = await self._synthesize_meta(fresh, level)
            self._consumed_per_level[level - 1] = len(below)
            built.append(node)
            logger.bind(tag=TAG).info(f"Built level-{level} reflection from {len(fresh)} nodes")
        return built

    async def _synthesize_meta(self, sources: List[ReflectionNode], level: int) -> ReflectionNode:
        async def from_llm():
            prompt = META_PROMPT.format(
                reflections="\n".join(f"{i}. {n.content}" for i, n in enumerate(sources, 1))
            )
            response = await self.llm.generate(prompt, GenerateOptions(temperature=0.7, max_tokens=150))
            return parse_insight(response), 0.8

        content, confidence = await generate_or_fallback(
            from_llm,
            lambda: self._heuristic_meta(sources),
            label="meta reflection",
            available=self._llm_available(),
        )
        return self._store_node(
            content=content,
            level=level,
            parent_ids=[n.id for n in sources],
            category=META,
            confidence=confidence,
            based_on=[n.memory_id for n in sources if n.memory_id],
        )

    @staticmethod
    def _heuristic_meta(sources: List[ReflectionNode]):
        counts: Dict[str, int] = {}
        for node in sources:
            counts[node.category] = counts.get(node.category, 0) + 1
        # most frequent category, first seen wins ties
        dominant = max(counts, key=lambda c: counts[c])
        strongest = max(sources, key=lambda n: (n.importance, n.confidence))
        content = (
            f"Across my last {len(sources)} insights my thinking keeps returning to {dominant}. "
            f"The clearest lesson so far: {strongest.content}"
        )
        return content, 0.7

    def _store_node(
        self,
        content: str,
        level: int,
        parent_ids: List[str],
        category: str,
        confidence: float,
        question: Optional[str] = None,
        based_on: Optional[List[str]] = None,
    ) -> ReflectionNode:
        """
        Add the node to the tree and mirror it as a reflection memory

        parent_ids link the tree; based_on lists the memory ids for the record
        and defaults to parent_ids, which are memory ids for level 1 nodes.
        """
        confidence = max(0.0, min(1.0, confidence))
        importance = round(7 + 2 * confidence)

        tags = [category, 'insight']
        if level >= 2:
            tags.append(f"level:{level}")
        record = self.memory_stream.add_reflection(
            content, importance, tags=tags, based_on_ids=parent_ids if based_on is None else based_on
        )

        node = ReflectionNode(
            id=uuid.uuid4().hex,
            content=content,
            level=level,
            parent_ids=list(parent_ids),
            importance=record.importance,
            created=record.created,
            category=category,
            confidence=confidence,
            question=question,
            memory_id=record.id,
        )
        self.tree.add(node)
        # a reflection never reflects on itself
        self._reflected_ids.add(record.id)

        logger.bind(tag=TAG).info(f"[level {level}] {category}: {content[:80]}")
        return node

    def _llm_available(self) -> bool:
        return self.llm is not None and self.llm.is_available()

    # ------------------------------------------------------------------
    # statistics
    # ------------------------------------------------------------------

    def get_statistics(self) -> Dict[str, Any]:
        nodes = self.tree.all_nodes()
        by_level: Dict[int, int] = {}
        by_category: Dict[str, int] = {}
        for node in nodes:
            by_level[node.level] = by_level.get(node.level, 0) + 1
            by_category[node.category] = by_category.get(node.category, 0) + 1

        return {
            'total_reflections': self.total_reflections,
            'total_nodes': len(nodes),
            'by_level': by_level,
            'by_category': by_category,
            'average_confidence': (
                round(sum(n.confidence for n in nodes) / len(nodes), 2) if nodes else 0.0
            ),
            'questions_generated': self.questions_generated,
            'questions_answered': self.questions_answered,
            'importance_sum_triggers': self.importance_sum_triggers,
            'time_triggers': self.time_triggers,
            'failed_reflections': self.failed_reflections,
            'last_reflection_time': self.last_reflection_time,
            'current_importance_sum': self.accumulated_importance,
            'threshold': self.threshold,
            'reflecting': self.is_reflecting,
        }

"""
Unit tests for the reflection engine: triggers, background execution,
heuristic and model-driven pipelines, and the reflection tree.
"""

import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock

from mazemind.agent.memory import REFLECTION, ReflectModule
from mazemind.agent.memory.reflect import HEURISTIC_QUESTIONS, parse_questions
from mazemind.errors import MalformedResponseError


def add_maze_memories(stream, dead_ends: int = 3, junctions: int = 2):
    for i in range(dead_ends):
        stream.add_observation(f"Hit a dead end at ({i}, 4)", 6, location=(i, 4))
    for i in range(junctions):
        stream.add_observation(f"Reached a junction at (5, {i})", 5, location=(5, i))


def scripted_llm():
    """answers each reflection prompt kind with a well-formed response"""

    async def generate(prompt, options=None):
        if "Categorize the following" in prompt:
            return "CATEGORY: strategy"
        if "high-level questions" in prompt:
            return (
                "QUESTION_1: Why do I keep running into dead ends?\n"
                "QUESTION_2: Which junctions lead somewhere new?"
            )
        if "META-INSIGHT" in prompt:
            return "META-INSIGHT: Mapping the maze systematically matters more than speed."
        return "INSIGHT: The western half of the maze is a cluster of dead ends."

    llm = MagicMock()
    llm.is_available.return_value = True
    llm.generate = AsyncMock(side_effect=generate)
    return llm


class TestTriggers:

    def test_importance_sum_resets_when_threshold_crossed(self, stream):
        reflector = ReflectModule(stream, threshold=20, enable_time_fallback=False)

        stream.add_observation("a", 8)
        stream.add_observation("b", 8)
        assert reflector.accumulated_importance == 16
        assert reflector.should_reflect() is None

        stream.add_observation("c", 5)
        assert reflector.accumulated_importance == 0
        assert reflector.should_reflect() == "importance"
        assert reflector.importance_sum_triggers == 1

    def test_plans_do_not_count(self, stream):
        reflector = ReflectModule(stream, threshold=20)

        stream.add_plan("Find water", 7)

        assert reflector.accumulated_importance == 0

    def test_time_fallback(self, stream, clock):
        reflector = ReflectModule(stream, threshold=1000, min_memories_for_reflection=3,
                                  time_fallback_interval=180)
        for i in range(3):
            stream.add_observation(f"memory {i}", 3)

        clock.advance(179)
        assert reflector.should_reflect() is None
        clock.advance(1)
        assert reflector.should_reflect() == "time"

    def test_time_fallback_needs_enough_memories(self, stream, clock):
        reflector = ReflectModule(stream, threshold=1000, min_memories_for_reflection=20)
        stream.add_observation("lonely", 3)

        clock.advance(10_000)

        assert reflector.should_reflect() is None

    def test_disabled(self, stream):
        reflector = ReflectModule(stream, threshold=1, enabled=False)
        stream.add_observation("anything", 9)

        assert reflector.should_reflect() is None
        assert reflector.check_and_reflect() is False

    def test_check_outside_event_loop(self, stream):
        reflector = ReflectModule(stream, threshold=1)
        stream.add_observation("anything", 9)

        assert reflector.check_and_reflect() is False


class TestBackgroundReflection:

    @pytest.mark.asyncio
    async def test_runs_in_background_and_reports_through_queue(self, stream):
        reflector = ReflectModule(stream, threshold=28, enable_time_fallback=False)
        add_maze_memories(stream)

        assert reflector.check_and_reflect() is True
        assert reflector.drain_completed() == []

        await reflector.aclose()
        nodes = reflector.drain_completed()

        assert len(nodes) == 3
        assert all(node.level == 1 for node in nodes)
        assert reflector.drain_completed() == []
        assert reflector.should_reflect() is None

    @pytest.mark.asyncio
    async def test_one_reflection_at_a_time(self, stream):
        reflector = ReflectModule(stream, threshold=5, enable_time_fallback=False)
        release = asyncio.Event()

        async def slow_reflect():
            await release.wait()
            return []

        reflector._reflect = slow_reflect
        stream.add_observation("Found food", 7)
        assert reflector.check_and_reflect() is True

        stream.add_observation("Found water", 7)
        assert reflector.is_reflecting is True
        assert reflector.check_and_reflect() is False
        # the deferred trigger stays armed
        assert reflector.should_reflect() == "importance"

        release.set()
        await reflector.aclose()
        assert reflector.check_and_reflect() is True
        await reflector.aclose()

    @pytest.mark.asyncio
    async def test_failure_is_contained(self, stream):
        reflector = ReflectModule(stream, threshold=5, enable_time_fallback=False)
        reflector._reflect = AsyncMock(side_effect=RuntimeError("boom"))
        stream.add_observation("Found food", 7)

        assert reflector.check_and_reflect() is True
        await reflector.aclose()

        assert reflector.drain_completed() == []
        assert reflector.failed_reflections == 1


class TestHeuristicPipeline:

    @pytest.mark.asyncio
    async def test_heuristic_questions_and_detector_answers(self, stream):
        reflector = ReflectModule(stream)
        add_maze_memories(stream)

        nodes = await reflector.force_reflection()

        assert [n.question for n in nodes] == HEURISTIC_QUESTIONS
        assert [n.category for n in nodes] == ["pattern", "pattern", "strategy"]
        assert "3 dead ends" in nodes[0].content
        assert nodes[0].confidence == pytest.approx(0.8)
        assert nodes[2].confidence == pytest.approx(0.7)

    @pytest.mark.asyncio
    async def test_nodes_mirrored_as_reflection_memories(self, stream):
        reflector = ReflectModule(stream)
        add_maze_memories(stream)

        nodes = await reflector.force_reflection()
        record = stream.get_by_id(nodes[0].memory_id)

        assert record.memory_type == REFLECTION
        assert record.importance == round(7 + 2 * 0.8)
        assert record.tags[:3] == ["pattern", "insight", "reflection"]
        assert record.based_on == nodes[0].parent_ids

    @pytest.mark.asyncio
    async def test_memories_are_reflected_on_once(self, stream):
        reflector = ReflectModule(stream)
        add_maze_memories(stream)

        await reflector.force_reflection()
        again = await reflector.force_reflection()

        assert again == []

    @pytest.mark.asyncio
    async def test_meta_reflection_after_five_first_order_nodes(self, stream, clock):
        reflector = ReflectModule(stream, min_reflections_for_meta=5)
        add_maze_memories(stream)
        first = await reflector.force_reflection()
        assert reflector.get_tree().second_order == []

        clock.advance(60)
        add_maze_memories(stream)
        second = await reflector.force_reflection()

        tree = reflector.get_tree()
        assert len(first) == 3
        assert len(second) == 4
        assert len(tree.first_order) == 6
        assert len(tree.second_order) == 1
        meta = tree.second_order[0]
        assert meta.level == 2
        assert meta.category == "meta"
        assert set(meta.parent_ids) == {n.id for n in tree.first_order}
        assert all(meta.id in n.child_ids for n in tree.first_order)
        assert tree.max_depth == 2

    @pytest.mark.asyncio
    async def test_meta_record_points_at_memory_records(self, stream, clock):
        reflector = ReflectModule(stream, min_reflections_for_meta=5)
        add_maze_memories(stream)
        await reflector.force_reflection()
        clock.advance(60)
        add_maze_memories(stream)
        await reflector.force_reflection()

        tree = reflector.get_tree()
        meta = tree.second_order[0]
        record = stream.get_by_id(meta.memory_id)

        assert set(record.based_on) == {n.memory_id for n in tree.first_order}
        assert all(stream.get_by_id(i) is not None for i in record.based_on)

    def test_pattern_detectors(self, stream):
        reflector = ReflectModule(stream)
        add_maze_memories(stream)
        stream.add_observation("Energy is low", 7)
        stream.add_observation("Moved east", 2, location=(3, 3))

        insights = reflector.detect_patterns(stream.get_all())

        assert [(i["category"], i["confidence"]) for i in insights] == [
            ("pattern", 0.8),
            ("strategy", 0.7),
            ("emotional", 0.9),
            ("learning", 0.6),
        ]
        assert insights[3]["insight"].startswith("I was last at (3, 3).")
        assert reflector.detect_patterns(stream.get_all()) == insights

    @pytest.mark.asyncio
    async def test_reflect_on_topic(self, stream):
        reflector = ReflectModule(stream)
        add_maze_memories(stream)

        nodes = await reflector.reflect_on("What patterns do these dead ends follow?")

        assert len(nodes) == 1
        assert nodes[0].question == "What patterns do these dead ends follow?"
        assert reflector.get_recent_reflections(1) == nodes


class TestModelPipeline:

    @pytest.mark.asyncio
    async def test_model_questions_answers_and_categories(self, stream):
        llm = scripted_llm()
        reflector = ReflectModule(stream, llm=llm)
        add_maze_memories(stream)

        nodes = await reflector.force_reflection()

        assert [n.question for n in nodes] == [
            "Why do I keep running into dead ends?",
            "Which junctions lead somewhere new?",
        ]
        assert all(n.content == "The western half of the maze is a cluster of dead ends." for n in nodes)
        assert all(n.category == "strategy" for n in nodes)
        assert all(n.confidence == pytest.approx(0.8) for n in nodes)

    @pytest.mark.asyncio
    async def test_malformed_model_output_falls_back(self, stream):
        llm = MagicMock()
        llm.is_available.return_value = True
        llm.generate = AsyncMock(return_value="???")
        reflector = ReflectModule(stream, llm=llm)
        add_maze_memories(stream)

        nodes = await reflector.force_reflection()

        assert [n.question for n in nodes] == HEURISTIC_QUESTIONS

    def test_parse_questions(self):
        assert parse_questions("1. What is behind the locked corridor?\n2. short", 3) == [
            "What is behind the locked corridor?"
        ]
        with pytest.raises(MalformedResponseError):
            parse_questions("nothing useful", 3)

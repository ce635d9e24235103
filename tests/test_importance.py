"""
Unit tests for importance scoring.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock

from mazemind.agent.memory import ImportanceScorer


def make_llm(response: str = "", available: bool = True, error: Exception = None):
    llm = MagicMock()
    llm.is_available.return_value = available
    llm.generate = AsyncMock(return_value=response, side_effect=error)
    return llm


class TestRuleScoring:

    def test_exit_is_most_important(self):
        assert ImportanceScorer().score("I can see the exit to the east!") == 10

    def test_survival_and_layout_keywords(self):
        scorer = ImportanceScorer()

        assert scorer.score("Spotted food in the corridor") == 7
        assert scorer.score("Hit a dead end") == 6
        assert scorer.score("Reached a junction") == 5

    def test_routine_text_gets_base_score(self):
        assert ImportanceScorer().score("Moved north one tile") == 3

    def test_short_text_capped(self):
        assert ImportanceScorer().score("exit") == 2


class TestModelScoring:

    @pytest.mark.asyncio
    async def test_model_answer_used_when_enabled(self):
        llm = make_llm("IMPORTANCE: 8")
        scorer = ImportanceScorer(llm=llm, use_llm=True)

        assert await scorer.score_async("Moved north one tile") == 8
        llm.generate.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_model_answer_clamped(self):
        scorer = ImportanceScorer(llm=make_llm("42"), use_llm=True)

        assert await scorer.score_async("Moved north one tile") == 10

    @pytest.mark.asyncio
    async def test_malformed_answer_falls_back(self):
        scorer = ImportanceScorer(llm=make_llm("very important"), use_llm=True)

        assert await scorer.score_async("Hit a dead end") == 6

    @pytest.mark.asyncio
    async def test_failure_falls_back(self):
        scorer = ImportanceScorer(llm=make_llm(error=RuntimeError("timeout")), use_llm=True)

        assert await scorer.score_async("Reached a junction") == 5

    @pytest.mark.asyncio
    async def test_model_not_called_when_disabled(self):
        llm = make_llm("9")
        scorer = ImportanceScorer(llm=llm, use_llm=False)

        assert await scorer.score_async("Reached a junction") == 5
        llm.generate.assert_not_called()

"""
ImportanceScorer - rate how important an observation is (1-10)

Rule-based by default; the language model can be used instead through
generate_or_fallback, in which case the rules are the fallback.
"""

from typing import Optional
import re

from loguru import logger

from mazemind.errors import MalformedResponseError
from mazemind.providers.base import GenerateOptions, LLMProvider
from mazemind.providers.fallback import generate_or_fallback

TAG = __name__

IMPORTANCE_PROMPT = """On a scale of 1 to 10, where 1 is purely mundane (a plain corridor, a routine step)
and 10 is extremely important (finding the exit, a life-threatening shortage),
rate the likely importance of the following memory for someone trying to survive and escape a maze.

MEMORY: {content}

Respond with a single number:
IMPORTANCE:"""


class ImportanceScorer:
    """importance scorer for maze observations"""

    def __init__(self, llm: Optional[LLMProvider] = None, use_llm: bool = False):
        """
        Args:
            llm: language model provider (optional)
            use_llm: score with the model when it is available
        """
        self.llm = llm
        self.use_llm = use_llm

        # keyword weights (rule-based scoring), max match wins
        self.keyword_weights = {
            # escape
            'exit': 10, 'escaped': 10, 'way out': 9,

            # survival
            'critical': 9, 'starving': 9, 'dehydrated': 9, 'exhausted': 8,
            'low': 7, 'hungry': 7, 'thirsty': 7, 'tired': 6,
            'food': 7, 'water': 7, 'energy': 6,
            'ate': 6, 'drank': 6, 'rested': 5,

            # layout
            'dead end': 6, 'junction': 5, 'trap': 8, 'danger': 8,
            'corridor': 3, 'entrance': 4,

            # routine
            'moved': 2, 'heading': 2, 'waiting': 1, 'wait': 1,
        }

        # special patterns (regular expressions)
        self.special_patterns = [
            (r'\b(found|discovered|spotted)\b', 7),      # discoveries
            (r'\b(lost|stuck|trapped|circles?)\b', 7),  # being lost
            (r'\b(stress|panic|afraid|scared)\b', 7),   # emotional state
            (r'\b(should|must|need to)\b', 6),          # intent
            (r'\bfirst time\b', 8),
        ]

    def score(self, content: str) -> int:
        """
        Rate an observation with the keyword rules

        Args:
            content: memory text

        Returns:
            importance score (1-10)
        """
        text = content.lower()
        base_score = 3

        max_keyword_score = 0
        for keyword, weight in self.keyword_weights.items():
            if keyword in text:
                max_keyword_score = max(max_keyword_score, weight)

        max_pattern_score = 0
        for pattern, weight in self.special_patterns:
            if re.search(pattern, text):
                max_pattern_score = max(max_pattern_score, weight)

        final_score = max(base_score, max_keyword_score, max_pattern_score)

        # very short text carries little information
        if len(text.strip()) < 5:
            final_score = min(final_score, 2)

        final_score = max(1, min(10, final_score))

        logger.bind(tag=TAG).debug(f"rule score: {content[:30]}... -> {final_score}")
        return final_score

    async def score_async(self, content: str) -> int:
        """Rate with the language model when enabled, rules otherwise"""
        available = bool(self.use_llm and self.llm is not None and self.llm.is_available())
        return await generate_or_fallback(
            lambda: self._score_with_llm(content),
            lambda: self.score(content),
            label="importance",
            available=available,
        )

    async def _score_with_llm(self, content: str) -> int:
        response = await self.llm.generate(
            IMPORTANCE_PROMPT.format(content=content),
            GenerateOptions(temperature=0.3, max_tokens=10),
        )
        match = re.search(r'\d+', response)
        if not match:
            raise MalformedResponseError(f"no number in importance answer: {response!r}")

        score = max(1, min(10, int(match.group())))
        logger.bind(tag=TAG).debug(f"LLM score: {content[:30]}... -> {score}")
        return score

"""
Capability contracts

Every call site depends on these interfaces only, never on a concrete
provider. Both capabilities may be absent: callers must check
is_available() or go through generate_or_fallback.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Protocol, runtime_checkable

from mazemind.errors import CapabilityUnavailableError


@dataclass
class GenerateOptions:
    temperature: float = 0.7
    max_tokens: int = 300
    stop: Optional[List[str]] = None


class LLMProvider(ABC):
    """Language-model capability"""

    name: str = "base"

    @abstractmethod
    async def generate(self, prompt: str, options: Optional[GenerateOptions] = None) -> str:
        """
        Generate a completion for a single prompt

        Raises:
            CapabilityUnavailableError: provider is not configured
            Exception: any transport or API failure (callers catch and fall back)
        """

    @abstractmethod
    def is_available(self) -> bool:
        """Whether the provider is configured and can be called"""


class HeuristicProvider(LLMProvider):
    """Placeholder provider used when no language model is configured"""

    name = "heuristic"

    async def generate(self, prompt: str, options: Optional[GenerateOptions] = None) -> str:
        raise CapabilityUnavailableError("no language model configured")

    def is_available(self) -> bool:
        return False


@runtime_checkable
class EmbeddingService(Protocol):
    """Embedding capability"""

    async def embed(self, text: str) -> List[float]: ...

    async def embed_batch(self, texts: List[str]) -> List[List[float]]: ...

    def is_available(self) -> bool: ...

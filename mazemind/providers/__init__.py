"""Language-model and embedding capabilities"""

from .base import EmbeddingService, GenerateOptions, HeuristicProvider, LLMProvider
from .fallback import generate_or_fallback
from .openai_provider import OpenAIProvider

__all__ = [
    "EmbeddingService",
    "GenerateOptions",
    "HeuristicProvider",
    "LLMProvider",
    "OpenAIProvider",
    "generate_or_fallback",
]

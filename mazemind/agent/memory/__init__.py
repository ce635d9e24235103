"""
Generative Agents memory system

Modules:
- memory_record: memory record data structure
- memory_stream: capacity-bounded memory stream
- importance_scorer: importance scoring
- embedding_generator: vector generation
- retrieve: three-factor memory retrieval
- reflection_node: reflection tree
- reflect: reflection mechanism
"""

from .memory_record import MemoryRecord, OBSERVATION, PLAN, REFLECTION
from .memory_stream import MemoryStream
from .importance_scorer import ImportanceScorer
from .embedding_generator import EmbeddingGenerator
from .retrieve import RetrievalResult, RetrieveModule
from .reflection_node import ReflectionNode, ReflectionTree
from .reflect import ReflectModule

__all__ = [
    "MemoryRecord",
    "OBSERVATION",
    "PLAN",
    "REFLECTION",
    "MemoryStream",
    "ImportanceScorer",
    "EmbeddingGenerator",
    "RetrievalResult",
    "RetrieveModule",
    "ReflectionNode",
    "ReflectionTree",
    "ReflectModule",
]

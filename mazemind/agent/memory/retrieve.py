"""
Retrieve module

Three-factor memory retrieval (Generative Agents):
1. Recency: decay_factor ^ hours_since_last_access
2. Importance: importance / 10
3. Relevance: cosine similarity between query and memory embeddings, mapped to [0, 1]

score = alpha * recency + beta * importance + gamma * relevance

The score is then degraded by a stress modifier (1.0 = none, 0.5 = worst).
Below the noise threshold uniform random noise is added on purpose, so
retrieval under acute stress is NOT deterministic.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple
import random

import numpy as np
from loguru import logger

from .memory_record import MemoryRecord
from .memory_stream import MemoryStream
from mazemind.world import to_position

TAG = __name__


@dataclass
class RetrievalResult:
    """A scored memory with the components that produced the score"""
    memory: MemoryRecord
    score: float
    recency: float
    importance: float
    relevance: float


class RetrieveModule:
    """
    retrieval module - rank memories against a query

    Memory embeddings are computed lazily on first use and cached on the record.
    """

    def __init__(
        self,
        memory_stream: MemoryStream,
        embedder=None,
        alpha: float = 0.3,    # recency weight
        beta: float = 0.3,     # importance weight
        gamma: float = 0.4,    # relevance weight
        decay_factor: float = 0.995,
        default_k: int = 10,
        noise_threshold: float = 0.8,
        noise_scale: float = 0.3,
        rng: Optional[random.Random] = None,
    ):
        """
        Args:
            memory_stream: the store to rank
            embedder: EmbeddingService (optional; without it relevance is 0)
            alpha: recency weight
            beta: importance weight
            gamma: relevance weight
            decay_factor: recency decay per hour, in (0, 1)
            default_k: result count when k is not given
            noise_threshold: stress modifiers below this add noise
            noise_scale: noise magnitude at stress modifier 0
            rng: random source for stress noise
        """
        self.memory_stream = memory_stream
        self.embedder = embedder
        self.alpha = alpha
        self.beta = beta
        self.gamma = gamma
        self.decay_factor = decay_factor
        self.default_k = default_k
        self.noise_threshold = noise_threshold
        self.noise_scale = noise_scale
        self.rng = rng or random.Random()

        logger.bind(tag=TAG).info(
            f"RetrieveModule initialized with weights: "
            f"alpha={alpha}, beta={beta}, gamma={gamma}, decay_factor={decay_factor}"
        )

    async def retrieve(
        self,
        query: str,
        k: Optional[int] = None,
        stress_modifier: float = 1.0,
    ) -> List[RetrievalResult]:
        """
        Rank every memory against the query

        Args:
            query: natural-language query, e.g. "Where did I see food?"
            k: max number of results
            stress_modifier: 1.0 = no degradation, 0.5 = worst case

        Returns:
            at most k results, sorted by combined score (descending)
        """
        return await self._rank(self.memory_stream.get_all(), query, k, stress_modifier)

    async def retrieve_by_type(
        self,
        memory_type: str,
        query: Optional[str] = None,
        k: Optional[int] = None,
        stress_modifier: float = 1.0,
    ) -> List[RetrievalResult]:
        """Same scoring restricted to one memory type"""
        candidates = self.memory_stream.get_by_type(memory_type)
        if not query:
            return self._rank_without_query(candidates, k)
        return await self._rank(candidates, query, k, stress_modifier)

    async def retrieve_by_location(
        self,
        location: Tuple[int, int],
        radius: float = 3,
        query: Optional[str] = None,
        k: Optional[int] = None,
        stress_modifier: float = 1.0,
    ) -> List[RetrievalResult]:
        """Same scoring restricted to memories near a tile"""
        candidates = self.memory_stream.get_near_location(to_position(location), radius)
        if not query:
            return self._rank_without_query(candidates, k)
        return await self._rank(candidates, query, k, stress_modifier)

    async def _rank(
        self,
        memories: List[MemoryRecord],
        query: str,
        k: Optional[int],
        stress_modifier: float,
    ) -> List[RetrievalResult]:
        k = self.default_k if k is None else k
        if not memories or k <= 0:
            return []

        now = self.memory_stream.clock()
        stress_modifier = max(0.5, min(1.0, float(stress_modifier)))

        query_embedding = await self._prepare_embeddings(query, memories)

        results = []
        for memory in memories:
            recency = self._calculate_recency(memory, now)
            importance = self._calculate_importance(memory)
            relevance = self._calculate_relevance(query_embedding, memory)

            score = (
                self.alpha * recency +
                self.beta * importance +
                self.gamma * relevance
            )
            score *= stress_modifier

            # cognitive degradation under acute stress
            if stress_modifier < self.noise_threshold:
                noise_level = (1 - stress_modifier) * self.noise_scale
                score += (self.rng.random() - 0.5) * noise_level

            logger.bind(tag=TAG).debug(
                f"Memory '{memory.description[:30]}...': "
                f"recency={recency:.4f}, importance={importance:.4f}, relevance={relevance:.4f}, "
                f"final_score={score:.4f}"
            )
            results.append(RetrievalResult(memory, float(score), recency, importance, relevance))

        # refresh last_accessed after scoring so recency reflects the pre-query state
        for memory in memories:
            self.memory_stream.mark_accessed(memory.id, now)

        # sort is stable, ties keep insertion order
        results.sort(key=lambda r: r.score, reverse=True)
        return results[:k]

    def _rank_without_query(self, memories: List[MemoryRecord], k: Optional[int]) -> List[RetrievalResult]:
        """No query text: recency + importance only"""
        k = self.default_k if k is None else k
        if not memories or k <= 0:
            return []

        now = self.memory_stream.clock()
        results = []
        for memory in memories:
            recency = self._calculate_recency(memory, now)
            importance = self._calculate_importance(memory)
            results.append(RetrievalResult(memory, recency + importance, recency, importance, 0.0))

        results.sort(key=lambda r: r.score, reverse=True)
        return results[:k]

    async def _prepare_embeddings(self, query: str, memories: List[MemoryRecord]) -> Optional[List[float]]:
        """
        Embed the query and any memory still lacking a vector

        Returns None when the embedding capability is missing or fails, in
        which case relevance scores 0 for this call.
        """
        if self.embedder is None or not self.embedder.is_available():
            return None

        try:
            query_embedding = await self.embedder.embed(query)

            missing = [m for m in memories if not m.has_embedding]
            if missing:
                vectors = await self.embedder.embed_batch([m.description for m in missing])
                for memory, vector in zip(missing, vectors):
                    self.memory_stream.set_embedding(memory.id, vector)

            return query_embedding
        except Exception as e:
            logger.bind(tag=TAG).error(f"Embedding failed, ranking by recency and importance only: {e}")
            return None

    def _calculate_recency(self, memory: MemoryRecord, current_time: float) -> float:
        score = self.decay_factor ** memory.get_hours_since_access(current_time)
        return max(0.0, min(1.0, score))

    def _calculate_importance(self, memory: MemoryRecord) -> float:
        return memory.importance / 10

    def _calculate_relevance(self, query_embedding: Optional[List[float]], memory: MemoryRecord) -> float:
        if query_embedding is None or not memory.has_embedding:
            return 0.0

        similarity = self._cosine_similarity(query_embedding, memory.embedding)

        # cosine similarity is in [-1, 1], map it to [0, 1]
        return (similarity + 1) / 2

    @staticmethod
    def _cosine_similarity(vec1: List[float], vec2: List[float]) -> float:
        if len(vec1) != len(vec2):
            logger.bind(tag=TAG).error(
                f"Vector dimension mismatch: {len(vec1)} vs {len(vec2)}"
            )
            return 0.0

        v1 = np.asarray(vec1, dtype=float)
        v2 = np.asarray(vec2, dtype=float)

        norm1 = np.linalg.norm(v1)
        norm2 = np.linalg.norm(v2)
        if norm1 == 0 or norm2 == 0:
            return 0.0

        similarity = float(np.dot(v1, v2) / (norm1 * norm2))
        return max(-1.0, min(1.0, similarity))

    async def generate_missing_embeddings(self) -> int:
        """Batch-embed every memory without a vector"""
        missing = self.memory_stream.get_needing_embeddings()
        if not missing:
            return 0
        if self.embedder is None or not self.embedder.is_available():
            return 0

        try:
            vectors = await self.embedder.embed_batch([m.description for m in missing])
        except Exception as e:
            logger.bind(tag=TAG).error(f"Batch embedding failed: {e}")
            return 0

        for memory, vector in zip(missing, vectors):
            self.memory_stream.set_embedding(memory.id, vector)

        logger.bind(tag=TAG).info(f"Generated {len(vectors)} embeddings")
        return len(vectors)

    def set_weights(
        self,
        alpha: Optional[float] = None,
        beta: Optional[float] = None,
        gamma: Optional[float] = None,
    ):
        """Update retrieval weights at runtime"""
        if alpha is not None:
            self.alpha = alpha
        if beta is not None:
            self.beta = beta
        if gamma is not None:
            self.gamma = gamma

        logger.bind(tag=TAG).info(
            f"Retrieval weights updated: alpha={self.alpha}, beta={self.beta}, gamma={self.gamma}"
        )

    def get_weights(self) -> Dict[str, float]:
        return {"recency": self.alpha, "importance": self.beta, "relevance": self.gamma}

    def get_statistics(self) -> Dict[str, object]:
        stats = self.memory_stream.get_statistics()
        return {
            "total_memories": stats["total"],
            "with_embeddings": stats["with_embeddings"],
            "without_embeddings": stats["total"] - stats["with_embeddings"],
            "weights": self.get_weights(),
        }

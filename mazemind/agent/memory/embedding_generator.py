"""
Embedding generator - vector representations for memories

Supported providers:
1. openai - OpenAI embedding API (or any compatible endpoint)
2. local - sentence-transformers model
3. hash - deterministic pseudo-embeddings (offline runs and tests)
4. none - no embedding capability; retrieval degrades to recency + importance
"""

from collections import OrderedDict
from typing import List, Optional, Dict, Any
import asyncio
import hashlib
import os

import numpy as np
from loguru import logger

from mazemind.errors import CapabilityUnavailableError, MalformedResponseError

TAG = __name__


class EmbeddingGenerator:
    """Embedding service with an in-process cache"""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """
        Args:
            config: dict with
                - provider: "openai", "local", "hash" or "none"
                - model: model name
                - api_key: API key (openai, defaults to OPENAI_API_KEY)
                - base_url: API base URL (optional)
                - dimension: vector dimension (hash provider)
                - timeout: request timeout in seconds
                - cache_size: max cached texts (0 disables the cache)
        """
        self.config = config if config is not None else {}
        self.provider = self.config.get("provider", "none")
        self.model = self.config.get("model", "text-embedding-3-small")
        self.dimension = int(self.config.get("dimension", 256))
        self.api_key = self.config.get("api_key") or os.getenv("OPENAI_API_KEY")
        self.base_url = self.config.get("base_url")
        self.timeout = float(self.config.get("timeout", 30.0))
        self.cache_size = int(self.config.get("cache_size", 1000))

        self.client = None
        self._cache: "OrderedDict[str, List[float]]" = OrderedDict()
        self.cache_hits = 0
        self.cache_misses = 0
        self.errors = 0

        self._initialize_client()

        logger.bind(tag=TAG).info(
            f"EmbeddingGenerator initialized with provider={self.provider}, "
            f"model={self.model}, dimension={self.dimension}"
        )

    def _initialize_client(self):
        if self.provider == "openai":
            if not self.api_key and not self.base_url:
                logger.bind(tag=TAG).warning("No API key for OpenAI embeddings, embedding capability disabled")
                self.provider = "none"
                return
            try:
                from openai import AsyncOpenAI
                self.client = AsyncOpenAI(
                    api_key=self.api_key or "not-needed",
                    base_url=self.base_url,
                    timeout=self.timeout,
                )
                logger.bind(tag=TAG).info("OpenAI embedding client initialized")
            except Exception as e:
                logger.bind(tag=TAG).error(f"Failed to initialize OpenAI client: {e}, embedding capability disabled")
                self.provider = "none"

        elif self.provider == "local":
            try:
                from sentence_transformers import SentenceTransformer
                self.client = SentenceTransformer(self.model)
                logger.bind(tag=TAG).info(f"Local sentence-transformer model '{self.model}' loaded")
            except ImportError:
                logger.bind(tag=TAG).error("sentence-transformers not installed, embedding capability disabled")
                self.provider = "none"
            except Exception as e:
                logger.bind(tag=TAG).error(f"Failed to load local model: {e}, embedding capability disabled")
                self.provider = "none"

        elif self.provider == "hash":
            logger.bind(tag=TAG).warning("Using hash embeddings (no semantic similarity)")

        elif self.provider != "none":
            logger.bind(tag=TAG).warning(f"Unknown provider '{self.provider}', embedding capability disabled")
            self.provider = "none"

    def is_available(self) -> bool:
        return self.provider != "none"

    async def embed(self, text: str) -> List[float]:
        """
        Embed a single text

        Raises:
            CapabilityUnavailableError: no provider configured
            Exception: provider failure (callers degrade relevance scoring)
        """
        return (await self.embed_batch([text]))[0]

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Embed several texts, cached ones are not re-sent"""
        if not self.is_available():
            raise CapabilityUnavailableError("no embedding provider configured")

        results: List[Optional[List[float]]] = [None] * len(texts)
        missing: Dict[str, List[int]] = {}
        for i, text in enumerate(texts):
            cached = self._cache_get(text)
            if cached is not None:
                results[i] = cached
            else:
                missing.setdefault(text, []).append(i)

        if missing:
            pending = list(missing.keys())
            try:
                vectors = await self._embed_uncached(pending)
            except Exception:
                self.errors += 1
                raise
            if len(vectors) != len(pending):
                self.errors += 1
                raise MalformedResponseError(
                    f"expected {len(pending)} embeddings, provider returned {len(vectors)}"
                )
            for text, vector in zip(pending, vectors):
                self._cache_put(text, vector)
                for i in missing[text]:
                    results[i] = vector

        return results

    async def _embed_uncached(self, texts: List[str]) -> List[List[float]]:
        if self.provider == "openai":
            return await self._generate_openai_embeddings(texts)
        if self.provider == "local":
            return await self._generate_local_embeddings(texts)
        return [self._generate_hash_embedding(text) for text in texts]

    async def _generate_openai_embeddings(self, texts: List[str]) -> List[List[float]]:
        if self.client is None:
            raise RuntimeError("OpenAI client not initialized")

        response = await asyncio.wait_for(
            self.client.embeddings.create(model=self.model, input=texts),
            timeout=self.timeout,
        )
        return [list(item.embedding) for item in response.data]

    async def _generate_local_embeddings(self, texts: List[str]) -> List[List[float]]:
        if self.client is None:
            raise RuntimeError("Local model not initialized")

        # SentenceTransformer.encode is synchronous, keep it off the event loop
        loop = asyncio.get_running_loop()
        embeddings = await loop.run_in_executor(None, self.client.encode, texts)
        return [emb.tolist() for emb in embeddings]

    def _generate_hash_embedding(self, text: str) -> List[float]:
        """Deterministic unit vector seeded by the text hash"""
        if not text or not text.strip():
            return [0.0] * self.dimension

        # the same text always maps to the same vector
        seed = int(hashlib.md5(text.encode()).hexdigest(), 16) % (2**32)
        rng = np.random.default_rng(seed)
        vec = rng.standard_normal(self.dimension)
        vec = vec / np.linalg.norm(vec)
        return vec.tolist()

    def _cache_get(self, text: str) -> Optional[List[float]]:
        if self.cache_size <= 0:
            return None
        vector = self._cache.get(text)
        if vector is None:
            self.cache_misses += 1
            return None
        self._cache.move_to_end(text)
        self.cache_hits += 1
        return vector

    def _cache_put(self, text: str, vector: List[float]):
        if self.cache_size <= 0:
            return
        self._cache[text] = vector
        self._cache.move_to_end(text)
        while len(self._cache) > self.cache_size:
            self._cache.popitem(last=False)

    def get_statistics(self) -> Dict[str, Any]:
        return {
            "provider": self.provider,
            "model": self.model,
            "available": self.is_available(),
            "cache_size": len(self._cache),
            "cache_hits": self.cache_hits,
            "cache_misses": self.cache_misses,
            "errors": self.errors,
        }

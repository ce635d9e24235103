"""
Unit tests for the embedding generator (hash and none providers, cache).
"""

import numpy as np
import pytest
from unittest.mock import AsyncMock

from mazemind.agent.memory import EmbeddingGenerator
from mazemind.errors import CapabilityUnavailableError, MalformedResponseError


class TestHashEmbeddings:

    @pytest.mark.asyncio
    async def test_deterministic_unit_vectors(self):
        generator = EmbeddingGenerator({"provider": "hash", "dimension": 32})
        other = EmbeddingGenerator({"provider": "hash", "dimension": 32, "cache_size": 0})

        a = await generator.embed("dead end to the north")
        b = await other.embed("dead end to the north")
        c = await generator.embed("water at the junction")

        assert a == b
        assert a != c
        assert len(a) == 32
        assert np.linalg.norm(a) == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_blank_text_is_zero_vector(self):
        generator = EmbeddingGenerator({"provider": "hash", "dimension": 8})

        assert await generator.embed("   ") == [0.0] * 8

    @pytest.mark.asyncio
    async def test_batch_uses_cache(self):
        generator = EmbeddingGenerator({"provider": "hash", "dimension": 8, "cache_size": 2})

        await generator.embed_batch(["a", "b"])
        vectors = await generator.embed_batch(["a", "c", "a"])

        assert len(vectors) == 3
        assert vectors[0] == vectors[2]
        stats = generator.get_statistics()
        assert stats["cache_hits"] == 2
        assert stats["cache_size"] == 2


class TestUnavailableProviders:

    @pytest.mark.asyncio
    async def test_none_provider_raises(self):
        generator = EmbeddingGenerator({"provider": "none"})

        assert generator.is_available() is False
        with pytest.raises(CapabilityUnavailableError):
            await generator.embed("anything")

    def test_unknown_provider_disabled(self):
        assert EmbeddingGenerator({"provider": "quantum"}).is_available() is False

    def test_openai_without_key_disabled(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)

        assert EmbeddingGenerator({"provider": "openai"}).is_available() is False

    @pytest.mark.asyncio
    async def test_provider_errors_propagate_and_count(self):
        generator = EmbeddingGenerator({"provider": "hash"})
        generator._embed_uncached = AsyncMock(side_effect=RuntimeError("boom"))

        with pytest.raises(RuntimeError):
            await generator.embed("text")
        assert generator.get_statistics()["errors"] == 1

    @pytest.mark.asyncio
    async def test_short_batch_rejected(self):
        generator = EmbeddingGenerator({"provider": "hash"})
        generator._embed_uncached = AsyncMock(return_value=[[1.0, 0.0]])

        with pytest.raises(MalformedResponseError):
            await generator.embed_batch(["first", "second"])
        assert generator.get_statistics()["errors"] == 1
        assert generator.get_statistics()["cache_size"] == 0

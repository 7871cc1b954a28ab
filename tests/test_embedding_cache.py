import asyncio

import pytest

from shared.cache.EmbeddingCache import EmbeddingCache
from shared.exceptions.errors import ProviderUnavailable


class StubEmbedder:
    """Embed client double that records calls and can hold or fail them."""

    def __init__(self):
        self.calls: list[list[str]] = []
        self.gate: asyncio.Event | None = None
        self.failures = 0
        self.fail_texts: set[str] = set()

    async def do_embed(self, texts):
        self.calls.append(list(texts))
        if self.gate is not None:
            await self.gate.wait()
        if self.failures:
            self.failures -= 1
            raise ProviderUnavailable("embedding provider down")
        if len(texts) > 1 and self.fail_texts.intersection(texts):
            raise ProviderUnavailable("batch rejected")
        if self.fail_texts.intersection(texts):
            raise ProviderUnavailable("text rejected")
        return [[float(len(text)), 1.0] for text in texts]


class TestEmbeddingCache:
    """Test suite for EmbeddingCache."""

    @pytest.fixture
    def embedder(self):
        return StubEmbedder()

    @pytest.fixture
    def cache(self, helper_config, embedder):
        return EmbeddingCache(helper_config=helper_config, embed_client=embedder, capacity=2)

    async def test_hit_does_not_call_provider(self, cache, embedder):
        first = await cache.get_or_compute("leave policy")
        second = await cache.get_or_compute("leave policy")
        assert first == second
        assert embedder.calls == [["leave policy"]]
        assert (cache.hits, cache.misses) == (1, 1)

    async def test_least_recently_used_entry_is_evicted(self, cache, embedder):
        await cache.get_or_compute("a")
        await cache.get_or_compute("b")
        await cache.get_or_compute("a")
        await cache.get_or_compute("c")
        assert "a" in cache
        assert "b" not in cache
        assert len(cache) == 2

    async def test_concurrent_misses_share_one_call(self, cache, embedder):
        embedder.gate = asyncio.Event()
        tasks = [asyncio.create_task(cache.get_or_compute("same question")) for _ in range(5)]
        await asyncio.sleep(0)
        embedder.gate.set()
        results = await asyncio.gather(*tasks)
        assert len(embedder.calls) == 1
        assert all(result == results[0] for result in results)

    async def test_failures_are_not_cached(self, cache, embedder):
        embedder.failures = 1
        with pytest.raises(ProviderUnavailable):
            await cache.get_or_compute("flaky")
        assert "flaky" not in cache
        assert await cache.get_or_compute("flaky") == [5.0, 1.0]
        assert len(embedder.calls) == 2

    async def test_concurrent_waiters_all_see_the_failure(self, cache, embedder):
        embedder.gate = asyncio.Event()
        embedder.failures = 1
        tasks = [asyncio.create_task(cache.get_or_compute("down")) for _ in range(3)]
        await asyncio.sleep(0)
        embedder.gate.set()
        results = await asyncio.gather(*tasks, return_exceptions=True)
        assert all(isinstance(result, ProviderUnavailable) for result in results)
        assert len(embedder.calls) == 1

    async def test_cancelled_caller_does_not_cancel_waiters(self, cache, embedder):
        embedder.gate = asyncio.Event()
        first = asyncio.create_task(cache.get_or_compute("q"))
        await asyncio.sleep(0)
        second = asyncio.create_task(cache.get_or_compute("q"))
        await asyncio.sleep(0)
        first.cancel()
        await asyncio.sleep(0)
        embedder.gate.set()
        assert await second == [1.0, 1.0]
        assert first.cancelled()
        assert "q" in cache
        assert len(embedder.calls) == 2

    async def test_many_sends_unique_misses_in_one_batch(self, helper_config, embedder):
        cache = EmbeddingCache(helper_config=helper_config, embed_client=embedder, capacity=10)
        await cache.get_or_compute("known")
        vectors = await cache.get_or_compute_many(["b", "known", "a", "b"])
        assert embedder.calls == [["known"], ["a", "b"]]
        assert vectors == [[1.0, 1.0], [5.0, 1.0], [1.0, 1.0], [1.0, 1.0]]

    async def test_many_falls_back_to_single_lookups(self, helper_config, embedder):
        cache = EmbeddingCache(helper_config=helper_config, embed_client=embedder, capacity=10)
        embedder.fail_texts = {"bad"}
        with pytest.raises(ProviderUnavailable):
            await cache.get_or_compute_many(["good", "bad"])
        assert "good" in cache
        assert "bad" not in cache

    def test_capacity_must_be_positive(self, helper_config, embedder):
        with pytest.raises(ValueError):
            EmbeddingCache(helper_config=helper_config, embed_client=embedder, capacity=0)

"""Tests for the bounded caches and single-flight deduplication."""

import pytest
import asyncio

from review_search.caching import BoundedCache, CacheManager, SingleFlight
from review_search.documents import DocumentContext


class TestBoundedCache:
    """Test FIFO eviction and statistics."""

    def test_evicts_first_inserted_key(self):
        """Inserting N+1 keys into a capacity-N cache evicts exactly the oldest one."""
        cache = BoundedCache("test", max_size=3)
        for key in ("a", "b", "c"):
            cache.set(key, key.upper())

        cache.set("d", "D")

        assert "a" not in cache
        assert cache.keys() == ["b", "c", "d"]
        assert cache.stats.evictions == 1

    def test_reads_do_not_refresh_position(self):
        cache = BoundedCache("test", max_size=2)
        cache.set("a", 1)
        cache.set("b", 2)

        # A hit on "a" must not protect it from eviction
        assert cache.get("a") == 1
        cache.set("c", 3)

        assert cache.get("a") is None
        assert cache.get("b") == 2

    def test_overwrite_keeps_size(self):
        cache = BoundedCache("test", max_size=2)
        cache.set("a", 1)
        cache.set("a", 2)

        assert len(cache) == 1
        assert cache.get("a") == 2
        assert cache.stats.evictions == 0

    def test_hit_and_miss_counters(self):
        cache = BoundedCache("test", max_size=2)
        cache.set("a", 1)

        cache.get("a")
        cache.get("missing")

        assert cache.stats.hits == 1
        assert cache.stats.misses == 1
        assert cache.stats.hit_rate == 0.5

    def test_contains_does_not_count(self):
        cache = BoundedCache("test", max_size=2)
        cache.set("a", 1)

        assert cache.contains("a")
        assert cache.stats.total_requests == 0

    def test_discard(self):
        cache = BoundedCache("test", 2)
        cache.set("a", 1)

        assert cache.discard("a") is True
        assert cache.discard("a") is False
        assert len(cache) == 0

    def test_rejects_non_positive_capacity(self):
        with pytest.raises(ValueError):
            BoundedCache("test", max_size=0)


class TestSingleFlight:
    """Test concurrent deduplication."""

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_computation(self):
        flight = SingleFlight("test")
        calls = 0

        async def compute():
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.01)
            return {"value": 42}

        results = await asyncio.gather(*(flight.run("key", compute) for _ in range(5)))

        assert calls == 1
        assert flight.computations == 1
        assert all(result is results[0] for result in results)
        assert flight.stats.hits == 4
        assert len(flight) == 0

    @pytest.mark.asyncio
    async def test_failure_reaches_every_waiter(self):
        flight = SingleFlight("test")

        async def compute():
            await asyncio.sleep(0.01)
            raise RuntimeError("boom")

        results = await asyncio.gather(
            flight.run("key", compute), flight.run("key", compute), return_exceptions=True
        )

        assert all(isinstance(result, RuntimeError) for result in results)
        assert flight.computations == 1

    @pytest.mark.asyncio
    async def test_recomputes_after_completion(self):
        flight = SingleFlight("test")

        async def compute():
            return 1

        await flight.run("key", compute)
        await flight.run("key", compute)

        assert flight.computations == 2

    @pytest.mark.asyncio
    async def test_distinct_keys_compute_separately(self):
        flight = SingleFlight("test")

        async def compute():
            await asyncio.sleep(0.01)
            return object()

        first, second = await asyncio.gather(flight.run("a", compute), flight.run("b", compute))

        assert first is not second
        assert flight.computations == 2


class TestCacheManager:
    """Test the named cache handles."""

    @pytest.fixture
    def cache_mgr(self):
        """Create a fresh cache manager for testing."""
        return CacheManager(max_cache_size=10, max_embedding_cache_size=5)

    @pytest.mark.asyncio
    async def test_document_context_computed_once(self, cache_mgr):
        calls = 0

        async def compute():
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.01)
            return DocumentContext(area="Backend")

        first, second = await asyncio.gather(
            cache_mgr.get_document_context("/proj/docs/api.md", compute),
            cache_mgr.get_document_context("/proj/docs/api.md", compute),
        )
        third = await cache_mgr.get_document_context("/proj/docs/api.md", compute)

        assert calls == 1
        assert first is second is third
        assert cache_mgr.document_contexts.contains("/proj/docs/api.md")

    def test_capacities(self, cache_mgr):
        assert cache_mgr.embeddings.max_size == 5
        assert cache_mgr.document_contexts.max_size == 10
        assert cache_mgr.heading_embeddings.max_size == 10

    def test_clear_all_caches(self, cache_mgr):
        cache_mgr.embeddings.set("text", [0.1])
        cache_mgr.heading_embeddings.set("Title", [0.2])
        cache_mgr.document_chunks.set("/proj", {"README.md": []})
        cache_mgr.custom_documents.set("/proj", [])
        cache_mgr.embeddings.get("text")

        cleared = cache_mgr.clear_all_caches()

        assert cleared["embedding"] == 1
        assert cleared["heading_embedding"] == 1
        assert cleared["document_chunks"] == 1
        assert cleared["custom_documents"] == 1
        assert len(cache_mgr.embeddings) == 0
        assert cache_mgr.embeddings.stats.hits == 0

    def test_cache_stats(self, cache_mgr):
        """Test cache statistics tracking."""
        stats = cache_mgr.get_cache_stats()

        assert "hits" in stats
        assert "misses" in stats
        assert "evictions" in stats
        assert stats["hit_rate"] == 0.0  # No requests yet
        assert stats["limits"]["max_embedding_cache_size"] == 5

    def test_cache_status(self, cache_mgr):
        status = cache_mgr.get_cache_status()

        assert status["total_cached_items"] == 0
        assert status["memory_efficiency"] == "idle"

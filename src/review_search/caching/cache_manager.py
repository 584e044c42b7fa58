"""Bounded in-process caches and single-flight deduplication for expensive lookups."""

import asyncio
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Generic, Hashable, List, Optional, TypeVar

from ..config import config
from ..logging import get_logger

if TYPE_CHECKING:
    from ..documents.context import DocumentContext
    from ..semantic.models import CustomDocumentChunk

logger = get_logger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

_MISSING = object()


@dataclass
class CacheStats:
    """Hit, miss and eviction counters for one cache."""

    hits: int = 0
    misses: int = 0
    evictions: int = 0

    @property
    def total_requests(self) -> int:
        return self.hits + self.misses

    @property
    def hit_rate(self) -> float:
        return self.hits / self.total_requests if self.total_requests > 0 else 0.0

    def reset(self) -> None:
        self.hits = 0
        self.misses = 0
        self.evictions = 0


class BoundedCache(Generic[K, V]):
    """Capacity-bounded map that evicts the oldest inserted key first.

    Reads do not refresh an entry's position, so eviction order is insertion
    order rather than recency of use.
    """

    def __init__(self, name: str, max_size: int) -> None:
        if max_size <= 0:
            raise ValueError("Cache capacity must be positive")
        self.name = name
        self.max_size = max_size
        self.stats = CacheStats()
        self._entries: "OrderedDict[K, V]" = OrderedDict()

    def get(self, key: K) -> Optional[V]:
        if key in self._entries:
            self.stats.hits += 1
            return self._entries[key]
        self.stats.misses += 1
        return None

    def set(self, key: K, value: V) -> None:
        if key in self._entries:
            self._entries[key] = value
            return
        while len(self._entries) >= self.max_size:
            evicted_key, _ = self._entries.popitem(last=False)
            self.stats.evictions += 1
            logger.debug("Cache eviction", cache=self.name, key=str(evicted_key)[:80])
        self._entries[key] = value

    def contains(self, key: K) -> bool:
        """Membership test that does not touch the hit/miss counters."""
        return key in self._entries

    def discard(self, key: K) -> bool:
        return self._entries.pop(key, _MISSING) is not _MISSING

    def keys(self) -> List[K]:
        return list(self._entries.keys())

    def clear(self) -> int:
        size = len(self._entries)
        self._entries.clear()
        return size

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries


class SingleFlight(Generic[K, V]):
    """Collapses concurrent computations for the same key onto one in-flight call.

    All callers that arrive while a computation is running await the same
    future and receive the same result or exception.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self.stats = CacheStats()
        self._in_flight: Dict[K, "asyncio.Future[V]"] = {}
        self.computations = 0

    async def run(self, key: K, factory: Callable[[], Awaitable[V]]) -> V:
        """Return the result of ``factory()``, sharing one call among concurrent callers."""
        pending = self._in_flight.get(key)
        if pending is not None:
            self.stats.hits += 1
            return await asyncio.shield(pending)

        self.stats.misses += 1
        future: "asyncio.Future[V]" = asyncio.get_running_loop().create_future()
        self._in_flight[key] = future
        self.computations += 1
        try:
            result = await factory()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            future.set_exception(e)
            # Mark retrieved so an unjoined failure is not reported as unhandled
            future.exception()
            raise
        else:
            future.set_result(result)
            return result
        finally:
            self._in_flight.pop(key, None)

    def clear(self) -> int:
        size = len(self._in_flight)
        self._in_flight.clear()
        return size

    def __len__(self) -> int:
        return len(self._in_flight)


class CacheManager:
    """Owns the named caches shared by the model manager and the retriever."""

    def __init__(self, max_cache_size: int = None, max_embedding_cache_size: int = None) -> None:
        """Initialize the cache manager."""
        self.max_cache_size = max_cache_size or config.semantic.max_cache_size
        self.max_embedding_cache_size = max_embedding_cache_size or config.semantic.max_embedding_cache_size

        self.document_contexts: BoundedCache[str, "DocumentContext"] = BoundedCache(
            "document_context", self.max_cache_size
        )
        self.document_context_flights: SingleFlight[str, "DocumentContext"] = SingleFlight(
            "document_context_promise"
        )
        self.heading_embeddings: BoundedCache[str, List[float]] = BoundedCache(
            "heading_embedding", self.max_cache_size
        )
        self.embeddings: BoundedCache[str, List[float]] = BoundedCache(
            "embedding", self.max_embedding_cache_size
        )
        self.embedding_flights: SingleFlight[str, Optional[List[float]]] = SingleFlight("embedding_promise")
        # project scope -> relative document path -> chunk dicts
        self.document_chunks: BoundedCache[str, Dict[str, List[Dict[str, Any]]]] = BoundedCache(
            "document_chunks", self.max_cache_size
        )
        # project scope -> embedded custom document chunks
        self.custom_documents: BoundedCache[str, List["CustomDocumentChunk"]] = BoundedCache(
            "custom_documents", self.max_cache_size
        )
        self._created = time.monotonic()

    @property
    def caches(self) -> List[BoundedCache]:
        return [
            self.document_contexts,
            self.heading_embeddings,
            self.embeddings,
            self.document_chunks,
            self.custom_documents,
        ]

    async def get_document_context(
        self,
        key: str,
        compute: Callable[[], Awaitable["DocumentContext"]]
    ) -> "DocumentContext":
        """Cached document context, computing it at most once per key across concurrent callers."""
        cached = self.document_contexts.get(key)
        if cached is not None:
            return cached

        async def _compute_and_store() -> "DocumentContext":
            context = await compute()
            self.document_contexts.set(key, context)
            return context

        return await self.document_context_flights.run(key, _compute_and_store)

    def clear_all_caches(self) -> Dict[str, int]:
        """Empty every cache and reset statistics."""
        cleared = {cache.name: cache.clear() for cache in self.caches}
        cleared[self.document_context_flights.name] = self.document_context_flights.clear()
        cleared[self.embedding_flights.name] = self.embedding_flights.clear()
        for cache in self.caches:
            cache.stats.reset()
        logger.info("Cleared all caches", **cleared)
        return cleared

    def get_cache_stats(self) -> Dict[str, Any]:
        """Get cache performance statistics."""
        hits = sum(cache.stats.hits for cache in self.caches)
        misses = sum(cache.stats.misses for cache in self.caches)
        evictions = sum(cache.stats.evictions for cache in self.caches)
        total_requests = hits + misses

        return {
            "sizes": {cache.name: len(cache) for cache in self.caches} | {
                self.document_context_flights.name: len(self.document_context_flights),
            },
            "limits": {
                "max_cache_size": self.max_cache_size,
                "max_embedding_cache_size": self.max_embedding_cache_size,
            },
            "per_cache": {
                cache.name: {
                    "hits": cache.stats.hits,
                    "misses": cache.stats.misses,
                    "evictions": cache.stats.evictions,
                    "hit_rate": cache.stats.hit_rate,
                }
                for cache in self.caches
            },
            "hits": hits,
            "misses": misses,
            "evictions": evictions,
            "hit_rate": hits / total_requests if total_requests > 0 else 0.0,
            "total_requests": total_requests,
            "uptime_seconds": time.monotonic() - self._created,
        }

    def get_cache_status(self) -> Dict[str, Any]:
        """Short summary for status displays."""
        stats = self.get_cache_stats()
        total_items = sum(stats["sizes"].values())
        return {
            "total_cached_items": total_items,
            "hit_rate": f"{stats['hit_rate'] * 100:.2f}%",
            "memory_efficiency": "active" if total_items > 0 else "idle",
            "uptime": f"{int(stats['uptime_seconds'])}s",
        }

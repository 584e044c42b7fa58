"""In-process caching for embeddings and document contexts."""

from .cache_manager import BoundedCache, CacheManager, CacheStats, SingleFlight

__all__ = [
    "BoundedCache",
    "CacheManager",
    "CacheStats",
    "SingleFlight",
]

"""
Cache orchestration: TTL lookup in front of deduplicated fetches.
"""
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from dashsync.coordination import RequestCoordinator
from .store import TTLCache

logger = logging.getLogger("cache.manager")


class CacheManager:
    """
    Read-through cache for list and detail fetches:
    - A live entry is returned without touching the network
    - A miss (or forced refresh) runs the fetch deduplicated under the cache key
    - Only successful results are stored; a failed fetch leaves the cache untouched
    - A result is not stored if its key was invalidated while it was in flight

    Two panels asking for the same list within its TTL window therefore share
    one request while it is in flight and the cached value afterwards.
    """

    def __init__(self, cache: TTLCache, coordinator: RequestCoordinator):
        self.cache = cache
        self._coordinator = coordinator
        self._stats = {
            "hits": 0,
            "misses": 0,
            "forced": 0,
            "stored": 0,
            "discarded": 0,
        }

    async def get(
        self,
        cache_key: str,
        fetch_fn: Callable[[], Awaitable[Any]],
        ttl: Optional[float] = None,
        force_refresh: bool = False,
    ) -> Any:
        """
        Get data from cache or fetch it.

        Args:
            cache_key: Cache and deduplication key
            fetch_fn: Zero-argument callable returning an awaitable
            ttl: Seconds to keep the fetched value (cache default when None)
            force_refresh: Skip the cache lookup

        Returns:
            Cached or freshly fetched data
        """
        if force_refresh:
            logger.info(f"FORCE REFRESH: {cache_key}")
            self._stats["forced"] += 1
        else:
            entry = self.cache.lookup(cache_key)
            if entry is not None:
                logger.debug(f"CACHE HIT: {cache_key}")
                self._stats["hits"] += 1
                return entry.data
            logger.info(f"CACHE MISS: {cache_key}")
            self._stats["misses"] += 1

        async def fetch_and_store() -> Any:
            version = self.cache.version
            data = await fetch_fn()
            if self.cache.invalidated_since(cache_key, version):
                # Key invalidated while in flight: the result may predate the change
                logger.debug(f"NOT STORED (invalidated during fetch): {cache_key}")
                self._stats["discarded"] += 1
                return data
            self.cache.set(cache_key, data, ttl)
            self._stats["stored"] += 1
            return data

        return await self._coordinator.run_deduplicated(cache_key, fetch_and_store)

    def get_stats(self) -> Dict[str, Any]:
        """Get cache manager statistics."""
        lookups = self._stats["hits"] + self._stats["misses"]
        hit_rate = (self._stats["hits"] / lookups * 100) if lookups > 0 else 0
        return {
            "hits": self._stats["hits"],
            "misses": self._stats["misses"],
            "forced": self._stats["forced"],
            "stored": self._stats["stored"],
            "discarded": self._stats["discarded"],
            "hit_rate_percent": round(hit_rate, 1),
            "cache": self.cache.get_stats(),
        }

"""
In-memory TTL cache with lazy expiry and prefix invalidation.

There is no background sweep: an expired entry is removed by the read that
finds it, or by explicit invalidation. Expiry is measured on this process's
monotonic clock only, so entries are meaningless to any other process.
"""
import logging
import time
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple, TypeVar

from .core import CacheEntry

logger = logging.getLogger("cache.store")

T = TypeVar("T")

DEFAULT_TTL_SECONDS = 30.0

# Invalidations remembered for in-flight fetches; older ones count as matching
INVALIDATION_LOG_SIZE = 256


class TTLCache:
    """
    Key -> CacheEntry mapping.

    Usage:
        cache = TTLCache()
        cache.set("redirects:site:7:v1", response, ttl=30)
        cached = cache.get("redirects:site:7:v1")
    """

    def __init__(
        self,
        default_ttl: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._entries: Dict[str, CacheEntry[Any]] = {}
        self._default_ttl = default_ttl
        self._clock = clock
        self._version = 0
        # (version, key or prefix, is_prefix); clear is logged as the empty prefix
        self._invalidations: Deque[Tuple[int, str, bool]] = deque(maxlen=INVALIDATION_LOG_SIZE)

        self._stats = {
            "hits": 0,
            "misses": 0,
            "expired": 0,
            "invalidations": 0,
        }

    @property
    def version(self) -> int:
        """Bumped by every invalidation and clear, whether or not anything was removed."""
        return self._version

    def _record_invalidation(self, target: str, is_prefix: bool) -> None:
        self._version += 1
        self._invalidations.append((self._version, target, is_prefix))

    def invalidated_since(self, key: str, version: int) -> bool:
        """
        Check whether an invalidation matching ``key`` happened after ``version``.

        Invalidations of other keys or prefixes do not count. When the log no
        longer reaches back to ``version`` the answer is conservatively True.
        """
        if version >= self._version:
            return False
        if not self._invalidations or self._invalidations[0][0] > version + 1:
            return True
        for seen, target, is_prefix in reversed(self._invalidations):
            if seen <= version:
                break
            if is_prefix and key.startswith(target):
                return True
            if not is_prefix and key == target:
                return True
        return False

    def get(self, key: str, default: Optional[T] = None) -> Optional[T]:
        """
        Get a live value.

        Returns ``default`` when the key is missing or expired; an expired
        entry is deleted as a side effect.
        """
        entry = self._entries.get(key)
        if entry is None:
            self._stats["misses"] += 1
            return default

        if not entry.is_live(self._clock()):
            del self._entries[key]
            self._stats["expired"] += 1
            self._stats["misses"] += 1
            logger.debug(f"Cache entry expired: {key}")
            return default

        self._stats["hits"] += 1
        return entry.data

    def lookup(self, key: str) -> Optional[CacheEntry[Any]]:
        """Get the live entry itself (with timing metadata), applying lazy expiry."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if not entry.is_live(self._clock()):
            del self._entries[key]
            self._stats["expired"] += 1
            return None
        return entry

    def set(self, key: str, value: T, ttl: Optional[float] = None) -> None:
        """Store ``value`` with ``expiry = now + ttl``."""
        now = self._clock()
        ttl = self._default_ttl if ttl is None else ttl
        self._entries[key] = CacheEntry(data=value, stored_at=now, expires_at=now + ttl)

    def invalidate(self, key: str) -> bool:
        """
        Remove one entry.

        Returns:
            True if an entry was found and removed
        """
        self._record_invalidation(key, is_prefix=False)
        if key in self._entries:
            del self._entries[key]
            self._stats["invalidations"] += 1
            logger.info(f"Invalidated cache: {key}")
            return True
        return False

    def invalidate_by_prefix(self, prefix: str) -> int:
        """
        Remove every entry whose key starts with ``prefix``.

        Returns:
            Number of entries removed
        """
        self._record_invalidation(prefix, is_prefix=True)
        to_delete = [k for k in self._entries if k.startswith(prefix)]
        for key in to_delete:
            del self._entries[key]
        if to_delete:
            self._stats["invalidations"] += len(to_delete)
            logger.info(f"Invalidated {len(to_delete)} entries with prefix '{prefix}'")
        return len(to_delete)

    def clear(self) -> int:
        """
        Clear all entries.

        Returns:
            Number of entries cleared
        """
        self._record_invalidation("", is_prefix=True)
        count = len(self._entries)
        self._entries.clear()
        logger.info(f"Cleared {count} cache entries")
        return count

    def keys(self) -> List[str]:
        """Keys currently held, including ones that expired but were not read yet."""
        return list(self._entries.keys())

    def __contains__(self, key: str) -> bool:
        return self.lookup(key) is not None

    def __len__(self) -> int:
        return len(self._entries)

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        lookups = self._stats["hits"] + self._stats["misses"]
        hit_rate = (self._stats["hits"] / lookups * 100) if lookups > 0 else 0
        return {
            "size": len(self._entries),
            "keys": list(self._entries.keys()),
            "hits": self._stats["hits"],
            "misses": self._stats["misses"],
            "expired": self._stats["expired"],
            "invalidations": self._stats["invalidations"],
            "hit_rate_percent": round(hit_rate, 1),
        }

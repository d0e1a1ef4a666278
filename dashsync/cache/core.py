"""
Core cache data structures.
"""
from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


@dataclass
class CacheEntry(Generic[T]):
    """
    A cached value with an absolute expiry on the owning process's monotonic clock.
    """
    data: T
    stored_at: float
    expires_at: float

    @property
    def ttl_seconds(self) -> float:
        return self.expires_at - self.stored_at

    def is_live(self, now: float) -> bool:
        """Entry is usable only while read strictly before its expiry."""
        return now < self.expires_at

    def age_seconds(self, now: float) -> float:
        """Seconds since the value was stored."""
        return now - self.stored_at

"""
TTL caching with prefix invalidation and deduplicated read-through fetches.
"""
from .core import CacheEntry
from .store import TTLCache, DEFAULT_TTL_SECONDS
from .ttl_policies import (
    TTL_CONFIG,
    PREFIX_SITE_REDIRECTS,
    PREFIX_REDIRECTS,
    PREFIX_REDIRECT_DETAIL,
    PREFIX_TDS,
    get_ttl,
)
from .manager import CacheManager

__all__ = [
    # Core types
    "CacheEntry",
    "TTLCache",
    "DEFAULT_TTL_SECONDS",
    # TTL policies
    "TTL_CONFIG",
    "PREFIX_SITE_REDIRECTS",
    "PREFIX_REDIRECTS",
    "PREFIX_REDIRECT_DETAIL",
    "PREFIX_TDS",
    "get_ttl",
    # Manager
    "CacheManager",
]

"""Cache Module - Caching infrastructure for vcimage.

Public API (the "studs"):
    From scoped_cache:
        ScopedCache: Named, process-wide TTL cache keyed by account/region
        CacheEntry: Cached value with its timestamp
        make_scope_key: Create cache key from account and region
        PERMANENT_TTL: TTL used for values that must never expire
"""

from vcimage.cache.scoped_cache import (
    PERMANENT_TTL,
    CacheEntry,
    ScopedCache,
    make_scope_key,
)

__all__ = [
    "PERMANENT_TTL",
    "CacheEntry",
    "ScopedCache",
    "make_scope_key",
]

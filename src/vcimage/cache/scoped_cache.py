"""Scoped Cache Module - In-memory TTL caching per account/region scope.

Philosophy:
- One named cache per concern (catalog lists, image lists, refresh mutexes)
- Entries keyed by "account:region" scope
- TTL-based expiration, checked on read
- Thread-safe operations, including an atomic get-or-create

Public API (the "studs"):
    ScopedCache: Named, process-wide TTL cache keyed by scope
    CacheEntry: Cached value with its timestamp
    make_scope_key: Create cache key from account and region
"""

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from vcimage.models import ProviderContext

logger = logging.getLogger(__name__)

# Five hundred weeks: refresh mutexes must outlive any realistic process
PERMANENT_TTL = 500 * 7 * 24 * 3600


def make_scope_key(account_number: str, region_id: str) -> str:
    """Create cache key from account and region.

    Example:
        >>> make_scope_key("acme", "org-1")
        'acme:org-1'
    """
    return f"{account_number}:{region_id}"


@dataclass
class CacheEntry:
    """Cached value with the time it was stored.

    Attributes:
        value: Cached value (a list of records, a lock, ...)
        timestamp: time.time() when the value was stored
    """

    value: Any
    timestamp: float

    def is_expired(self, ttl: float, now: float | None = None) -> bool:
        """Check if the entry is older than ttl seconds."""
        age = (now if now is not None else time.time()) - self.timestamp
        return age > ttl


class ScopedCache:
    """TTL cache keyed by account/region scope.

    Instances are shared per name across the process, so every component that
    asks for "listImages" sees the same entries.

    Example:
        >>> cache = ScopedCache.get_instance("privateCatalogs", ttl=1800)
        >>> cache.put(context, catalogs)
        >>> cache.get(context)  # catalogs, until 30 minutes have passed
    """

    _instances: dict[str, "ScopedCache"] = {}
    _instances_lock = threading.Lock()

    def __init__(self, name: str, ttl: float, clock: Callable[[], float] = time.time):
        self.name = name
        self.ttl = ttl
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    @classmethod
    def get_instance(cls, name: str, ttl: float) -> "ScopedCache":
        """Get the process-wide cache with this name, creating it on first use.

        The ttl of an existing instance is updated so configuration changes
        take effect.
        """
        with cls._instances_lock:
            cache = cls._instances.get(name)
            if cache is None:
                cache = cls(name, ttl)
                cls._instances[name] = cache
            else:
                cache.ttl = ttl
            return cache

    @classmethod
    def reset_all(cls) -> None:
        """Forget every named cache. Intended for tests."""
        with cls._instances_lock:
            cls._instances.clear()

    def _get_locked(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            logger.debug(f"Cache miss ({self.name}): '{key}' not found")
            return None
        if entry.is_expired(self.ttl, self._clock()):
            logger.debug(f"Cache miss ({self.name}): '{key}' expired")
            del self._entries[key]
            return None
        logger.debug(f"Cache hit ({self.name}): '{key}'")
        return entry.value

    def get(self, context: ProviderContext) -> Any | None:
        """Get the cached value for a scope, or None if absent or expired."""
        key = make_scope_key(context.account_number, context.region_id)
        with self._lock:
            return self._get_locked(key)

    def put(self, context: ProviderContext, value: Any) -> None:
        """Store a value for a scope."""
        key = make_scope_key(context.account_number, context.region_id)
        with self._lock:
            self._entries[key] = CacheEntry(value=value, timestamp=self._clock())
        logger.debug(f"Cache set ({self.name}): '{key}' (TTL: {self.ttl}s)")

    def get_or_create(self, context: ProviderContext, factory: Callable[[], Any]) -> Any:
        """Atomically get the value for a scope, creating it if absent.

        Two concurrent callers for the same scope always receive the same
        value; the factory runs at most once per missing entry.
        """
        key = make_scope_key(context.account_number, context.region_id)
        with self._lock:
            value = self._get_locked(key)
            if value is None:
                value = factory()
                self._entries[key] = CacheEntry(value=value, timestamp=self._clock())
                logger.debug(f"Cache created ({self.name}): '{key}'")
            return value

    def invalidate(self, context: ProviderContext | None = None) -> None:
        """Drop the entry for one scope, or every entry when context is None."""
        with self._lock:
            if context is None:
                self._entries.clear()
            else:
                self._entries.pop(make_scope_key(context.account_number, context.region_id), None)


__all__ = ["PERMANENT_TTL", "CacheEntry", "ScopedCache", "make_scope_key"]

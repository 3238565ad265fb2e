import asyncio
import fnmatch
import math
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import structlog
from cachetools import TLRUCache, TTLCache

from app.core.config import Settings

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    value: Any
    ttl: float
    written_at: float


def _time_to_use(_key: str, entry: CacheEntry, now: float) -> float:
    # TLRUCache drops an entry once timer() >= ttu; an entry aged exactly ttl stays
    return math.nextafter(entry.written_at + entry.ttl, math.inf)


class CacheLayer:
    """
    Process-local key/value cache with a TTL per entry.

    Features:
    - Lazy expiry: an entry older than its TTL is evicted when it is read;
      one aged exactly its TTL is still served
    - Explicit invalidation by key, by glob pattern, or wholesale
    - Stampede protection with per-key locks for read-through loads
    - Automatic key namespacing

    Nothing is persisted; contents live as long as the process.
    """

    def __init__(
        self,
        maxsize: int = 4096,
        default_ttl: float = 300,
        namespace: str = "",
        timer: Callable[[], float] = time.monotonic,
    ):
        self.default_ttl = default_ttl
        self.namespace = namespace
        self.timer = timer
        self._store: TLRUCache = TLRUCache(
            maxsize=maxsize, ttu=_time_to_use, timer=timer
        )
        # Locks outlive the slowest load; setdefault hands every caller the same lock
        self._locks: TTLCache = TTLCache(maxsize=10_000, ttl=300, timer=timer)

        self.stats = {
            "hits": 0,
            "misses": 0,
            "sets": 0,
            "invalidations": 0,
        }

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> "CacheLayer":
        return cls(
            maxsize=settings.cache_maxsize,
            default_ttl=settings.cache_default_ttl_seconds,
            namespace=settings.cache_namespace,
            **kwargs,
        )

    def _key(self, key: str) -> str:
        """Build namespaced cache key."""
        return f"{self.namespace}{key}"

    def get(self, key: str) -> Any:
        """Return the cached value, or None when absent or expired."""
        self._store.expire()
        entry = self._store.get(self._key(key))
        if entry is None:
            self.stats["misses"] += 1
            logger.debug("cache_miss", key=key)
            return None
        self.stats["hits"] += 1
        logger.debug("cache_hit", key=key)
        return entry.value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """
        Store a value.

        Args:
            key: Cache key (will be namespaced automatically)
            value: Value to cache
            ttl: Lifetime in seconds; the layer default when omitted
        """
        entry = CacheEntry(
            value=value,
            ttl=ttl if ttl is not None else self.default_ttl,
            written_at=self.timer(),
        )
        self._store[self._key(key)] = entry
        self.stats["sets"] += 1

    def has(self, key: str) -> bool:
        self._store.expire()
        return self._key(key) in self._store

    def clear(self, key: str) -> None:
        """Drop one key."""
        if self._store.pop(self._key(key), None) is not None:
            self.stats["invalidations"] += 1

    def delete_pattern(self, pattern: str) -> int:
        """Drop every key matching a glob pattern, e.g. ``tasks:list:<user>:*``."""
        full = self._key(pattern)
        doomed = [k for k in list(self._store.keys()) if fnmatch.fnmatchcase(k, full)]
        for k in doomed:
            self._store.pop(k, None)
        self.stats["invalidations"] += len(doomed)
        if doomed:
            logger.debug("cache_pattern_cleared", pattern=pattern, deleted=len(doomed))
        return len(doomed)

    def clear_all(self) -> None:
        self._store.clear()

    def clear_expired(self) -> int:
        """Housekeeping sweep; reads already evict lazily."""
        expired = self._store.expire()
        return len(expired) if expired is not None else 0

    def lock_for(self, key: str) -> asyncio.Lock:
        """
        Get or create an asyncio.Lock for a cache key.

        Every concurrent caller for the same key receives the same lock object,
        so a lookup-then-insert guarded by it runs once per key at a time.
        """
        return self._locks.setdefault(key, asyncio.Lock())

    async def get_or_load(
        self,
        key: str,
        loader: Callable[[], Awaitable[Any]],
        ttl: Optional[float] = None,
        refresh: bool = False,
    ) -> Any:
        """
        Read-through fetch: cache -> loader.

        ``refresh=True`` bypasses the cached value and replaces it with a fresh
        load. None results are never cached.
        """
        if not refresh:
            value = self.get(key)
            if value is not None:
                return value

        async with self.lock_for(key):
            # Double-check after acquiring lock
            if not refresh:
                entry = self._store.get(self._key(key))
                if entry is not None:
                    return entry.value

            value = await loader()
            if value is None:
                return None
            self.set(key, value, ttl)
            return value

    def get_stats(self) -> dict:
        """Get cache statistics."""
        total = self.stats["hits"] + self.stats["misses"]
        return {
            **self.stats,
            "size": len(self._store),
            "maxsize": self._store.maxsize,
            "hit_rate": self.stats["hits"] / total if total > 0 else 0,
        }

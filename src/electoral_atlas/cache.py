"""Per-session cache of joined map views keyed by (domain, level, parent)."""

import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from loguru import logger


@dataclass(frozen=True)
class CacheKey:
    """Identity of a map view.

    ``variant`` distinguishes datasets within a domain (election id, census
    year, filter set); ``parent_id`` is None for national views.
    """

    domain: str
    level: int
    parent_id: Optional[int] = None
    variant: Optional[str] = None

    def __str__(self) -> str:
        parent = "null" if self.parent_id is None else self.parent_id
        key = f"{self.domain}-{self.level}-{parent}"
        return f"{key}-{self.variant}" if self.variant else key


@dataclass
class CachedEntry:
    """A cached payload and when it was stored."""

    data: Any
    cached_at: float
    ttl: Optional[float] = None

    def is_expired(self, now: float) -> bool:
        return self.ttl is not None and now - self.cached_at > self.ttl


class LevelCache:
    """Explicit, session-scoped cache of map payloads.

    All mutation happens on the event loop thread, so no locking is needed.

    Args:
        ttl_seconds: Default lifetime of entries (None never expires)
        clock: Monotonic time source, injectable for tests
    """

    def __init__(
        self,
        ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[CacheKey, CachedEntry] = {}
        self._hits = 0
        self._misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, CacheKey) and self.has(key)

    def get(self, key: CacheKey) -> Optional[CachedEntry]:
        """Return the live entry for ``key``, or None. Expired entries are evicted."""
        entry = self._entries.get(key)
        if entry is not None and entry.is_expired(self._clock()):
            del self._entries[key]
            logger.debug("Cache entry expired: {}", key)
            entry = None
        if entry is None:
            self._misses += 1
            logger.debug("Cache miss: {}", key)
            return None
        self._hits += 1
        logger.debug("Cache hit: {}", key)
        return entry

    def has(self, key: CacheKey) -> bool:
        """Whether a live entry exists, without touching hit/miss counters."""
        entry = self._entries.get(key)
        return entry is not None and not entry.is_expired(self._clock())

    def put(self, key: CacheKey, data: Any, ttl: Optional[float] = None) -> CachedEntry:
        entry = CachedEntry(
            data=data,
            cached_at=self._clock(),
            ttl=ttl if ttl is not None else self.ttl_seconds,
        )
        self._entries[key] = entry
        return entry

    def invalidate(self, domain: Optional[str] = None, variant: Optional[str] = None) -> int:
        """Drop entries of one domain (and optionally one variant). Returns the count removed."""
        doomed = [
            key
            for key in self._entries
            if (domain is None or key.domain == domain)
            and (variant is None or key.variant == variant)
        ]
        for key in doomed:
            del self._entries[key]
        logger.debug(
            "Invalidated {} cache entries (domain={}, variant={})", len(doomed), domain, variant
        )
        return len(doomed)

    def invalidate_all(self) -> None:
        """Drop every entry, e.g. when the basemap changes."""
        count = len(self._entries)
        self._entries.clear()
        logger.info("Cache cleared ({} entries)", count)

    def stats(self) -> dict[str, Any]:
        lookups = self._hits + self._misses
        return {
            "entries": len(self._entries),
            "hits": self._hits,
            "misses": self._misses,
            "hitRate": round(self._hits / lookups, 4) if lookups else 0.0,
        }

    async def get_or_fetch(
        self,
        key: CacheKey,
        fetcher: Callable[[CacheKey], Awaitable[Any]],
        ttl: Optional[float] = None,
    ) -> Any:
        """Return cached data for ``key`` or fetch, store and return it."""
        entry = self.get(key)
        if entry is not None:
            return entry.data
        data = await fetcher(key)
        self.put(key, data, ttl=ttl)
        return data

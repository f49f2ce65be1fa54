"""TTL key/value cache with lazy expiration and prefix invalidation.

Values are shared by reference: callers must not mutate a returned value in
place without set()-ing it again.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

logger = logging.getLogger(__name__)

__all__ = ["CacheEntry", "CacheStats", "TTLCache"]

DEFAULT_TTL_MS = 300_000


def _monotonic_ms() -> float:
    return time.monotonic() * 1000.0


@dataclass
class CacheEntry:
    key: str
    value: Any
    written_at: float  # clock reading in milliseconds
    ttl_ms: int

    def is_expired(self, now: float) -> bool:
        return now - self.written_at > self.ttl_ms


@dataclass(frozen=True)
class CacheStats:
    size: int
    hits: int
    misses: int
    expirations: int


def _check_ttl(ttl_ms: Any) -> int:
    if isinstance(ttl_ms, bool) or not isinstance(ttl_ms, int) or ttl_ms <= 0:
        raise ValueError(f"ttl_ms must be a positive integer, got {ttl_ms!r}")
    return ttl_ms


class TTLCache:
    """In-memory cache. No background sweep; expired entries are evicted on read."""

    def __init__(
        self,
        default_ttl_ms: int = DEFAULT_TTL_MS,
        clock: Callable[[], float] = _monotonic_ms,
    ) -> None:
        self._default_ttl_ms = _check_ttl(default_ttl_ms)
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._hits = 0
        self._misses = 0
        self._expirations = 0

    @property
    def default_ttl_ms(self) -> int:
        return self._default_ttl_ms

    def set(self, key: str, value: Any, ttl_ms: int | None = None) -> None:
        """Store value under key, replacing any existing entry."""
        ttl = self._default_ttl_ms if ttl_ms is None else _check_ttl(ttl_ms)
        self._entries[key] = CacheEntry(
            key=key, value=value, written_at=self._clock(), ttl_ms=ttl
        )

    def get(self, key: str, default: Any = None) -> Any:
        """Return the cached value, or default on miss or expiry."""
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return default
        if entry.is_expired(self._clock()):
            del self._entries[key]
            self._expirations += 1
            self._misses += 1
            logger.debug("Cache entry expired: %s", key)
            return default
        self._hits += 1
        return entry.value

    def contains(self, key: str) -> bool:
        """True if key holds a live entry. Evicts it when expired."""
        sentinel = object()
        return self.get(key, sentinel) is not sentinel

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self, prefix: str | None = None) -> int:
        """Remove all entries, or those whose key starts with prefix. Returns count."""
        if prefix is None:
            count = len(self._entries)
            self._entries.clear()
            return count
        doomed = [k for k in self._entries if k.startswith(prefix)]
        for key in doomed:
            del self._entries[key]
        if doomed:
            logger.debug("Cleared %d cache entries with prefix %r", len(doomed), prefix)
        return len(doomed)

    def purge_expired(self) -> int:
        """Evict every expired entry now. Returns count."""
        now = self._clock()
        doomed = [k for k, e in self._entries.items() if e.is_expired(now)]
        for key in doomed:
            del self._entries[key]
        self._expirations += len(doomed)
        return len(doomed)

    def keys(self) -> list[str]:
        """Stored keys, including entries that expired but were not read yet."""
        return list(self._entries)

    def stats(self) -> CacheStats:
        return CacheStats(
            size=len(self._entries),
            hits=self._hits,
            misses=self._misses,
            expirations=self._expirations,
        )

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.contains(key)

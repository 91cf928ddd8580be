"""
Result cache for ADO Insights.

An in-memory, size-bounded, TTL-aware memo shared by the engine components.
It is injected wherever it is needed; nothing looks it up globally.
"""

import threading
import time
from collections import OrderedDict
from typing import Any, Callable, NamedTuple

# Sentinel distinguishing "not cached" from a cached None
MISSING = object()


class CacheEntry(NamedTuple):
    """A cached value and its expiry bookkeeping."""

    value: Any
    stored_at: float
    ttl_seconds: float


# Marker for absent values; escaped wherever it occurs in a real value
NONE_MARKER = "*"


def _key_part(value: Any) -> str:
    if value is None:
        return NONE_MARKER
    text = str(value)
    return text.replace("\\", "\\\\").replace("_", "\\_").replace("*", "\\*")


def make_cache_key(operation: str, organization: str, project: str | None, *parts: Any) -> str:
    """
    Build the cache key for an operation.

    Format: {operation}_{organization}_{project or *}_{part}_{part}...
    Example: commits_contoso_*_2024_5_*

    Every field is escaped (``\\``, ``_`` and ``*`` get a backslash) so that
    values containing the separator cannot run into their neighbours. None
    renders as a bare ``*``, which no escaped value can produce, and keeps its
    position in the key. An empty project means the whole organization.
    """
    fields = [operation, organization, project or None, *parts]
    return "_".join(_key_part(field) for field in fields)


def is_entry_valid(entry: CacheEntry, now: float) -> bool:
    """Check if a cache entry is still within its TTL."""
    return (now - entry.stored_at) < entry.ttl_seconds


class ResultCache:
    """
    Fixed-capacity LRU cache with per-entry TTL.

    Args:
        capacity: Maximum number of entries; the least recently used entry is
            evicted when a new key would exceed it.
        default_ttl: TTL in seconds used when ``set`` is called without one.
        clock: Monotonic clock, injectable for tests.
    """

    def __init__(
        self,
        capacity: int = 100,
        default_ttl: float = 300,
        clock: Callable[[], float] = time.monotonic,
    ):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self.default_ttl = default_ttl
        self.clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def get(self, key: str, default: Any = MISSING) -> Any:
        """Return the cached value for ``key`` or ``default`` if absent/expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return default
            if not is_entry_valid(entry, self.clock()):
                del self._entries[key]
                self._misses += 1
                return default
            self._entries.move_to_end(key)
            self._hits += 1
            return entry.value

    def set(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        """Store ``value`` under ``key`` for ``ttl_seconds``."""
        ttl = self.default_ttl if ttl_seconds is None else ttl_seconds
        with self._lock:
            now = self.clock()
            self._entries[key] = CacheEntry(value, now, ttl)
            self._entries.move_to_end(key)
            while len(self._entries) > self.capacity:
                self._evict_one(now)

    def _evict_one(self, now: float) -> None:
        # Prefer dropping an expired entry; otherwise the least recently used
        for key, entry in self._entries.items():
            if not is_entry_valid(entry, now):
                del self._entries[key]
                self._evictions += 1
                return
        self._entries.popitem(last=False)
        self._evictions += 1

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not MISSING

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def invalidate(self, key: str) -> bool:
        """Drop a single key. Returns True if it was present."""
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> int:
        """Drop every entry. Returns the number of entries cleared."""
        with self._lock:
            cleared = len(self._entries)
            self._entries.clear()
            return cleared

    def clear_expired(self) -> int:
        """Drop only expired entries. Returns the number removed."""
        with self._lock:
            now = self.clock()
            expired = [
                key
                for key, entry in self._entries.items()
                if not is_entry_valid(entry, now)
            ]
            for key in expired:
                del self._entries[key]
            return len(expired)

    def stats(self) -> dict[str, Any]:
        """
        Get cache statistics.

        Returns:
            Dictionary with entry counts and hit/miss/eviction counters.
        """
        with self._lock:
            now = self.clock()
            valid = sum(
                1 for entry in self._entries.values() if is_entry_valid(entry, now)
            )
            return {
                "capacity": self.capacity,
                "total_entries": len(self._entries),
                "valid_entries": valid,
                "expired_entries": len(self._entries) - valid,
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
            }

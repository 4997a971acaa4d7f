"""
In-memory TTL cache for rendered artifacts.
Prevents repeated renders of identical requests.
"""
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

DEFAULT_TTL_SECONDS = 60 * 60  # 1 hour


@dataclass
class CacheEntry:
    value: Any
    created_at: float
    ttl: float
    access_count: int = 0
    last_accessed: float = 0.0

    def remaining(self, now: float, max_idle: Optional[float] = None) -> float:
        remaining = self.created_at + self.ttl - now
        if max_idle is not None:
            remaining = min(remaining, self.last_accessed + max_idle - now)
        return remaining

    def is_expired(self, now: float, max_idle: Optional[float] = None) -> bool:
        return self.remaining(now, max_idle) <= 0


@dataclass
class CacheStats:
    entries: int
    capacity: int
    hits: int
    misses: int
    evictions: int
    expirations: int
    total_bytes: int
    hit_rate: float = field(default=0.0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entries": self.entries,
            "capacity": self.capacity,
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "expirations": self.expirations,
            "total_bytes": self.total_bytes,
            "hit_rate": round(self.hit_rate, 4),
        }


def _size_of(value: Any) -> int:
    data = getattr(value, "data", value)
    if isinstance(data, (bytes, bytearray, str)):
        return len(data)
    return 0


class ArtifactCache:
    """
    TTL-aware key -> artifact store.

    Expired entries are dropped lazily on lookup. An entry expires when its TTL
    runs out or, with `max_idle` set, when it has gone that long without a
    lookup. When the entry count exceeds `capacity`, entries closest to expiry
    are evicted first.
    """

    def __init__(self, capacity: int = 100, default_ttl: float = DEFAULT_TTL_SECONDS,
                 clock: Callable[[], float] = time.monotonic, max_idle: Optional[float] = None):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        if max_idle is not None and max_idle <= 0:
            raise ValueError("max_idle must be positive")
        self.capacity = capacity
        self.default_ttl = default_ttl
        self.max_idle = max_idle
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0

    def lookup(self, key: str) -> Optional[Any]:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None

            if entry.is_expired(now, self.max_idle):
                del self._entries[key]
                self._expirations += 1
                self._misses += 1
                return None

            entry.access_count += 1
            entry.last_accessed = now
            self._hits += 1
            return entry.value

    def peek(self, key: str) -> Optional[Any]:
        """Return a live entry without touching hit/miss counters or idle time."""
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.is_expired(now, self.max_idle):
                return None
            return entry.value

    def insert(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        ttl = self.default_ttl if ttl is None else ttl
        now = self._clock()
        with self._lock:
            # Whole-entry replacement keeps concurrent inserts for one key consistent
            self._entries[key] = CacheEntry(value=value, created_at=now, ttl=ttl, last_accessed=now)
            self._evict_locked(now)

    def evict_if_over_capacity(self) -> int:
        """Evict entries until the cache fits its capacity. Returns the count evicted."""
        with self._lock:
            return self._evict_locked(self._clock())

    def _evict_locked(self, now: float) -> int:
        if len(self._entries) <= self.capacity:
            return 0

        evicted = 0
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now, self.max_idle)]
        for key in expired:
            del self._entries[key]
            self._expirations += 1
            evicted += 1

        overflow = len(self._entries) - self.capacity
        if overflow > 0:
            by_remaining = sorted(self._entries.items(), key=lambda item: item[1].remaining(now, self.max_idle))
            for key, _ in by_remaining[:overflow]:
                del self._entries[key]
                self._evictions += 1
                evicted += 1

        return evicted

    def remove(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def stats(self) -> CacheStats:
        with self._lock:
            lookups = self._hits + self._misses
            return CacheStats(
                entries=len(self._entries),
                capacity=self.capacity,
                hits=self._hits,
                misses=self._misses,
                evictions=self._evictions,
                expirations=self._expirations,
                total_bytes=sum(_size_of(entry.value) for entry in self._entries.values()),
                hit_rate=(self._hits / lookups) if lookups else 0.0,
            )

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and not entry.is_expired(now, self.max_idle)


class NullArtifactCache(ArtifactCache):
    """Cache that never stores anything (caching disabled)."""

    def __init__(self, default_ttl: float = DEFAULT_TTL_SECONDS):
        super().__init__(capacity=1, default_ttl=default_ttl)

    def insert(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        return None

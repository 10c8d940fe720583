# data/cache.py
"""In-process cache tier: entries, statistics, LRU eviction and expiry sweep.

The memory tier is the first level of every cache facade in ``data``. It is
bounded by entry count, evicts the least recently accessed entries when the
bound is crossed, and never returns an entry past its TTL.

Example:
    >>> cache = MemoryCache(max_size=3, default_ttl_seconds=60)
    >>> cache.set("bitcoin:mvrv:30d", {"trend": "up"}, tags=("bitcoin",))
    >>> cache.get("bitcoin:mvrv:30d").value
    {'trend': 'up'}
"""
from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from utils.logger import get_logger

log = get_logger(__name__)

V = TypeVar("V")

Clock = Callable[[], float]

_KEY_SEPARATOR = ":"


def build_cache_key(namespace: str, scope: str, metric: str, timeframe: str) -> str:
    """Deterministic composite key for ``(namespace, scope, metric, timeframe)``.

    Scope and timeframe are case-insensitive; metric names keep their case
    (``activeAddresses`` and ``activeaddresses`` are different metrics).
    Separators inside a part are replaced so two different tuples can never
    produce the same key.
    """
    def _part(value: str, lower: bool) -> str:
        text = str(value).strip().replace(_KEY_SEPARATOR, "_")
        return text.lower() if lower else text

    return _KEY_SEPARATOR.join((
        _part(namespace, True),
        _part(scope, True),
        _part(metric, False),
        _part(timeframe, True),
    ))


@dataclass
class CacheEntry(Generic[V]):
    """Cached value with expiry and access metadata."""

    value: V
    created_at: float
    ttl_seconds: float
    access_count: int = 0
    last_accessed_at: float = 0.0
    tags: frozenset[str] = frozenset()
    # Tie-breaker for entries touched within the same clock tick.
    access_seq: int = field(default=0, repr=False, compare=False)

    @property
    def expires_at(self) -> float:
        return self.created_at + self.ttl_seconds

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def remaining_ttl(self, now: float) -> float:
        return max(0.0, self.expires_at - now)

    def touch(self, now: float, seq: int) -> None:
        self.access_count += 1
        self.last_accessed_at = now
        self.access_seq = seq


@dataclass(frozen=True)
class CacheStatistics:
    """Snapshot of per-tier counters."""

    hits: int = 0
    misses: int = 0
    evictions: int = 0
    size: int = 0
    max_size: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "size": self.size,
            "max_size": self.max_size,
            "hit_rate": round(self.hit_rate, 4),
        }


class MemoryCache(Generic[V]):
    """Thread-safe bounded key -> entry store with TTL and LRU eviction.

    Features:
    - Lazy expiry on ``get`` (counted as an eviction)
    - Eager expiry through ``sweep`` (driven by ``ExpirySweeper``)
    - Capacity enforced after every ``set``
    - Tag based bulk deletion
    """

    def __init__(
        self,
        max_size: int = 1000,
        default_ttl_seconds: float = 300.0,
        clock: Clock = time.time,
    ) -> None:
        self._max_size = max(int(max_size), 1)
        self._default_ttl = float(default_ttl_seconds)
        self._clock = clock
        self._entries: dict[str, CacheEntry[V]] = {}
        self._lock = threading.RLock()
        self._seq = 0
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def default_ttl_seconds(self) -> float:
        return self._default_ttl

    def get(self, key: str) -> CacheEntry[V] | None:
        """Return the live entry for ``key`` or None.

        An expired entry is removed on the spot and reported as a miss.
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None

            now = self._clock()
            if entry.is_expired(now):
                del self._entries[key]
                self._evictions += 1
                self._misses += 1
                return None

            entry.touch(now, self._next_seq())
            self._hits += 1
            return entry

    def set(
        self,
        key: str,
        value: V,
        ttl_seconds: float | None = None,
        tags: Iterable[str] = (),
    ) -> CacheEntry[V]:
        """Insert or overwrite ``key``; a TTL <= 0 stores an already-dead entry."""
        ttl = self._default_ttl if ttl_seconds is None else float(ttl_seconds)
        with self._lock:
            now = self._clock()
            entry = CacheEntry(
                value=value,
                created_at=now,
                ttl_seconds=ttl,
                access_count=0,
                last_accessed_at=now,
                tags=frozenset(tags),
                access_seq=self._next_seq(),
            )
            self._entries[key] = entry
            self._enforce_capacity()
            return entry

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def delete_by_tag(self, tag: str) -> int:
        """Remove every entry carrying ``tag``; returns how many went."""
        with self._lock:
            doomed = [k for k, e in self._entries.items() if tag in e.tags]
            for key in doomed:
                del self._entries[key]
            if doomed:
                log.debug("Removed %d entries tagged %r", len(doomed), tag)
            return len(doomed)

    def sweep(self) -> int:
        """Remove all expired entries regardless of access."""
        with self._lock:
            now = self._clock()
            expired = [k for k, e in self._entries.items() if e.is_expired(now)]
            for key in expired:
                del self._entries[key]
            self._evictions += len(expired)
            return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def reset(self) -> None:
        """Drop all entries and zero the counters."""
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0
            self._evictions = 0

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._entries.keys())

    def entries(self) -> list[tuple[str, CacheEntry[V]]]:
        """Snapshot of ``(key, entry)`` pairs for diagnostics; no access update."""
        with self._lock:
            return list(self._entries.items())

    def stats(self) -> CacheStatistics:
        with self._lock:
            return CacheStatistics(
                hits=self._hits,
                misses=self._misses,
                evictions=self._evictions,
                size=len(self._entries),
                max_size=self._max_size,
            )

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        """Membership without touching LRU state; expired entries count as absent."""
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and not entry.is_expired(self._clock())

    def _next_seq(self) -> int:
        self._seq += 1
        return self._seq

    def _enforce_capacity(self) -> None:
        """Evict least recently accessed entries down to ``max_size`` (lock held).

        Expired entries go first so a dead entry never displaces a live one.
        """
        overflow = len(self._entries) - self._max_size
        if overflow <= 0:
            return

        now = self._clock()
        expired = [k for k, e in self._entries.items() if e.is_expired(now)]
        for key in expired:
            del self._entries[key]
        self._evictions += len(expired)
        overflow -= len(expired)
        if overflow <= 0:
            return

        by_recency = sorted(
            self._entries.items(),
            key=lambda item: (item[1].last_accessed_at, item[1].access_seq),
        )
        for key, _entry in by_recency[:overflow]:
            del self._entries[key]
        self._evictions += overflow
        log.debug("LRU evicted %d entries (max_size=%d)", overflow, self._max_size)


class ExpirySweeper:
    """Background worker that calls ``cache.sweep()`` on a fixed interval.

    Owned by the facade that created it; ``stop()`` must be called on
    teardown. A failing sweep is logged and the loop keeps going.
    """

    def __init__(
        self,
        cache: MemoryCache[Any],
        interval_seconds: float,
        name: str = "cache-expiry-sweeper",
    ) -> None:
        self._cache = cache
        self._interval = max(float(interval_seconds), 0.01)
        self._name = name
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self.sweeps = 0
        self.failures = 0

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run,
            name=self._name,
            daemon=True,
        )
        self._thread.start()

    def stop(self, timeout: float = 2.0) -> None:
        thread = self._thread
        if thread is None:
            return
        self._stop_event.set()
        if thread.is_alive():
            thread.join(timeout=timeout)
        self._thread = None

    def run_once(self) -> int:
        """One sweep with the loop's error policy applied."""
        try:
            removed = self._cache.sweep()
        except Exception as e:
            self.failures += 1
            log.error("Cache sweep failed in %s: %s", self._name, e)
            return 0
        self.sweeps += 1
        if removed:
            log.debug("%s removed %d expired entries", self._name, removed)
        return removed

    def _run(self) -> None:
        while not self._stop_event.wait(self._interval):
            self.run_once()

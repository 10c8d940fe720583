# data/page_cache.py
"""Single-tier page/response cache with tag revalidation.

Coarser than the trend cache: whole rendered payloads keyed by route,
dropped in bulk with ``revalidate_tag`` when an underlying resource
changes. Cleanup runs inline on ``set`` once occupancy passes the
configured threshold, so no background worker is needed.
"""
from __future__ import annotations

import threading
import time
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from config.settings import PageCacheConfig
from data.cache import Clock
from utils.logger import get_logger

log = get_logger(__name__)


@dataclass
class _PageEntry:
    value: Any
    expires_at: float
    last_modified: float
    tags: frozenset[str]
    revalidate: bool = False


@dataclass(frozen=True)
class PageCacheHit:
    value: Any
    last_modified: float


@dataclass(frozen=True)
class PageCacheStats:
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    total_requests: int = 0
    size: int = 0

    @property
    def hit_rate(self) -> float:
        if self.total_requests <= 0:
            return 0.0
        return self.hits / self.total_requests

    def to_dict(self) -> dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "total_requests": self.total_requests,
            "hit_rate": round(self.hit_rate, 4),
            "size": self.size,
        }


class IncrementalCacheHandler:
    """Bounded page cache.

    Args:
        config: Size, default TTL and cleanup threshold.
        clock: Time source (tests inject a fake).
    """

    def __init__(
        self,
        config: PageCacheConfig | None = None,
        clock: Clock = time.time,
    ) -> None:
        self._config = config or PageCacheConfig()
        self._clock = clock
        self._entries: dict[str, _PageEntry] = {}
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._total_requests = 0

    @property
    def max_size(self) -> int:
        return self._config.max_size

    def get(self, key: str) -> PageCacheHit | None:
        with self._lock:
            self._total_requests += 1
            entry = self._entries.get(key)
            if entry is not None:
                if self._clock() < entry.expires_at:
                    self._hits += 1
                    return PageCacheHit(entry.value, entry.last_modified)
                del self._entries[key]
                self._evictions += 1
            self._misses += 1
            return None

    def set(
        self,
        key: str,
        value: Any,
        ttl_seconds: float | None = None,
        tags: Iterable[str] = (),
        revalidate: bool = False,
    ) -> bool:
        ttl = self._config.default_ttl_seconds if ttl_seconds is None else float(ttl_seconds)
        with self._lock:
            now = self._clock()
            self._entries[key] = _PageEntry(
                value=value,
                expires_at=now + ttl,
                last_modified=now,
                tags=frozenset(tags),
                revalidate=revalidate,
            )
            self._cleanup(now)
        return True

    def revalidate_tag(self, tag: str) -> int:
        """Remove every entry tagged ``tag``; returns how many were removed."""
        with self._lock:
            doomed = [k for k, e in self._entries.items() if tag in e.tags]
            for key in doomed:
                del self._entries[key]
            self._evictions += len(doomed)
        if doomed:
            log.debug("Revalidated tag %r: %d page entries dropped", tag, len(doomed))
        return len(doomed)

    def reset(self) -> None:
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0
            self._evictions = 0
            self._total_requests = 0

    def stats(self) -> PageCacheStats:
        with self._lock:
            return PageCacheStats(
                hits=self._hits,
                misses=self._misses,
                evictions=self._evictions,
                total_requests=self._total_requests,
                size=len(self._entries),
            )

    def get_stats(self) -> dict[str, Any]:
        return self.stats().to_dict()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _cleanup(self, now: float) -> None:
        """Expired entries first, then oldest by last_modified down to max_size."""
        max_size = self._config.max_size
        if len(self._entries) <= max_size * self._config.cleanup_threshold:
            return

        expired = [k for k, e in self._entries.items() if now >= e.expires_at]
        for key in expired:
            del self._entries[key]
        removed = len(expired)

        overflow = len(self._entries) - max_size
        if overflow > 0:
            oldest = sorted(self._entries.items(), key=lambda item: item[1].last_modified)
            for key, _entry in oldest[:overflow]:
                del self._entries[key]
            removed += overflow

        self._evictions += removed
        if removed:
            log.debug("Page cache cleanup removed %d entries", removed)

# data/trend_cache.py
"""Two-tier cache for computed trend analyses and historical series.

Lookup order is memory, then Redis. A Redis hit is promoted into memory;
a write goes to memory immediately and to Redis best-effort. The cache
never computes anything itself: on a full miss the caller recomputes and
calls ``set_trend_analysis``.

Example:
    >>> cache = TrendCache(remote=RemoteCache(config.remote))
    >>> await cache.start()
    >>> await cache.set_trend_analysis("mvrv", "30d", "bitcoin", {"trend": "up"})
    >>> await cache.get_trend_analysis("mvrv", "30d", "bitcoin")
    {'trend': 'up'}
"""
from __future__ import annotations

import threading
import time
from typing import Any

from config.settings import CompressionConfig, MemoryCacheConfig
from core.exceptions import PayloadDecodeError
from data.cache import Clock, ExpirySweeper, MemoryCache, build_cache_key
from data.payload_codec import decode_payload, encode_payload
from utils.logger import get_logger
from utils.redis_cache import RemoteCache

log = get_logger(__name__)

# Analyses over longer windows change more slowly, so they live longer.
TIMEFRAME_TTL_SECONDS: dict[str, float] = {
    "7d": 300.0,
    "30d": 900.0,
    "90d": 1800.0,
}

# Weight of the newest sample in the compression ratio moving average.
_RATIO_ALPHA = 0.2


class TrendCache:
    """Read-through / write-through cache keyed by (metric, timeframe, scope).

    Args:
        memory_config: Memory tier sizing and sweep interval.
        remote: Optional Redis tier; None or a disabled tier means memory-only.
        compression_config: Payload compression for the Redis tier.
        clock: Time source for the memory tier (tests inject a fake).
        namespace: First key component; ``clear()`` is scoped to it.
    """

    namespace = "trend"

    def __init__(
        self,
        memory_config: MemoryCacheConfig | None = None,
        remote: RemoteCache | None = None,
        compression_config: CompressionConfig | None = None,
        clock: Clock = time.time,
        namespace: str | None = None,
    ) -> None:
        self._memory_config = memory_config or MemoryCacheConfig()
        self._compression = compression_config or CompressionConfig()
        if namespace is not None:
            self.namespace = namespace

        self._clock = clock
        self._memory: MemoryCache[Any] = MemoryCache(
            max_size=self._memory_config.max_size,
            default_ttl_seconds=self._memory_config.default_ttl_seconds,
            clock=clock,
        )
        self._remote = remote
        self._sweeper = ExpirySweeper(
            self._memory,
            self._memory_config.cleanup_interval_seconds,
            name=f"{self.namespace}-cache-sweeper",
        )

        self._ratio_lock = threading.Lock()
        self._compression_ratio = 1.0
        self._compressed_writes = 0
        self._decode_errors = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Connect Redis (never fails) and start the expiry sweeper."""
        if self._remote is not None:
            await self._remote.connect()
        self._sweeper.start()
        log.info(
            "%s cache started (max_size=%d, remote=%s)",
            self.namespace,
            self._memory.max_size,
            "on" if self.remote_enabled else "off",
        )

    async def stop(self) -> None:
        self._sweeper.stop()
        if self._remote is not None:
            await self._remote.close()
        log.info("%s cache stopped", self.namespace)

    @property
    def memory(self) -> MemoryCache[Any]:
        return self._memory

    @property
    def sweeper(self) -> ExpirySweeper:
        return self._sweeper

    @property
    def remote_enabled(self) -> bool:
        return self._remote is not None and self._remote.enabled

    # ------------------------------------------------------------------
    # Keys and TTL policy
    # ------------------------------------------------------------------

    def make_key(self, metric: str, timeframe: str, scope: str) -> str:
        return build_cache_key(self.namespace, scope, metric, timeframe)

    def ttl_for_timeframe(self, timeframe: str) -> float:
        return TIMEFRAME_TTL_SECONDS.get(
            str(timeframe).strip().lower(),
            self._memory.default_ttl_seconds,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def get_trend_analysis(self, metric: str, timeframe: str, scope: str) -> Any | None:
        key = self.make_key(metric, timeframe, scope)
        return await self._read(
            key,
            self.ttl_for_timeframe(timeframe),
            tags=self._tags(metric, scope),
        )

    async def set_trend_analysis(
        self,
        metric: str,
        timeframe: str,
        scope: str,
        value: Any,
    ) -> None:
        key = self.make_key(metric, timeframe, scope)
        await self._write(
            key,
            value,
            self.ttl_for_timeframe(timeframe),
            tags=self._tags(metric, scope),
        )

    async def delete_trend_analysis(self, metric: str, timeframe: str, scope: str) -> bool:
        key = self.make_key(metric, timeframe, scope)
        removed = self._memory.delete(key)
        if self.remote_enabled:
            removed = bool(await self._remote.delete(key)) or removed
        return removed

    async def invalidate_scope(self, scope: str) -> int:
        """Drop every memory entry for ``scope`` and its Redis keys."""
        removed = self._memory.delete_by_tag(f"scope:{str(scope).lower()}")
        if self.remote_enabled:
            prefix = build_cache_key(self.namespace, scope, "", "").rstrip(":")
            await self._remote.delete_matching(f"{RemoteCache.escape_pattern(prefix)}:*")
        return removed

    async def clear(self) -> None:
        """Empty this namespace in both tiers; other Redis keys are untouched."""
        self._memory.clear()
        if self.remote_enabled:
            removed = await self._remote.delete_matching(
                f"{RemoteCache.escape_pattern(self.namespace)}:*"
            )
            log.info("Cleared %d %s keys from Redis", removed, self.namespace)

    def get_stats(self) -> dict[str, Any]:
        with self._ratio_lock:
            ratio = self._compression_ratio
            decode_errors = self._decode_errors
        remote: dict[str, Any] | None = None
        if self._remote is not None:
            remote = self._remote.stats.to_dict()
            remote["enabled"] = self._remote.enabled
            remote["decode_errors"] = decode_errors
        return {
            "memory": self._memory.stats().to_dict(),
            "remote": remote,
            "compression": {
                "ratio": round(ratio, 4),
                "enabled": self._compression.enabled,
            },
        }

    def get_memory_cache_entries(self) -> list[dict[str, Any]]:
        """Debug listing of memory entries; reading it does not touch LRU state."""
        now = self._clock()
        listing = []
        for key, entry in self._memory.entries():
            listing.append({
                "key": key,
                "created_at": entry.created_at,
                "ttl_seconds": entry.ttl_seconds,
                "remaining_ttl_seconds": round(entry.remaining_ttl(now), 3),
                "access_count": entry.access_count,
                "last_accessed_at": entry.last_accessed_at,
                "tags": sorted(entry.tags),
                "expired": entry.is_expired(now),
            })
        return listing

    # ------------------------------------------------------------------
    # Tier plumbing
    # ------------------------------------------------------------------

    @staticmethod
    def _tags(metric: str, scope: str) -> tuple[str, ...]:
        return (f"scope:{str(scope).lower()}", f"metric:{metric}")

    async def _read(
        self,
        key: str,
        promote_ttl: float,
        tags: tuple[str, ...] = (),
    ) -> Any | None:
        entry = self._memory.get(key)
        if entry is not None:
            return entry.value

        if not self.remote_enabled:
            return None

        payload, remaining = await self._remote.get_with_ttl(key)
        if payload is None:
            return None

        try:
            value = decode_payload(payload)
        except PayloadDecodeError as e:
            with self._ratio_lock:
                self._decode_errors += 1
            log.warning("Discarding corrupt Redis payload for %s: %s", key, e)
            await self._remote.delete(key)
            return None

        # never outlive the Redis copy
        ttl = promote_ttl if remaining is None else min(promote_ttl, remaining)
        if ttl > 0:
            self._memory.set(key, value, ttl_seconds=ttl, tags=tags)
            log.debug("Promoted %s from Redis into memory for %.1fs", key, ttl)
        return value

    async def _write(
        self,
        key: str,
        value: Any,
        ttl_seconds: float,
        tags: tuple[str, ...] = (),
    ) -> None:
        self._memory.set(key, value, ttl_seconds=ttl_seconds, tags=tags)

        if not self.remote_enabled:
            return

        try:
            encoded = encode_payload(
                value,
                compression_enabled=self._compression.enabled,
                size_threshold_bytes=self._compression.size_threshold_bytes,
            )
        except (TypeError, ValueError) as e:
            log.warning("Value for %s is not JSON serializable, kept memory-only: %s", key, e)
            return

        if encoded.compressed:
            self._record_ratio(encoded.ratio)

        if not await self._remote.set(key, encoded.data, ttl_seconds=ttl_seconds):
            log.debug("Redis write for %s did not succeed; memory stays authoritative", key)

    def _record_ratio(self, ratio: float) -> None:
        with self._ratio_lock:
            self._compressed_writes += 1
            if self._compressed_writes == 1:
                self._compression_ratio = ratio
            else:
                self._compression_ratio += _RATIO_ALPHA * (ratio - self._compression_ratio)


class HistoricalDataCache(TrendCache):
    """Raw historical series per (scope, metric, timeframe).

    Same tiers as :class:`TrendCache` but a single fixed TTL: the memory
    tier's default, reused for Redis so both tiers age together.
    """

    namespace = "historical"

    def ttl_for_timeframe(self, timeframe: str) -> float:
        return self._memory.default_ttl_seconds

    async def get_historical_data(self, scope: str, metric: str, timeframe: str) -> Any | None:
        return await self.get_trend_analysis(metric, timeframe, scope)

    async def set_historical_data(
        self,
        scope: str,
        metric: str,
        timeframe: str,
        points: Any,
    ) -> None:
        await self.set_trend_analysis(metric, timeframe, scope, points)

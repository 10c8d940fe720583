"""Redis second-level cache with graceful degradation.

This module provides:
    - Async Redis client built from a URL (``redis.asyncio``)
    - Per-call timeouts so a hung server cannot stall cache reads
    - Namespaced keys and SCAN-based pattern deletion
    - Error counting instead of raising: every failure reads as a miss

If the first connection attempt fails the tier is switched off for the rest
of the process lifetime and callers carry on memory-only.

Example:
    >>> remote = RemoteCache(RemoteCacheConfig(url="redis://localhost:6379/0"))
    >>> await remote.connect()
    >>> await remote.set("trend:bitcoin:mvrv:30d", b"\\x00{}", ttl_seconds=900)
    >>> payload = await remote.get("trend:bitcoin:mvrv:30d")
"""
from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

import redis.asyncio as redis
from redis.exceptions import RedisError

from config.settings import RemoteCacheConfig
from utils.logger import get_logger

log = get_logger(__name__)

T = TypeVar("T")

# Failures that mean "remote tier unavailable", never a caller bug.
_REMOTE_FAILURES: tuple[type[BaseException], ...] = (
    RedisError,
    OSError,
    asyncio.TimeoutError,
)

_FAILED = object()

# Characters with meaning in a SCAN MATCH pattern.
_GLOB_SPECIALS = frozenset("\\*?[]")


@dataclass
class RemoteCacheStats:
    """Remote tier counters."""
    hits: int = 0
    misses: int = 0
    errors: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "errors": self.errors,
            "hit_rate": round(self.hit_rate, 4),
        }


class RemoteCache:
    """Optional Redis tier used behind the memory cache.

    Args:
        config: Remote tier configuration; an empty ``url`` disables the tier.
        client: Pre-built async client (tests inject an in-memory double).
    """

    def __init__(
        self,
        config: RemoteCacheConfig | None = None,
        client: Any | None = None,
    ) -> None:
        self._config = config or RemoteCacheConfig()
        self._client: Any | None = client
        self._stats = RemoteCacheStats()
        self._connected = False
        self._disabled = not (self._config.url or client is not None)

    @property
    def key_prefix(self) -> str:
        return self._config.key_prefix

    @property
    def default_ttl_seconds(self) -> float:
        return self._config.default_ttl_seconds

    @property
    def enabled(self) -> bool:
        """True while the tier is connected and has not been switched off."""
        return self._connected and not self._disabled

    @property
    def stats(self) -> RemoteCacheStats:
        return self._stats

    async def connect(self) -> bool:
        """Connect and ping once. Never raises; returns whether the tier is up."""
        if self._disabled:
            return False
        if self._connected:
            return True

        try:
            if self._client is None:
                log.info("Connecting to Redis remote cache tier")
                self._client = redis.from_url(
                    self._config.url,
                    decode_responses=False,
                    socket_timeout=self._config.operation_timeout_seconds,
                    socket_connect_timeout=self._config.operation_timeout_seconds,
                )
            await asyncio.wait_for(
                self._client.ping(),
                timeout=self._config.operation_timeout_seconds,
            )
        except _REMOTE_FAILURES as e:
            self._stats.errors += 1
            log.warning(
                "Redis unavailable (%s); remote cache tier disabled, running memory-only",
                e,
            )
            await self._close_client()
            self._disabled = True
            return False

        self._connected = True
        log.info("Redis remote cache tier connected")
        return True

    async def close(self) -> None:
        await self._close_client()
        self._connected = False

    def full_key(self, key: str) -> str:
        return f"{self._config.key_prefix}{key}"

    @staticmethod
    def escape_pattern(text: str) -> str:
        """Escape glob metacharacters so ``text`` matches only itself in SCAN."""
        return "".join(f"\\{ch}" if ch in _GLOB_SPECIALS else ch for ch in text)

    async def get(self, key: str) -> bytes | None:
        """Raw payload for ``key`` or None on miss, failure or disabled tier."""
        if not self.enabled:
            return None
        value = await self._call("get", lambda: self._client.get(self.full_key(key)))
        if value is _FAILED:
            return None
        if value is None:
            self._stats.misses += 1
            return None
        self._stats.hits += 1
        return _as_bytes(value)

    async def get_with_ttl(self, key: str) -> tuple[bytes | None, float | None]:
        """Payload and its remaining Redis lifetime in seconds.

        The lifetime is None when the key has no expiry. A key that expired
        between the two reads reports 0.
        """
        if not self.enabled:
            return None, None
        full = self.full_key(key)

        async def _fetch() -> tuple[Any, Any]:
            value = await self._client.get(full)
            if value is None:
                return None, None
            return value, await self._client.pttl(full)

        result = await self._call("get", _fetch)
        if result is _FAILED:
            return None, None
        value, pttl = result
        if value is None:
            self._stats.misses += 1
            return None, None
        self._stats.hits += 1

        remaining: float | None = None
        if isinstance(pttl, int):
            if pttl >= 0:
                remaining = pttl / 1000.0
            elif pttl == -2:
                remaining = 0.0
        return _as_bytes(value), remaining

    async def set(self, key: str, payload: bytes, ttl_seconds: float | None = None) -> bool:
        """Store ``payload`` with a whole-second expiry (minimum 1s)."""
        if not self.enabled:
            return False
        ttl = self._config.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        if ttl <= 0:
            return False
        expire = max(1, int(ttl))
        result = await self._call(
            "set",
            lambda: self._client.set(self.full_key(key), payload, ex=expire),
        )
        return result is not _FAILED and bool(result)

    async def delete(self, *keys: str) -> int:
        if not self.enabled or not keys:
            return 0
        full_keys = [self.full_key(k) for k in keys]
        result = await self._call("delete", lambda: self._client.delete(*full_keys))
        return 0 if result is _FAILED else int(result or 0)

    async def keys_matching(self, pattern: str) -> list[str]:
        """Full (prefixed) keys matching ``prefix + pattern`` via SCAN.

        ``pattern`` is a Redis glob; literal parts must go through
        :meth:`escape_pattern`. The key prefix is escaped here.
        """
        if not self.enabled:
            return []
        match = self.escape_pattern(self._config.key_prefix) + pattern

        async def _scan() -> list[str]:
            found: list[str] = []
            async for key in self._client.scan_iter(match=match):
                found.append(key.decode("utf-8") if isinstance(key, bytes) else str(key))
            return found

        result = await self._call("scan", _scan)
        return [] if result is _FAILED else result

    async def delete_matching(self, pattern: str) -> int:
        """Delete every key under ``prefix + pattern``; returns count removed."""
        keys = await self.keys_matching(pattern)
        if not keys:
            return 0
        result = await self._call("delete", lambda: self._client.delete(*keys))
        return 0 if result is _FAILED else int(result or 0)

    async def _call(self, op: str, factory: Callable[[], Awaitable[T]]) -> Any:
        """Run one Redis call under the timeout; ``_FAILED`` on any failure."""
        try:
            return await asyncio.wait_for(
                factory(),
                timeout=self._config.operation_timeout_seconds,
            )
        except _REMOTE_FAILURES as e:
            self._stats.errors += 1
            log.warning("Redis %s error: %s", op, str(e) or type(e).__name__)
            return _FAILED

    async def _close_client(self) -> None:
        client = self._client
        if client is None:
            return
        self._client = None
        closer = getattr(client, "aclose", None) or getattr(client, "close", None)
        if closer is None:
            return
        try:
            await closer()
        except _REMOTE_FAILURES as e:
            log.warning("Error closing Redis connection: %s", e)


def _as_bytes(value: Any) -> bytes:
    if isinstance(value, str):
        return value.encode("utf-8")
    return bytes(value)

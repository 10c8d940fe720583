# tests/conftest.py
import re
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))


class FakeClock:
    """Manually advanced epoch-seconds clock."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = float(start)

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeDatetimeClock:
    """Manually advanced aware-UTC datetime source."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def redis_glob_match(pattern: str, key: str) -> bool:
    """SCAN MATCH semantics: ``*``, ``?``, ``[...]`` and backslash escapes."""
    parts = []
    i = 0
    while i < len(pattern):
        ch = pattern[i]
        if ch == "\\" and i + 1 < len(pattern):
            parts.append(re.escape(pattern[i + 1]))
            i += 2
            continue
        if ch == "*":
            parts.append(".*")
        elif ch == "?":
            parts.append(".")
        elif ch == "[":
            end = pattern.find("]", i + 1)
            if end == -1:
                parts.append(re.escape(ch))
            else:
                body = pattern[i + 1:end]
                if body.startswith("^"):
                    body = "^" + re.escape(body[1:])
                else:
                    body = re.escape(body)
                parts.append(f"[{body}]")
                i = end
        else:
            parts.append(re.escape(ch))
        i += 1
    return re.fullmatch("".join(parts), key, flags=re.DOTALL) is not None


class FakeRedis:
    """In-memory stand-in for ``redis.asyncio.Redis`` (bytes in, bytes out).

    With a ``clock`` keys expire on it and ``pttl`` counts down; without one
    ``pttl`` reports the TTL given at ``set``.
    """

    def __init__(self, clock=None) -> None:
        self.store: dict[str, bytes] = {}
        self.expiry: dict[str, int] = {}
        self.expires_at: dict[str, float] = {}
        self.clock = clock
        self.closed = False
        self.calls: list[str] = []

    async def ping(self) -> bool:
        self.calls.append("ping")
        return True

    def _purge(self, key: str) -> None:
        deadline = self.expires_at.get(key)
        if deadline is not None and self.clock is not None and self.clock() >= deadline:
            self.store.pop(key, None)
            self.expiry.pop(key, None)
            self.expires_at.pop(key, None)

    async def get(self, key: str):
        self.calls.append("get")
        self._purge(key)
        return self.store.get(key)

    async def pttl(self, key: str) -> int:
        self.calls.append("pttl")
        self._purge(key)
        if key not in self.store:
            return -2
        if key not in self.expiry:
            return -1
        if self.clock is None:
            return self.expiry[key] * 1000
        return max(0, int((self.expires_at[key] - self.clock()) * 1000))

    async def set(self, key: str, value: bytes, ex: int | None = None) -> bool:
        self.calls.append("set")
        self.store[key] = bytes(value)
        self.expiry.pop(key, None)
        self.expires_at.pop(key, None)
        if ex is not None:
            self.expiry[key] = ex
            if self.clock is not None:
                self.expires_at[key] = self.clock() + ex
        return True

    async def delete(self, *keys: str) -> int:
        self.calls.append("delete")
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
            self.expiry.pop(key, None)
            self.expires_at.pop(key, None)
        return removed

    async def scan_iter(self, match: str | None = None):
        for key in list(self.store):
            self._purge(key)
            if key in self.store and (match is None or redis_glob_match(match, key)):
                yield key.encode("utf-8")

    async def aclose(self) -> None:
        self.closed = True


class FailingRedis(FakeRedis):
    """Connects fine, then every data call raises a connection error."""

    def __init__(self, exc: Exception | None = None) -> None:
        super().__init__()
        from redis.exceptions import ConnectionError as RedisConnectionError

        self.exc = exc or RedisConnectionError("connection reset")

    async def get(self, key: str):
        raise self.exc

    async def set(self, key: str, value: bytes, ex: int | None = None) -> bool:
        raise self.exc

    async def delete(self, *keys: str) -> int:
        raise self.exc


class UnreachableRedis(FakeRedis):
    """Ping fails, as when the server refuses connections."""

    async def ping(self) -> bool:
        from redis.exceptions import ConnectionError as RedisConnectionError

        raise RedisConnectionError("Connection refused")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def dt_clock():
    return FakeDatetimeClock()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture(autouse=True)
def _reset_services():
    """Never leak a services singleton (and its sweeper threads) across tests."""
    yield
    from core.services import reset_services

    reset_services()

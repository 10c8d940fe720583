"""Process-wide service context.

One instance of each subsystem per process, held by ``DashboardServices``
and built from configuration. Application code asks ``get_services()``
for it instead of importing module-level singletons::

    services = init_services(load_config())
    await services.start()
    ...
    await services.stop()
"""
from __future__ import annotations

import threading
import time
from collections.abc import Callable
from datetime import datetime
from typing import Any

from config.settings import Config
from core.exceptions import ServicesNotInitializedError
from data.cache import Clock
from data.data_quality import DataQualityAssessment
from data.page_cache import IncrementalCacheHandler
from data.trend_cache import HistoricalDataCache, TrendCache
from utils.logger import get_logger
from utils.redis_cache import RemoteCache

log = get_logger(__name__)


class DashboardServices:
    """Owns the caches, the Redis tier and the quality engine.

    Args:
        config: Validated configuration.
        redis_client: Pre-built async Redis client (tests pass a double).
        clock: Epoch-seconds time source for the caches.
        now: Datetime source for the quality engine.
    """

    def __init__(
        self,
        config: Config | None = None,
        redis_client: Any | None = None,
        clock: Clock = time.time,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self.config = config or Config()
        self.remote = RemoteCache(self.config.remote, client=redis_client)
        self.trend_cache = TrendCache(
            memory_config=self.config.memory,
            remote=self.remote,
            compression_config=self.config.compression,
            clock=clock,
        )
        self.historical_cache = HistoricalDataCache(
            memory_config=self.config.historical_memory,
            remote=self.remote,
            compression_config=self.config.compression,
            clock=clock,
        )
        self.page_cache = IncrementalCacheHandler(self.config.page_cache, clock=clock)
        if now is None:
            self.quality = DataQualityAssessment(self.config.quality)
        else:
            self.quality = DataQualityAssessment(self.config.quality, now=now)
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    async def start(self) -> None:
        """Connect Redis once and start both sweepers. Never fails on Redis."""
        if self._started:
            return
        await self.remote.connect()
        await self.trend_cache.start()
        await self.historical_cache.start()
        self._started = True
        log.info("Dashboard services started (redis=%s)", self.remote.enabled)

    async def stop(self) -> None:
        if not self._started:
            return
        await self.trend_cache.stop()
        await self.historical_cache.stop()
        await self.remote.close()
        self._started = False
        log.info("Dashboard services stopped")

    def stop_background(self) -> None:
        """Stop sweeper threads without touching the event loop."""
        self.trend_cache.sweeper.stop()
        self.historical_cache.sweeper.stop()

    def get_stats(self) -> dict[str, Any]:
        return {
            "trend_cache": self.trend_cache.get_stats(),
            "historical_cache": self.historical_cache.get_stats(),
            "page_cache": self.page_cache.get_stats(),
        }


_services: DashboardServices | None = None
_services_lock = threading.Lock()


def init_services(
    config: Config | None = None,
    redis_client: Any | None = None,
    **kwargs: Any,
) -> DashboardServices:
    """Build the process services; a second call replaces the first."""
    global _services
    with _services_lock:
        if _services is not None:
            log.warning("init_services called twice; replacing existing services")
            _services.stop_background()
        _services = DashboardServices(config, redis_client=redis_client, **kwargs)
        return _services


def get_services() -> DashboardServices:
    """Current services; fails fast before ``init_services``."""
    services = _services
    if services is None:
        raise ServicesNotInitializedError(
            "Dashboard services requested before init_services()",
            code="SERVICES_NOT_INITIALIZED",
        )
    return services


def reset_services() -> None:
    """Forget the current services (for testing).

    Stops sweeper threads; call ``await services.stop()`` first when the
    Redis connection should be closed cleanly.
    """
    global _services
    with _services_lock:
        if _services is not None:
            _services.stop_background()
        _services = None

# data/source_health.py
"""Upstream API health records and the reliability score derived from them.

A health check reports ``(api_status, response_time_ms, success_rate)``
for one source. Reliability starts from the success rate and is scaled
down for a non-UP status and for slow responses:

    DEGRADED x0.8, DOWN x0.1, UNKNOWN x0.5
    response > 5000 ms x0.8, else > 2000 ms x0.9
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from utils.logger import get_logger

log = get_logger(__name__)


class ApiStatus(Enum):
    """Reported state of an upstream API."""
    UP = "UP"
    DOWN = "DOWN"
    DEGRADED = "DEGRADED"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, value: Any) -> ApiStatus:
        """Lenient parse; anything unrecognised is UNKNOWN."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            return cls.UNKNOWN


_STATUS_FACTOR: dict[ApiStatus, float] = {
    ApiStatus.UP: 1.0,
    ApiStatus.DEGRADED: 0.8,
    ApiStatus.DOWN: 0.1,
    ApiStatus.UNKNOWN: 0.5,
}

SLOW_RESPONSE_MS = 2000.0
VERY_SLOW_RESPONSE_MS = 5000.0


@dataclass
class DataSourceQuality:
    """Latest health check for one source; overwritten on every check."""
    source: str
    api_status: ApiStatus
    response_time_ms: float
    success_rate: float
    last_check: datetime
    reliability: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "api_status": self.api_status.value,
            "response_time_ms": round(self.response_time_ms, 1),
            "success_rate": round(self.success_rate, 2),
            "last_check": self.last_check.isoformat(),
            "reliability": self.reliability,
        }


def _finite(value: Any, default: float = 0.0) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return number if math.isfinite(number) else default


def calculate_source_reliability(
    api_status: ApiStatus | str,
    response_time_ms: float,
    success_rate_percent: float,
) -> int:
    """Reliability on the 0-100 scale for one health check.

    Malformed numbers are treated as 0 so a broken health check lowers the score
    instead of raising.
    """
    status = ApiStatus.parse(api_status)
    reliability = _finite(success_rate_percent) * _STATUS_FACTOR[status]

    response_time = _finite(response_time_ms)
    if response_time > VERY_SLOW_RESPONSE_MS:
        reliability *= 0.8
    elif response_time > SLOW_RESPONSE_MS:
        reliability *= 0.9

    return int(min(100, max(0, math.floor(reliability + 0.5))))


def build_source_quality(
    source: str,
    api_status: ApiStatus | str,
    response_time_ms: float,
    success_rate_percent: float,
    checked_at: datetime,
) -> DataSourceQuality:
    status = ApiStatus.parse(api_status)
    reliability = calculate_source_reliability(status, response_time_ms, success_rate_percent)
    if status is not ApiStatus.UP:
        log.info("Source %s reported %s (reliability=%d)", source, status.value, reliability)
    return DataSourceQuality(
        source=source,
        api_status=status,
        response_time_ms=_finite(response_time_ms),
        success_rate=_finite(success_rate_percent),
        last_check=checked_at,
        reliability=reliability,
    )

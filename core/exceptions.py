"""
Exception hierarchy for the cache and data quality subsystems.

Data-path failures (Redis outages, corrupt payloads, malformed metric
input) are absorbed inside the subsystems and only show up in stats and
logs. What surfaces here is either internal signalling between layers
(``PayloadDecodeError``) or a precondition violation.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional


class DashboardError(Exception):
    """Base exception for the dashboard core."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__
        self.details: Dict[str, Any] = dict(details) if details else {}
        self.timestamp = datetime.now()

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dict for logging/API responses."""
        return {
            "error_type": self.__class__.__name__,
            "error": self.code,
            "message": self.message,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }

    def __str__(self) -> str:
        parts = [self.message]
        if self.code and self.code != self.__class__.__name__:
            parts.insert(0, f"[{self.code}]")
        if self.details:
            parts.append(f"(details: {self.details})")
        return " ".join(parts)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code!r}, "
            f"details={self.details!r})"
        )


# ── Cache Errors ─────────────────────────────────────────────


class CacheError(DashboardError):
    """Base cache error."""


class PayloadDecodeError(CacheError):
    """A cached payload could not be decoded back into a value."""


# ── Lifecycle Errors ─────────────────────────────────────────


class ServicesNotInitializedError(DashboardError):
    """Services were requested before ``init_services`` ran."""

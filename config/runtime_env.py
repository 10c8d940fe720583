from __future__ import annotations

import os
from typing import Final

_TRUTHY_ENV: Final[frozenset[str]] = frozenset(
    {"1", "true", "yes", "on"}
)


def is_truthy(text: str) -> bool:
    """Shared truthy policy for env flags and textual payload flags."""
    return str(text).strip().lower() in _TRUTHY_ENV


def env_flag(name: str, default: str = "0") -> bool:
    """Read boolean-like env flags using a shared truthy policy."""
    return is_truthy(os.environ.get(name, default))


def env_text(name: str, default: str | None = "") -> str:
    """Read text env value; unset or blank values yield ``default``."""
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return str(default or "")
    return raw.strip()


def env_int(name: str, default: int = 0) -> int:
    """Read integer env values with safe fallback on invalid input."""
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return int(default)
    try:
        return int(raw.strip())
    except (TypeError, ValueError):
        return int(default)


def env_float(name: str, default: float = 0.0) -> float:
    """Read float env values with safe fallback on invalid input."""
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return float(default)
    try:
        return float(raw.strip())
    except (TypeError, ValueError):
        return float(default)

# config/settings.py
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

from config.runtime_env import env_flag, env_float, env_int, env_text

# Minimal logger that doesn't depend on our logger module
# (avoids circular import: settings -> logger -> settings)
_log = logging.getLogger("config.settings")

ENV_PREFIX = "CRYPTODASH_"
_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class MemoryCacheConfig:
    """In-process cache tier."""
    max_size: int = 1000
    default_ttl_seconds: float = 300.0
    cleanup_interval_seconds: float = 60.0


@dataclass
class RemoteCacheConfig:
    """Redis tier. An empty url disables the tier."""
    url: str = ""
    default_ttl_seconds: float = 600.0
    key_prefix: str = "cryptodash:"
    operation_timeout_seconds: float = 2.0

    @property
    def enabled(self) -> bool:
        return bool(self.url)


@dataclass
class CompressionConfig:
    enabled: bool = True
    size_threshold_bytes: int = 1024


@dataclass
class PageCacheConfig:
    """Response/page level cache."""
    max_size: int = 1000
    default_ttl_seconds: float = 300.0
    cleanup_threshold: float = 0.8


@dataclass
class QualityConfig:
    """Data quality engine tuning.

    ``update_frequencies`` and ``source_reliability`` are merged over the
    built-in tables in ``data.data_quality``.
    """
    default_consistency: float = 85.0
    consistency_window: int = 0
    alert_dedup_window_minutes: float = 30.0
    default_update_frequency_minutes: float = 60.0
    default_source_reliability: float = 50.0
    update_frequencies: Dict[str, float] = field(default_factory=dict)
    source_reliability: Dict[str, float] = field(default_factory=dict)


@dataclass
class LoggingConfig:
    """Console level and optional rotating file log. An empty log_dir keeps file logging off."""
    level: str = "INFO"
    log_dir: str = ""
    max_bytes: int = 10 * 1024 * 1024
    backup_count: int = 5


def _apply_section(section: Any, data: Dict[str, Any], prefix: str) -> List[str]:
    """Apply a JSON dict onto a dataclass section, type-checked per field."""
    warnings: List[str] = []
    if not isinstance(data, dict):
        return [f"{prefix}: expected object, got {type(data).__name__}"]

    known = {f.name for f in fields(section)}
    for key, value in data.items():
        if key not in known:
            warnings.append(f"{prefix}.{key}: unknown field ignored")
            continue
        current = getattr(section, key)
        # bool before int: bool is an int subtype
        if isinstance(current, bool):
            if isinstance(value, bool):
                setattr(section, key, value)
            else:
                warnings.append(f"{prefix}.{key}: expected bool, got {value!r}")
        elif isinstance(current, (int, float)) and isinstance(value, (int, float)) and not isinstance(value, bool):
            setattr(section, key, type(current)(value))
        elif isinstance(current, str) and isinstance(value, str):
            setattr(section, key, value)
        elif isinstance(current, dict) and isinstance(value, dict):
            setattr(section, key, dict(value))
        else:
            warnings.append(
                f"{prefix}.{key}: type mismatch, expected "
                f"{type(current).__name__}, got {type(value).__name__}"
            )
    return warnings


class Config:
    """Configuration for the cache and data quality subsystems.

    Loaded once at process start and handed to ``core.services``::

        config = load_config()
        services = init_services(config)

    Sources, later wins: dataclass defaults, optional JSON file,
    ``CRYPTODASH_*`` environment variables.
    """

    def __init__(self) -> None:
        self.memory = MemoryCacheConfig()
        self.historical_memory = MemoryCacheConfig(
            max_size=500,
            default_ttl_seconds=600.0,
            cleanup_interval_seconds=120.0,
        )
        self.remote = RemoteCacheConfig()
        self.compression = CompressionConfig()
        self.page_cache = PageCacheConfig()
        self.quality = QualityConfig()
        self.logging = LoggingConfig()
        self._validation_warnings: List[str] = []

    _SECTIONS = (
        "memory",
        "historical_memory",
        "remote",
        "compression",
        "page_cache",
        "quality",
        "logging",
    )

    @classmethod
    def load(cls, config_file: Optional[Path | str] = None) -> Config:
        config = cls()
        if config_file is not None:
            config.apply_file(Path(config_file))
        config.apply_env()
        config.validate()
        return config

    def apply_file(self, path: Path) -> None:
        if not path.exists():
            _log.warning("Config file %s not found; using defaults", path)
            return
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            _log.warning("Failed to load config file %s: %s", path, e)
            return
        self.apply_dict(data)

    def apply_dict(self, data: Dict[str, Any]) -> None:
        for name, section_data in data.items():
            if name not in self._SECTIONS:
                self._validation_warnings.append(f"{name}: unknown section ignored")
                continue
            self._validation_warnings.extend(
                _apply_section(getattr(self, name), section_data, name)
            )

    def apply_env(self) -> None:
        """Overlay ``CRYPTODASH_*`` environment variables."""
        p = ENV_PREFIX
        m = self.memory
        m.max_size = env_int(f"{p}MEMORY_MAX_SIZE", m.max_size)
        m.default_ttl_seconds = env_float(f"{p}MEMORY_DEFAULT_TTL", m.default_ttl_seconds)
        m.cleanup_interval_seconds = env_float(
            f"{p}MEMORY_CLEANUP_INTERVAL", m.cleanup_interval_seconds
        )

        r = self.remote
        r.url = env_text(f"{p}REDIS_URL", r.url)
        r.default_ttl_seconds = env_float(f"{p}REDIS_DEFAULT_TTL", r.default_ttl_seconds)
        r.key_prefix = env_text(f"{p}REDIS_KEY_PREFIX", r.key_prefix)
        r.operation_timeout_seconds = env_float(
            f"{p}REDIS_TIMEOUT", r.operation_timeout_seconds
        )

        c = self.compression
        c.enabled = env_flag(f"{p}COMPRESSION_ENABLED", "1" if c.enabled else "0")
        c.size_threshold_bytes = env_int(
            f"{p}COMPRESSION_THRESHOLD", c.size_threshold_bytes
        )

        pc = self.page_cache
        pc.max_size = env_int(f"{p}PAGE_CACHE_MAX_SIZE", pc.max_size)
        pc.default_ttl_seconds = env_float(f"{p}PAGE_CACHE_TTL", pc.default_ttl_seconds)

        q = self.quality
        q.default_consistency = env_float(f"{p}QUALITY_CONSISTENCY", q.default_consistency)
        q.consistency_window = env_int(f"{p}QUALITY_CONSISTENCY_WINDOW", q.consistency_window)

        lg = self.logging
        lg.level = env_text(f"{p}LOG_LEVEL", lg.level)
        lg.log_dir = env_text(f"{p}LOG_DIR", lg.log_dir)

    def validate(self) -> None:
        """Collect warnings and clamp values that would break the caches."""
        warnings = self._validation_warnings

        for name in ("memory", "historical_memory"):
            section: MemoryCacheConfig = getattr(self, name)
            if section.max_size < 1:
                warnings.append(f"{name}.max_size must be >= 1, got {section.max_size}")
                section.max_size = 1
            if section.cleanup_interval_seconds <= 0:
                warnings.append(f"{name}.cleanup_interval_seconds must be positive")
                section.cleanup_interval_seconds = 60.0

        if self.page_cache.max_size < 1:
            warnings.append("page_cache.max_size must be >= 1")
            self.page_cache.max_size = 1
        if not (0 < self.page_cache.cleanup_threshold <= 1):
            warnings.append(
                f"page_cache.cleanup_threshold must be in (0, 1], "
                f"got {self.page_cache.cleanup_threshold}"
            )
            self.page_cache.cleanup_threshold = 0.8

        if self.remote.operation_timeout_seconds <= 0:
            warnings.append("remote.operation_timeout_seconds must be positive")
            self.remote.operation_timeout_seconds = 2.0
        if self.remote.url and not self.remote.key_prefix:
            warnings.append("remote.key_prefix is empty; clear() would scan the whole database")
            self.remote.key_prefix = "cryptodash:"

        if not (0 <= self.quality.default_consistency <= 100):
            warnings.append("quality.default_consistency must be within [0, 100]")
            self.quality.default_consistency = min(100.0, max(0.0, self.quality.default_consistency))
        if self.quality.consistency_window < 0:
            warnings.append("quality.consistency_window must be >= 0")
            self.quality.consistency_window = 0

        level_name = self.logging.level.strip().upper()
        if level_name not in _LOG_LEVELS:
            warnings.append(f"logging.level {self.logging.level!r} is not a level name")
            level_name = "INFO"
        self.logging.level = level_name
        if self.logging.max_bytes < 1024:
            warnings.append("logging.max_bytes must be >= 1024")
            self.logging.max_bytes = 1024
        if self.logging.backup_count < 0:
            warnings.append("logging.backup_count must be >= 0")
            self.logging.backup_count = 0

        for w in warnings:
            _log.warning("Config validation: %s", w)

    @property
    def validation_warnings(self) -> List[str]:
        return list(self._validation_warnings)

    def __repr__(self) -> str:
        return (
            f"Config(memory={self.memory}, remote_enabled={self.remote.enabled}, "
            f"compression={self.compression}, page_cache={self.page_cache})"
        )


def load_config(config_file: Optional[Path | str] = None) -> Config:
    """Build a validated configuration from file and environment."""
    return Config.load(config_file)

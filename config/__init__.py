"""Configuration Package."""
from .settings import (
    CompressionConfig,
    Config,
    LoggingConfig,
    MemoryCacheConfig,
    PageCacheConfig,
    QualityConfig,
    RemoteCacheConfig,
    load_config,
)

__all__ = [
    'Config',
    'load_config',
    'MemoryCacheConfig',
    'RemoteCacheConfig',
    'CompressionConfig',
    'PageCacheConfig',
    'QualityConfig',
    'LoggingConfig',
]

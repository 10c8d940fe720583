# data/__init__.py

def __getattr__(name: str):
    """Lazy import dispatcher for the data package."""

    _CACHE = {
        'CacheEntry', 'CacheStatistics', 'MemoryCache',
        'ExpirySweeper', 'build_cache_key',
    }
    _CODEC = {'EncodedPayload', 'encode_payload', 'decode_payload'}
    _TREND = {'TrendCache', 'HistoricalDataCache', 'TIMEFRAME_TTL_SECONDS'}
    _PAGE = {'IncrementalCacheHandler', 'PageCacheHit', 'PageCacheStats'}
    _QUALITY = {
        'DataQualityAssessment', 'DataQualityMetric', 'MetricObservation',
        'QualityAlert', 'SystemQualityReport', 'MetricCategory',
        'QualityStatus', 'AlertType', 'AlertSeverity', 'SystemStatus',
    }
    _SOURCES = {
        'ApiStatus', 'DataSourceQuality', 'calculate_source_reliability',
    }

    if name in _CACHE:
        from . import cache as _cache
        return getattr(_cache, name)

    if name in _CODEC:
        from . import payload_codec as _codec
        return getattr(_codec, name)

    if name in _TREND:
        from . import trend_cache as _trend
        return getattr(_trend, name)

    if name in _PAGE:
        from . import page_cache as _page
        return getattr(_page, name)

    if name in _QUALITY:
        from . import data_quality as _quality
        return getattr(_quality, name)

    if name in _SOURCES:
        from . import source_health as _sources
        return getattr(_sources, name)

    raise AttributeError(f"module 'data' has no attribute {name!r}")

__all__ = [
    'CacheEntry',
    'CacheStatistics',
    'MemoryCache',
    'ExpirySweeper',
    'build_cache_key',
    'EncodedPayload',
    'encode_payload',
    'decode_payload',
    'TrendCache',
    'HistoricalDataCache',
    'TIMEFRAME_TTL_SECONDS',
    'IncrementalCacheHandler',
    'PageCacheHit',
    'PageCacheStats',
    'DataQualityAssessment',
    'DataQualityMetric',
    'MetricObservation',
    'QualityAlert',
    'SystemQualityReport',
    'MetricCategory',
    'QualityStatus',
    'AlertType',
    'AlertSeverity',
    'SystemStatus',
    'ApiStatus',
    'DataSourceQuality',
    'calculate_source_reliability',
]

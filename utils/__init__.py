"""Utility package exports with lazy imports.

Importing ``utils`` stays cheap: the Redis client library is only loaded
when ``RemoteCache`` is first requested.
"""

from __future__ import annotations

from importlib import import_module

_LAZY_EXPORTS = {
    # Logging
    "get_logger": (".logger", "get_logger"),
    "setup_logging": (".logger", "setup_logging"),
    "teardown_logging": (".logger", "teardown_logging"),
    "configure_logging": (".logger", "configure_logging"),
    # Redis tier
    "RemoteCache": (".redis_cache", "RemoteCache"),
    "RemoteCacheStats": (".redis_cache", "RemoteCacheStats"),
    # Serialization
    "dataclass_to_dict": (".serialization", "dataclass_to_dict"),
    "to_serializable": (".serialization", "to_serializable"),
}

__all__ = list(_LAZY_EXPORTS.keys())


def __getattr__(name: str):
    target = _LAZY_EXPORTS.get(str(name))
    if target is None:
        raise AttributeError(f"module 'utils' has no attribute {name!r}")
    mod_name, attr_name = target
    module = import_module(mod_name, __name__)
    value = getattr(module, attr_name)
    globals()[name] = value
    return value

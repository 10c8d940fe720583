"""Conversion of reports, dataclasses and cached values into plain JSON types."""
from __future__ import annotations

import math
from dataclasses import fields, is_dataclass
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import Any


def dataclass_to_dict(dc_instance: Any) -> dict[str, Any]:
    """Serialize a dataclass to a JSON-compatible dict, recursively.

    Returns an empty dict for non-dataclass input.
    """
    if not is_dataclass(dc_instance) or isinstance(dc_instance, type):
        return {}
    return {
        f.name: to_serializable(getattr(dc_instance, f.name))
        for f in fields(dc_instance)
        if f.repr
    }


def to_serializable(obj: Any) -> Any:
    """Convert an object to a JSON-serializable representation.

    Non-finite floats become None so the output is strict JSON.
    """
    if obj is None or isinstance(obj, (bool, int, str)):
        return obj
    if isinstance(obj, float):
        return obj if math.isfinite(obj) else None
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, Path):
        return str(obj)
    if is_dataclass(obj) and not isinstance(obj, type):
        return dataclass_to_dict(obj)
    if isinstance(obj, dict):
        return {str(k): to_serializable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple, set, frozenset)):
        return [to_serializable(item) for item in obj]
    return str(obj)

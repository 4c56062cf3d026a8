"""Convert engine result trees into JSON-safe primitives."""

import dataclasses
import enum
import math
from datetime import date, datetime
from typing import Any

from pydantic import BaseModel


def to_plain(value: Any) -> Any:
    """
    Recursively convert dataclasses, pydantic models, enums, dates and sets.

    Dataclass fields starting with an underscore are internal and skipped.
    Non-finite floats become None.
    """
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {
            f.name: to_plain(getattr(value, f.name))
            for f in dataclasses.fields(value)
            if not f.name.startswith("_")
        }
    if isinstance(value, BaseModel):
        return to_plain(value.model_dump())
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, dict):
        return {_plain_key(k): to_plain(v) for k, v in value.items()}
    if isinstance(value, (set, frozenset)):
        return sorted((to_plain(v) for v in value), key=str)
    if isinstance(value, (list, tuple)):
        return [to_plain(v) for v in value]
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return value


def _plain_key(key: Any) -> Any:
    if isinstance(key, enum.Enum):
        return key.value
    if isinstance(key, (datetime, date)):
        return key.isoformat()
    return key

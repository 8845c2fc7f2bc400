from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Any

import rfc8785
from pydantic import BaseModel

_PASSTHROUGH_TYPES = (bool, int, float, str, type(None))


def _to_json_primitive(value: Any) -> bool | int | float | str | None | list[Any] | dict[str, Any]:
    """Reduce models, enums, dates and sets to the types ``rfc8785.dumps`` accepts.

    Sets are emitted as sorted lists so that category sets hash the same
    regardless of construction order.

    Raises:
        TypeError: If *value* holds a type with no JSON form.
    """
    if isinstance(value, Enum):
        return _to_json_primitive(value.value)

    if isinstance(value, _PASSTHROUGH_TYPES):
        return value

    if isinstance(value, BaseModel):
        return _to_json_primitive(value.model_dump())

    if isinstance(value, dict):
        return {str(k): _to_json_primitive(v) for k, v in value.items()}

    if isinstance(value, (set, frozenset)):
        return sorted((_to_json_primitive(item) for item in value), key=lambda item: rfc8785.dumps(item))

    if isinstance(value, (list, tuple)):
        return [_to_json_primitive(item) for item in value]

    if isinstance(value, (datetime, date)):
        return value.isoformat()

    raise TypeError(f"Cannot serialize type {type(value).__name__} to canonical JSON")


def to_canonical_json(value: Any) -> str:
    """Serialize *value* as RFC 8785 canonical JSON."""
    return rfc8785.dumps(_to_json_primitive(value)).decode("utf-8")

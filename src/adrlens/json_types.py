"""JSON-like value types and permissive readers for loosely-typed payloads.

Analyzer output and editor settings are not guaranteed to follow one schema
across versions, so fields are read through alias lists and coerced here
instead of at every call site.
"""

from __future__ import annotations

import math
from typing import Mapping, TypeAlias


JSONScalar: TypeAlias = str | int | float | bool | None
JSONValue: TypeAlias = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]
JSONObject: TypeAlias = dict[str, JSONValue]
JSONArray: TypeAlias = list[JSONValue]


def pick_text(payload: Mapping[str, object], *keys: str) -> str | None:
    """First non-empty value among ``keys``, rendered as text."""
    for key in keys:
        value = payload.get(key)
        if value is None or isinstance(value, (dict, list)):
            continue
        text = str(value).strip()
        if text:
            return text
    return None


def pick_float(payload: Mapping[str, object], *keys: str) -> float | None:
    for key in keys:
        value = payload.get(key)
        if isinstance(value, bool) or value is None:
            continue
        try:
            return float(value)
        except (TypeError, ValueError):
            continue
    return None


def pick_int(payload: Mapping[str, object], *keys: str) -> int | None:
    number = pick_float(payload, *keys)
    if number is None or not math.isfinite(number):
        return None
    return int(number)


def pick_object(payload: Mapping[str, object], *keys: str) -> Mapping[str, object] | None:
    for key in keys:
        value = payload.get(key)
        if isinstance(value, Mapping):
            return value
    return None

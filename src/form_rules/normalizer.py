from __future__ import annotations

import json
import math
from typing import Any

Primitive = str | int | float | bool | None


def canonical_json(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), sort_keys=True, ensure_ascii=False, default=str)


def normalize_value(value: Any) -> Primitive:
    """Reduce a field value to a primitive so comparisons are structural.

    Lists and dicts become their canonical JSON text; primitives pass through.
    """
    if value is None:
        return None
    if isinstance(value, (list, tuple, dict)):
        return canonical_json(list(value) if isinstance(value, tuple) else value)
    return value


def normalized_equals(left: Any, right: Any) -> bool:
    a = normalize_value(left)
    b = normalize_value(right)
    # True == 1 in Python; field values keep booleans distinct from numbers
    if isinstance(a, bool) != isinstance(b, bool):
        return False
    return a == b


def is_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, float) and not math.isnan(value)


def is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, tuple)):
        return len(value) == 0
    if isinstance(value, dict):
        return len(value) == 0
    return False


def to_text(value: Any) -> str:
    if value is None or value is False:
        return ""
    if value is True:
        return "true"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (list, tuple, dict)):
        return canonical_json(value)
    return str(value)


def string_contains(haystack: Any, needle: Any) -> bool:
    return to_text(needle).lower() in to_text(haystack).lower()


def string_starts_with(value: Any, prefix: Any) -> bool:
    return to_text(value).lower().startswith(to_text(prefix).lower())


def string_ends_with(value: Any, suffix: Any) -> bool:
    return to_text(value).lower().endswith(to_text(suffix).lower())


def list_contains(items: Any, candidate: Any) -> bool:
    if not isinstance(items, (list, tuple)):
        return False
    return any(normalized_equals(item, candidate) for item in items)

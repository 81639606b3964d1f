from __future__ import annotations

from enum import Enum
from typing import Any, Callable

from .normalizer import (
    is_empty,
    is_number,
    list_contains,
    normalize_value,
    normalized_equals,
    string_contains,
    string_ends_with,
    string_starts_with,
)


class UnknownOperatorError(ValueError):
    """Raised when a condition names an operator outside the supported set."""

    def __init__(self, operator: str) -> None:
        super().__init__(f"unknown operator: {operator!r}")
        self.operator = operator


class Operator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    GREATER_OR_EQUAL = "greater_or_equal"
    LESS_THAN = "less_than"
    LESS_OR_EQUAL = "less_or_equal"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    IN = "in"
    NOT_IN = "not_in"
    EMPTY = "empty"
    FILLED = "filled"


OPERATOR_ALIASES: dict[str, Operator] = {
    **{member.value: member for member in Operator},
    "==": Operator.EQUALS,
    "===": Operator.EQUALS,
    "eq": Operator.EQUALS,
    "!=": Operator.NOT_EQUALS,
    "!==": Operator.NOT_EQUALS,
    "notequals": Operator.NOT_EQUALS,
    "neq": Operator.NOT_EQUALS,
    ">": Operator.GREATER_THAN,
    "gt": Operator.GREATER_THAN,
    "greaterthan": Operator.GREATER_THAN,
    ">=": Operator.GREATER_OR_EQUAL,
    "gte": Operator.GREATER_OR_EQUAL,
    "greater_than_or_equal": Operator.GREATER_OR_EQUAL,
    "greaterorequal": Operator.GREATER_OR_EQUAL,
    "<": Operator.LESS_THAN,
    "lt": Operator.LESS_THAN,
    "lessthan": Operator.LESS_THAN,
    "<=": Operator.LESS_OR_EQUAL,
    "lte": Operator.LESS_OR_EQUAL,
    "less_than_or_equal": Operator.LESS_OR_EQUAL,
    "lessorequal": Operator.LESS_OR_EQUAL,
    "notcontains": Operator.NOT_CONTAINS,
    "startswith": Operator.STARTS_WITH,
    "endswith": Operator.ENDS_WITH,
    "notin": Operator.NOT_IN,
    "is_empty": Operator.EMPTY,
    "not_empty": Operator.FILLED,
    "is_not_empty": Operator.FILLED,
}


def _numeric(compare: Callable[[float, float], bool]) -> Callable[[Any, Any], bool]:
    def _apply(field_value: Any, compare_value: Any) -> bool:
        left = normalize_value(field_value)
        right = normalize_value(compare_value)
        if not (is_number(left) and is_number(right)):
            return False
        return compare(left, right)

    return _apply


def _contains(field_value: Any, compare_value: Any) -> bool:
    if isinstance(field_value, (list, tuple)):
        return list_contains(field_value, compare_value)
    return string_contains(field_value, compare_value)


def _member_of(field_value: Any, compare_value: Any) -> bool:
    if not isinstance(compare_value, (list, tuple)):
        return False
    return list_contains(compare_value, field_value)


def _not_member_of(field_value: Any, compare_value: Any) -> bool:
    if not isinstance(compare_value, (list, tuple)):
        return True
    return not list_contains(compare_value, field_value)


OPERATOR_TABLE: dict[Operator, Callable[[Any, Any], bool]] = {
    Operator.EQUALS: normalized_equals,
    Operator.NOT_EQUALS: lambda field_value, compare_value: not normalized_equals(field_value, compare_value),
    Operator.GREATER_THAN: _numeric(lambda a, b: a > b),
    Operator.GREATER_OR_EQUAL: _numeric(lambda a, b: a >= b),
    Operator.LESS_THAN: _numeric(lambda a, b: a < b),
    Operator.LESS_OR_EQUAL: _numeric(lambda a, b: a <= b),
    Operator.CONTAINS: _contains,
    Operator.NOT_CONTAINS: lambda field_value, compare_value: not _contains(field_value, compare_value),
    Operator.STARTS_WITH: string_starts_with,
    Operator.ENDS_WITH: string_ends_with,
    Operator.IN: _member_of,
    Operator.NOT_IN: _not_member_of,
    Operator.EMPTY: lambda field_value, _compare_value: is_empty(field_value),
    Operator.FILLED: lambda field_value, _compare_value: not is_empty(field_value),
}


def resolve_operator(name: Any) -> Operator | None:
    if isinstance(name, Operator):
        return name
    if not isinstance(name, str):
        return None
    return OPERATOR_ALIASES.get(name.strip().lower())


def evaluate_operator(field_value: Any, operator: str | Operator, compare_value: Any) -> bool:
    resolved = resolve_operator(operator)
    if resolved is None:
        raise UnknownOperatorError(str(operator))
    return OPERATOR_TABLE[resolved](field_value, compare_value)

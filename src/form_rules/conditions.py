from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Mapping

from .operators import OPERATOR_TABLE, resolve_operator

logger = logging.getLogger(__name__)

UNKNOWN_OPERATOR = "unknown_operator"
MALFORMED_CONDITION = "malformed_condition"


@dataclass(slots=True, frozen=True)
class SimpleCondition:
    field_id: int | str
    operator: str
    value: Any = None


@dataclass(slots=True, frozen=True)
class ComplexCondition:
    logic: str
    conditions: tuple[SimpleCondition, ...]


@dataclass(slots=True, frozen=True)
class EvalError:
    kind: str
    detail: str

    def describe(self) -> str:
        return f"{self.kind}: {self.detail}"


@dataclass(slots=True, frozen=True)
class EvalResult:
    """Either a boolean outcome or the error that prevented one."""

    value: bool = False
    error: EvalError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: bool) -> EvalResult:
        return cls(value=bool(value))

    @classmethod
    def failure(cls, kind: str, detail: str) -> EvalResult:
        return cls(error=EvalError(kind=kind, detail=detail))


@dataclass(slots=True, frozen=True)
class VisibilityResult:
    is_visible: bool
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {"is_visible": self.is_visible, "reason": self.reason}


def _field_id_of(raw: Mapping[str, Any]) -> Any:
    if "field_id" in raw:
        return raw["field_id"]
    return raw.get("fieldid")


def _is_simple_shape(raw: Any) -> bool:
    return isinstance(raw, Mapping) and ("field_id" in raw or "fieldid" in raw) and "operator" in raw


def _is_complex_shape(raw: Any) -> bool:
    return isinstance(raw, Mapping) and "logic" in raw and "conditions" in raw


def _parse_simple(raw: Mapping[str, Any]) -> SimpleCondition | EvalError:
    field_id = _field_id_of(raw)
    if field_id is None or isinstance(field_id, (bool, list, dict)):
        return EvalError(MALFORMED_CONDITION, f"invalid field id {field_id!r}")
    operator = raw.get("operator")
    if not isinstance(operator, str):
        return EvalError(MALFORMED_CONDITION, f"operator must be a string, got {type(operator).__name__}")
    return SimpleCondition(field_id=field_id, operator=operator, value=raw.get("value"))


def parse_condition(raw: Any) -> SimpleCondition | ComplexCondition | EvalError:
    """Turn a wire-format show_when clause into a typed condition.

    Complex conditions are one level deep: every child must be a simple
    condition, otherwise the whole clause is malformed.
    """
    if isinstance(raw, (SimpleCondition, ComplexCondition)):
        return raw
    if _is_complex_shape(raw):
        children = raw["conditions"]
        if children is None:
            children = []
        if not isinstance(children, list):
            return EvalError(MALFORMED_CONDITION, "conditions must be a list")
        parsed: list[SimpleCondition] = []
        for index, child in enumerate(children):
            if not _is_simple_shape(child):
                return EvalError(MALFORMED_CONDITION, f"sub-condition {index} is not a simple condition")
            simple = _parse_simple(child)
            if isinstance(simple, EvalError):
                return simple
            parsed.append(simple)
        return ComplexCondition(logic=str(raw["logic"]), conditions=tuple(parsed))
    if _is_simple_shape(raw):
        return _parse_simple(raw)
    return EvalError(MALFORMED_CONDITION, "unrecognized condition structure")


def lookup_field_value(values: Mapping[Any, Any], field_id: Any) -> tuple[bool, Any]:
    """Return (found, value) for a field in the snapshot.

    Snapshots decoded from JSON carry string keys, so both the id and its
    string form are tried.
    """
    candidates = [field_id, str(field_id)]
    if isinstance(field_id, str) and field_id.strip().lstrip("-").isdigit():
        candidates.append(int(field_id))
    for key in candidates:
        entry = values.get(key)
        if entry is None:
            continue
        if isinstance(entry, Mapping):
            return True, entry.get("value")
        return True, getattr(entry, "value", entry)
    return False, None


def evaluate_simple(condition: SimpleCondition, values: Mapping[Any, Any]) -> EvalResult:
    operator = resolve_operator(condition.operator)
    if operator is None:
        return EvalResult.failure(UNKNOWN_OPERATOR, condition.operator)

    found, field_value = lookup_field_value(values, condition.field_id)
    if not found:
        logger.debug("condition_field_missing", extra={"field_id": condition.field_id})
        return EvalResult.success(False)

    outcome = OPERATOR_TABLE[operator](field_value, condition.value)
    logger.debug(
        "simple_condition_evaluated",
        extra={"field_id": condition.field_id, "operator": operator.value, "result": outcome},
    )
    return EvalResult.success(outcome)


def evaluate_complex(condition: ComplexCondition, values: Mapping[Any, Any]) -> EvalResult:
    if not condition.conditions:
        return EvalResult.success(True)

    results: list[bool] = []
    for child in condition.conditions:
        child_result = evaluate_simple(child, values)
        if not child_result.ok:
            return child_result
        results.append(child_result.value)

    logic = condition.logic
    if logic == "or":
        return EvalResult.success(any(results))
    if logic != "and":
        # Unrecognized combinators are treated as "and".
        logger.warning("unknown_condition_logic", extra={"logic": logic})
    return EvalResult.success(all(results))


def evaluate_condition(condition: SimpleCondition | ComplexCondition, values: Mapping[Any, Any]) -> EvalResult:
    if isinstance(condition, ComplexCondition):
        return evaluate_complex(condition, values)
    return evaluate_simple(condition, values)


def _show_when_of(wrapper: Any) -> Any:
    if isinstance(wrapper, Mapping):
        return wrapper.get("show_when")
    return getattr(wrapper, "show_when", None)


def evaluate_visibility(wrapper: Any, values: Mapping[Any, Any]) -> VisibilityResult:
    """Decide whether an element guarded by ``wrapper`` is visible.

    ``wrapper`` is the ``{"show_when": ...}`` object attached to a field,
    section or transition. A missing wrapper or clause means always visible.
    Any evaluation error resolves to visible.
    """
    if isinstance(wrapper, str) and wrapper.strip():
        # Stored definitions keep the condition as JSON text.
        try:
            wrapper = json.loads(wrapper)
        except (ValueError, RecursionError) as exc:
            logger.warning("visibility_fail_open", extra={"error_kind": MALFORMED_CONDITION, "detail": str(exc)})
            return VisibilityResult(is_visible=True, reason=f"{MALFORMED_CONDITION}: {exc}")
    if not wrapper or (isinstance(wrapper, str) and not wrapper.strip()):
        return VisibilityResult(is_visible=True, reason="no condition")
    show_when = _show_when_of(wrapper)
    if not show_when:
        return VisibilityResult(is_visible=True, reason="no show_when clause")

    parsed = parse_condition(show_when)
    if isinstance(parsed, EvalError):
        result = EvalResult(error=parsed)
    else:
        # Anything raised while evaluating resolves to visible below.
        try:
            result = evaluate_condition(parsed, values)
        except Exception as exc:
            result = EvalResult.failure(MALFORMED_CONDITION, f"{type(exc).__name__}: {exc}")

    error = result.error
    if error is not None:
        logger.warning("visibility_fail_open", extra={"error_kind": error.kind, "detail": error.detail})
        return VisibilityResult(is_visible=True, reason=error.describe())

    label = "complex" if isinstance(parsed, ComplexCondition) else "simple"
    status = "passed" if result.value else "failed"
    return VisibilityResult(is_visible=result.value, reason=f"{label} condition {status}")


def is_visible(wrapper: Any, values: Mapping[Any, Any]) -> bool:
    return evaluate_visibility(wrapper, values).is_visible



from __future__ import annotations

import logging
import math
import mimetypes
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable, Mapping

logger = logging.getLogger(__name__)


class CharacterFormat(str, Enum):
    ALPHA = "alpha"
    ALPHA_NUM = "alpha_num"
    ALPHA_DASH = "alpha_dash"


# Most restrictive first; the first declared family in this order wins.
CHARACTER_FORMAT_PRIORITY = (CharacterFormat.ALPHA, CharacterFormat.ALPHA_NUM, CharacterFormat.ALPHA_DASH)

CROSS_FIELD_RULES = ("same", "different")


@dataclass(slots=True, frozen=True)
class FieldRule:
    rule_name: str
    rule_props: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, raw: Any) -> FieldRule:
        if isinstance(raw, FieldRule):
            return raw
        if not isinstance(raw, Mapping):
            raise ValueError(f"rule must be an object, got {type(raw).__name__}")
        name = raw.get("rule_name", raw.get("ruleName"))
        props = raw.get("rule_props", raw.get("ruleProps"))
        return cls(
            rule_name=str(name or "").strip().lower(),
            rule_props=dict(props) if isinstance(props, Mapping) else {},
        )


@dataclass(slots=True, frozen=True)
class ValidationBounds:
    min: float | None = None
    max: float | None = None

    def with_defaults(self, default_min: float | None, default_max: float | None) -> ValidationBounds:
        return ValidationBounds(
            min=self.min if self.min is not None else default_min,
            max=self.max if self.max is not None else default_max,
        )


@dataclass(slots=True, frozen=True)
class DateBounds:
    before: str | None = None
    after: str | None = None
    before_or_equal: str | None = None
    after_or_equal: str | None = None

    @property
    def is_empty(self) -> bool:
        return not (self.before or self.after or self.before_or_equal or self.after_or_equal)


@dataclass(slots=True, frozen=True)
class DimensionBounds:
    width: int | None = None
    height: int | None = None
    min_width: int | None = None
    max_width: int | None = None
    min_height: int | None = None
    max_height: int | None = None


@dataclass(slots=True, frozen=True)
class CrossFieldRule:
    """A rule that needs a sibling field's value; resolved by the form pass."""

    rule_name: str
    compare_field_id: int


@dataclass(slots=True, frozen=True)
class ExtractedRules:
    required: bool = False
    bounds: ValidationBounds = ValidationBounds()
    character_format: CharacterFormat | None = None
    regex: str | None = None
    starts_with: tuple[str, ...] = ()
    ends_with: tuple[str, ...] = ()
    allowed_values: tuple[Any, ...] | None = None
    forbidden_values: tuple[Any, ...] | None = None
    allow_decimals: bool = True
    date_bounds: DateBounds = DateBounds()
    mime_types: tuple[str, ...] = ()
    min_file_size: float | None = None
    max_file_size: float | None = None
    dimensions: DimensionBounds | None = None
    cross_field: tuple[CrossFieldRule, ...] = ()


@dataclass(slots=True)
class _RuleScan:
    required: bool = False
    between_min: float | None = None
    between_max: float | None = None
    min_value: float | None = None
    max_value: float | None = None
    formats: set[CharacterFormat] = field(default_factory=set)
    regex: str | None = None
    starts_with: tuple[str, ...] | None = None
    ends_with: tuple[str, ...] | None = None
    allowed_values: tuple[Any, ...] | None = None
    forbidden_values: tuple[Any, ...] | None = None
    has_numeric: bool = False
    has_integer: bool = False
    dates: dict[str, str] = field(default_factory=dict)
    mime_types: tuple[str, ...] | None = None
    min_file_size: float | None = None
    max_file_size: float | None = None
    dimensions: DimensionBounds | None = None
    cross_field: dict[str, CrossFieldRule] = field(default_factory=dict)
    seen: set[str] = field(default_factory=set)


def as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            parsed = float(text)
        except ValueError:
            return None
        if not math.isfinite(parsed):
            return None
        return int(parsed) if parsed.is_integer() and "." not in text else parsed
    return None


def _as_int(value: Any) -> int | None:
    number = as_number(value)
    if number is None:
        return None
    return int(number)


def _string_list(value: Any) -> tuple[str, ...]:
    if isinstance(value, str):
        value = value.split(",")
    if not isinstance(value, (list, tuple)):
        return ()
    return tuple(str(item).strip() for item in value if str(item).strip())


def _value_list(value: Any) -> tuple[Any, ...] | None:
    if isinstance(value, str):
        return _string_list(value)
    if isinstance(value, (list, tuple)):
        return tuple(value)
    return None


def _extension_to_mime(entry: str) -> str | None:
    if "/" in entry:
        return entry.lower()
    guessed, _ = mimetypes.guess_type(f"file.{entry.lstrip('.').lower()}")
    if guessed is None:
        logger.debug("unknown_mime_extension", extra={"extension": entry})
    return guessed


def _extract_required(scan: _RuleScan, props: Mapping[str, Any]) -> None:
    scan.required = True


def _extract_between(scan: _RuleScan, props: Mapping[str, Any]) -> None:
    scan.between_min = as_number(props.get("min"))
    scan.between_max = as_number(props.get("max"))


def _extract_min(scan: _RuleScan, props: Mapping[str, Any]) -> None:
    scan.min_value = as_number(props.get("value"))


def _extract_max(scan: _RuleScan, props: Mapping[str, Any]) -> None:
    scan.max_value = as_number(props.get("value"))


def _character_format(fmt: CharacterFormat) -> Callable[[_RuleScan, Mapping[str, Any]], None]:
    def _extract(scan: _RuleScan, props: Mapping[str, Any]) -> None:
        scan.formats.add(fmt)

    return _extract


def _extract_regex(scan: _RuleScan, props: Mapping[str, Any]) -> None:
    pattern = props.get("pattern")
    if isinstance(pattern, str) and pattern:
        scan.regex = pattern


def _extract_starts_with(scan: _RuleScan, props: Mapping[str, Any]) -> None:
    scan.starts_with = _string_list(props.get("values"))


def _extract_ends_with(scan: _RuleScan, props: Mapping[str, Any]) -> None:
    scan.ends_with = _string_list(props.get("values"))


def _extract_in(scan: _RuleScan, props: Mapping[str, Any]) -> None:
    scan.allowed_values = _value_list(props.get("values"))


def _extract_not_in(scan: _RuleScan, props: Mapping[str, Any]) -> None:
    scan.forbidden_values = _value_list(props.get("values"))


def _extract_numeric(scan: _RuleScan, props: Mapping[str, Any]) -> None:
    scan.has_numeric = True


def _extract_integer(scan: _RuleScan, props: Mapping[str, Any]) -> None:
    scan.has_integer = True


def _date_rule(key: str) -> Callable[[_RuleScan, Mapping[str, Any]], None]:
    def _extract(scan: _RuleScan, props: Mapping[str, Any]) -> None:
        date = props.get("date")
        if isinstance(date, str) and date.strip():
            scan.dates[key] = date.strip()

    return _extract


def _extract_mimetypes(scan: _RuleScan, props: Mapping[str, Any]) -> None:
    entries = _string_list(props.get("types", props.get("values")))
    resolved = [mime for mime in (_extension_to_mime(entry) for entry in entries) if mime]
    scan.mime_types = tuple(dict.fromkeys((scan.mime_types or ()) + tuple(resolved)))


def _extract_min_file_size(scan: _RuleScan, props: Mapping[str, Any]) -> None:
    scan.min_file_size = as_number(props.get("minsize", props.get("value")))


def _extract_max_file_size(scan: _RuleScan, props: Mapping[str, Any]) -> None:
    scan.max_file_size = as_number(props.get("maxsize", props.get("value")))


def _extract_dimensions(scan: _RuleScan, props: Mapping[str, Any]) -> None:
    scan.dimensions = DimensionBounds(
        width=_as_int(props.get("width")),
        height=_as_int(props.get("height")),
        min_width=_as_int(props.get("minwidth", props.get("min_width"))),
        max_width=_as_int(props.get("maxwidth", props.get("max_width"))),
        min_height=_as_int(props.get("minheight", props.get("min_height"))),
        max_height=_as_int(props.get("maxheight", props.get("max_height"))),
    )


def _cross_field(rule_name: str) -> Callable[[_RuleScan, Mapping[str, Any]], None]:
    def _extract(scan: _RuleScan, props: Mapping[str, Any]) -> None:
        compare_field_id = _as_int(props.get("comparevalue", props.get("field_id")))
        if compare_field_id:
            scan.cross_field[rule_name] = CrossFieldRule(rule_name=rule_name, compare_field_id=compare_field_id)

    return _extract


RULE_EXTRACTORS: dict[str, Callable[[_RuleScan, Mapping[str, Any]], None]] = {
    "required": _extract_required,
    "between": _extract_between,
    "min": _extract_min,
    "max": _extract_max,
    "alpha": _character_format(CharacterFormat.ALPHA),
    "alpha_num": _character_format(CharacterFormat.ALPHA_NUM),
    "alpha_dash": _character_format(CharacterFormat.ALPHA_DASH),
    "regex": _extract_regex,
    "starts_with": _extract_starts_with,
    "ends_with": _extract_ends_with,
    "in": _extract_in,
    "not_in": _extract_not_in,
    "numeric": _extract_numeric,
    "integer": _extract_integer,
    "before": _date_rule("before"),
    "after": _date_rule("after"),
    "before_or_equal": _date_rule("before_or_equal"),
    "after_or_equal": _date_rule("after_or_equal"),
    "mimetypes": _extract_mimetypes,
    "mimes": _extract_mimetypes,
    "min_file_size": _extract_min_file_size,
    "max_file_size": _extract_max_file_size,
    "dimensions": _extract_dimensions,
    "same": _cross_field("same"),
    "different": _cross_field("different"),
}

# Rules whose entries accumulate instead of keeping the first declaration.
_ACCUMULATING_RULES = {"alpha", "alpha_num", "alpha_dash", "mimetypes", "mimes"}


def normalize_rules(rules: Iterable[Any] | None) -> list[FieldRule]:
    normalized: list[FieldRule] = []
    for raw in rules or []:
        try:
            normalized.append(FieldRule.from_payload(raw))
        except ValueError as exc:
            logger.warning("field_rule_skipped", extra={"error": str(exc)})
    return normalized


def resolve_bounds(between_min: float | None, between_max: float | None, min_value: float | None, max_value: float | None) -> ValidationBounds:
    """``between`` sets the baseline; standalone ``min``/``max`` override it."""
    return ValidationBounds(
        min=min_value if min_value is not None else between_min,
        max=max_value if max_value is not None else between_max,
    )


def resolve_character_format(formats: Iterable[CharacterFormat]) -> CharacterFormat | None:
    declared = set(formats)
    for candidate in CHARACTER_FORMAT_PRIORITY:
        if candidate in declared:
            return candidate
    return None


def extract_rules(rules: Iterable[Any] | None) -> ExtractedRules:
    """Scan a field's rule list once and resolve overlaps.

    Declaration order never matters: when a rule name repeats, its first
    occurrence is used, and precedence between different rule names is fixed.
    """
    scan = _RuleScan()
    for rule in normalize_rules(rules):
        extractor = RULE_EXTRACTORS.get(rule.rule_name)
        if extractor is None:
            logger.debug("unsupported_rule_ignored", extra={"rule_name": rule.rule_name})
            continue
        if rule.rule_name in scan.seen and rule.rule_name not in _ACCUMULATING_RULES:
            continue
        scan.seen.add(rule.rule_name)
        extractor(scan, rule.rule_props)

    regex = scan.regex
    character_format = None if regex else resolve_character_format(scan.formats)
    dates = scan.dates
    return ExtractedRules(
        required=scan.required,
        bounds=resolve_bounds(scan.between_min, scan.between_max, scan.min_value, scan.max_value),
        character_format=character_format,
        regex=regex,
        starts_with=scan.starts_with or (),
        ends_with=scan.ends_with or (),
        allowed_values=scan.allowed_values,
        forbidden_values=scan.forbidden_values,
        # numeric wins over integer when both are declared
        allow_decimals=scan.has_numeric or not scan.has_integer,
        date_bounds=DateBounds(
            before=dates.get("before"),
            after=dates.get("after"),
            before_or_equal=dates.get("before_or_equal"),
            after_or_equal=dates.get("after_or_equal"),
        ),
        mime_types=scan.mime_types or (),
        min_file_size=scan.min_file_size,
        max_file_size=scan.max_file_size,
        dimensions=scan.dimensions,
        cross_field=tuple(scan.cross_field[name] for name in CROSS_FIELD_RULES if name in scan.cross_field),
    )


def extract_validation_bounds(rules: Iterable[Any] | None) -> ValidationBounds:
    return extract_rules(rules).bounds


def is_field_required(rules: Iterable[Any] | None) -> bool:
    return any(rule.rule_name == "required" for rule in normalize_rules(rules))


def matches_mime_type(file_type: str, pattern: str) -> bool:
    """Match a concrete MIME type against a pattern such as ``image/*``."""
    file_type = (file_type or "").strip().lower()
    pattern = (pattern or "").strip().lower()
    if pattern in {"*", "*/*"}:
        return True
    if pattern.endswith("/*"):
        category = pattern.split("/", 1)[0]
        return file_type.startswith(f"{category}/")
    return file_type == pattern

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable, Mapping
from urllib.parse import urlparse

from .conditions import lookup_field_value
from .normalizer import is_empty, is_number, list_contains, normalized_equals, to_text
from .rules import CharacterFormat, ExtractedRules, as_number, extract_rules, matches_mime_type
from .visibility import VisibilityMap

logger = logging.getLogger(__name__)

Check = Callable[[Any], str | None]

CHARACTER_FORMAT_CHECKS: dict[CharacterFormat, tuple[re.Pattern[str], str]] = {
    CharacterFormat.ALPHA: (
        re.compile(r"^[A-Za-z\s]*$"),
        "must contain only letters, spaces and newlines",
    ),
    CharacterFormat.ALPHA_NUM: (
        re.compile(r"^[A-Za-z0-9\s]*$"),
        "must contain only letters, numbers, spaces and newlines",
    ),
    CharacterFormat.ALPHA_DASH: (
        re.compile(r"^[A-Za-z0-9_\-\s]*$"),
        "must contain only letters, numbers, dashes, underscores, spaces and newlines",
    ),
}
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
E164_PATTERN = re.compile(r"^\+?[1-9]\d{1,14}$")
COLOR_PATTERN = re.compile(r"^#([A-Fa-f0-9]{6}|[A-Fa-f0-9]{3})$")
DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
DATE_TIME_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}$")
TIME_PATTERN = re.compile(r"^\d{2}:\d{2}$")
SIGNATURE_PREFIX = "data:image/png;base64,"
ADDRESS_PARTS = ("street", "city", "state", "postal_code", "country")
PERCENTAGE_DEFAULT_BOUNDS = (0, 100)
VIDEO_DEFAULT_MIME_TYPES = ("video/*",)


@dataclass(slots=True, frozen=True)
class ValidationResult:
    valid: bool
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"valid": self.valid}
        if self.error is not None:
            payload["error"] = self.error
        return payload


VALID = ValidationResult(valid=True)


@dataclass(slots=True, frozen=True)
class FileMetadata:
    """The parts of an uploaded artifact the file checks look at. ``size`` is in bytes."""

    name: str = ""
    size: float = 0
    content_type: str = ""
    width: int | None = None
    height: int | None = None

    @property
    def size_kb(self) -> float:
        return self.size / 1024

    @classmethod
    def from_value(cls, value: Any) -> FileMetadata | None:
        if isinstance(value, FileMetadata):
            return value
        if not isinstance(value, Mapping):
            return None
        size = as_number(value.get("size"))
        if size is None or size < 0:
            return None
        content_type = value.get("content_type", value.get("type", value.get("mime_type", "")))
        width = as_number(value.get("width"))
        height = as_number(value.get("height"))
        return cls(
            name=str(value.get("name") or ""),
            size=size,
            content_type=str(content_type or "").lower(),
            width=int(width) if width is not None else None,
            height=int(height) if height is not None else None,
        )


@dataclass(slots=True)
class FieldContract:
    field_id: Any
    field_type: str
    label: str
    rules: ExtractedRules
    checks: list[Check] = field(default_factory=list)
    is_empty: Callable[[Any], bool] = is_empty
    required_message: str = ""
    enforce_required: bool = True

    @property
    def required(self) -> bool:
        return self.enforce_required and self.rules.required

    def validate(self, value: Any) -> ValidationResult:
        """Run the field's checks and surface the first failure only."""
        try:
            if self.is_empty(value):
                if self.required:
                    return ValidationResult(False, self.required_message or f"{self.label} is required")
                return VALID
            for check in self.checks:
                error = check(value)
                if error:
                    return ValidationResult(False, error)
        except (TypeError, ValueError, ArithmeticError) as exc:
            logger.warning(
                "field_validation_failed",
                extra={"field_id": self.field_id, "field_type": self.field_type, "error": str(exc)},
            )
            return ValidationResult(False, f"{self.label} is invalid")
        return VALID


@dataclass(slots=True)
class FormValidationResult:
    valid: bool
    errors: dict[Any, str]

    def to_dict(self) -> dict[str, Any]:
        return {"valid": self.valid, "errors": {str(key): value for key, value in self.errors.items()}}


def format_number(value: float) -> str:
    return to_text(value)


def format_file_size(size_kb: float) -> str:
    if size_kb < 1024:
        return f"{format_number(size_kb)} KB"
    return f"{size_kb / 1024:.1f} MB"


def format_date_for_display(moment: datetime) -> str:
    return f"{moment:%b} {moment.day}, {moment.year}"


def compile_pattern(pattern: str | None, field_id: Any) -> re.Pattern[str] | None:
    if not pattern:
        return None
    try:
        return re.compile(pattern)
    except re.error as exc:
        logger.warning("invalid_regex_pattern", extra={"field_id": field_id, "pattern": pattern, "error": str(exc)})
        return None


def parse_options(placeholder: Any) -> list[str]:
    """Options for choice fields live in the placeholder as a JSON list."""
    if isinstance(placeholder, (list, tuple)):
        return [option for option in placeholder if isinstance(option, str)]
    if not isinstance(placeholder, str) or not placeholder.strip():
        return []
    try:
        parsed = json.loads(placeholder)
    except json.JSONDecodeError:
        logger.warning("invalid_field_options", extra={"placeholder": placeholder})
        return []
    if not isinstance(parsed, list):
        return []
    return [option for option in parsed if isinstance(option, str)]


def parse_number(value: Any) -> float | None:
    if isinstance(value, str):
        return as_number(value)
    return value if is_number(value) else None


def parse_moment(text: Any) -> datetime | None:
    if not isinstance(text, str):
        return None
    for fmt in ("%Y-%m-%dT%H:%M", "%Y-%m-%d", "%Y-%m-%dT%H:%M:%S"):
        try:
            return datetime.strptime(text.strip(), fmt)
        except ValueError:
            continue
    return None


def clean_phone_number(phone: str) -> str:
    cleaned = re.sub(r"[^\d+]", "", phone or "")
    if cleaned.startswith("+"):
        return "+" + cleaned[1:].replace("+", "")
    return cleaned


def _label_of(field_def: Mapping[str, Any]) -> str:
    label = field_def.get("label")
    if isinstance(label, str) and label.strip():
        return label.strip()
    return f"Field {field_def.get('field_id')}"


def _is_whole(number: float) -> bool:
    return isinstance(number, int) or float(number).is_integer()


def _type_check(expected: type | tuple[type, ...], message: str) -> Check:
    def _check(value: Any) -> str | None:
        return None if isinstance(value, expected) and not isinstance(value, bool) else message

    return _check


def _pattern_check(pattern: re.Pattern[str], message: str) -> Check:
    def _check(value: Any) -> str | None:
        return None if pattern.search(value) else message

    return _check


def _length_checks(label: str, rules: ExtractedRules) -> list[Check]:
    checks: list[Check] = []
    minimum, maximum = rules.bounds.min, rules.bounds.max
    if minimum is not None:
        checks.append(lambda value: f"{label} must be at least {format_number(minimum)} characters" if len(value) < minimum else None)
    if maximum is not None:
        checks.append(lambda value: f"{label} must be at most {format_number(maximum)} characters" if len(value) > maximum else None)
    return checks


def _affix_checks(label: str, rules: ExtractedRules, *, with_suffix: bool = True) -> list[Check]:
    checks: list[Check] = []
    prefixes, suffixes = rules.starts_with, rules.ends_with
    if prefixes:
        checks.append(
            lambda value: None
            if any(value.startswith(prefix) for prefix in prefixes)
            else f"{label} must start with: {' or '.join(prefixes)}"
        )
    if suffixes and with_suffix:
        checks.append(
            lambda value: None
            if any(value.endswith(suffix) for suffix in suffixes)
            else f"{label} must end with: {' or '.join(suffixes)}"
        )
    return checks


def _membership_checks(label: str, rules: ExtractedRules, coerce: Callable[[Any], Any] = lambda value: value) -> list[Check]:
    checks: list[Check] = []
    allowed, forbidden = rules.allowed_values, rules.forbidden_values
    if allowed is not None:
        checks.append(
            lambda value: None
            if list_contains([coerce(item) for item in allowed], coerce(value))
            else f"{label} must be one of: {', '.join(to_text(item) for item in allowed)}"
        )
    if forbidden is not None:
        checks.append(
            lambda value: f"{label} must not be one of: {', '.join(to_text(item) for item in forbidden)}"
            if list_contains([coerce(item) for item in forbidden], coerce(value))
            else None
        )
    return checks


def _text_format_checks(field_id: Any, label: str, rules: ExtractedRules) -> list[Check]:
    if rules.regex:
        # An unusable pattern is skipped, and still displaces the character family.
        pattern = compile_pattern(rules.regex, field_id)
        return [_pattern_check(pattern, f"{label} does not match the required pattern")] if pattern else []
    if rules.character_format is not None:
        pattern, message = CHARACTER_FORMAT_CHECKS[rules.character_format]
        return [_pattern_check(pattern, f"{label} {message}")]
    return []


def _build_text(field_def: Mapping[str, Any], rules: ExtractedRules, label: str) -> FieldContract:
    field_id = field_def.get("field_id")
    checks = [_type_check(str, f"{label} must be text")]
    checks.extend(_text_format_checks(field_id, label, rules))
    checks.extend(_length_checks(label, rules))
    checks.extend(_affix_checks(label, rules))
    checks.extend(_membership_checks(label, rules))
    return FieldContract(field_id, str(field_def.get("field_type")), label, rules, checks)


def _build_email(field_def: Mapping[str, Any], rules: ExtractedRules, label: str) -> FieldContract:
    field_id = field_def.get("field_id")
    checks = [_type_check(str, f"{label} must be a valid email address")]
    pattern = compile_pattern(rules.regex, field_id) if rules.regex else None
    if pattern is not None:
        checks.append(_pattern_check(pattern, f"{label} does not match the required pattern"))
    elif not rules.regex:
        checks.append(_pattern_check(EMAIL_PATTERN, f"{label} must be a valid email address"))
    checks.extend(_length_checks(label, rules))
    checks.extend(_affix_checks(label, rules))
    checks.extend(_membership_checks(label, rules))
    return FieldContract(field_id, "email_input", label, rules, checks)


def _build_phone(field_def: Mapping[str, Any], rules: ExtractedRules, label: str) -> FieldContract:
    field_id = field_def.get("field_id")
    checks = [
        _type_check(str, f"{label} must be a valid phone number"),
        lambda value: None if E164_PATTERN.match(clean_phone_number(value)) else f"{label} must be a valid phone number",
    ]
    pattern = compile_pattern(rules.regex, field_id)
    if pattern is not None:
        checks.append(_pattern_check(pattern, f"{label} format is invalid"))
    checks.extend(_affix_checks(label, rules, with_suffix=False))
    return FieldContract(field_id, "phone_input", label, rules, checks)


def _is_http_url(value: str) -> bool:
    parsed = urlparse(value.strip())
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc)


def _build_url(field_def: Mapping[str, Any], rules: ExtractedRules, label: str) -> FieldContract:
    message = f"{label} must be a valid URL"
    checks = [_type_check(str, message), lambda value: None if _is_http_url(value) else message]
    checks.extend(_length_checks(label, rules))
    checks.extend(_affix_checks(label, rules))
    return FieldContract(field_def.get("field_id"), "url_input", label, rules, checks)


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _numeric_builder(
    *,
    suffix: str = "",
    noun: str = "",
    default_bounds: tuple[float, float] | None = None,
) -> Callable[[Mapping[str, Any], ExtractedRules, str], FieldContract]:
    def _build(field_def: Mapping[str, Any], rules: ExtractedRules, label: str) -> FieldContract:
        bounds = rules.bounds.with_defaults(*default_bounds) if default_bounds else rules.bounds
        subject = f"{label} {noun}".strip()
        checks: list[Check] = [lambda value: None if parse_number(value) is not None else f"{label} must be a number"]
        if not rules.allow_decimals:
            checks.append(
                lambda value: None
                if _is_whole(parse_number(value))
                else f"{label} must be an integer (no decimals)"
            )
        if bounds.min is not None:
            checks.append(
                lambda value: f"{subject} must be at least {format_number(bounds.min)}{suffix}"
                if parse_number(value) < bounds.min
                else None
            )
        if bounds.max is not None:
            checks.append(
                lambda value: f"{subject} must be at most {format_number(bounds.max)}{suffix}"
                if parse_number(value) > bounds.max
                else None
            )
        checks.extend(_membership_checks(label, rules, coerce=parse_number))
        return FieldContract(
            field_def.get("field_id"), str(field_def.get("field_type")), label, rules, checks, is_empty=_is_blank
        )

    return _build


def _date_builder(pattern: re.Pattern[str], fmt: str, description: str) -> Callable[[Mapping[str, Any], ExtractedRules, str], FieldContract]:
    def _build(field_def: Mapping[str, Any], rules: ExtractedRules, label: str) -> FieldContract:
        field_id = field_def.get("field_id")
        message = f"{label} must be a valid {description}"

        def _format(value: Any) -> str | None:
            if not isinstance(value, str) or not pattern.match(value.strip()):
                return message
            try:
                datetime.strptime(value.strip(), fmt)
            except ValueError:
                return message
            return None

        checks: list[Check] = [_format]
        date_bounds = rules.date_bounds
        comparisons = (
            (date_bounds.before, lambda moment, bound: moment < bound, "must be before"),
            (date_bounds.after, lambda moment, bound: moment > bound, "must be after"),
            (date_bounds.before_or_equal, lambda moment, bound: moment <= bound, "must be on or before"),
            (date_bounds.after_or_equal, lambda moment, bound: moment >= bound, "must be on or after"),
        )
        for raw_bound, holds, phrase in comparisons:
            if raw_bound is None:
                continue
            bound = parse_moment(raw_bound)
            if bound is None:
                logger.warning("invalid_date_bound", extra={"field_id": field_id, "bound": raw_bound})
                continue
            checks.append(_date_bound_check(fmt, bound, holds, f"{label} {phrase} {format_date_for_display(bound)}"))
        return FieldContract(field_id, str(field_def.get("field_type")), label, rules, checks)

    return _build


def _date_bound_check(fmt: str, bound: datetime, holds: Callable[[datetime, datetime], bool], message: str) -> Check:
    def _check(value: Any) -> str | None:
        return None if holds(datetime.strptime(value.strip(), fmt), bound) else message

    return _check


def _build_time(field_def: Mapping[str, Any], rules: ExtractedRules, label: str) -> FieldContract:
    message = f"{label} must be a valid time (HH:MM)"

    def _format(value: Any) -> str | None:
        if not isinstance(value, str) or not TIME_PATTERN.match(value.strip()):
            return message
        try:
            datetime.strptime(value.strip(), "%H:%M")
        except ValueError:
            return message
        return None

    return FieldContract(field_def.get("field_id"), "time_input", label, rules, [_format])


def _toggle_builder(required_phrase: str) -> Callable[[Mapping[str, Any], ExtractedRules, str], FieldContract]:
    def _build(field_def: Mapping[str, Any], rules: ExtractedRules, label: str) -> FieldContract:
        checks: list[Check] = [lambda value: None if isinstance(value, bool) else f"{label} must be true or false"]
        return FieldContract(
            field_def.get("field_id"),
            str(field_def.get("field_type")),
            label,
            rules,
            checks,
            is_empty=lambda value: value is None or value is False,
            required_message=f"{label} {required_phrase}",
        )

    return _build


def _build_single_choice(field_def: Mapping[str, Any], rules: ExtractedRules, label: str) -> FieldContract:
    options = parse_options(field_def.get("placeholder"))
    checks: list[Check] = [_type_check(str, "Please select a valid option")]
    if options:
        checks.append(lambda value: None if value in options else "Please select a valid option")
    checks.extend(_membership_checks(label, rules))
    return FieldContract(field_def.get("field_id"), str(field_def.get("field_type")), label, rules, checks)


def _build_multi_select(field_def: Mapping[str, Any], rules: ExtractedRules, label: str) -> FieldContract:
    options = parse_options(field_def.get("placeholder"))
    checks: list[Check] = [
        lambda value: None
        if isinstance(value, (list, tuple)) and all(isinstance(item, str) for item in value)
        else f"{label} must be a list of options"
    ]
    if options:
        checks.append(
            lambda value: None
            if all(item in options for item in value)
            else "Selected values must be from available options"
        )
    bounds = rules.bounds
    if bounds.min is not None:
        checks.append(
            lambda value: f"{label} requires at least {format_number(bounds.min)} selections"
            if len(value) < bounds.min
            else None
        )
    if bounds.max is not None:
        checks.append(
            lambda value: f"{label} allows at most {format_number(bounds.max)} selections"
            if len(value) > bounds.max
            else None
        )
    return FieldContract(
        field_def.get("field_id"),
        "multi_select",
        label,
        rules,
        checks,
        required_message=f"{label} requires at least one selection",
    )


def _file_items(value: Any) -> list[FileMetadata] | None:
    items = value if isinstance(value, (list, tuple)) else [value]
    parsed = [FileMetadata.from_value(item) for item in items]
    if any(item is None for item in parsed):
        return None
    return parsed


def _file_builder(default_mime_types: tuple[str, ...] = ()) -> Callable[[Mapping[str, Any], ExtractedRules, str], FieldContract]:
    def _build(field_def: Mapping[str, Any], rules: ExtractedRules, label: str) -> FieldContract:
        mime_types = rules.mime_types or default_mime_types
        min_size, max_size = rules.min_file_size, rules.max_file_size
        checks: list[Check] = [lambda value: None if _file_items(value) is not None else f"{label} must be a valid file"]
        if mime_types:
            checks.append(
                lambda value: None
                if all(any(matches_mime_type(item.content_type, pattern) for pattern in mime_types) for item in _file_items(value))
                else f"File type must be one of: {', '.join(mime_types)}"
            )
        if min_size is not None:
            checks.append(
                lambda value: f"File size must be at least {format_file_size(min_size)}"
                if any(item.size_kb < min_size for item in _file_items(value))
                else None
            )
        if max_size is not None:
            checks.append(
                lambda value: f"File size must be less than {format_file_size(max_size)}"
                if any(item.size_kb > max_size for item in _file_items(value))
                else None
            )
        if rules.dimensions is not None:
            checks.append(_dimension_check(label, rules))
        return FieldContract(field_def.get("field_id"), str(field_def.get("field_type")), label, rules, checks)

    return _build


def _dimension_check(label: str, rules: ExtractedRules) -> Check:
    dimensions = rules.dimensions
    limits = (
        ("width", dimensions.width, lambda actual, limit: actual == limit, "must be {limit}px wide"),
        ("height", dimensions.height, lambda actual, limit: actual == limit, "must be {limit}px high"),
        ("width", dimensions.min_width, lambda actual, limit: actual >= limit, "must be at least {limit}px wide"),
        ("width", dimensions.max_width, lambda actual, limit: actual <= limit, "must be at most {limit}px wide"),
        ("height", dimensions.min_height, lambda actual, limit: actual >= limit, "must be at least {limit}px high"),
        ("height", dimensions.max_height, lambda actual, limit: actual <= limit, "must be at most {limit}px high"),
    )

    def _check(value: Any) -> str | None:
        for item in _file_items(value):
            for attribute, limit, holds, phrase in limits:
                actual = getattr(item, attribute)
                # Dimensions are only known for images the client measured.
                if limit is None or actual is None:
                    continue
                if not holds(actual, limit):
                    return f"{label} {phrase.format(limit=limit)}"
        return None

    return _check


def _build_signature(field_def: Mapping[str, Any], rules: ExtractedRules, label: str) -> FieldContract:
    message = f"{label} must be a valid signature"
    checks: list[Check] = [
        lambda value: None if isinstance(value, str) and value.startswith(SIGNATURE_PREFIX) else message
    ]
    return FieldContract(field_def.get("field_id"), "signature_pad", label, rules, checks)


def _build_color(field_def: Mapping[str, Any], rules: ExtractedRules, label: str) -> FieldContract:
    message = f"{label} must be a valid color"
    checks = [_type_check(str, message), _pattern_check(COLOR_PATTERN, message)]
    return FieldContract(field_def.get("field_id"), "color_picker", label, rules, checks)


def _build_location(field_def: Mapping[str, Any], rules: ExtractedRules, label: str) -> FieldContract:
    message = f"{label} must include a valid latitude and longitude"

    def _check(value: Any) -> str | None:
        if not isinstance(value, Mapping):
            return message
        if not (is_number(value.get("lat")) and is_number(value.get("lng"))):
            return message
        address = value.get("address")
        if address is not None and not isinstance(address, str):
            return f"{label} address must be text"
        return None

    return FieldContract(field_def.get("field_id"), "location_picker", label, rules, [_check])


def _address_blank(value: Any) -> bool:
    if value is None:
        return True
    if not isinstance(value, Mapping):
        return False
    return all(_is_blank(value.get(part)) for part in ADDRESS_PARTS)


def _address_incomplete(value: Any) -> bool:
    if value is None:
        return True
    if not isinstance(value, Mapping):
        return False
    return any(_is_blank(value.get(part)) for part in ADDRESS_PARTS)


def _build_address(field_def: Mapping[str, Any], rules: ExtractedRules, label: str) -> FieldContract:
    message = f"{label} must be a valid address"

    def _check(value: Any) -> str | None:
        if not isinstance(value, Mapping):
            return message
        for part in ADDRESS_PARTS:
            if value.get(part) is not None and not isinstance(value.get(part), str):
                return message
        return None

    return FieldContract(
        field_def.get("field_id"),
        "address",
        label,
        rules,
        [_check],
        is_empty=_address_incomplete if rules.required else _address_blank,
        required_message="All fields of the address input are required",
    )


def _build_unknown(field_def: Mapping[str, Any], rules: ExtractedRules, label: str) -> FieldContract:
    logger.warning("unknown_field_type", extra={"field_id": field_def.get("field_id"), "field_type": field_def.get("field_type")})
    return FieldContract(field_def.get("field_id"), str(field_def.get("field_type")), label, rules, enforce_required=False)


FIELD_CONTRACT_BUILDERS: dict[str, Callable[[Mapping[str, Any], ExtractedRules, str], FieldContract]] = {
    "text_input": _build_text,
    "text_area": _build_text,
    "password_input": _build_text,
    "email_input": _build_email,
    "phone_input": _build_phone,
    "url_input": _build_url,
    "number_input": _numeric_builder(),
    "currency_input": _numeric_builder(),
    "percentage_input": _numeric_builder(suffix="%", default_bounds=PERCENTAGE_DEFAULT_BOUNDS),
    "slider": _numeric_builder(),
    "rating": _numeric_builder(noun="rating"),
    "date_input": _date_builder(DATE_PATTERN, "%Y-%m-%d", "date (YYYY-MM-DD)"),
    "date_time_input": _date_builder(DATE_TIME_PATTERN, "%Y-%m-%dT%H:%M", "date and time (YYYY-MM-DDTHH:MM)"),
    "time_input": _build_time,
    "checkbox": _toggle_builder("must be checked"),
    "toggle_switch": _toggle_builder("must be enabled"),
    "radio_button": _build_single_choice,
    "dropdown_select": _build_single_choice,
    "multi_select": _build_multi_select,
    "file_upload": _file_builder(),
    "image_upload": _file_builder(),
    "document_upload": _file_builder(),
    "video_upload": _file_builder(VIDEO_DEFAULT_MIME_TYPES),
    "signature_pad": _build_signature,
    "color_picker": _build_color,
    "location_picker": _build_location,
    "address": _build_address,
}


def build_field_contract(field_def: Mapping[str, Any]) -> FieldContract:
    field_type = str(field_def.get("field_type") or "").strip().lower()
    rules = extract_rules(field_def.get("rules"))
    builder = FIELD_CONTRACT_BUILDERS.get(field_type, _build_unknown)
    contract = builder(field_def, rules, _label_of(field_def))
    logger.debug(
        "field_contract_built",
        extra={"field_id": contract.field_id, "field_type": field_type, "required": contract.required, "checks": len(contract.checks)},
    )
    return contract


def validate_field(field_def: Mapping[str, Any], value: Any) -> ValidationResult:
    return build_field_contract(field_def).validate(value)


def validate_form(
    fields: Iterable[Mapping[str, Any]],
    values: Mapping[Any, Any],
    visibility: VisibilityMap | None = None,
) -> FormValidationResult:
    """Validate every visible field, then resolve ``same``/``different`` rules.

    Cross-field rules only run for fields whose own contract passed, so each
    field reports at most one error.
    """
    errors: dict[Any, str] = {}
    checked: list[tuple[Mapping[str, Any], FieldContract, Any]] = []
    for field_def in fields:
        field_id = field_def.get("field_id")
        if field_id is None:
            logger.warning("form_field_skipped", extra={"reason": "missing field_id"})
            continue
        if visibility is not None and not visibility.is_field_visible(field_id):
            continue
        contract = build_field_contract(field_def)
        _, value = lookup_field_value(values, field_id)
        result = contract.validate(value)
        if not result.valid:
            errors[field_id] = result.error or f"{contract.label} is invalid"
            continue
        checked.append((field_def, contract, value))

    for field_def, contract, value in checked:
        for rule in contract.rules.cross_field:
            _, other = lookup_field_value(values, rule.compare_field_id)
            if rule.rule_name == "same" and not normalized_equals(value, other):
                errors[contract.field_id] = f"{contract.label} must match the other field"
                break
            if rule.rule_name == "different" and not is_empty(value) and normalized_equals(value, other):
                errors[contract.field_id] = f"{contract.label} must be different from the other field"
                break

    if errors:
        logger.info("form_validation_failed", extra={"error_count": len(errors)})
    return FormValidationResult(valid=not errors, errors=errors)

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from .conditions import evaluate_visibility

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class VisibilityMap:
    fields: dict[Any, bool] = field(default_factory=dict)
    sections: dict[Any, bool] = field(default_factory=dict)
    transitions: dict[Any, bool] = field(default_factory=dict)

    def is_field_visible(self, field_id: Any) -> bool:
        return _lookup(self.fields, field_id)

    def is_section_visible(self, section_id: Any) -> bool:
        return _lookup(self.sections, section_id)

    def is_transition_visible(self, transition_id: Any) -> bool:
        return _lookup(self.transitions, transition_id)

    def to_dict(self) -> dict[str, dict[str, bool]]:
        return {
            "fields": {str(key): value for key, value in self.fields.items()},
            "sections": {str(key): value for key, value in self.sections.items()},
            "transitions": {str(key): value for key, value in self.transitions.items()},
        }


def _lookup(entries: dict[Any, bool], key: Any) -> bool:
    # Elements without an entry were never guarded, so they show.
    candidates = [key, str(key)]
    if isinstance(key, str) and key.strip().lstrip("-").isdigit():
        candidates.append(int(key))
    for candidate in candidates:
        if candidate in entries:
            return entries[candidate]
    return True


def _evaluate_collection(
    items: Iterable[Mapping[str, Any]],
    id_key: str,
    condition_key: str,
    values: Mapping[Any, Any],
) -> dict[Any, bool]:
    results: dict[Any, bool] = {}
    for item in items or []:
        if not isinstance(item, Mapping) or item.get(id_key) is None or isinstance(item.get(id_key), (list, dict)):
            logger.warning("visibility_item_skipped", extra={"id_key": id_key})
            continue
        results[item[id_key]] = evaluate_visibility(item.get(condition_key), values).is_visible
    return results


def build_visibility_map(
    fields: Iterable[Mapping[str, Any]],
    sections: Iterable[Mapping[str, Any]],
    transitions: Iterable[Mapping[str, Any]],
    values: Mapping[Any, Any],
) -> VisibilityMap:
    """Evaluate every field, section and transition condition against ``values``.

    The three collections are independent: a hidden section does not hide its
    fields here, the renderer composes that.
    """
    visibility = VisibilityMap(
        fields=_evaluate_collection(fields, "field_id", "visibility_condition", values),
        sections=_evaluate_collection(sections, "section_id", "visibility_condition", values),
        transitions=_evaluate_collection(transitions, "transition_id", "condition", values),
    )
    logger.debug(
        "visibility_map_built",
        extra={
            "visible_fields": sum(visibility.fields.values()),
            "visible_sections": sum(visibility.sections.values()),
            "visible_transitions": sum(visibility.transitions.values()),
        },
    )
    return visibility


def collect_form_elements(form: Mapping[str, Any]) -> tuple[list[dict[str, Any]], list[dict[str, Any]], list[dict[str, Any]]]:
    stage = form.get("stage") or {}
    sections = list(stage.get("sections") or form.get("sections") or [])
    fields: list[dict[str, Any]] = [
        entry for section in sections if isinstance(section, Mapping) for entry in (section.get("fields") or [])
    ]
    fields.extend(form.get("fields") or [])
    transitions = list(form.get("available_transitions") or form.get("transitions") or [])
    return fields, sections, transitions


def build_form_visibility(form: Mapping[str, Any], values: Mapping[Any, Any]) -> VisibilityMap:
    fields, sections, transitions = collect_form_elements(form)
    return build_visibility_map(fields, sections, transitions, values)

from form_rules.visibility import build_form_visibility, build_visibility_map, collect_form_elements


def _form() -> dict:
    return {
        "stage": {
            "sections": [
                {
                    "section_id": 10,
                    "visibility_condition": None,
                    "fields": [
                        {"field_id": 1, "field_type": "dropdown_select", "visibility_condition": None},
                        {
                            "field_id": 2,
                            "field_type": "text_input",
                            "visibility_condition": {
                                "show_when": {"field_id": 1, "operator": "equals", "value": "other"}
                            },
                        },
                    ],
                },
                {
                    "section_id": 20,
                    "visibility_condition": {"show_when": {"field_id": 1, "operator": "equals", "value": "business"}},
                    "fields": [{"field_id": 3, "field_type": "text_input", "visibility_condition": None}],
                },
            ]
        },
        "available_transitions": [
            {"transition_id": 100, "condition": None},
            {
                "transition_id": 101,
                "condition": {"show_when": {"field_id": 3, "operator": "filled"}},
            },
        ],
    }


def test_map_covers_every_element() -> None:
    visibility = build_form_visibility(_form(), {1: {"value": "other"}})

    assert visibility.fields == {1: True, 2: True, 3: True}
    assert visibility.sections == {10: True, 20: False}
    assert visibility.transitions == {100: True, 101: False}


def test_collections_are_independent() -> None:
    # Section 20 is hidden but its field keeps its own (absent) condition.
    visibility = build_form_visibility(_form(), {1: {"value": "personal"}})
    assert visibility.is_section_visible(20) is False
    assert visibility.is_field_visible(3) is True
    assert visibility.is_field_visible(2) is False


def test_recomputation_is_total_and_repeatable() -> None:
    form = _form()
    values = {"1": {"value": "business"}, "3": {"value": "Acme"}}
    first = build_form_visibility(form, values)
    second = build_form_visibility(form, values)
    assert first == second
    assert first.is_transition_visible(101) is True
    assert first.is_section_visible(20) is True


def test_unlisted_ids_default_to_visible_and_keys_serialize_as_strings() -> None:
    visibility = build_visibility_map(
        [{"field_id": 4, "visibility_condition": {"show_when": {"field_id": 9, "operator": "filled"}}}],
        [],
        [],
        {},
    )
    assert visibility.is_field_visible(4) is False
    assert visibility.is_field_visible(99) is True
    assert visibility.is_field_visible("4") is False
    assert visibility.to_dict() == {"fields": {"4": False}, "sections": {}, "transitions": {}}


def test_items_without_ids_are_skipped() -> None:
    visibility = build_visibility_map([{"visibility_condition": None}, "junk"], [], [], {})
    assert visibility.fields == {}
    assert build_visibility_map([{"field_id": [1]}, {"field_id": 2}], [], [], {}).fields == {2: True}


def test_collect_form_elements_reads_flat_forms() -> None:
    fields, sections, transitions = collect_form_elements(
        {"fields": [{"field_id": 1}], "transitions": [{"transition_id": 2}]}
    )
    assert fields == [{"field_id": 1}]
    assert sections == []
    assert transitions == [{"transition_id": 2}]

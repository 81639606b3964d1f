from form_rules.app import create_form_engine_app
from form_rules.db import connect, load_form_definition


def _definition() -> dict:
    return {
        "stage": {
            "sections": [
                {
                    "section_id": 1,
                    "visibility_condition": None,
                    "fields": [
                        {
                            "field_id": 1,
                            "field_type": "dropdown_select",
                            "label": "Customer Type",
                            "placeholder": '["personal", "business"]',
                            "rules": [{"rule_name": "required", "rule_props": None}],
                            "visibility_condition": None,
                        }
                    ],
                },
                {
                    "section_id": 2,
                    "visibility_condition": '{"show_when": {"field_id": 1, "operator": "equals", "value": "business"}}',
                    "fields": [
                        {
                            "field_id": 2,
                            "field_type": "text_input",
                            "label": "Company",
                            "placeholder": None,
                            "rules": [
                                {"rule_name": "required", "rule_props": None},
                                {"rule_name": "min", "rule_props": {"value": 3}},
                            ],
                            "visibility_condition": None,
                        }
                    ],
                },
            ]
        },
        "available_transitions": [
            {
                "transition_id": 7,
                "label": "Submit",
                "condition": {"show_when": {"field_id": 1, "operator": "filled"}},
            }
        ],
    }


def test_healthz(tmp_path) -> None:
    app = create_form_engine_app(str(tmp_path / "forms.db"))
    response = app.test_client().get("/healthz")
    assert response.status_code == 200
    assert response.get_json() == {"status": "ok", "app": "form-rules"}


def test_database_path_from_environment(tmp_path, monkeypatch) -> None:
    db = tmp_path / "env.db"
    monkeypatch.setenv("FORM_RULES_DB_PATH", str(db))
    app = create_form_engine_app()
    assert app.config["DATABASE_PATH"] == str(db)
    assert db.exists()


def test_visibility_endpoint_builds_full_map(tmp_path) -> None:
    client = create_form_engine_app(str(tmp_path / "forms.db")).test_client()
    response = client.post(
        "/api/visibility",
        json={
            "fields": [
                {"field_id": 5, "visibility_condition": {"show_when": {"field_id": 4, "operator": "equals", "value": "yes"}}}
            ],
            "sections": [{"section_id": 1, "visibility_condition": {"show_when": {"field_id": 4, "operator": "bogus"}}}],
            "transitions": [],
            "values": {"4": {"value": "no"}},
        },
    )
    assert response.status_code == 200
    assert response.get_json() == {"fields": {"5": False}, "sections": {"1": True}, "transitions": {}}


def test_visibility_endpoint_accepts_whole_form(tmp_path) -> None:
    client = create_form_engine_app(str(tmp_path / "forms.db")).test_client()
    response = client.post("/api/visibility", json={"form": _definition(), "values": {"1": {"value": "business"}}})
    assert response.get_json()["sections"] == {"1": True, "2": True}
    assert response.get_json()["transitions"] == {"7": True}


def test_condition_endpoint_reports_reason(tmp_path) -> None:
    client = create_form_engine_app(str(tmp_path / "forms.db")).test_client()
    response = client.post(
        "/api/visibility/evaluate",
        json={"condition": {"show_when": {"field_id": 5, "operator": "equals", "value": "yes"}}, "values": {"5": {"value": "yes"}}},
    )
    assert response.get_json() == {"is_visible": True, "reason": "simple condition passed"}


def test_field_validation_endpoint(tmp_path) -> None:
    client = create_form_engine_app(str(tmp_path / "forms.db")).test_client()
    field = {
        "field_id": 1,
        "field_type": "text_input",
        "label": "Name",
        "rules": [
            {"rule_name": "required", "rule_props": None},
            {"rule_name": "min", "rule_props": {"value": 3}},
        ],
    }
    short = client.post("/api/validate/field", json={"field": field, "value": "ab"})
    assert short.get_json() == {"valid": False, "error": "Name must be at least 3 characters"}
    ok = client.post("/api/validate/field", json={"field": field, "value": "Alice"})
    assert ok.get_json() == {"valid": True}


def test_form_validation_endpoint_with_visibility(tmp_path) -> None:
    client = create_form_engine_app(str(tmp_path / "forms.db")).test_client()
    fields = [
        {"field_id": 1, "field_type": "checkbox", "label": "Has VAT", "rules": []},
        {
            "field_id": 2,
            "field_type": "text_input",
            "label": "VAT Number",
            "rules": [{"rule_name": "required", "rule_props": None}],
            "visibility_condition": {"show_when": {"field_id": 1, "operator": "equals", "value": True}},
        },
    ]
    values = {"1": {"value": False}}

    strict = client.post("/api/validate/form", json={"fields": fields, "values": values})
    assert strict.get_json() == {"valid": False, "errors": {"2": "VAT Number is required"}}

    guarded = client.post("/api/validate/form", json={"fields": fields, "values": values, "apply_visibility": True})
    assert guarded.get_json() == {"valid": True, "errors": {}}


def test_bad_shapes_are_rejected(tmp_path) -> None:
    client = create_form_engine_app(str(tmp_path / "forms.db")).test_client()

    assert client.post("/api/visibility", json={"values": []}).status_code == 400
    assert client.post("/api/visibility", json={"fields": {}, "values": {}}).status_code == 400
    assert client.post("/api/validate/field", json={"field": "text"}).status_code == 400
    assert client.post("/api/validate/form", json={"fields": ["x"], "values": {}}).status_code == 400
    assert client.post("/api/visibility/evaluate", json=[1, 2]).status_code == 400

    bad_stage = client.post("/api/visibility", json={"form": {"stage": ["x"]}, "values": {}})
    assert bad_stage.status_code == 400
    assert bad_stage.get_json() == {"error": "stage must be an object"}
    bad_section = client.post("/api/visibility", json={"form": {"stage": {"sections": ["x"]}}, "values": {}})
    assert bad_section.get_json() == {"error": "sections must be objects"}
    assert client.post("/api/visibility", json={"form": [1], "values": {}}).status_code == 400

    malformed = client.post("/api/validate/form", data="{not json", content_type="application/json")
    assert malformed.status_code == 400
    assert malformed.get_json() == {"error": "invalid request payload"}


def test_store_and_evaluate_form(tmp_path) -> None:
    db = tmp_path / "forms.db"
    client = create_form_engine_app(str(db)).test_client()

    created = client.post("/api/forms", json={"name": "Onboarding", "definition": _definition()})
    assert created.status_code == 201
    form_id = created.get_json()["id"]
    assert created.get_json()["version"] == 1

    again = client.post("/api/forms", json={"name": "Onboarding", "definition": _definition()})
    assert again.get_json()["version"] == 2

    fetched = client.get(f"/api/forms/{form_id}")
    assert fetched.status_code == 200
    assert fetched.get_json()["definition"] == _definition()
    assert load_form_definition(connect(db), form_id)["name"] == "Onboarding"

    listing = client.get("/api/forms").get_json()["forms"]
    assert [entry["version"] for entry in listing] == [2, 1]

    personal = client.post(f"/api/forms/{form_id}/evaluate", json={"values": {"1": {"value": "personal"}}})
    assert personal.status_code == 200
    body = personal.get_json()
    assert body["visibility"]["sections"] == {"1": True, "2": False}
    assert body["validation"] == {"valid": True, "errors": {}}

    business = client.post(
        f"/api/forms/{form_id}/evaluate",
        json={"values": {"1": {"value": "business"}, "2": {"value": "AB"}}},
    )
    assert business.get_json()["validation"] == {
        "valid": False,
        "errors": {"2": "Company must be at least 3 characters"},
    }


def test_form_store_errors(tmp_path) -> None:
    client = create_form_engine_app(str(tmp_path / "forms.db")).test_client()

    assert client.post("/api/forms", json={"definition": {}}).status_code == 400
    bad = client.post("/api/forms", json={"name": "x", "definition": {"fields": "nope"}})
    assert bad.status_code == 400
    assert bad.get_json() == {"error": "fields must be a list"}
    assert client.post("/api/forms", json={"name": "x", "definition": "[1"}).status_code == 400

    missing = client.get("/api/forms/999")
    assert missing.status_code == 404
    assert missing.get_json() == {"error": "form definition not found"}
    assert client.post("/api/forms/999/evaluate", json={"values": {}}).status_code == 404

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Mapping

from flask import Flask, abort, jsonify, request
from werkzeug.exceptions import BadRequest, HTTPException

from .conditions import evaluate_visibility
from .db import (
    FormDefinitionError,
    connect,
    init_db,
    list_form_definitions,
    load_form_definition,
    normalize_form_definition,
    save_form_definition,
)
from .schemas import build_field_contract, validate_form
from .visibility import VisibilityMap, build_form_visibility, build_visibility_map, collect_form_elements

DEFAULT_DATABASE_PATH = "./form_rules.db"


def _db_path(app: Flask) -> Path:
    return Path(app.config["DATABASE_PATH"])


def _configure_observability(app: Flask, app_name: str) -> None:
    app.config["APP_NAME"] = app_name
    level_name = os.environ.get("APP_LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    app.logger.setLevel(level)
    logging.getLogger("form_rules").setLevel(level)


def _is_api_request() -> bool:
    return request.path.startswith("/api/")


def _configure_error_handlers(app: Flask) -> None:
    @app.errorhandler(BadRequest)
    def handle_bad_request(error: BadRequest) -> Any:
        app.logger.warning("bad_request", extra={"path": request.path, "method": request.method, "error": str(error)})
        if _is_api_request():
            return jsonify({"error": "invalid request payload"}), 400
        return error

    @app.errorhandler(HTTPException)
    def handle_http_error(error: HTTPException) -> Any:
        app.logger.warning(
            "http_error",
            extra={"path": request.path, "method": request.method, "status_code": error.code, "error": error.description},
        )
        if _is_api_request():
            return jsonify({"error": error.description}), error.code
        return error

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception) -> Any:
        app.logger.exception("unexpected_error", extra={"path": request.path, "method": request.method})
        if _is_api_request():
            return jsonify({"error": "internal server error"}), 500
        raise error


def _json_body() -> dict[str, Any]:
    body = request.get_json(force=True, silent=False) or {}
    if not isinstance(body, dict):
        raise BadRequest("request body must be a JSON object")
    return body


def _values_from(body: Mapping[str, Any]) -> dict[str, Any] | None:
    values = body.get("values", {})
    if values is None:
        return {}
    return values if isinstance(values, dict) else None


def _list_from(body: Mapping[str, Any], key: str) -> list[Any] | None:
    items = body.get(key, [])
    if items is None:
        return []
    return items if isinstance(items, list) else None


def _visible_fields(form: Mapping[str, Any], visibility: VisibilityMap) -> list[dict[str, Any]]:
    """Fields that are shown: their own condition passes and so does their section's."""
    stage = form.get("stage") or {}
    visible: list[dict[str, Any]] = []
    for section in stage.get("sections") or form.get("sections") or []:
        if not isinstance(section, dict):
            continue
        if section.get("section_id") is not None and not visibility.is_section_visible(section["section_id"]):
            continue
        visible.extend(entry for entry in section.get("fields") or [] if isinstance(entry, dict))
    visible.extend(entry for entry in form.get("fields") or [] if isinstance(entry, dict))
    return [entry for entry in visible if visibility.is_field_visible(entry.get("field_id"))]


def create_form_engine_app(database_path: str | None = None) -> Flask:
    app = Flask(__name__)
    _configure_observability(app, "form-rules")
    _configure_error_handlers(app)
    app.config["DATABASE_PATH"] = database_path or os.environ.get("FORM_RULES_DB_PATH", DEFAULT_DATABASE_PATH)
    init_db(_db_path(app))

    @app.get("/healthz")
    def healthz() -> Any:
        return jsonify({"status": "ok", "app": app.config["APP_NAME"]})

    @app.post("/api/visibility")
    def visibility_map() -> Any:
        body = _json_body()
        values = _values_from(body)
        if values is None:
            return jsonify({"error": "values must be an object"}), 400

        form = body.get("form")
        if form is not None:
            try:
                form = normalize_form_definition(form)
            except FormDefinitionError as exc:
                return jsonify({"error": str(exc)}), 400
            return jsonify(build_form_visibility(form, values).to_dict())

        collections = {key: _list_from(body, key) for key in ("fields", "sections", "transitions")}
        for key, items in collections.items():
            if items is None:
                return jsonify({"error": f"{key} must be a list"}), 400
        visibility = build_visibility_map(
            collections["fields"], collections["sections"], collections["transitions"], values
        )
        return jsonify(visibility.to_dict())

    @app.post("/api/visibility/evaluate")
    def evaluate_condition() -> Any:
        body = _json_body()
        values = _values_from(body)
        if values is None:
            return jsonify({"error": "values must be an object"}), 400
        return jsonify(evaluate_visibility(body.get("condition"), values).to_dict())

    @app.post("/api/validate/field")
    def validate_single_field() -> Any:
        body = _json_body()
        field_def = body.get("field")
        if not isinstance(field_def, dict):
            return jsonify({"error": "field must be an object"}), 400
        result = build_field_contract(field_def).validate(body.get("value"))
        return jsonify(result.to_dict())

    @app.post("/api/validate/form")
    def validate_whole_form() -> Any:
        body = _json_body()
        fields = _list_from(body, "fields")
        values = _values_from(body)
        if fields is None or any(not isinstance(entry, dict) for entry in fields):
            return jsonify({"error": "fields must be a list of objects"}), 400
        if values is None:
            return jsonify({"error": "values must be an object"}), 400

        visibility = None
        if body.get("apply_visibility"):
            visibility = build_visibility_map(fields, [], [], values)
        return jsonify(validate_form(fields, values, visibility).to_dict())

    @app.get("/api/forms")
    def list_forms() -> Any:
        conn = connect(_db_path(app))
        return jsonify({"forms": list_form_definitions(conn)})

    @app.post("/api/forms")
    def create_form() -> Any:
        body = _json_body()
        name = str(body.get("name", "")).strip()
        if not name:
            return jsonify({"error": "name is required"}), 400

        conn = connect(_db_path(app))
        try:
            with conn:
                form_id, version = save_form_definition(conn, name, body.get("definition"))
        except FormDefinitionError as exc:
            return jsonify({"error": str(exc)}), 400
        app.logger.info("form_definition_stored", extra={"form_id": form_id, "form_name": name, "version": version})
        return jsonify({"id": form_id, "name": name, "version": version}), 201

    @app.get("/api/forms/<int:form_id>")
    def get_form(form_id: int) -> Any:
        conn = connect(_db_path(app))
        stored = load_form_definition(conn, form_id)
        if stored is None:
            abort(404, description="form definition not found")
        return jsonify(stored)

    @app.post("/api/forms/<int:form_id>/evaluate")
    def evaluate_form(form_id: int) -> Any:
        body = _json_body()
        values = _values_from(body)
        if values is None:
            return jsonify({"error": "values must be an object"}), 400

        conn = connect(_db_path(app))
        stored = load_form_definition(conn, form_id)
        if stored is None:
            abort(404, description="form definition not found")

        form = stored["definition"]
        visibility = build_form_visibility(form, values)
        fields, _, _ = collect_form_elements(form)
        visible_ids = {entry.get("field_id") for entry in _visible_fields(form, visibility)}
        validation = validate_form(
            [entry for entry in fields if isinstance(entry, dict) and entry.get("field_id") in visible_ids],
            values,
        )
        app.logger.info(
            "form_evaluated",
            extra={"form_id": form_id, "valid": validation.valid, "error_count": len(validation.errors)},
        )
        return jsonify({"visibility": visibility.to_dict(), "validation": validation.to_dict()})

    return app

from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from typing import Any

SCHEMA = """
CREATE TABLE IF NOT EXISTS form_definitions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    version INTEGER NOT NULL DEFAULT 1,
    payload TEXT NOT NULL,
    created_at TEXT DEFAULT CURRENT_TIMESTAMP
);
"""


class FormDefinitionError(ValueError):
    """Raised when a form definition payload cannot be stored or read back."""


def connect(db_path: str | Path) -> sqlite3.Connection:
    conn = sqlite3.connect(str(db_path))
    conn.row_factory = sqlite3.Row
    return conn


def init_db(db_path: str | Path) -> None:
    conn = connect(db_path)
    with conn:
        conn.executescript(SCHEMA)
        migrate_form_definitions_schema(conn)
    conn.close()


def migrate_form_definitions_schema(conn: sqlite3.Connection) -> None:
    columns = {row["name"] for row in conn.execute("PRAGMA table_info(form_definitions)").fetchall()}
    if "version" not in columns:
        conn.execute("ALTER TABLE form_definitions ADD COLUMN version INTEGER NOT NULL DEFAULT 1")
    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_form_definitions_name
        ON form_definitions(name, version)
        """
    )


def normalize_form_definition(definition: Any) -> dict[str, Any]:
    if isinstance(definition, str):
        try:
            definition = json.loads(definition)
        except json.JSONDecodeError as exc:
            raise FormDefinitionError(f"definition is not valid JSON: {exc}") from exc
    if not isinstance(definition, dict):
        raise FormDefinitionError("definition must be a JSON object")
    stage = definition.get("stage")
    if stage is not None and not isinstance(stage, dict):
        raise FormDefinitionError("stage must be an object")
    for key in ("fields", "sections", "transitions", "available_transitions"):
        if key in definition and not isinstance(definition[key], list):
            raise FormDefinitionError(f"{key} must be a list")
    if isinstance(stage, dict) and not isinstance(stage.get("sections", []), list):
        raise FormDefinitionError("stage.sections must be a list")
    sections = (stage or {}).get("sections") or definition.get("sections") or []
    for section in sections:
        if not isinstance(section, dict):
            raise FormDefinitionError("sections must be objects")
        if not isinstance(section.get("fields") or [], list):
            raise FormDefinitionError("section fields must be a list")
    return definition


def save_form_definition(conn: sqlite3.Connection, name: str, definition: Any) -> tuple[int, int]:
    """Store a definition as the next version for ``name``; returns (id, version)."""
    payload = normalize_form_definition(definition)
    row = conn.execute(
        "SELECT COALESCE(MAX(version), 0) AS latest FROM form_definitions WHERE name = ?", (name,)
    ).fetchone()
    version = int(row["latest"]) + 1
    cursor = conn.execute(
        "INSERT INTO form_definitions(name, version, payload) VALUES (?, ?, ?)",
        (name, version, json_dumps(payload)),
    )
    return int(cursor.lastrowid), version


def load_form_definition(conn: sqlite3.Connection, form_id: int) -> dict[str, Any] | None:
    row = conn.execute(
        "SELECT id, name, version, payload, created_at FROM form_definitions WHERE id = ?", (form_id,)
    ).fetchone()
    if row is None:
        return None
    try:
        definition = json.loads(row["payload"])
    except json.JSONDecodeError as exc:
        raise FormDefinitionError(f"stored definition {form_id} is corrupt") from exc
    return {
        "id": row["id"],
        "name": row["name"],
        "version": row["version"],
        "definition": definition,
        "created_at": row["created_at"],
    }


def list_form_definitions(conn: sqlite3.Connection, limit: int = 50) -> list[dict[str, Any]]:
    rows = conn.execute(
        "SELECT id, name, version, created_at FROM form_definitions ORDER BY id DESC LIMIT ?", (limit,)
    ).fetchall()
    return [dict(row) for row in rows]


def json_dumps(payload: dict[str, Any]) -> str:
    return json.dumps(payload, separators=(",", ":"), sort_keys=True)

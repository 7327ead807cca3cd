"""Topic registry: named channels carrying an optional system prompt."""

from __future__ import annotations

import sqlite3
from dataclasses import asdict
from dataclasses import dataclass
from typing import Any

from oc_events.db.client import Database
from oc_events.db.client import now_ms
from oc_events.errors import InvalidInputError


@dataclass
class TopicRecord:
    name: str
    system_prompt: str | None
    description: str | None
    created_at: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _row_to_topic(row: sqlite3.Row | None) -> TopicRecord | None:
    if row is None:
        return None
    return TopicRecord(
        name=row["name"],
        system_prompt=row["system_prompt"],
        description=row["description"],
        created_at=row["created_at"],
    )


def list_topics(db: Database) -> list[TopicRecord]:
    with db.connect() as conn:
        rows = conn.execute("SELECT * FROM topics ORDER BY name ASC").fetchall()
    return [_row_to_topic(row) for row in rows]  # type: ignore[misc]


def get_topic(db: Database, name: str) -> TopicRecord | None:
    with db.connect() as conn:
        row = conn.execute("SELECT * FROM topics WHERE name = ?", (name,)).fetchone()
    return _row_to_topic(row)


def upsert_topic(
    db: Database,
    name: str,
    system_prompt: str | None = None,
    description: str | None = None,
) -> TopicRecord:
    """Create a topic or replace its prompt and description.

    ``created_at`` keeps the value from the first insert.
    """
    if not name or not name.strip():
        raise InvalidInputError("topic name is required")

    with db.transaction() as conn:
        row = conn.execute(
            """
            INSERT INTO topics (name, system_prompt, description, created_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(name) DO UPDATE SET
                system_prompt = excluded.system_prompt,
                description = excluded.description
            RETURNING *
            """,
            (name, system_prompt, description, now_ms()),
        ).fetchone()
    return _row_to_topic(row)  # type: ignore[return-value]

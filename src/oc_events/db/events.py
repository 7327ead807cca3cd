"""Event ledger: publish, atomic claim, status updates, retention deletes.

Claims use a single guarded ``UPDATE ... WHERE id = (SELECT ...) AND status =
'pending' RETURNING *`` inside a ``BEGIN IMMEDIATE`` transaction, so two
pollers can never both receive the same event.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from dataclasses import asdict
from dataclasses import dataclass
from enum import Enum
from typing import Any
from typing import Sequence

from oc_events.db.client import Database
from oc_events.db.client import now_ms
from oc_events.db.scope import Scope
from oc_events.db.scope import ScopeCondition
from oc_events.errors import InvalidInputError
from oc_events.errors import NotFoundError
from oc_events.ids import new_id

logger = logging.getLogger(__name__)

DEFAULT_SOURCE = "agent"


class EventStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @classmethod
    def parse(cls, value: "str | EventStatus") -> "EventStatus":
        if isinstance(value, EventStatus):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            choices = "|".join(status.value for status in cls)
            raise InvalidInputError(f"Unknown status {value!r} (expected {choices})") from None


@dataclass
class EventRecord:
    """A stored event row."""

    id: str
    topic: str
    body: str
    metadata: str | None
    correlation_id: str | None
    parent_id: str | None
    status: str
    source: str
    org_id: str | None
    workspace_id: str | None
    project_id: str | None
    repo_id: str | None
    created_at: int
    processed_at: int | None
    claimed_by: str | None
    claimed_at: int | None
    expires_at: int | None

    @property
    def metadata_json(self) -> Any:
        """Parsed metadata, or None when absent or not valid JSON."""
        return parse_metadata(self.metadata)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class NewEvent:
    """Input for :func:`insert_event`."""

    topic: str
    body: str
    scope: Scope
    metadata: str | None = None
    correlation_id: str | None = None
    parent_id: str | None = None
    source: str = DEFAULT_SOURCE


_EVENT_FIELDS = tuple(EventRecord.__dataclass_fields__)


def row_to_event(row: sqlite3.Row | None) -> EventRecord | None:
    if row is None:
        return None
    return EventRecord(**{name: row[name] for name in _EVENT_FIELDS})


def parse_metadata(raw: str | None) -> Any:
    if raw is None or not raw.strip():
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return None


def validate_new_event(event: NewEvent) -> None:
    """Reject events missing required fields; nothing is written on failure."""
    if not event.topic or not event.topic.strip():
        raise InvalidInputError("topic is required")
    if not event.body:
        raise InvalidInputError("body is required")
    if not event.scope.org_id:
        raise InvalidInputError("org_id is required for scoped events")
    if event.metadata is not None and event.metadata.strip() and parse_metadata(event.metadata) is None:
        logger.warning("Event metadata for topic %s is not valid JSON; storing it as opaque text", event.topic)


def insert_event(conn: sqlite3.Connection, event: NewEvent, created_at: int | None = None) -> EventRecord:
    """Insert a pending event on an open transaction and return the stored row."""
    created_at = now_ms() if created_at is None else created_at

    if event.parent_id is not None:
        exists = conn.execute("SELECT 1 FROM events WHERE id = ?", (event.parent_id,)).fetchone()
        if exists is None:
            raise NotFoundError(f"Parent event not found: {event.parent_id}")

    row = conn.execute(
        """
        INSERT INTO events (
            id, topic, body, metadata, correlation_id, parent_id, status, source,
            org_id, workspace_id, project_id, repo_id, created_at
        ) VALUES (?, ?, ?, ?, ?, ?, 'pending', ?, ?, ?, ?, ?, ?)
        RETURNING *
        """,
        (
            new_id(created_at),
            event.topic,
            event.body,
            event.metadata,
            event.correlation_id,
            event.parent_id,
            event.source or DEFAULT_SOURCE,
            event.scope.org_id,
            event.scope.workspace_id,
            event.scope.project_id,
            event.scope.repo_id,
            created_at,
        ),
    ).fetchone()
    return row_to_event(row)  # type: ignore[return-value]


def publish_event(db: Database, event: NewEvent, created_at: int | None = None) -> EventRecord:
    """Validate and persist a new pending event in its own transaction."""
    validate_new_event(event)
    with db.transaction() as conn:
        record = insert_event(conn, event, created_at)
    logger.debug("Published event %s to topic %s", record.id, record.topic)
    return record


def claim_where(
    db: Database,
    topic: str,
    agent: str,
    condition: ScopeCondition,
    extra_sql: str = "",
    extra_params: Sequence[Any] = (),
) -> EventRecord | None:
    """Claim the oldest pending event in ``topic`` matching the filters.

    ``extra_sql`` is appended to the candidate WHERE clause (``AND ...``).
    """
    if not agent or not agent.strip():
        raise InvalidInputError("agent is required to claim events")

    now = now_ms()
    query = f"""
        UPDATE events
        SET status = 'processing',
            claimed_by = ?,
            claimed_at = ?
        WHERE id = (
            SELECT id FROM events
            WHERE topic = ?
              AND status = 'pending'
              AND {condition.sql}
              {extra_sql}
            ORDER BY created_at ASC, id ASC
            LIMIT 1
        )
          AND status = 'pending'
        RETURNING *
    """
    params = (agent, now, topic, *condition.params, *extra_params)

    with db.transaction() as conn:
        row = conn.execute(query, params).fetchone()

    record = row_to_event(row)
    if record is not None:
        logger.info("Agent %s claimed event %s on topic %s", agent, record.id, topic)
    return record


def claim_next_event(db: Database, topic: str, agent: str, condition: ScopeCondition) -> EventRecord | None:
    """Claim the oldest pending event for ``topic`` within the scope filter."""
    return claim_where(db, topic, agent, condition)


def write_status(
    conn: sqlite3.Connection,
    event_id: str,
    status: "EventStatus | str",
    processed_at: int | None = None,
) -> EventRecord | None:
    """Overwrite status and ``processed_at`` on an open transaction."""
    status = EventStatus.parse(status)
    processed_at = now_ms() if processed_at is None else processed_at
    row = conn.execute(
        """
        UPDATE events
        SET status = ?, processed_at = ?
        WHERE id = ?
        RETURNING *
        """,
        (status.value, processed_at, event_id),
    ).fetchone()
    return row_to_event(row)


def update_event_status(
    db: Database,
    event_id: str,
    status: "EventStatus | str",
    processed_at: int | None = None,
) -> EventRecord | None:
    """Overwrite status and ``processed_at``; None if the event does not exist.

    Any transition is accepted, including moving an event back to pending.
    """
    status = EventStatus.parse(status)
    with db.transaction() as conn:
        return write_status(conn, event_id, status, processed_at)


def get_event(db: Database, event_id: str) -> EventRecord | None:
    with db.connect() as conn:
        row = conn.execute("SELECT * FROM events WHERE id = ?", (event_id,)).fetchone()
    return row_to_event(row)


def get_thread(db: Database, event_id: str) -> list[EventRecord]:
    """Return the event and its ancestors, nearest first.

    Parent chains are not checked for cycles on write; the walk stops at the
    first repeated id.
    """
    chain: list[EventRecord] = []
    seen: set[str] = set()
    with db.connect() as conn:
        current: str | None = event_id
        while current is not None and current not in seen:
            seen.add(current)
            record = row_to_event(conn.execute("SELECT * FROM events WHERE id = ?", (current,)).fetchone())
            if record is None:
                break
            chain.append(record)
            current = record.parent_id
    return chain


def delete_events_where(db: Database, where_sql: str, params: Sequence[Any] = ()) -> int:
    """Bulk delete events matching ``where_sql``; returns the number removed.

    Replies to deleted events are kept with ``parent_id`` cleared.
    """
    params = tuple(params)
    with db.transaction() as conn:
        conn.execute(
            f"UPDATE events SET parent_id = NULL WHERE parent_id IN (SELECT id FROM events WHERE {where_sql})",
            params,
        )
        cur = conn.execute(f"DELETE FROM events WHERE {where_sql}", params)
        return cur.rowcount


def list_events(
    db: Database,
    condition: ScopeCondition | None = None,
    topic: str | None = None,
    status: "EventStatus | str | None" = None,
    limit: int = 50,
) -> list[EventRecord]:
    """Most recent events first, optionally filtered."""
    clauses = ["1 = 1"]
    params: list[Any] = []
    if condition is not None:
        clauses.append(condition.sql)
        params.extend(condition.params)
    if topic is not None:
        clauses.append("topic = ?")
        params.append(topic)
    if status is not None:
        clauses.append("status = ?")
        params.append(EventStatus.parse(status).value)
    params.append(limit)

    with db.connect() as conn:
        rows = conn.execute(
            f"""
            SELECT * FROM events
            WHERE {" AND ".join(clauses)}
            ORDER BY created_at DESC, id DESC
            LIMIT ?
            """,
            params,
        ).fetchall()
    return [row_to_event(row) for row in rows]  # type: ignore[misc]

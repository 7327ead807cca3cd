"""Secondary lookups derived from event bodies.

Mentions (``@name``) and tool names are extracted when an event is published
and stored with ``INSERT OR IGNORE`` so re-indexing is harmless. Full-text
search uses the ``events_fts`` table, which triggers keep in step with
``events``.
"""

from __future__ import annotations

import logging
import re
import sqlite3

from oc_events.db.client import Database
from oc_events.db.events import EventRecord
from oc_events.db.events import row_to_event
from oc_events.db.scope import ScopeCondition

logger = logging.getLogger(__name__)

MENTION_PATTERN = re.compile(r"@[A-Za-z0-9_-]+")

TOOL_NAMES = ("bash", "read", "write", "edit", "glob", "grep", "task", "question")
TOOL_PATTERN = re.compile(r"\b(" + "|".join(TOOL_NAMES) + r")\b", re.ASCII)


def _distinct(matches: list[str]) -> list[str]:
    return list(dict.fromkeys(matches))


def extract_mentions(body: str) -> list[str]:
    """Distinct ``@name`` tokens in order of first appearance."""
    return _distinct(MENTION_PATTERN.findall(body or ""))


def extract_tool_calls(body: str) -> list[str]:
    """Distinct whole-word tool names in order of first appearance."""
    return _distinct(TOOL_PATTERN.findall(body or ""))


def index_event(conn: sqlite3.Connection, event_id: str, body: str) -> tuple[int, int]:
    """Write mention and tool-call rows for one event; returns rows inserted."""
    mentions = extract_mentions(body)
    tools = extract_tool_calls(body)
    mention_rows = 0
    tool_rows = 0
    if mentions:
        cur = conn.executemany(
            "INSERT OR IGNORE INTO mentions (event_id, mention) VALUES (?, ?)",
            [(event_id, mention) for mention in mentions],
        )
        mention_rows = cur.rowcount
    if tools:
        cur = conn.executemany(
            "INSERT OR IGNORE INTO tool_calls (event_id, tool_name) VALUES (?, ?)",
            [(event_id, tool) for tool in tools],
        )
        tool_rows = cur.rowcount
    return mention_rows, tool_rows


def index_event_bodies(db: Database, events: list[tuple[str, str]]) -> None:
    """Index ``(event_id, body)`` pairs in one transaction."""
    with db.transaction() as conn:
        for event_id, body in events:
            index_event(conn, event_id, body)


def reindex_events(db: Database, event_id: str | None = None) -> int:
    """Rebuild mention/tool rows (one event, or all) and the FTS index.

    Returns the number of events visited.
    """
    with db.transaction() as conn:
        if event_id is None:
            rows = conn.execute("SELECT id, body FROM events").fetchall()
            conn.execute("INSERT INTO events_fts (events_fts) VALUES ('rebuild')")
        else:
            rows = conn.execute("SELECT id, body FROM events WHERE id = ?", (event_id,)).fetchall()
        for row in rows:
            index_event(conn, row["id"], row["body"])
    logger.info("Reindexed %s events", len(rows))
    return len(rows)


def _normalize_mention(mention: str) -> str:
    mention = mention.strip()
    return mention if mention.startswith("@") else f"@{mention}"


def _scoped(condition: ScopeCondition | None) -> tuple[str, tuple[str, ...]]:
    if condition is None:
        return "", ()
    return f"AND {condition.sql}", condition.params


def find_by_mention(db: Database, mention: str, condition: ScopeCondition | None = None) -> list[EventRecord]:
    """Events mentioning ``mention`` (``alice`` or ``@alice``), newest first."""
    scope_sql, scope_params = _scoped(condition)
    with db.connect() as conn:
        rows = conn.execute(
            f"""
            SELECT events.* FROM events
            INNER JOIN mentions ON mentions.event_id = events.id
            WHERE mentions.mention = ? {scope_sql}
            ORDER BY events.created_at DESC, events.id DESC
            """,
            (_normalize_mention(mention), *scope_params),
        ).fetchall()
    return [row_to_event(row) for row in rows]  # type: ignore[misc]


def find_by_tool(db: Database, tool_name: str, condition: ScopeCondition | None = None) -> list[EventRecord]:
    """Events whose body referenced ``tool_name``, newest first."""
    scope_sql, scope_params = _scoped(condition)
    with db.connect() as conn:
        rows = conn.execute(
            f"""
            SELECT events.* FROM events
            INNER JOIN tool_calls ON tool_calls.event_id = events.id
            WHERE tool_calls.tool_name = ? {scope_sql}
            ORDER BY events.created_at DESC, events.id DESC
            """,
            (tool_name.strip(), *scope_params),
        ).fetchall()
    return [row_to_event(row) for row in rows]  # type: ignore[misc]


def fts_query(raw: str) -> str:
    """Normalize raw text into a safe FTS query."""
    cleaned = (raw or "").strip()
    if not cleaned:
        return ""
    # FTS5 treats punctuation as operators; normalize to whitespace for stable matches.
    normalized = re.sub(r"[^\w\s]+", " ", cleaned, flags=re.UNICODE)
    tokens = normalized.split()
    # Quote each token so words like AND / NEAR are matched literally.
    return " ".join(f'"{token}"' for token in tokens)


def search_events(
    db: Database,
    query: str,
    condition: ScopeCondition | None = None,
    limit: int | None = None,
) -> list[EventRecord]:
    """Full-text search over event bodies, newest first."""
    match = fts_query(query)
    if not match:
        return []

    scope_sql, scope_params = _scoped(condition)
    params: list[object] = [match, *scope_params]
    limit_sql = ""
    if limit is not None:
        limit_sql = "LIMIT ?"
        params.append(limit)

    with db.connect() as conn:
        rows = conn.execute(
            f"""
            SELECT events.* FROM events
            INNER JOIN events_fts ON events_fts.rowid = events.rowid
            WHERE events_fts MATCH ? {scope_sql}
            ORDER BY events.created_at DESC, events.id DESC
            {limit_sql}
            """,
            params,
        ).fetchall()
    return [row_to_event(row) for row in rows]  # type: ignore[misc]

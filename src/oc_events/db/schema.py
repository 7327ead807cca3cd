"""SQLite schema for the event ledger.

Scope columns and their indexes are created separately (``SCOPE_COLUMNS`` /
``SCOPE_INDEX_SQL``) so that a store created before scoping existed can be
upgraded in place.
"""

from __future__ import annotations

SCHEMA_VERSION = 2

BASE_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS metadata (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS events (
    id TEXT PRIMARY KEY,
    topic TEXT NOT NULL,
    body TEXT NOT NULL,
    metadata TEXT,
    correlation_id TEXT,
    parent_id TEXT REFERENCES events(id) ON DELETE SET NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    source TEXT NOT NULL DEFAULT 'agent',
    org_id TEXT,
    workspace_id TEXT,
    project_id TEXT,
    repo_id TEXT,
    created_at INTEGER NOT NULL,
    processed_at INTEGER,
    claimed_by TEXT,
    claimed_at INTEGER,
    expires_at INTEGER
);

CREATE INDEX IF NOT EXISTS idx_events_topic_status ON events (topic, status);
CREATE INDEX IF NOT EXISTS idx_events_created_at ON events (created_at);
CREATE INDEX IF NOT EXISTS idx_events_correlation_id ON events (correlation_id);
CREATE INDEX IF NOT EXISTS idx_events_claimed_by ON events (claimed_by);
CREATE INDEX IF NOT EXISTS idx_events_parent_id ON events (parent_id);

CREATE VIRTUAL TABLE IF NOT EXISTS events_fts USING fts5(
    body,
    content='events',
    content_rowid='rowid'
);

CREATE TRIGGER IF NOT EXISTS events_ai AFTER INSERT ON events BEGIN
    INSERT INTO events_fts (rowid, body) VALUES (new.rowid, new.body);
END;

CREATE TRIGGER IF NOT EXISTS events_ad AFTER DELETE ON events BEGIN
    INSERT INTO events_fts (events_fts, rowid, body) VALUES ('delete', old.rowid, old.body);
END;

CREATE TRIGGER IF NOT EXISTS events_au AFTER UPDATE ON events BEGIN
    INSERT INTO events_fts (events_fts, rowid, body) VALUES ('delete', old.rowid, old.body);
    INSERT INTO events_fts (rowid, body) VALUES (new.rowid, new.body);
END;

CREATE TABLE IF NOT EXISTS topics (
    name TEXT PRIMARY KEY,
    system_prompt TEXT,
    description TEXT,
    created_at INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS mentions (
    event_id TEXT NOT NULL REFERENCES events(id) ON DELETE CASCADE,
    mention TEXT NOT NULL,
    UNIQUE (event_id, mention)
);

CREATE INDEX IF NOT EXISTS idx_mentions_mention ON mentions (mention);

CREATE TABLE IF NOT EXISTS tool_calls (
    event_id TEXT NOT NULL REFERENCES events(id) ON DELETE CASCADE,
    tool_name TEXT NOT NULL,
    UNIQUE (event_id, tool_name)
);

CREATE INDEX IF NOT EXISTS idx_tool_calls_tool ON tool_calls (tool_name);
"""

SCOPE_COLUMNS = ("org_id", "workspace_id", "project_id", "repo_id")

SCOPE_INDEX_SQL = """
CREATE INDEX IF NOT EXISTS idx_events_org_topic_status_created
ON events (org_id, topic, status, created_at);

CREATE INDEX IF NOT EXISTS idx_events_org_workspace_topic_status_created
ON events (org_id, workspace_id, topic, status, created_at);

CREATE INDEX IF NOT EXISTS idx_events_org_project_topic_status_created
ON events (org_id, project_id, topic, status, created_at);

CREATE INDEX IF NOT EXISTS idx_events_org_repo_topic_status_created
ON events (org_id, repo_id, topic, status, created_at);
"""

# Derived index tables: (table, value column, index name)
INDEX_TABLES = (
    ("mentions", "mention", "idx_mentions_mention"),
    ("tool_calls", "tool_name", "idx_tool_calls_tool"),
)

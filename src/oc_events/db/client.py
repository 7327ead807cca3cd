"""Connection management and schema migrations for the event store.

Every operation opens its own connection and closes it before returning, so
the store can be shared by CLI invocations, webhook requests and pollers
without holding locks between operations.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from oc_events.config import DEFAULT_ORG
from oc_events.db.schema import BASE_SCHEMA_SQL
from oc_events.db.schema import INDEX_TABLES
from oc_events.db.schema import SCHEMA_VERSION
from oc_events.db.schema import SCOPE_COLUMNS
from oc_events.db.schema import SCOPE_INDEX_SQL
from oc_events.errors import StorageUnavailableError

logger = logging.getLogger(__name__)

BUSY_TIMEOUT_MS = 5000

_SCHEMA_READY: set[str] = set()
_SCHEMA_LOCK = threading.Lock()


def now_ms() -> int:
    return int(time.time() * 1000)


def _apply_pragmas(conn: sqlite3.Connection) -> None:
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA synchronous=NORMAL")
    conn.execute("PRAGMA foreign_keys=ON")
    conn.execute(f"PRAGMA busy_timeout={BUSY_TIMEOUT_MS}")


def _has_column(conn: sqlite3.Connection, table: str, column: str) -> bool:
    rows = conn.execute(f"PRAGMA table_info({table})").fetchall()
    return any(row["name"] == column for row in rows)


def _ensure_scope_columns(conn: sqlite3.Connection) -> list[str]:
    added = []
    for column in SCOPE_COLUMNS:
        if not _has_column(conn, "events", column):
            conn.execute(f"ALTER TABLE events ADD COLUMN {column} TEXT")
            added.append(column)
    return added


def _rebuild_index_tables(conn: sqlite3.Connection) -> list[str]:
    """Recreate derived index tables whose foreign key lacks ON DELETE CASCADE."""
    rebuilt = []
    for table, column, index in INDEX_TABLES:
        fks = conn.execute(f"PRAGMA foreign_key_list({table})").fetchall()
        if fks and all(fk["on_delete"] == "CASCADE" for fk in fks):
            continue
        conn.execute(f"ALTER TABLE {table} RENAME TO {table}_old")
        conn.execute(
            f"""
            CREATE TABLE {table} (
                event_id TEXT NOT NULL REFERENCES events(id) ON DELETE CASCADE,
                {column} TEXT NOT NULL,
                UNIQUE (event_id, {column})
            )
            """
        )
        conn.execute(
            f"""
            INSERT OR IGNORE INTO {table} (event_id, {column})
            SELECT event_id, {column} FROM {table}_old
            WHERE event_id IN (SELECT id FROM events)
            """
        )
        conn.execute(f"DROP TABLE {table}_old")
        conn.execute(f"CREATE INDEX IF NOT EXISTS {index} ON {table} ({column})")
        rebuilt.append(table)
    return rebuilt


def get_schema_version(conn: sqlite3.Connection) -> int:
    row = conn.execute("SELECT value FROM metadata WHERE key = 'schema_version'").fetchone()
    if row is None:
        return 1
    try:
        return int(row["value"])
    except ValueError:
        return 1


def migrate(conn: sqlite3.Connection, default_org: str = DEFAULT_ORG) -> None:
    """Create missing tables and upgrade older stores to ``SCHEMA_VERSION``.

    Stores without a version marker are treated as version 1 (pre-scope):
    scope columns are added and existing rows get ``org_id = default_org``.
    """
    fts_existed = (
        conn.execute("SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = 'events_fts'").fetchone()
        is not None
    )
    conn.executescript(BASE_SCHEMA_SQL)

    conn.execute("BEGIN IMMEDIATE")
    try:
        version = get_schema_version(conn)
        added = _ensure_scope_columns(conn)
        rebuilt = _rebuild_index_tables(conn)
        if not fts_existed:
            # Rows written before the search table existed
            conn.execute("INSERT INTO events_fts (events_fts) VALUES ('rebuild')")
        for statement in SCOPE_INDEX_SQL.split(";"):
            if statement.strip():
                conn.execute(statement)

        if version < SCHEMA_VERSION:
            cur = conn.execute(
                "UPDATE events SET org_id = ? WHERE org_id IS NULL OR org_id = ''",
                (default_org,),
            )
            logger.info(
                "Migrated event store from schema v%s to v%s (added columns: %s, rebuilt: %s, backfilled org on %s rows)",
                version,
                SCHEMA_VERSION,
                ", ".join(added) or "none",
                ", ".join(rebuilt) or "none",
                cur.rowcount,
            )

        conn.execute(
            """
            INSERT INTO metadata (key, value)
            VALUES ('schema_version', ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value
            """,
            (str(SCHEMA_VERSION),),
        )
        conn.execute("COMMIT")
    except BaseException:
        conn.execute("ROLLBACK")
        raise


class Database:
    """Handle to one SQLite event store file.

    Args:
        path: Database file. Parent directories are created on first connect.
        default_org: Org assigned to pre-scope rows during migration.
    """

    def __init__(self, path: Path | str, default_org: str = DEFAULT_ORG):
        self.path = Path(path)
        self.default_org = default_org

    def _open(self) -> sqlite3.Connection:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(
                str(self.path),
                timeout=BUSY_TIMEOUT_MS / 1000,
                isolation_level=None,
                check_same_thread=False,
            )
        except (OSError, sqlite3.Error) as exc:
            raise StorageUnavailableError(f"Cannot open event store at {self.path}: {exc}") from exc

        conn.row_factory = sqlite3.Row
        try:
            _apply_pragmas(conn)
            self._ensure_schema(conn)
        except sqlite3.DatabaseError as exc:
            conn.close()
            raise StorageUnavailableError(f"Cannot initialize event store at {self.path}: {exc}") from exc
        return conn

    def _ensure_schema(self, conn: sqlite3.Connection) -> None:
        key = str(self.path.resolve())
        if key in _SCHEMA_READY:
            return

        with _SCHEMA_LOCK:
            if key in _SCHEMA_READY:
                return
            migrate(conn, self.default_org)
            _SCHEMA_READY.add(key)

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        """Yield an autocommit connection that is closed on exit."""
        conn = self._open()
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection inside ``BEGIN IMMEDIATE``; commit on success."""
        with self.connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")


def reset_schema_cache() -> None:
    """Forget which database files have been migrated (tests)."""
    with _SCHEMA_LOCK:
        _SCHEMA_READY.clear()

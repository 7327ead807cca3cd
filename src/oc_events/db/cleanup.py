"""Retention cleanup."""

from __future__ import annotations

import logging

from oc_events.db.client import Database
from oc_events.db.client import now_ms
from oc_events.db.events import delete_events_where
from oc_events.db.scope import ScopeCondition
from oc_events.errors import InvalidInputError

logger = logging.getLogger(__name__)

DAY_MS = 24 * 60 * 60 * 1000
DEFAULT_COMPLETED_RETENTION_DAYS = 30
DEFAULT_PENDING_RETENTION_DAYS = 7


def cleanup_events(
    db: Database,
    completed_retention_days: float = DEFAULT_COMPLETED_RETENTION_DAYS,
    pending_retention_days: float = DEFAULT_PENDING_RETENTION_DAYS,
    condition: ScopeCondition | None = None,
    now: int | None = None,
) -> int:
    """Delete finished events older than ``completed_retention_days`` and pending
    events older than ``pending_retention_days`` (by ``created_at``).

    Events being processed are never removed. With ``condition`` only rows in
    that scope are eligible.
    """
    if completed_retention_days < 0 or pending_retention_days < 0:
        raise InvalidInputError("retention days must not be negative")

    now = now_ms() if now is None else now
    completed_cutoff = now - int(completed_retention_days * DAY_MS)
    pending_cutoff = now - int(pending_retention_days * DAY_MS)

    where_sql = """
        ((status IN ('completed', 'failed') AND created_at < ?)
         OR (status = 'pending' AND created_at < ?))
    """
    params: list[object] = [completed_cutoff, pending_cutoff]
    if condition is not None:
        where_sql = f"{where_sql} AND {condition.sql}"
        params.extend(condition.params)

    removed = delete_events_where(db, where_sql, params)
    if removed > 0:
        logger.info(f"Cleaned up {removed} old events")
    return removed

"""Event bus facade used by the CLI and the webhook relay.

Wires the store, indexers, topic registry and scope resolution together.
Mention and tool-call indexing runs right after a publish commits; if it
fails the event stays published and ``reindex`` can rebuild the rows.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from oc_events.config import ScopeDefaults
from oc_events.config import Settings
from oc_events.context import ContextStore
from oc_events.context import GitRepoProbe
from oc_events.context import RepoProbe
from oc_events.context import SavedContext
from oc_events.context import ScopeInput
from oc_events.context import resolve_scope
from oc_events.db.cleanup import DEFAULT_COMPLETED_RETENTION_DAYS
from oc_events.db.cleanup import DEFAULT_PENDING_RETENTION_DAYS
from oc_events.db.cleanup import cleanup_events
from oc_events.db.client import Database
from oc_events.db.events import DEFAULT_SOURCE
from oc_events.db.events import EventRecord
from oc_events.db.events import EventStatus
from oc_events.db.events import NewEvent
from oc_events.db.events import claim_next_event
from oc_events.db.events import get_event
from oc_events.db.events import get_thread
from oc_events.db.events import insert_event
from oc_events.db.events import list_events
from oc_events.db.events import publish_event
from oc_events.db.events import update_event_status
from oc_events.db.events import validate_new_event
from oc_events.db.events import write_status
from oc_events.db.handoffs import claim_next_handoff_event
from oc_events.db.indexing import find_by_mention
from oc_events.db.indexing import find_by_tool
from oc_events.db.indexing import index_event_bodies
from oc_events.db.indexing import reindex_events
from oc_events.db.indexing import search_events
from oc_events.db.scope import Scope
from oc_events.db.scope import ScopeCondition
from oc_events.db.scope import ScopeLevel
from oc_events.db.scope import build_scope_condition
from oc_events.db.topics import TopicRecord
from oc_events.db.topics import get_topic
from oc_events.db.topics import list_topics
from oc_events.db.topics import upsert_topic
from oc_events.errors import NotFoundError

logger = logging.getLogger(__name__)


@dataclass
class ClaimedEvent:
    """A claimed event joined with its topic's system prompt."""

    event: EventRecord
    system_prompt: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload = self.event.to_dict()
        payload["system_prompt"] = self.system_prompt
        return payload


class EventBus:
    """Core operations over one event store.

    Args:
        db: The event store.
        defaults: Configured scope defaults.
        repo_probe: Ambient repo detection; None disables it.
    """

    def __init__(
        self,
        db: Database,
        defaults: ScopeDefaults | None = None,
        repo_probe: RepoProbe | None = None,
    ):
        self.db = db
        self.defaults = defaults or ScopeDefaults()
        self.repo_probe = repo_probe
        self.context = ContextStore(db)

    @classmethod
    def from_settings(cls, settings: Settings, repo_probe: RepoProbe | None = None) -> "EventBus":
        db = Database(settings.db_path, default_org=settings.defaults.org)
        return cls(db, settings.defaults, repo_probe if repo_probe is not None else GitRepoProbe())

    # ------------------------------------------------------------------
    # Scope
    # ------------------------------------------------------------------

    def resolve_scope(self, overrides: ScopeInput | None = None, cwd: Path | None = None) -> Scope:
        return resolve_scope(
            overrides or ScopeInput(),
            self.context.load(),
            self.defaults,
            self.repo_probe,
            cwd,
        )

    def scope_condition(
        self,
        scope: Scope,
        level: ScopeLevel | str | None = None,
        include_unscoped: bool = False,
    ) -> ScopeCondition:
        return build_scope_condition(scope, level, include_unscoped, table_alias="events")

    def get_saved_context(self) -> SavedContext:
        return self.context.load()

    def save_context(
        self,
        org: str | None = None,
        workspace: str | None = None,
        project: str | None = None,
        repo: str | None = None,
    ) -> SavedContext:
        return self.context.save(org=org, workspace=workspace, project=project, repo=repo)

    def clear_context(self) -> None:
        self.context.clear()

    # ------------------------------------------------------------------
    # Publish / claim
    # ------------------------------------------------------------------

    def publish(
        self,
        topic: str,
        body: str,
        scope: Scope,
        metadata: str | None = None,
        correlation_id: str | None = None,
        parent_id: str | None = None,
        source: str = DEFAULT_SOURCE,
    ) -> EventRecord:
        """Persist a pending event, then index its mentions and tool names."""
        event = publish_event(
            self.db,
            NewEvent(
                topic=topic,
                body=body,
                scope=scope,
                metadata=metadata,
                correlation_id=correlation_id,
                parent_id=parent_id,
                source=source,
            ),
        )
        self._index(event)
        return event

    def _index(self, event: EventRecord) -> None:
        try:
            index_event_bodies(self.db, [(event.id, event.body)])
        except Exception:
            # The event is committed; `oc-events reindex` can repair the index.
            logger.exception("Indexing failed for event %s; run reindex to rebuild", event.id)

    def _with_prompt(self, event: EventRecord | None) -> ClaimedEvent | None:
        if event is None:
            return None
        topic = get_topic(self.db, event.topic)
        return ClaimedEvent(event=event, system_prompt=topic.system_prompt if topic else None)

    def claim_next(
        self,
        topic: str,
        agent: str,
        scope: Scope,
        level: ScopeLevel | str | None = None,
        include_unscoped: bool = False,
    ) -> ClaimedEvent | None:
        """Claim the oldest pending event for ``topic`` in scope, with its prompt."""
        condition = self.scope_condition(scope, level, include_unscoped)
        return self._with_prompt(claim_next_event(self.db, topic, agent, condition))

    def claim_next_handoff(
        self,
        topic: str,
        agent: str,
        recipient: str,
        scope: Scope,
        level: ScopeLevel | str | None = None,
        include_unscoped: bool = False,
    ) -> ClaimedEvent | None:
        """Claim the oldest pending event in ``topic`` addressed to ``recipient``."""
        condition = self.scope_condition(scope, level, include_unscoped)
        return self._with_prompt(claim_next_handoff_event(self.db, topic, agent, recipient, condition))

    # ------------------------------------------------------------------
    # Status / replies
    # ------------------------------------------------------------------

    def update_status(
        self,
        event_id: str,
        status: EventStatus | str,
        processed_at: int | None = None,
    ) -> EventRecord | None:
        return update_event_status(self.db, event_id, status, processed_at)

    def reply(
        self,
        event_id: str,
        status: EventStatus | str,
        body: str,
        metadata: str | None = None,
        source: str = DEFAULT_SOURCE,
    ) -> EventRecord:
        """Finish ``event_id`` with ``status`` and publish a reply on its topic.

        The reply inherits the original's scope and correlation id (or uses the
        original id as correlation id when it had none). The status change and
        the reply insert commit together; nothing is written if either fails.
        """
        status = EventStatus.parse(status)
        original = get_event(self.db, event_id)
        if original is None:
            raise NotFoundError(f"Event not found: {event_id}")

        scope = Scope(
            org_id=original.org_id or self.defaults.org,
            workspace_id=original.workspace_id,
            project_id=original.project_id,
            repo_id=original.repo_id,
        )
        new_event = NewEvent(
            topic=original.topic,
            body=body,
            scope=scope,
            metadata=metadata,
            correlation_id=original.correlation_id or event_id,
            parent_id=event_id,
            source=source,
        )
        validate_new_event(new_event)
        with self.db.transaction() as conn:
            if write_status(conn, event_id, status) is None:
                raise NotFoundError(f"Event not found: {event_id}")
            event = insert_event(conn, new_event)
        self._index(event)
        return event

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_event(self, event_id: str) -> EventRecord | None:
        return get_event(self.db, event_id)

    def thread(self, event_id: str) -> list[EventRecord]:
        chain = get_thread(self.db, event_id)
        if not chain:
            raise NotFoundError(f"Event not found: {event_id}")
        return chain

    def list_events(
        self,
        condition: ScopeCondition | None = None,
        topic: str | None = None,
        status: EventStatus | str | None = None,
        limit: int = 50,
    ) -> list[EventRecord]:
        return list_events(self.db, condition, topic=topic, status=status, limit=limit)

    def find_by_mention(self, mention: str, condition: ScopeCondition | None = None) -> list[EventRecord]:
        return find_by_mention(self.db, mention, condition)

    def find_by_tool(self, tool_name: str, condition: ScopeCondition | None = None) -> list[EventRecord]:
        return find_by_tool(self.db, tool_name, condition)

    def search(self, query: str, condition: ScopeCondition | None = None, limit: int | None = None) -> list[EventRecord]:
        return search_events(self.db, query, condition, limit)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def cleanup(
        self,
        completed_retention_days: float = DEFAULT_COMPLETED_RETENTION_DAYS,
        pending_retention_days: float = DEFAULT_PENDING_RETENTION_DAYS,
        scope: Scope | None = None,
        level: ScopeLevel | str | None = None,
        include_unscoped: bool = False,
        now: int | None = None,
    ) -> int:
        condition = None
        if scope is not None:
            condition = build_scope_condition(scope, level, include_unscoped)
        return cleanup_events(
            self.db,
            completed_retention_days=completed_retention_days,
            pending_retention_days=pending_retention_days,
            condition=condition,
            now=now,
        )

    def reindex(self, event_id: str | None = None) -> int:
        if event_id is not None and get_event(self.db, event_id) is None:
            raise NotFoundError(f"Event not found: {event_id}")
        return reindex_events(self.db, event_id)

    # ------------------------------------------------------------------
    # Topics
    # ------------------------------------------------------------------

    def upsert_topic(self, name: str, system_prompt: str | None = None, description: str | None = None) -> TopicRecord:
        return upsert_topic(self.db, name, system_prompt, description)

    def get_topic(self, name: str) -> TopicRecord | None:
        return get_topic(self.db, name)

    def list_topics(self) -> list[TopicRecord]:
        return list_topics(self.db)

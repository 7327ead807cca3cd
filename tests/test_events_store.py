"""Tests for the event ledger (SQLite-backed, durable).

Covers:
- publish validates input and stores pending rows
- claim is FIFO, scope-filtered, and hands each event to at most one agent
- status updates are unconditional overwrites
- thread walks parent links and tolerates cycles
"""

import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from oc_events.db.events import NewEvent
from oc_events.db.events import claim_next_event
from oc_events.db.events import get_event
from oc_events.db.events import get_thread
from oc_events.db.events import list_events
from oc_events.db.events import publish_event
from oc_events.db.events import update_event_status
from oc_events.db.scope import Scope
from oc_events.db.scope import build_scope_condition
from oc_events.errors import InvalidInputError
from oc_events.errors import NotFoundError


def _publish(db, topic="reviews", body="hello", scope=None, **kwargs):
    created_at = kwargs.pop("created_at", None)
    event = NewEvent(topic=topic, body=body, scope=scope or Scope(org_id="acme"), **kwargs)
    return publish_event(db, event, created_at=created_at)


def _claim(db, topic="reviews", agent="agent-1", scope=None, level=None, include_unscoped=False):
    condition = build_scope_condition(scope or Scope(org_id="acme"), level, include_unscoped)
    return claim_next_event(db, topic, agent, condition)


# ---------------------------------------------------------------------------
# publish
# ---------------------------------------------------------------------------


def test_publish_stores_pending_event(db, scope):
    event = _publish(db, body="review PR 12", scope=scope, metadata='{"pr": 12}', correlation_id="c-1")

    assert event.status == "pending"
    assert event.source == "agent"
    assert event.org_id == "acme"
    assert event.repo_id == "api-server"
    assert event.claimed_by is None
    assert event.processed_at is None
    assert event.metadata_json == {"pr": 12}
    assert get_event(db, event.id) == event


@pytest.mark.parametrize(
    "topic,body,org",
    [("", "body", "acme"), ("  ", "body", "acme"), ("reviews", "", "acme"), ("reviews", "body", "")],
)
def test_publish_rejects_missing_fields(db, topic, body, org):
    with pytest.raises(InvalidInputError):
        _publish(db, topic=topic, body=body, scope=Scope(org_id=org))
    assert list_events(db) == []


def test_publish_accepts_opaque_metadata(db):
    event = _publish(db, metadata="not json")
    assert event.metadata == "not json"
    assert event.metadata_json is None


def test_publish_with_missing_parent_fails(db):
    with pytest.raises(NotFoundError):
        _publish(db, parent_id="01ARZ3NDEKTSV4RRFFQ69G5FAV")
    assert list_events(db) == []


# ---------------------------------------------------------------------------
# claim
# ---------------------------------------------------------------------------


def test_claim_is_fifo(db):
    base = int(time.time() * 1000)
    third = _publish(db, body="third", created_at=base + 20)
    first = _publish(db, body="first", created_at=base)
    second = _publish(db, body="second", created_at=base + 10)

    claimed = [_claim(db).id for _ in range(3)]
    assert claimed == [first.id, second.id, third.id]
    assert _claim(db) is None


def test_claim_sets_processing_fields(db):
    event = _publish(db)
    claimed = _claim(db, agent="reviewer")

    assert claimed.id == event.id
    assert claimed.status == "processing"
    assert claimed.claimed_by == "reviewer"
    assert claimed.claimed_at is not None


def test_claim_only_matches_topic(db):
    _publish(db, topic="deploys")
    assert _claim(db, topic="reviews") is None
    assert _claim(db, topic="deploys") is not None


def test_claim_requires_agent(db):
    _publish(db)
    with pytest.raises(InvalidInputError):
        _claim(db, agent=" ")


def test_claim_respects_org(db):
    _publish(db, scope=Scope(org_id="other"))
    assert _claim(db, scope=Scope(org_id="acme")) is None


def test_claim_filters_at_most_specific_level(db):
    mine = Scope(org_id="acme", workspace_id="platform", repo_id="api-server")
    sibling = Scope(org_id="acme", workspace_id="platform", repo_id="web-app")
    _publish(db, body="for web", scope=sibling)

    assert _claim(db, scope=mine) is None
    claimed = _claim(db, scope=mine, level="workspace")
    assert claimed.body == "for web"


def test_claim_include_unscoped(db):
    legacy = _publish(db, body="legacy")
    with db.transaction() as conn:
        conn.execute("UPDATE events SET org_id = NULL WHERE id = ?", (legacy.id,))

    assert _claim(db) is None
    assert _claim(db, include_unscoped=True).id == legacy.id


def test_concurrent_claims_never_share_an_event(db):
    published = {_publish(db, body=f"job {i}").id for i in range(30)}

    def drain(agent):
        got = []
        while True:
            claimed = _claim(db, agent=agent)
            if claimed is None:
                return got
            got.append(claimed.id)

    with ThreadPoolExecutor(max_workers=6) as pool:
        results = list(pool.map(drain, [f"agent-{i}" for i in range(6)]))

    claimed = [event_id for batch in results for event_id in batch]
    assert len(claimed) == len(set(claimed))
    assert set(claimed) == published


# ---------------------------------------------------------------------------
# status
# ---------------------------------------------------------------------------


def test_update_status_overwrites(db):
    event = _publish(db)
    _claim(db)

    updated = update_event_status(db, event.id, "completed", processed_at=1234)
    assert updated.status == "completed"
    assert updated.processed_at == 1234

    reopened = update_event_status(db, event.id, "pending")
    assert reopened.status == "pending"
    assert _claim(db).id == event.id


def test_update_status_missing_event(db):
    assert update_event_status(db, "missing", "completed") is None


def test_update_status_rejects_unknown_status(db):
    event = _publish(db)
    with pytest.raises(InvalidInputError):
        update_event_status(db, event.id, "done")
    assert get_event(db, event.id).status == "pending"


# ---------------------------------------------------------------------------
# thread / list
# ---------------------------------------------------------------------------


def test_thread_walks_to_root(db):
    root = _publish(db, body="root")
    child = _publish(db, body="child", parent_id=root.id)
    grandchild = _publish(db, body="grandchild", parent_id=child.id)

    assert [e.id for e in get_thread(db, grandchild.id)] == [grandchild.id, child.id, root.id]


def test_thread_stops_on_cycle(db):
    a = _publish(db, body="a")
    b = _publish(db, body="b", parent_id=a.id)
    with db.transaction() as conn:
        conn.execute("UPDATE events SET parent_id = ? WHERE id = ?", (b.id, a.id))

    assert [e.id for e in get_thread(db, b.id)] == [b.id, a.id]


def test_list_events_filters(db):
    base = int(time.time() * 1000)
    old = _publish(db, topic="reviews", created_at=base)
    new = _publish(db, topic="reviews", created_at=base + 1)
    _publish(db, topic="deploys", created_at=base + 2)
    update_event_status(db, old.id, "completed")

    assert [e.id for e in list_events(db, topic="reviews")] == [new.id, old.id]
    assert [e.id for e in list_events(db, status="completed")] == [old.id]
    assert len(list_events(db, limit=1)) == 1
    assert list_events(db, build_scope_condition(Scope(org_id="other"))) == []

"""Tests for mention / tool-call indexing and full-text search."""

import logging
import sqlite3

from oc_events.db.indexing import extract_mentions
from oc_events.db.indexing import extract_tool_calls
from oc_events.db.indexing import fts_query
from oc_events.db.scope import Scope


def _count(db, table, event_id):
    with db.connect() as conn:
        return conn.execute(f"SELECT COUNT(*) FROM {table} WHERE event_id = ?", (event_id,)).fetchone()[0]


def test_extract_mentions_distinct_in_order():
    assert extract_mentions("@bob ping @alice and @bob-2, cc @alice") == ["@bob", "@alice", "@bob-2"]
    assert extract_mentions("no mentions here") == []


def test_extract_tool_calls_whole_words():
    assert extract_tool_calls("run bash then grep; bashful readme edit") == ["bash", "grep", "edit"]
    assert extract_tool_calls("Bash") == []


def test_extract_tool_calls_uses_ascii_word_boundaries():
    assert extract_tool_calls("ébash and grepü") == ["bash", "grep"]


def test_publish_indexes_each_mention_once(bus, scope):
    event = bus.publish("reviews", "ping @alice @alice bash", scope)

    assert _count(bus.db, "mentions", event.id) == 1
    assert _count(bus.db, "tool_calls", event.id) == 1
    assert [e.id for e in bus.find_by_mention("@alice")] == [event.id]
    assert [e.id for e in bus.find_by_mention("alice")] == [event.id]
    assert [e.id for e in bus.find_by_tool("bash")] == [event.id]
    assert bus.find_by_tool("grep") == []


def test_reindex_is_idempotent(bus, scope):
    event = bus.publish("reviews", "ping @alice, use read", scope)

    assert bus.reindex() == 1
    assert bus.reindex(event.id) == 1
    assert _count(bus.db, "mentions", event.id) == 1
    assert _count(bus.db, "tool_calls", event.id) == 1


def test_indexing_failure_keeps_event(bus, scope, monkeypatch, caplog):
    def broken(db, events):
        raise sqlite3.OperationalError("disk I/O error")

    with monkeypatch.context() as mp:
        mp.setattr("oc_events.bus.index_event_bodies", broken)
        with caplog.at_level(logging.ERROR, logger="oc_events.bus"):
            event = bus.publish("reviews", "ping @alice", scope)

    assert bus.get_event(event.id) is not None
    assert bus.find_by_mention("alice") == []
    assert "Indexing failed" in caplog.text

    bus.reindex()
    assert [e.id for e in bus.find_by_mention("alice")] == [event.id]


def test_mention_lookup_is_scoped(bus):
    mine = bus.publish("reviews", "hey @alice", Scope(org_id="acme"))
    bus.publish("reviews", "hey @alice", Scope(org_id="other"))

    condition = bus.scope_condition(Scope(org_id="acme"))
    assert [e.id for e in bus.find_by_mention("alice", condition)] == [mine.id]
    assert len(bus.find_by_mention("alice")) == 2


def test_lookups_newest_first(bus, scope):
    first = bus.publish("reviews", "@alice one", scope)
    second = bus.publish("reviews", "@alice two", scope)
    assert [e.id for e in bus.find_by_mention("alice")] == [second.id, first.id]


# ---------------------------------------------------------------------------
# Full-text search
# ---------------------------------------------------------------------------


def test_fts_query_quotes_tokens():
    assert fts_query("deploy-failed AND main") == '"deploy" "failed" "AND" "main"'
    assert fts_query("  ") == ""


def test_search_matches_body(bus, scope):
    hit = bus.publish("ci", "deploy failed on main", scope)
    bus.publish("ci", "all good", scope)

    assert [e.id for e in bus.search("failed")] == [hit.id]
    assert [e.id for e in bus.search("deploy-failed")] == [hit.id]
    assert bus.search("NEAR AND OR") == []
    assert bus.search("") == []


def test_search_follows_status_updates(bus, scope):
    event = bus.publish("ci", "flaky test in worker", scope)
    bus.claim_next("ci", "agent-1", scope)
    bus.update_status(event.id, "completed")
    assert [e.id for e in bus.search("flaky")] == [event.id]


def test_search_scope_and_limit(bus):
    a = bus.publish("ci", "timeout in build", Scope(org_id="acme"))
    b = bus.publish("ci", "timeout in deploy", Scope(org_id="acme"))
    bus.publish("ci", "timeout elsewhere", Scope(org_id="other"))

    condition = bus.scope_condition(Scope(org_id="acme"))
    assert [e.id for e in bus.search("timeout", condition)] == [b.id, a.id]
    assert [e.id for e in bus.search("timeout", condition, limit=1)] == [b.id]

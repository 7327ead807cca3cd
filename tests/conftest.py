"""Shared fixtures: an isolated event store per test."""

import pytest

from oc_events.bus import EventBus
from oc_events.config import ScopeDefaults
from oc_events.context import StaticRepoProbe
from oc_events.db.client import Database
from oc_events.db.client import reset_schema_cache
from oc_events.db.scope import Scope

_ENV_VARS = (
    "OC_EVENTS_DATA_DIR",
    "OC_EVENTS_DB_URL",
    "OC_EVENTS_DEFAULT_ORG",
    "OC_EVENTS_DEFAULT_WORKSPACE",
    "OC_EVENTS_DEFAULT_PROJECT",
    "OC_EVENTS_DEFAULT_REPO",
    "OC_EVENTS_POLL_INTERVAL_MS",
    "OC_EVENTS_POLL_TOPIC",
    "OC_EVENTS_POLL_AGENT",
    "OC_EVENTS_WEBHOOK_HOST",
    "OC_EVENTS_WEBHOOK_PORT",
    "OC_EVENTS_WEBHOOK_SECRET",
    "OC_EVENTS_WEBHOOK_SOURCE",
    "OC_EVENTS_WEBHOOK_ROUTES",
    "OC_EVENTS_LOG_LEVEL",
    "OC_EVENTS_DEBUG",
    "OC_EVENTS_DETECT_REPO",
)


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Point the CLI at a per-test data dir and turn off git detection."""
    for var in _ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    data_dir = tmp_path / "data"
    monkeypatch.setenv("OC_EVENTS_DATA_DIR", str(data_dir))
    monkeypatch.setenv("OC_EVENTS_DETECT_REPO", "0")
    reset_schema_cache()
    yield data_dir
    reset_schema_cache()


@pytest.fixture
def db(tmp_path):
    return Database(tmp_path / "events.db")


@pytest.fixture
def bus(db):
    return EventBus(db, ScopeDefaults(), StaticRepoProbe(None))


@pytest.fixture
def scope():
    return Scope(org_id="acme", workspace_id="platform", project_id="api", repo_id="api-server")

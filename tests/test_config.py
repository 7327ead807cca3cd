"""Tests for settings loading (config.toml + OC_EVENTS_* env vars)."""

import logging

import pytest

from oc_events.config import get_effective_config_display
from oc_events.config import load_settings
from oc_events.config import parse_db_location
from oc_events.config import parse_routes
from oc_events.errors import InvalidInputError


def _write_config(data_dir, text):
    data_dir.mkdir(parents=True, exist_ok=True)
    (data_dir / "config.toml").write_text(text)


def test_defaults(isolated_env):
    settings = load_settings()
    assert settings.data_dir == isolated_env
    assert settings.db_path == isolated_env / "events.db"
    assert settings.defaults.org == "default"
    assert settings.poll.interval_ms == 5000
    assert settings.webhook.port == 8787
    assert settings.webhook.source == "webhook"
    assert settings.log_level == "WARNING"


def test_file_values(isolated_env):
    _write_config(
        isolated_env,
        """
log_level = "info"

[defaults]
org = "acme"
workspace = "platform"

[poll]
interval_ms = 250
topic = "reviews"

[webhook]
port = 9000
secret = "s3cret"

[webhook.routes]
github = "ci-events"
""",
    )
    settings = load_settings()
    assert settings.defaults.org == "acme"
    assert settings.defaults.workspace == "platform"
    assert settings.poll.interval_ms == 250
    assert settings.poll.topic == "reviews"
    assert settings.webhook.port == 9000
    assert settings.webhook.secret == "s3cret"
    assert settings.webhook.routes == {"github": "ci-events"}
    assert settings.log_level == "INFO"
    assert settings._sources["defaults.org"] == "file"


def test_env_overrides_file(isolated_env, monkeypatch):
    _write_config(isolated_env, '[defaults]\norg = "acme"\n')
    monkeypatch.setenv("OC_EVENTS_DEFAULT_ORG", "env-org")
    monkeypatch.setenv("OC_EVENTS_DEFAULT_REPO", "api-server")
    monkeypatch.setenv("OC_EVENTS_WEBHOOK_ROUTES", "github=ci-events,alerts=ops")

    settings = load_settings()
    assert settings.defaults.org == "env-org"
    assert settings.defaults.repo == "api-server"
    assert settings.webhook.routes == {"github": "ci-events", "alerts": "ops"}
    assert settings._sources["defaults.org"] == "env"


def test_invalid_file_is_ignored(isolated_env, caplog):
    _write_config(isolated_env, "this is [not toml")
    with caplog.at_level(logging.WARNING, logger="oc_events.config"):
        settings = load_settings()
    assert settings.defaults.org == "default"
    assert "Failed to load config file" in caplog.text


def test_invalid_env_number_is_ignored(monkeypatch, caplog):
    monkeypatch.setenv("OC_EVENTS_WEBHOOK_PORT", "eighty")
    with caplog.at_level(logging.WARNING, logger="oc_events.config"):
        settings = load_settings()
    assert settings.webhook.port == 8787
    assert "OC_EVENTS_WEBHOOK_PORT" in caplog.text


def test_debug_flag(monkeypatch):
    monkeypatch.setenv("OC_EVENTS_LOG_LEVEL", "error")
    monkeypatch.setenv("OC_EVENTS_DEBUG", "1")
    assert load_settings().log_level == "DEBUG"


def test_detect_repo_flag(monkeypatch):
    assert load_settings().detect_repo is False
    monkeypatch.setenv("OC_EVENTS_DETECT_REPO", "yes")
    assert load_settings().detect_repo is True


def test_db_url(tmp_path, monkeypatch):
    target = tmp_path / "custom" / "bus.db"
    monkeypatch.setenv("OC_EVENTS_DB_URL", f"sqlite:///{target}")
    settings = load_settings()
    assert settings.db_path == target
    assert settings._sources["db_path"] == "env"


def test_parse_db_location_plain_path(tmp_path):
    assert parse_db_location(str(tmp_path / "x.db")) == tmp_path / "x.db"


@pytest.mark.parametrize(
    "value",
    ["", "postgresql://user:pw@localhost/events", "sqlite://", "sqlite:///:memory:"],
)
def test_parse_db_location_rejects(value):
    with pytest.raises(InvalidInputError):
        parse_db_location(value)


def test_parse_routes():
    assert parse_routes('{"/github/": "ci"}') == {"github": "ci"}
    assert parse_routes(" a=b , c=d ") == {"a": "b", "c": "d"}
    assert parse_routes("") == {}
    with pytest.raises(ValueError):
        parse_routes("missing-equals")


def test_effective_config_display_masks_secret(monkeypatch):
    monkeypatch.setenv("OC_EVENTS_WEBHOOK_SECRET", "s3cret")
    entries = {key: (value, source) for key, value, source in get_effective_config_display(load_settings())}
    assert entries["webhook.secret"] == ("(set)", "env")
    assert entries["defaults.workspace"] == ("-", "default")
    assert entries["data_dir"][1] == "env"

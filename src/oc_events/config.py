"""Settings for the oc-events CLI and webhook relay.

Loads ``<data_dir>/config.toml`` and applies ``OC_EVENTS_*`` environment
variables on top.

Example config.toml:
    [defaults]
    org = "acme"
    workspace = "platform"
    detect_repo = true

    [poll]
    interval_ms = 5000
    topic = "reviews"
    agent = "reviewer"

    [webhook]
    port = 8787
    secret = "s3cret"
    source = "webhook"

    [webhook.routes]
    github = "ci-events"

Precedence: file config < env vars < CLI args
"""

from __future__ import annotations

import json
import logging
import os
import tomllib
from dataclasses import dataclass
from dataclasses import field
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from sqlalchemy.engine.url import make_url

from oc_events.errors import InvalidInputError

logger = logging.getLogger(__name__)

DEFAULT_ORG = "default"
DEFAULT_POLL_INTERVAL_MS = 5000
DEFAULT_WEBHOOK_PORT = 8787
_DB_FILENAME = "events.db"
_CONFIG_FILENAME = "config.toml"


@dataclass
class ScopeDefaults:
    """Environment-provided scope defaults (third priority in resolution)."""

    org: str = DEFAULT_ORG
    workspace: str | None = None
    project: str | None = None
    repo: str | None = None


@dataclass
class PollSettings:
    """Polling consumer settings."""

    interval_ms: int = DEFAULT_POLL_INTERVAL_MS
    topic: str | None = None
    agent: str | None = None


@dataclass
class WebhookSettings:
    """Webhook relay settings."""

    host: str = "127.0.0.1"
    port: int = DEFAULT_WEBHOOK_PORT
    secret: str | None = None
    source: str = "webhook"
    routes: dict[str, str] = field(default_factory=dict)


@dataclass
class Settings:
    """Complete oc-events configuration."""

    data_dir: Path
    db_path: Path
    defaults: ScopeDefaults = field(default_factory=ScopeDefaults)
    poll: PollSettings = field(default_factory=PollSettings)
    webhook: WebhookSettings = field(default_factory=WebhookSettings)
    log_level: str = "WARNING"
    detect_repo: bool = True

    # Track where each setting came from
    _sources: dict[str, str] = field(default_factory=dict)

    @property
    def config_path(self) -> Path:
        return self.data_dir / _CONFIG_FILENAME


def _truthy(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _optional(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def default_data_dir() -> Path:
    """Return the data directory from ``OC_EVENTS_DATA_DIR`` or the default."""
    override = os.getenv("OC_EVENTS_DATA_DIR")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".config" / "opencode" / "makiso"


def parse_db_location(value: str) -> Path:
    """Resolve a sqlite URL (``sqlite:////abs/events.db``) or a plain path."""
    value = (value or "").strip()
    if (value.startswith('"') and value.endswith('"')) or (value.startswith("'") and value.endswith("'")):
        value = value[1:-1].strip()
    if not value:
        raise InvalidInputError("Database location is empty")

    if "://" not in value:
        return Path(value).expanduser().absolute()

    parsed = make_url(value)
    if not parsed.drivername.startswith("sqlite"):
        raise InvalidInputError("OC_EVENTS_DB_URL must be a sqlite URL (e.g. sqlite:////data/events.db)")
    if not parsed.database or parsed.database == ":memory:":
        raise InvalidInputError("OC_EVENTS_DB_URL must name a database file")
    return Path(parsed.database).expanduser().absolute()


def parse_routes(raw: str) -> dict[str, str]:
    """Parse a route map from JSON (``{"gh": "ci"}``) or ``gh=ci,alerts=ops``."""
    raw = (raw or "").strip()
    if not raw:
        return {}
    if raw.startswith("{"):
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError("route map must be a JSON object")
        return {_normalize_route(str(k)): str(v) for k, v in data.items()}

    routes: dict[str, str] = {}
    for item in raw.split(","):
        item = item.strip()
        if not item:
            continue
        if "=" not in item:
            raise ValueError(f"route entry {item!r} is not route=topic")
        route, topic = item.split("=", 1)
        routes[_normalize_route(route)] = topic.strip()
    return routes


def _normalize_route(route: str) -> str:
    return route.strip().strip("/")


def _load_file(settings: Settings, config_path: Path, sources: dict[str, str]) -> None:
    try:
        with open(config_path, "rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        # Log but don't fail on config file errors
        logger.warning(f"Failed to load config file {config_path}: {e}")
        return

    defaults = data.get("defaults", {})
    for key in ("org", "workspace", "project", "repo"):
        if key in defaults:
            value = _optional(defaults[key])
            if key == "org":
                value = value or DEFAULT_ORG
            setattr(settings.defaults, key, value)
            sources[f"defaults.{key}"] = "file"

    poll = data.get("poll", {})
    if "interval_ms" in poll:
        try:
            settings.poll.interval_ms = int(poll["interval_ms"])
            sources["poll.interval_ms"] = "file"
        except (TypeError, ValueError):
            logger.warning(f"Invalid poll.interval_ms value: {poll['interval_ms']!r}, ignoring")
    for key in ("topic", "agent"):
        if key in poll:
            setattr(settings.poll, key, _optional(poll[key]))
            sources[f"poll.{key}"] = "file"

    webhook = data.get("webhook", {})
    if "host" in webhook:
        settings.webhook.host = str(webhook["host"])
        sources["webhook.host"] = "file"
    if "port" in webhook:
        try:
            settings.webhook.port = int(webhook["port"])
            sources["webhook.port"] = "file"
        except (TypeError, ValueError):
            logger.warning(f"Invalid webhook.port value: {webhook['port']!r}, ignoring")
    if "secret" in webhook:
        settings.webhook.secret = _optional(webhook["secret"])
        sources["webhook.secret"] = "file"
    if "source" in webhook:
        settings.webhook.source = _optional(webhook["source"]) or "webhook"
        sources["webhook.source"] = "file"
    if isinstance(webhook.get("routes"), dict):
        settings.webhook.routes = {_normalize_route(str(k)): str(v) for k, v in webhook["routes"].items()}
        sources["webhook.routes"] = "file"

    if "detect_repo" in defaults:
        settings.detect_repo = bool(defaults["detect_repo"])
        sources["detect_repo"] = "file"

    if "log_level" in data:
        settings.log_level = str(data["log_level"]).upper()
        sources["log_level"] = "file"


def _apply_env(settings: Settings, sources: dict[str, str]) -> None:
    env_defaults = {
        "org": "OC_EVENTS_DEFAULT_ORG",
        "workspace": "OC_EVENTS_DEFAULT_WORKSPACE",
        "project": "OC_EVENTS_DEFAULT_PROJECT",
        "repo": "OC_EVENTS_DEFAULT_REPO",
    }
    for key, var in env_defaults.items():
        if os.getenv(var) is not None:
            value = _optional(os.environ[var])
            if key == "org":
                value = value or DEFAULT_ORG
            setattr(settings.defaults, key, value)
            sources[f"defaults.{key}"] = "env"

    if os.getenv("OC_EVENTS_POLL_INTERVAL_MS"):
        try:
            settings.poll.interval_ms = int(os.environ["OC_EVENTS_POLL_INTERVAL_MS"])
            sources["poll.interval_ms"] = "env"
        except ValueError:
            logger.warning(
                f"Invalid OC_EVENTS_POLL_INTERVAL_MS value: {os.environ['OC_EVENTS_POLL_INTERVAL_MS']!r}, ignoring"
            )
    if os.getenv("OC_EVENTS_POLL_TOPIC"):
        settings.poll.topic = os.environ["OC_EVENTS_POLL_TOPIC"]
        sources["poll.topic"] = "env"
    if os.getenv("OC_EVENTS_POLL_AGENT"):
        settings.poll.agent = os.environ["OC_EVENTS_POLL_AGENT"]
        sources["poll.agent"] = "env"

    if os.getenv("OC_EVENTS_WEBHOOK_HOST"):
        settings.webhook.host = os.environ["OC_EVENTS_WEBHOOK_HOST"]
        sources["webhook.host"] = "env"
    if os.getenv("OC_EVENTS_WEBHOOK_PORT"):
        try:
            settings.webhook.port = int(os.environ["OC_EVENTS_WEBHOOK_PORT"])
            sources["webhook.port"] = "env"
        except ValueError:
            logger.warning(f"Invalid OC_EVENTS_WEBHOOK_PORT value: {os.environ['OC_EVENTS_WEBHOOK_PORT']!r}, ignoring")
    if os.getenv("OC_EVENTS_WEBHOOK_SECRET"):
        settings.webhook.secret = os.environ["OC_EVENTS_WEBHOOK_SECRET"]
        sources["webhook.secret"] = "env"
    if os.getenv("OC_EVENTS_WEBHOOK_SOURCE"):
        settings.webhook.source = os.environ["OC_EVENTS_WEBHOOK_SOURCE"]
        sources["webhook.source"] = "env"
    if os.getenv("OC_EVENTS_WEBHOOK_ROUTES"):
        try:
            settings.webhook.routes = parse_routes(os.environ["OC_EVENTS_WEBHOOK_ROUTES"])
            sources["webhook.routes"] = "env"
        except ValueError as e:
            logger.warning(f"Invalid OC_EVENTS_WEBHOOK_ROUTES value: {e}, ignoring")

    if os.getenv("OC_EVENTS_DETECT_REPO"):
        settings.detect_repo = _truthy(os.environ["OC_EVENTS_DETECT_REPO"])
        sources["detect_repo"] = "env"

    if _truthy(os.getenv("OC_EVENTS_DEBUG")):
        settings.log_level = "DEBUG"
        sources["log_level"] = "env"
    elif os.getenv("OC_EVENTS_LOG_LEVEL"):
        settings.log_level = os.environ["OC_EVENTS_LOG_LEVEL"].strip().upper()
        sources["log_level"] = "env"


def load_settings(config_path: Path | None = None) -> Settings:
    """Load settings from the config file and environment.

    Args:
        config_path: Optional path to config file. Defaults to <data_dir>/config.toml

    Returns:
        Settings with values from file and env (or defaults)
    """
    load_dotenv()

    data_dir = default_data_dir()
    sources: dict[str, str] = {}
    if os.getenv("OC_EVENTS_DATA_DIR"):
        sources["data_dir"] = "env"

    settings = Settings(data_dir=data_dir, db_path=data_dir / _DB_FILENAME)

    path = config_path or settings.config_path
    if path.exists():
        _load_file(settings, path, sources)

    _apply_env(settings, sources)

    if os.getenv("OC_EVENTS_DB_URL"):
        settings.db_path = parse_db_location(os.environ["OC_EVENTS_DB_URL"])
        sources["db_path"] = "env"

    settings._sources = sources
    return settings


def get_effective_config_display(settings: Settings) -> list[tuple[str, str, str]]:
    """Get a display list of effective config values with sources.

    Returns:
        List of (key, value, source) tuples
    """

    def _show(value: Any) -> str:
        return "-" if value is None else str(value)

    secret = "(set)" if settings.webhook.secret else None
    routes = ", ".join(f"{k}={v}" for k, v in sorted(settings.webhook.routes.items())) or None
    values = [
        ("data_dir", settings.data_dir),
        ("db_path", settings.db_path),
        ("defaults.org", settings.defaults.org),
        ("defaults.workspace", settings.defaults.workspace),
        ("defaults.project", settings.defaults.project),
        ("defaults.repo", settings.defaults.repo),
        ("poll.interval_ms", settings.poll.interval_ms),
        ("poll.topic", settings.poll.topic),
        ("poll.agent", settings.poll.agent),
        ("webhook.host", settings.webhook.host),
        ("webhook.port", settings.webhook.port),
        ("webhook.secret", secret),
        ("webhook.source", settings.webhook.source),
        ("webhook.routes", routes),
        ("detect_repo", settings.detect_repo),
        ("log_level", settings.log_level),
    ]
    return [(key, _show(value), settings._sources.get(key, "default")) for key, value in values]

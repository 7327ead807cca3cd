"""Shared helpers for CLI commands."""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from typing import Any
from typing import Iterator
from typing import Optional

import typer

from oc_events.bus import EventBus
from oc_events.config import Settings
from oc_events.config import load_settings
from oc_events.context import GitRepoProbe
from oc_events.context import ScopeInput
from oc_events.context import StaticRepoProbe
from oc_events.db.scope import Scope
from oc_events.db.scope import ScopeCondition
from oc_events.errors import OcEventsError

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format=LOG_FORMAT,
        datefmt="%H:%M:%S",
    )


def get_settings() -> Settings:
    return load_settings()


def get_bus(settings: Settings | None = None) -> EventBus:
    settings = settings or get_settings()
    probe = GitRepoProbe() if settings.detect_repo else StaticRepoProbe(None)
    return EventBus.from_settings(settings, repo_probe=probe)


def echo_json(payload: Any) -> None:
    if hasattr(payload, "to_dict"):
        payload = payload.to_dict()
    elif isinstance(payload, list):
        payload = [item.to_dict() if hasattr(item, "to_dict") else item for item in payload]
    typer.echo(json.dumps(payload, indent=2))


def fail(message: str) -> None:
    typer.secho(f"Error: {message}", fg=typer.colors.RED, err=True)
    raise typer.Exit(1)


@contextmanager
def handle_errors() -> Iterator[None]:
    """Turn core and storage errors into ``Error: ...`` on stderr with exit code 1."""
    try:
        yield
    except (OcEventsError, sqlite3.Error) as e:
        fail(str(e))


# Scope options -------------------------------------------------------------


def org_option():
    return typer.Option(None, "--org", help="Org id (overrides saved context and defaults)")


def workspace_option():
    return typer.Option(None, "--workspace", help="Workspace id ('none' clears)")


def project_option():
    return typer.Option(None, "--project", help="Project id ('none' clears)")


def repo_option():
    return typer.Option(None, "--repo", help="Repo id ('none' disables git detection)")


def level_option():
    return typer.Option(None, "--scope", help="Filter level: org|workspace|project|repo (default: most specific)")


def include_unscoped_option():
    return typer.Option(False, "--include-unscoped", help="Also match events stored without an org")


def resolve(
    bus: EventBus,
    org: Optional[str],
    workspace: Optional[str],
    project: Optional[str],
    repo: Optional[str],
) -> Scope:
    return bus.resolve_scope(ScopeInput(org=org, workspace=workspace, project=project, repo=repo))


def scope_filter(
    bus: EventBus,
    org: Optional[str],
    workspace: Optional[str],
    project: Optional[str],
    repo: Optional[str],
    level: Optional[str],
    include_unscoped: bool,
    all_scopes: bool = False,
) -> ScopeCondition | None:
    if all_scopes:
        return None
    scope = resolve(bus, org, workspace, project, repo)
    return bus.scope_condition(scope, level, include_unscoped)

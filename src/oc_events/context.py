"""Scope resolution for CLI and relay operations.

Each scope field is taken from the first source that has a value:

1. explicit override for this call (``--org``, ``--repo``, ...)
2. saved context (``oc-events context set``)
3. configured defaults (``OC_EVENTS_DEFAULT_*`` / config.toml)
4. ambient detection, repo only: name of the enclosing git checkout

``org_id`` is mandatory and ends at the configured default org (``"default"``).
"""

from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from oc_events.config import DEFAULT_ORG
from oc_events.config import ScopeDefaults
from oc_events.db.client import Database
from oc_events.db.scope import Scope
from oc_events.errors import ConstraintViolationError

logger = logging.getLogger(__name__)

CONTEXT_KEYS = {
    "org_id": "context.org_id",
    "workspace_id": "context.workspace_id",
    "project_id": "context.project_id",
    "repo_id": "context.repo_id",
}

_CLEAR_SENTINELS = {"none", "null"}


def clean_value(value: str | None) -> str | None:
    """Trim a user-supplied scope value; empty, ``none`` and ``null`` become None."""
    if value is None:
        return None
    normalized = value.strip()
    if not normalized or normalized in _CLEAR_SENTINELS:
        return None
    return normalized


@dataclass(frozen=True)
class ScopeInput:
    """Explicit per-call scope overrides. None means "not provided"."""

    org: str | None = None
    workspace: str | None = None
    project: str | None = None
    repo: str | None = None


@dataclass(frozen=True)
class SavedContext:
    """Persisted "current scope" (all fields optional)."""

    org_id: str | None = None
    workspace_id: str | None = None
    project_id: str | None = None
    repo_id: str | None = None

    def as_dict(self) -> dict[str, str | None]:
        return {
            "org_id": self.org_id,
            "workspace_id": self.workspace_id,
            "project_id": self.project_id,
            "repo_id": self.repo_id,
        }


class ContextStore:
    """Saved context kept in the store's ``metadata`` table."""

    def __init__(self, db: Database):
        self.db = db

    def load(self) -> SavedContext:
        keys = tuple(CONTEXT_KEYS.values())
        with self.db.connect() as conn:
            rows = conn.execute(
                f"SELECT key, value FROM metadata WHERE key IN ({', '.join('?' for _ in keys)})",
                keys,
            ).fetchall()
        lookup = {row["key"]: row["value"] for row in rows}
        return SavedContext(**{field: lookup.get(key) for field, key in CONTEXT_KEYS.items()})

    def save(
        self,
        org: str | None = None,
        workspace: str | None = None,
        project: str | None = None,
        repo: str | None = None,
    ) -> SavedContext:
        """Merge the given fields into the saved context.

        Fields left as None keep their saved value; ``"none"``/``"null"``/empty
        clear them. The result must have an org.
        """
        current = self.load()

        def merge(new: str | None, old: str | None) -> str | None:
            return old if new is None else clean_value(new)

        updated = SavedContext(
            org_id=merge(org, current.org_id),
            workspace_id=merge(workspace, current.workspace_id),
            project_id=merge(project, current.project_id),
            repo_id=merge(repo, current.repo_id),
        )
        if not updated.org_id:
            raise ConstraintViolationError("org_id is required for saved context")

        with self.db.transaction() as conn:
            for field, key in CONTEXT_KEYS.items():
                value = getattr(updated, field)
                if value is None:
                    conn.execute("DELETE FROM metadata WHERE key = ?", (key,))
                else:
                    conn.execute(
                        """
                        INSERT INTO metadata (key, value)
                        VALUES (?, ?)
                        ON CONFLICT(key) DO UPDATE SET value = excluded.value
                        """,
                        (key, value),
                    )
        logger.info("Saved context: %s", updated.as_dict())
        return updated

    def clear(self) -> None:
        keys = tuple(CONTEXT_KEYS.values())
        with self.db.transaction() as conn:
            conn.execute(f"DELETE FROM metadata WHERE key IN ({', '.join('?' for _ in keys)})", keys)


class RepoProbe(Protocol):
    """Detects the ambient repository id for a working directory."""

    def detect(self, cwd: Path) -> str | None: ...


class GitRepoProbe:
    """Uses the base name of ``git rev-parse --show-toplevel``."""

    def __init__(self, timeout: float = 5.0):
        self.timeout = timeout

    def _run_git(self, args: list[str], cwd: Path) -> str | None:
        try:
            result = subprocess.run(
                ["git", *args],
                cwd=cwd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.debug("git %s failed in %s: %s", " ".join(args), cwd, e)
            return None
        if result.returncode != 0:
            return None
        return result.stdout.strip()

    def detect(self, cwd: Path) -> str | None:
        if self._run_git(["rev-parse", "--is-inside-work-tree"], cwd) != "true":
            return None
        top_level = self._run_git(["rev-parse", "--show-toplevel"], cwd)
        if not top_level:
            return None
        return Path(top_level).name or None


class StaticRepoProbe:
    """Returns a fixed repo id (or None to disable detection)."""

    def __init__(self, repo_id: str | None = None):
        self.repo_id = repo_id

    def detect(self, cwd: Path) -> str | None:
        return self.repo_id


def resolve_scope(
    overrides: ScopeInput,
    saved: SavedContext,
    defaults: ScopeDefaults,
    probe: RepoProbe | None = None,
    cwd: Path | None = None,
) -> Scope:
    """Combine the scope sources in priority order.

    An override of ``""``, ``"none"`` or ``"null"`` clears the field for this
    call: lower-priority sources are not consulted (org still ends at the
    default org).
    """

    def first(override: str | None, *fallbacks: str | None) -> tuple[str | None, bool]:
        if override is not None:
            return clean_value(override), True
        for value in fallbacks:
            cleaned = clean_value(value)
            if cleaned is not None:
                return cleaned, False
        return None, False

    org_id, _ = first(overrides.org, saved.org_id, defaults.org)
    workspace_id, _ = first(overrides.workspace, saved.workspace_id, defaults.workspace)
    project_id, _ = first(overrides.project, saved.project_id, defaults.project)
    repo_id, repo_explicit = first(overrides.repo, saved.repo_id, defaults.repo)

    if repo_id is None and not repo_explicit and probe is not None:
        repo_id = clean_value(probe.detect(cwd or Path(os.getcwd())))

    return Scope(
        org_id=org_id or DEFAULT_ORG,
        workspace_id=workspace_id,
        project_id=project_id,
        repo_id=repo_id,
    )

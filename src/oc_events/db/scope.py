"""Scope model and SQL filter construction.

A scope is the org/workspace/project/repo tuple an event is published under.
Queries filter at one *level* of that tuple: ``org_id`` always has to match,
plus the column of the chosen level when it is more specific than org.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from oc_events.errors import InvalidInputError


class ScopeLevel(str, Enum):
    ORG = "org"
    WORKSPACE = "workspace"
    PROJECT = "project"
    REPO = "repo"

    @classmethod
    def parse(cls, value: "str | ScopeLevel | None") -> "ScopeLevel | None":
        if value is None or isinstance(value, ScopeLevel):
            return value
        try:
            return cls(value.strip().lower())
        except ValueError:
            choices = ", ".join(level.value for level in cls)
            raise InvalidInputError(f"Unknown scope level {value!r} (expected one of: {choices})") from None


@dataclass(frozen=True)
class Scope:
    """Resolved tenant scope of an operation."""

    org_id: str
    workspace_id: str | None = None
    project_id: str | None = None
    repo_id: str | None = None

    def value_at(self, level: ScopeLevel) -> str | None:
        return {
            ScopeLevel.ORG: self.org_id,
            ScopeLevel.WORKSPACE: self.workspace_id,
            ScopeLevel.PROJECT: self.project_id,
            ScopeLevel.REPO: self.repo_id,
        }[level]

    def as_dict(self) -> dict[str, str | None]:
        return {
            "org_id": self.org_id,
            "workspace_id": self.workspace_id,
            "project_id": self.project_id,
            "repo_id": self.repo_id,
        }


@dataclass(frozen=True)
class ScopeCondition:
    """SQL fragment plus positional parameters for a scope filter."""

    sql: str
    params: tuple[str, ...]
    level: ScopeLevel


# Most specific first
_FALLBACK_ORDER = (ScopeLevel.REPO, ScopeLevel.PROJECT, ScopeLevel.WORKSPACE)

_LEVEL_COLUMNS = {
    ScopeLevel.WORKSPACE: "workspace_id",
    ScopeLevel.PROJECT: "project_id",
    ScopeLevel.REPO: "repo_id",
}


def normalize_scope_level(scope: Scope, requested: "ScopeLevel | str | None" = None) -> ScopeLevel:
    """Pick the level to filter at.

    A requested level is honored when the scope has a value there (org always
    qualifies). Otherwise the most specific level with a value is used, so a
    request for ``repo`` without a resolved repo degrades to project,
    workspace or org rather than failing.
    """
    requested = ScopeLevel.parse(requested)
    if requested is ScopeLevel.ORG:
        return ScopeLevel.ORG
    if requested is not None and scope.value_at(requested):
        return requested

    for level in _FALLBACK_ORDER:
        if scope.value_at(level):
            return level
    return ScopeLevel.ORG


def build_scope_condition(
    scope: Scope,
    level: "ScopeLevel | str | None" = None,
    include_unscoped: bool = False,
    table_alias: str | None = None,
) -> ScopeCondition:
    """Build the WHERE fragment matching ``scope`` at ``level``.

    With ``include_unscoped`` rows that have no ``org_id`` at all (written
    before scoping existed) also match.
    """
    resolved = normalize_scope_level(scope, level)

    def qualify(column: str) -> str:
        return f"{table_alias}.{column}" if table_alias else column

    org_column = qualify("org_id")
    sql = f"{org_column} = ?"
    params: list[str] = [scope.org_id]

    if resolved is not ScopeLevel.ORG:
        sql = f"{sql} AND {qualify(_LEVEL_COLUMNS[resolved])} = ?"
        params.append(scope.value_at(resolved))  # type: ignore[arg-type]

    if include_unscoped:
        sql = f"({sql} OR {org_column} IS NULL)"
    else:
        sql = f"({sql})"

    return ScopeCondition(sql=sql, params=tuple(params), level=resolved)

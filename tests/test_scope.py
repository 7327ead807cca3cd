"""Tests for scope level selection and SQL filter construction."""

import pytest

from oc_events.db.scope import Scope
from oc_events.db.scope import ScopeLevel
from oc_events.db.scope import build_scope_condition
from oc_events.db.scope import normalize_scope_level
from oc_events.errors import InvalidInputError

FULL = Scope(org_id="acme", workspace_id="platform", project_id="api", repo_id="api-server")


class TestNormalizeScopeLevel:
    def test_defaults_to_most_specific(self):
        assert normalize_scope_level(FULL) is ScopeLevel.REPO
        assert normalize_scope_level(Scope(org_id="acme", workspace_id="platform")) is ScopeLevel.WORKSPACE
        assert normalize_scope_level(Scope(org_id="acme")) is ScopeLevel.ORG

    def test_requested_level_honored_when_present(self):
        assert normalize_scope_level(FULL, "workspace") is ScopeLevel.WORKSPACE
        assert normalize_scope_level(FULL, ScopeLevel.PROJECT) is ScopeLevel.PROJECT

    def test_missing_requested_level_degrades(self):
        scope = Scope(org_id="acme", workspace_id="platform", project_id="api")
        assert normalize_scope_level(scope, "repo") is ScopeLevel.PROJECT

    def test_org_always_qualifies(self):
        assert normalize_scope_level(FULL, "org") is ScopeLevel.ORG

    def test_unknown_level_rejected(self):
        with pytest.raises(InvalidInputError):
            normalize_scope_level(FULL, "galaxy")


class TestBuildScopeCondition:
    def test_org_level(self):
        condition = build_scope_condition(Scope(org_id="acme"))
        assert condition.sql == "(org_id = ?)"
        assert condition.params == ("acme",)
        assert condition.level is ScopeLevel.ORG

    def test_more_specific_level_adds_column(self):
        condition = build_scope_condition(FULL, "project")
        assert condition.sql == "(org_id = ? AND project_id = ?)"
        assert condition.params == ("acme", "api")

    def test_include_unscoped(self):
        condition = build_scope_condition(Scope(org_id="acme", workspace_id="platform"), include_unscoped=True)
        assert condition.sql == "(org_id = ? AND workspace_id = ? OR org_id IS NULL)"
        assert condition.params == ("acme", "platform")

    def test_table_alias(self):
        condition = build_scope_condition(FULL, table_alias="events")
        assert condition.sql == "(events.org_id = ? AND events.repo_id = ?)"
        assert condition.params == ("acme", "api-server")

"""SQLite storage for events, topics and derived indexes."""

from oc_events.db.client import Database
from oc_events.db.events import EventRecord
from oc_events.db.events import EventStatus
from oc_events.db.events import NewEvent
from oc_events.db.scope import Scope
from oc_events.db.scope import ScopeCondition
from oc_events.db.scope import ScopeLevel
from oc_events.db.scope import build_scope_condition
from oc_events.db.scope import normalize_scope_level
from oc_events.db.topics import TopicRecord

__all__ = [
    "Database",
    "EventRecord",
    "EventStatus",
    "NewEvent",
    "Scope",
    "ScopeCondition",
    "ScopeLevel",
    "TopicRecord",
    "build_scope_condition",
    "normalize_scope_level",
]

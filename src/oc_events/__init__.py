"""oc-events: a durable, scoped event queue for coordinating agents.

Producers publish events on named topics; consumers claim the oldest pending
event for a topic (at most one consumer per event) and report back with a
status and an optional reply.
"""

from oc_events.bus import ClaimedEvent
from oc_events.bus import EventBus
from oc_events.db.client import Database
from oc_events.db.events import EventRecord
from oc_events.db.events import EventStatus
from oc_events.db.scope import Scope
from oc_events.db.scope import ScopeLevel
from oc_events.errors import ConstraintViolationError
from oc_events.errors import InvalidInputError
from oc_events.errors import NotFoundError
from oc_events.errors import OcEventsError
from oc_events.errors import StorageUnavailableError

__version__ = "0.1.0"

__all__ = [
    "ClaimedEvent",
    "ConstraintViolationError",
    "Database",
    "EventBus",
    "EventRecord",
    "EventStatus",
    "InvalidInputError",
    "NotFoundError",
    "OcEventsError",
    "Scope",
    "ScopeLevel",
    "StorageUnavailableError",
    "__version__",
]

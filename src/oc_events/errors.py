"""Exceptions raised by the event bus core.

"Nothing to claim" is not an error: claim operations return ``None``.
"""

from __future__ import annotations


class OcEventsError(Exception):
    """Base class for event bus errors."""


class NotFoundError(OcEventsError):
    """A referenced event or topic does not exist."""


class InvalidInputError(OcEventsError, ValueError):
    """Input was rejected before anything was written."""


class StorageUnavailableError(OcEventsError):
    """The database could not be opened or created."""


class ConstraintViolationError(OcEventsError):
    """A write would leave persisted state inconsistent."""

"""Rate limiting for polling consumers.

The store itself never throttles callers. Pollers (``oc-events watch``, editor
plugins, file-trigger hooks) wrap each claim attempt in a :class:`PollGuard`
so that polls are spaced at least ``min_interval_ms`` apart and never overlap.
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from typing import Callable
from typing import Iterator

from oc_events.bus import ClaimedEvent

logger = logging.getLogger(__name__)


class PollGuard:
    """Debounce plus in-flight guard for one poller."""

    def __init__(self, min_interval_ms: int, clock: Callable[[], float] = time.monotonic):
        self.min_interval_ms = max(0, int(min_interval_ms))
        self._clock = clock
        self._lock = threading.Lock()
        self._in_flight = False
        self._last_started: float | None = None

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def try_acquire(self) -> bool:
        """Start a poll unless one is running or the last one started too recently."""
        with self._lock:
            if self._in_flight:
                logger.debug("Skipping poll - already polling")
                return False
            now = self._clock()
            if self._last_started is not None:
                elapsed_ms = (now - self._last_started) * 1000
                if elapsed_ms < self.min_interval_ms:
                    logger.debug(f"Skipping poll - too soon ({elapsed_ms:.0f}ms < {self.min_interval_ms}ms)")
                    return False
            self._last_started = now
            self._in_flight = True
            return True

    def release(self) -> None:
        with self._lock:
            self._in_flight = False

    @contextmanager
    def attempt(self) -> Iterator[bool]:
        """Context manager form: yields whether the poll may run."""
        acquired = self.try_acquire()
        try:
            yield acquired
        finally:
            if acquired:
                self.release()


def watch(
    poll: Callable[[], ClaimedEvent | None],
    on_event: Callable[[ClaimedEvent], None],
    guard: PollGuard,
    stop: threading.Event,
    tick_seconds: float = 0.1,
) -> int:
    """Run ``poll`` through ``guard`` until ``stop`` is set.

    Every claimed event is passed to ``on_event``. Returns the number of
    events handled.
    """
    handled = 0
    while not stop.is_set():
        with guard.attempt() as acquired:
            if acquired:
                claimed = poll()
                if claimed is not None:
                    on_event(claimed)
                    handled += 1
        stop.wait(tick_seconds)
    return handled

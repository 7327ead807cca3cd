"""Tests for PollGuard debounce / overlap protection and the watch loop."""

import threading

from oc_events.bus import ClaimedEvent
from oc_events.poll import PollGuard
from oc_events.poll import watch


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_guard_blocks_overlapping_polls():
    guard = PollGuard(0, clock=FakeClock())
    assert guard.try_acquire()
    assert guard.in_flight
    assert not guard.try_acquire()
    guard.release()
    assert guard.try_acquire()


def test_guard_enforces_minimum_interval():
    clock = FakeClock()
    guard = PollGuard(5000, clock=clock)

    assert guard.try_acquire()
    guard.release()

    clock.now = 4.999
    assert not guard.try_acquire()

    clock.now = 5.0
    assert guard.try_acquire()
    guard.release()


def test_attempt_releases_on_error():
    guard = PollGuard(0, clock=FakeClock())
    try:
        with guard.attempt() as acquired:
            assert acquired
            raise RuntimeError("poll failed")
    except RuntimeError:
        pass
    assert not guard.in_flight


def test_attempt_skipped_does_not_release_running_poll():
    guard = PollGuard(0, clock=FakeClock())
    assert guard.try_acquire()
    with guard.attempt() as acquired:
        assert not acquired
    assert guard.in_flight


def test_watch_delivers_claimed_events(bus, scope):
    for i in range(3):
        bus.publish("reviews", f"job {i}", scope)

    stop = threading.Event()
    seen = []

    def on_event(claimed: ClaimedEvent):
        seen.append(claimed.event.body)
        if len(seen) == 3:
            stop.set()

    handled = watch(
        lambda: bus.claim_next("reviews", "watcher", scope),
        on_event,
        PollGuard(0),
        stop,
        tick_seconds=0,
    )
    assert handled == 3
    assert seen == ["job 0", "job 1", "job 2"]


def test_watch_skips_while_guard_busy():
    guard = PollGuard(0, clock=FakeClock())
    guard.try_acquire()
    calls = []
    stop = threading.Event()
    timer = threading.Timer(0.05, stop.set)
    timer.start()

    handled = watch(lambda: calls.append(1), lambda claimed: None, guard, stop, tick_seconds=0.01)
    timer.join()
    assert handled == 0
    assert calls == []

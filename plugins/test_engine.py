"""
Tests for the step engine: speed table, start/stop, rescheduling,
skip-on-overlap and failure handling.
"""

import threading
import time

from conftest import wait_until
from nca_viewer.engine import StepEngine, interval_for_speed


def test_speed_table():
    assert interval_for_speed(0) == 200
    assert interval_for_speed(3) == 20
    assert interval_for_speed(5) == 5
    assert interval_for_speed(6) == 2


def test_unknown_speed_defaults_to_1x():
    assert interval_for_speed(99) == 20
    assert interval_for_speed(-1) == 20
    assert interval_for_speed(None) == 20
    assert interval_for_speed("fast") == 20


def test_start_stop_and_no_late_ticks():
    count = []
    engine = StepEngine(lambda is_current: count.append(1), speed=6)

    assert engine.start() is True
    assert engine.start() is False, "second start is a no-op"
    assert wait_until(lambda: len(count) >= 5), "engine should tick"

    assert engine.stop() is True
    assert not engine.running
    settled = len(count)
    time.sleep(0.05)
    assert len(count) == settled, "no tick may fire after stop() returns"
    assert engine.stop() is False


def test_restart_after_stop():
    count = []
    engine = StepEngine(lambda is_current: count.append(1), speed=6)
    engine.start()
    assert wait_until(lambda: len(count) >= 2)
    engine.stop()
    before = len(count)
    engine.start()
    assert wait_until(lambda: len(count) >= before + 2), "restarted engine ticks again"
    engine.stop()


def test_speed_change_reschedules_immediately():
    """Going from 200ms to 5ms must not wait out the old interval."""
    changed_at = []
    ticks_after = []

    def step(is_current):
        if changed_at:
            ticks_after.append(time.monotonic())

    engine = StepEngine(step, speed=0)
    engine.start()
    time.sleep(0.03)
    changed_at.append(time.monotonic())
    engine.set_speed(5)
    assert engine.speed == 5
    assert wait_until(lambda: len(ticks_after) >= 1, timeout=1.0)
    engine.stop()

    delay = ticks_after[0] - changed_at[0]
    assert delay < 0.03, f"first tick after the change took {delay * 1000:.1f}ms"


def test_set_speed_while_stopped_only_records():
    engine = StepEngine(lambda is_current: None, speed=3)
    engine.set_speed(1)
    assert engine.speed == 1
    assert engine.interval == 0.1
    assert not engine.running


def test_failure_stops_engine():
    errors = []

    def step(is_current):
        raise RuntimeError("backend exploded")

    engine = StepEngine(step, speed=6, on_error=errors.append)
    engine.start()
    assert wait_until(lambda: not engine.running), "engine should stop itself"
    assert isinstance(engine.last_error, RuntimeError)
    assert len(errors) == 1, "no retry after a failure"
    assert engine.ticks == 0


def test_overlapping_tick_is_skipped():
    entered = threading.Event()
    release = threading.Event()

    def step(is_current):
        entered.set()
        release.wait(2.0)

    engine = StepEngine(step)
    worker = threading.Thread(target=engine.tick)
    worker.start()
    assert entered.wait(1.0)

    assert engine.tick() is False, "second tick while one is in flight is skipped"
    assert engine.skipped == 1

    release.set()
    worker.join(2.0)
    assert engine.ticks == 1


def test_tick_timeout_stops_engine():
    engine = StepEngine(lambda is_current: time.sleep(0.5), timeout=0.05)
    start = time.monotonic()
    assert engine.tick() is False
    assert time.monotonic() - start < 0.4, "timeout should not wait for the step"
    assert isinstance(engine.last_error, TimeoutError)
    engine.shutdown()


def test_timed_out_step_is_no_longer_current():
    seen = []
    done = threading.Event()

    def step(is_current):
        time.sleep(0.2)
        seen.append(is_current())
        done.set()

    engine = StepEngine(step, timeout=0.05)
    assert engine.tick() is False
    assert done.wait(1.0)
    assert seen == [False], "an abandoned step must see itself invalidated"
    engine.shutdown()


def test_stop_invalidates_running_step():
    seen = []
    entered = threading.Event()
    release = threading.Event()

    def step(is_current):
        entered.set()
        release.wait(2.0)
        seen.append(is_current())

    engine = StepEngine(step, speed=6)
    engine.start()
    assert entered.wait(1.0)
    stopper = threading.Thread(target=engine.stop)
    stopper.start()
    assert wait_until(lambda: not engine.running)
    release.set()
    stopper.join(2.0)
    assert seen[0] is False, "the step in flight during stop() must not commit"


def test_manual_tick_is_current():
    seen = []
    engine = StepEngine(lambda is_current: seen.append(is_current()))
    assert engine.tick() is True
    assert seen == [True]

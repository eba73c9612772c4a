"""
Step Engine

Drives the NCA in a timed loop on a background worker thread. Each tick
calls the step function once (inference + grid swap + render). The next
tick is scheduled one interval after the previous one finished, so ticks
never overlap; a tick requested while another is running is skipped.

The step function is called with ``is_current()``, which turns False once
the engine stops or the step times out. A step must check it before
committing its result, so an abandoned call can never land late.

Speed is a slider setting 0-6 mapped to a fixed interval table.
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from functools import partial

# Slider setting -> step interval in milliseconds
SPEED_INTERVALS_MS = {
    0: 200,  # 1/10x = 5 steps/sec
    1: 100,  # 1/5x  = 10 steps/sec
    2: 40,   # 1/2x  = 25 steps/sec
    3: 20,   # 1x    = 50 steps/sec
    4: 10,   # 2x    = 100 steps/sec
    5: 5,    # 4x    = 200 steps/sec
    6: 2,    # 8x    = 400 steps/sec
}
DEFAULT_INTERVAL_MS = 20

SPEED_LABELS = {0: "1/10x", 1: "1/5x", 2: "1/2x", 3: "1x", 4: "2x", 5: "4x", 6: "8x"}


def interval_for_speed(speed):
    """Step interval in ms for a slider value; unknown values run at 1x."""
    try:
        return SPEED_INTERVALS_MS.get(int(speed), DEFAULT_INTERVAL_MS)
    except (TypeError, ValueError):
        return DEFAULT_INTERVAL_MS


class StepEngine:
    """Timed tick loop around a step function.

    Args:
        step_fn: Called once per tick as ``step_fn(is_current)``. Any
            exception stops the engine.
        speed: Initial slider setting.
        timeout: Optional seconds a single step may take.
        on_error: Called with the exception after the engine stopped itself.
    """

    def __init__(self, step_fn, speed=3, timeout=None, on_error=None):
        self._step_fn = step_fn
        self._speed = speed
        self._timeout = timeout
        self._on_error = on_error

        self._cond = threading.Condition()
        self._tick_lock = threading.Lock()
        self._running = False
        self._reschedule = False
        self._epoch = 0
        self._token = 0
        self._thread = None
        self._executor = None

        self.ticks = 0
        self.skipped = 0
        self.last_error = None

    @property
    def running(self):
        return self._running

    @property
    def speed(self):
        return self._speed

    @property
    def interval(self):
        """Current step interval in seconds."""
        return interval_for_speed(self._speed) / 1000.0

    def start(self):
        """Begin ticking. Returns False if already running."""
        with self._cond:
            if self._running:
                return False
            self._running = True
            self._reschedule = False
            self._epoch += 1
            self.last_error = None
            self._thread = threading.Thread(
                target=self._loop, args=(self._epoch,),
                name="nca-step-engine", daemon=True,
            )
            self._thread.start()
        print(f"[NCA] Evolution started at speed setting {self._speed}.")
        return True

    def stop(self):
        """Stop ticking. Returns False if not running.

        Called from another thread this waits for the worker to exit, so no
        tick can fire after it returns.
        """
        with self._cond:
            if not self._running:
                return False
            self._running = False
            self._token += 1
            thread = self._thread
            self._thread = None
            self._cond.notify_all()
        if thread is not None and thread is not threading.current_thread():
            thread.join()
        print("[NCA] Evolution stopped.")
        return True

    def set_speed(self, speed):
        """Change the speed; a running loop reschedules from now."""
        with self._cond:
            self._speed = speed
            if self._running:
                self._reschedule = True
                self._cond.notify_all()
        if self._running:
            print(f"[NCA] Speed changed to setting {speed}.")

    def tick(self):
        """Run one step now. Returns False if skipped or failed."""
        if not self._tick_lock.acquire(blocking=False):
            self.skipped += 1
            return False
        try:
            return self._run_step()
        finally:
            self._tick_lock.release()

    def is_current(self, token):
        """True while a step started under ``token`` may still commit."""
        return token == self._token

    def shutdown(self):
        """Stop and release the inference worker."""
        self.stop()
        if self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None

    # ── internals ─────────────────────────────────────────────────────

    def _loop(self, epoch):
        deadline = time.monotonic() + self.interval
        while True:
            with self._cond:
                while True:
                    if not self._running or self._epoch != epoch:
                        return
                    if self._reschedule:
                        self._reschedule = False
                        deadline = time.monotonic() + self.interval
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        break
                    self._cond.wait(remaining)

            if self._tick_lock.acquire(blocking=False):
                try:
                    # stop() may have landed while we were waiting for the lock
                    if self._running and self._epoch == epoch:
                        self._run_step()
                finally:
                    self._tick_lock.release()
            else:
                self.skipped += 1
            deadline = time.monotonic() + self.interval

    def _run_step(self):
        token = self._token
        is_current = partial(self.is_current, token)
        try:
            if self._timeout is None:
                self._step_fn(is_current)
            else:
                if self._executor is None:
                    self._executor = ThreadPoolExecutor(
                        max_workers=1, thread_name_prefix="nca-infer"
                    )
                future = self._executor.submit(self._step_fn, is_current)
                future.result(timeout=self._timeout)
        except FutureTimeout:
            # Invalidate the abandoned call, it keeps running on its worker
            with self._cond:
                self._token += 1
            self._executor.shutdown(wait=False)
            self._executor = None
            err = TimeoutError(f"step exceeded {self._timeout}s")
            print(f"[NCA] Error during inference: {err}")
            self._fail(err)
            return False
        except Exception as e:
            print(f"[NCA] Error during inference: {e}")
            self._fail(e)
            return False
        self.ticks += 1
        return True

    def _fail(self, err):
        self.last_error = err
        self.stop()
        if self._on_error is not None:
            self._on_error(err)

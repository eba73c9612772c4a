import os
import time

import pytest

from nca_viewer.backends import BackendError, InferenceBackend
from nca_viewer.config import ViewerConfig

# pygame tests run headless
os.environ.setdefault("SDL_VIDEODRIVER", "dummy")
os.environ.setdefault("SDL_AUDIODRIVER", "dummy")


class FakeBackend(InferenceBackend):
    """In-memory model: applies ``fn`` to the input tensor."""

    backend_name = "fake"

    def __init__(self, path, fn=None, fail_after=None, delay=0.0):
        super().__init__(path)
        self.fn = fn or (lambda x: x)
        self.fail_after = fail_after
        self.delay = delay
        self.calls = 0
        self.closed = False

    def _open(self):
        self.input_names = ["input"]
        self.output_names = ["output"]

    def _run(self, feeds):
        self.calls += 1
        if self.fail_after is not None and self.calls > self.fail_after:
            raise RuntimeError("boom")
        if self.delay:
            time.sleep(self.delay)
        return {"output": self.fn(feeds["input"])}

    def close(self):
        self.closed = True


class FakeLoader:
    """Backend loader recording every backend it hands out.

    Paths whose file name contains "missing" fail to load.
    """

    def __init__(self, **backend_kwargs):
        self.backend_kwargs = backend_kwargs
        self.loaded = []

    def __call__(self, path):
        if "missing" in os.path.basename(str(path)):
            raise BackendError(f"Failed to load {path}: no such file")
        backend = FakeBackend(path, **self.backend_kwargs)
        backend._open()
        self.loaded.append(backend)
        return backend


def wait_until(predicate, timeout=2.0, interval=0.005):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def config():
    return ViewerConfig(autostart=False)


@pytest.fixture
def loader():
    return FakeLoader()

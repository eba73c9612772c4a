"""
Inference backends

The NCA model is a black box: one named (1, C, H, W) float32 tensor in,
one tensor of the same shape out. Every runtime implements this interface
so the session can drive any of them interchangeably.
"""

from abc import ABC, abstractmethod
from pathlib import Path

import numpy as np
import onnxruntime as ort
import torch


class BackendError(RuntimeError):
    """A model failed to load or to run."""


class InferenceBackend(ABC):
    """Base class for model runtimes."""

    backend_name = ""   # e.g. "onnx"
    suffixes = ()       # file suffixes this backend loads

    def __init__(self, path):
        self.path = str(path)
        self.input_names = []
        self.output_names = []

    @classmethod
    def load(cls, path):
        """Open ``path`` and return a ready backend. Raises BackendError."""
        backend = cls(path)
        try:
            backend._open()
        except BackendError:
            raise
        except Exception as e:
            raise BackendError(f"Failed to load {path}: {e}") from e
        return backend

    @abstractmethod
    def _open(self):
        """Create the runtime session and fill in input/output names."""

    @abstractmethod
    def _run(self, feeds):
        """Run one step. ``feeds`` maps input names to arrays."""

    def run(self, feeds):
        """Run one inference step, returning {output_name: float32 array}."""
        try:
            results = self._run(feeds)
        except Exception as e:
            raise BackendError(f"Inference failed: {e}") from e
        return {name: np.asarray(value, dtype=np.float32)
                for name, value in results.items()}

    def step(self, grid):
        """Feed ``grid`` as the first input and return the first output."""
        outputs = self.run({self.input_names[0]: grid})
        return outputs[self.output_names[0]]

    def close(self):
        """Release the runtime session."""


class OnnxBackend(InferenceBackend):
    """ONNX Runtime session on the CPU provider."""

    backend_name = "onnx"
    suffixes = (".onnx",)

    def _open(self):
        self.session = ort.InferenceSession(
            self.path, providers=["CPUExecutionProvider"]
        )
        self.input_names = [i.name for i in self.session.get_inputs()]
        self.output_names = [o.name for o in self.session.get_outputs()]

    def _run(self, feeds):
        values = self.session.run(self.output_names, feeds)
        return dict(zip(self.output_names, values))

    def close(self):
        self.session = None


class TorchBackend(InferenceBackend):
    """TorchScript module saved with ``torch.jit.save``.

    TorchScript has no tensor names, so the single input and output are
    called "input" and "output".
    """

    backend_name = "torch"
    suffixes = (".pt", ".ts")

    def _open(self):
        self.module = torch.jit.load(self.path, map_location="cpu")
        self.module.eval()
        self.input_names = ["input"]
        self.output_names = ["output"]

    def _run(self, feeds):
        x = torch.from_numpy(np.ascontiguousarray(feeds[self.input_names[0]]))
        with torch.no_grad():
            y = self.module(x)
        return {self.output_names[0]: y.detach().cpu().numpy()}

    def close(self):
        self.module = None


# Backend registry, keyed by file suffix
BACKEND_CLASSES = {}
for _cls in (OnnxBackend, TorchBackend):
    for _suffix in _cls.suffixes:
        BACKEND_CLASSES[_suffix] = _cls

MODEL_SUFFIXES = tuple(BACKEND_CLASSES)


def backend_for(path):
    suffix = Path(str(path)).suffix.lower()
    cls = BACKEND_CLASSES.get(suffix)
    if cls is None:
        raise BackendError(f"No backend for '{suffix}' files: {path}")
    return cls


def load_backend(path):
    """Load ``path`` with the backend registered for its suffix."""
    return backend_for(path).load(path)

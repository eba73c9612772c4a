"""
Model discovery

Lists the loadable model files in the models directory and the display
labels (emoji) kept next to them in ``models.json``.
"""

import json
from pathlib import Path

from .backends import MODEL_SUFFIXES

DEFAULT_LABEL = "❓"  # question mark emoji
LABELS_FILE = "models.json"


def ensure_models_dir(models_dir):
    """Create the models directory if it does not exist yet."""
    path = Path(models_dir)
    if not path.is_dir():
        path.mkdir(parents=True, exist_ok=True)
        print(f"[NCA] Created models directory: {path}")
    return path


def display_name(filename):
    """'growing_lizard.onnx' -> 'growing lizard'."""
    return Path(filename).stem.replace("_", " ")


def list_model_files(models_dir, suffixes=MODEL_SUFFIXES):
    """Sorted model filenames in ``models_dir``. Raises OSError if unreadable."""
    path = Path(models_dir)
    return sorted(
        entry.name for entry in path.iterdir()
        if entry.is_file() and entry.suffix.lower() in suffixes
    )


def list_models(models_dir, suffixes=MODEL_SUFFIXES):
    """Entries for ``GET /api/models``: [{"name": ..., "path": "/models/<file>"}]."""
    models = [
        {"name": display_name(f), "path": f"/models/{f}"}
        for f in list_model_files(models_dir, suffixes)
    ]
    if not models:
        print(f"[NCA] No model files found in {models_dir}")
    return models


def load_model_labels(models_dir):
    """Filename -> label mapping for ``GET /models.json``.

    Reads ``models.json`` from the models directory. Without one, every
    discovered model gets the default label.
    """
    labels_path = Path(models_dir) / LABELS_FILE
    if labels_path.is_file():
        with open(labels_path, "r", encoding="utf-8") as f:
            labels = json.load(f)
        if not isinstance(labels, dict):
            raise ValueError(f"{labels_path} must hold a JSON object")
        return labels
    return {f: DEFAULT_LABEL for f in list_model_files(models_dir)}


def available_model_labels(models_dir):
    """Labels of the models that exist on disk, in models.json order.

    Backs ``GET /models.json`` and the pygame selector, so both offer the
    same set. Empty labels fall back to the default.
    """
    base = Path(models_dir)
    return {
        f: label or DEFAULT_LABEL
        for f, label in load_model_labels(models_dir).items()
        if (base / f).is_file()
    }


def model_choices(models_dir):
    """Models for a selector: name, file path on disk and label."""
    base = Path(models_dir)
    return [
        {"name": display_name(f), "path": str(base / f), "label": label}
        for f, label in available_model_labels(models_dir).items()
    ]


def resolve_model_path(models_dir, path):
    """Map a client path ('/models/x.onnx', 'models/x.onnx', 'x.onnx') to a file.

    Only files inside ``models_dir`` are accepted; anything else raises
    ValueError.
    """
    base = Path(models_dir).resolve()
    name = str(path).replace("\\", "/").lstrip("/")
    if name.startswith("models/"):
        name = name[len("models/"):]
    candidate = (base / name).resolve()
    if base not in candidate.parents or not candidate.is_file():
        raise ValueError(f"Unknown model: {path}")
    return candidate


def print_models(models_dir):
    """CLI listing of the available models."""
    try:
        files = list_model_files(models_dir)
    except OSError as e:
        print(f"Error: {e}")
        return 1
    print("Available models:")
    for f in files:
        print(f"- {f}")
    return 0

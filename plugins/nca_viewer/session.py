"""
Session lifecycle and controller

The Controller owns everything the UI can change: the loaded model, the
live grid, the channel mapping and the step engine. Both front-ends (web
server and pygame viewer) drive it; no state lives in module globals.

Threading: the engine ticks on its own worker thread while UI callbacks
(erase, mapping changes, model switches) arrive from other threads. The
grid is guarded by a single lock held for erase, render and the commit of
a step. Inference itself runs on a copy outside the lock; a result that went
stale meanwhile is dropped.

Usage:
    from nca_viewer.session import Controller
    ctl = Controller(ViewerConfig())
    ctl.add_listener(lambda rgba: ...)   # called after every render
    ctl.load_model("models/lizard.onnx")
"""

import threading
from pathlib import Path

import numpy as np

from .backends import BackendError, load_backend
from .config import ViewerConfig
from .engine import SPEED_LABELS, StepEngine, interval_for_speed
from .grid import erase_circle, grid_stats, scale_pointer, seed_grid
from .mapping import mapping_label, parse_token, render


class Session:
    """One loaded model plus the grid it is evolving."""

    def __init__(self, backend, path, grid):
        self.backend = backend
        self.path = str(path)
        self.grid = grid
        self.generation = 0
        # Erases applied while a step is in flight, replayed onto its output
        self.edits = []

    @property
    def name(self):
        return Path(self.path).stem.replace("_", " ")


class Controller:
    def __init__(self, config=None, backend_loader=load_backend):
        self.config = config or ViewerConfig()
        self._loader = backend_loader
        self._lock = threading.RLock()
        self._listeners = []

        self.session = None
        self.model_path = None
        self.last_error = None

        token = parse_token(self.config.mapping, self.config.channels)
        self.selected_mapping = token
        self.current_mapping = token

        self.engine = StepEngine(
            self._step,
            speed=self.config.speed,
            timeout=self.config.tick_timeout,
            on_error=self._on_engine_error,
        )

    # ── state ─────────────────────────────────────────────────────────

    @property
    def running(self):
        return self.engine.running

    @property
    def grid(self):
        with self._lock:
            return None if self.session is None else self.session.grid

    def add_listener(self, fn):
        """Register ``fn(rgba)``, called with every freshly rendered frame."""
        self._listeners.append(fn)

    def state(self):
        """JSON-ready snapshot for the UI."""
        with self._lock:
            session = self.session
            speed = self.engine.speed
            return {
                "loaded": session is not None,
                "running": self.running,
                "model": session.path if session else self.model_path,
                "model_name": session.name if session else None,
                "generation": session.generation if session else 0,
                "speed": speed,
                "speed_label": SPEED_LABELS.get(speed, "1x"),
                "interval_ms": interval_for_speed(speed),
                "mapping": self.current_mapping,
                "selected_mapping": self.selected_mapping,
                "mapping_label": mapping_label(self.selected_mapping),
                "error": self.last_error,
            }

    # ── lifecycle ─────────────────────────────────────────────────────

    def _new_grid(self):
        cfg = self.config
        return seed_grid(
            cfg.channels, cfg.height, cfg.width,
            value=cfg.seed_value, radius=cfg.seed_radius, hidden=cfg.seed_hidden,
        )

    def load_model(self, path):
        """Load ``path`` and start a fresh session. Returns True on success.

        On failure the previous session is dropped too, so nothing can be
        started until a model loads.
        """
        self.engine.stop()
        self.model_path = str(path)
        print(f"[NCA] Loading model from {path}...")

        try:
            backend = self._loader(path)
            if not backend.input_names or not backend.output_names:
                raise BackendError(f"Model has no inputs or outputs: {path}")
        except BackendError as e:
            print(f"[NCA] Error loading model: {e}")
            self.last_error = str(e)
            self._replace_session(None)
            return False

        self._replace_session(Session(backend, path, self._new_grid()))
        self.last_error = None
        print(f"[NCA] Model loaded successfully from {path}.")

        self._render()
        if self.config.autostart:
            self.start()
        return True

    def restart(self, reload=False):
        """Reseed the selected model, reusing its backend when already loaded."""
        if self.model_path is None:
            print("[NCA] No model selected.")
            return False
        with self._lock:
            session = self.session
        if reload or session is None or session.path != self.model_path:
            return self.load_model(self.model_path)

        self.engine.stop()
        with self._lock:
            session.grid = self._new_grid()
            session.generation = 0
            session.edits = []
        print(f"[NCA] Restarted {session.name}.")
        self._render()
        if self.config.autostart:
            self.start()
        return True

    def _replace_session(self, session):
        with self._lock:
            old = self.session
            self.session = session
        if old is not None and (session is None or old.backend is not session.backend):
            old.backend.close()

    def close(self):
        self.engine.shutdown()
        self._replace_session(None)

    # ── engine control ────────────────────────────────────────────────

    def start(self):
        if self.session is None:
            print("[NCA] Cannot start: no model loaded.")
            return False
        return self.engine.start()

    def stop(self):
        return self.engine.stop()

    def set_speed(self, speed):
        self.engine.set_speed(int(speed))

    def tick(self):
        """Run a single step now (skipped if one is already in flight)."""
        if self.session is None:
            return False
        return self.engine.tick()

    def _step(self, is_current):
        with self._lock:
            session = self.session
            if session is None:
                raise BackendError("No active session")
            source = session.grid
            session.edits = []
            feed = source.copy()

        # Inference runs unlocked so a stuck model never blocks erase or reload
        output = session.backend.step(feed)
        if output.shape != feed.shape:
            raise BackendError(
                f"Output shape {tuple(output.shape)} does not match "
                f"input shape {tuple(feed.shape)}"
            )
        grid = np.array(output, dtype=np.float32, copy=True)

        with self._lock:
            # Engine stopped or timed out, or the grid was replaced
            stale = (not is_current() or self.session is not session
                     or session.grid is not source)
            if stale:
                print("[NCA] Dropped a stale step result.")
                return
            for x, y, radius in session.edits:
                erase_circle(grid, x, y, radius)
            session.edits = []
            session.grid = grid
            session.generation += 1
            frame = render(grid, self.current_mapping, self.config.single_channel)

        if self.config.log_stats:
            stats = grid_stats(grid)
            print(f"[NCA] Step {session.generation}: "
                  f"avg {stats['mean']:.4f}  max {stats['max']:.4f}  "
                  f"min {stats['min']:.4f}")
        self._notify(frame)

    def _on_engine_error(self, err):
        self.last_error = str(err)

    # ── rendering & editing ───────────────────────────────────────────

    def frame(self):
        """Render the live grid with the current mapping (None if no session)."""
        with self._lock:
            if self.session is None:
                return None
            return render(self.session.grid, self.current_mapping,
                          self.config.single_channel)

    def _render(self):
        frame = self.frame()
        if frame is not None:
            self._notify(frame)
        return frame

    def _notify(self, frame):
        for fn in list(self._listeners):
            fn(frame)

    def select_mapping(self, token):
        """Make ``token`` the permanent mapping. Raises ValueError."""
        token = parse_token(token, self.config.channels)
        self.selected_mapping = token
        self.current_mapping = token
        return self._render()

    def preview_mapping(self, token):
        """Show ``token`` until end_preview() (hover in the selector)."""
        self.current_mapping = parse_token(token, self.config.channels)
        return self._render()

    def end_preview(self):
        self.current_mapping = self.selected_mapping
        return self._render()

    def erase_at(self, x, y, radius=None):
        """Clear a circle of cells around grid cell (x, y) and re-render."""
        radius = self.config.erase_radius if radius is None else radius
        with self._lock:
            if self.session is None:
                return False
            x, y, radius = int(x), int(y), int(radius)
            erase_circle(self.session.grid, x, y, radius)
            self.session.edits.append((x, y, radius))
        self._render()
        return True

    def erase_at_display(self, px, py, display_w, display_h, radius=None):
        """Erase at a pointer position given in displayed-canvas pixels."""
        x, y = scale_pointer(px, py, display_w, display_h,
                             self.config.width, self.config.height)
        return self.erase_at(x, y, radius)

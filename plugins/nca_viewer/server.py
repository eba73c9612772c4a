"""
Web server for the NCA viewer

Serves the browser UI and drives a Controller on the server side:

    GET  /                     static page (bundled index.html)
    GET  /api/models           [{"name", "path"}] of loadable models
    GET  /models.json          filename -> emoji label
    GET  /models/<file>        raw model file
    GET  /api/state            controller snapshot
    GET  /api/frame.png        current frame, RGBA PNG
    GET  /api/stream           MJPEG stream of rendered frames
    POST /api/start|stop|restart
    POST /api/speed            {"value": 0-6}
    POST /api/mapping          {"token": "c5", "preview": false}
    POST /api/preview/end
    POST /api/model            {"path": "/models/x.onnx"}
    POST /api/erase            {"x", "y", "display_w", "display_h"}

Every other path is a static file from the static root.
"""

import io
import json
import math
import threading
import time
import urllib.parse
from functools import partial
from http.server import SimpleHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path

from PIL import Image

from .config import ViewerConfig
from .mapping import composite_on_black, upscale
from .models import (
    available_model_labels, ensure_models_dir, list_models, resolve_model_path,
)
from .session import Controller


# ── Frame store ───────────────────────────────────────────────────────────
# Latest rendered frame, encoded once per render and shared by every
# stream client.

class FrameStore:
    def __init__(self, scale=8, quality=85):
        self.scale = scale
        self.quality = quality
        self._lock = threading.Lock()
        self._rgba = None
        self._jpeg = None
        self._seq = 0

    def update(self, rgba):
        """Listener for Controller renders."""
        img = Image.fromarray(upscale(composite_on_black(rgba), self.scale))
        buf = io.BytesIO()
        img.save(buf, format="JPEG", quality=self.quality)
        with self._lock:
            self._rgba = rgba
            self._jpeg = buf.getvalue()
            self._seq += 1

    def latest_jpeg(self):
        with self._lock:
            return self._seq, self._jpeg

    def latest_png(self):
        with self._lock:
            rgba = self._rgba
        if rgba is None:
            return None
        buf = io.BytesIO()
        Image.fromarray(upscale(rgba, self.scale)).save(buf, format="PNG")
        return buf.getvalue()


# ── Request handler ───────────────────────────────────────────────────────

class _BadRequest(Exception):
    pass


class ViewerRequestHandler(SimpleHTTPRequestHandler):
    """Static files plus the JSON/MJPEG API.

    ``app`` is bound with functools.partial by make_server().
    """

    def __init__(self, *args, app=None, **kwargs):
        self.app = app
        super().__init__(*args, directory=str(app.static_dir), **kwargs)

    def log_message(self, *args):
        pass

    # -- helpers --

    def _send_json(self, payload, status=200):
        body = json.dumps(payload).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.send_header("Cache-Control", "no-cache")
        self.end_headers()
        self.wfile.write(body)

    def _send_bytes(self, body, content_type):
        self.send_response(200)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(body)))
        self.send_header("Cache-Control", "no-cache")
        self.end_headers()
        self.wfile.write(body)

    def _read_json(self):
        try:
            length = int(self.headers.get("Content-Length") or 0)
        except ValueError:
            raise _BadRequest("Invalid Content-Length")
        if length < 0:
            raise _BadRequest("Invalid Content-Length")
        if length == 0:
            return {}
        try:
            data = json.loads(self.rfile.read(length).decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise _BadRequest(f"Invalid JSON: {e}")
        if not isinstance(data, dict):
            raise _BadRequest("Expected a JSON object")
        return data

    def _route(self):
        return urllib.parse.urlsplit(self.path).path

    # -- GET --

    def do_GET(self):
        route = self._route()
        app = self.app
        if route == "/api/models":
            try:
                models = list_models(app.models_dir)
            except OSError as e:
                print(f"[NCA] Error reading models directory: {e}")
                self._send_json({"error": "Failed to list models"}, 500)
                return
            self._send_json(models)
        elif route == "/models.json":
            try:
                labels = available_model_labels(app.models_dir)
            except (OSError, ValueError) as e:
                print(f"[NCA] Error reading model labels: {e}")
                self._send_json({"error": "Failed to read models.json"}, 500)
                return
            self._send_json(labels)
        elif route.startswith("/models/"):
            self._serve_model_file(route)
        elif route == "/api/state":
            self._send_json(app.controller.state())
        elif route == "/api/frame.png":
            png = app.frames.latest_png()
            if png is None:
                self._send_json({"error": "No frame yet"}, 404)
                return
            self._send_bytes(png, "image/png")
        elif route == "/api/stream":
            self._serve_stream()
        else:
            super().do_GET()

    def _serve_model_file(self, route):
        name = urllib.parse.unquote(route)
        try:
            path = resolve_model_path(self.app.models_dir, name)
        except ValueError:
            self.send_error(404, "Model not found")
            return
        self._send_bytes(path.read_bytes(), "application/octet-stream")

    def _serve_stream(self):
        """MJPEG stream, one part per new frame, polled at stream_fps."""
        self.send_response(200)
        self.send_header("Content-Type", "multipart/x-mixed-replace; boundary=frame")
        self.send_header("Cache-Control", "no-cache")
        self.end_headers()
        period = 1.0 / self.app.config.stream_fps
        last_seq = -1
        while not self.app.closing.is_set():
            seq, jpeg = self.app.frames.latest_jpeg()
            try:
                if jpeg and seq != last_seq:
                    header = (b"--frame\r\nContent-Type: image/jpeg\r\n"
                              b"Content-Length: " + str(len(jpeg)).encode()
                              + b"\r\n\r\n")
                    self.wfile.write(header + jpeg + b"\r\n")
                    self.wfile.flush()
                    last_seq = seq
                time.sleep(period)
            except (BrokenPipeError, ConnectionResetError, OSError):
                break

    # -- POST --

    def do_POST(self):
        try:
            payload = self._read_json()
            result = self.app.handle_action(self._route(), payload)
        except _BadRequest as e:
            self._send_json({"error": str(e)}, 400)
            return
        if result is None:
            self._send_json({"error": "Not found"}, 404)
            return
        self._send_json(result)


# ── Application ───────────────────────────────────────────────────────────

class ViewerApp:
    """Controller + frame store + HTTP server wired together."""

    def __init__(self, config=None, controller=None):
        self.config = config or ViewerConfig()
        self.models_dir = ensure_models_dir(self.config.resolved_models_dir())
        self.static_dir = self.config.resolved_static_dir()
        self.controller = controller or Controller(self.config)
        self.frames = FrameStore(scale=self.config.display_scale)
        self.controller.add_listener(self.frames.update)
        self.closing = threading.Event()
        self.httpd = None
        self._thread = None

    def handle_action(self, route, payload):
        """Apply a POST action; returns the new state or None for unknown routes."""
        ctl = self.controller
        if route == "/api/start":
            if not ctl.start() and ctl.session is None:
                raise _BadRequest("No model loaded")
        elif route == "/api/stop":
            ctl.stop()
        elif route == "/api/restart":
            if not ctl.restart(reload=bool(payload.get("reload", False))):
                raise _BadRequest(ctl.last_error or "No model selected")
        elif route == "/api/speed":
            ctl.set_speed(_int_field(payload, "value"))
        elif route == "/api/mapping":
            token = payload.get("token")
            try:
                if payload.get("preview"):
                    ctl.preview_mapping(token)
                else:
                    ctl.select_mapping(token)
            except ValueError as e:
                raise _BadRequest(str(e))
        elif route == "/api/preview/end":
            ctl.end_preview()
        elif route == "/api/model":
            try:
                path = resolve_model_path(self.models_dir, payload.get("path", ""))
            except ValueError as e:
                raise _BadRequest(str(e))
            if not ctl.load_model(path):
                raise _BadRequest(ctl.last_error or "Failed to load model")
        elif route == "/api/erase":
            x, y = _num_field(payload, "x"), _num_field(payload, "y")
            try:
                if payload.get("display_w") is None or payload.get("display_h") is None:
                    ctl.erase_at(int(x), int(y))
                else:
                    dw = _num_field(payload, "display_w")
                    dh = _num_field(payload, "display_h")
                    ctl.erase_at_display(x, y, dw, dh)
            except (ValueError, OverflowError) as e:
                raise _BadRequest(str(e))
        else:
            return None
        return ctl.state()

    def load_first_model(self):
        """Load the first model listed in models.json (or on disk), if any."""
        try:
            labels = available_model_labels(self.models_dir)
        except (OSError, ValueError) as e:
            print(f"[NCA] Error loading models list: {e}")
            return False
        if not labels:
            print("[NCA] No models available")
            return False
        first = next(iter(labels))
        return self.controller.load_model(Path(self.models_dir) / first)

    def make_server(self, host=None, port=None):
        handler = partial(ViewerRequestHandler, app=self)
        self.httpd = ThreadingHTTPServer(
            (host or self.config.host, self.config.port if port is None else port),
            handler,
        )
        self.httpd.daemon_threads = True
        return self.httpd

    @property
    def address(self):
        host, port = self.httpd.server_address[:2]
        return f"http://{host}:{port}"

    def start_background(self, host=None, port=None):
        """Serve on a daemon thread (used by tests and embedding)."""
        if self.httpd is None:
            self.make_server(host, port)
        self._thread = threading.Thread(target=self.httpd.serve_forever, daemon=True)
        self._thread.start()
        return self.address

    def serve_forever(self):
        if self.httpd is None:
            self.make_server()
        print(f"[NCA] Server running at {self.address}")
        print(f"[NCA] Models directory: {self.models_dir}")
        try:
            self.httpd.serve_forever()
        except KeyboardInterrupt:
            pass
        finally:
            self.shutdown()

    def shutdown(self):
        self.closing.set()
        self.controller.close()
        if self.httpd is not None:
            if self._thread is not None:
                self.httpd.shutdown()
                self._thread.join()
                self._thread = None
            self.httpd.server_close()
            self.httpd = None


def _num_field(payload, key):
    value = payload.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise _BadRequest(f"'{key}' must be a number")
    # json accepts NaN, Infinity and overflowing literals like 1e400
    try:
        finite = math.isfinite(value)
    except OverflowError:
        finite = False
    if not finite:
        raise _BadRequest(f"'{key}' must be a finite number")
    return float(value)


def _int_field(payload, key):
    value = _num_field(payload, key)
    if int(value) != value:
        raise _BadRequest(f"'{key}' must be an integer")
    return int(value)


def serve(config=None):
    """Run the viewer server until interrupted."""
    app = ViewerApp(config)
    app.load_first_model()
    app.serve_forever()

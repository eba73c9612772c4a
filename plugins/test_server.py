"""
Tests for the web server: model discovery endpoints, static page and the
control API, exercised over real HTTP on an ephemeral port.
"""

import json
import urllib.error
import urllib.request

import pytest

from conftest import FakeLoader
from nca_viewer.config import ViewerConfig
from nca_viewer.server import ViewerApp
from nca_viewer.session import Controller


@pytest.fixture
def app(tmp_path):
    models = tmp_path / "models"
    models.mkdir()
    (models / "lizard.onnx").write_bytes(b"lizard-bytes")
    (tmp_path / "secret.onnx").write_bytes(b"secret")

    config = ViewerConfig(autostart=False, models_dir=str(models), display_scale=2)
    app = ViewerApp(config, controller=Controller(config, backend_loader=FakeLoader()))
    app.start_background(host="127.0.0.1", port=0)
    yield app
    app.shutdown()


def _get(app, path):
    with urllib.request.urlopen(app.address + path, timeout=5) as resp:
        return resp.status, resp.headers.get("Content-Type"), resp.read()


def _post(app, path, payload=None):
    return _post_raw(app, path, json.dumps(payload or {}).encode("utf-8"))


def _post_raw(app, path, body, headers=None):
    req = urllib.request.Request(
        app.address + path, data=body, method="POST",
        headers={"Content-Type": "application/json", **(headers or {})},
    )
    try:
        with urllib.request.urlopen(req, timeout=5) as resp:
            return resp.status, json.loads(resp.read())
    except urllib.error.HTTPError as e:
        return e.code, json.loads(e.read())


def _status(app, path):
    try:
        return _get(app, path)[0]
    except urllib.error.HTTPError as e:
        return e.code


def test_models_listing(app):
    status, ctype, body = _get(app, "/api/models")
    assert status == 200 and ctype == "application/json"
    assert json.loads(body) == [{"name": "lizard", "path": "/models/lizard.onnx"}]


def test_models_json_fallback_labels(app):
    _, _, body = _get(app, "/models.json")
    assert json.loads(body) == {"lizard.onnx": "❓"}


def test_model_file_served(app):
    status, _, body = _get(app, "/models/lizard.onnx")
    assert status == 200 and body == b"lizard-bytes"


def test_model_file_traversal_blocked(app):
    assert _status(app, "/models/..%2Fsecret.onnx") == 404
    assert _status(app, "/models/missing.onnx") == 404


def test_index_page(app):
    status, ctype, body = _get(app, "/")
    assert status == 200 and ctype.startswith("text/html")
    assert b"rgba-canvas" in body


def test_load_model_and_controls(app):
    status, state = _post(app, "/api/model", {"path": "/models/lizard.onnx"})
    assert status == 200
    assert state["loaded"] and state["model_name"] == "lizard"
    assert not state["running"]

    status, state = _post(app, "/api/speed", {"value": 5})
    assert status == 200 and state["interval_ms"] == 5

    status, state = _post(app, "/api/mapping", {"token": "c5"})
    assert state["selected_mapping"] == "c5"
    status, state = _post(app, "/api/mapping", {"token": "a", "preview": True})
    assert state["mapping"] == "a" and state["selected_mapping"] == "c5"
    status, state = _post(app, "/api/preview/end")
    assert state["mapping"] == "c5"

    status, state = _post(app, "/api/start")
    assert status == 200 and state["running"]
    status, state = _post(app, "/api/stop")
    assert status == 200 and not state["running"]


def test_bad_requests(app):
    status, body = _post(app, "/api/mapping", {"token": "c99"})
    assert status == 400 and "error" in body

    status, _ = _post(app, "/api/speed", {"value": "fast"})
    assert status == 400

    status, _ = _post(app, "/api/model", {"path": "/models/../secret.onnx"})
    assert status == 400

    status, _ = _post(app, "/api/nope")
    assert status == 404


def test_non_finite_numbers_are_rejected(app):
    _post(app, "/api/model", {"path": "/models/lizard.onnx"})

    # json.dumps writes these as the NaN and Infinity literals
    status, body = _post(app, "/api/speed", {"value": float("inf")})
    assert status == 400 and "finite" in body["error"]
    status, _ = _post(app, "/api/speed", {"value": float("nan")})
    assert status == 400

    status, _ = _post_raw(app, "/api/erase",
                          b'{"x": 1e400, "y": 3, "display_w": 512, "display_h": 512}')
    assert status == 400
    status, _ = _post_raw(app, "/api/erase",
                          b'{"x": 3, "y": 3, "display_w": NaN, "display_h": 512}')
    assert status == 400
    status, _ = _post_raw(app, "/api/speed", b'{"value": 1' + b"0" * 400 + b"}")
    assert status == 400

    status, state = _post(app, "/api/speed", {"value": 4})
    assert status == 200 and state["speed"] == 4, "server still answers"


def test_bad_body_is_rejected(app):
    status, _ = _post_raw(app, "/api/speed", b"{not json")
    assert status == 400
    status, _ = _post_raw(app, "/api/speed", b"[1, 2]")
    assert status == 400
    # No body, so the server never leaves unread bytes on the socket
    status, body = _post_raw(app, "/api/speed", b"", headers={"Content-Length": "abc"})
    assert status == 400 and body["error"] == "Invalid Content-Length"


def test_start_without_model_is_rejected(app):
    status, body = _post(app, "/api/start")
    assert status == 400 and body["error"] == "No model loaded"
    status, _ = _post(app, "/api/restart")
    assert status == 400


def test_erase_and_frame_png(app):
    _post(app, "/api/model", {"path": "/models/lizard.onnx"})
    grid = app.controller.grid
    assert grid[0, 0, 32, 32] == pytest.approx(0.8)

    # Center of a 512px canvas maps to cell (32, 32)
    status, _ = _post(app, "/api/erase",
                      {"x": 256, "y": 256, "display_w": 512, "display_h": 512})
    assert status == 200
    assert app.controller.grid[0, 0, 32, 32] == 0.0

    status, ctype, body = _get(app, "/api/frame.png")
    assert ctype == "image/png"
    assert body[:8] == b"\x89PNG\r\n\x1a\n"


def test_frame_png_before_any_model(app):
    assert _status(app, "/api/frame.png") == 404


def test_models_dir_created(tmp_path):
    target = tmp_path / "fresh"
    app = ViewerApp(ViewerConfig(autostart=False, models_dir=str(target)))
    assert target.is_dir()
    app.shutdown()


def test_models_json_skips_missing_files(app):
    labels = {"ghost.onnx": "👻", "lizard.onnx": "🦎"}
    (app.models_dir / "models.json").write_text(json.dumps(labels), encoding="utf-8")
    _, _, body = _get(app, "/models.json")
    assert json.loads(body) == {"lizard.onnx": "🦎"}, "only loadable models are offered"

    assert app.load_first_model(), "the missing first entry is skipped"
    assert app.controller.state()["model_name"] == "lizard"

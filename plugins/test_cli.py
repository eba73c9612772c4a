"""
Tests for the command-line entry point.
"""

import pytest
import torch
from PIL import Image

from nca_viewer.__main__ import main, parse_args


class _Decay(torch.nn.Module):
    def forward(self, x):
        return x * 0.9


def test_parse_args_defaults():
    assert parse_args([]) == ("serve", [], {}, None, None)


def test_parse_args_flags():
    command, positionals, overrides, config_file, out = parse_args(
        ["snap", "10", "models/a.onnx", "--speed", "5", "--models", "m",
         "--config", "cfg.json", "--out", "x.png"]
    )
    assert command == "snap"
    assert positionals == ["10", "models/a.onnx"]
    assert overrides == {"speed": "5", "models_dir": "m"}
    assert config_file == "cfg.json"
    assert out == "x.png"


def test_command_only_in_first_position():
    command, positionals, _, _, _ = parse_args(["models/list.onnx", "list"])
    assert command == "serve"
    assert positionals == ["models/list.onnx", "list"]


def test_unknown_flag_is_rejected(capsys):
    with pytest.raises(ValueError):
        parse_args(["--fast"])
    assert main(["--fast"]) == 2
    assert "Unknown argument" in capsys.readouterr().out


def test_help(capsys):
    assert main(["--help"]) == 0
    assert "Usage:" in capsys.readouterr().out


def test_invalid_config_value(capsys):
    assert main(["list", "--speed", "9"]) == 2
    assert "Invalid configuration" in capsys.readouterr().out


def test_list(tmp_path, capsys):
    (tmp_path / "lizard.onnx").write_bytes(b"\0")
    (tmp_path / "readme.txt").write_text("x")
    assert main(["list", "--models", str(tmp_path)]) == 0
    out = capsys.readouterr().out
    assert "- lizard.onnx" in out and "readme" not in out

    assert main(["list", "--models", str(tmp_path / "absent")]) == 1


def test_snap_needs_step_count(capsys):
    assert main(["snap"]) == 2
    assert main(["snap", "many"]) == 2


def test_snap_writes_png(tmp_path):
    models = tmp_path / "models"
    models.mkdir()
    torch.jit.save(torch.jit.script(_Decay()), str(models / "decay.pt"))
    out = tmp_path / "shots" / "snap.png"

    assert main(["snap", "3", "--models", str(models), "--out", str(out)]) == 0
    img = Image.open(out)
    assert img.size == (512, 512)
    assert img.mode == "RGBA"
    # Seed alpha 0.8 * 0.9^3 -> round(0.5832 * 255) = 149
    assert img.getpixel((32 * 8, 32 * 8))[3] == 149


def test_snap_without_models(tmp_path, capsys):
    assert main(["snap", "1", "--models", str(tmp_path)]) == 1
    assert "No models found" in capsys.readouterr().out

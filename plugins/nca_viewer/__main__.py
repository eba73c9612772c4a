"""
Neural Cellular Automata Viewer - Entry Point

Usage:
    python -m nca_viewer [serve] [options]
    python -m nca_viewer view [MODEL] [options]
    python -m nca_viewer list [--models DIR]
    python -m nca_viewer snap N [MODEL] [--out FILE] [options]

Commands:
    serve       Web UI with a live MJPEG stream (default)
    view        Pygame window with a control panel
    list        Print the models found in the models directory
    snap        Headless: run N steps and save a PNG

Options:
    --models DIR      Models directory (default: models)
    --config FILE     JSON config file
    --host H          Bind address for serve
    --port N          Port for serve (default: 3000)
    --speed N         Speed setting 0-6
    --mapping TOKEN   rgba, r, g, b, a or c4..c15
    --out FILE        Output PNG for snap
"""

import os
import sys

from pydantic import ValidationError

from .config import ViewerConfig
from .models import print_models

COMMANDS = ("serve", "view", "list", "snap")

_VALUE_FLAGS = {
    "--models": "models_dir",
    "--host": "host",
    "--port": "port",
    "--speed": "speed",
    "--mapping": "mapping",
}


def snap(config, steps, model_path, out_path):
    """Headless mode: run ``steps`` ticks, save the rendered frame, exit."""
    from PIL import Image

    from .mapping import upscale
    from .models import model_choices
    from .session import Controller

    config = config.with_overrides(autostart=False)
    if model_path is None:
        choices = model_choices(config.models_dir)
        if not choices:
            print(f"No models found in {config.models_dir}")
            return 1
        model_path = choices[0]["path"]

    ctl = Controller(config)
    try:
        if not ctl.load_model(model_path):
            return 1
        print(f"  running {steps} steps...", end="", flush=True)
        for _ in range(steps):
            if not ctl.tick():
                print(" failed")
                return 1
        rgba = ctl.frame()
    finally:
        ctl.close()

    out_dir = os.path.dirname(os.path.abspath(out_path))
    os.makedirs(out_dir, exist_ok=True)
    Image.fromarray(upscale(rgba, config.display_scale)).save(out_path)
    print(f" saved: {out_path}")
    return 0


def parse_args(args):
    """Split argv into (command, positionals, config overrides, config file, out)."""
    command = "serve"
    positionals = []
    overrides = {}
    config_file = None
    out_path = None

    i = 0
    while i < len(args):
        arg = args[i]
        if arg in _VALUE_FLAGS and i + 1 < len(args):
            overrides[_VALUE_FLAGS[arg]] = args[i + 1]
            i += 2
        elif arg == "--config" and i + 1 < len(args):
            config_file = args[i + 1]
            i += 2
        elif arg == "--out" and i + 1 < len(args):
            out_path = args[i + 1]
            i += 2
        elif arg in ("--help", "-h"):
            return "help", [], {}, None, None
        elif arg.startswith("--"):
            raise ValueError(f"Unknown argument: {arg}")
        elif i == 0 and arg in COMMANDS:
            command = arg
            i += 1
        else:
            positionals.append(arg)
            i += 1
    return command, positionals, overrides, config_file, out_path


def main(argv=None):
    args = sys.argv[1:] if argv is None else argv
    try:
        command, positionals, overrides, config_file, out_path = parse_args(args)
    except ValueError as e:
        print(e)
        print("Use --help for usage")
        return 2

    if command == "help":
        print(__doc__)
        return 0

    try:
        config = ViewerConfig.from_file(config_file) if config_file else ViewerConfig()
        config = config.with_overrides(**overrides)
    except (OSError, ValueError, ValidationError) as e:
        print(f"Invalid configuration: {e}")
        return 2

    if command == "list":
        return print_models(config.models_dir)

    if command == "snap":
        if not positionals or not positionals[0].isdigit():
            print("snap needs a step count, e.g. snap 100")
            return 2
        steps = int(positionals[0])
        model_path = positionals[1] if len(positionals) > 1 else None
        return snap(config, steps, model_path,
                    out_path or os.path.join("screenshots", "nca_snap.png"))

    if command == "view":
        try:
            from .viewer import Viewer
        except ImportError as e:
            print(f"The viewer needs pygame: {e}")
            return 1
        print("Starting NCA Viewer")
        print(f"  Models: {config.models_dir}")
        print(f"  Speed: {config.speed}  Mapping: {config.mapping}")
        print()
        Viewer(config).run(positionals[0] if positionals else None)
        return 0

    from .server import serve
    serve(config)
    return 0


if __name__ == "__main__":
    sys.exit(main())

"""
Viewer configuration

One pydantic model shared by the web server, the pygame viewer and the
snapshot CLI. Values can come from a JSON file and be overridden by
command-line flags.
"""

import json
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, Field


class ViewerConfig(BaseModel):
    # Grid shape (batch is always 1)
    channels: int = Field(
        default=16, ge=4,
        description="Channels per cell; 0-3 are RGBA, the rest hidden state",
    )
    height: int = Field(default=64, ge=1, description="Grid height in cells")
    width: int = Field(default=64, ge=1, description="Grid width in cells")

    # Seeding
    seed_value: float = Field(
        default=0.8, description="Value written into the seed cell(s)",
    )
    seed_radius: int = Field(
        default=0, ge=0,
        description="Half-size of the square seed neighborhood (0 = one cell)",
    )
    seed_hidden: Literal["mirror", "zero"] = Field(
        default="mirror",
        description="Hidden channels of the seed: copy seed_value or leave at 0",
    )

    # Runtime controls
    speed: int = Field(default=3, ge=0, le=6, description="Speed slider setting")
    mapping: str = Field(default="rgba", description="Initial mapping token")
    single_channel: Literal["tinted", "grayscale"] = Field(
        default="tinted",
        description="How the r/g/b/a views are drawn",
    )
    erase_radius: int = Field(default=5, ge=1, le=64, description="Erase brush radius in cells")
    autostart: bool = Field(default=True, description="Start evolving after a model loads")
    tick_timeout: Optional[float] = Field(
        default=None, gt=0,
        description="Seconds a single inference call may take before the engine stops",
    )
    log_stats: bool = Field(default=False, description="Print activation stats every step")

    # Files and serving
    models_dir: str = Field(default="models", description="Directory holding model files")
    static_dir: Optional[str] = Field(
        default=None,
        description="Static asset root (defaults to the bundled web page)",
    )
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=3000, ge=1, le=65535)
    stream_fps: int = Field(default=30, ge=1, le=120, description="MJPEG stream frame rate")
    display_scale: int = Field(default=8, ge=1, le=32, description="Pixels per cell in previews")

    @property
    def shape(self):
        return (1, self.channels, self.height, self.width)

    @classmethod
    def from_file(cls, path):
        """Load a config from a JSON file."""
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return cls(**data)

    def with_overrides(self, **overrides):
        """Return a copy with the non-None overrides applied and re-validated."""
        data = self.model_dump()
        data.update({k: v for k, v in overrides.items() if v is not None})
        return type(self)(**data)

    def resolved_models_dir(self):
        return Path(self.models_dir).resolve()

    def resolved_static_dir(self):
        if self.static_dir:
            return Path(self.static_dir).resolve()
        return Path(__file__).resolve().parent / "static"

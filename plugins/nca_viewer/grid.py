"""
Grid state buffer and erase tool

The grid is a float32 array of shape (1, C, H, W). Its flat view is the
channel-major buffer handed to the inference runtime, so
index(c, y, x) = c*H*W + y*W + x.
"""

import numpy as np

CHANNELS = 16
HEIGHT = 64
WIDTH = 64


def make_grid(channels=CHANNELS, height=HEIGHT, width=WIDTH):
    """Return an all-zero grid."""
    return np.zeros((1, channels, height, width), dtype=np.float32)


def flat_index(c, y, x, height=HEIGHT, width=WIDTH):
    return c * height * width + y * width + x


def seed_grid(channels=CHANNELS, height=HEIGHT, width=WIDTH,
              value=0.8, radius=0, hidden="mirror"):
    """Build the initial state: zeros except a seed at the center.

    The seed is a (2*radius+1)^2 square around (height//2, width//2). Its
    RGBA channels hold ``value``. Hidden channels (4+) either mirror
    ``value`` or stay zero.
    """
    if hidden not in ("mirror", "zero"):
        raise ValueError(f"Unknown seed variant: {hidden!r}")

    grid = make_grid(channels, height, width)
    cy, cx = height // 2, width // 2
    y0, y1 = max(0, cy - radius), min(height, cy + radius + 1)
    x0, x1 = max(0, cx - radius), min(width, cx + radius + 1)

    grid[0, :4, y0:y1, x0:x1] = value
    if hidden == "mirror":
        grid[0, 4:, y0:y1, x0:x1] = value
    return grid


def erase_circle(grid, center_x, center_y, radius):
    """Zero every channel of the cells within ``radius`` of the center.

    Works in place on ``grid`` (shape (1, C, H, W)). The bounding box is
    clamped to the grid, so centers on or past the edge are safe.
    Returns the number of cells cleared.
    """
    _, _, height, width = grid.shape
    y0 = max(0, center_y - radius)
    y1 = min(height, center_y + radius + 1)
    x0 = max(0, center_x - radius)
    x1 = min(width, center_x + radius + 1)
    if y0 >= y1 or x0 >= x1:
        return 0

    Y, X = np.ogrid[y0:y1, x0:x1]
    inside = (X - center_x) ** 2 + (Y - center_y) ** 2 <= radius * radius
    # Boolean index over the trailing (H, W) axes hits every channel at once
    grid[0, :, y0:y1, x0:x1][:, inside] = 0.0
    return int(inside.sum())


def scale_pointer(px, py, display_w, display_h, width=WIDTH, height=HEIGHT):
    """Map a pointer position on the displayed canvas to a grid cell."""
    if display_w <= 0 or display_h <= 0:
        raise ValueError("Display size must be positive")
    gx = int(np.floor(px * width / display_w))
    gy = int(np.floor(py * height / display_h))
    return gx, gy


def grid_stats(grid):
    """Activation summary of a grid, as logged per step."""
    return {
        "mean": float(grid.mean()),
        "max": float(grid.max()),
        "min": float(grid.min()),
    }

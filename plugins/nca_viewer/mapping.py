"""
Channel-to-pixel mapping

Turns a (1, C, H, W) grid into an (H, W, 4) uint8 RGBA image according to
a mapping token:

    rgba      channels 0-3 -> R, G, B, A
    r g b     one RGBA channel in its own color on black
    a         alpha channel as grayscale
    c4..c15   one hidden channel as grayscale

Values are scaled by 255, rounded half up and clamped, so model output
slightly outside [0, 1] still renders.
"""

import numpy as np

SINGLE_CHANNEL_POLICIES = ("tinted", "grayscale")

MAPPING_LABELS = {
    "rgba": "RGBA (Channels 0-3)",
    "r": "Red (Channel 0)",
    "g": "Green (Channel 1)",
    "b": "Blue (Channel 2)",
    "a": "Alpha (Channel 3)",
}
MAPPING_LABELS.update({f"c{n}": f"Cell Channel {n}" for n in range(4, 16)})

MAPPING_TOKENS = list(MAPPING_LABELS)

_RGBA_INDEX = {"r": 0, "g": 1, "b": 2, "a": 3}


def mapping_label(token):
    return MAPPING_LABELS.get(token, MAPPING_LABELS["rgba"])


def mapping_tokens(channels=16):
    """Tokens valid for a grid with ``channels`` channels."""
    return ["rgba", "r", "g", "b", "a"] + [f"c{n}" for n in range(4, channels)]


def parse_token(token, channels=16):
    """Validate a token, returning it unchanged. Raises ValueError."""
    if token in ("rgba", "r", "g", "b", "a"):
        return token
    if isinstance(token, str) and token.startswith("c") and token[1:].isdigit():
        n = int(token[1:])
        if 4 <= n < channels:
            return token
    raise ValueError(f"Unknown mapping token: {token!r}")


def to_byte(values):
    """Scale floats to bytes: round(v * 255) half up, clamped to [0, 255]."""
    scaled = np.floor(np.asarray(values, dtype=np.float64) * 255.0 + 0.5)
    return np.clip(scaled, 0, 255).astype(np.uint8)


def render(grid, mapping="rgba", policy="tinted"):
    """Render ``grid`` to an (H, W, 4) uint8 RGBA image.

    Unselected color components are 0 and alpha is 255 unless the token is
    ``rgba``. With policy ``"tinted"`` the r/g/b views show the channel in
    its own color while ``a`` is shown as gray; with ``"grayscale"`` all four
    single-channel views replicate the channel into R, G and B.
    """
    if policy not in SINGLE_CHANNEL_POLICIES:
        raise ValueError(f"Unknown single-channel policy: {policy!r}")
    _, channels, height, width = grid.shape
    token = parse_token(mapping, channels)
    planes = grid[0]

    image = np.zeros((height, width, 4), dtype=np.uint8)
    image[..., 3] = 255

    if token == "rgba":
        image[...] = to_byte(np.moveaxis(planes[:4], 0, -1))
    elif token in _RGBA_INDEX:
        idx = _RGBA_INDEX[token]
        value = to_byte(planes[idx])
        if policy == "grayscale" or token == "a":
            image[..., :3] = value[..., None]
        else:
            image[..., idx] = value
    else:
        value = to_byte(planes[int(token[1:])])
        image[..., :3] = value[..., None]

    return image


def composite_on_black(image):
    """Flatten an RGBA image onto black, returning (H, W, 3) uint8."""
    alpha = image[..., 3:4].astype(np.float32) / 255.0
    rgb = image[..., :3].astype(np.float32) * alpha
    return np.clip(rgb + 0.5, 0, 255).astype(np.uint8)


def upscale(image, factor):
    """Nearest-neighbour upscale (no smoothing, like the canvas view)."""
    if factor <= 1:
        return image
    return np.repeat(np.repeat(image, factor, axis=0), factor, axis=1)

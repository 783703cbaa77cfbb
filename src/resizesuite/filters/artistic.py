"""Algorithmic artistic filters working directly on the pixel buffer.

All three take an HxWxC uint8 array and an intensity in 0-100 and return a new
array of the same shape. Alpha is carried over unchanged. Only the oil
painting jitter is random, and it draws from the generator it is given.
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from numpy.typing import NDArray

# ITU-R BT.601 luma weights
GRAY_WEIGHTS = np.array([0.299, 0.587, 0.114], dtype=np.float64)

SOBEL_X = np.array([[-1, 0, 1], [-2, 0, 2], [-1, 0, 1]], dtype=np.float64)
SOBEL_Y = np.array([[-1, -2, -1], [0, 0, 0], [1, 2, 1]], dtype=np.float64)

SKETCH_GAIN: float = 6.0
WATERCOLOR_SATURATION_GAIN: float = 0.8
WATERCOLOR_PASSES: int = 2


def _to_uint8(values: NDArray[np.float64]) -> NDArray[np.uint8]:
    return np.clip(np.rint(values), 0, 255).astype(np.uint8)


def _with_alpha(source: NDArray[np.uint8], rgb: NDArray[np.uint8]) -> NDArray[np.uint8]:
    if source.shape[2] == 3:
        return rgb
    return np.concatenate([rgb, source[..., 3:]], axis=2)


# ---------------------------------------------------------------------------
# Oil painting
# ---------------------------------------------------------------------------


def oil_painting(
    pixels: NDArray[np.uint8],
    intensity: float,
    rng: np.random.Generator,
    jitter: float = 20.0,
) -> NDArray[np.uint8]:
    """Tile-wise dominant-color painting.

    The image is cut into square tiles (side grows with intensity), each
    pixel's color is quantized to a reduced palette (bucket count grows with
    intensity), and every tile is painted with its most frequent quantized
    color plus a small per-pixel random jitter. Ties go to the smallest
    quantized color. At intensity 0 the input is returned unchanged.
    """
    if intensity <= 0:
        return pixels.copy()
    factor = intensity / 100
    brush = max(2, math.floor(4 * factor))
    levels = max(4, math.floor(12 * factor))
    step = 256 / levels

    height, width = pixels.shape[:2]
    buckets = np.floor(pixels[..., :3].astype(np.float64) / step).astype(np.int64)
    codes = (buckets[..., 0] * levels + buckets[..., 1]) * levels + buckets[..., 2]

    tiles_x = -(-width // brush)
    tile_ids = (np.arange(height) // brush)[:, np.newaxis] * tiles_x + (np.arange(width) // brush)[np.newaxis, :]

    palette_size = levels**3
    keys, counts = np.unique((tile_ids * palette_size + codes).ravel(), return_counts=True)
    key_tiles = keys // palette_size
    key_codes = keys % palette_size
    # Per tile: highest count first, then smallest code.
    order = np.lexsort((key_codes, -counts, key_tiles))
    sorted_tiles = key_tiles[order]
    first = np.ones(len(order), dtype=bool)
    first[1:] = sorted_tiles[1:] != sorted_tiles[:-1]
    dominant = np.empty(int(sorted_tiles[-1]) + 1, dtype=np.int64)
    dominant[sorted_tiles[first]] = key_codes[order][first]

    tile_codes = dominant[tile_ids]
    painted = np.stack(
        [
            (tile_codes // (levels * levels)) * step,
            ((tile_codes // levels) % levels) * step,
            (tile_codes % levels) * step,
        ],
        axis=-1,
    )

    if jitter > 0:
        variation = (rng.random((height, width)) - 0.5) * jitter * factor
        painted = painted + variation[..., np.newaxis]

    return _with_alpha(pixels, _to_uint8(painted))


# ---------------------------------------------------------------------------
# Watercolor
# ---------------------------------------------------------------------------


def _distance_weighted_blur(rgb: NDArray[np.float64], radius: int) -> NDArray[np.float64]:
    """Box of side 2r+1 with weights 1 / (1 + d / r), normalized by in-bounds weight."""
    height, width = rgb.shape[:2]
    padded = np.pad(rgb, ((radius, radius), (radius, radius), (0, 0)))
    inside = np.pad(np.ones((height, width), dtype=np.float64), radius)

    acc = np.zeros_like(rgb)
    norm = np.zeros((height, width), dtype=np.float64)
    for dy in range(-radius, radius + 1):
        for dx in range(-radius, radius + 1):
            weight = 1.0 / (1.0 + math.hypot(dx, dy) / radius)
            ys = slice(radius + dy, radius + dy + height)
            xs = slice(radius + dx, radius + dx + width)
            acc += weight * padded[ys, xs]
            norm += weight * inside[ys, xs]
    return acc / norm[..., np.newaxis]


def watercolor(pixels: NDArray[np.uint8], intensity: float) -> NDArray[np.uint8]:
    """Two soft blur passes followed by a saturation boost away from gray."""
    factor = max(0.0, intensity) / 100
    radius = max(2, math.floor(3 * factor))

    rgb = pixels[..., :3].astype(np.float64)
    for _ in range(WATERCOLOR_PASSES):
        rgb = _distance_weighted_blur(rgb, radius)

    gray = (rgb @ GRAY_WEIGHTS)[..., np.newaxis]
    boost = 1 + factor * WATERCOLOR_SATURATION_GAIN
    boosted = gray + (rgb - gray) * boost
    return _with_alpha(pixels, _to_uint8(boosted))


# ---------------------------------------------------------------------------
# Sketch
# ---------------------------------------------------------------------------


def sketch(pixels: NDArray[np.uint8], intensity: float) -> NDArray[np.uint8]:
    """Inverted Sobel edge magnitude: dark lines on a light field.

    The one-pixel border has no full 3x3 neighborhood and keeps its plain
    grayscale value. Output channels are always equal.
    """
    factor = max(0.0, intensity) / 100
    gray = np.rint(pixels[..., :3].astype(np.float64) @ GRAY_WEIGHTS)
    out = gray.copy()

    height, width = gray.shape
    if height >= 3 and width >= 3:
        gx = np.zeros((height - 2, width - 2), dtype=np.float64)
        gy = np.zeros_like(gx)
        for ky in range(3):
            for kx in range(3):
                window = gray[ky : ky + height - 2, kx : kx + width - 2]
                gx += SOBEL_X[ky, kx] * window
                gy += SOBEL_Y[ky, kx] * window
        magnitude = np.sqrt(gx * gx + gy * gy)
        strokes = np.minimum(255.0, magnitude * factor * SKETCH_GAIN)
        out[1:-1, 1:-1] = np.maximum(0.0, 255.0 - strokes)

    channel = _to_uint8(out)
    return _with_alpha(pixels, np.stack([channel, channel, channel], axis=-1))

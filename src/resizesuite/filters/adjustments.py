"""Parametric (per-pixel and small-kernel) adjustments.

Color adjustments are 3x3 color matrices following the CSS filter-effects
definitions. All functions take and return float32 HxWxC arrays in 0-255;
alpha, when present, passes through untouched unless noted.
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING

import numpy as np
from PIL import Image, ImageFilter

if TYPE_CHECKING:
    from collections.abc import Callable

    from numpy.typing import NDArray


def sepia_matrix(amount: float) -> NDArray[np.float32]:
    a = 1.0 - min(max(amount, 0.0), 1.0)
    return np.array(
        [
            [0.393 + 0.607 * a, 0.769 - 0.769 * a, 0.189 - 0.189 * a],
            [0.349 - 0.349 * a, 0.686 + 0.314 * a, 0.168 - 0.168 * a],
            [0.272 - 0.272 * a, 0.534 - 0.534 * a, 0.131 + 0.869 * a],
        ],
        dtype=np.float32,
    )


def saturate_matrix(factor: float) -> NDArray[np.float32]:
    s = max(factor, 0.0)
    return np.array(
        [
            [0.213 + 0.787 * s, 0.715 - 0.715 * s, 0.072 - 0.072 * s],
            [0.213 - 0.213 * s, 0.715 + 0.285 * s, 0.072 - 0.072 * s],
            [0.213 - 0.213 * s, 0.715 - 0.715 * s, 0.072 + 0.928 * s],
        ],
        dtype=np.float32,
    )


def hue_rotate_matrix(degrees: float) -> NDArray[np.float32]:
    rad = math.radians(degrees)
    c, s = math.cos(rad), math.sin(rad)
    return np.array(
        [
            [0.213 + c * 0.787 - s * 0.213, 0.715 - c * 0.715 - s * 0.715, 0.072 - c * 0.072 + s * 0.928],
            [0.213 - c * 0.213 + s * 0.143, 0.715 + c * 0.285 + s * 0.140, 0.072 - c * 0.072 - s * 0.283],
            [0.213 - c * 0.213 - s * 0.787, 0.715 - c * 0.715 + s * 0.715, 0.072 + c * 0.928 + s * 0.072],
        ],
        dtype=np.float32,
    )


def apply_color_matrix(pixels: NDArray[np.float32], matrix: NDArray[np.float32]) -> NDArray[np.float32]:
    out = pixels.copy()
    out[..., :3] = np.clip(pixels[..., :3] @ matrix.T, 0.0, 255.0)
    return out


def sepia(pixels: NDArray[np.float32], percent: float) -> NDArray[np.float32]:
    return apply_color_matrix(pixels, sepia_matrix(percent / 100))


def saturation(pixels: NDArray[np.float32], percent: float) -> NDArray[np.float32]:
    return apply_color_matrix(pixels, saturate_matrix(1 + percent / 100))


def hue(pixels: NDArray[np.float32], degrees: float) -> NDArray[np.float32]:
    return apply_color_matrix(pixels, hue_rotate_matrix(degrees))


def brightness(pixels: NDArray[np.float32], percent: float) -> NDArray[np.float32]:
    out = pixels.copy()
    out[..., :3] = np.clip(pixels[..., :3] * max(0.0, 1 + percent / 100), 0.0, 255.0)
    return out


def contrast(pixels: NDArray[np.float32], percent: float) -> NDArray[np.float32]:
    factor = max(0.0, 1 + percent / 100)
    out = pixels.copy()
    out[..., :3] = np.clip((pixels[..., :3] - 127.5) * factor + 127.5, 0.0, 255.0)
    return out


def blur(pixels: NDArray[np.float32], sigma: float) -> NDArray[np.float32]:
    """Gaussian blur of standard deviation ``sigma`` over every channel, alpha included.

    Each channel goes through Pillow as an 8-bit plane; edges are extended.
    """
    if sigma <= 0:
        return pixels.copy()
    planes = np.clip(np.rint(pixels), 0, 255).astype(np.uint8)
    gaussian = ImageFilter.GaussianBlur(radius=sigma)
    blurred = [
        np.asarray(Image.fromarray(np.ascontiguousarray(planes[..., channel])).filter(gaussian))
        for channel in range(planes.shape[2])
    ]
    return np.stack(blurred, axis=-1).astype(np.float32)


def sharpen(pixels: NDArray[np.float32], percent: float) -> NDArray[np.float32]:
    """3x3 cross-shaped unsharp kernel (center 1+4a, neighbors -a)."""
    amount = percent / 100
    if amount <= 0:
        return pixels.copy()
    rgb = pixels[..., :3]
    padded = np.pad(rgb, ((1, 1), (1, 1), (0, 0)), mode="edge")
    neighbors = padded[:-2, 1:-1] + padded[2:, 1:-1] + padded[1:-1, :-2] + padded[1:-1, 2:]
    out = pixels.copy()
    out[..., :3] = np.clip(rgb * (1 + 4 * amount) - neighbors * amount, 0.0, 255.0)
    return out


def vignette(pixels: NDArray[np.float32], percent: float) -> NDArray[np.float32]:
    """Darken towards the corners proportionally to distance from center."""
    strength = percent / 100
    height, width = pixels.shape[:2]
    cy, cx = height / 2, width / 2
    max_distance = math.hypot(cx, cy) or 1.0
    yy, xx = np.mgrid[0:height, 0:width].astype(np.float32)
    distance = np.hypot(xx - cx, yy - cy)
    factor = np.clip(1 - (distance / max_distance) * strength, 0.0, 1.0)
    out = pixels.copy()
    out[..., :3] = pixels[..., :3] * factor[..., np.newaxis]
    return out


ADJUSTMENTS: dict[str, Callable[[NDArray[np.float32], float], NDArray[np.float32]]] = {
    "sepia": sepia,
    "brightness": brightness,
    "contrast": contrast,
    "saturation": saturation,
    "hue": hue,
    "blur": blur,
    "sharpen": sharpen,
    "vignette": vignette,
}


def apply_adjustments(pixels: NDArray[np.uint8], params: dict[str, float]) -> NDArray[np.uint8]:
    """Apply ``params`` (already scaled by intensity) in their given order."""
    if not params:
        return pixels.copy()
    work = pixels.astype(np.float32)
    for name, value in params.items():
        work = ADJUSTMENTS[name](work, value)
    return np.clip(np.rint(work), 0, 255).astype(np.uint8)

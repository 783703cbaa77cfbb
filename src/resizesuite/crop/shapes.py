"""Crop extraction with optional elliptical alpha masks.

Circle and oval crops always return RGBA. Encoding such a result to a format
without alpha (JPEG, BMP) flattens the masked corners onto white, which is a
known limitation rather than a bug.
"""

from __future__ import annotations

from enum import StrEnum

import numpy as np

from resizesuite.crop.planner import CropArea, clamp_crop_area
from resizesuite.errors import DimensionError
from resizesuite.imaging.raster import RasterImage


class CropShape(StrEnum):
    RECTANGLE = "rectangle"
    CIRCLE = "circle"
    OVAL = "oval"

    @property
    def needs_alpha(self) -> bool:
        return self is not CropShape.RECTANGLE


def pixel_bounds(area: CropArea, image_width: int, image_height: int) -> tuple[int, int, int, int]:
    """Round a clamped crop area to integer ``(left, top, right, bottom)``."""
    clamped = clamp_crop_area(area, image_width, image_height)
    left = round(clamped.x)
    top = round(clamped.y)
    right = min(image_width, round(clamped.right))
    bottom = min(image_height, round(clamped.bottom))
    if right <= left or bottom <= top:
        raise DimensionError(f"Crop area {area} is empty after clamping to {image_width}x{image_height}")
    return left, top, right, bottom


def ellipse_mask(width: int, height: int, shape: CropShape) -> np.ndarray:
    """Boolean HxW mask, True inside the inscribed circle or ellipse."""
    if shape is CropShape.CIRCLE:
        rx = ry = min(width, height) / 2
    else:
        rx, ry = width / 2, height / 2
    cy, cx = height / 2, width / 2
    yy, xx = np.mgrid[0:height, 0:width]
    dx = (xx + 0.5 - cx) / rx
    dy = (yy + 0.5 - cy) / ry
    return (dx * dx + dy * dy) <= 1.0


def apply_crop_shape(image: RasterImage, area: CropArea, shape: CropShape | str = CropShape.RECTANGLE) -> RasterImage:
    """Cut ``area`` out of ``image``, masking to an ellipse for circle/oval."""
    shape = CropShape(shape)
    left, top, right, bottom = pixel_bounds(area, image.width, image.height)
    region = image.pixels[top:bottom, left:right].copy()
    cropped = image.with_pixels(region)
    if shape is CropShape.RECTANGLE:
        return cropped

    rgba = cropped.to_rgba().pixels
    mask = ellipse_mask(right - left, bottom - top, shape)
    rgba[..., 3] = np.where(mask, rgba[..., 3], 0)
    return image.with_pixels(rgba)

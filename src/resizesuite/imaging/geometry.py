"""Geometry transforms: target-size computation, resampling, rotation."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

from PIL import Image
from pydantic import BaseModel, Field

from resizesuite.errors import DimensionError
from resizesuite.imaging.raster import RasterImage

logger = logging.getLogger(__name__)


class ResizeOptions(BaseModel):
    """How to size the output.

    ``percentage`` wins over explicit dimensions. With a single dimension and
    ``maintain_aspect_ratio`` the other one is derived from the source.
    """

    width: float | None = None
    height: float | None = None
    percentage: float | None = None
    maintain_aspect_ratio: bool = True
    quality: float | None = Field(default=None, ge=0.1, le=1.0)


@dataclass(frozen=True)
class ResizeResult:
    image: RasterImage
    width: int
    height: int


def _is_positive(value: float | None) -> bool:
    return value is not None and math.isfinite(value) and value > 0


def _usable(value: float | None) -> float | None:
    """``value`` when it is a positive finite number, else None."""
    return value if _is_positive(value) else None


def compute_dimensions(source_width: int, source_height: int, options: ResizeOptions) -> tuple[int, int]:
    """Resolve the integer output size for ``options``.

    A side that is missing, non-positive or not finite counts as not given
    and is derived from the other one.

    Raises:
        DimensionError: If the percentage is unusable, or neither side is.
    """
    if options.percentage is not None:
        if not _is_positive(options.percentage):
            raise DimensionError(f"Percentage must be a positive finite number, got {options.percentage}")
        scale = options.percentage / 100
        return _at_least_one(source_width * scale), _at_least_one(source_height * scale)

    width, height = _usable(options.width), _usable(options.height)
    if width is not None and height is not None:
        if not options.maintain_aspect_ratio:
            return _at_least_one(width), _at_least_one(height)
        # Fit inside the requested box without distorting.
        scale = min(width / source_width, height / source_height)
        return _at_least_one(source_width * scale), _at_least_one(source_height * scale)

    if width is not None:
        if options.maintain_aspect_ratio:
            return _at_least_one(width), _at_least_one(source_height * width / source_width)
        return _at_least_one(width), source_height

    if height is not None:
        if options.maintain_aspect_ratio:
            return _at_least_one(source_width * height / source_height), _at_least_one(height)
        return source_width, _at_least_one(height)

    raise DimensionError(f"No usable resize dimensions (width={options.width}, height={options.height})")


def _at_least_one(value: float) -> int:
    return max(1, round(value))


def resample(image: RasterImage, width: int, height: int) -> RasterImage:
    """Resample to exactly ``width`` x ``height``.

    Shrinking uses an area (box) filter, growing uses bilinear interpolation.
    """
    if width <= 0 or height <= 0:
        raise DimensionError(f"Cannot resample to {width}x{height}")
    if (width, height) == image.size:
        return image.with_pixels(image.pixels.copy())

    shrinking = width <= image.width and height <= image.height
    method = Image.Resampling.BOX if shrinking else Image.Resampling.BILINEAR
    resized = image.to_pil().resize((width, height), resample=method)
    out = RasterImage.from_pil(resized, source_format=image.source_format)
    if image.has_alpha and not out.has_alpha:
        out = out.to_rgba()
    return out


def resize(image: RasterImage, options: ResizeOptions) -> ResizeResult:
    """Resize according to ``options`` and report the achieved size."""
    width, height = compute_dimensions(image.width, image.height, options)
    logger.debug("Resizing %dx%d -> %dx%d", image.width, image.height, width, height)
    resized = resample(image, width, height)
    return ResizeResult(image=resized, width=width, height=height)


def rotated_size(width: int, height: int, angle: float) -> tuple[int, int]:
    """Bounding size of a ``width`` x ``height`` rectangle rotated by ``angle`` degrees."""
    radians = math.radians(angle)
    cos = abs(math.cos(radians))
    sin = abs(math.sin(radians))
    return round(width * cos + height * sin), round(width * sin + height * cos)


def rotate(
    image: RasterImage,
    angle: float,
    *,
    flip_horizontal: bool = False,
    flip_vertical: bool = False,
) -> RasterImage:
    """Rotate counter-clockwise by ``angle`` degrees on an expanded canvas.

    Corners uncovered by the rotation become transparent, so the result is
    RGBA unless the angle is a multiple of 90.
    """
    if not math.isfinite(angle):
        raise DimensionError(f"Rotation angle must be finite, got {angle}")

    pil_image = image.to_pil()
    if flip_horizontal:
        pil_image = pil_image.transpose(Image.Transpose.FLIP_LEFT_RIGHT)
    if flip_vertical:
        pil_image = pil_image.transpose(Image.Transpose.FLIP_TOP_BOTTOM)

    quarter_turns = angle / 90
    if quarter_turns == int(quarter_turns):
        turns = int(quarter_turns) % 4
        transposes = {
            1: Image.Transpose.ROTATE_90,
            2: Image.Transpose.ROTATE_180,
            3: Image.Transpose.ROTATE_270,
        }
        if turns:
            pil_image = pil_image.transpose(transposes[turns])
        return RasterImage.from_pil(pil_image, source_format=image.source_format)

    target = rotated_size(image.width, image.height, angle)
    rotated = pil_image.convert("RGBA").rotate(
        angle,
        resample=Image.Resampling.BILINEAR,
        expand=True,
        fillcolor=(0, 0, 0, 0),
    )
    if rotated.size != target:
        # Pillow's expand rounds differently; keep the documented size.
        canvas = Image.new("RGBA", target, (0, 0, 0, 0))
        canvas.paste(rotated, ((target[0] - rotated.width) // 2, (target[1] - rotated.height) // 2))
        rotated = canvas
    return RasterImage.from_pil(rotated, source_format=image.source_format)

"""Format encoding: RasterImage to output bytes in a target format."""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np
from PIL import Image

from resizesuite.errors import EncodeFailure, InvalidInput, UnsupportedFormat
from resizesuite.imaging.geometry import resample
from resizesuite.imaging.raster import ImageFormat, RasterImage

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from resizesuite.config import Settings

logger = logging.getLogger(__name__)

MIN_QUALITY: float = 0.1
MAX_QUALITY: float = 1.0

# Largest ICO frame; bigger images are scaled down to fit before encoding.
_ICO_MAX_SIDE = 256


@dataclass(frozen=True)
class EncodedImage:
    """Encoder output."""

    data: bytes
    format: ImageFormat
    width: int
    height: int
    quality: float | None

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def mime_type(self) -> str:
        return self.format.mime_type


def compression_ratio(original_size: int, processed_size: int) -> float:
    """Signed size change in percent. Negative means the output shrank."""
    if original_size <= 0:
        return 0.0
    return round((processed_size - original_size) / original_size * 100, 1)


def is_encodable(fmt: ImageFormat) -> bool:
    """Whether the installed Pillow build can write ``fmt``."""
    Image.init()
    return fmt.pil_name in Image.SAVE


def effective_quality(fmt: ImageFormat, quality: float, settings: Settings) -> float | None:
    """Apply the per-format quality policy.

    Formats without a quality setting get None. Lossy formats are floored
    so that a user cannot produce an unusably degraded file by accident.
    """
    if fmt.ignores_quality:
        return None
    floors = {
        ImageFormat.JPEG: settings.jpeg_quality_floor,
        ImageFormat.WEBP: settings.webp_quality_floor,
        ImageFormat.AVIF: settings.avif_quality_floor,
    }
    return min(MAX_QUALITY, max(floors.get(fmt, MIN_QUALITY), quality))


def flatten(pixels: NDArray[np.uint8], background: tuple[int, int, int] = (255, 255, 255)) -> NDArray[np.uint8]:
    """Composite RGBA pixels over an opaque background and return RGB."""
    if pixels.shape[2] == 3:
        return pixels
    rgb = pixels[..., :3].astype(np.float32)
    alpha = pixels[..., 3:4].astype(np.float32) / 255.0
    bg = np.asarray(background, dtype=np.float32).reshape(1, 1, 3)
    out = rgb * alpha + bg * (1.0 - alpha)
    return np.clip(np.rint(out), 0, 255).astype(np.uint8)


def convert(
    image: RasterImage,
    fmt: ImageFormat | str,
    settings: Settings,
    quality: float | None = None,
    *,
    preserve_transparency: bool = True,
) -> EncodedImage:
    """Encode an image into ``fmt``.

    Formats without an alpha channel (and any format when
    ``preserve_transparency`` is off) get transparent regions flattened onto
    white first.

    Raises:
        UnsupportedFormat: If the target format cannot be written here.
        InvalidInput: If quality is outside 0.1-1.0.
        EncodeFailure: If the encoder fails or writes nothing.
    """
    if isinstance(fmt, str):
        try:
            fmt = ImageFormat.parse(fmt)
        except ValueError as exc:
            raise UnsupportedFormat(str(exc)) from exc
    if not is_encodable(fmt):
        raise UnsupportedFormat(f"Format '{fmt}' is not encodable on this platform")

    requested = settings.default_quality if quality is None else quality
    if not MIN_QUALITY <= requested <= MAX_QUALITY:
        raise InvalidInput(f"Quality must be between {MIN_QUALITY} and {MAX_QUALITY}, got {requested}")
    applied = effective_quality(fmt, requested, settings)

    if fmt is ImageFormat.ICO:
        image = _fit_icon(image)

    pixels = image.pixels
    if image.has_alpha and (not fmt.supports_alpha or not preserve_transparency):
        pixels = flatten(pixels)
    pil_image = image.with_pixels(pixels).to_pil()

    buffer = io.BytesIO()
    try:
        pil_image.save(buffer, format=fmt.pil_name, **_save_options(fmt, pil_image, applied))
    except (OSError, ValueError, KeyError) as exc:
        raise EncodeFailure(f"Encoding to {fmt} failed: {exc}") from exc

    data = buffer.getvalue()
    if not data:
        raise EncodeFailure(f"Encoder produced no output for {fmt}")

    logger.debug("Encoded %dx%d image as %s (%d bytes, quality=%s)", image.width, image.height, fmt, len(data), applied)
    return EncodedImage(data=data, format=fmt, width=image.width, height=image.height, quality=applied)


def _fit_icon(image: RasterImage) -> RasterImage:
    longest = max(image.size)
    if longest <= _ICO_MAX_SIDE:
        return image
    scale = _ICO_MAX_SIDE / longest
    return resample(image, max(1, round(image.width * scale)), max(1, round(image.height * scale)))


def _save_options(fmt: ImageFormat, pil_image: Image.Image, quality: float | None) -> dict[str, object]:
    pil_quality = None if quality is None else round(quality * 100)
    if fmt is ImageFormat.JPEG:
        return {"quality": pil_quality, "optimize": True, "progressive": True}
    if fmt is ImageFormat.WEBP:
        return {"quality": pil_quality, "method": 4}
    if fmt is ImageFormat.AVIF:
        return {"quality": pil_quality}
    if fmt is ImageFormat.PNG:
        return {"optimize": True}
    if fmt is ImageFormat.TIFF:
        return {"compression": "tiff_lzw"}
    if fmt is ImageFormat.ICO:
        return {"sizes": [pil_image.size]}
    return {}

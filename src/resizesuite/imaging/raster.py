"""Raster decoding: raw bytes to an RGB(A) pixel buffer plus metadata.

Pillow does the container parsing; the rest of the engine only ever sees a
``RasterImage`` wrapping an HxWxC uint8 numpy array.
"""

from __future__ import annotations

import io
import logging
import warnings
from dataclasses import dataclass, field
from enum import StrEnum

import numpy as np
from numpy.typing import NDArray
from PIL import Image, ImageOps, UnidentifiedImageError

from resizesuite.errors import InvalidInput

logger = logging.getLogger(__name__)

RGB_CHANNELS = 3
RGBA_CHANNELS = 4


class ImageFormat(StrEnum):
    JPEG = "jpeg"
    PNG = "png"
    WEBP = "webp"
    GIF = "gif"
    TIFF = "tiff"
    BMP = "bmp"
    ICO = "ico"
    AVIF = "avif"

    @property
    def pil_name(self) -> str:
        """Name Pillow uses for this format in ``Image.SAVE`` / ``Image.open``."""
        return _PIL_NAMES[self]

    @property
    def extension(self) -> str:
        return _EXTENSIONS[self]

    @property
    def mime_type(self) -> str:
        return _MIME_TYPES[self]

    @property
    def supports_alpha(self) -> bool:
        return self not in (ImageFormat.JPEG, ImageFormat.BMP)

    @property
    def ignores_quality(self) -> bool:
        """Encoders for these formats take no quality setting."""
        return self not in (ImageFormat.JPEG, ImageFormat.WEBP, ImageFormat.AVIF)

    @property
    def is_lossless(self) -> bool:
        """Decoding the output gives back the exact input pixels.

        GIF is palette based and ICO frames are size limited, so neither qualifies.
        """
        return self in (ImageFormat.PNG, ImageFormat.TIFF, ImageFormat.BMP)

    @classmethod
    def parse(cls, value: str) -> ImageFormat:
        """Parse a format name, extension, or MIME type."""
        key = value.strip().lower().lstrip(".")
        if "/" in key:
            key = key.split("/", 1)[1]
        key = _ALIASES.get(key, key)
        try:
            return cls(key)
        except ValueError:
            raise ValueError(f"Unknown image format: {value}") from None


_PIL_NAMES: dict[ImageFormat, str] = {
    ImageFormat.JPEG: "JPEG",
    ImageFormat.PNG: "PNG",
    ImageFormat.WEBP: "WEBP",
    ImageFormat.GIF: "GIF",
    ImageFormat.TIFF: "TIFF",
    ImageFormat.BMP: "BMP",
    ImageFormat.ICO: "ICO",
    ImageFormat.AVIF: "AVIF",
}

_EXTENSIONS: dict[ImageFormat, str] = {
    ImageFormat.JPEG: ".jpg",
    ImageFormat.PNG: ".png",
    ImageFormat.WEBP: ".webp",
    ImageFormat.GIF: ".gif",
    ImageFormat.TIFF: ".tiff",
    ImageFormat.BMP: ".bmp",
    ImageFormat.ICO: ".ico",
    ImageFormat.AVIF: ".avif",
}

_MIME_TYPES: dict[ImageFormat, str] = {
    ImageFormat.JPEG: "image/jpeg",
    ImageFormat.PNG: "image/png",
    ImageFormat.WEBP: "image/webp",
    ImageFormat.GIF: "image/gif",
    ImageFormat.TIFF: "image/tiff",
    ImageFormat.BMP: "image/bmp",
    ImageFormat.ICO: "image/x-icon",
    ImageFormat.AVIF: "image/avif",
}

_ALIASES: dict[str, str] = {
    "jpg": "jpeg",
    "jpe": "jpeg",
    "pjpeg": "jpeg",
    "tif": "tiff",
    "x-icon": "ico",
    "vnd.microsoft.icon": "ico",
    "x-ms-bmp": "bmp",
}

_PIL_TO_FORMAT: dict[str, ImageFormat] = {name: fmt for fmt, name in _PIL_NAMES.items()}
_PIL_TO_FORMAT["MPO"] = ImageFormat.JPEG


@dataclass(frozen=True, eq=False)
class RasterImage:
    """Decoded pixel buffer.

    ``pixels`` is an HxWx3 (RGB) or HxWx4 (RGBA) uint8 array. The stage that
    holds a RasterImage owns it; operations return new instances instead of
    mutating the buffer.
    """

    pixels: NDArray[np.uint8]
    source_format: ImageFormat | None = None
    metadata: dict[str, object] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.pixels.ndim != 3 or self.pixels.shape[2] not in (RGB_CHANNELS, RGBA_CHANNELS):
            raise ValueError(f"Expected HxWx3 or HxWx4 pixels, got shape {self.pixels.shape}")
        if self.pixels.dtype != np.uint8:
            raise ValueError(f"Expected uint8 pixels, got {self.pixels.dtype}")

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def channels(self) -> int:
        return int(self.pixels.shape[2])

    @property
    def has_alpha(self) -> bool:
        return self.channels == RGBA_CHANNELS

    @property
    def size(self) -> tuple[int, int]:
        return self.width, self.height

    def with_pixels(self, pixels: NDArray[np.uint8]) -> RasterImage:
        """Return a new image with the same provenance and different pixels."""
        return RasterImage(pixels=pixels, source_format=self.source_format, metadata=dict(self.metadata))

    def to_rgba(self) -> RasterImage:
        if self.has_alpha:
            return self
        alpha = np.full((self.height, self.width, 1), 255, dtype=np.uint8)
        return self.with_pixels(np.concatenate([self.pixels, alpha], axis=2))

    def to_pil(self) -> Image.Image:
        return Image.fromarray(np.ascontiguousarray(self.pixels))

    @classmethod
    def from_pil(cls, image: Image.Image, source_format: ImageFormat | None = None) -> RasterImage:
        """Normalize any Pillow image to RGB or RGBA and wrap it."""
        if image.mode == "RGBA":
            converted = image
        elif image.mode == "RGB":
            converted = image
        elif _has_transparency(image):
            converted = image.convert("RGBA")
        else:
            converted = image.convert("RGB")
        pixels = np.array(converted, dtype=np.uint8)
        return cls(pixels=pixels, source_format=source_format)


def _has_transparency(image: Image.Image) -> bool:
    if image.mode in ("RGBA", "LA", "PA", "La", "RGBa"):
        return True
    return "transparency" in image.info


_MAGIC: list[tuple[bytes, int, ImageFormat]] = [
    (b"\xff\xd8\xff", 0, ImageFormat.JPEG),
    (b"\x89PNG\r\n\x1a\n", 0, ImageFormat.PNG),
    (b"GIF87a", 0, ImageFormat.GIF),
    (b"GIF89a", 0, ImageFormat.GIF),
    (b"BM", 0, ImageFormat.BMP),
    (b"II*\x00", 0, ImageFormat.TIFF),
    (b"MM\x00*", 0, ImageFormat.TIFF),
    (b"\x00\x00\x01\x00", 0, ImageFormat.ICO),
]


def sniff_format(data: bytes) -> ImageFormat | None:
    """Identify the container format from its magic bytes."""
    for magic, offset, fmt in _MAGIC:
        if data[offset : offset + len(magic)] == magic:
            return fmt
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return ImageFormat.WEBP
    if data[4:8] == b"ftyp" and data[8:12] in (b"avif", b"avis"):
        return ImageFormat.AVIF
    return None


def decode(data: bytes, declared_format: str | None = None, *, max_pixels: int | None = None) -> RasterImage:
    """Decode raw image bytes into a RasterImage.

    Args:
        data: Raw file bytes.
        declared_format: Format the caller believes the bytes are in. Used only
            when the bytes cannot be sniffed.
        max_pixels: Reject images with more pixels than this.

    Returns:
        RGB or RGBA raster with ``source_format`` set.

    Raises:
        InvalidInput: If the bytes are empty, unreadable, corrupt, or too large.
    """
    if not data:
        raise InvalidInput("Image data is empty")

    try:
        with warnings.catch_warnings():
            warnings.simplefilter("error", Image.DecompressionBombWarning)
            with Image.open(io.BytesIO(data)) as opened:
                if max_pixels is not None and opened.width * opened.height > max_pixels:
                    raise InvalidInput(
                        f"Image has {opened.width * opened.height} pixels, limit is {max_pixels}"
                    )
                opened.load()
                pil_format = opened.format
                image = ImageOps.exif_transpose(opened)
    except InvalidInput:
        raise
    except (UnidentifiedImageError, Image.DecompressionBombError, Image.DecompressionBombWarning) as exc:
        raise InvalidInput(f"Failed to load image. File may be corrupted: {exc}") from exc
    except (OSError, ValueError, SyntaxError) as exc:
        raise InvalidInput(f"Failed to decode image: {exc}") from exc

    source_format = _PIL_TO_FORMAT.get(pil_format or "") or sniff_format(data)
    if source_format is None and declared_format:
        try:
            source_format = ImageFormat.parse(declared_format)
        except ValueError:
            source_format = None

    raster = RasterImage.from_pil(image, source_format=source_format)
    logger.debug(
        "Decoded %s image %dx%d (%d channels)",
        source_format or "unknown",
        raster.width,
        raster.height,
        raster.channels,
    )
    return raster

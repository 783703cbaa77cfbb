"""Pre-pipeline file gate: size, emptiness and type checks.

Rejected files never reach the decoder. The validator only looks at the
declared name/MIME type and the leading magic bytes; it does not decode.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import PurePath
from typing import TYPE_CHECKING

from resizesuite.errors import InvalidInput
from resizesuite.imaging.raster import ImageFormat, sniff_format

if TYPE_CHECKING:
    from collections.abc import Iterable

    from resizesuite.config import Settings

logger = logging.getLogger(__name__)

SUPPORTED_FORMATS: tuple[ImageFormat, ...] = tuple(ImageFormat)

_SIZE_UNITS: tuple[str, ...] = ("Bytes", "KB", "MB", "GB")


@dataclass(frozen=True)
class SourceFile:
    """Raw input as handed over by the host: a name, bytes, and an optional MIME type."""

    name: str
    data: bytes
    content_type: str | None = None

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def stem(self) -> str:
        return PurePath(self.name).stem or "image"


@dataclass
class ValidationReport:
    valid_files: list[SourceFile] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


def format_file_size(size: int) -> str:
    """Human readable size, e.g. ``1.5 MB``."""
    if size <= 0:
        return "0 Bytes"
    value = float(size)
    unit = 0
    while value >= 1024 and unit < len(_SIZE_UNITS) - 1:
        value /= 1024
        unit += 1
    return f"{round(value, 2):g} {_SIZE_UNITS[unit]}"


def supports_transparency(fmt: ImageFormat | str) -> bool:
    fmt = ImageFormat.parse(fmt) if isinstance(fmt, str) else fmt
    return fmt.supports_alpha


class FileValidator:
    """Checks files against the configured limits before processing."""

    def __init__(self, settings: Settings) -> None:
        self._max_file_size = settings.max_file_size

    def declared_format(self, source: SourceFile) -> ImageFormat | None:
        """Format from the MIME type, falling back to the file extension."""
        for candidate in (source.content_type, PurePath(source.name).suffix):
            if not candidate:
                continue
            try:
                return ImageFormat.parse(candidate)
            except ValueError:
                continue
        return None

    def validate(self, source: SourceFile) -> ImageFormat:
        """Return the detected format of an acceptable file.

        Raises:
            InvalidInput: If the file is empty, too large, or not a supported image.
        """
        if source.size == 0:
            raise InvalidInput("File is empty")
        if source.size > self._max_file_size:
            raise InvalidInput(
                f"File too large ({format_file_size(source.size)}). "
                f"Maximum size: {format_file_size(self._max_file_size)}"
            )

        declared = self.declared_format(source)
        sniffed = sniff_format(source.data)
        if sniffed is not None:
            if declared is not None and declared is not sniffed:
                logger.debug("%s declared as %s but looks like %s", source.name, declared, sniffed)
            return sniffed
        if declared is not None:
            return declared
        supported = ", ".join(fmt.value for fmt in SUPPORTED_FORMATS)
        raise InvalidInput(f"Unsupported file type. Supported formats: {supported}")

    def validate_files(self, sources: Iterable[SourceFile]) -> ValidationReport:
        """Split ``sources`` into acceptable files and per-file error messages."""
        report = ValidationReport()
        for index, source in enumerate(sources, start=1):
            try:
                self.validate(source)
            except InvalidInput as exc:
                logger.warning("Rejected %s: %s", source.name, exc.message)
                report.errors.append(f"File {index} ({source.name}): {exc.message}")
            else:
                report.valid_files.append(source)
        return report

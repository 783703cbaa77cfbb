"""Tests for the pre-pipeline file validator."""

from __future__ import annotations

import io

import numpy as np
import pytest
from PIL import Image

from resizesuite.config import Settings
from resizesuite.errors import InvalidInput
from resizesuite.imaging.raster import ImageFormat
from resizesuite.validation import (
    FileValidator,
    SourceFile,
    format_file_size,
    supports_transparency,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_settings(**overrides: object) -> Settings:
    defaults: dict[str, object] = {"max_file_size": 10 * 1024 * 1024}
    defaults.update(overrides)
    return Settings(**defaults)  # type: ignore[arg-type]


def _png_bytes() -> bytes:
    buffer = io.BytesIO()
    Image.fromarray(np.zeros((4, 4, 3), dtype=np.uint8)).save(buffer, format="PNG")
    return buffer.getvalue()


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


class TestFormatFileSize:
    @pytest.mark.parametrize(
        ("size", "expected"),
        [
            (0, "0 Bytes"),
            (512, "512 Bytes"),
            (1024, "1 KB"),
            (1536, "1.5 KB"),
            (10 * 1024 * 1024, "10 MB"),
            (3 * 1024**3, "3 GB"),
        ],
    )
    def test_formatting(self, size: int, expected: str) -> None:
        assert format_file_size(size) == expected


class TestSupportsTransparency:
    def test_formats(self) -> None:
        assert supports_transparency("png")
        assert supports_transparency(ImageFormat.WEBP)
        assert not supports_transparency("jpg")
        assert not supports_transparency(ImageFormat.BMP)


class TestFileValidator:
    def test_accepts_sniffed_png(self) -> None:
        validator = FileValidator(_make_settings())
        assert validator.validate(SourceFile(name="upload.bin", data=_png_bytes())) is ImageFormat.PNG

    def test_sniffed_format_beats_extension(self) -> None:
        validator = FileValidator(_make_settings())
        assert validator.validate(SourceFile(name="photo.jpg", data=_png_bytes())) is ImageFormat.PNG

    def test_declared_type_used_when_bytes_unknown(self) -> None:
        validator = FileValidator(_make_settings())
        source = SourceFile(name="broken", data=b"garbage", content_type="image/jpeg")
        assert validator.validate(source) is ImageFormat.JPEG

    def test_empty_file_rejected(self) -> None:
        with pytest.raises(InvalidInput, match="empty"):
            FileValidator(_make_settings()).validate(SourceFile(name="a.png", data=b""))

    def test_oversized_file_rejected(self) -> None:
        validator = FileValidator(_make_settings(max_file_size=10))
        with pytest.raises(InvalidInput, match="too large"):
            validator.validate(SourceFile(name="a.png", data=_png_bytes()))

    def test_unsupported_type_rejected(self) -> None:
        source = SourceFile(name="notes.txt", data=b"hello", content_type="text/plain")
        with pytest.raises(InvalidInput, match="Unsupported file type"):
            FileValidator(_make_settings()).validate(source)

    def test_validate_files_splits_results(self) -> None:
        sources = [
            SourceFile(name="good.png", data=_png_bytes()),
            SourceFile(name="empty.png", data=b""),
            SourceFile(name="notes.txt", data=b"hello"),
        ]
        report = FileValidator(_make_settings()).validate_files(sources)

        assert [s.name for s in report.valid_files] == ["good.png"]
        assert report.errors == [
            "File 2 (empty.png): File is empty",
            "File 3 (notes.txt): Unsupported file type. Supported formats: "
            "jpeg, png, webp, gif, tiff, bmp, ico, avif",
        ]

    def test_source_stem(self) -> None:
        assert SourceFile(name="holiday.photo.JPG", data=b"x").stem == "holiday.photo"

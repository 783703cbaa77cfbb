"""Error taxonomy for the processing engine.

Every error carries a ``kind`` so callers can decide on retries or support
messages without parsing the text.
"""

from __future__ import annotations


class ProcessingError(Exception):
    """Base class for all recoverable per-image failures."""

    kind: str = "processing_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"{self.kind}: {self.message}"


class InvalidInput(ProcessingError):
    """The source bytes are unreadable, corrupt, or rejected by a limit."""

    kind = "invalid_input"


class UnsupportedFormat(ProcessingError):
    """The requested output format cannot be encoded on this platform."""

    kind = "unsupported_format"


class DimensionError(ProcessingError):
    """A target size is non-positive or not finite."""

    kind = "dimension_error"


InvalidDimension = DimensionError


class DetectorUnavailable(ProcessingError):
    """Subject detection cannot run. Callers fall back to a center crop."""

    kind = "detector_unavailable"


class EncodeFailure(ProcessingError):
    """The encoder raised or produced no output."""

    kind = "encode_failure"


class InternalProcessingError(ProcessingError):
    """Unexpected exception recorded against a single batch item."""

    kind = "internal_error"


class BatchStateError(RuntimeError):
    """Illegal batch item status transition."""

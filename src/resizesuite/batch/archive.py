"""Zip packaging of batch results.

Layout::

    converted/<output name>   one entry per successful item
    originals/<source name>   optional, only with include_originals
    manifest.json             optional, per-item outcome and run settings

Names are made unique within each folder by appending ``-1``, ``-2``, ...
"""

from __future__ import annotations

import io
import json
import logging
import zipfile
from datetime import UTC, datetime
from pathlib import Path, PurePath
from typing import TYPE_CHECKING, Any

from resizesuite.batch.models import BatchStatus
from resizesuite.errors import InvalidInput
from resizesuite.validation import format_file_size

if TYPE_CHECKING:
    from resizesuite.batch.models import BatchItem, BatchJob
    from resizesuite.config import Settings

logger = logging.getLogger(__name__)

CONVERTED_DIR = "converted"
ORIGINALS_DIR = "originals"
MANIFEST_NAME = "manifest.json"
MANIFEST_TOOL = "ResizeSuite"
MANIFEST_SCHEMA = 1


class _NameAllocator:
    """Hands out unique names inside one archive folder."""

    def __init__(self) -> None:
        self._used: set[str] = set()

    def allocate(self, name: str) -> str:
        clean = PurePath(name.replace("\\", "/")).name or "image"
        candidate = clean
        stem, suffix = PurePath(clean).stem, PurePath(clean).suffix
        counter = 1
        while candidate.lower() in self._used:
            candidate = f"{stem}-{counter}{suffix}"
            counter += 1
        self._used.add(candidate.lower())
        return candidate


def estimated_size(job: BatchJob, include_originals: bool = False) -> int:
    """Uncompressed payload size of the archive."""
    total = 0
    for item in job.successful():
        if item.result is not None:
            total += item.result.processed_size
        if include_originals:
            total += item.source.size
    return total


def validate_for_archive(job: BatchJob, settings: Settings, include_originals: bool = False) -> list[str]:
    """Return the reasons the job cannot be archived; empty when it can."""
    errors: list[str] = []
    if job.total == 0:
        errors.append("No files to process")
    if not job.successful():
        errors.append("No successfully processed files")
    total = estimated_size(job, include_originals)
    if total > settings.max_archive_size:
        errors.append(
            f"Total file size ({format_file_size(total)}) exceeds {format_file_size(settings.max_archive_size)} limit"
        )
    return errors


def _manifest_entry(item: BatchItem, output_name: str | None, original_name: str | None) -> dict[str, Any]:
    entry: dict[str, Any] = {
        "original_name": item.name,
        "processed_name": output_name,
        "original_path": original_name,
        "status": item.status.value,
        "original_size": item.source.size,
        "processed_size": None,
        "compression_ratio": None,
        "error": None,
    }
    if item.result is not None:
        entry["processed_size"] = item.result.processed_size
        entry["compression_ratio"] = item.result.compression_ratio
        entry["width"] = item.result.width
        entry["height"] = item.result.height
    if item.error is not None:
        entry["error"] = {"kind": item.error.kind, "message": item.error.message}
    return entry


def build_archive(
    job: BatchJob,
    settings: Settings,
    *,
    include_originals: bool = False,
    include_manifest: bool = True,
    tool_settings: dict[str, Any] | None = None,
    timestamp: datetime | None = None,
) -> bytes:
    """Package successful outputs into an in-memory zip.

    Raises:
        InvalidInput: If ``validate_for_archive`` reports a problem.
    """
    errors = validate_for_archive(job, settings, include_originals)
    if errors:
        raise InvalidInput("; ".join(errors))

    converted_names = _NameAllocator()
    original_names = _NameAllocator()
    entries: list[dict[str, Any]] = []

    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=6) as archive:
        for item in job.items:
            output_path: str | None = None
            original_path: str | None = None
            if item.status is BatchStatus.DONE and item.result is not None:
                output_path = f"{CONVERTED_DIR}/{converted_names.allocate(item.result.filename)}"
                archive.writestr(output_path, item.result.data)
                if include_originals:
                    original_path = f"{ORIGINALS_DIR}/{original_names.allocate(item.name)}"
                    archive.writestr(original_path, item.source.data)
            entries.append(_manifest_entry(item, output_path, original_path))

        if include_manifest:
            manifest = {
                "tool": MANIFEST_TOOL,
                "schema": MANIFEST_SCHEMA,
                "timestamp": (timestamp or datetime.now(UTC)).isoformat(),
                "settings": tool_settings or {},
                "summary": {"total": job.total, "done": job.done_count, "failed": job.failed_count},
                "files": entries,
            }
            archive.writestr(MANIFEST_NAME, json.dumps(manifest, indent=2))

    data = buffer.getvalue()
    logger.info("Built archive with %d outputs (%s)", job.done_count, format_file_size(len(data)))
    return data


def write_archive(path: Path | str, job: BatchJob, settings: Settings, **options: Any) -> Path:
    """Build the archive and write it to ``path``."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(build_archive(job, settings, **options))
    return target

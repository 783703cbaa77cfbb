"""Batch state: per-item status machine and the job aggregate."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

from resizesuite.errors import BatchStateError

if TYPE_CHECKING:
    from resizesuite.errors import ProcessingError
    from resizesuite.pipeline.processor import ProcessedFile
    from resizesuite.validation import SourceFile


class BatchStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    DONE = "done"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (BatchStatus.DONE, BatchStatus.FAILED)


@dataclass
class BatchItem:
    """One file's state within a batch.

    Status only moves forward: Pending -> Processing -> Done | Failed.
    ``reset`` is the single way back to Pending.
    """

    source: SourceFile
    status: BatchStatus = BatchStatus.PENDING
    result: ProcessedFile | None = None
    error: ProcessingError | None = None
    started_at: float | None = None
    finished_at: float | None = None

    @property
    def name(self) -> str:
        return self.source.name

    @property
    def elapsed(self) -> float | None:
        if self.started_at is None or self.finished_at is None:
            return None
        return self.finished_at - self.started_at

    def start(self) -> None:
        self._require(BatchStatus.PENDING, "start")
        self.status = BatchStatus.PROCESSING
        self.started_at = time.monotonic()

    def complete(self, result: ProcessedFile) -> None:
        self._require(BatchStatus.PROCESSING, "complete")
        self.status = BatchStatus.DONE
        self.result = result
        self.finished_at = time.monotonic()

    def fail(self, error: ProcessingError) -> None:
        self._require(BatchStatus.PROCESSING, "fail")
        self.status = BatchStatus.FAILED
        self.error = error
        self.finished_at = time.monotonic()

    def reset(self) -> None:
        """Return a finished item to Pending for resubmission, dropping its buffers."""
        if self.status is BatchStatus.PROCESSING:
            raise BatchStateError(f"Cannot reset {self.name} while it is processing")
        self.status = BatchStatus.PENDING
        self.result = None
        self.error = None
        self.started_at = None
        self.finished_at = None

    def _require(self, expected: BatchStatus, action: str) -> None:
        if self.status is not expected:
            raise BatchStateError(f"Cannot {action} {self.name}: status is {self.status}, expected {expected}")


@dataclass
class BatchJob:
    """Ordered items plus aggregate counts."""

    items: list[BatchItem] = field(default_factory=list)

    @classmethod
    def from_sources(cls, sources: list[SourceFile]) -> BatchJob:
        return cls(items=[BatchItem(source=source) for source in sources])

    @property
    def total(self) -> int:
        return len(self.items)

    def count(self, status: BatchStatus) -> int:
        return sum(1 for item in self.items if item.status is status)

    @property
    def done_count(self) -> int:
        return self.count(BatchStatus.DONE)

    @property
    def failed_count(self) -> int:
        return self.count(BatchStatus.FAILED)

    @property
    def pending_count(self) -> int:
        return self.count(BatchStatus.PENDING)

    @property
    def completed_count(self) -> int:
        return self.done_count + self.failed_count

    @property
    def progress(self) -> float:
        """Completed items as a percentage. An empty job is complete."""
        if not self.items:
            return 100.0
        return self.completed_count / self.total * 100

    @property
    def is_finished(self) -> bool:
        return all(item.status.is_terminal for item in self.items)

    def successful(self) -> list[BatchItem]:
        return [item for item in self.items if item.status is BatchStatus.DONE]

    def failed(self) -> list[BatchItem]:
        return [item for item in self.items if item.status is BatchStatus.FAILED]


@dataclass(frozen=True)
class BatchSummary:
    """Completion event payload."""

    total: int
    done: int
    failed: int
    cancelled: int
    elapsed_seconds: float
    error_kinds: dict[str, int] = field(default_factory=dict)

    @property
    def progress(self) -> float:
        if self.total == 0:
            return 100.0
        return (self.done + self.failed) / self.total * 100

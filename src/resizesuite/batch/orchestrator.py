"""Batch orchestration with partial-failure semantics.

Each pending item runs the full pipeline on the processing pool. A failing
item is marked Failed and the batch moves on; nothing is retried. Progress is
reported after every item, and cancellation is honoured only between items.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections import Counter
from typing import TYPE_CHECKING

from resizesuite.batch.models import BatchStatus, BatchSummary
from resizesuite.batch.pool import ProcessingPool
from resizesuite.errors import InternalProcessingError, ProcessingError

if TYPE_CHECKING:
    from collections.abc import Callable

    from resizesuite.batch.models import BatchItem, BatchJob
    from resizesuite.config import Settings
    from resizesuite.pipeline.operations import PipelineConfig
    from resizesuite.pipeline.processor import ImagePipeline

    ProgressSink = Callable[[float, str], None]
    CompletionNotifier = Callable[[BatchSummary], None]

logger = logging.getLogger(__name__)


class CancellationToken:
    """Thread-safe flag checked before each item starts."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class BatchOrchestrator:
    """Drives one pipeline per file and keeps the job's counts current."""

    def __init__(
        self,
        pipeline: ImagePipeline,
        settings: Settings,
        *,
        pool: ProcessingPool | None = None,
        progress: ProgressSink | None = None,
        on_complete: CompletionNotifier | None = None,
    ) -> None:
        self._pipeline = pipeline
        self._owns_pool = pool is None
        self._pool = pool or ProcessingPool(settings)
        self._progress = progress
        self._on_complete = on_complete

    async def run(
        self,
        job: BatchJob,
        config: PipelineConfig,
        cancel: CancellationToken | None = None,
    ) -> BatchSummary:
        """Process every pending item of ``job``.

        Items already Done or Failed are left alone; ``BatchItem.reset`` puts
        them back in the queue.
        """
        started = time.monotonic()
        pending = [item for item in job.items if item.status is BatchStatus.PENDING]
        logger.info("Starting batch of %d items (%d pending, pool size %d)", job.total, len(pending), self._pool.size)
        self._report(job.progress, f"Processing {len(pending)} files")

        in_flight: set[asyncio.Task[None]] = set()
        for item in pending:
            if self._is_cancelled(cancel):
                break
            if len(in_flight) >= self._pool.size:
                _, in_flight = await asyncio.wait(in_flight, return_when=asyncio.FIRST_COMPLETED)
                if self._is_cancelled(cancel):
                    break
            item.start()
            in_flight.add(asyncio.create_task(self._process(job, item, config)))
        if in_flight:
            await asyncio.gather(*in_flight)

        summary = self._summarize(job, time.monotonic() - started)
        logger.info(
            "Batch finished: %d done, %d failed, %d cancelled in %.2fs",
            summary.done,
            summary.failed,
            summary.cancelled,
            summary.elapsed_seconds,
        )
        if self._on_complete is not None:
            self._on_complete(summary)
        return summary

    def shutdown(self) -> None:
        if self._owns_pool:
            self._pool.shutdown()

    async def _process(self, job: BatchJob, item: BatchItem, config: PipelineConfig) -> None:
        try:
            result = await self._pool.run(self._pipeline.process, item.source, config)
        except ProcessingError as exc:
            logger.warning("Failed to process %s: %s", item.name, exc)
            item.fail(exc)
        except Exception as exc:
            logger.exception("Unexpected error while processing %s", item.name)
            item.fail(InternalProcessingError(f"{type(exc).__name__}: {exc}"))
        else:
            item.complete(result)

        outcome = "Processed" if item.status is BatchStatus.DONE else "Failed"
        self._report(job.progress, f"{outcome} {item.name} ({job.completed_count}/{job.total})")

    def _is_cancelled(self, cancel: CancellationToken | None) -> bool:
        if cancel is not None and cancel.cancelled:
            logger.info("Batch cancelled, remaining items stay pending")
            return True
        return False

    def _report(self, percent: float, message: str) -> None:
        logger.debug("Progress %.1f%%: %s", percent, message)
        if self._progress is not None:
            self._progress(percent, message)

    @staticmethod
    def _summarize(job: BatchJob, elapsed: float) -> BatchSummary:
        kinds = Counter(item.error.kind for item in job.failed() if item.error is not None)
        return BatchSummary(
            total=job.total,
            done=job.done_count,
            failed=job.failed_count,
            cancelled=job.pending_count,
            elapsed_seconds=elapsed,
            error_kinds=dict(kinds),
        )

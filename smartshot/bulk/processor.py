"""
Bulk Processor - many captures through one request template

Strategy:
1. Inputs are numbered in submission order; each index gets a result slot
2. `concurrency` asyncio workers pull indices from a queue and call the
   orchestrator; each writes only its own slot
3. A failed item never fails its siblings
4. cancel() moves still-queued items straight to cancelled; running items
   finish and are recorded
5. The job status is derived once every item is terminal
"""
import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence
from uuid import uuid4

import structlog

from smartshot.common.config import Settings, get_settings
from smartshot.history.store import ClipboardItem
from smartshot.ocr.base import BackendKind, CaptureImage, OcrRequest, OcrResult
from smartshot.ocr.errors import ProviderError
from smartshot.ocr.orchestrator import OcrOrchestrator

logger = structlog.get_logger()


class ItemStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (ItemStatus.SUCCEEDED, ItemStatus.FAILED, ItemStatus.CANCELLED)


class JobStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    PARTIALLY_FAILED = "partially_failed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self not in (JobStatus.PENDING, JobStatus.IN_PROGRESS)


@dataclass
class BulkProgress:
    """Snapshot of a job; `completed` counts terminal items only"""
    completed: int
    total: int
    statuses: List[ItemStatus]

    @property
    def fraction(self) -> float:
        return self.completed / self.total if self.total else 1.0


@dataclass
class ExportRow:
    """One exported item, in submission order"""
    input_index: int
    recognized_text: str
    confidence: float
    status: ItemStatus
    error: Optional[str] = None
    error_kind: Optional[str] = None
    backend: Optional[str] = None
    source_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "input_index": self.input_index,
            "recognized_text": self.recognized_text,
            "confidence": self.confidence,
            "status": self.status.value,
            "error": self.error,
            "error_kind": self.error_kind,
            "backend": self.backend,
            "source_name": self.source_name,
        }


class BulkJob:
    """
    Handle for one bulk submission.

    All state is touched from the event loop only.
    """

    def __init__(self, images: Sequence[CaptureImage], template: OcrRequest, job_id: Optional[str] = None):
        self.id = job_id or uuid4().hex
        self.template = template
        self.images: List[CaptureImage] = list(images)
        self.statuses: List[ItemStatus] = [ItemStatus.QUEUED] * len(self.images)
        self.results: List[Optional[OcrResult]] = [None] * len(self.images)
        self.status = JobStatus.PENDING
        self.cancel_requested = False
        self.created_at = datetime.now(timezone.utc)
        self.finished_at: Optional[datetime] = None

        self._completed = 0
        self._done = asyncio.Event()
        self._tasks: List[asyncio.Task] = []
        self._on_terminal: Optional[Callable[["BulkJob", int], None]] = None

        if not self.images:
            self._finalize()

    @property
    def total(self) -> int:
        return len(self.images)

    @property
    def is_done(self) -> bool:
        return self.status.is_terminal

    def progress(self) -> BulkProgress:
        return BulkProgress(completed=self._completed, total=self.total, statuses=list(self.statuses))

    def cancel(self) -> int:
        """
        Request cancellation.

        Queued items become cancelled now; running items finish normally.

        Returns:
            Number of items cancelled by this call
        """
        if self.is_done:
            return 0
        self.cancel_requested = True
        cancelled = 0
        for index, status in enumerate(self.statuses):
            if status is ItemStatus.QUEUED:
                self._finish(index, ItemStatus.CANCELLED, None)
                cancelled += 1
        logger.info("bulk_job_cancel_requested", job_id=self.id, cancelled=cancelled)
        return cancelled

    async def wait(self) -> "BulkJob":
        """Suspend until every item is terminal"""
        await self._done.wait()
        return self

    def result(self, index: int) -> Optional[OcrResult]:
        return self.results[index]

    def export(self) -> List[ExportRow]:
        """One row per input, in submission order"""
        rows = []
        for index, (image, status, result) in enumerate(zip(self.images, self.statuses, self.results)):
            error = result.error if result is not None else None
            rows.append(ExportRow(
                input_index=index,
                recognized_text=result.text if result is not None else "",
                confidence=result.confidence if result is not None else 0.0,
                status=status,
                error=str(error) if error else None,
                error_kind=error.kind.value if error else None,
                backend=result.backend.value if result is not None else None,
                source_name=image.metadata.source_name,
            ))
        return rows

    def _mark_running(self, index: int) -> None:
        self.statuses[index] = ItemStatus.RUNNING
        if self.status is JobStatus.PENDING:
            self.status = JobStatus.IN_PROGRESS

    def _finish(self, index: int, status: ItemStatus, result: Optional[OcrResult]) -> None:
        if self.statuses[index].is_terminal:
            return
        self.statuses[index] = status
        self.results[index] = result
        self._completed += 1
        if self._on_terminal is not None:
            self._on_terminal(self, index)
        if self._completed == self.total:
            self._finalize()

    def _finalize(self) -> None:
        self.status = self._terminal_status()
        self.finished_at = datetime.now(timezone.utc)
        self._done.set()

    def _terminal_status(self) -> JobStatus:
        succeeded = self.statuses.count(ItemStatus.SUCCEEDED)
        cancelled = self.statuses.count(ItemStatus.CANCELLED)
        if succeeded == self.total:
            return JobStatus.COMPLETED
        if succeeded:
            return JobStatus.PARTIALLY_FAILED
        if cancelled:
            return JobStatus.CANCELLED
        return JobStatus.FAILED


class BulkProcessor:
    """
    Runs bulk jobs on a bounded pool of asyncio workers.

    Args:
        orchestrator: Recognizes each item (retry and fallback included)
        concurrency: Worker count per job (>= 1)
        history: Optional HistoryStore; succeeded items are appended as they
            finish, from a worker thread
        on_progress: Optional callback(job, progress) after every terminal item
        auto_tag: Add the smart tags implied by the text to stored items
    """

    def __init__(
        self,
        orchestrator: OcrOrchestrator,
        concurrency: int = 4,
        history=None,
        on_progress: Optional[Callable[[BulkJob, BulkProgress], Any]] = None,
        auto_tag: bool = True,
    ):
        if concurrency < 1:
            raise ValueError(f"Concurrency must be >= 1, got {concurrency}")
        self.orchestrator = orchestrator
        self.concurrency = concurrency
        self.history = history
        self.on_progress = on_progress
        self.auto_tag = auto_tag
        self._jobs: Dict[str, BulkJob] = {}

    @classmethod
    def from_settings(
        cls,
        orchestrator: OcrOrchestrator,
        settings: Optional[Settings] = None,
        **kwargs,
    ) -> "BulkProcessor":
        settings = settings or get_settings()
        kwargs.setdefault("auto_tag", settings.history_auto_tag)
        return cls(orchestrator, concurrency=settings.bulk_concurrency, **kwargs)

    async def submit(self, images: Sequence[CaptureImage], template: Optional[OcrRequest] = None) -> BulkJob:
        """
        Start a job and return its handle immediately.

        Workers run on the current event loop; use `await job.wait()` for
        the outcome.
        """
        job = BulkJob(images, template or OcrRequest())
        job._on_terminal = self._item_finished
        self._jobs[job.id] = job

        logger.info("bulk_job_submitted",
                    job_id=job.id,
                    items=job.total,
                    concurrency=self.concurrency,
                    backend=job.template.backend.value if job.template.backend else None)

        if job.total:
            queue: asyncio.Queue = asyncio.Queue()
            for index in range(job.total):
                queue.put_nowait(index)
            workers = min(self.concurrency, job.total)
            job._tasks = [
                asyncio.create_task(self._worker(job, queue), name=f"bulk-{job.id[:8]}-{n}")
                for n in range(workers)
            ]
        return job

    async def run(self, images: Sequence[CaptureImage], template: Optional[OcrRequest] = None) -> BulkJob:
        """Submit and wait"""
        job = await self.submit(images, template)
        return await job.wait()

    def get(self, job_id: str) -> Optional[BulkJob]:
        return self._jobs.get(job_id)

    def jobs(self) -> List[BulkJob]:
        return list(self._jobs.values())

    def forget(self, job_id: str) -> bool:
        """Drop a finished job from the registry"""
        job = self._jobs.get(job_id)
        if job is None:
            return False
        if not job.is_done:
            raise ValueError(f"Job {job_id} is still running")
        del self._jobs[job_id]
        return True

    async def _worker(self, job: BulkJob, queue: asyncio.Queue) -> None:
        while True:
            try:
                index = queue.get_nowait()
            except asyncio.QueueEmpty:
                return

            if job.statuses[index] is not ItemStatus.QUEUED:
                continue

            job._mark_running(index)
            image = job.images[index]
            try:
                result = await self.orchestrator.recognize(image, job.template)
            except Exception as e:
                logger.error("bulk_item_crashed",
                             job_id=job.id,
                             index=index,
                             error=str(e),
                             exc_info=True)
                result = OcrResult.failed(
                    ProviderError(f"recognition crashed: {e}"),
                    backend=job.template.backend or BackendKind.ON_DEVICE,
                )

            if result.ok:
                await self._remember(job, image, result)
                job._finish(index, ItemStatus.SUCCEEDED, result)
            else:
                logger.warning("bulk_item_failed",
                               job_id=job.id,
                               index=index,
                               error=str(result.error))
                job._finish(index, ItemStatus.FAILED, result)

    async def _remember(self, job: BulkJob, image: CaptureImage, result: OcrResult) -> None:
        if self.history is None:
            return
        item = ClipboardItem.create(image.data, result, tags=job.template.tags, auto_tag=self.auto_tag)
        try:
            await asyncio.to_thread(self.history.append, item)
        except Exception as e:
            logger.error("bulk_history_append_failed", job_id=job.id, error=str(e), exc_info=True)

    def _item_finished(self, job: BulkJob, index: int) -> None:
        progress = job.progress()
        if progress.completed == progress.total:
            logger.info("bulk_job_finished",
                        job_id=job.id,
                        status=job._terminal_status().value,
                        succeeded=progress.statuses.count(ItemStatus.SUCCEEDED),
                        failed=progress.statuses.count(ItemStatus.FAILED),
                        cancelled=progress.statuses.count(ItemStatus.CANCELLED))

        if self.on_progress is None:
            return
        try:
            self.on_progress(job, progress)
        except Exception as e:
            logger.error("bulk_progress_callback_failed", job_id=job.id, error=str(e), exc_info=True)

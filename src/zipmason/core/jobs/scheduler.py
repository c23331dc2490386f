"""Bounded-concurrency FIFO scheduler for archive jobs.

Each submitted operation becomes a Job. Jobs start strictly in submission
order while fewer than ``max_concurrent`` are running; every running job gets
its own ProcessWorker. All bookkeeping happens on the event loop thread.
"""

from __future__ import annotations

import asyncio
import threading
import uuid
from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from zipmason.core.config import SchedulerConfig
from zipmason.core.errors import ArchiveError, ConfigError, OperationCancelledError
from zipmason.core.events import (
    JOB_CANCELLED,
    JOB_FAILED,
    JOB_QUEUED,
    JOB_STARTED,
    JOB_SUCCEEDED,
    EventBus,
    get_event_bus,
)
from zipmason.core.jobs.model import (
    CompressOptions,
    DecompressOptions,
    ExtractOptions,
    Job,
    JobHandle,
    JobOperation,
    JobStatus,
    SchedulerStatus,
    UpdateOptions,
)
from zipmason.core.logging import get_logger
from zipmason.core.models import OperationKind, OperationResult
from zipmason.core.progress import ProgressCallback
from zipmason.core.worker import ProcessWorker

_LOGGER = get_logger(__name__)

WorkerFactory = Callable[[str], ProcessWorker]


def _utcnow_iso() -> str:
    return datetime.now(UTC).isoformat()


class JobScheduler:
    """Queue archive operations and run at most ``max_concurrent`` at once.

    Example:
        scheduler = JobScheduler(SchedulerConfig(executable_path="7za", max_concurrent=2))
        handle = scheduler.submit_decompress("in.zip", "out/")
        result = await handle
    """

    def __init__(
        self,
        config: SchedulerConfig,
        worker_factory: WorkerFactory | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self._config = config
        self._worker_factory: WorkerFactory = worker_factory or ProcessWorker
        self._event_bus = event_bus if event_bus is not None else get_event_bus()

        # Insertion order is dispatch order.
        self._jobs: dict[str, Job] = {}
        self._running = 0
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def config(self) -> SchedulerConfig:
        return self._config

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit_list(self, archive_path: str | Path) -> JobHandle:
        async def op(worker: ProcessWorker, _report: ProgressCallback) -> OperationResult:
            return await worker.list(archive_path)

        return self._submit(OperationKind.LIST, op, None, {"archive_path": str(archive_path)})

    def submit_decompress(
        self,
        archive_path: str | Path,
        dest_path: str | Path,
        options: DecompressOptions | None = None,
    ) -> JobHandle:
        opts = options or DecompressOptions()
        entries = list(opts.entries) if opts.entries else None

        async def op(worker: ProcessWorker, report: ProgressCallback) -> OperationResult:
            return await worker.decompress(archive_path, dest_path, entries, report)

        meta = {"archive_path": str(archive_path), "dest_path": str(dest_path)}
        return self._submit(OperationKind.DECOMPRESS, op, opts.on_progress, meta)

    def submit_compress(
        self,
        source_files: Sequence[str | Path],
        archive_path: str | Path,
        options: CompressOptions | None = None,
    ) -> JobHandle:
        opts = options or CompressOptions()
        sources = list(source_files)

        async def op(worker: ProcessWorker, report: ProgressCallback) -> OperationResult:
            return await worker.compress(sources, archive_path, opts.level, report, opts.base_dir)

        meta = {"archive_path": str(archive_path), "sources": str(len(sources))}
        return self._submit(OperationKind.COMPRESS, op, opts.on_progress, meta)

    def submit_extract_single(
        self,
        archive_path: str | Path,
        entry_path: str,
        dest_path: str | Path,
        options: ExtractOptions | None = None,
    ) -> JobHandle:
        opts = options or ExtractOptions()

        async def op(worker: ProcessWorker, report: ProgressCallback) -> OperationResult:
            return await worker.extract_single(archive_path, entry_path, dest_path, report)

        meta = {
            "archive_path": str(archive_path),
            "entry_path": entry_path,
            "dest_path": str(dest_path),
        }
        return self._submit(OperationKind.EXTRACT_SINGLE, op, opts.on_progress, meta)

    def submit_update(
        self,
        archive_path: str | Path,
        source_files: Sequence[str | Path],
        options: UpdateOptions | None = None,
    ) -> JobHandle:
        opts = options or UpdateOptions()
        sources = list(source_files)

        async def op(worker: ProcessWorker, report: ProgressCallback) -> OperationResult:
            return await worker.update(archive_path, sources, report, opts.base_dir)

        meta = {"archive_path": str(archive_path), "sources": str(len(sources))}
        return self._submit(OperationKind.UPDATE, op, opts.on_progress, meta)

    # ------------------------------------------------------------------
    # Queries and control
    # ------------------------------------------------------------------

    def status(self) -> SchedulerStatus:
        queued = sum(1 for job in self._jobs.values() if job.status == JobStatus.QUEUED)
        return SchedulerStatus(running=self._running, queued=queued, total=len(self._jobs))

    def get_job(self, job_id: str) -> JobHandle | None:
        job = self._jobs.get(job_id)
        if job is None:
            return None
        return JobHandle(job, self.cancel_job)

    def cancel_job(self, job_id: str) -> bool:
        """Cancel a queued or running job.

        Returns:
            False if the job is unknown or already finished.
        """
        cancelled = self._cancel(job_id)
        if cancelled:
            self._dispatch()
        return cancelled

    def cancel_all(self) -> None:
        # Queued jobs go first so no slot frees up while they are still waiting.
        queued = [j.job_id for j in self._jobs.values() if j.status == JobStatus.QUEUED]
        running = [j.job_id for j in self._jobs.values() if j.status == JobStatus.RUNNING]
        for job_id in queued + running:
            self._cancel(job_id)
        self._jobs.clear()

    async def join(self) -> None:
        """Wait until every tracked job finished and every worker unwound."""
        while self._jobs or self._tasks:
            pending: list[asyncio.Future[Any]] = [
                job.future for job in self._jobs.values() if not job.future.done()
            ]
            pending.extend(self._tasks)
            if not pending:
                break
            await asyncio.wait(pending)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _submit(
        self,
        kind: OperationKind,
        operation: JobOperation,
        on_progress: ProgressCallback | None,
        meta: dict[str, str],
    ) -> JobHandle:
        loop = asyncio.get_running_loop()
        job = Job(
            job_id=uuid.uuid4().hex,
            kind=kind,
            operation=operation,
            future=loop.create_future(),
            on_progress=on_progress,
            created_at=_utcnow_iso(),
            meta=meta,
        )
        self._jobs[job.job_id] = job

        _LOGGER.verbose(f"job queued: job_id={job.job_id} kind={kind.value}")
        self._publish(JOB_QUEUED, job)

        self._dispatch()
        return JobHandle(job, self.cancel_job)

    def _dispatch(self) -> None:
        for job in list(self._jobs.values()):
            if self._running >= self._config.max_concurrent:
                break
            if job.status == JobStatus.QUEUED:
                self._start(job)

    def _start(self, job: Job) -> None:
        worker = self._worker_factory(self._config.executable_path)
        job.transition(JobStatus.RUNNING)
        job.worker = worker
        job.started_at = _utcnow_iso()
        self._running += 1

        _LOGGER.verbose(
            f"job started: job_id={job.job_id} kind={job.kind.value} "
            f"running={self._running}/{self._config.max_concurrent}"
        )
        self._publish(JOB_STARTED, job)

        task = asyncio.get_running_loop().create_task(self._run(job, worker))
        job.task = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, job: Job, worker: ProcessWorker) -> None:
        def report(percent: int | None, message: str) -> None:
            job.progress.publish(percent, message)
            if job.on_progress is not None:
                job.on_progress(percent, message)

        try:
            result = await job.operation(worker, report)
        except asyncio.CancelledError:
            self._finish(job, error=OperationCancelledError(job_id=job.job_id))
            raise
        except Exception as e:
            self._finish(job, error=e)
        else:
            self._finish(job, result=result)

    def _finish(
        self,
        job: Job,
        result: OperationResult | None = None,
        error: BaseException | None = None,
    ) -> None:
        # A cancelled job was already removed and settled.
        if self._jobs.get(job.job_id) is not job:
            return

        del self._jobs[job.job_id]
        self._running -= 1
        job.worker = None
        job.task = None
        job.finished_at = _utcnow_iso()

        if error is None:
            job.transition(JobStatus.SUCCESS)
            if not job.future.done():
                job.future.set_result(result)  # type: ignore[arg-type]
            _LOGGER.verbose(f"job succeeded: job_id={job.job_id} kind={job.kind.value}")
            self._publish(JOB_SUCCEEDED, job)
        else:
            job.transition(JobStatus.ERROR)
            job.error = str(error)
            if not job.future.done():
                job.future.set_exception(error)
            _LOGGER.warning(f"job failed: job_id={job.job_id} kind={job.kind.value}: {error}")
            extra: dict[str, Any] = {"error": job.error}
            if isinstance(error, ArchiveError):
                extra["code"] = error.code.value
            self._publish(JOB_FAILED, job, extra)

        job.progress.close()
        self._dispatch()

    def _cancel(self, job_id: str) -> bool:
        job = self._jobs.pop(job_id, None)
        if job is None:
            return False

        if job.status == JobStatus.RUNNING:
            if job.worker is not None:
                job.worker.cancel()
            # Also covers a task that has not reached the worker yet.
            if job.task is not None:
                job.task.cancel()
            self._running -= 1

        error = OperationCancelledError(f"Job {job_id} cancelled", job_id=job_id)
        job.transition(JobStatus.ERROR)
        job.worker = None
        job.task = None
        job.error = error.message
        job.finished_at = _utcnow_iso()
        if not job.future.done():
            job.future.set_exception(error)
        job.progress.close()

        _LOGGER.warning(f"job cancelled: job_id={job_id} kind={job.kind.value}")
        self._publish(JOB_CANCELLED, job)
        return True

    def _publish(self, event: str, job: Job, extra: dict[str, Any] | None = None) -> None:
        data: dict[str, Any] = {"job_id": job.job_id, "kind": job.kind.value, **job.meta}
        if extra:
            data.update(extra)
        self._event_bus.publish(event, data)


_scheduler: JobScheduler | None = None
_scheduler_lock = threading.Lock()


def get_scheduler(config: SchedulerConfig | None = None) -> JobScheduler:
    """Return the process-wide scheduler, creating it on first use.

    Raises:
        ConfigError: No scheduler exists yet and no config was given
    """
    global _scheduler
    with _scheduler_lock:
        if _scheduler is None:
            if config is None:
                raise ConfigError(
                    "JobScheduler is not initialized",
                    "Pass a SchedulerConfig on the first call to get_scheduler()",
                )
            _scheduler = JobScheduler(config)
        return _scheduler


def has_scheduler() -> bool:
    with _scheduler_lock:
        return _scheduler is not None


def destroy_scheduler() -> None:
    """Cancel all jobs of the process-wide scheduler and forget it."""
    global _scheduler
    with _scheduler_lock:
        scheduler, _scheduler = _scheduler, None
    if scheduler is not None:
        scheduler.cancel_all()

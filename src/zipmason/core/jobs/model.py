from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Generator, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from zipmason.core.models import CompressionLevel, OperationKind, OperationResult
from zipmason.core.progress import ProgressCallback, ProgressChannel, ProgressSubscription

if TYPE_CHECKING:
    from zipmason.core.worker import ProcessWorker


class JobStatus(StrEnum):
    QUEUED = "queued"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"  # failed or cancelled


_ALLOWED_TRANSITIONS: dict[JobStatus, set[JobStatus]] = {
    JobStatus.QUEUED: {JobStatus.RUNNING, JobStatus.ERROR},
    JobStatus.RUNNING: {JobStatus.SUCCESS, JobStatus.ERROR},
    JobStatus.SUCCESS: set(),
    JobStatus.ERROR: set(),
}

JobOperation = Callable[["ProcessWorker", ProgressCallback], Awaitable[OperationResult]]


@dataclass(slots=True)
class Job:
    job_id: str
    kind: OperationKind
    operation: JobOperation
    future: asyncio.Future[OperationResult]
    progress: ProgressChannel = field(default_factory=ProgressChannel)
    on_progress: ProgressCallback | None = None
    status: JobStatus = JobStatus.QUEUED
    worker: ProcessWorker | None = None  # set while RUNNING only
    task: asyncio.Task[None] | None = None  # set while RUNNING only

    created_at: str | None = None
    started_at: str | None = None
    finished_at: str | None = None

    error: str | None = None
    meta: dict[str, str] = field(default_factory=dict)

    def transition(self, new_status: JobStatus) -> None:
        allowed = _ALLOWED_TRANSITIONS.get(self.status, set())
        if new_status not in allowed:
            raise ValueError(
                f"illegal job status transition: {self.status.value} -> {new_status.value}"
            )
        self.status = new_status

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "kind": self.kind.value,
            "status": self.status.value,
            "created_at": self.created_at,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "error": self.error,
            "meta": dict(self.meta),
        }


class JobHandle:
    """Caller-side view of a submitted job.

    Awaiting the handle awaits the job's result::

        handle = scheduler.submit_list("a.zip")
        result = await handle
    """

    def __init__(self, job: Job, cancel: Callable[[str], bool]) -> None:
        self._job = job
        self._cancel = cancel

    @property
    def job_id(self) -> str:
        return self._job.job_id

    @property
    def kind(self) -> OperationKind:
        return self._job.kind

    @property
    def status(self) -> JobStatus:
        return self._job.status

    @property
    def future(self) -> asyncio.Future[OperationResult]:
        return self._job.future

    def cancel(self) -> bool:
        return self._cancel(self._job.job_id)

    def progress(self) -> ProgressSubscription:
        return self._job.progress.subscribe()

    def __await__(self) -> Generator[Any, None, OperationResult]:
        return self._job.future.__await__()

    def __repr__(self) -> str:
        return f"JobHandle(job_id={self.job_id!r}, kind={self.kind.value}, status={self.status.value})"


@dataclass(frozen=True, slots=True)
class SchedulerStatus:
    running: int
    queued: int
    total: int


@dataclass(frozen=True, slots=True)
class DecompressOptions:
    entries: Sequence[str] | None = None
    on_progress: ProgressCallback | None = None


@dataclass(frozen=True, slots=True)
class CompressOptions:
    level: CompressionLevel = CompressionLevel.FAST
    on_progress: ProgressCallback | None = None
    base_dir: str | Path | None = None


@dataclass(frozen=True, slots=True)
class UpdateOptions:
    on_progress: ProgressCallback | None = None
    base_dir: str | Path | None = None


@dataclass(frozen=True, slots=True)
class ExtractOptions:
    on_progress: ProgressCallback | None = None

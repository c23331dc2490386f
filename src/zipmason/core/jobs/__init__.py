from zipmason.core.jobs.model import (
    CompressOptions,
    DecompressOptions,
    ExtractOptions,
    Job,
    JobHandle,
    JobStatus,
    SchedulerStatus,
    UpdateOptions,
)
from zipmason.core.jobs.scheduler import (
    JobScheduler,
    destroy_scheduler,
    get_scheduler,
    has_scheduler,
)

__all__ = [
    "CompressOptions",
    "DecompressOptions",
    "ExtractOptions",
    "Job",
    "JobHandle",
    "JobScheduler",
    "JobStatus",
    "SchedulerStatus",
    "UpdateOptions",
    "destroy_scheduler",
    "get_scheduler",
    "has_scheduler",
]

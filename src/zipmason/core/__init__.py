"""zipmason core.

Orchestrates the external 7-Zip archiver: listing, extraction, compression
and in-place updates of ZIP archives with bounded concurrency.
"""

from zipmason.core.classify import classify_failure, exit_code_to_error_code
from zipmason.core.config import ConfigResolver, LoggingPolicy, SchedulerConfig
from zipmason.core.errors import (
    ArchiveError,
    ConfigError,
    CorruptArchiveError,
    EmptyArchiveError,
    EncryptedArchiveError,
    ErrorCode,
    ExecutableNotFoundError,
    InvalidPathError,
    MissingFilesError,
    OperationCancelledError,
    OperationInProgressError,
    PathTraversalError,
    SpawnFailedError,
    UnsupportedFormatError,
    ZipMasonError,
)
from zipmason.core.events import EventBus, get_event_bus
from zipmason.core.jobs import (
    CompressOptions,
    DecompressOptions,
    ExtractOptions,
    JobHandle,
    JobScheduler,
    JobStatus,
    SchedulerStatus,
    UpdateOptions,
    destroy_scheduler,
    get_scheduler,
    has_scheduler,
)
from zipmason.core.logging import (
    VerbosityLevel,
    apply_logging_policy,
    get_logger,
    get_verbosity,
    set_colors,
    set_verbosity,
)
from zipmason.core.models import (
    CompressionLevel,
    FileInfo,
    OperationKind,
    OperationResult,
    ProcessState,
    WorkerStatus,
)
from zipmason.core.paths import (
    is_safe_path,
    normalize_path,
    resolve_extract_path,
    validate_all_entries,
    validate_entry_path,
)
from zipmason.core.progress import ProgressCallback, ProgressEvent, ProgressSubscription
from zipmason.core.slt import SltParser, parse_slt, parse_slt_stream
from zipmason.core.worker import ProcessWorker

__all__ = [
    # Models
    "CompressionLevel",
    "FileInfo",
    "OperationKind",
    "OperationResult",
    "ProcessState",
    "WorkerStatus",
    # Worker
    "ProcessWorker",
    # Scheduler
    "JobScheduler",
    "JobHandle",
    "JobStatus",
    "SchedulerStatus",
    "DecompressOptions",
    "CompressOptions",
    "UpdateOptions",
    "ExtractOptions",
    "get_scheduler",
    "has_scheduler",
    "destroy_scheduler",
    # Progress
    "ProgressCallback",
    "ProgressEvent",
    "ProgressSubscription",
    # Parsing and validation
    "SltParser",
    "parse_slt",
    "parse_slt_stream",
    "validate_entry_path",
    "validate_all_entries",
    "resolve_extract_path",
    "is_safe_path",
    "normalize_path",
    "classify_failure",
    "exit_code_to_error_code",
    # Config
    "ConfigResolver",
    "LoggingPolicy",
    "SchedulerConfig",
    # Errors
    "ZipMasonError",
    "ConfigError",
    "ArchiveError",
    "ErrorCode",
    "InvalidPathError",
    "PathTraversalError",
    "EncryptedArchiveError",
    "CorruptArchiveError",
    "UnsupportedFormatError",
    "EmptyArchiveError",
    "MissingFilesError",
    "ExecutableNotFoundError",
    "SpawnFailedError",
    "OperationInProgressError",
    "OperationCancelledError",
    # Events
    "EventBus",
    "get_event_bus",
    # Logging
    "VerbosityLevel",
    "apply_logging_policy",
    "get_logger",
    "set_verbosity",
    "get_verbosity",
    "set_colors",
]

"""Error handling with friendly messages."""

from __future__ import annotations

from enum import StrEnum
from typing import Any


class ErrorCode(StrEnum):
    """Closed set of failure kinds. Callers branch on this, never on message text."""

    # Validation
    INVALID_PATH = "INVALID_PATH"
    PATH_TRAVERSAL = "PATH_TRAVERSAL"
    FILE_NOT_FOUND = "FILE_NOT_FOUND"
    DIRECTORY_NOT_FOUND = "DIRECTORY_NOT_FOUND"

    # Archive
    ENCRYPTED_ARCHIVE = "ENCRYPTED_ARCHIVE"
    CORRUPT_ARCHIVE = "CORRUPT_ARCHIVE"
    UNSUPPORTED_FORMAT = "UNSUPPORTED_FORMAT"
    EMPTY_ARCHIVE = "EMPTY_ARCHIVE"

    # Process
    EXECUTABLE_NOT_FOUND = "EXECUTABLE_NOT_FOUND"
    SPAWN_FAILED = "SPAWN_FAILED"

    # Operation
    OPERATION_IN_PROGRESS = "OPERATION_IN_PROGRESS"
    OPERATION_CANCELLED = "OPERATION_CANCELLED"

    # Environment (stderr patterns)
    PERMISSION_DENIED = "PERMISSION_DENIED"
    DISK_FULL = "DISK_FULL"
    FILE_IN_USE = "FILE_IN_USE"

    # Tool exit codes
    WARNING = "WARNING"  # 1
    FATAL_ERROR = "FATAL_ERROR"  # 2 and unknown codes
    COMMAND_LINE_ERROR = "COMMAND_LINE_ERROR"  # 7
    OUT_OF_MEMORY = "OUT_OF_MEMORY"  # 8
    USER_ABORTED = "USER_ABORTED"  # 255


class ZipMasonError(Exception):
    """Base exception for all zipmason errors."""

    def __init__(self, message: str, suggestion: str | None = None) -> None:
        self.message = message
        self.suggestion = suggestion
        super().__init__(message)

    def __str__(self) -> str:
        if self.suggestion:
            return f"{self.message}\nSuggestion: {self.suggestion}"
        return self.message


class ConfigError(ZipMasonError):
    """Configuration error."""

    pass


class ArchiveError(ZipMasonError):
    """Archive operation error carrying a stable error code."""

    def __init__(
        self,
        message: str,
        code: ErrorCode,
        details: dict[str, Any] | None = None,
        suggestion: str | None = None,
    ) -> None:
        super().__init__(message, suggestion)
        self.code = code
        self.details = dict(details or {})


class InvalidPathError(ArchiveError):
    """Entry path is malformed (for example empty)."""

    def __init__(self, entry_path: str, archive_path: str = "") -> None:
        super().__init__(
            f"Invalid archive entry path: {entry_path!r}",
            ErrorCode.INVALID_PATH,
            {"entry_path": entry_path, "archive_path": archive_path},
        )


class PathTraversalError(ArchiveError):
    """Entry path would escape the extraction directory."""

    def __init__(self, malicious_path: str, archive_path: str = "") -> None:
        super().__init__(
            f"Path traversal detected in archive entry: {malicious_path!r}",
            ErrorCode.PATH_TRAVERSAL,
            {"malicious_path": malicious_path, "archive_path": archive_path},
            "Do not extract archives from untrusted sources",
        )


class EncryptedArchiveError(ArchiveError):
    """Archive contains encrypted entries."""

    def __init__(self, archive_path: str, entry: str | None = None) -> None:
        super().__init__(
            f"Archive is encrypted and cannot be processed: {archive_path}",
            ErrorCode.ENCRYPTED_ARCHIVE,
            {"archive_path": archive_path, "entry": entry},
            "Decrypt the archive with a password-aware tool first",
        )


class CorruptArchiveError(ArchiveError):
    """Archive is corrupted or not an archive at all."""

    def __init__(self, archive_path: str, detail: str | None = None) -> None:
        suffix = f" ({detail})" if detail else ""
        super().__init__(
            f"Archive is corrupted: {archive_path}{suffix}",
            ErrorCode.CORRUPT_ARCHIVE,
            {"archive_path": archive_path, "detail": detail},
            "Try re-downloading or check file integrity",
        )


class UnsupportedFormatError(ArchiveError):
    """Archive extension is not supported."""

    def __init__(self, archive_path: str, extension: str) -> None:
        super().__init__(
            f"Unsupported archive format: {extension}. Only .zip is supported.",
            ErrorCode.UNSUPPORTED_FORMAT,
            {"archive_path": archive_path, "extension": extension},
        )


class EmptyArchiveError(ArchiveError):
    """Archive has no entries to extract."""

    def __init__(self, archive_path: str) -> None:
        super().__init__(
            f"Cannot decompress empty archive: {archive_path}",
            ErrorCode.EMPTY_ARCHIVE,
            {"archive_path": archive_path},
        )


class MissingFilesError(ArchiveError):
    """One or more input files do not exist."""

    def __init__(self, missing_files: list[str]) -> None:
        super().__init__(
            f"Source files not found: {', '.join(missing_files)}",
            ErrorCode.FILE_NOT_FOUND,
            {"missing_files": list(missing_files)},
        )
        self.missing_files = list(missing_files)


class ExecutableNotFoundError(ArchiveError):
    """Archiver executable does not exist."""

    def __init__(self, executable_path: str) -> None:
        super().__init__(
            f"7za executable not found at: {executable_path}",
            ErrorCode.EXECUTABLE_NOT_FOUND,
            {"executable_path": executable_path},
            "Install p7zip or set executable_path in the zipmason config",
        )


class SpawnFailedError(ArchiveError):
    """Archiver process could not be started."""

    def __init__(self, executable_path: str, reason: str) -> None:
        super().__init__(
            f"Failed to spawn 7za: {reason}",
            ErrorCode.SPAWN_FAILED,
            {"executable_path": executable_path, "reason": reason},
        )


class OperationInProgressError(ArchiveError):
    """Worker already runs an operation."""

    def __init__(self, current_operation: str) -> None:
        super().__init__(
            f"Cannot start new operation. A {current_operation} operation is already running.",
            ErrorCode.OPERATION_IN_PROGRESS,
            {"current_operation": current_operation},
            "Create a separate worker for concurrent operations",
        )


class OperationCancelledError(ArchiveError):
    """Operation or job was cancelled."""

    def __init__(self, message: str = "Operation cancelled", job_id: str | None = None) -> None:
        details = {"job_id": job_id} if job_id else None
        super().__init__(message, ErrorCode.OPERATION_CANCELLED, details)

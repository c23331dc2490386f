"""Map archiver exit status and diagnostics to typed errors.

7-Zip prints free-form English diagnostics on stderr. They are not a stable
contract (wording changes between releases and may be localized), so pattern
matching here is best effort. The exit-code table is the fallback that always
applies.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from zipmason.core.errors import (
    ArchiveError,
    CorruptArchiveError,
    EncryptedArchiveError,
    ErrorCode,
)

STDERR_EXCERPT_MAX = 200


@dataclass(frozen=True)
class StderrPattern:
    pattern: re.Pattern[str]
    code: ErrorCode
    message: str
    suggestion: str | None = None


def _p(expr: str) -> re.Pattern[str]:
    return re.compile(expr, re.IGNORECASE)


# First match wins. Password checks come before corruption because 7-Zip
# reports "Data Error in encrypted file. Wrong password?" for bad passwords.
# Patterns are whole 7-Zip phrases; stderr also echoes file names.
STDERR_PATTERNS: tuple[StderrPattern, ...] = (
    StderrPattern(
        _p(
            r"wrong password|can ?not open encrypted archive|data error in encrypted file"
            r"|crc failed in encrypted file|headers error in encrypted archive|enter password"
        ),
        ErrorCode.ENCRYPTED_ARCHIVE,
        "Archive is encrypted",
        "Decrypt the archive with a password-aware tool first",
    ),
    StderrPattern(
        _p(
            r"can ?not open (the )?file as (an )?archive|is not archive|headers error"
            r"|data error|crc failed|unexpected end of (archive|data)"
        ),
        ErrorCode.CORRUPT_ARCHIVE,
        "Archive is corrupted",
        "Try re-downloading or check file integrity",
    ),
    StderrPattern(
        _p(r"being used by another process|sharing violation|file is locked"),
        ErrorCode.FILE_IN_USE,
        "File is in use by another process",
        "Close other programs using the file and try again",
    ),
    StderrPattern(
        _p(r"access (is )?denied|permission denied|operation not permitted"),
        ErrorCode.PERMISSION_DENIED,
        "Permission denied",
        "Check file and directory permissions",
    ),
    StderrPattern(
        _p(r"no space left|not enough space|disk (is )?full"),
        ErrorCode.DISK_FULL,
        "Disk full",
        "Free up space and try again",
    ),
    StderrPattern(
        _p(r"can ?not find (the )?(file|path)|no such file or directory|system cannot find"),
        ErrorCode.FILE_NOT_FOUND,
        "File not found",
    ),
)

_EXIT_CODES: dict[int, ErrorCode] = {
    1: ErrorCode.WARNING,
    2: ErrorCode.FATAL_ERROR,
    7: ErrorCode.COMMAND_LINE_ERROR,
    8: ErrorCode.OUT_OF_MEMORY,
    255: ErrorCode.USER_ABORTED,
}

_DEFAULT_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.WARNING: "Operation completed with warnings",
    ErrorCode.FATAL_ERROR: "Fatal error occurred during operation",
    ErrorCode.COMMAND_LINE_ERROR: "Invalid command line arguments",
    ErrorCode.OUT_OF_MEMORY: "Out of memory",
    ErrorCode.USER_ABORTED: "Operation was aborted",
}


def exit_code_to_error_code(exit_code: int) -> ErrorCode | None:
    """Return the error code for an archiver exit code (None for success)."""
    if exit_code == 0:
        return None
    return _EXIT_CODES.get(exit_code, ErrorCode.FATAL_ERROR)


def stderr_excerpt(stderr: str, limit: int = STDERR_EXCERPT_MAX) -> str:
    text = " ".join(stderr.split())
    if len(text) <= limit:
        return text
    return text[: max(0, limit - 3)] + "..."


def match_stderr(stderr: str) -> StderrPattern | None:
    if not stderr:
        return None
    for entry in STDERR_PATTERNS:
        if entry.pattern.search(stderr):
            return entry
    return None


def classify_failure(
    exit_code: int, stderr: str, archive_path: str | None = None
) -> ArchiveError | None:
    """Convert an archiver exit status into a typed error.

    Args:
        exit_code: Process exit code
        stderr: Captured stderr text
        archive_path: Archive the operation was working on (error context)

    Returns:
        None when exit_code is 0, otherwise the classified ArchiveError
    """
    code = exit_code_to_error_code(exit_code)
    if code is None:
        return None

    details: dict[str, object] = {"exit_code": exit_code}
    if archive_path is not None:
        details["archive_path"] = archive_path

    matched = match_stderr(stderr)
    if matched is not None:
        excerpt = stderr_excerpt(stderr)
        details["stderr"] = excerpt
        error: ArchiveError
        if matched.code == ErrorCode.ENCRYPTED_ARCHIVE:
            error = EncryptedArchiveError(archive_path or "(unknown archive)")
        elif matched.code == ErrorCode.CORRUPT_ARCHIVE:
            error = CorruptArchiveError(archive_path or "(unknown archive)", excerpt)
        else:
            error = ArchiveError(matched.message, matched.code, None, matched.suggestion)
        error.details.update(details)
        return error

    message = _DEFAULT_MESSAGES[code]
    if stderr.strip():
        excerpt = stderr_excerpt(stderr)
        details["stderr"] = excerpt
        message = f"{message}: {excerpt}"
    return ArchiveError(message, code, details)

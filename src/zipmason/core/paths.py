"""Archive entry path validation.

Every entry of an archive listing must pass validate_entry_path() before any
extraction process runs. A single bad entry rejects the whole archive.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from pathlib import Path, PurePosixPath, PureWindowsPath

from zipmason.core.errors import InvalidPathError, PathTraversalError
from zipmason.core.models import FileInfo

_DRIVE_RE = re.compile(r"^[A-Za-z]:")


def _is_absolute(entry_path: str) -> bool:
    if entry_path.startswith(("/", "\\")):
        return True
    if _DRIVE_RE.match(entry_path):
        # Covers C:\x, C:/x and drive-relative C:x
        return True
    return PurePosixPath(entry_path).is_absolute() or PureWindowsPath(entry_path).is_absolute()


def _has_parent_segment(entry_path: str) -> bool:
    return any(segment == ".." for segment in re.split(r"[\\/]", entry_path))


def validate_entry_path(entry_path: str, archive_path: str = "") -> None:
    """Reject entry paths that are unsafe to join onto an extraction directory.

    Raises:
        InvalidPathError: Path is empty
        PathTraversalError: Absolute path, parent-directory segment or NUL byte
    """
    if not entry_path:
        raise InvalidPathError(entry_path, archive_path)
    if "\0" in entry_path:
        raise PathTraversalError(entry_path, archive_path)
    if _is_absolute(entry_path):
        raise PathTraversalError(entry_path, archive_path)
    if _has_parent_segment(entry_path):
        raise PathTraversalError(entry_path, archive_path)


def validate_all_entries(entries: Iterable[FileInfo], archive_path: str = "") -> None:
    for entry in entries:
        validate_entry_path(entry.filename, archive_path)


def is_safe_path(entry_path: str) -> bool:
    try:
        validate_entry_path(entry_path)
    except (InvalidPathError, PathTraversalError):
        return False
    return True


def normalize_path(path: str | Path) -> str:
    """Return a normalized path using forward slashes."""
    text = str(path).replace("\\", "/")
    if not text:
        return text
    prefix = "/" if text.startswith("/") else ""
    parts = [p for p in text.split("/") if p not in ("", ".")]
    return prefix + "/".join(parts) if parts else (prefix or ".")


def resolve_extract_path(
    base_path: str | Path, relative_path: str, archive_path: str = ""
) -> Path:
    """Join an entry path onto the extraction base, refusing anything that escapes it."""
    validate_entry_path(relative_path, archive_path)

    base = Path(base_path).resolve()
    candidate = (base / relative_path).resolve()
    if candidate != base and base not in candidate.parents:
        raise PathTraversalError(relative_path, archive_path)
    return candidate

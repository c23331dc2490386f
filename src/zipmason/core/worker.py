"""ProcessWorker - runs one archiver operation at a time.

A worker drives the external archiver (``7za``) as a child process:

- the argument vector is passed straight to the OS, never through a shell
- stdin is closed right after spawn so a password prompt can never block
- stdout is streamed for progress and listing output
- stderr is collected and, together with the exit code, classified into
  typed errors; exit code 0 is the only success signal

State machine::

    IDLE -> PENDING -> RUNNING -> SUCCESS
                  \\          \\-> ERROR
                   \\-> ERROR
    SUCCESS | ERROR -> PENDING   (next operation)

Create one worker per concurrent operation; JobScheduler does this for you.
"""

from __future__ import annotations

import asyncio
import codecs
import contextlib
import re
import shlex
import time
from collections.abc import Callable, Coroutine, Iterator, Sequence
from datetime import datetime
from pathlib import Path
from typing import Any

from zipmason.core.classify import classify_failure
from zipmason.core.errors import (
    ArchiveError,
    EmptyArchiveError,
    EncryptedArchiveError,
    ErrorCode,
    ExecutableNotFoundError,
    MissingFilesError,
    OperationCancelledError,
    OperationInProgressError,
    SpawnFailedError,
    UnsupportedFormatError,
    ZipMasonError,
)
from zipmason.core.logging import get_logger
from zipmason.core.models import (
    ACTIVE_STATES,
    CompressionLevel,
    FileInfo,
    OperationKind,
    OperationResult,
    ProcessState,
    WorkerStatus,
    check_transition,
)
from zipmason.core.paths import normalize_path, validate_all_entries, validate_entry_path
from zipmason.core.progress import ProgressCallback
from zipmason.core.slt import SltParser, find_encrypted_file

_logger = get_logger(__name__)

_PERCENT_RE = re.compile(r"(\d+)%")
_READ_CHUNK = 4096


def scan_percent(text: str) -> int | None:
    """Return the last ``N%`` figure in a chunk of progress output, clamped to 0..100."""
    matches = _PERCENT_RE.findall(text)
    if not matches:
        return None
    return max(0, min(100, int(matches[-1])))


class _ProgressTracker:
    """Turns raw progress output into deduplicated callback invocations."""

    def __init__(self, label: str, on_progress: ProgressCallback | None) -> None:
        self.label = label
        self.on_progress = on_progress
        self.percent = 0
        self.last_message = ""

    def feed(self, text: str) -> None:
        found = scan_percent(text)
        if found is not None:
            self.percent = found
        message = f"{self.label}...{self.percent}%"
        if message != self.last_message:
            self.last_message = message
            if self.on_progress is not None:
                self.on_progress(self.percent, message)


async def _read_all(stream: asyncio.StreamReader | None) -> bytes:
    if stream is None:
        return b""
    return await stream.read()


class ProcessWorker:
    """Executes archive operations through the external archiver."""

    def __init__(self, executable_path: str = "7za") -> None:
        self.executable_path = executable_path

        self._state = ProcessState.IDLE
        self._kind = OperationKind.UNDEFINED
        self._message = ""
        self._process: asyncio.subprocess.Process | None = None
        self._cancelled = False
        self._started_at = 0.0
        self._archive_path = ""

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def state(self) -> ProcessState:
        return self._state

    @property
    def kind(self) -> OperationKind:
        return self._kind

    def status(self) -> WorkerStatus:
        """Snapshot of the current state. Never blocks."""
        return WorkerStatus(state=self._state, kind=self._kind, message=self._message)

    def list(self, archive_path: str | Path) -> Coroutine[Any, Any, OperationResult]:
        """List all entries of an archive.

        Raises:
            OperationInProgressError: Worker is busy (raised on call, not on await)
            EncryptedArchiveError: Any entry is encrypted
            ArchiveError: Archive missing, not a .zip, or archiver failure
        """
        self._check_idle()
        return self._list(archive_path)

    def decompress(
        self,
        archive_path: str | Path,
        target_path: str | Path,
        entries: Sequence[str] | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> Coroutine[Any, Any, OperationResult]:
        """Extract an archive (or selected entries) into target_path.

        Every entry of the archive is validated before the extraction process
        is started; a single unsafe entry aborts the whole operation and
        nothing is written.
        """
        self._check_idle()
        return self._extract(
            OperationKind.DECOMPRESS, archive_path, target_path, entries, on_progress
        )

    def extract_single(
        self,
        archive_path: str | Path,
        entry_path: str,
        dest_path: str | Path,
        on_progress: ProgressCallback | None = None,
    ) -> Coroutine[Any, Any, OperationResult]:
        self._check_idle()
        return self._extract(
            OperationKind.EXTRACT_SINGLE, archive_path, dest_path, [entry_path], on_progress
        )

    def compress(
        self,
        source_files: Sequence[str | Path],
        archive_path: str | Path,
        level: CompressionLevel | int = CompressionLevel.FAST,
        on_progress: ProgressCallback | None = None,
        base_dir: str | Path | None = None,
    ) -> Coroutine[Any, Any, OperationResult]:
        """Create a ZIP archive from source files.

        Source paths are handed to the archiver exactly as given and the
        archiver runs inside base_dir (default: current directory), so a
        relative source ``sub/b.txt`` is stored as ``sub/b.txt``.

        Raises:
            UnsupportedFormatError: archive_path does not end in .zip
            MissingFilesError: One or more sources do not exist
        """
        self._check_idle()
        return self._compress(
            source_files, archive_path, CompressionLevel(level), on_progress, base_dir
        )

    def update(
        self,
        archive_path: str | Path,
        source_files: Sequence[str | Path],
        on_progress: ProgressCallback | None = None,
        base_dir: str | Path | None = None,
    ) -> Coroutine[Any, Any, OperationResult]:
        """Add or refresh files in an existing archive."""
        self._check_idle()
        return self._update(archive_path, source_files, on_progress, base_dir)


    def cancel(self) -> None:
        """Cancel the running operation. Safe to call at any time, any number of times."""
        if self._kind != OperationKind.UNDEFINED:
            self._cancelled = True

        proc = self._process
        self._process = None
        if proc is not None and proc.returncode is None:
            _logger.debug(f"terminating archiver pid={proc.pid}")
            with contextlib.suppress(ProcessLookupError):
                proc.terminate()

        if self._state in ACTIVE_STATES:
            self._transition(ProcessState.ERROR, "Operation cancelled")

    def validate_entry_paths(self, entries: Sequence[FileInfo]) -> None:
        """Validate entries against the archive this worker last worked on."""
        validate_all_entries(entries, self._archive_path)

    # ------------------------------------------------------------------
    # Operation lifecycle
    # ------------------------------------------------------------------

    def _check_idle(self) -> None:
        if self._kind != OperationKind.UNDEFINED:
            raise OperationInProgressError(self._kind.value)

    @contextlib.contextmanager
    def _operation(self, kind: OperationKind, message: str) -> Iterator[None]:
        # Checked again: a coroutine may be awaited long after it was created.
        self._check_idle()

        self._transition(ProcessState.PENDING, message)
        self._kind = kind
        self._cancelled = False
        self._started_at = time.monotonic()
        try:
            yield
        except Exception as e:
            text = e.message if isinstance(e, ZipMasonError) else str(e)
            _logger.warning(f"{kind.value} failed: {text}")
            if self._state in ACTIVE_STATES:
                self._transition(ProcessState.ERROR, text)
            raise
        finally:
            self._release()

    def _release(self) -> None:
        proc = self._process
        self._process = None
        if proc is not None and proc.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                proc.kill()
        if self._state in ACTIVE_STATES:
            # Reached when the awaiting task itself was cancelled.
            self._transition(ProcessState.ERROR, "Operation aborted")
        self._kind = OperationKind.UNDEFINED

    def _transition(self, new_state: ProcessState, message: str | None = None) -> None:
        check_transition(self._state, new_state)
        self._state = new_state
        if message is not None:
            self._message = message

    def _check_cancelled(self) -> None:
        if self._cancelled:
            raise OperationCancelledError(f"{self._kind.value} operation cancelled")

    def _enter_running(self, message: str) -> None:
        self._check_cancelled()
        self._transition(ProcessState.RUNNING, message)

    def _succeed(
        self,
        message: str,
        files: Sequence[FileInfo],
        base_path: Path,
        exit_code: int,
    ) -> OperationResult:
        elapsed = time.monotonic() - self._started_at
        self._transition(ProcessState.SUCCESS, message)
        _logger.verbose(f"{message} ({elapsed:.2f}s)")
        return OperationResult(
            success=True,
            elapsed=elapsed,
            kind=self._kind,
            message=message,
            files=tuple(files),
            base_path=normalize_path(base_path),
            exit_code=exit_code,
        )

    # ------------------------------------------------------------------
    # Operation bodies
    # ------------------------------------------------------------------

    async def _list(self, archive_path: str | Path) -> OperationResult:
        with self._operation(OperationKind.LIST, "Validating archive"):
            archive = self._verify_archive(archive_path)
            self._enter_running("Listing archive contents...")

            files = await self._list_entries(archive)

            return self._succeed(
                f"Listed {len(files)} entries in '{archive.name}'.",
                files,
                archive.parent,
                0,
            )

    async def _compress(
        self,
        source_files: Sequence[str | Path],
        archive_path: str | Path,
        level: CompressionLevel,
        on_progress: ProgressCallback | None,
        base_dir: str | Path | None,
    ) -> OperationResult:
        with self._operation(OperationKind.COMPRESS, "Validating sources"):
            archive = Path(archive_path).expanduser().resolve()
            self._archive_path = str(archive)
            if archive.suffix.lower() != ".zip":
                raise UnsupportedFormatError(str(archive), archive.suffix.lower() or "(none)")

            base = self._resolve_base_dir(base_dir)
            sources = self._verify_sources(source_files, base)
            self._ensure_directory(archive.parent)

            if archive.exists() and on_progress is not None:
                on_progress(0, f"Overwriting existing archive: {archive.name}")

            self._enter_running(f"Compressing to '{archive.name}'")
            tracker = _ProgressTracker(f"Compressing '{archive.name}'", on_progress)
            # "--" ends switch parsing so a source named "-sdel" stays a file name.
            args = ["a", "-tzip", f"-mx{int(level)}", "-bsp1", "-bso0", "--", str(archive)]
            args.extend(sources)
            exit_code = await self._run_checked(args, archive, tracker.feed, cwd=base)

            message = f"Compressed {self._describe_sources(sources)} to '{archive.name}'."
            if on_progress is not None:
                on_progress(100, message)
            return self._succeed(message, [self._stat_archive(archive)], archive.parent, exit_code)

    async def _update(
        self,
        archive_path: str | Path,
        source_files: Sequence[str | Path],
        on_progress: ProgressCallback | None,
        base_dir: str | Path | None,
    ) -> OperationResult:
        with self._operation(OperationKind.UPDATE, "Validating archive"):
            archive = self._verify_archive(archive_path)
            base = self._resolve_base_dir(base_dir)
            sources = self._verify_sources(source_files, base)

            self._enter_running(f"Updating '{archive.name}'")
            args = ["u", "-tzip", "-bsp1", "-bso0", "--", str(archive), *sources]
            exit_code = await self._run_checked(args, archive, None, cwd=base)

            message = f"Updated '{archive.name}' with {self._describe_sources(sources)}."
            if on_progress is not None:
                on_progress(100, message)
            return self._succeed(message, [self._stat_archive(archive)], archive.parent, exit_code)

    async def _extract(
        self,
        kind: OperationKind,
        archive_path: str | Path,
        target_path: str | Path,
        entries: Sequence[str] | None,
        on_progress: ProgressCallback | None,
    ) -> OperationResult:
        with self._operation(kind, "Validating archive"):
            archive = self._verify_archive(archive_path)
            target = Path(target_path).expanduser().resolve()
            self._ensure_directory(target)

            files = await self._list_entries(archive)
            if not files:
                raise EmptyArchiveError(str(archive))

            # Nothing is extracted unless every entry is safe.
            validate_all_entries(files, str(archive))

            selected = list(entries or [])
            if selected:
                files = self._select_entries(files, selected, archive)

            self._enter_running(f"Extracting '{archive.name}' to '{target_path}'")
            tracker = _ProgressTracker(f"Extracting '{archive.name}'", on_progress)
            args = ["x", "-aoa", "-bsp1", "-bso0", f"-o{target}", "--", str(archive), *selected]
            exit_code = await self._run_checked(args, archive, tracker.feed)

            if on_progress is not None:
                on_progress(100, f"Extracted '{archive.name}'.")
            return self._succeed(
                f"Extracted '{archive.name}' to '{target_path}'.", files, target, exit_code
            )

    def _select_entries(
        self, files: list[FileInfo], selected: list[str], archive: Path
    ) -> list[FileInfo]:
        """Restrict a listing to requested entries (exact names or directory prefixes)."""
        for entry in selected:
            validate_entry_path(entry, str(archive))

        wanted = [normalize_path(e).rstrip("/") for e in selected]
        missing: list[str] = []
        for entry, norm in zip(selected, wanted, strict=True):
            if not any(self._entry_matches(f.filename, norm) for f in files):
                missing.append(entry)
        if missing:
            raise ArchiveError(
                f"Entries not found in archive '{archive.name}': {', '.join(missing)}",
                ErrorCode.FILE_NOT_FOUND,
                {"archive_path": str(archive), "missing_entries": missing},
            )

        return [f for f in files if any(self._entry_matches(f.filename, w) for w in wanted)]

    @staticmethod
    def _entry_matches(filename: str, wanted: str) -> bool:
        name = normalize_path(filename)
        return name == wanted or name.startswith(wanted + "/")

    async def _list_entries(self, archive: Path) -> list[FileInfo]:
        parser = SltParser()
        exit_code, stderr = await self._run_tool(["l", "-slt", "--", str(archive)], parser.feed)
        parser.close()
        self._check_cancelled()

        error = classify_failure(exit_code, stderr, str(archive))
        if error is not None:
            raise error

        files = parser.files
        encrypted = find_encrypted_file(files)
        if encrypted is not None:
            raise EncryptedArchiveError(str(archive), encrypted.filename)
        return files

    # ------------------------------------------------------------------
    # Process handling
    # ------------------------------------------------------------------

    async def _run_checked(
        self,
        args: list[str],
        archive: Path,
        on_stdout: Callable[[str], None] | None,
        cwd: Path | None = None,
    ) -> int:
        exit_code, stderr = await self._run_tool(args, on_stdout, cwd=cwd)
        self._check_cancelled()
        error = classify_failure(exit_code, stderr, str(archive))
        if error is not None:
            raise error
        return exit_code

    async def _run_tool(
        self,
        args: list[str],
        on_stdout: Callable[[str], None] | None = None,
        cwd: Path | None = None,
    ) -> tuple[int, str]:
        """Spawn the archiver, stream stdout to on_stdout and wait for exit.

        Returns:
            (exit_code, stderr_text)
        """
        self._check_cancelled()

        argv = [self.executable_path, *args]
        _logger.debug(f"spawn: {shlex.join(argv)}" + (f" (cwd={cwd})" if cwd else ""))
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(cwd) if cwd is not None else None,
            )
        except FileNotFoundError as e:
            raise ExecutableNotFoundError(self.executable_path) from e
        except OSError as e:
            raise SpawnFailedError(self.executable_path, str(e)) from e

        self._process = proc
        if self._cancelled:
            with contextlib.suppress(ProcessLookupError):
                proc.terminate()

        if proc.stdin is not None:
            proc.stdin.close()

        stderr_task = asyncio.create_task(_read_all(proc.stderr))
        try:
            decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
            if proc.stdout is not None:
                while True:
                    chunk = await proc.stdout.read(_READ_CHUNK)
                    if not chunk:
                        break
                    text = decoder.decode(chunk)
                    if text and on_stdout is not None:
                        on_stdout(text)
            tail = decoder.decode(b"", final=True)
            if tail and on_stdout is not None:
                on_stdout(tail)

            exit_code = await proc.wait()
            stderr = (await stderr_task).decode("utf-8", errors="replace")
        finally:
            if not stderr_task.done():
                stderr_task.cancel()
            if proc.returncode is None:
                with contextlib.suppress(ProcessLookupError):
                    proc.kill()
            if self._process is proc:
                self._process = None

        _logger.debug(f"archiver exited with code {exit_code}")
        return exit_code, stderr

    # ------------------------------------------------------------------
    # Filesystem checks
    # ------------------------------------------------------------------

    def _verify_archive(self, archive_path: str | Path) -> Path:
        archive = Path(archive_path).expanduser().resolve()
        self._archive_path = str(archive)

        if not archive.is_file():
            raise ArchiveError(
                f"Archive not found: {archive}",
                ErrorCode.FILE_NOT_FOUND,
                {"archive_path": str(archive)},
            )
        if archive.suffix.lower() != ".zip":
            raise UnsupportedFormatError(str(archive), archive.suffix.lower() or "(none)")
        return archive

    @staticmethod
    def _resolve_base_dir(base_dir: str | Path | None) -> Path:
        base = Path(base_dir).expanduser().resolve() if base_dir is not None else Path.cwd()
        if not base.is_dir():
            raise ArchiveError(
                f"Base directory not found: {base}",
                ErrorCode.DIRECTORY_NOT_FOUND,
                {"directory_path": str(base)},
            )
        return base

    @staticmethod
    def _verify_sources(source_files: Sequence[str | Path], base: Path) -> list[str]:
        sources = [str(s) for s in source_files]
        if not sources:
            raise ArchiveError(
                "No source files given",
                ErrorCode.FILE_NOT_FOUND,
                {"missing_files": []},
            )
        missing = [s for s in sources if not (base / Path(s).expanduser()).exists()]
        if missing:
            raise MissingFilesError(missing)
        return sources

    @staticmethod
    def _ensure_directory(directory: Path) -> None:
        if directory.is_dir():
            return
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ArchiveError(
                f"Failed to create directory: {directory}",
                ErrorCode.DIRECTORY_NOT_FOUND,
                {"directory_path": str(directory), "error": str(e)},
            ) from e

    @staticmethod
    def _stat_archive(archive: Path) -> FileInfo:
        st = archive.stat()
        return FileInfo(
            filename=archive.name,
            size=st.st_size,
            date=datetime.fromtimestamp(st.st_mtime),
        )

    @staticmethod
    def _describe_sources(sources: Sequence[str]) -> str:
        if len(sources) == 1:
            return f"'{Path(sources[0]).name}'"
        return f"{len(sources)} files"

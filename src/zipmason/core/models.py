from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum, StrEnum


class CompressionLevel(IntEnum):
    """Compression strength, passed to the archiver as -mx<level>."""

    STORE = 0  # no compression, copy only
    FAST = 1
    NORMAL = 5  # balanced


class OperationKind(StrEnum):
    UNDEFINED = "undefined"
    COMPRESS = "compress"
    DECOMPRESS = "decompress"
    LIST = "list"
    EXTRACT_SINGLE = "extract_single"
    UPDATE = "update"


class ProcessState(StrEnum):
    IDLE = "idle"
    PENDING = "pending"  # validating inputs
    RUNNING = "running"  # main process attached
    SUCCESS = "success"
    ERROR = "error"


TERMINAL_STATES = frozenset({ProcessState.SUCCESS, ProcessState.ERROR})
ACTIVE_STATES = frozenset({ProcessState.PENDING, ProcessState.RUNNING})

# Terminal states end one operation; the worker may then accept the next one.
_ALLOWED_TRANSITIONS: dict[ProcessState, set[ProcessState]] = {
    ProcessState.IDLE: {ProcessState.PENDING},
    ProcessState.PENDING: {ProcessState.RUNNING, ProcessState.ERROR},
    ProcessState.RUNNING: {ProcessState.SUCCESS, ProcessState.ERROR},
    ProcessState.SUCCESS: {ProcessState.PENDING},
    ProcessState.ERROR: {ProcessState.PENDING},
}


def check_transition(current: ProcessState, new_state: ProcessState) -> None:
    allowed = _ALLOWED_TRANSITIONS.get(current, set())
    if new_state not in allowed:
        raise ValueError(
            f"illegal process state transition: {current.value} -> {new_state.value}"
        )


@dataclass(frozen=True, slots=True)
class FileInfo:
    """One archive entry as reported by the archiver listing."""

    filename: str
    size: int
    date: datetime
    compressed_size: int | None = None
    encrypted: bool = False
    crc: str | None = None


@dataclass(frozen=True, slots=True)
class OperationResult:
    success: bool
    elapsed: float  # seconds
    kind: OperationKind
    message: str
    files: tuple[FileInfo, ...] = field(default_factory=tuple)
    base_path: str | None = None
    exit_code: int | None = None

    @property
    def filenames(self) -> list[str]:
        return [f.filename for f in self.files]


@dataclass(frozen=True, slots=True)
class WorkerStatus:
    state: ProcessState
    kind: OperationKind
    message: str

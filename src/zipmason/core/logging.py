"""Centralized logging for zipmason.

Four verbosity levels:
- QUIET (0): Warnings + errors
- NORMAL (1): Info + warnings + errors
- VERBOSE (2): Detailed info (per-operation outcomes)
- DEBUG (3): Everything, including archiver argv

Usage:
    from zipmason.core.logging import get_logger, set_verbosity

    log = get_logger(__name__)
    set_verbosity(2)  # VERBOSE

    log.debug("spawn: 7za l -slt /tmp/a.zip")
    log.verbose("Listed 3 entries")
    log.info("job queued")
    log.warning("job cancelled")
    log.error("job failed")
"""

from __future__ import annotations

import sys
from datetime import datetime
from enum import IntEnum
from pathlib import Path
from typing import TextIO

from zipmason.core.config import LoggingPolicy
from zipmason.core.log_bus import LogRecord, get_log_bus


class VerbosityLevel(IntEnum):
    QUIET = 0  # Warnings + errors
    NORMAL = 1  # Info + warnings + errors
    VERBOSE = 2  # Detailed info
    DEBUG = 3  # Everything


_VERBOSITY: VerbosityLevel = VerbosityLevel.NORMAL

_USE_COLORS: bool = True


def set_verbosity(level: int | VerbosityLevel) -> None:
    """Set global verbosity level.

    Args:
        level: Verbosity level (0-3 or VerbosityLevel enum)
    """
    global _VERBOSITY

    if isinstance(level, int):
        level = VerbosityLevel(level)

    _VERBOSITY = level


def get_verbosity() -> VerbosityLevel:
    return _VERBOSITY


def apply_logging_policy(policy: LoggingPolicy) -> None:
    """Apply a resolved LoggingPolicy to the global verbosity."""
    if policy.level_name == "debug":
        set_verbosity(VerbosityLevel.DEBUG)
    elif policy.level_name == "verbose":
        set_verbosity(VerbosityLevel.VERBOSE)
    elif policy.emit_info or policy.emit_progress:
        set_verbosity(VerbosityLevel.NORMAL)
    else:
        set_verbosity(VerbosityLevel.QUIET)


def set_colors(enabled: bool) -> None:
    """Enable or disable colored console output."""
    global _USE_COLORS
    _USE_COLORS = enabled


class LogFileSink:
    """Appends published records to a text file, one timestamped line each.

    Sees exactly what the console sees; the verbosity filter applies first.
    """

    def __init__(self, path: Path | str):
        self.path = Path(path).expanduser()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._file: TextIO | None = self.path.open("a", encoding="utf-8")

    def __call__(self, record: LogRecord) -> None:
        if self._file is None:
            return
        stamp = datetime.now().isoformat(timespec="seconds")
        self._file.write(f"{stamp} {record.plain} ({record.logger_name})\n")
        self._file.flush()

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None


def attach_log_file(path: Path | str) -> LogFileSink:
    """Start copying log output to path (appending)."""
    sink = LogFileSink(path)
    get_log_bus().subscribe(sink)
    return sink


def detach_log_file(sink: LogFileSink) -> None:
    get_log_bus().unsubscribe(sink)
    sink.close()


class ZipMasonLogger:
    """Logger with verbosity support."""

    # ANSI color codes
    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "VERBOSE": "\033[34m",  # Blue
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "RESET": "\033[0m",
    }

    def __init__(self, name: str):
        self.name = name

    def _should_log(self, level: VerbosityLevel) -> bool:
        return level <= _VERBOSITY

    def _format_message(self, level: str, message: str) -> str:
        if _USE_COLORS and sys.stderr.isatty():
            color = self.COLORS.get(level, "")
            reset = self.COLORS["RESET"]
            return f"{color}[{level.lower()}]{reset} {message}"
        return f"[{level.lower()}] {message}"

    def _emit(self, level_name: str, message: str) -> None:
        record = LogRecord(level_name=level_name, message=message, logger_name=self.name)
        get_log_bus().publish(record)

        # Console output goes to stderr; stdout belongs to command results.
        print(self._format_message(level_name, message), file=sys.stderr)

    def _log(self, level: VerbosityLevel, level_name: str, message: str) -> None:
        if not self._should_log(level):
            return
        self._emit(level_name, message)

    def debug(self, message: str) -> None:
        self._log(VerbosityLevel.DEBUG, "DEBUG", message)

    def verbose(self, message: str) -> None:
        self._log(VerbosityLevel.VERBOSE, "VERBOSE", message)

    def info(self, message: str) -> None:
        self._log(VerbosityLevel.NORMAL, "INFO", message)

    def warning(self, message: str) -> None:
        self._log(VerbosityLevel.QUIET, "WARNING", message)

    def error(self, message: str) -> None:
        """Log error message (always shown)."""
        self._emit("ERROR", message)


_LOGGERS: dict[str, ZipMasonLogger] = {}


def get_logger(name: str = __name__) -> ZipMasonLogger:
    """Get logger instance for module.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Logger instance
    """
    if name not in _LOGGERS:
        _LOGGERS[name] = ZipMasonLogger(name)

    return _LOGGERS[name]

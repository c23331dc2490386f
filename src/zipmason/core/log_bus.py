"""Fan-out of log records to sinks.

Every record that passes the verbosity filter is published here before it
is printed. Sinks (the ``--log-file`` writer, tests) subscribe either to all
levels or to a subset. A sink that raises is reported on stderr and skipped;
it never breaks the caller that logged.
"""

from __future__ import annotations

import contextlib
import sys
import traceback
from collections.abc import Callable, Iterable
from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class LogRecord:
    level_name: str  # DEBUG | VERBOSE | INFO | WARNING | ERROR
    message: str
    logger_name: str

    @property
    def plain(self) -> str:
        """Uncolored console form, e.g. ``[info] job queued``."""
        return f"[{self.level_name.lower()}] {self.message}"


LogSink = Callable[[LogRecord], None]


class LogBus:
    def __init__(self) -> None:
        # None means every level.
        self._sinks: list[tuple[LogSink, frozenset[str] | None]] = []

    def subscribe(self, sink: LogSink, levels: Iterable[str] | None = None) -> None:
        wanted = None if levels is None else frozenset(level.upper() for level in levels)
        self._sinks.append((sink, wanted))

    def unsubscribe(self, sink: LogSink) -> None:
        """Remove every registration of sink. Unknown sinks are ignored."""
        self._sinks = [(s, levels) for s, levels in self._sinks if s != sink]

    def publish(self, record: LogRecord) -> None:
        for sink, levels in list(self._sinks):
            if levels is None or record.level_name in levels:
                self._deliver(sink, record)

    def clear(self) -> None:
        self._sinks.clear()

    @staticmethod
    def _deliver(sink: LogSink, record: LogRecord) -> None:
        try:
            sink(record)
        except Exception:
            # Reporting through the logger would publish again.
            text = f"log sink {sink!r} raised; record dropped\n" + traceback.format_exc()
            with contextlib.suppress(Exception):
                sys.stderr.write(text)


_LOG_BUS: LogBus | None = None


def get_log_bus() -> LogBus:
    global _LOG_BUS
    if _LOG_BUS is None:
        _LOG_BUS = LogBus()
    return _LOG_BUS

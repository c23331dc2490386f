"""Parser for the archiver's technical listing format (``7za l -slt``).

The listing is a sequence of ``key = value`` blocks separated by blank lines::

    Path = folder/file.txt
    Size = 12345
    Packed Size = 9876
    Modified = 2024-01-15 10:30:00
    Attributes = A
    CRC = ABCD1234
    Encrypted = -

Before the entries the archiver prints a header block describing the archive
itself (it carries a ``Type`` key) followed by a ``----------`` separator.
Header blocks, directories and blocks without a path are dropped.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from datetime import datetime

from zipmason.core.models import FileInfo

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _parse_int(value: str | None) -> int | None:
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def _parse_date(value: str | None) -> datetime:
    if value:
        # Some archiver builds append fractional seconds; the layout prefix is fixed.
        try:
            return datetime.strptime(value.strip()[:19], DATE_FORMAT)
        except ValueError:
            pass
    return datetime.now()


def _is_directory(block: dict[str, str]) -> bool:
    if block.get("Folder") == "+":
        return True
    attrs = block.get("Attributes", "").split()
    # First token holds the Windows attribute letters; a unix mode may follow.
    return bool(attrs) and "D" in attrs[0]


def block_to_file_info(block: dict[str, str]) -> FileInfo | None:
    path = block.get("Path")
    if not path:
        return None
    if "Type" in block:
        return None
    if _is_directory(block):
        return None

    return FileInfo(
        filename=path,
        size=_parse_int(block.get("Size")) or 0,
        date=_parse_date(block.get("Modified")),
        compressed_size=_parse_int(block.get("Packed Size")),
        encrypted=block.get("Encrypted") == "+",
        crc=block.get("CRC") or None,
    )


class SltParser:
    """Incremental parser.

    Feed arbitrary text chunks as they arrive; partial lines are buffered
    until their newline shows up. Call close() once the stream ended.
    """

    def __init__(self) -> None:
        self._block: dict[str, str] = {}
        self._tail = ""
        self._files: list[FileInfo] = []

    @property
    def files(self) -> list[FileInfo]:
        return list(self._files)

    def feed(self, chunk: str) -> list[FileInfo]:
        """Consume a chunk of output. Returns entries completed by this chunk."""
        lines = (self._tail + chunk).split("\n")
        self._tail = lines.pop()
        completed: list[FileInfo] = []
        for line in lines:
            info = self.feed_line(line)
            if info is not None:
                completed.append(info)
        return completed

    def feed_line(self, line: str) -> FileInfo | None:
        s = line.strip()
        if not s or set(s) == {"-"}:
            return self._flush()

        idx = s.find(" =")
        if idx <= 0:
            return None
        key = s[:idx].strip()
        value = s[idx + 2 :].strip()
        self._block[key] = value
        return None

    def close(self) -> list[FileInfo]:
        """Flush buffered data, including a final block with no trailing blank line."""
        completed: list[FileInfo] = []
        if self._tail:
            tail, self._tail = self._tail, ""
            info = self.feed_line(tail)
            if info is not None:
                completed.append(info)
        info = self._flush()
        if info is not None:
            completed.append(info)
        return completed

    def _flush(self) -> FileInfo | None:
        block, self._block = self._block, {}
        if not block:
            return None
        info = block_to_file_info(block)
        if info is not None:
            self._files.append(info)
        return info


def parse_slt(output: str) -> list[FileInfo]:
    """Parse a complete listing held in memory."""
    parser = SltParser()
    parser.feed(output)
    parser.close()
    return parser.files


async def parse_slt_stream(
    reader: asyncio.StreamReader, encoding: str = "utf-8"
) -> list[FileInfo]:
    """Parse a listing line by line straight from a stream."""
    parser = SltParser()
    while True:
        raw = await reader.readline()
        if not raw:
            break
        parser.feed_line(raw.decode(encoding, errors="replace"))
    parser.close()
    return parser.files


def has_encrypted_files(files: Iterable[FileInfo]) -> bool:
    return any(f.encrypted for f in files)


def find_encrypted_file(files: Iterable[FileInfo]) -> FileInfo | None:
    for f in files:
        if f.encrypted:
            return f
    return None

"""Unit tests for the data model and the process state table."""

from __future__ import annotations

import dataclasses
from datetime import datetime

import pytest

from zipmason.core.models import (
    CompressionLevel,
    FileInfo,
    OperationKind,
    OperationResult,
    ProcessState,
    check_transition,
)


@pytest.mark.parametrize(
    ("current", "new"),
    [
        (ProcessState.IDLE, ProcessState.PENDING),
        (ProcessState.PENDING, ProcessState.RUNNING),
        (ProcessState.PENDING, ProcessState.ERROR),
        (ProcessState.RUNNING, ProcessState.SUCCESS),
        (ProcessState.RUNNING, ProcessState.ERROR),
        (ProcessState.SUCCESS, ProcessState.PENDING),
        (ProcessState.ERROR, ProcessState.PENDING),
    ],
)
def test_allowed_transitions(current: ProcessState, new: ProcessState) -> None:
    check_transition(current, new)


@pytest.mark.parametrize(
    ("current", "new"),
    [
        (ProcessState.IDLE, ProcessState.RUNNING),
        (ProcessState.IDLE, ProcessState.SUCCESS),
        (ProcessState.PENDING, ProcessState.SUCCESS),
        (ProcessState.RUNNING, ProcessState.PENDING),
        (ProcessState.SUCCESS, ProcessState.ERROR),
        (ProcessState.ERROR, ProcessState.RUNNING),
    ],
)
def test_illegal_transitions_raise(current: ProcessState, new: ProcessState) -> None:
    with pytest.raises(ValueError, match="illegal process state transition"):
        check_transition(current, new)


def test_compression_levels() -> None:
    assert int(CompressionLevel.STORE) == 0
    assert int(CompressionLevel.FAST) == 1
    assert int(CompressionLevel.NORMAL) == 5
    assert f"-mx{int(CompressionLevel.NORMAL)}" == "-mx5"


def test_file_info_is_immutable() -> None:
    info = FileInfo(filename="a.txt", size=1, date=datetime(2024, 1, 1))
    with pytest.raises(dataclasses.FrozenInstanceError):
        info.size = 2  # type: ignore[misc]


def test_operation_result_filenames() -> None:
    files = (
        FileInfo(filename="a.txt", size=1, date=datetime(2024, 1, 1)),
        FileInfo(filename="sub/b.txt", size=2, date=datetime(2024, 1, 1)),
    )
    result = OperationResult(
        success=True, elapsed=0.1, kind=OperationKind.LIST, message="ok", files=files
    )
    assert result.filenames == ["a.txt", "sub/b.txt"]
    assert result.base_path is None

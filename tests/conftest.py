"""Pytest configuration and fixtures."""

from __future__ import annotations

import importlib.util
import json
import stat
import sys
from collections.abc import Callable
from pathlib import Path

import pytest

# Add src to path (for 'zipmason.*' imports without an install)
repo_root = Path(__file__).parent.parent
sys.path.insert(0, str(repo_root / "src"))

FAKES_DIR = Path(__file__).resolve().parent / "fakes"


def _load_listing_helpers():
    """Load fakes without turning tests/ into an importable package."""
    p = FAKES_DIR / "listing.py"
    spec = importlib.util.spec_from_file_location("_zipmason_test_fakes_listing", p)
    assert spec and spec.loader
    mod = importlib.util.module_from_spec(spec)
    sys.modules[spec.name] = mod
    spec.loader.exec_module(mod)
    return mod


_listing = _load_listing_helpers()
FakeEntry = _listing.FakeEntry
slt_listing = _listing.slt_listing


class FakeTool:
    """Handle on the fake archiver executable and its invocation log."""

    def __init__(self, executable: Path, log_path: Path, listing_path: Path, monkeypatch) -> None:
        self.executable = executable
        self.log_path = log_path
        self.listing_path = listing_path
        self._monkeypatch = monkeypatch

    @property
    def path(self) -> str:
        return str(self.executable)

    def set_listing(self, entries: list, archive: str = "archive.zip") -> None:
        self.listing_path.write_text(slt_listing(entries, archive), encoding="utf-8")

    def set_env(self, name: str, value: str) -> None:
        self._monkeypatch.setenv(name, value)

    def calls(self) -> list[dict]:
        if not self.log_path.exists():
            return []
        lines = self.log_path.read_text(encoding="utf-8").splitlines()
        return [json.loads(line) for line in lines if line.strip()]

    def commands(self) -> list[str]:
        return [call["argv"][0] for call in self.calls()]


@pytest.fixture
def fake_tool(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> FakeTool:
    """A fake 7za executable backed by tests/fakes/fake_7za.py."""
    if sys.platform == "win32":
        pytest.skip("fake archiver wrapper needs a POSIX shell")

    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    executable = bin_dir / "7za"
    executable.write_text(
        f'#!/bin/sh\nexec "{sys.executable}" "{FAKES_DIR / "fake_7za.py"}" "$@"\n',
        encoding="utf-8",
    )
    executable.chmod(executable.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)

    log_path = tmp_path / "fake_7za.log"
    listing_path = tmp_path / "listing.txt"
    listing_path.write_text(slt_listing([]), encoding="utf-8")

    for name in (
        "FAKE_7ZA_EXIT",
        "FAKE_7ZA_LIST_EXIT",
        "FAKE_7ZA_STDERR",
        "FAKE_7ZA_SLEEP",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("FAKE_7ZA_LOG", str(log_path))
    monkeypatch.setenv("FAKE_7ZA_LISTING", str(listing_path))

    return FakeTool(executable, log_path, listing_path, monkeypatch)


@pytest.fixture
def zip_file(tmp_path: Path) -> Path:
    """An (empty) archive file with a .zip extension."""
    archive = tmp_path / "input" / "archive.zip"
    archive.parent.mkdir()
    archive.write_bytes(b"PK\x05\x06" + b"\x00" * 18)
    return archive


@pytest.fixture
def progress_log() -> tuple[list[tuple[int | None, str]], Callable[[int | None, str], None]]:
    events: list[tuple[int | None, str]] = []

    def on_progress(percent: int | None, message: str) -> None:
        events.append((percent, message))

    return events, on_progress


@pytest.fixture(autouse=True)
def _reset_global_state():
    """Keep process-wide singletons from leaking between tests."""
    from zipmason.core.events import get_event_bus
    from zipmason.core.jobs.scheduler import destroy_scheduler
    from zipmason.core.logging import VerbosityLevel, set_verbosity

    yield
    destroy_scheduler()
    get_event_bus().clear()
    set_verbosity(VerbosityLevel.NORMAL)

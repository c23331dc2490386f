"""Tests for JobScheduler with an in-process fake worker and with real workers."""

from __future__ import annotations

import asyncio
import threading
from typing import Any

import pytest

from zipmason.core.config import SchedulerConfig
from zipmason.core.errors import (
    ConfigError,
    EncryptedArchiveError,
    ErrorCode,
    OperationCancelledError,
)
from zipmason.core.events import (
    JOB_CANCELLED,
    JOB_FAILED,
    JOB_QUEUED,
    JOB_STARTED,
    JOB_SUCCEEDED,
    EventBus,
)
from zipmason.core.jobs import (
    CompressOptions,
    DecompressOptions,
    ExtractOptions,
    JobScheduler,
    JobStatus,
    UpdateOptions,
    destroy_scheduler,
    get_scheduler,
    has_scheduler,
)
from zipmason.core.models import CompressionLevel, OperationKind, OperationResult


class Controller:
    """Releases fake operations on demand and tracks concurrency."""

    def __init__(self) -> None:
        self.started: list[str] = []
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self.executables: list[str] = []
        self.workers: list[FakeWorker] = []
        self.active = 0
        self.max_active = 0
        self._gates: dict[str, asyncio.Future[None]] = {}

    def gate(self, label: str) -> asyncio.Future[None]:
        if label not in self._gates:
            self._gates[label] = asyncio.get_running_loop().create_future()
        return self._gates[label]

    def release(self, label: str) -> None:
        self.gate(label).set_result(None)

    def fail(self, label: str, error: Exception) -> None:
        self.gate(label).set_exception(error)

    def factory(self, executable_path: str) -> FakeWorker:
        self.executables.append(executable_path)
        worker = FakeWorker(self)
        self.workers.append(worker)
        return worker


class FakeWorker:
    def __init__(self, controller: Controller) -> None:
        self.controller = controller
        self.label: str | None = None
        self.cancelled = False

    async def _run(self, kind: OperationKind, label: str, report=None) -> OperationResult:
        c = self.controller
        self.label = label
        c.started.append(label)
        c.active += 1
        c.max_active = max(c.max_active, c.active)
        try:
            if report is not None:
                report(50, f"{label} half")
            await c.gate(label)
            if report is not None:
                report(100, f"{label} done")
            return OperationResult(success=True, elapsed=0.0, kind=kind, message=f"{label} done")
        finally:
            c.active -= 1

    async def list(self, archive_path):
        self.controller.calls.append(("list", (archive_path,)))
        return await self._run(OperationKind.LIST, str(archive_path))

    async def decompress(self, archive_path, target_path, entries=None, on_progress=None):
        self.controller.calls.append(("decompress", (archive_path, target_path, entries)))
        return await self._run(OperationKind.DECOMPRESS, str(archive_path), on_progress)

    async def compress(self, source_files, archive_path, level, on_progress=None, base_dir=None):
        self.controller.calls.append(("compress", (source_files, archive_path, level, base_dir)))
        return await self._run(OperationKind.COMPRESS, str(archive_path), on_progress)

    async def extract_single(self, archive_path, entry_path, dest_path, on_progress=None):
        self.controller.calls.append(("extract_single", (archive_path, entry_path, dest_path)))
        return await self._run(OperationKind.EXTRACT_SINGLE, str(archive_path), on_progress)

    async def update(self, archive_path, source_files, on_progress=None, base_dir=None):
        self.controller.calls.append(("update", (archive_path, source_files, base_dir)))
        return await self._run(OperationKind.UPDATE, str(archive_path), on_progress)

    def cancel(self) -> None:
        self.cancelled = True
        if self.label is not None:
            gate = self.controller.gate(self.label)
            if not gate.done():
                gate.set_exception(OperationCancelledError())


async def _settle() -> None:
    for _ in range(10):
        await asyncio.sleep(0)


@pytest.fixture
def controller() -> Controller:
    return Controller()


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


def _scheduler(controller: Controller, bus: EventBus, max_concurrent: int = 1) -> JobScheduler:
    return JobScheduler(
        SchedulerConfig(executable_path="/opt/7za", max_concurrent=max_concurrent),
        worker_factory=controller.factory,
        event_bus=bus,
    )


class TestDispatch:
    @pytest.mark.asyncio
    async def test_fifo_admission_under_ceiling(self, controller, bus):
        scheduler = _scheduler(controller, bus, max_concurrent=2)

        handles = [scheduler.submit_list(name) for name in "abcde"]
        await _settle()

        assert controller.started == ["a", "b"]
        status = scheduler.status()
        assert (status.running, status.queued, status.total) == (2, 3, 5)
        assert [h.status for h in handles] == [JobStatus.RUNNING] * 2 + [JobStatus.QUEUED] * 3

        controller.release("b")
        await _settle()
        assert controller.started == ["a", "b", "c"]

        for name in "acde":
            controller.release(name)
            await _settle()

        results = [await h for h in handles]
        assert [r.message for r in results] == [f"{n} done" for n in "abcde"]
        assert controller.started == list("abcde")
        assert controller.max_active == 2
        assert scheduler.status().total == 0
        assert controller.executables == ["/opt/7za"] * 5

    @pytest.mark.asyncio
    async def test_each_job_gets_its_own_worker(self, controller, bus):
        scheduler = _scheduler(controller, bus, max_concurrent=3)

        for name in "abc":
            scheduler.submit_list(name)
        await _settle()

        assert len({id(w) for w in controller.workers}) == 3
        for name in "abc":
            controller.release(name)
        await scheduler.join()

    @pytest.mark.asyncio
    async def test_failure_is_forwarded(self, controller, bus):
        failed: list[dict] = []
        bus.subscribe(JOB_FAILED, failed.append)
        scheduler = _scheduler(controller, bus)

        handle = scheduler.submit_list("a")
        second = scheduler.submit_list("b")
        await _settle()
        controller.fail("a", EncryptedArchiveError("a"))

        with pytest.raises(EncryptedArchiveError):
            await handle
        assert handle.status == JobStatus.ERROR
        assert failed[0]["job_id"] == handle.job_id
        assert failed[0]["code"] == ErrorCode.ENCRYPTED_ARCHIVE.value

        await _settle()
        assert controller.started == ["a", "b"]
        controller.release("b")
        assert (await second).message == "b done"

    @pytest.mark.asyncio
    async def test_lifecycle_events(self, controller, bus):
        seen: list[tuple[str, dict]] = []
        bus.subscribe_all(lambda event, data: seen.append((event, data)))
        scheduler = _scheduler(controller, bus)

        handle = scheduler.submit_list("a.zip")
        await _settle()
        controller.release("a.zip")
        await handle

        assert [event for event, _ in seen] == [JOB_QUEUED, JOB_STARTED, JOB_SUCCEEDED]
        for _event, data in seen:
            assert data["job_id"] == handle.job_id
            assert data["kind"] == "list"
            assert data["archive_path"] == "a.zip"


class TestSubmit:
    @pytest.mark.asyncio
    async def test_options_reach_worker(self, controller, bus):
        scheduler = _scheduler(controller, bus, max_concurrent=4)

        scheduler.submit_decompress("d.zip", "out", DecompressOptions(entries=("x.txt",)))
        scheduler.submit_compress(
            ["a.txt"], "c.zip", CompressOptions(level=CompressionLevel.STORE, base_dir="/src")
        )
        scheduler.submit_extract_single("e.zip", "sub/b.txt", "dest", ExtractOptions())
        scheduler.submit_update("u.zip", ["n.txt"], UpdateOptions(base_dir="/base"))
        await _settle()

        assert sorted(controller.calls) == sorted(
            [
                ("decompress", ("d.zip", "out", ["x.txt"])),
                ("compress", (["a.txt"], "c.zip", CompressionLevel.STORE, "/src")),
                ("extract_single", ("e.zip", "sub/b.txt", "dest")),
                ("update", ("u.zip", ["n.txt"], "/base")),
            ]
        )
        for label in ("d.zip", "c.zip", "e.zip", "u.zip"):
            controller.release(label)
        await scheduler.join()

    @pytest.mark.asyncio
    async def test_default_options(self, controller, bus):
        scheduler = _scheduler(controller, bus)

        handle = scheduler.submit_compress(["a.txt"], "c.zip")
        await _settle()

        assert controller.calls == [("compress", (["a.txt"], "c.zip", CompressionLevel.FAST, None))]
        assert handle.kind == OperationKind.COMPRESS
        controller.release("c.zip")
        await handle

    @pytest.mark.asyncio
    async def test_progress_subscription_and_callback(self, controller, bus):
        callback_events: list[tuple[int | None, str]] = []
        scheduler = _scheduler(controller, bus)

        handle = scheduler.submit_decompress(
            "d.zip",
            "out",
            DecompressOptions(on_progress=lambda p, m: callback_events.append((p, m))),
        )
        sub = handle.progress()
        await _settle()
        controller.release("d.zip")
        await handle

        events = [(e.percent, e.message) async for e in sub]
        assert events == [(50, "d.zip half"), (100, "d.zip done")]
        assert callback_events == events


class TestCancel:
    @pytest.mark.asyncio
    async def test_cancel_before_task_runs(self, controller, bus):
        scheduler = _scheduler(controller, bus)

        handle = scheduler.submit_list("a")
        assert handle.status == JobStatus.RUNNING
        assert handle.cancel() is True

        with pytest.raises(OperationCancelledError):
            await handle
        await scheduler.join()
        await _settle()

        assert controller.started == []
        assert scheduler.status().total == 0

    @pytest.mark.asyncio
    async def test_cancel_queued_job(self, controller, bus):
        cancelled: list[dict] = []
        bus.subscribe(JOB_CANCELLED, cancelled.append)
        scheduler = _scheduler(controller, bus)

        first = scheduler.submit_list("a")
        second = scheduler.submit_list("b")
        await _settle()

        assert second.cancel() is True
        with pytest.raises(OperationCancelledError):
            await second
        assert second.status == JobStatus.ERROR
        assert cancelled[0]["job_id"] == second.job_id

        controller.release("a")
        await first
        await _settle()
        assert controller.started == ["a"]
        assert len(controller.workers) == 1

    @pytest.mark.asyncio
    async def test_cancel_running_job_frees_slot(self, controller, bus):
        scheduler = _scheduler(controller, bus)

        first = scheduler.submit_list("a")
        second = scheduler.submit_list("b")
        await _settle()

        assert scheduler.cancel_job(first.job_id) is True
        assert controller.workers[0].cancelled
        assert scheduler.status().running == 1  # b started right away
        assert second.status == JobStatus.RUNNING

        with pytest.raises(OperationCancelledError) as excinfo:
            await first
        assert excinfo.value.details["job_id"] == first.job_id

        assert scheduler.cancel_job(first.job_id) is False
        controller.release("b")
        assert (await second).message == "b done"

    @pytest.mark.asyncio
    async def test_cancel_unknown_job(self, controller, bus):
        scheduler = _scheduler(controller, bus)
        assert scheduler.cancel_job("nope") is False

    @pytest.mark.asyncio
    async def test_cancel_all(self, controller, bus):
        scheduler = _scheduler(controller, bus, max_concurrent=2)

        handles = [scheduler.submit_list(name) for name in "abcd"]
        await _settle()

        scheduler.cancel_all()
        await _settle()

        for handle in handles:
            with pytest.raises(OperationCancelledError):
                await handle
        assert controller.started == ["a", "b"]
        assert all(w.cancelled for w in controller.workers)
        status = scheduler.status()
        assert (status.running, status.queued, status.total) == (0, 0, 0)

    @pytest.mark.asyncio
    async def test_cancel_closes_progress(self, controller, bus):
        scheduler = _scheduler(controller, bus)

        running = scheduler.submit_list("a")
        queued = scheduler.submit_decompress("q.zip", "out")
        sub = queued.progress()
        queued.cancel()

        assert [e async for e in sub] == []

        controller.release("a")
        await running
        assert controller.started == ["a"]


class TestLookup:
    @pytest.mark.asyncio
    async def test_get_job(self, controller, bus):
        scheduler = _scheduler(controller, bus)

        handle = scheduler.submit_list("a")
        found = scheduler.get_job(handle.job_id)
        assert found is not None
        assert found.job_id == handle.job_id
        assert found.future is handle.future

        await _settle()
        controller.release("a")
        await handle
        assert scheduler.get_job(handle.job_id) is None

    @pytest.mark.asyncio
    async def test_join_waits_for_all(self, controller, bus):
        scheduler = _scheduler(controller, bus, max_concurrent=1)
        handles = [scheduler.submit_list(n) for n in "ab"]

        async def release_later() -> None:
            for name in "ab":
                await _settle()
                controller.release(name)

        releaser = asyncio.create_task(release_later())
        await asyncio.wait_for(scheduler.join(), timeout=5)
        await releaser

        assert all(h.future.done() for h in handles)
        assert scheduler.status().total == 0


class TestGlobalScheduler:
    def test_requires_config_on_first_use(self):
        destroy_scheduler()
        assert not has_scheduler()
        with pytest.raises(ConfigError):
            get_scheduler()

    def test_singleton_lifecycle(self):
        destroy_scheduler()
        first = get_scheduler(SchedulerConfig(max_concurrent=2))
        assert has_scheduler()
        assert get_scheduler() is first
        assert get_scheduler(SchedulerConfig(max_concurrent=5)) is first
        assert first.config.max_concurrent == 2

        destroy_scheduler()
        assert not has_scheduler()
        with pytest.raises(ConfigError):
            get_scheduler()

    def test_concurrent_first_use_creates_one(self):
        destroy_scheduler()
        barrier = threading.Barrier(8)
        seen: list[JobScheduler] = []
        lock = threading.Lock()

        def worker() -> None:
            barrier.wait()
            scheduler = get_scheduler(SchedulerConfig())
            with lock:
                seen.append(scheduler)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(seen) == 8
        assert len({id(s) for s in seen}) == 1


async def _wait_for_spawns(tool, count: int, timeout: float = 10.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while len(tool.commands()) < count:
        if loop.time() > deadline:
            raise AssertionError(f"archiver started {len(tool.commands())} times, want {count}")
        await asyncio.sleep(0.02)


class TestWithProcessWorker:
    """Scheduler driving real ProcessWorkers against the fake archiver."""

    @pytest.fixture
    def sources(self, tmp_path):
        src = tmp_path / "src"
        src.mkdir()
        (src / "a.txt").write_text("a")
        return src

    @staticmethod
    def _scheduler(fake_tool, max_concurrent: int = 1) -> JobScheduler:
        config = SchedulerConfig(executable_path=fake_tool.path, max_concurrent=max_concurrent)
        return JobScheduler(config, event_bus=EventBus())

    @pytest.mark.asyncio
    async def test_cancel_right_after_dispatch_spawns_nothing(self, fake_tool, tmp_path, sources):
        scheduler = self._scheduler(fake_tool)
        archive = tmp_path / "o.zip"

        handle = scheduler.submit_compress(["a.txt"], archive, CompressOptions(base_dir=sources))
        assert handle.status == JobStatus.RUNNING
        assert handle.cancel() is True

        with pytest.raises(OperationCancelledError):
            await handle
        await scheduler.join()
        await asyncio.sleep(0.2)

        assert fake_tool.calls() == []
        assert not archive.exists()

    @pytest.mark.asyncio
    async def test_cancel_running_job_kills_process_and_starts_next(
        self, fake_tool, tmp_path, sources
    ):
        fake_tool.set_env("FAKE_7ZA_SLEEP", "30")
        scheduler = self._scheduler(fake_tool)
        options = CompressOptions(base_dir=sources)

        first = scheduler.submit_compress(["a.txt"], tmp_path / "one.zip", options)
        second = scheduler.submit_compress(["a.txt"], tmp_path / "two.zip", options)
        await _wait_for_spawns(fake_tool, 1)
        assert second.status == JobStatus.QUEUED

        assert first.cancel() is True
        assert second.status == JobStatus.RUNNING
        with pytest.raises(OperationCancelledError):
            await first

        await _wait_for_spawns(fake_tool, 2)
        scheduler.cancel_all()
        with pytest.raises(OperationCancelledError):
            await second
        await asyncio.wait_for(scheduler.join(), timeout=5)

        assert fake_tool.commands() == ["a", "a"]
        assert not (tmp_path / "one.zip").exists()
        assert not (tmp_path / "two.zip").exists()

    @pytest.mark.asyncio
    async def test_cancel_all_stops_every_process(self, fake_tool, tmp_path, sources):
        fake_tool.set_env("FAKE_7ZA_SLEEP", "30")
        scheduler = self._scheduler(fake_tool, max_concurrent=2)
        options = CompressOptions(base_dir=sources)

        handles = [
            scheduler.submit_compress(["a.txt"], tmp_path / f"out{i}.zip", options)
            for i in range(3)
        ]
        await _wait_for_spawns(fake_tool, 2)

        scheduler.cancel_all()
        for handle in handles:
            with pytest.raises(OperationCancelledError):
                await handle
        await asyncio.wait_for(scheduler.join(), timeout=5)

        assert fake_tool.commands() == ["a", "a"]
        assert not any((tmp_path / f"out{i}.zip").exists() for i in range(3))
        status = scheduler.status()
        assert (status.running, status.queued, status.total) == (0, 0, 0)

"""Tests for SyncQueue: enqueue, drain, retries/drop, exclusivity, persistence, periodic drain."""

import asyncio
import json
from pathlib import Path
from typing import Any

import pytest

from flowcore.connectivity import ConnectivityMonitor
from flowcore.events import EventBus, Topics
from flowcore.sync import (
    JsonFileStorage,
    OfflineError,
    Operation,
    PersistenceError,
    SyncQueue,
)


class FailingStorage(JsonFileStorage):
    """JsonFileStorage whose writes fail a configurable number of times."""

    def __init__(self, data_dir: Path, failures: int) -> None:
        super().__init__(data_dir)
        self.failures = failures
        self.write_calls = 0

    async def write(self, key: str, value: str) -> None:
        self.write_calls += 1
        if self.failures > 0:
            self.failures -= 1
            raise OSError("disk full")
        await super().write(key, value)


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def storage(tmp_path: Path) -> JsonFileStorage:
    return JsonFileStorage(tmp_path / "sync")


@pytest.fixture
def offline_monitor(bus: EventBus) -> ConnectivityMonitor:
    return ConnectivityMonitor(bus, initial_online=False)


@pytest.fixture
def online_monitor(bus: EventBus) -> ConnectivityMonitor:
    return ConnectivityMonitor(bus, initial_online=True)


def _record(bus: EventBus, event_type: str) -> list[Any]:
    seen: list[Any] = []
    bus.subscribe(event_type, seen.append)
    return seen


async def _persisted(storage: JsonFileStorage) -> list[dict[str, Any]]:
    raw = await storage.read("sync_queue")
    return json.loads(raw) if raw else []


class TestEnqueue:
    """Enqueue persists and reports."""

    @pytest.mark.asyncio
    async def test_enqueue_persists_layout(
        self, bus: EventBus, offline_monitor: ConnectivityMonitor, storage: JsonFileStorage
    ) -> None:
        queue = SyncQueue(bus, offline_monitor, storage)
        enqueued = _record(bus, Topics.SYNC_ENQUEUED)

        item = await queue.enqueue(Operation("create_transaction", {"id": "t1", "amount": 12.5}))

        persisted = await _persisted(storage)
        assert len(persisted) == 1
        entry = persisted[0]
        assert set(entry) == {"id", "operation", "enqueuedAt", "retryCount", "maxRetries"}
        assert entry["id"] == item.id
        assert entry["operation"] == {"kind": "create_transaction", "data": {"id": "t1", "amount": 12.5}}
        assert entry["retryCount"] == 0
        assert entry["maxRetries"] == 3
        assert enqueued == [{"id": item.id, "kind": "create_transaction", "queue_length": 1}]

    @pytest.mark.asyncio
    async def test_enqueue_offline_does_not_call_handler(
        self, bus: EventBus, offline_monitor: ConnectivityMonitor, storage: JsonFileStorage
    ) -> None:
        queue = SyncQueue(bus, offline_monitor, storage)
        calls: list[Any] = []
        queue.register_handler("k", calls.append)

        await queue.enqueue(Operation("k", 1))
        await queue.join()

        assert calls == []
        assert len(queue) == 1

    @pytest.mark.asyncio
    async def test_enqueue_online_starts_drain(
        self, bus: EventBus, online_monitor: ConnectivityMonitor, storage: JsonFileStorage
    ) -> None:
        queue = SyncQueue(bus, online_monitor, storage)
        calls: list[Any] = []

        async def handler(data: Any) -> None:
            calls.append(data)

        queue.register_handler("k", handler)
        await queue.enqueue(Operation("k", {"n": 1}))
        await queue.join()

        assert calls == [{"n": 1}]
        assert len(queue) == 0
        assert await _persisted(storage) == []

    @pytest.mark.asyncio
    async def test_per_item_max_retries(
        self, bus: EventBus, offline_monitor: ConnectivityMonitor, storage: JsonFileStorage
    ) -> None:
        queue = SyncQueue(bus, offline_monitor, storage, max_retries=3)
        item = await queue.enqueue(Operation("k"), max_retries=5)
        assert item.max_retries == 5
        with pytest.raises(ValueError):
            await queue.enqueue(Operation("k"), max_retries=0)


class TestDrain:
    """Drain algorithm: FIFO, success removal, retry, drop."""

    @pytest.mark.asyncio
    async def test_scenario_one_item_always_fails(
        self, bus: EventBus, offline_monitor: ConnectivityMonitor, storage: JsonFileStorage
    ) -> None:
        queue = SyncQueue(bus, offline_monitor, storage, max_retries=2)
        attempts: list[str] = []
        dropped = _record(bus, Topics.SYNC_ITEM_DROPPED)
        completed = _record(bus, Topics.SYNC_ITEM_COMPLETE)

        async def ok(data: dict[str, str]) -> None:
            attempts.append(data["name"])

        async def always_fails(data: dict[str, str]) -> None:
            attempts.append(data["name"])
            raise RuntimeError("remote rejected")

        queue.register_handler("ok", ok)
        queue.register_handler("bad", always_fails)
        await queue.enqueue(Operation("ok", {"name": "A"}))
        await queue.enqueue(Operation("bad", {"name": "B"}))
        await queue.enqueue(Operation("ok", {"name": "C"}))
        assert attempts == []

        offline_monitor.update(True)
        await offline_monitor.join()
        assert attempts == ["A", "B", "C"]
        assert [i.operation.data["name"] for i in queue.pending()] == ["B"]
        assert queue.pending()[0].retry_count == 1

        second = await queue.drain()
        assert second is not None
        assert (second.succeeded, second.retried, second.dropped) == (0, 0, 1)
        assert attempts == ["A", "B", "C", "B"]
        assert len(completed) == 2
        assert len(dropped) == 1
        assert dropped[0]["operation"] == {"kind": "bad", "data": {"name": "B"}}
        assert dropped[0]["retry_count"] == 2
        assert dropped[0]["error"] == "remote rejected"
        assert len(queue) == 0
        assert await _persisted(storage) == []

    @pytest.mark.asyncio
    async def test_retry_increments_persisted_count(
        self, bus: EventBus, online_monitor: ConnectivityMonitor, storage: JsonFileStorage
    ) -> None:
        queue = SyncQueue(bus, online_monitor, storage, max_retries=3)
        retries = _record(bus, Topics.SYNC_ITEM_RETRY)
        queue.register_handler("k", lambda data: False)

        await queue.enqueue(Operation("k"))
        await queue.join()

        persisted = await _persisted(storage)
        assert persisted[0]["retryCount"] == 1
        assert retries[0]["retry_count"] == 1
        assert retries[0]["max_retries"] == 3

    @pytest.mark.asyncio
    async def test_attempts_bounded_by_max_retries(
        self, bus: EventBus, offline_monitor: ConnectivityMonitor, storage: JsonFileStorage
    ) -> None:
        queue = SyncQueue(bus, offline_monitor, storage, max_retries=3)
        attempts = 0

        def fails(data: Any) -> None:
            nonlocal attempts
            attempts += 1
            raise ValueError("nope")

        queue.register_handler("k", fails)
        await queue.enqueue(Operation("k"))
        offline_monitor.set_restore_callback(None)
        offline_monitor.update(True)

        for _ in range(5):
            await queue.drain()

        assert attempts == 3
        assert len(queue) == 0

    @pytest.mark.asyncio
    async def test_no_handler_counts_as_failure(
        self, bus: EventBus, offline_monitor: ConnectivityMonitor, storage: JsonFileStorage
    ) -> None:
        queue = SyncQueue(bus, offline_monitor, storage, max_retries=2)
        no_handler = _record(bus, Topics.SYNC_NO_HANDLER)
        item = await queue.enqueue(Operation("unknown_kind"))
        offline_monitor.set_restore_callback(None)
        offline_monitor.update(True)

        result = await queue.drain()

        assert result is not None and result.retried == 1
        assert no_handler == [{"id": item.id, "kind": "unknown_kind"}]

    @pytest.mark.asyncio
    async def test_drain_offline_returns_none(
        self, bus: EventBus, offline_monitor: ConnectivityMonitor, storage: JsonFileStorage
    ) -> None:
        queue = SyncQueue(bus, offline_monitor, storage)
        started = _record(bus, Topics.SYNC_START)
        await queue.enqueue(Operation("k"))
        assert await queue.drain() is None
        assert started == []
        assert queue.sync_in_progress is False

    @pytest.mark.asyncio
    async def test_complete_event_counts(
        self, bus: EventBus, offline_monitor: ConnectivityMonitor, storage: JsonFileStorage
    ) -> None:
        queue = SyncQueue(bus, offline_monitor, storage, max_retries=2)
        complete = _record(bus, Topics.SYNC_COMPLETE)
        queue.register_handler("ok", lambda data: None)
        queue.register_handler("bad", lambda data: False)
        await queue.enqueue(Operation("ok"))
        await queue.enqueue(Operation("bad"))
        offline_monitor.set_restore_callback(None)
        offline_monitor.update(True)

        await queue.drain()

        assert complete == [{"succeeded": 1, "retried": 1, "dropped": 0}]

    @pytest.mark.asyncio
    async def test_loaded_item_past_limit_dropped_without_attempt(
        self, bus: EventBus, online_monitor: ConnectivityMonitor, storage: JsonFileStorage
    ) -> None:
        await storage.write(
            "sync_queue",
            json.dumps(
                [
                    {
                        "id": "old",
                        "operation": {"kind": "k", "data": None},
                        "enqueuedAt": "2026-01-01T00:00:00+00:00",
                        "retryCount": 3,
                        "maxRetries": 3,
                    }
                ]
            ),
        )
        queue = SyncQueue(bus, online_monitor, storage)
        calls: list[Any] = []
        queue.register_handler("k", calls.append)
        await queue.load()

        result = await queue.drain()

        assert result is not None and result.dropped == 1
        assert calls == []


class TestDrainExclusivity:
    """Only one drain runs at a time; items enqueued mid-drain wait for the next one."""

    @pytest.mark.asyncio
    async def test_overlapping_drain_is_skipped(
        self, bus: EventBus, offline_monitor: ConnectivityMonitor, storage: JsonFileStorage
    ) -> None:
        queue = SyncQueue(bus, offline_monitor, storage)
        release = asyncio.Event()
        entered = asyncio.Event()
        calls: list[Any] = []

        async def slow(data: Any) -> None:
            calls.append(data)
            entered.set()
            await release.wait()

        queue.register_handler("k", slow)
        await queue.enqueue(Operation("k", 1))
        await queue.enqueue(Operation("k", 2))
        offline_monitor.set_restore_callback(None)
        offline_monitor.update(True)

        first = asyncio.create_task(queue.drain())
        await entered.wait()
        assert queue.sync_in_progress is True
        assert await queue.drain() is None

        release.set()
        result = await first
        assert result is not None and result.succeeded == 2
        assert calls == [1, 2]
        assert queue.sync_in_progress is False

    @pytest.mark.asyncio
    async def test_item_enqueued_during_drain_waits_for_next(
        self, bus: EventBus, offline_monitor: ConnectivityMonitor, storage: JsonFileStorage
    ) -> None:
        queue = SyncQueue(bus, offline_monitor, storage)
        calls: list[Any] = []

        async def handler(data: Any) -> None:
            calls.append(data)
            if data == "first":
                await queue.enqueue(Operation("k", "late"))

        queue.register_handler("k", handler)
        await queue.enqueue(Operation("k", "first"))
        offline_monitor.set_restore_callback(None)
        offline_monitor.update(True)

        result = await queue.drain()

        assert result is not None and result.succeeded == 1
        assert calls == ["first"]
        assert [i.operation.data for i in queue.pending()] == ["late"]
        await queue.drain()
        assert calls == ["first", "late"]

    @pytest.mark.asyncio
    async def test_guard_released_after_persistence_error(
        self, bus: EventBus, offline_monitor: ConnectivityMonitor, tmp_path: Path
    ) -> None:
        storage = FailingStorage(tmp_path / "sync", failures=0)
        queue = SyncQueue(bus, offline_monitor, storage, write_attempts=2)
        queue.register_handler("k", lambda data: None)
        await queue.enqueue(Operation("k"))
        offline_monitor.set_restore_callback(None)
        offline_monitor.update(True)

        storage.failures = 2
        with pytest.raises(PersistenceError):
            await queue.drain()
        assert queue.sync_in_progress is False
        assert len(queue) == 1

        result = await queue.drain()
        assert result is not None and result.succeeded == 1


class TestPersistence:
    """Write-through ordering, failure surfacing, restart recovery."""

    @pytest.mark.asyncio
    async def test_storage_written_before_event(
        self, bus: EventBus, online_monitor: ConnectivityMonitor, tmp_path: Path
    ) -> None:
        data_dir = tmp_path / "sync"
        storage = JsonFileStorage(data_dir)
        queue = SyncQueue(bus, online_monitor, storage)
        queue.register_handler("k", lambda data: None)
        snapshots: list[list[str]] = []

        def on_complete(payload: dict[str, Any]) -> None:
            on_disk = json.loads((data_dir / "sync_queue.json").read_text(encoding="utf-8"))
            snapshots.append([entry["id"] for entry in on_disk])

        bus.subscribe(Topics.SYNC_ITEM_COMPLETE, on_complete)
        item = await queue.enqueue(Operation("k"))
        await queue.join()

        assert snapshots == [[]]
        assert item.id not in snapshots[0]

    @pytest.mark.asyncio
    async def test_enqueue_raises_after_bounded_write_attempts(
        self, bus: EventBus, offline_monitor: ConnectivityMonitor, tmp_path: Path
    ) -> None:
        storage = FailingStorage(tmp_path / "sync", failures=10)
        queue = SyncQueue(bus, offline_monitor, storage, write_attempts=3)
        enqueued = _record(bus, Topics.SYNC_ENQUEUED)

        with pytest.raises(PersistenceError):
            await queue.enqueue(Operation("k"))

        assert storage.write_calls == 3
        assert len(queue) == 0
        assert enqueued == []

    @pytest.mark.asyncio
    async def test_transient_write_failure_recovers(
        self, bus: EventBus, offline_monitor: ConnectivityMonitor, tmp_path: Path
    ) -> None:
        storage = FailingStorage(tmp_path / "sync", failures=2)
        queue = SyncQueue(bus, offline_monitor, storage, write_attempts=3)
        await queue.enqueue(Operation("k"))
        assert len(queue) == 1
        assert len(await _persisted(storage)) == 1

    @pytest.mark.asyncio
    async def test_queue_survives_restart(
        self, bus: EventBus, offline_monitor: ConnectivityMonitor, storage: JsonFileStorage
    ) -> None:
        first = SyncQueue(bus, offline_monitor, storage)
        a = await first.enqueue(Operation("create_category", {"name": "Food"}))
        b = await first.enqueue(Operation("update_category", {"id": 1, "updates": {}}))

        restarted = SyncQueue(EventBus(), ConnectivityMonitor(EventBus(), initial_online=False), storage)
        assert await restarted.load() == 2
        assert [i.id for i in restarted.pending()] == [a.id, b.id]
        assert restarted.pending()[0].enqueued_at == a.enqueued_at

    @pytest.mark.asyncio
    async def test_load_skips_malformed_entries(
        self, bus: EventBus, offline_monitor: ConnectivityMonitor, storage: JsonFileStorage
    ) -> None:
        await storage.write(
            "sync_queue",
            json.dumps(
                [
                    {"id": "broken"},
                    {
                        "id": "good",
                        "operation": {"kind": "k", "data": 1},
                        "enqueuedAt": "2026-03-01T10:00:00Z",
                        "retryCount": 1,
                        "maxRetries": 3,
                    },
                ]
            ),
        )
        queue = SyncQueue(bus, offline_monitor, storage)
        assert await queue.load() == 1
        assert queue.pending()[0].retry_count == 1

    @pytest.mark.asyncio
    async def test_load_ignores_corrupt_json(
        self, bus: EventBus, offline_monitor: ConnectivityMonitor, storage: JsonFileStorage
    ) -> None:
        await storage.write("sync_queue", "{not json")
        queue = SyncQueue(bus, offline_monitor, storage)
        assert await queue.load() == 0

    @pytest.mark.asyncio
    async def test_clear(
        self, bus: EventBus, offline_monitor: ConnectivityMonitor, storage: JsonFileStorage
    ) -> None:
        queue = SyncQueue(bus, offline_monitor, storage)
        cleared = _record(bus, Topics.SYNC_CLEARED)
        await queue.enqueue(Operation("k"))
        await queue.enqueue(Operation("k"))
        assert await queue.clear() == 2
        assert await _persisted(storage) == []
        assert cleared == [{"removed": 2}]


class TestStatusAndManualSync:
    @pytest.mark.asyncio
    async def test_get_sync_status(
        self, bus: EventBus, offline_monitor: ConnectivityMonitor, storage: JsonFileStorage
    ) -> None:
        queue = SyncQueue(bus, offline_monitor, storage)
        item = await queue.enqueue(Operation("create_account", {"name": "Cash"}))

        status = queue.get_sync_status()

        assert status.is_online is False
        assert status.queue_length == 1
        assert status.sync_in_progress is False
        assert status.pending_items[0].kind == "create_account"
        assert status.pending_items[0].enqueued_at == item.enqueued_at
        assert status.pending_items[0].retry_count == 0

    @pytest.mark.asyncio
    async def test_manual_sync_offline_raises(
        self, bus: EventBus, offline_monitor: ConnectivityMonitor, storage: JsonFileStorage
    ) -> None:
        queue = SyncQueue(bus, offline_monitor, storage)
        with pytest.raises(OfflineError):
            await queue.manual_sync()

    @pytest.mark.asyncio
    async def test_manual_sync_online_drains(
        self, bus: EventBus, offline_monitor: ConnectivityMonitor, storage: JsonFileStorage
    ) -> None:
        queue = SyncQueue(bus, offline_monitor, storage)
        queue.register_handler("k", lambda data: None)
        await queue.enqueue(Operation("k"))
        offline_monitor.set_restore_callback(None)
        offline_monitor.update(True)

        result = await queue.manual_sync()

        assert result is not None and result.succeeded == 1


class TestPeriodicDrain:
    @pytest.mark.asyncio
    async def test_periodic_drain_runs_when_online(
        self, bus: EventBus, offline_monitor: ConnectivityMonitor, storage: JsonFileStorage
    ) -> None:
        queue = SyncQueue(bus, offline_monitor, storage)
        calls: list[Any] = []
        queue.register_handler("k", calls.append)
        await queue.enqueue(Operation("k", 1))
        offline_monitor.set_restore_callback(None)
        offline_monitor.update(True)

        queue.start_periodic_drain(10)
        for _ in range(50):
            await asyncio.sleep(0.01)
            if calls:
                break
        queue.stop_periodic_drain()
        await queue.join()

        assert calls == [1]

    @pytest.mark.asyncio
    async def test_periodic_drain_idle_while_offline(
        self, bus: EventBus, offline_monitor: ConnectivityMonitor, storage: JsonFileStorage
    ) -> None:
        queue = SyncQueue(bus, offline_monitor, storage)
        calls: list[Any] = []
        queue.register_handler("k", calls.append)
        await queue.enqueue(Operation("k", 1))

        queue.start_periodic_drain(10)
        await asyncio.sleep(0.06)
        queue.stop_periodic_drain()

        assert calls == []

    @pytest.mark.asyncio
    async def test_stop_does_not_interrupt_running_drain(
        self, bus: EventBus, offline_monitor: ConnectivityMonitor, storage: JsonFileStorage
    ) -> None:
        queue = SyncQueue(bus, offline_monitor, storage)
        entered = asyncio.Event()
        release = asyncio.Event()

        async def slow(data: Any) -> None:
            entered.set()
            await release.wait()

        queue.register_handler("k", slow)
        await queue.enqueue(Operation("k"))
        offline_monitor.set_restore_callback(None)
        offline_monitor.update(True)

        queue.start_periodic_drain(5)
        await asyncio.wait_for(entered.wait(), timeout=1.0)
        queue.stop_periodic_drain()
        release.set()
        await queue.join()

        assert len(queue) == 0

    @pytest.mark.asyncio
    async def test_invalid_interval(
        self, bus: EventBus, offline_monitor: ConnectivityMonitor, storage: JsonFileStorage
    ) -> None:
        queue = SyncQueue(bus, offline_monitor, storage)
        with pytest.raises(ValueError):
            queue.start_periodic_drain(0)

"""Offline sync queue: durable FIFO of pending mutations, drained when online.

Write-through: every mutation is written to storage before it becomes
visible in memory and before its event is emitted. One drain at a time.
"""

import asyncio
import inspect
import json
import logging
import uuid
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Iterator

from flowcore.connectivity import ConnectivityMonitor
from flowcore.events import EventBus, Topics
from flowcore.sync.models import (
    DrainResult,
    Operation,
    PendingItem,
    SyncQueueItem,
    SyncStatus,
)
from flowcore.sync.storage import PersistenceError, SyncStorage

logger = logging.getLogger(__name__)

SyncHandler = Callable[[Any], Any | Awaitable[Any]]


class OfflineError(Exception):
    """Manual sync requested while offline."""


class HandlerError(Exception):
    """A sync handler reported failure without raising its own exception."""


class SyncQueue:
    """Queue of SyncQueueItem, applied in FIFO order by registered handlers.

    A handler fails by raising or by returning False. Failed items stay in
    place with retry_count + 1 until retry_count reaches max_retries, then
    they are dropped and reported via ``sync.item_dropped``.
    """

    def __init__(
        self,
        bus: EventBus,
        monitor: ConnectivityMonitor,
        storage: SyncStorage,
        *,
        storage_key: str = "sync_queue",
        max_retries: int = 3,
        write_attempts: int = 3,
    ) -> None:
        if max_retries < 1:
            raise ValueError("max_retries must be >= 1")
        if write_attempts < 1:
            raise ValueError("write_attempts must be >= 1")
        self._bus = bus
        self._monitor = monitor
        self._storage = storage
        self._storage_key = storage_key
        self._max_retries = max_retries
        self._write_attempts = write_attempts
        self._items: list[SyncQueueItem] = []
        self._handlers: dict[str, SyncHandler] = {}
        self._write_lock = asyncio.Lock()
        self._draining = False
        self._periodic_task: asyncio.Task[None] | None = None
        self._tasks: set[asyncio.Task[Any]] = set()
        monitor.set_restore_callback(self.drain)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------
    def register_handler(self, kind: str, handler: SyncHandler) -> None:
        self._handlers[kind] = handler

    def unregister_handler(self, kind: str) -> None:
        self._handlers.pop(kind, None)

    # ------------------------------------------------------------------
    # Queue state
    # ------------------------------------------------------------------
    async def load(self) -> int:
        """Restore the persisted queue. Call once at startup. Returns item count."""
        raw = await self._storage.read(self._storage_key)
        if raw is None:
            return 0
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.error("Persisted sync queue is not valid JSON, ignoring it: %s", e)
            return 0
        if not isinstance(data, list):
            logger.error("Persisted sync queue is not a list, ignoring it")
            return 0
        items: list[SyncQueueItem] = []
        for entry in data:
            try:
                items.append(SyncQueueItem.from_dict(entry))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping malformed sync queue entry %r: %s", entry, e)
        async with self._write_lock:
            self._items = items
        logger.info("Sync queue loaded: %d item(s)", len(items))
        return len(items)

    def pending(self) -> list[SyncQueueItem]:
        return list(self._items)

    def __len__(self) -> int:
        return len(self._items)

    @property
    def sync_in_progress(self) -> bool:
        return self._draining

    def get_sync_status(self) -> SyncStatus:
        return SyncStatus(
            is_online=self._monitor.is_online,
            queue_length=len(self._items),
            sync_in_progress=self._draining,
            pending_items=[
                PendingItem(
                    kind=item.operation.kind,
                    enqueued_at=item.enqueued_at,
                    retry_count=item.retry_count,
                )
                for item in self._items
            ],
        )

    async def enqueue(
        self, operation: Operation, *, max_retries: int | None = None
    ) -> SyncQueueItem:
        """Append and persist operation. Starts a background drain when online and idle.

        Raises PersistenceError if the queue cannot be written; the operation
        is then not enqueued.
        """
        limit = self._max_retries if max_retries is None else max_retries
        if limit < 1:
            raise ValueError("max_retries must be >= 1")
        item = SyncQueueItem(
            id=uuid.uuid4().hex,
            operation=operation,
            enqueued_at=datetime.now(timezone.utc),
            retry_count=0,
            max_retries=limit,
        )
        await self._commit(lambda items: [*items, item])
        logger.info("Sync queue: enqueued %s (%s)", item.id, operation.kind)
        self._bus.emit(
            Topics.SYNC_ENQUEUED,
            {"id": item.id, "kind": operation.kind, "queue_length": len(self._items)},
        )
        if self._monitor.is_online and not self._draining:
            self._spawn_drain()
        return item

    async def clear(self) -> int:
        """Discard every pending item. Returns count removed."""
        removed = len(self._items)
        await self._commit(lambda items: [])
        logger.info("Sync queue cleared: %d item(s)", removed)
        self._bus.emit(Topics.SYNC_CLEARED, {"removed": removed})
        return removed

    # ------------------------------------------------------------------
    # Draining
    # ------------------------------------------------------------------
    async def drain(self) -> DrainResult | None:
        """Attempt every item present at drain start, in FIFO order.

        Returns None when skipped: another drain is running, or offline.
        Items enqueued during the drain wait for the next one.
        """
        with self._drain_guard() as acquired:
            if not acquired:
                logger.debug("Drain skipped: already in progress")
                return None
            if not self._monitor.is_online:
                logger.debug("Drain skipped: offline")
                return None
            return await self._drain_snapshot()

    async def manual_sync(self) -> DrainResult | None:
        if not self._monitor.is_online:
            raise OfflineError("Offline: cannot sync")
        return await self.drain()

    def start_periodic_drain(self, interval_ms: int) -> None:
        """Drain every interval_ms while online with a non-empty queue."""
        if interval_ms <= 0:
            raise ValueError("interval_ms must be positive")
        self.stop_periodic_drain()
        self._periodic_task = asyncio.create_task(self._periodic_loop(interval_ms / 1000.0))
        logger.info("Periodic sync started: every %d ms", interval_ms)

    def stop_periodic_drain(self) -> None:
        """Prevent future timer drains. A drain already running is not interrupted."""
        if self._periodic_task is not None:
            self._periodic_task.cancel()
            self._periodic_task = None
            logger.info("Periodic sync stopped")

    async def join(self) -> None:
        """Wait for background drains to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        """Stop the timer, wait for running drains, close storage."""
        self.stop_periodic_drain()
        self._monitor.set_restore_callback(None)
        await self.join()
        await self._storage.close()

    @contextmanager
    def _drain_guard(self) -> Iterator[bool]:
        if self._draining:
            yield False
            return
        self._draining = True
        try:
            yield True
        finally:
            self._draining = False

    async def _drain_snapshot(self) -> DrainResult:
        snapshot = list(self._items)
        result = DrainResult()
        logger.info("Sync started: %d item(s)", len(snapshot))
        self._bus.emit(Topics.SYNC_START, {"queue_length": len(snapshot)})

        for item in snapshot:
            if not any(i.id == item.id for i in self._items):
                continue  # cleared while an earlier item was in flight
            if item.retry_count >= item.max_retries:
                await self._drop(item, item.retry_count, "retry limit already reached")
                result.dropped += 1
                continue

            error = await self._apply(item)
            if error is None:
                await self._commit(lambda items: [i for i in items if i.id != item.id])
                result.succeeded += 1
                self._bus.emit(
                    Topics.SYNC_ITEM_COMPLETE,
                    {"id": item.id, "kind": item.operation.kind},
                )
                continue

            retry_count = item.retry_count + 1
            if retry_count >= item.max_retries:
                await self._drop(item, retry_count, str(error))
                result.dropped += 1
                continue

            updated = replace(item, retry_count=retry_count)
            await self._commit(
                lambda items: [updated if i.id == item.id else i for i in items]
            )
            result.retried += 1
            logger.warning(
                "Sync: retrying %s (%s) later, attempt %d/%d: %s",
                item.id,
                item.operation.kind,
                retry_count,
                item.max_retries,
                error,
            )
            self._bus.emit(
                Topics.SYNC_ITEM_RETRY,
                {
                    "id": item.id,
                    "kind": item.operation.kind,
                    "retry_count": retry_count,
                    "max_retries": item.max_retries,
                    "error": str(error),
                },
            )

        logger.info(
            "Sync complete: %d succeeded, %d retried, %d dropped",
            result.succeeded,
            result.retried,
            result.dropped,
        )
        self._bus.emit(Topics.SYNC_COMPLETE, result.as_dict())
        return result

    async def _apply(self, item: SyncQueueItem) -> Exception | None:
        """Run the handler for item. Returns the failure, or None on success."""
        kind = item.operation.kind
        handler = self._handlers.get(kind)
        if handler is None:
            logger.warning("Sync: no handler registered for %s (item %s)", kind, item.id)
            self._bus.emit(Topics.SYNC_NO_HANDLER, {"id": item.id, "kind": kind})
            return HandlerError(f"No handler registered for {kind!r}")
        try:
            outcome = handler(item.operation.data)
            if inspect.isawaitable(outcome):
                outcome = await outcome
        except Exception as e:
            logger.warning("Sync handler %s failed for item %s: %s", kind, item.id, e)
            return e
        if outcome is False:
            return HandlerError(f"Handler for {kind!r} reported failure")
        return None

    async def _drop(self, item: SyncQueueItem, retry_count: int, error: str) -> None:
        await self._commit(lambda items: [i for i in items if i.id != item.id])
        logger.error(
            "Sync: dropped %s (%s) after %d attempt(s): %s",
            item.id,
            item.operation.kind,
            retry_count,
            error,
        )
        self._bus.emit(
            Topics.SYNC_ITEM_DROPPED,
            {
                "id": item.id,
                "operation": item.operation.to_dict(),
                "retry_count": retry_count,
                "error": error,
            },
        )

    # ------------------------------------------------------------------
    # Persistence and background work
    # ------------------------------------------------------------------
    async def _commit(
        self, mutate: Callable[[list[SyncQueueItem]], list[SyncQueueItem]]
    ) -> None:
        """Apply mutate to the queue: persist the new list first, then swap it in."""
        async with self._write_lock:
            items = mutate(list(self._items))
            await self._write(items)
            self._items = items

    async def _write(self, items: list[SyncQueueItem]) -> None:
        payload = json.dumps([item.to_dict() for item in items], ensure_ascii=False)
        last_error: Exception | None = None
        for attempt in range(1, self._write_attempts + 1):
            try:
                await self._storage.write(self._storage_key, payload)
                return
            except Exception as e:
                last_error = e
                logger.warning(
                    "Sync queue write failed (attempt %d/%d): %s",
                    attempt,
                    self._write_attempts,
                    e,
                )
        raise PersistenceError(
            f"Could not persist sync queue after {self._write_attempts} attempts"
        ) from last_error

    def _spawn_drain(self) -> None:
        task = asyncio.create_task(self.drain())
        self._tasks.add(task)
        task.add_done_callback(self._on_drain_done)

    def _on_drain_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background sync drain failed: %s", exc, exc_info=exc)

    async def _periodic_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            if self._monitor.is_online and self._items and not self._draining:
                self._spawn_drain()

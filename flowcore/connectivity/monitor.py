"""Two-state connectivity machine (Online/Offline) driven by a reachability signal."""

import asyncio
import inspect
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Protocol, runtime_checkable

from flowcore.events import EventBus, Topics

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ConnectivityState:
    """Process-wide connectivity. Replaced, never mutated, by the monitor only."""

    is_online: bool
    changed_at: datetime


@runtime_checkable
class ReachabilitySource(Protocol):
    """Platform signal delivering boolean reachability."""

    def add_listener(self, callback: Callable[[bool], None]) -> Callable[[], None]:
        """Register callback; return a function that removes it."""


class ConnectivityMonitor:
    """Coalesces reachability readings and emits transition events.

    Offline -> Online emits ``connectivity.restored`` and then calls the
    restore callback (the sync queue's drain entry point) exactly once.
    """

    def __init__(self, bus: EventBus, initial_online: bool = True) -> None:
        self._bus = bus
        self._state = ConnectivityState(is_online=initial_online, changed_at=_utcnow())
        self._restore_callback: Callable[[], Any] | None = None
        self._remove_source: Callable[[], None] | None = None
        self._tasks: set[asyncio.Future[Any]] = set()

    @property
    def state(self) -> ConnectivityState:
        return self._state

    @property
    def is_online(self) -> bool:
        return self._state.is_online

    def set_restore_callback(self, callback: Callable[[], Any] | None) -> None:
        self._restore_callback = callback

    def attach(self, source: ReachabilitySource) -> None:
        """Subscribe to the platform signal. Only one source per monitor."""
        if self._remove_source is not None:
            raise RuntimeError("ConnectivityMonitor is already attached to a source")
        self._remove_source = source.add_listener(self.update)

    def detach(self) -> None:
        if self._remove_source is not None:
            self._remove_source()
            self._remove_source = None

    def update(self, is_reachable: bool) -> None:
        """Apply one reachability reading. Repeated identical readings are ignored."""
        is_online = bool(is_reachable)
        if is_online == self._state.is_online:
            return
        self._state = ConnectivityState(is_online=is_online, changed_at=_utcnow())
        payload = {"is_online": is_online, "changed_at": self._state.changed_at.isoformat()}
        if is_online:
            logger.info("Connectivity restored")
            self._bus.emit(Topics.CONNECTIVITY_RESTORED, payload)
            self._run_restore_callback()
        else:
            logger.info("Connectivity lost")
            self._bus.emit(Topics.CONNECTIVITY_LOST, payload)

    async def join(self) -> None:
        """Wait for scheduled restore callbacks to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        self.detach()
        await self.join()

    def _run_restore_callback(self) -> None:
        callback = self._restore_callback
        if callback is None:
            return
        try:
            result = callback()
        except Exception as e:
            logger.exception("Connectivity restore callback failed: %s", e)
            return
        if not inspect.isawaitable(result):
            return
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("Restore callback skipped: no running event loop")
            if inspect.iscoroutine(result):
                result.close()
            return
        task = asyncio.ensure_future(result)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Future[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Connectivity restore callback failed: %s", exc, exc_info=exc)

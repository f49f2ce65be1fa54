"""In-process publish/subscribe hub: snapshot dispatch with per-listener isolation.
Dispatch is synchronous on the caller's context. No threads, no persistence."""

import asyncio
import inspect
import logging
import uuid
from collections import defaultdict
from typing import Any, Callable

from flowcore.events.models import WILDCARD, Event, Listener
from flowcore.events.topics import Topics

logger = logging.getLogger(__name__)


class EventBus:
    """Typed pub/sub for UI components and the sync core.

    emit() never raises. A listener that raises is logged and reported as a
    ``bus.listener_error`` emission; failures while dispatching that event are
    only logged, so error reporting cannot recurse.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = defaultdict(list)
        self._tasks: set[asyncio.Future[Any]] = set()

    def subscribe(
        self,
        event_type: str,
        callback: Callable[[Any], Any],
        *,
        once: bool = False,
        owner_component: str | None = None,
        remove_on_error: bool = False,
    ) -> Callable[[], None]:
        """Register callback for event_type. Returns an idempotent unsubscribe function.

        Listeners of a concrete type receive the payload. Listeners of ``"*"``
        receive an Event(type, payload) for every emission.
        """
        listener = Listener(
            id=uuid.uuid4().hex,
            event_type=event_type,
            callback=callback,
            once=once,
            owner_component=owner_component,
            remove_on_error=remove_on_error,
        )
        self._listeners[event_type].append(listener)
        logger.debug("Subscribed %s to %s", listener.id, event_type)

        def unsubscribe() -> None:
            self._detach(listener)

        return unsubscribe

    def emit(self, event_type: str, payload: Any = None) -> None:
        """Deliver payload to event_type listeners, then to wildcard listeners."""
        typed = [] if event_type == WILDCARD else list(self._listeners.get(event_type, ()))
        wildcard = list(self._listeners.get(WILDCARD, ()))
        if not typed and not wildcard:
            logger.debug("No listeners for event: %s", event_type)
            return

        for listener in typed:
            self._invoke(listener, event_type, payload)
        if wildcard:
            envelope = Event(type=event_type, payload=payload)
            for listener in wildcard:
                self._invoke(listener, event_type, envelope)

    def remove_owner(self, owner_component: str) -> int:
        """Cancel every listener owned by owner_component. Returns count removed."""
        removed = 0
        for event_type in list(self._listeners):
            for listener in list(self._listeners.get(event_type, ())):
                if listener.owner_component == owner_component and self._detach(listener):
                    removed += 1
        if removed:
            logger.debug("Removed %d listeners owned by %s", removed, owner_component)
        return removed

    def listener_count(self, event_type: str | None = None) -> int:
        if event_type is None:
            return sum(len(bucket) for bucket in self._listeners.values())
        return len(self._listeners.get(event_type, ()))

    def event_types(self) -> list[str]:
        return [t for t, bucket in self._listeners.items() if bucket]

    def clear(self) -> None:
        """Drop every listener (app teardown)."""
        for bucket in self._listeners.values():
            for listener in bucket:
                listener.active = False
        self._listeners.clear()

    async def join(self) -> None:
        """Wait until scheduled async listeners have finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _detach(self, listener: Listener) -> bool:
        listener.active = False
        bucket = self._listeners.get(listener.event_type)
        if not bucket:
            return False
        for i, existing in enumerate(bucket):
            if existing is listener:
                bucket.pop(i)
                if not bucket:
                    self._listeners.pop(listener.event_type, None)
                return True
        return False

    def _invoke(self, listener: Listener, event_type: str, arg: Any) -> None:
        # Unsubscribed by an earlier listener of the same emission.
        if not listener.active:
            return
        # Detach first: a re-entrant emit must not deliver a once listener twice.
        if listener.once:
            self._detach(listener)
        try:
            result = listener.callback(arg)
        except Exception as e:
            self._on_listener_error(listener, event_type, e)
            return
        if inspect.isawaitable(result):
            self._schedule(listener, event_type, result)

    def _schedule(self, listener: Listener, event_type: str, awaitable: Any) -> None:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(
                "Async listener %s for %s skipped: no running event loop",
                listener.id,
                event_type,
            )
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            return
        task = asyncio.ensure_future(awaitable)
        self._tasks.add(task)
        task.add_done_callback(
            lambda t: self._on_task_done(t, listener, event_type)
        )

    def _on_task_done(
        self, task: asyncio.Future[Any], listener: Listener, event_type: str
    ) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if isinstance(exc, Exception):
            self._on_listener_error(listener, event_type, exc)

    def _on_listener_error(
        self, listener: Listener, event_type: str, exc: Exception
    ) -> None:
        logger.error(
            "Listener %s failed for event %s: %s",
            listener.id,
            event_type,
            exc,
            exc_info=exc,
        )
        if listener.remove_on_error:
            self._detach(listener)
        if event_type == Topics.LISTENER_ERROR:
            return
        self.emit(
            Topics.LISTENER_ERROR,
            {
                "event_type": event_type,
                "listener_id": listener.id,
                "owner_component": listener.owner_component,
                "error": str(exc),
            },
        )

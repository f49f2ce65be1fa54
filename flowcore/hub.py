"""IntegrationHub: the single object UI code talks to. Built explicitly, never global."""

import logging
from pathlib import Path
from typing import Any, Callable

from pydantic import BaseModel, Field

from flowcore.cache import TTLCache
from flowcore.connectivity import ConnectivityMonitor, HttpReachabilityProbe
from flowcore.events import EventBus, Topics
from flowcore.lifecycle import ComponentRegistry
from flowcore.settings import get_setting
from flowcore.sync import (
    JsonFileStorage,
    KeyringAuthBackend,
    Operation,
    SqliteStorage,
    SyncQueue,
    SyncQueueItem,
    SyncStatus,
    SyncStorage,
    build_http_handlers,
)
from flowcore.sync.queue import SyncHandler

logger = logging.getLogger(__name__)


class HubStats(BaseModel):
    """Snapshot for diagnostics screens."""

    event_listeners: dict[str, int] = Field(default_factory=dict)
    cache_size: int = 0
    cache_keys: list[str] = Field(default_factory=list)
    queue_length: int = 0
    sync_in_progress: bool = False
    is_online: bool = True


class DataSyncResult(BaseModel):
    """Outcome of sync_data()."""

    success: bool
    data: Any = None
    error: str | None = None


# Domain event fanned out for each data type pushed through sync_data()
_DATA_SYNC_TOPICS = {
    "transactions": Topics.TRANSACTION_UPDATED,
    "accounts": Topics.ACCOUNT_UPDATED,
    "balance": Topics.BALANCE_CHANGED,
    "profile": Topics.PROFILE_UPDATED,
}


def data_sync_key(data_type: str) -> str:
    return f"sync_{data_type}"


def _build_storage(settings: dict[str, Any], project_root: Path) -> SyncStorage:
    backend = get_setting(settings, "sync.backend", "sqlite")
    if backend == "sqlite":
        return SqliteStorage(project_root / get_setting(settings, "sync.db_path", "data/sync.db"))
    if backend == "json":
        return JsonFileStorage(project_root / get_setting(settings, "sync.data_dir", "data/sync"))
    raise ValueError(f"Unknown sync.backend {backend!r} (expected 'sqlite' or 'json')")


class IntegrationHub:
    """Event bus, cache, lifecycle registry, connectivity and sync queue, wired together."""

    def __init__(
        self,
        bus: EventBus,
        cache: TTLCache,
        components: ComponentRegistry,
        connectivity: ConnectivityMonitor,
        sync: SyncQueue,
        probe: HttpReachabilityProbe | None = None,
        periodic_interval_ms: int | None = None,
    ) -> None:
        self.bus = bus
        self.cache = cache
        self.components = components
        self.connectivity = connectivity
        self.sync = sync
        self._probe = probe
        self._periodic_interval_ms = periodic_interval_ms
        self._started = False

    @classmethod
    def from_settings(cls, settings: dict[str, Any], project_root: Path) -> "IntegrationHub":
        bus = EventBus()
        cache = TTLCache(default_ttl_ms=int(get_setting(settings, "cache.default_ttl_ms", 300_000)))
        components = ComponentRegistry(bus, cache)
        connectivity = ConnectivityMonitor(
            bus, initial_online=bool(get_setting(settings, "connectivity.initial_online", True))
        )
        sync = SyncQueue(
            bus,
            connectivity,
            _build_storage(settings, project_root),
            storage_key=get_setting(settings, "sync.storage_key", "sync_queue"),
            max_retries=int(get_setting(settings, "sync.max_retries", 3)),
            write_attempts=int(get_setting(settings, "sync.write_attempts", 3)),
        )

        base_url = get_setting(settings, "sync.remote.base_url", "")
        routes = get_setting(settings, "sync.remote.routes", {}) or {}
        if base_url and routes:
            auth = KeyringAuthBackend(
                service_name=get_setting(settings, "auth.service_name", "flowcore"),
                token_env=get_setting(settings, "auth.token_env", "FLOWCORE_ACCESS_TOKEN"),
            )
            timeout = float(get_setting(settings, "sync.remote.timeout", 10.0))
            for kind, handler in build_http_handlers(base_url, routes, auth, timeout).items():
                sync.register_handler(kind, handler)

        probe = None
        probe_url = get_setting(settings, "connectivity.probe_url", "")
        if probe_url:
            probe = HttpReachabilityProbe(
                probe_url,
                interval=float(get_setting(settings, "connectivity.probe_interval", 15.0)),
                timeout=float(get_setting(settings, "connectivity.probe_timeout", 5.0)),
            )
        interval = get_setting(settings, "sync.periodic_interval_ms", 30_000)
        return cls(
            bus,
            cache,
            components,
            connectivity,
            sync,
            probe=probe,
            periodic_interval_ms=int(interval) if interval else None,
        )

    async def start(self) -> None:
        """Restore the queue, attach the reachability probe, start the periodic drain."""
        if self._started:
            return
        # Re-armed on every start: SyncQueue.aclose() clears it.
        self.connectivity.set_restore_callback(self.sync.drain)
        await self.sync.load()
        if self._probe is not None:
            self.connectivity.attach(self._probe)
            await self._probe.start()
        if self._periodic_interval_ms:
            self.sync.start_periodic_drain(self._periodic_interval_ms)
        self._started = True
        logger.info("IntegrationHub started")

    async def stop(self) -> None:
        """Graceful shutdown: running drains finish, then everything is released."""
        if self._probe is not None:
            await self._probe.stop()
        await self.connectivity.aclose()
        await self.sync.aclose()
        await self.bus.join()
        self.bus.clear()
        self.cache.clear()
        self._started = False
        logger.info("IntegrationHub stopped")

    # Public API for UI components ------------------------------------------
    def subscribe(
        self, event_type: str, callback: Callable[[Any], Any], **options: Any
    ) -> Callable[[], None]:
        return self.bus.subscribe(event_type, callback, **options)

    def emit(self, event_type: str, payload: Any = None) -> None:
        self.bus.emit(event_type, payload)

    def get(self, key: str, default: Any = None) -> Any:
        return self.cache.get(key, default)

    def set(self, key: str, value: Any, ttl_ms: int | None = None) -> None:
        self.cache.set(key, value, ttl_ms)

    def clear(self, prefix: str | None = None) -> int:
        return self.cache.clear(prefix)

    async def enqueue(
        self, kind: str, data: Any = None, *, max_retries: int | None = None
    ) -> SyncQueueItem:
        return await self.sync.enqueue(Operation(kind=kind, data=data), max_retries=max_retries)

    def register_handler(self, kind: str, handler: SyncHandler) -> None:
        self.sync.register_handler(kind, handler)

    def get_sync_status(self) -> SyncStatus:
        return self.sync.get_sync_status()

    def get_stats(self) -> HubStats:
        return HubStats(
            event_listeners={t: self.bus.listener_count(t) for t in self.bus.event_types()},
            cache_size=len(self.cache),
            cache_keys=self.cache.keys(),
            queue_length=len(self.sync),
            sync_in_progress=self.sync.sync_in_progress,
            is_online=self.connectivity.is_online,
        )

    def sync_data(self, data_type: str, data: Any, ttl_ms: int | None = None) -> DataSyncResult:
        """Cache fresh data under ``sync_<data_type>`` and notify the screens that show it.

        Emits data.sync.start, the domain event for data_type, then
        data.sync.complete. On failure emits data.sync.error and returns an
        unsuccessful result instead of raising.
        """
        self.bus.emit(Topics.DATA_SYNC_START, {"data_type": data_type, "data": data})
        try:
            self.cache.set(data_sync_key(data_type), data, ttl_ms)
        except ValueError as e:
            logger.error("Data sync failed for %s: %s", data_type, e)
            self.bus.emit(Topics.DATA_SYNC_ERROR, {"data_type": data_type, "error": str(e)})
            return DataSyncResult(success=False, error=str(e))
        topic = _DATA_SYNC_TOPICS.get(data_type)
        if topic is None:
            logger.warning("Unknown data type for sync: %s", data_type)
        else:
            self.bus.emit(topic, data)
        self.bus.emit(Topics.DATA_SYNC_COMPLETE, {"data_type": data_type, "data": data})
        return DataSyncResult(success=True, data=data)

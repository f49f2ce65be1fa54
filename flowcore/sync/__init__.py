"""Offline Sync Queue: durable mutation queue with bounded retries."""

from flowcore.sync.auth import AuthBackend, KeyringAuthBackend
from flowcore.sync.models import (
    DrainResult,
    Operation,
    PendingItem,
    SyncQueueItem,
    SyncStatus,
)
from flowcore.sync.queue import HandlerError, OfflineError, SyncQueue
from flowcore.sync.remote import HttpOperationHandler, build_http_handlers
from flowcore.sync.storage import (
    JsonFileStorage,
    PersistenceError,
    SqliteStorage,
    SyncStorage,
)

__all__ = [
    "AuthBackend",
    "DrainResult",
    "HandlerError",
    "HttpOperationHandler",
    "JsonFileStorage",
    "KeyringAuthBackend",
    "OfflineError",
    "Operation",
    "PendingItem",
    "PersistenceError",
    "SqliteStorage",
    "SyncQueue",
    "SyncQueueItem",
    "SyncStatus",
    "SyncStorage",
    "build_http_handlers",
]

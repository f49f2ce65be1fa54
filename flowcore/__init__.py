"""flowcore: event bus, TTL cache and offline sync queue shared by UI components."""

from flowcore.cache import TTLCache
from flowcore.connectivity import ConnectivityMonitor
from flowcore.events import EventBus, Topics
from flowcore.hub import IntegrationHub
from flowcore.lifecycle import ComponentRegistry
from flowcore.sync import Operation, SyncQueue

__all__ = [
    "ComponentRegistry",
    "ConnectivityMonitor",
    "EventBus",
    "IntegrationHub",
    "Operation",
    "SyncQueue",
    "TTLCache",
    "Topics",
]

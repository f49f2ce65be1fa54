"""Connectivity Monitor: Online/Offline state and reachability sources."""

from flowcore.connectivity.monitor import (
    ConnectivityMonitor,
    ConnectivityState,
    ReachabilitySource,
)
from flowcore.connectivity.probe import HttpReachabilityProbe

__all__ = [
    "ConnectivityMonitor",
    "ConnectivityState",
    "HttpReachabilityProbe",
    "ReachabilitySource",
]

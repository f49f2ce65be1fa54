"""Listener and event models for the Event Bus."""

from dataclasses import dataclass
from typing import Any, Callable

__all__ = ["Event", "Listener", "WILDCARD"]

WILDCARD = "*"


@dataclass(frozen=True)
class Event:
    """Envelope passed to wildcard listeners: they need the type to tell emissions apart."""

    type: str
    payload: Any = None


@dataclass(eq=False)
class Listener:
    """One subscription. Identity is the only cancellation handle."""

    id: str
    event_type: str
    callback: Callable[[Any], Any]
    once: bool = False
    owner_component: str | None = None
    remove_on_error: bool = False
    active: bool = True

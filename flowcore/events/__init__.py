"""Event Bus: in-process pub/sub for decoupled UI components and the sync core."""

from flowcore.events.bus import EventBus
from flowcore.events.models import WILDCARD, Event, Listener
from flowcore.events.topics import Topics

__all__ = ["Event", "EventBus", "Listener", "Topics", "WILDCARD"]

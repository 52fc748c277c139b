"""
In-process domain event bus.
"""

from .event_bus import EventBus, InMemoryBroker
from .models import Event, EventType

__all__ = ["EventBus", "InMemoryBroker", "Event", "EventType"]

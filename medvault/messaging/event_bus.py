"""
Event bus for registry and record-store events.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, List, Protocol

from .models import Event

logger = logging.getLogger(__name__)

EventHandler = Callable[[Event], Awaitable[Any]]


class BrokerClient(Protocol):
    async def publish(self, subject: str, event: Event) -> None: ...
    async def subscribe(self, subject: str, handler: EventHandler) -> Any: ...


class InMemoryBroker:
    """Simple in-memory broker used by default and for tests."""

    def __init__(self) -> None:
        self._subs: Dict[str, List[EventHandler]] = {}

    async def publish(self, subject: str, event: Event) -> None:
        for handler in list(self._subs.get(subject, [])) + list(self._subs.get("*", [])):
            try:
                await handler(event)
            except Exception as e:  # noqa: BLE001
                logger.exception("InMemoryBroker handler error on %s: %s", subject, e)

    async def subscribe(self, subject: str, handler: EventHandler) -> Any:
        self._subs.setdefault(subject, []).append(handler)
        return handler


class EventBus:
    """Fans events out to subscribers and keeps a bounded history.

    Publishing never raises: a failing subscriber must not roll back the
    state transition that produced the event.
    """

    def __init__(self, broker: BrokerClient | None = None, history_limit: int = 1000) -> None:
        self._broker: BrokerClient = broker or InMemoryBroker()
        self._history: List[Event] = []
        self._history_limit = history_limit

    async def publish(self, event: Event) -> None:
        self._history.append(event)
        if len(self._history) > self._history_limit:
            del self._history[: len(self._history) - self._history_limit]
        logger.debug("event %s from %s", event.event_type, event.source)
        await self._broker.publish(getattr(event.event_type, "value", event.event_type), event)

    async def emit(self, event_type: str, source: str, **payload: Any) -> Event:
        event = Event(event_type=event_type, source=source, payload=payload)
        await self.publish(event)
        return event

    async def subscribe(self, event_type: str, handler: EventHandler) -> None:
        """Register ``handler`` for ``event_type`` (``"*"`` for every event)."""
        await self._broker.subscribe(getattr(event_type, "value", event_type), handler)

    def history(self, event_type: str | None = None) -> List[Event]:
        return [e for e in self._history if event_type is None or e.event_type == event_type]

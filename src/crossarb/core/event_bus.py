"""
Internal event bus for decoupled communication.

Lets observers (logging, notifications, a future UI) follow prices,
opportunities and trade outcomes without the detector or executor
knowing about them.
"""

import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Generic, TypeVar

from crossarb.utils.time import get_timestamp_ms


logger = logging.getLogger(__name__)


class EventType(Enum):
    """System event types."""

    # Market data events
    PRICE_UPDATE = auto()

    # Strategy events
    OPPORTUNITY_FOUND = auto()

    # Execution events
    TRADE_STARTED = auto()
    TRADE_COMPLETED = auto()
    TRADE_FAILED = auto()

    # System events
    MODE_CHANGED = auto()
    CONFIG_UPDATED = auto()
    SHUTDOWN = auto()


T = TypeVar("T")


@dataclass
class Event(Generic[T]):
    """Generic event with typed payload."""

    type: EventType
    payload: T
    timestamp_ms: int = field(default_factory=get_timestamp_ms)
    source: str = ""


EventHandler = Callable[[Event[Any]], Awaitable[None]]
SyncEventHandler = Callable[[Event[Any]], None]


class EventBus:
    """
    Async-safe event bus for internal messaging.

    Handlers run in subscription order. A failing handler is logged and
    does not stop delivery to the others.
    """

    def __init__(self) -> None:
        """Initialize event bus."""
        self._handlers: dict[EventType, list[EventHandler]] = defaultdict(list)
        self._sync_handlers: dict[EventType, list[SyncEventHandler]] = defaultdict(list)

    def subscribe(self, event_type: EventType, handler: EventHandler) -> None:
        """
        Subscribe an async handler to an event type.

        Args:
            event_type: Event type to handle.
            handler: Async handler function.
        """
        self._handlers[event_type].append(handler)

    def subscribe_sync(self, event_type: EventType, handler: SyncEventHandler) -> None:
        """
        Subscribe a sync handler to an event type.

        Args:
            event_type: Event type to handle.
            handler: Sync handler function.
        """
        self._sync_handlers[event_type].append(handler)

    def unsubscribe(
        self,
        event_type: EventType,
        handler: EventHandler | SyncEventHandler,
    ) -> bool:
        """
        Unsubscribe a handler.

        Returns:
            True if handler was found and removed.
        """
        for registry in (self._handlers, self._sync_handlers):
            handlers: list[Any] = registry[event_type]
            if handler in handlers:
                handlers.remove(handler)
                return True
        return False

    async def publish(self, event: Event[Any]) -> None:
        """
        Publish an event to all subscribers.

        Args:
            event: Event to publish.
        """
        self.publish_sync(event)

        for handler in list(self._handlers[event.type]):
            try:
                await handler(event)
            except Exception as e:
                logger.error(f"Async handler error for {event.type.name}: {e}")

    def publish_sync(self, event: Event[Any]) -> None:
        """Deliver an event to sync handlers only."""
        for handler in list(self._sync_handlers[event.type]):
            try:
                handler(event)
            except Exception as e:
                logger.error(f"Sync handler error for {event.type.name}: {e}")

    def clear(self, event_type: EventType | None = None) -> None:
        """
        Clear handlers.

        Args:
            event_type: Specific type to clear, or None for all.
        """
        if event_type:
            self._handlers[event_type].clear()
            self._sync_handlers[event_type].clear()
        else:
            self._handlers.clear()
            self._sync_handlers.clear()

    def handler_count(self, event_type: EventType) -> int:
        """Get number of handlers for an event type."""
        return len(self._handlers[event_type]) + len(self._sync_handlers[event_type])

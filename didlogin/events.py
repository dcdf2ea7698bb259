"""In-process event bus for message notifications."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Awaitable, Callable, Dict, List, Set

if TYPE_CHECKING:
    from didlogin.messages import Message

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    SAVED_MESSAGE = "saved_message"


@dataclass(frozen=True)
class MessageSaved:
    """A validated inbound message has been stored."""

    message: "Message"
    event_type: EventType = EventType.SAVED_MESSAGE


EventHandler = Callable[[MessageSaved], Awaitable[object]]


class EventBus:
    """
    Dispatches events to async subscribers without waiting for them.

    ``publish`` returns as soon as every handler has been scheduled; the
    publisher (an HTTP request) never blocks on listeners. ``drain`` waits
    for the scheduled handlers, which tests and shutdown rely on.
    """

    def __init__(self) -> None:
        self._subscribers: Dict[EventType, List[EventHandler]] = {}
        self._pending: Set[asyncio.Task] = set()

    def subscribe(self, event_type: EventType, handler: EventHandler) -> None:
        handlers = self._subscribers.setdefault(event_type, [])
        handlers.append(handler)

    def unsubscribe(self, event_type: EventType, handler: EventHandler) -> None:
        handlers = self._subscribers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def publish(self, event: MessageSaved) -> int:
        """Schedule every subscriber of the event's type. Returns the count."""
        handlers = list(self._subscribers.get(event.event_type, []))
        for handler in handlers:
            task = asyncio.get_running_loop().create_task(self._run(handler, event))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
        return len(handlers)

    async def drain(self) -> None:
        """Wait until all scheduled handlers have finished."""
        while True:
            pending = [task for task in self._pending if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending)

    @staticmethod
    async def _run(handler: EventHandler, event: MessageSaved) -> None:
        try:
            await handler(event)
        except Exception:
            logger.exception(f"Event handler failed for {event.event_type.value}")

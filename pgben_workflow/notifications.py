"""Notification dispatch.

Engines emit :class:`NotificationEvent` values after the state change they
describe has been persisted, outside any entity lock. Delivery is
best-effort: a failing dispatcher is logged and never undoes the committed
change.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Protocol, runtime_checkable

from .schemas.domain import NotificationEvent, NotificationEventType

logger = logging.getLogger(__name__)


@runtime_checkable
class NotificationDispatcher(Protocol):
    async def notify(self, event: NotificationEvent) -> None:
        """Deliver ``event``; implementations may raise on transport failure."""
        ...


class LoggingDispatcher(NotificationDispatcher):
    """Dispatcher that only writes events to the log."""

    def __init__(self, level: int = logging.INFO) -> None:
        self._level = level

    async def notify(self, event: NotificationEvent) -> None:
        logger.log(
            self._level,
            f"Notification {event.type.value} subject={event.subject_id} payload={event.payload}",
        )


class CollectingDispatcher(NotificationDispatcher):
    """Dispatcher that keeps every event in memory, in delivery order."""

    def __init__(self) -> None:
        self.events: List[NotificationEvent] = []

    async def notify(self, event: NotificationEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: NotificationEventType) -> List[NotificationEvent]:
        return [e for e in self.events if e.type == event_type]

    def clear(self) -> None:
        self.events.clear()


async def dispatch(dispatcher: Optional[NotificationDispatcher], event: NotificationEvent) -> None:
    """Send ``event`` after commit; failures are logged and swallowed."""
    if dispatcher is None:
        return
    try:
        await dispatcher.notify(event)
    except Exception:
        logger.exception(f"Failed to dispatch notification {event.type.value} for {event.subject_id}")

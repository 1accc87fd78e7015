"""
Notification emitter interface.

Delivery (email, push, websocket) lives outside the engine. The engine only
hands events to an emitter and never lets an emitter failure change its
own outcome.
"""

import logging
from typing import List, Protocol

from sprintflow.domain.models import NotificationEvent

logger = logging.getLogger(__name__)


class NotificationEmitter(Protocol):
    async def notify(self, event: NotificationEvent) -> None:
        ...


class LoggingNotificationEmitter:
    """Default emitter: writes events to the log"""

    async def notify(self, event: NotificationEvent) -> None:
        logger.info(
            f"Notification {event.kind}: {event.item_type} {event.item_id} "
            f"-> recipient {event.recipient_id}"
        )


class RecordingNotificationEmitter:
    """Keeps events in memory. Used by the seed script and tests."""

    def __init__(self):
        self.events: List[NotificationEvent] = []

    async def notify(self, event: NotificationEvent) -> None:
        self.events.append(event)


async def notify_safely(emitter: NotificationEmitter, event: NotificationEvent) -> None:
    """Deliver an event, logging and swallowing any emitter failure"""
    try:
        await emitter.notify(event)
    except Exception as e:
        logger.warning(f"Failed to send {event.kind} notification for {event.item_type} {event.item_id}: {e}")

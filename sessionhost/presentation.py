"""Presentation context and the suspendable outlet the host pushes events through."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterator

from .channel import Channel, Context
from .messages import PresentationEvent
from .wire import decode

logger = logging.getLogger(__name__)

PRESENTATION_CONTEXT = "presentation"


class PresentationFeed(Context):
    """In-memory presentation endpoint; clients poll delivered events by offset."""

    def __init__(self, name: str = PRESENTATION_CONTEXT):
        super().__init__(name)
        self.events: list[dict[str, Any]] = []

    def post(self, raw: str) -> None:
        self.events.append(decode(raw))

    def since(self, after: int = 0) -> list[dict[str, Any]]:
        return list(self.events[max(0, after):])

    def of_type(self, event_type: str) -> list[dict[str, Any]]:
        return [event for event in self.events if event.get("type") == event_type]


class PresentationOutlet:
    """Pushes host events to the presentation; drops them while suspended."""

    def __init__(self, channel: Channel, target: str = PRESENTATION_CONTEXT):
        self.channel = channel
        self.target = target
        self._suspended = 0
        self.dropped = 0

    @property
    def suspended(self) -> bool:
        return self._suspended > 0

    def push(self, event: PresentationEvent) -> None:
        if self.suspended:
            self.dropped += 1
            logger.debug("Outlet suspended; dropping %s", event.message_type.value)
            return
        self.channel.send(self.target, event)

    @contextmanager
    def paused(self) -> Iterator[None]:
        self._suspended += 1
        try:
            yield
        finally:
            self._suspended -= 1

"""
Event Bus Infrastructure

Architectural Intent:
- In-memory event bus for publishing Job domain events
- Supports async subscription handlers
- A failing handler is logged and does not stop delivery to the others
"""

import logging
from typing import Sequence

from skiff.domain.events.event_base import DomainEvent
from skiff.domain.ports.event_bus_port import EventBusPort, LifecycleHandler

logger = logging.getLogger(__name__)


class EventBus(EventBusPort):
    def __init__(self) -> None:
        self._handlers: dict[type, list[LifecycleHandler]] = {}

    async def publish(self, events: Sequence[DomainEvent]) -> None:
        for event in events:
            for handler in self._handlers.get(type(event), []):
                try:
                    await handler(event)
                except Exception:
                    logger.exception(
                        "Handler for %s failed on %s", event.event_type, event.aggregate_id
                    )

    def subscribe(self, event_type: type, handler: LifecycleHandler) -> None:
        self._handlers.setdefault(event_type, []).append(handler)

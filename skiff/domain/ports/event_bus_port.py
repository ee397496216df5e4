"""
Event Bus Port

Architectural Intent:
- Contract through which the orchestrator announces Job lifecycle events
- Consumers (operational logging, telemetry) subscribe per event type and
  never see the pipeline itself
"""

from typing import Awaitable, Callable, Protocol, Sequence, runtime_checkable

from skiff.domain.events.event_base import DomainEvent

LifecycleHandler = Callable[[DomainEvent], Awaitable[None]]


@runtime_checkable
class EventBusPort(Protocol):
    async def publish(self, events: Sequence[DomainEvent]) -> None: ...

    def subscribe(self, event_type: type, handler: LifecycleHandler) -> None: ...

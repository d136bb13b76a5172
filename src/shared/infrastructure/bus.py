"""In-memory event bus implementation."""

from __future__ import annotations

from typing import Dict, List, Type

import structlog

from shared.domain.bus import IEventBus, IEventHandler
from shared.domain.events import DomainEvent

logger = structlog.get_logger(__name__)


class InMemoryEventBus(IEventBus):
    """Simple in-process event bus.

    Handlers run synchronously in subscription order.  Exceptions propagate
    to the publisher, which decides whether the event is retried.
    """

    def __init__(self) -> None:
        self._handlers: Dict[Type[DomainEvent], List[IEventHandler]] = {}

    def subscribe(self, event_class: Type[DomainEvent], handler: IEventHandler) -> None:
        handlers = self._handlers.setdefault(event_class, [])
        if handler not in handlers:
            handlers.append(handler)

    def handlers_for(self, event_class: Type[DomainEvent]) -> List[IEventHandler]:
        return list(self._handlers.get(event_class, []))

    def publish(self, event: DomainEvent) -> None:
        handlers = self.handlers_for(type(event))
        logger.info(
            "event_bus.publish",
            event_name=event.event_name,
            aggregate_id=str(event.aggregate_id),
            handler_count=len(handlers),
        )
        for handler in handlers:
            handler.handle(event)


# Global bus instance (singleton)

event_bus = InMemoryEventBus()

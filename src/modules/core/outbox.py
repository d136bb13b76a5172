"""Transactional outbox: write events with the data, publish after commit."""

from __future__ import annotations

from functools import partial
from typing import Any, Iterable, List, Sequence

import structlog
from django.db import transaction

from modules.core.models import EventStatus, OutboxEvent
from shared.domain.events import DomainEvent
from shared.infrastructure.bus import event_bus

logger = structlog.get_logger(__name__)


def record_events(events: Iterable[DomainEvent], topic: str) -> List[OutboxEvent]:
    """Persist ``events`` as outbox rows and publish them once the
    surrounding transaction commits.

    Outside of an atomic block Django runs the on-commit callback
    immediately.
    """
    rows = [
        OutboxEvent.objects.create(
            event_type=event.event_name,
            aggregate_id=str(event.aggregate_id),
            payload=event.to_payload(),
            topic=topic,
        )
        for event in events
    ]
    if rows:
        transaction.on_commit(partial(publish_outbox_events, [row.id for row in rows]))
    return rows


def record_entity_events(entity: Any, topic: str) -> List[OutboxEvent]:
    """Drain the domain events collected on an aggregate into the outbox."""
    events = entity.domain_events if hasattr(entity, "domain_events") else []
    rows = record_events(events, topic)
    if hasattr(entity, "clear_domain_events"):
        entity.clear_domain_events()
    return rows


def publish_outbox_events(event_ids: Sequence[Any]) -> int:
    """Publish the given outbox rows through the event bus.

    A failing handler marks its row ``FAILED`` for the relay task to
    retry; it never propagates, the business transaction has already
    committed.  Returns the number of rows published.
    """
    published = 0
    rows = OutboxEvent.objects.filter(id__in=list(event_ids)).exclude(
        status=EventStatus.PUBLISHED
    )
    for row in rows:
        log = logger.bind(
            outbox_event_id=str(row.id),
            event_type=row.event_type,
            aggregate_id=row.aggregate_id,
        )
        try:
            event = DomainEvent.from_payload(row.event_type, row.payload)
            event_bus.publish(event)
        except Exception as exc:
            row.mark_as_failed(str(exc))
            log.exception("outbox.publish_failed", retry_count=row.retry_count)
            continue
        row.mark_as_published()
        published += 1
    return published

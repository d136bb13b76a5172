"""Celery tasks of the core module."""

from datetime import timedelta

import structlog
from celery import shared_task
from django.conf import settings

from modules.core.models import OutboxEvent
from modules.core.outbox import publish_outbox_events

logger = structlog.get_logger(__name__)


@shared_task(name="core.relay_outbox_events")
def relay_outbox_events(grace_seconds: int = 60):
    """Retry outbox events left ``PENDING`` or ``FAILED`` after commit."""
    due = OutboxEvent.objects.due_for_relay(
        max_retries=settings.OUTBOX_MAX_RETRIES,
        grace=timedelta(seconds=grace_seconds),
    )
    event_ids = list(due.values_list("id", flat=True)[:500])
    if not event_ids:
        return {"due": 0, "published": 0}

    published = publish_outbox_events(event_ids)
    logger.info("outbox.relay_finished", due=len(event_ids), published=published)
    return {"due": len(event_ids), "published": published}

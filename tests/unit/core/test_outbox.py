"""Unit tests for recording and publishing outbox events."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import timedelta

import pytest
from django.utils import timezone

from modules.core.models import EventStatus, OutboxEvent
from modules.core.outbox import publish_outbox_events, record_events
from modules.core.tasks import relay_outbox_events
from shared.domain.events import DomainEvent
from shared.infrastructure.bus import event_bus

pytestmark = pytest.mark.unit


@dataclass(frozen=True, kw_only=True)
class SampleRecorded(DomainEvent):
    note: str = ""


class RecordingHandler:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.seen = []

    def handle(self, event):
        if self.fail:
            raise RuntimeError("handler exploded")
        self.seen.append(event)


@pytest.fixture()
def handler():
    handler = RecordingHandler()
    event_bus.subscribe(SampleRecorded, handler)
    yield handler
    event_bus._handlers[SampleRecorded].remove(handler)


def test_record_events_writes_pending_rows():
    aggregate_id = uuid.uuid4()

    rows = record_events([SampleRecorded(aggregate_id=aggregate_id, note="hi")], topic="tests")

    assert len(rows) == 1
    row = OutboxEvent.objects.get(pk=rows[0].pk)
    assert row.event_type == "SampleRecorded"
    assert row.aggregate_id == str(aggregate_id)
    assert row.payload["note"] == "hi"
    assert row.status == EventStatus.PENDING


def test_publish_after_commit(handler, django_capture_on_commit_callbacks):
    with django_capture_on_commit_callbacks(execute=True):
        rows = record_events([SampleRecorded(aggregate_id=uuid.uuid4())], topic="tests")

    assert len(handler.seen) == 1
    assert isinstance(handler.seen[0], SampleRecorded)
    rows[0].refresh_from_db()
    assert rows[0].status == EventStatus.PUBLISHED


def test_failing_handler_marks_row_failed(handler):
    handler.fail = True
    rows = record_events([SampleRecorded(aggregate_id=uuid.uuid4())], topic="tests")

    published = publish_outbox_events([rows[0].id])

    assert published == 0
    rows[0].refresh_from_db()
    assert rows[0].status == EventStatus.FAILED
    assert rows[0].retry_count == 1
    assert "handler exploded" in rows[0].error_message


def test_relay_retries_failed_and_stale_rows(handler, settings):
    settings.OUTBOX_MAX_RETRIES = 5
    failed = record_events([SampleRecorded(aggregate_id=uuid.uuid4())], topic="tests")[0]
    failed.mark_as_failed("earlier failure")
    stale = record_events([SampleRecorded(aggregate_id=uuid.uuid4())], topic="tests")[0]
    OutboxEvent.objects.filter(pk=stale.pk).update(
        created_at=timezone.now() - timedelta(minutes=5)
    )
    fresh = record_events([SampleRecorded(aggregate_id=uuid.uuid4())], topic="tests")[0]

    result = relay_outbox_events.delay().get()

    assert result == {"due": 2, "published": 2}
    fresh.refresh_from_db()
    assert fresh.status == EventStatus.PENDING
    assert len(handler.seen) == 2


def test_relay_with_nothing_due():
    assert relay_outbox_events() == {"due": 0, "published": 0}

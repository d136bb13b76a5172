"""Unit tests for the OutboxEvent model and its relay queryset.

Covers:
- Defaults and JSON payload persistence.
- mark_as_published() / mark_as_failed(error) transitions.
- due_for_relay(): grace period for PENDING rows, retry cap for FAILED.
"""

from __future__ import annotations

from datetime import timedelta

import pytest
from django.utils import timezone

from modules.core.models import EventStatus, OutboxEvent

pytestmark = pytest.mark.unit


def _make_event(**overrides) -> OutboxEvent:
    defaults = {
        "event_type": "PreOrderCreated",
        "payload": {"aggregate_id": "abc-123", "quantity_kg": "2.50"},
        "aggregate_id": "abc-123",
        "topic": "preorders",
    }
    defaults.update(overrides)
    return OutboxEvent.objects.create(**defaults)


def _age(event: OutboxEvent, seconds: int) -> None:
    OutboxEvent.objects.filter(pk=event.pk).update(
        created_at=timezone.now() - timedelta(seconds=seconds)
    )


class TestOutboxEvent:
    def test_defaults(self):
        event = _make_event()
        event.refresh_from_db()
        assert event.status == EventStatus.PENDING
        assert event.processed_at is None
        assert event.error_message is None
        assert event.retry_count == 0
        assert event.id.version == 7

    def test_payload_round_trip(self):
        payload = {"pre_order_ids": ["a", "b"], "allocated_kg": "15.00"}
        event = _make_event(payload=payload)
        event.refresh_from_db()
        assert event.payload == payload

    def test_mark_as_published(self):
        event = _make_event()
        event.mark_as_failed("smtp down")
        event.mark_as_published()
        event.refresh_from_db()

        assert event.status == EventStatus.PUBLISHED
        assert event.processed_at is not None
        assert event.error_message is None

    def test_mark_as_failed_increments_retry(self):
        event = _make_event()
        event.mark_as_failed("Error 1")
        event.mark_as_failed("Error 2")
        event.refresh_from_db()

        assert event.status == EventStatus.FAILED
        assert event.retry_count == 2
        assert event.error_message == "Error 2"

    def test_str_representation(self):
        result = str(_make_event(event_type="PreOrderDelayed", aggregate_id="po-456"))
        assert "PreOrderDelayed" in result
        assert "PENDING" in result
        assert "po-456" in result


class TestDueForRelay:
    def test_fresh_pending_rows_are_left_alone(self):
        _make_event()
        due = OutboxEvent.objects.due_for_relay(max_retries=5, grace=timedelta(seconds=60))
        assert not due.exists()

    def test_old_pending_rows_are_due(self):
        event = _make_event()
        _age(event, 120)
        due = OutboxEvent.objects.due_for_relay(max_retries=5, grace=timedelta(seconds=60))
        assert list(due) == [event]

    def test_failed_rows_until_retry_cap(self):
        retryable = _make_event()
        retryable.mark_as_failed("boom")
        exhausted = _make_event()
        for _ in range(3):
            exhausted.mark_as_failed("boom")

        due = OutboxEvent.objects.due_for_relay(max_retries=3, grace=timedelta(seconds=60))
        assert list(due) == [retryable]

    def test_published_rows_are_never_due(self):
        event = _make_event()
        event.mark_as_published()
        _age(event, 600)
        due = OutboxEvent.objects.due_for_relay(max_retries=5, grace=timedelta(seconds=0))
        assert not due.exists()

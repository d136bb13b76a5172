"""Unit tests for domain event primitives and the in-memory bus."""

from __future__ import annotations

import uuid
from datetime import datetime

import pytest

from modules.preorders.events import FruitTypeAllocated, PreOrderClosed, PreOrderCreated
from modules.preorders.models import PreOrder
from shared.domain.events import DomainEvent
from shared.infrastructure.bus import InMemoryEventBus

pytestmark = pytest.mark.unit


def test_pre_order_registers_and_clears_domain_events():
    pre_order = PreOrder()
    assert pre_order.domain_events == []

    event = PreOrderCreated(aggregate_id=pre_order.id, fruit_type_id="f", quantity_kg="2")
    pre_order.add_domain_event(event)

    assert pre_order.domain_events == [event]
    assert event.event_name == "PreOrderCreated"

    pre_order.clear_domain_events()
    assert pre_order.domain_events == []


def test_payload_is_json_primitives():
    event = PreOrderClosed(aggregate_id=uuid.uuid4(), status="REFUND", actor="admin")

    payload = event.to_payload()

    assert payload["aggregate_id"] == str(event.aggregate_id)
    assert payload["event_id"] == str(event.event_id)
    assert isinstance(payload["occurred_on"], str)
    assert payload["status"] == "REFUND"


def test_from_payload_rebuilds_the_event():
    original = FruitTypeAllocated(
        aggregate_id=uuid.uuid4(), pre_order_ids=("a", "b"), allocated_kg="15.00"
    )

    rebuilt = DomainEvent.from_payload("FruitTypeAllocated", original.to_payload())

    assert isinstance(rebuilt, FruitTypeAllocated)
    assert rebuilt.aggregate_id == original.aggregate_id
    assert rebuilt.event_id == original.event_id
    assert isinstance(rebuilt.occurred_on, datetime)
    assert list(rebuilt.pre_order_ids) == ["a", "b"]
    assert rebuilt.allocated_kg == "15.00"


def test_from_payload_unknown_event():
    with pytest.raises(KeyError):
        DomainEvent.from_payload("NoSuchEvent", {"aggregate_id": str(uuid.uuid4())})


def test_bus_subscribe_is_idempotent_and_publishes_in_order():
    bus = InMemoryEventBus()
    calls = []

    class First:
        def handle(self, event):
            calls.append("first")

    class Second:
        def handle(self, event):
            calls.append("second")

    first, second = First(), Second()
    bus.subscribe(PreOrderClosed, first)
    bus.subscribe(PreOrderClosed, first)
    bus.subscribe(PreOrderClosed, second)

    bus.publish(PreOrderClosed(aggregate_id=uuid.uuid4(), status="COMPLETED"))

    assert calls == ["first", "second"]
    assert bus.handlers_for(PreOrderCreated) == []

"""End-to-end notification delivery through the outbox.

Events are published only after the business transaction commits, so
every test runs the on-commit callbacks explicitly.
"""

from __future__ import annotations

from unittest.mock import patch

import pytest
from django.core import mail

from modules.core.models import EventStatus, OutboxEvent
from modules.notifications.models import Notification
from modules.preorders.constants import PreOrderStatus
from modules.preorders.factories import build_allocation_service, build_pre_order_service

pytestmark = pytest.mark.integration


@pytest.fixture()
def allocation():
    return build_allocation_service()


def test_ready_email_and_push_after_allocation(
    allocation, fruit_type, make_pre_order, set_received, customer_user, settings,
    django_capture_on_commit_callbacks,
):
    settings.PREORDER_DAYS_TO_PAY = 7
    make_pre_order(fruit_type, "2")
    make_pre_order(fruit_type, "3")
    set_received(fruit_type, "5")

    with django_capture_on_commit_callbacks(execute=True):
        allocation.run_allocation(fruit_type.id)

    assert len(mail.outbox) == 2
    assert mail.outbox[0].to == ["customer@example.com"]
    assert "7 days" in mail.outbox[0].body
    assert Notification.objects.filter(user=customer_user).count() == 1
    assert not OutboxEvent.objects.exclude(status=EventStatus.PUBLISHED).exists()


def test_delayed_notification(
    allocation, fruit_type, make_pre_order, set_received, customer_user, age_pre_orders,
    django_capture_on_commit_callbacks,
):
    first = make_pre_order(fruit_type, "2")
    second = make_pre_order(fruit_type, "5")
    age_pre_orders(first, second)
    set_received(fruit_type, "3")

    with django_capture_on_commit_callbacks(execute=True):
        allocation.run_allocation(fruit_type.id)

    subjects = sorted(message.subject for message in mail.outbox)
    assert subjects == [
        "Your pre-order is ready: please pay the remaining balance",
        "Your pre-order moves to the next batch",
    ]
    titles = set(Notification.objects.values_list("title", flat=True))
    assert "Your pre-order moves to the next batch" in titles


def test_smtp_failure_does_not_undo_allocation(
    allocation, fruit_type, make_pre_order, set_received, django_capture_on_commit_callbacks
):
    pre_order = make_pre_order(fruit_type, "2")
    set_received(fruit_type, "2")

    with patch(
        "modules.notifications.services.send_mail", side_effect=ConnectionError("smtp down")
    ):
        with django_capture_on_commit_callbacks(execute=True):
            allocation.run_allocation(fruit_type.id)

    pre_order.refresh_from_db()
    assert pre_order.status == PreOrderStatus.ALLOCATED_WAITING_PAYMENT
    assert Notification.objects.filter(user=pre_order.user).count() == 1


def test_payment_confirmed_push(
    fruit_type, make_pre_order, customer_user, django_capture_on_commit_callbacks
):
    service = build_pre_order_service()
    pre_order = make_pre_order(fruit_type, "2", status=PreOrderStatus.ALLOCATED_WAITING_PAYMENT)
    redirect = service.create_remaining_payment_intent(pre_order.id, customer_user.id)

    with django_capture_on_commit_callbacks(execute=True):
        service.confirm_remaining_payment_intent(redirect.intent_id)

    notification = Notification.objects.get(user=customer_user)
    assert notification.title == "Payment received"
    assert notification.data["pre_order_id"] == str(pre_order.id)
    pre_order.refresh_from_db()
    assert pre_order.status == PreOrderStatus.READY_FOR_FULFILLMENT

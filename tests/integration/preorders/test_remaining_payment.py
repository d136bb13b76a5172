"""Integration tests for the remaining-payment leg."""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest
from django.utils import timezone

from modules.core.models import OutboxEvent
from modules.fruits.constants import FruitTypeStatus
from modules.preorders.constants import PaymentIntentStatus, PreOrderStatus
from modules.preorders.exceptions import (
    NothingToPay,
    PaymentIntentExpired,
    PreOrderNotAllocated,
    PreOrderNotFound,
)
from modules.preorders.factories import build_pre_order_service
from modules.preorders.models import PreOrder, RemainingPaymentIntent

pytestmark = pytest.mark.integration

ALLOCATED = PreOrderStatus.ALLOCATED_WAITING_PAYMENT


@pytest.fixture()
def service():
    return build_pre_order_service()


@pytest.fixture()
def allocated(fruit_type, make_pre_order):
    return make_pre_order(fruit_type, "4", status=ALLOCATED, allocated_at=timezone.now())


class TestCreateRemainingIntent:
    def test_amount_is_total_minus_deposit(self, service, allocated, customer_user):
        redirect = service.create_remaining_payment_intent(
            allocated.id, customer_user.id, client_ip="10.0.0.1"
        )

        assert redirect.amount == Decimal("200.00")
        intent = RemainingPaymentIntent.objects.get(pk=redirect.intent_id)
        assert intent.pre_order_id == allocated.id
        assert intent.status == PaymentIntentStatus.PENDING
        assert "amount=20000" in redirect.payment_url

    def test_someone_elses_pre_order(self, service, allocated, other_customer):
        with pytest.raises(PreOrderNotFound):
            service.create_remaining_payment_intent(allocated.id, other_customer.id)

    @pytest.mark.parametrize(
        "status",
        [
            PreOrderStatus.WAITING_FOR_ALLOCATION,
            PreOrderStatus.WAITING_FOR_NEXT_BATCH,
            PreOrderStatus.READY_FOR_FULFILLMENT,
            PreOrderStatus.CANCELLED,
        ],
    )
    def test_only_allocated_pre_orders(self, service, fruit_type, make_pre_order, customer_user, status):
        pre_order = make_pre_order(fruit_type, "2", status=status)
        with pytest.raises(PreOrderNotAllocated):
            service.create_remaining_payment_intent(pre_order.id, customer_user.id)

    def test_nothing_left_to_pay(self, service, fruit_type, customer_user):
        pre_order = PreOrder.objects.create(
            user=customer_user,
            fruit_type=fruit_type,
            quantity_kg=Decimal("1"),
            deposit_paid=Decimal("100.00"),
            total_amount=Decimal("100.00"),
            status=ALLOCATED,
        )
        with pytest.raises(NothingToPay):
            service.create_remaining_payment_intent(pre_order.id, customer_user.id)


class TestConfirmRemainingIntent:
    def test_confirmation_makes_it_ready(self, service, allocated, customer_user):
        redirect = service.create_remaining_payment_intent(allocated.id, customer_user.id)

        pre_order = service.confirm_remaining_payment_intent(redirect.intent_id)

        assert pre_order.status == PreOrderStatus.READY_FOR_FULFILLMENT
        assert pre_order.remaining_paid_at is not None
        assert not pre_order.can_pay_remaining
        intent = RemainingPaymentIntent.objects.get(pk=redirect.intent_id)
        assert intent.status == PaymentIntentStatus.SUCCESS
        assert OutboxEvent.objects.filter(
            event_type="PreOrderReadyForFulfillment", aggregate_id=str(allocated.id)
        ).exists()

    def test_confirming_twice_is_a_no_op(self, service, allocated, customer_user):
        redirect = service.create_remaining_payment_intent(allocated.id, customer_user.id)

        service.confirm_remaining_payment_intent(redirect.intent_id)
        again = service.confirm_remaining_payment_intent(redirect.intent_id)

        assert again.status == PreOrderStatus.READY_FOR_FULFILLMENT
        assert again.status_history.filter(
            new_status=PreOrderStatus.READY_FOR_FULFILLMENT
        ).count() == 1

    def test_expired_intent(self, service, allocated, customer_user):
        redirect = service.create_remaining_payment_intent(allocated.id, customer_user.id)
        RemainingPaymentIntent.objects.filter(pk=redirect.intent_id).update(
            expires_at=timezone.now() - timedelta(minutes=1)
        )

        with pytest.raises(PaymentIntentExpired):
            service.confirm_remaining_payment_intent(redirect.intent_id)

        assert (
            RemainingPaymentIntent.objects.get(pk=redirect.intent_id).status
            == PaymentIntentStatus.EXPIRED
        )
        allocated.refresh_from_db()
        assert allocated.status == ALLOCATED

    def test_new_intent_after_expiry(self, service, allocated, customer_user):
        first = service.create_remaining_payment_intent(allocated.id, customer_user.id)
        RemainingPaymentIntent.objects.filter(pk=first.intent_id).update(
            expires_at=timezone.now() - timedelta(minutes=1)
        )
        second = service.create_remaining_payment_intent(allocated.id, customer_user.id)

        assert second.intent_id != first.intent_id
        pre_order = service.confirm_remaining_payment_intent(second.intent_id)
        assert pre_order.status == PreOrderStatus.READY_FOR_FULFILLMENT

    def test_refunded_meanwhile(self, service, allocated, customer_user):
        redirect = service.create_remaining_payment_intent(allocated.id, customer_user.id)
        service.mark_refund(allocated.id, actor="admin")

        with pytest.raises(PreOrderNotAllocated):
            service.confirm_remaining_payment_intent(redirect.intent_id)

        intent = RemainingPaymentIntent.objects.get(pk=redirect.intent_id)
        assert intent.status == PaymentIntentStatus.PENDING

    def test_last_payment_deactivates_fruit_type(self, service, allocated, customer_user, fruit_type):
        redirect = service.create_remaining_payment_intent(allocated.id, customer_user.id)

        service.confirm_remaining_payment_intent(redirect.intent_id)

        fruit_type.refresh_from_db()
        assert fruit_type.status == FruitTypeStatus.INACTIVE

    def test_outstanding_demand_keeps_fruit_type_active(
        self, service, allocated, customer_user, fruit_type, make_pre_order
    ):
        make_pre_order(fruit_type, "1", status=PreOrderStatus.WAITING_FOR_NEXT_BATCH)
        redirect = service.create_remaining_payment_intent(allocated.id, customer_user.id)

        service.confirm_remaining_payment_intent(redirect.intent_id)

        fruit_type.refresh_from_db()
        assert fruit_type.status == FruitTypeStatus.ACTIVE

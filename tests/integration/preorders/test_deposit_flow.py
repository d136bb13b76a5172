"""Integration tests for the deposit leg: intent creation and confirmation.

Covers:
- Deposit computed from price, quantity and the deposit percentage.
- Catalog preconditions (active, open, harvest lockout, quantity bounds).
- Confirmation as the only way a commitment comes into existence.
- Idempotent confirmation and lazy expiry.
"""

from __future__ import annotations

import uuid
from datetime import timedelta
from decimal import Decimal
from urllib.parse import parse_qs, urlparse

import pytest
from django.utils import timezone

from modules.core.models import OutboxEvent
from modules.fruits.constants import FruitTypeStatus
from modules.fruits.exceptions import FruitTypeNotFound
from modules.preorders.constants import PaymentIntentStatus, PreOrderStatus
from modules.preorders.dtos import CreateDepositIntentDTO
from modules.preorders.exceptions import (
    FruitTypeUnavailable,
    HarvestLockActive,
    InvalidQuantity,
    PaymentIntentExpired,
    PaymentIntentNotFound,
)
from modules.preorders.factories import build_pre_order_service
from modules.preorders.models import DepositPaymentIntent, PreOrder

pytestmark = pytest.mark.integration


@pytest.fixture()
def service(settings):
    settings.PREORDER_DEPOSIT_PERCENT = 50
    settings.PREORDER_INTENT_TTL_MINUTES = 15
    return build_pre_order_service()


def _dto(user, fruit_type, quantity="2", **extra):
    return CreateDepositIntentDTO(
        user_id=user.id,
        fruit_type_id=fruit_type.id,
        quantity_kg=Decimal(quantity),
        client_ip="10.1.2.3",
        **extra,
    )


class TestCreateDepositIntent:
    def test_deposit_is_half_of_price_times_quantity(self, service, customer_user, fruit_type):
        redirect = service.create_deposit_intent(_dto(customer_user, fruit_type, "2.5"))

        assert redirect.amount == Decimal("125.00")
        intent = DepositPaymentIntent.objects.get(pk=redirect.intent_id)
        assert intent.status == PaymentIntentStatus.PENDING
        assert intent.quantity_kg == Decimal("2.50")
        assert intent.client_ip == "10.1.2.3"
        assert intent.pre_order is None
        assert timedelta(minutes=14) < intent.expires_at - timezone.now() <= timedelta(minutes=15)

    def test_redirect_points_at_the_intent(self, service, customer_user, fruit_type):
        redirect = service.create_deposit_intent(_dto(customer_user, fruit_type, "2"))

        query = parse_qs(urlparse(redirect.payment_url).query)
        assert query["reference"] == [str(redirect.intent_id)]
        assert query["amount"] == ["10000"]

    def test_deposit_rounds_half_up(self, service, customer_user, make_fruit_type):
        fruit = make_fruit_type(name="Odd price", estimated_price=Decimal("33.33"))

        redirect = service.create_deposit_intent(_dto(customer_user, fruit, "1.5"))

        # 33.33 * 1.5 * 0.5 = 24.9975
        assert redirect.amount == Decimal("25.00")

    def test_no_commitment_before_payment(self, service, customer_user, fruit_type):
        service.create_deposit_intent(_dto(customer_user, fruit_type))
        assert not PreOrder.objects.exists()

    def test_unknown_fruit_type(self, service, customer_user):
        dto = CreateDepositIntentDTO(
            user_id=customer_user.id, fruit_type_id=uuid.uuid4(), quantity_kg=Decimal("1")
        )
        with pytest.raises(FruitTypeNotFound):
            service.create_deposit_intent(dto)

    @pytest.mark.parametrize(
        "overrides",
        [{"status": FruitTypeStatus.INACTIVE}, {"allow_pre_order": False}],
    )
    def test_closed_fruit_type(self, service, customer_user, make_fruit_type, overrides):
        fruit = make_fruit_type(name="Closed fruit", **overrides)
        with pytest.raises(FruitTypeUnavailable):
            service.create_deposit_intent(_dto(customer_user, fruit))

    def test_harvest_lockout(self, service, customer_user, make_fruit_type, settings):
        settings.PREORDER_HARVEST_LOCK_DAYS = 3
        fruit = make_fruit_type(
            name="Harvest soon", estimated_harvest_date=timezone.localdate() + timedelta(days=3)
        )
        with pytest.raises(HarvestLockActive):
            service.create_deposit_intent(_dto(customer_user, fruit))

    def test_inactive_inside_harvest_lock_reports_unavailable(
        self, service, customer_user, make_fruit_type, settings
    ):
        settings.PREORDER_HARVEST_LOCK_DAYS = 3
        fruit = make_fruit_type(
            name="Closed and harvesting",
            status=FruitTypeStatus.INACTIVE,
            estimated_harvest_date=timezone.localdate() + timedelta(days=1),
        )
        assert not fruit.accepts_pre_orders()
        with pytest.raises(FruitTypeUnavailable):
            service.create_deposit_intent(_dto(customer_user, fruit))

    @pytest.mark.parametrize("quantity", ["0.50", "50.01"])
    def test_quantity_outside_bounds(self, service, customer_user, fruit_type, quantity):
        with pytest.raises(InvalidQuantity):
            service.create_deposit_intent(_dto(customer_user, fruit_type, quantity))


class TestConfirmDepositIntent:
    def test_confirmation_creates_the_commitment(self, service, customer_user, fruit_type):
        redirect = service.create_deposit_intent(
            _dto(customer_user, fruit_type, "2", receiver_name="Lan", receiver_phone="0912345678")
        )

        pre_order = service.confirm_deposit_intent(redirect.intent_id)

        assert pre_order.status == PreOrderStatus.WAITING_FOR_ALLOCATION
        assert pre_order.user_id == customer_user.id
        assert pre_order.quantity_kg == Decimal("2")
        assert pre_order.deposit_paid == Decimal("100.00")
        assert pre_order.total_amount == Decimal("200.00")
        assert pre_order.receiver_name == "Lan"

        intent = DepositPaymentIntent.objects.get(pk=redirect.intent_id)
        assert intent.status == PaymentIntentStatus.SUCCESS
        assert intent.pre_order_id == pre_order.id

        history = list(pre_order.status_history.all())
        assert [h.new_status for h in history] == [PreOrderStatus.WAITING_FOR_ALLOCATION]
        assert history[0].notes == "Deposit confirmed"

        assert OutboxEvent.objects.filter(
            event_type="PreOrderCreated", aggregate_id=str(pre_order.id), topic="preorders"
        ).count() == 1

    def test_confirming_twice_is_a_no_op(self, service, customer_user, fruit_type):
        redirect = service.create_deposit_intent(_dto(customer_user, fruit_type))

        first = service.confirm_deposit_intent(redirect.intent_id)
        second = service.confirm_deposit_intent(redirect.intent_id)

        assert first.id == second.id
        assert PreOrder.objects.count() == 1
        assert OutboxEvent.objects.filter(event_type="PreOrderCreated").count() == 1

    def test_expired_intent_is_marked_and_rejected(self, service, customer_user, fruit_type):
        redirect = service.create_deposit_intent(_dto(customer_user, fruit_type))
        DepositPaymentIntent.objects.filter(pk=redirect.intent_id).update(
            expires_at=timezone.now() - timedelta(seconds=1)
        )

        with pytest.raises(PaymentIntentExpired):
            service.confirm_deposit_intent(redirect.intent_id)

        intent = DepositPaymentIntent.objects.get(pk=redirect.intent_id)
        assert intent.status == PaymentIntentStatus.EXPIRED
        assert not PreOrder.objects.exists()

        with pytest.raises(PaymentIntentExpired):
            service.confirm_deposit_intent(redirect.intent_id)

    def test_unknown_intent(self, service):
        with pytest.raises(PaymentIntentNotFound):
            service.confirm_deposit_intent(uuid.uuid4())

    def test_total_is_fixed_at_confirmation(self, service, customer_user, fruit_type):
        redirect = service.create_deposit_intent(_dto(customer_user, fruit_type, "2"))
        pre_order = service.confirm_deposit_intent(redirect.intent_id)

        fruit_type.estimated_price = Decimal("250.00")
        fruit_type.save()

        pre_order.refresh_from_db()
        assert pre_order.total_amount == Decimal("200.00")
        assert pre_order.deposit_paid == Decimal("100.00")

from datetime import timedelta
from decimal import Decimal

import pytest
from django.contrib.auth import get_user_model
from django.core.cache import cache
from django.utils import timezone
from rest_framework.test import APIClient

from modules.fruits.models import FruitType
from modules.preorders.constants import PreOrderStatus
from modules.preorders.models import PreOrder, PreOrderStock

User = get_user_model()


@pytest.fixture(autouse=True)
def _use_db(db):
    """Automatically use the test database for all tests."""


@pytest.fixture(autouse=True)
def _clear_cache():
    """Throttle counters and fruit type guards live in the cache."""
    cache.clear()
    yield
    cache.clear()


@pytest.fixture()
def api_client():
    """DRF APIClient for testing API endpoints."""
    return APIClient()


@pytest.fixture()
def api_client_with_correlation(api_client):
    """APIClient pre-configured with a known correlation ID header."""
    cid = "test-correlation-id-fixture"
    api_client.defaults["HTTP_X_REQUEST_ID"] = cid
    return api_client, cid


@pytest.fixture()
def customer_user():
    return User.objects.create_user(
        username="customer",
        email="customer@example.com",
        password="testpass123",
        first_name="Lan",
    )


@pytest.fixture()
def other_customer():
    return User.objects.create_user(
        username="other", email="other@example.com", password="testpass123"
    )


@pytest.fixture()
def staff_user():
    return User.objects.create_user(
        username="warehouse", password="testpass123", is_staff=True
    )


@pytest.fixture()
def customer_client(customer_user):
    client = APIClient()
    client.force_authenticate(user=customer_user)
    return client


@pytest.fixture()
def staff_client(staff_user):
    client = APIClient()
    client.force_authenticate(user=staff_user)
    return client


@pytest.fixture()
def make_fruit_type():
    def _make(name="Durian Ri6", **overrides):
        defaults = {
            "estimated_price": Decimal("100.00"),
            "min_order_kg": Decimal("1.00"),
            "max_order_kg": Decimal("50.00"),
            "estimated_harvest_date": timezone.localdate() + timedelta(days=30),
            "allow_pre_order": True,
        }
        defaults.update(overrides)
        return FruitType.objects.create(name=name, **defaults)

    return _make


@pytest.fixture()
def fruit_type(make_fruit_type):
    return make_fruit_type()


@pytest.fixture()
def make_pre_order(customer_user):
    """Create a commitment directly, as a confirmed deposit would."""

    def _make(
        fruit_type, quantity_kg, status=PreOrderStatus.WAITING_FOR_ALLOCATION, user=None, **extra
    ):
        quantity_kg = Decimal(quantity_kg)
        total = fruit_type.estimated_price * quantity_kg
        return PreOrder.objects.create(
            user=user or customer_user,
            fruit_type=fruit_type,
            quantity_kg=quantity_kg,
            deposit_paid=(total / 2).quantize(Decimal("0.01")),
            total_amount=total.quantize(Decimal("0.01")),
            status=status,
            **extra,
        )

    return _make


@pytest.fixture()
def set_received():
    def _set(fruit_type, kg):
        stock, _ = PreOrderStock.objects.get_or_create(fruit_type=fruit_type)
        PreOrderStock.objects.filter(pk=stock.pk).update(received_kg=Decimal(kg))

    return _set


@pytest.fixture()
def age_pre_orders():
    """Give commitments strictly increasing ``created_at`` in argument order."""

    def _age(*pre_orders):
        base = timezone.now() - timedelta(hours=len(pre_orders) + 1)
        for offset, pre_order in enumerate(pre_orders):
            PreOrder.objects.filter(pk=pre_order.pk).update(
                created_at=base + timedelta(minutes=offset)
            )

    return _age

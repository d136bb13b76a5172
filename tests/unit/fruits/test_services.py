"""Unit tests for FruitTypeService open-catalog listing."""

from __future__ import annotations

import uuid
from datetime import timedelta

import pytest
from django.utils import timezone

from modules.fruits.constants import FruitTypeStatus
from modules.fruits.exceptions import FruitTypeNotFound
from modules.fruits.repositories.django_repository import FruitTypeDjangoRepository
from modules.fruits.services import FruitTypeService
from modules.preorders.constants import PreOrderStatus

pytestmark = pytest.mark.unit


@pytest.fixture()
def service():
    return FruitTypeService(FruitTypeDjangoRepository())


def _names(fruit_types):
    return sorted(f.name for f in fruit_types)


def test_lists_only_open_types(service, make_fruit_type):
    today = timezone.localdate()
    make_fruit_type(name="Open durian")
    make_fruit_type(name="Inactive mango", status=FruitTypeStatus.INACTIVE)
    make_fruit_type(name="No pre-order", allow_pre_order=False)
    make_fruit_type(name="Harvest soon", estimated_harvest_date=today + timedelta(days=1))
    make_fruit_type(name="Deleted").delete()

    assert _names(service.list_open_fruit_types(today=today)) == ["Open durian"]


def test_types_closed_by_allocation_are_hidden(service, make_fruit_type, make_pre_order):
    closed = make_fruit_type(name="Allocated durian")
    still_open = make_fruit_type(name="Waiting durian")
    make_pre_order(closed, "2", status=PreOrderStatus.ALLOCATED_WAITING_PAYMENT)
    make_pre_order(still_open, "2")
    make_pre_order(still_open, "3")

    assert _names(service.list_open_fruit_types()) == ["Waiting durian"]


def test_keyword_filter(service, make_fruit_type):
    make_fruit_type(name="Durian Monthong")
    make_fruit_type(name="Mango Cat Chu")

    assert _names(service.list_open_fruit_types(keyword=" durian ")) == ["Durian Monthong"]


def test_get_fruit_type_not_found(service):
    with pytest.raises(FruitTypeNotFound):
        service.get_fruit_type(str(uuid.uuid4()))

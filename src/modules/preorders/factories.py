"""Wiring of the pre-order services to their Django implementations."""

from __future__ import annotations

from modules.fruits.repositories.django_repository import FruitTypeDjangoRepository
from modules.preorders.allocation import AllocationService
from modules.preorders.gateway import RedirectPaymentGateway
from modules.preorders.repositories.django_repository import (
    PaymentIntentDjangoRepository,
    PreOrderDjangoRepository,
    StockDjangoRepository,
)
from modules.preorders.services import PreOrderService
from modules.preorders.stock import StockService


def build_pre_order_service() -> PreOrderService:
    return PreOrderService(
        pre_order_repository=PreOrderDjangoRepository(),
        payment_intent_repository=PaymentIntentDjangoRepository(),
        stock_repository=StockDjangoRepository(),
        fruit_type_repository=FruitTypeDjangoRepository(),
        payment_gateway=RedirectPaymentGateway(),
    )


def build_allocation_service() -> AllocationService:
    return AllocationService(
        pre_order_repository=PreOrderDjangoRepository(),
        stock_repository=StockDjangoRepository(),
        fruit_type_repository=FruitTypeDjangoRepository(),
    )


def build_stock_service() -> StockService:
    return StockService(
        pre_order_repository=PreOrderDjangoRepository(),
        stock_repository=StockDjangoRepository(),
        fruit_type_repository=FruitTypeDjangoRepository(),
    )

"""Django ORM implementations of the pre-order repositories.

Totals are always recomputed with a single aggregate query; nothing here
keeps a running counter that could drift from the commitment rows.
Missing or malformed ids resolve to ``None``.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple
from uuid import UUID

import structlog
from django.core.exceptions import ValidationError
from django.db import models, transaction
from django.db.models import Case, DecimalField, F, IntegerField, Sum, Value, When
from django.db.models.functions import Coalesce
from django.utils import timezone

from modules.core.outbox import record_entity_events
from modules.preorders.constants import (
    ALLOCATED_STATUSES,
    OUTBOX_TOPIC,
    UNALLOCATED_STATUSES,
    PreOrderStatus,
)
from modules.preorders.models import (
    ZERO_KG,
    DepositPaymentIntent,
    PreOrder,
    PreOrderAllocation,
    PreOrderHarvestBatch,
    PreOrderReceive,
    PreOrderStock,
    RemainingPaymentIntent,
)
from modules.preorders.repositories.interfaces import (
    IPaymentIntentRepository,
    IPreOrderRepository,
    IStockRepository,
)

logger = structlog.get_logger(__name__)

_KG_OUTPUT = DecimalField(max_digits=14, decimal_places=2)


def _kg_sum(field: str = "quantity_kg") -> Coalesce:
    return Coalesce(Sum(field), Value(ZERO_KG), output_field=_KG_OUTPUT)


def _first_or_none(queryset: models.QuerySet, **lookup: Any) -> Optional[Any]:
    try:
        return queryset.filter(**lookup).first()
    except (ValueError, ValidationError):
        return None


class PreOrderDjangoRepository(IPreOrderRepository):
    """Commitment repository backed by Django ORM."""

    def _base_queryset(self) -> "models.QuerySet[PreOrder]":
        return PreOrder.objects.select_related("fruit_type", "user")

    # ------------------------------------------------------------------
    # Write side
    # ------------------------------------------------------------------

    @transaction.atomic
    def create(self, data: Dict[str, Any]) -> PreOrder:
        pre_order = PreOrder(**data)
        pre_order.save()
        return pre_order

    @transaction.atomic
    def save(self, entity: PreOrder) -> PreOrder:
        """Persist the commitment and move its pending events to the outbox."""
        entity.save()
        rows = record_entity_events(entity, OUTBOX_TOPIC)
        logger.info(
            "preorder.saved",
            pre_order_id=str(entity.id),
            status=entity.status,
            event_count=len(rows),
        )
        return entity

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def get_by_id(self, id: str) -> Optional[PreOrder]:
        return _first_or_none(
            self._base_queryset().prefetch_related("status_history"), id=id
        )

    def get_for_update(self, id: str) -> Optional[PreOrder]:
        return _first_or_none(self._base_queryset().select_for_update(), id=id)

    def get_for_user(self, id: str, user_id: Any) -> Optional[PreOrder]:
        return _first_or_none(
            self._base_queryset().prefetch_related("status_history"),
            id=id,
            user_id=user_id,
        )

    def list(
        self, filters: Optional[Dict[str, Any]] = None
    ) -> "models.QuerySet[PreOrder]":
        queryset = self._base_queryset()
        if filters:
            queryset = queryset.filter(**filters)
        return queryset.order_by("-created_at", "-id")

    def list_for_user(self, user_id: Any) -> "models.QuerySet[PreOrder]":
        return self.list({"user_id": user_id})

    # ------------------------------------------------------------------
    # Allocation queries
    # ------------------------------------------------------------------

    def allocation_queue(self, fruit_type_id: Any) -> List[PreOrder]:
        segment = Case(
            When(status=PreOrderStatus.WAITING_FOR_NEXT_BATCH, then=Value(0)),
            default=Value(1),
            output_field=IntegerField(),
        )
        queryset = (
            PreOrder.objects.select_for_update()
            .filter(fruit_type_id=fruit_type_id, status__in=UNALLOCATED_STATUSES)
            .alias(segment=segment)
            .order_by("segment", "created_at", "id")
        )
        return list(queryset)

    def sum_quantity(self, fruit_type_id: Any, statuses: Iterable[str]) -> Decimal:
        return PreOrder.objects.filter(
            fruit_type_id=fruit_type_id, status__in=list(statuses)
        ).aggregate(total=_kg_sum())["total"]

    def sum_quantity_by_fruit_type(self, statuses: Iterable[str]) -> Dict[UUID, Decimal]:
        rows = (
            PreOrder.objects.filter(status__in=list(statuses))
            .values("fruit_type_id")
            .annotate(total=_kg_sum())
            .order_by()
        )
        return {row["fruit_type_id"]: row["total"] for row in rows}

    def ids_in_status(self, fruit_type_id: Any, status: str) -> List[UUID]:
        return list(
            PreOrder.objects.filter(fruit_type_id=fruit_type_id, status=status)
            .order_by("created_at", "id")
            .values_list("id", flat=True)
        )

    def overdue_allocations(self, cutoff: datetime) -> List[Tuple[UUID, UUID]]:
        return list(
            PreOrder.objects.filter(
                status=PreOrderStatus.ALLOCATED_WAITING_PAYMENT,
                allocated_at__lt=cutoff,
            )
            .order_by("fruit_type_id", "allocated_at")
            .values_list("id", "fruit_type_id")
        )


class PaymentIntentDjangoRepository(IPaymentIntentRepository):
    @transaction.atomic
    def create_deposit(self, data: Dict[str, Any]) -> DepositPaymentIntent:
        intent = DepositPaymentIntent.objects.create(**data)
        logger.info("preorder.deposit_intent_saved", intent_id=str(intent.id))
        return intent

    def get_deposit_for_update(self, id: str) -> Optional[DepositPaymentIntent]:
        return _first_or_none(
            DepositPaymentIntent.objects.select_for_update().select_related("fruit_type"),
            id=id,
        )

    @transaction.atomic
    def create_remaining(self, data: Dict[str, Any]) -> RemainingPaymentIntent:
        intent = RemainingPaymentIntent.objects.create(**data)
        logger.info("preorder.remaining_intent_saved", intent_id=str(intent.id))
        return intent

    def get_remaining_for_update(self, id: str) -> Optional[RemainingPaymentIntent]:
        return _first_or_none(RemainingPaymentIntent.objects.select_for_update(), id=id)

    def update_status(self, intent: Any, status: str) -> Any:
        intent.status = status
        intent.save(update_fields=["status"])
        return intent


class StockDjangoRepository(IStockRepository):
    # ------------------------------------------------------------------
    # Stock ledger
    # ------------------------------------------------------------------

    def get_stock_for_update(self, fruit_type_id: Any) -> PreOrderStock:
        PreOrderStock.objects.get_or_create(fruit_type_id=fruit_type_id)
        return PreOrderStock.objects.select_for_update().get(fruit_type_id=fruit_type_id)

    def add_received(self, stock: PreOrderStock, quantity_kg: Decimal) -> PreOrderStock:
        PreOrderStock.objects.filter(pk=stock.pk).update(
            received_kg=F("received_kg") + quantity_kg, updated_at=timezone.now()
        )
        stock.refresh_from_db(fields=["received_kg", "updated_at"])
        return stock

    def received_by_fruit_type(self) -> Dict[UUID, Decimal]:
        return dict(PreOrderStock.objects.values_list("fruit_type_id", "received_kg"))

    # ------------------------------------------------------------------
    # Allocation ledger
    # ------------------------------------------------------------------

    def refresh_allocation_ledger(self, fruit_type_id: Any) -> PreOrderAllocation:
        allocated = PreOrder.objects.filter(
            fruit_type_id=fruit_type_id, status__in=ALLOCATED_STATUSES
        ).aggregate(total=_kg_sum())["total"]
        ledger, _ = PreOrderAllocation.objects.update_or_create(
            fruit_type_id=fruit_type_id, defaults={"allocated_kg": allocated}
        )
        logger.info(
            "preorder.allocation_ledger_refreshed",
            fruit_type_id=str(fruit_type_id),
            allocated_kg=str(allocated),
        )
        return ledger

    def list_allocations(
        self, fruit_type_id: Optional[Any] = None
    ) -> "models.QuerySet[PreOrderAllocation]":
        queryset = PreOrderAllocation.objects.select_related("fruit_type")
        if fruit_type_id:
            queryset = queryset.filter(fruit_type_id=fruit_type_id)
        return queryset.order_by("fruit_type__name")

    def allocated_by_fruit_type(self) -> Dict[UUID, Decimal]:
        return dict(
            PreOrderAllocation.objects.values_list("fruit_type_id", "allocated_kg")
        )

    # ------------------------------------------------------------------
    # Receive log
    # ------------------------------------------------------------------

    def add_receive(self, data: Dict[str, Any]) -> PreOrderReceive:
        receive = PreOrderReceive(**data)
        receive.save()
        return receive

    def list_receives(
        self, filters: Optional[Dict[str, Any]] = None
    ) -> "models.QuerySet[PreOrderReceive]":
        queryset = PreOrderReceive.objects.select_related(
            "fruit_type", "batch", "received_by"
        )
        if filters:
            queryset = queryset.filter(**filters)
        return queryset.order_by("-created_at", "-id")

    # ------------------------------------------------------------------
    # Harvest batches
    # ------------------------------------------------------------------

    def create_batch(self, data: Dict[str, Any]) -> PreOrderHarvestBatch:
        batch = PreOrderHarvestBatch(**data)
        batch.save()
        logger.info(
            "preorder.batch_created",
            batch_id=str(batch.id),
            batch_code=batch.batch_code,
        )
        return batch

    def get_batch(self, id: str) -> Optional[PreOrderHarvestBatch]:
        return _first_or_none(
            PreOrderHarvestBatch.objects.select_related("fruit_type"), id=id
        )

    def get_batch_for_update(self, id: str) -> Optional[PreOrderHarvestBatch]:
        return _first_or_none(
            PreOrderHarvestBatch.objects.select_for_update(), id=id
        )

    def batch_exists(
        self, fruit_type_id: Any, harvest_date: Any, batch_number: int, supplier_name: str
    ) -> bool:
        return PreOrderHarvestBatch.objects.filter(
            fruit_type_id=fruit_type_id,
            harvest_date=harvest_date,
            batch_number=batch_number,
            supplier_name=supplier_name,
        ).exists()

    def add_batch_received(
        self, batch: PreOrderHarvestBatch, quantity_kg: Decimal
    ) -> PreOrderHarvestBatch:
        PreOrderHarvestBatch.objects.filter(pk=batch.pk).update(
            received_kg=F("received_kg") + quantity_kg, updated_at=timezone.now()
        )
        batch.refresh_from_db(fields=["received_kg", "updated_at"])
        return batch

    def list_batches(
        self, filters: Optional[Dict[str, Any]] = None
    ) -> "models.QuerySet[PreOrderHarvestBatch]":
        queryset = PreOrderHarvestBatch.objects.select_related("fruit_type")
        if filters:
            queryset = queryset.filter(**filters)
        return queryset

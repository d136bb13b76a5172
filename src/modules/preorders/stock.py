"""Warehouse side of the pre-order engine: receives, stock and batches.

A receive is only accepted up to the demand that stock on hand does not
already cover::

    available            = received - allocated
    remaining_to_receive = max(0, demand - available)

``demand`` counts commitments in ``WAITING_FOR_ALLOCATION``,
``WAITING_FOR_NEXT_BATCH`` and ``ALLOCATED_WAITING_PAYMENT``.  Oversized
receives are rejected, never clamped.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING, Any, List, Optional

import structlog
from django.db import IntegrityError, models, transaction
from django.db.models import F, Q

from modules.fruits.exceptions import FruitTypeNotFound
from modules.preorders.constants import (
    ALLOCATED_STATUSES,
    DEMAND_STATUSES,
    HarvestBatchStatus,
)
from modules.preorders.dtos import StockRowDTO
from modules.preorders.exceptions import (
    BatchFruitTypeMismatch,
    DuplicateHarvestBatch,
    HarvestBatchNotFound,
    ReceiveExceedsBatch,
    ReceiveExceedsDemand,
    ReceiveNotConfirmed,
)
from modules.preorders.locks import fruit_type_guard
from modules.preorders.models import ZERO_KG

if TYPE_CHECKING:
    from modules.fruits.repositories.interfaces import IFruitTypeRepository
    from modules.preorders.dtos import CreateHarvestBatchDTO, RecordReceiveDTO
    from modules.preorders.models import PreOrderHarvestBatch, PreOrderReceive
    from modules.preorders.repositories.interfaces import (
        IPreOrderRepository,
        IStockRepository,
    )

logger = structlog.get_logger(__name__)


class StockService:
    def __init__(
        self,
        pre_order_repository: IPreOrderRepository,
        stock_repository: IStockRepository,
        fruit_type_repository: IFruitTypeRepository,
    ) -> None:
        self._pre_order_repo = pre_order_repository
        self._stock_repo = stock_repository
        self._fruit_type_repo = fruit_type_repository

    # ------------------------------------------------------------------
    # Receives
    # ------------------------------------------------------------------

    def record_receive(self, dto: RecordReceiveDTO) -> PreOrderReceive:
        """Append a warehouse receipt and grow the stock ledger.

        Serialized with allocation runs through the fruit type's guard,
        and runs in one transaction holding the stock ledger row lock.

        Raises:
            ReceiveNotConfirmed: ``confirmed`` is false.
            HarvestBatchNotFound / FruitTypeNotFound: unknown target.
            BatchFruitTypeMismatch: fruit type and batch disagree.
            AllocationInProgress: the fruit type's guard is held.
            ReceiveExceedsDemand: above the remaining demand cap.
            ReceiveExceedsBatch: above the batch's remaining planned kg.
        """
        if not dto.confirmed:
            raise ReceiveNotConfirmed("Receiving pre-order stock must be confirmed.")

        if dto.batch_id is not None:
            batch = self._stock_repo.get_batch(str(dto.batch_id))
            if not batch:
                raise HarvestBatchNotFound(f"Harvest batch {dto.batch_id} not found.")
            if dto.fruit_type_id is not None and dto.fruit_type_id != batch.fruit_type_id:
                raise BatchFruitTypeMismatch(
                    f"Batch {batch.batch_code} belongs to another fruit type."
                )
            fruit_type_id = batch.fruit_type_id
        else:
            fruit_type = self._fruit_type_repo.get_by_id(str(dto.fruit_type_id))
            if not fruit_type:
                raise FruitTypeNotFound(f"Fruit type {dto.fruit_type_id} not found.")
            fruit_type_id = fruit_type.id

        with fruit_type_guard(fruit_type_id, operation="receive"):
            receive = self._accept_receive(fruit_type_id, dto)

        logger.info(
            "preorder.receive_recorded",
            receive_id=str(receive.id),
            fruit_type_id=str(fruit_type_id),
            batch_id=str(dto.batch_id) if dto.batch_id else None,
            quantity_kg=str(dto.quantity_kg),
        )
        return receive

    @transaction.atomic
    def _accept_receive(self, fruit_type_id: Any, dto: RecordReceiveDTO) -> PreOrderReceive:
        stock = self._stock_repo.get_stock_for_update(fruit_type_id)
        remaining_to_receive = self.remaining_to_receive(fruit_type_id, stock.received_kg)
        if dto.quantity_kg > remaining_to_receive:
            demand = self._pre_order_repo.sum_quantity(fruit_type_id, DEMAND_STATUSES)
            logger.warning(
                "preorder.receive_rejected",
                fruit_type_id=str(fruit_type_id),
                quantity_kg=str(dto.quantity_kg),
                remaining_to_receive_kg=str(remaining_to_receive),
                demand_kg=str(demand),
                received_kg=str(stock.received_kg),
            )
            raise ReceiveExceedsDemand(
                f"Cannot receive {dto.quantity_kg} kg: only "
                f"{remaining_to_receive} kg of pre-order demand is still "
                "uncovered by stock on hand."
            )

        batch = None
        if dto.batch_id is not None:
            batch = self._stock_repo.get_batch_for_update(str(dto.batch_id))
            if dto.quantity_kg > batch.remaining_kg:
                raise ReceiveExceedsBatch(
                    f"Cannot receive {dto.quantity_kg} kg into batch "
                    f"{batch.batch_code}: {batch.remaining_kg} kg planned remain."
                )

        receive = self._stock_repo.add_receive(
            {
                "fruit_type_id": fruit_type_id,
                "batch": batch,
                "quantity_kg": dto.quantity_kg,
                "received_by_id": dto.received_by_id,
                "note": dto.note,
            }
        )
        self._stock_repo.add_received(stock, dto.quantity_kg)
        if batch is not None:
            self._stock_repo.add_batch_received(batch, dto.quantity_kg)
        return receive

    def remaining_to_receive(self, fruit_type_id: Any, received_kg: Decimal) -> Decimal:
        demand = self._pre_order_repo.sum_quantity(fruit_type_id, DEMAND_STATUSES)
        allocated = self._pre_order_repo.sum_quantity(fruit_type_id, ALLOCATED_STATUSES)
        available = received_kg - allocated
        return max(ZERO_KG, demand - available)

    def list_receives(
        self,
        fruit_type_id: Optional[Any] = None,
        batch_id: Optional[Any] = None,
    ) -> "models.QuerySet[PreOrderReceive]":
        filters = {}
        if fruit_type_id:
            filters["fruit_type_id"] = fruit_type_id
        if batch_id:
            filters["batch_id"] = batch_id
        return self._stock_repo.list_receives(filters)

    # ------------------------------------------------------------------
    # Stock overview
    # ------------------------------------------------------------------

    def list_stock(self) -> List[StockRowDTO]:
        """Received, allocated and available kg for every pre-order fruit type,
        including open ones nothing has been received for yet."""
        received = self._stock_repo.received_by_fruit_type()
        allocated = self._stock_repo.allocated_by_fruit_type()

        fruit_types = self._fruit_type_repo.list().filter(
            Q(id__in=set(received) | set(allocated))
            | Q(id__in=self._fruit_type_repo.pre_order_candidates().values("id"))
        )
        rows = []
        for fruit_type in fruit_types:
            received_kg = received.get(fruit_type.id, ZERO_KG)
            allocated_kg = allocated.get(fruit_type.id, ZERO_KG)
            rows.append(
                StockRowDTO(
                    fruit_type_id=fruit_type.id,
                    fruit_type_name=fruit_type.name,
                    received_kg=received_kg,
                    allocated_kg=allocated_kg,
                    available_kg=max(ZERO_KG, received_kg - allocated_kg),
                )
            )
        return rows

    # ------------------------------------------------------------------
    # Harvest batches
    # ------------------------------------------------------------------

    def create_batch(self, dto: CreateHarvestBatchDTO) -> PreOrderHarvestBatch:
        """Register a planned supplier delivery for a fruit type.

        Raises:
            FruitTypeNotFound: unknown fruit type.
            DuplicateHarvestBatch: same fruit type, date, number and supplier.
        """
        fruit_type = self._fruit_type_repo.get_by_id(str(dto.fruit_type_id))
        if not fruit_type:
            raise FruitTypeNotFound(f"Fruit type {dto.fruit_type_id} not found.")

        duplicate_message = (
            f"Batch {dto.batch_number} from {dto.supplier_name} harvested on "
            f"{dto.harvest_date} already exists for {fruit_type.name}."
        )
        if self._stock_repo.batch_exists(
            fruit_type.id, dto.harvest_date, dto.batch_number, dto.supplier_name
        ):
            raise DuplicateHarvestBatch(duplicate_message)

        try:
            with transaction.atomic():
                batch = self._stock_repo.create_batch(
                    {
                        "fruit_type": fruit_type,
                        "harvest_date": dto.harvest_date,
                        "batch_number": dto.batch_number,
                        "supplier_name": dto.supplier_name,
                        "quantity_kg": dto.quantity_kg,
                        "notes": dto.notes,
                    }
                )
        except IntegrityError as exc:
            raise DuplicateHarvestBatch(duplicate_message) from exc
        return batch

    def get_batch(self, batch_id: Any) -> PreOrderHarvestBatch:
        batch = self._stock_repo.get_batch(str(batch_id))
        if not batch:
            raise HarvestBatchNotFound(f"Harvest batch {batch_id} not found.")
        return batch

    def list_batches(
        self,
        fruit_type_id: Optional[Any] = None,
        status: Optional[str] = None,
        keyword: str = "",
    ) -> "models.QuerySet[PreOrderHarvestBatch]":
        queryset = self._stock_repo.list_batches()
        if fruit_type_id:
            queryset = queryset.filter(fruit_type_id=fruit_type_id)
        if status == HarvestBatchStatus.NOT_RECEIVED:
            queryset = queryset.filter(received_kg__lte=0)
        elif status == HarvestBatchStatus.PARTIAL:
            queryset = queryset.filter(received_kg__gt=0, received_kg__lt=F("quantity_kg"))
        elif status == HarvestBatchStatus.FULLY_RECEIVED:
            queryset = queryset.filter(received_kg__gte=F("quantity_kg"))
        if keyword:
            keyword = keyword.strip()
            queryset = queryset.filter(
                Q(batch_code__icontains=keyword)
                | Q(supplier_name__icontains=keyword)
                | Q(fruit_type__name__icontains=keyword)
            )
        return queryset

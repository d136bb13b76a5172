"""FIFO allocation of received stock to pre-order commitments.

``run_allocation`` is the only writer of commitment statuses between
``WAITING_FOR_ALLOCATION`` and ``ALLOCATED_WAITING_PAYMENT``.  A run:

1. takes the fruit type's guard (fails at once when held);
2. locks the stock ledger row and computes
   ``available = received - allocated`` from a fresh aggregate;
3. walks the queue: ``WAITING_FOR_NEXT_BATCH`` oldest first, then
   ``WAITING_FOR_ALLOCATION`` oldest first, ties broken by the UUIDv7 id;
4. promotes every candidate that fits and stops hard at the first one
   that does not (no skip-ahead).  A first-attempt candidate that does
   not fit moves to ``WAITING_FOR_NEXT_BATCH``.  Once stock is used up
   exactly the walk ends without touching the remaining candidates;
5. recomputes the allocation ledger from commitment statuses;
6. queues the "ready, pay the rest" notifications in the outbox;
7. deactivates the fruit type once no demand is outstanding.

Steps 2–7 share one database transaction.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, List, Optional

import structlog
from django.db import transaction
from django.utils import timezone

from modules.core.outbox import record_events
from modules.fruits.exceptions import FruitTypeNotFound
from modules.preorders.constants import (
    ALLOCATED_STATUSES,
    DEMAND_STATUSES,
    OUTBOX_TOPIC,
    PreOrderStatus,
)
from modules.preorders.dtos import AllocationResultDTO, DemandRowDTO
from modules.preorders.events import FruitTypeAllocated, PreOrderDelayed
from modules.preorders.exceptions import (
    InsufficientStock,
    InvalidPreOrderStatus,
    NothingReceived,
)
from modules.preorders.locks import fruit_type_guard
from modules.preorders.models import ZERO_KG

if TYPE_CHECKING:
    from modules.fruits.models import FruitType
    from modules.fruits.repositories.interfaces import IFruitTypeRepository
    from modules.preorders.models import PreOrder, PreOrderAllocation
    from modules.preorders.repositories.interfaces import (
        IPreOrderRepository,
        IStockRepository,
    )

logger = structlog.get_logger(__name__)


def transition(pre_order: PreOrder, new_status: str, notes: str = "", actor: str = "") -> None:
    """Move ``pre_order`` to ``new_status`` in memory, validating the FSM.

    The status-history signal picks up ``notes`` and ``actor`` on save.

    Raises:
        InvalidPreOrderStatus: the transition is not allowed.
    """
    if not pre_order.can_transition_to(new_status):
        raise InvalidPreOrderStatus(
            f"Cannot move pre-order {pre_order.id} from {pre_order.status} "
            f"to {new_status}."
        )
    pre_order.status = new_status
    pre_order._status_change_notes = notes
    pre_order._status_changed_by = actor


def deactivate_if_demand_served(
    fruit_type: FruitType,
    pre_order_repo: IPreOrderRepository,
    fruit_type_repo: IFruitTypeRepository,
) -> bool:
    """Flip the fruit type to INACTIVE when no demand is outstanding."""
    if not fruit_type.is_active:
        return False
    if pre_order_repo.sum_quantity(fruit_type.id, DEMAND_STATUSES) > 0:
        return False
    fruit_type_repo.mark_inactive(fruit_type)
    return True


class AllocationService:
    """Allocator and the read models built on the ledgers."""

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
    # Commands
    # ------------------------------------------------------------------

    def run_allocation(self, fruit_type_id: Any, actor: str = "") -> AllocationResultDTO:
        """Allocate received stock of one fruit type to its commitments.

        Raises:
            FruitTypeNotFound: the fruit type does not exist.
            AllocationInProgress: the fruit type's guard is held.
            NothingReceived: nothing has been received yet.
            InsufficientStock: everything received is already allocated.
        """
        fruit_type = self._fruit_type_repo.get_by_id(str(fruit_type_id))
        if not fruit_type:
            raise FruitTypeNotFound(f"Fruit type {fruit_type_id} not found.")

        log = logger.bind(fruit_type_id=str(fruit_type.id), actor=actor)
        with fruit_type_guard(fruit_type.id, operation="allocation"):
            log.info("preorder.allocation_started")
            result = self._allocate(fruit_type, actor, log)

        log.info(
            "preorder.allocation_finished",
            allocated_count=len(result.allocated_pre_order_ids),
            deferred_count=len(result.deferred_pre_order_ids),
            allocated_kg=str(result.allocated_kg),
            remaining_available_kg=str(result.remaining_available_kg),
        )
        return result

    @transaction.atomic
    def _allocate(self, fruit_type: FruitType, actor: str, log: Any) -> AllocationResultDTO:
        stock = self._stock_repo.get_stock_for_update(fruit_type.id)
        received = stock.received_kg
        if received <= 0:
            raise NothingReceived(
                f"No pre-order stock has been received for {fruit_type.name} yet."
            )

        allocated_so_far = self._pre_order_repo.sum_quantity(
            fruit_type.id, ALLOCATED_STATUSES
        )
        available = received - allocated_so_far
        if available <= 0:
            demand = self._pre_order_repo.sum_quantity(fruit_type.id, DEMAND_STATUSES)
            raise InsufficientStock(
                str(fruit_type.id), demand, received, allocated_so_far
            )

        allocated_ids: List[Any] = []
        deferred_ids: List[Any] = []
        now = timezone.now()

        for candidate in self._pre_order_repo.allocation_queue(fruit_type.id):
            if available <= 0:
                # Stock used up exactly; the rest keep their status.
                break
            if candidate.quantity_kg <= available:
                transition(
                    candidate,
                    PreOrderStatus.ALLOCATED_WAITING_PAYMENT,
                    notes="Allocated from received stock",
                    actor=actor,
                )
                candidate.allocated_at = now
                self._pre_order_repo.save(candidate)
                available -= candidate.quantity_kg
                allocated_ids.append(candidate.id)
                continue

            if candidate.status == PreOrderStatus.WAITING_FOR_ALLOCATION:
                transition(
                    candidate,
                    PreOrderStatus.WAITING_FOR_NEXT_BATCH,
                    notes="Not enough stock in this batch",
                    actor=actor,
                )
                candidate.add_domain_event(
                    PreOrderDelayed(
                        aggregate_id=candidate.id, fruit_type_id=str(fruit_type.id)
                    )
                )
                self._pre_order_repo.save(candidate)
                deferred_ids.append(candidate.id)

            log.info(
                "preorder.allocation_hard_stop",
                pre_order_id=str(candidate.id),
                quantity_kg=str(candidate.quantity_kg),
                available_kg=str(available),
            )
            break

        ledger = self._stock_repo.refresh_allocation_ledger(fruit_type.id)

        awaiting_payment = self._pre_order_repo.ids_in_status(
            fruit_type.id, PreOrderStatus.ALLOCATED_WAITING_PAYMENT
        )
        if awaiting_payment:
            record_events(
                [
                    FruitTypeAllocated(
                        aggregate_id=fruit_type.id,
                        pre_order_ids=tuple(str(pk) for pk in awaiting_payment),
                        allocated_kg=str(ledger.allocated_kg),
                    )
                ],
                topic=OUTBOX_TOPIC,
            )

        deactivated = deactivate_if_demand_served(
            fruit_type, self._pre_order_repo, self._fruit_type_repo
        )

        return AllocationResultDTO(
            fruit_type_id=fruit_type.id,
            allocated_pre_order_ids=allocated_ids,
            deferred_pre_order_ids=deferred_ids,
            allocated_kg=ledger.allocated_kg,
            received_kg=received,
            remaining_available_kg=received - ledger.allocated_kg,
            fruit_type_deactivated=deactivated,
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_demand_by_fruit_type(self) -> List[DemandRowDTO]:
        """Demand, allocated and received kilograms per fruit type."""
        demand = self._pre_order_repo.sum_quantity_by_fruit_type(DEMAND_STATUSES)
        allocated = self._stock_repo.allocated_by_fruit_type()
        received = self._stock_repo.received_by_fruit_type()

        fruit_type_ids = set(demand) | set(allocated) | set(received)
        fruit_types = self._fruit_type_repo.list({"id__in": fruit_type_ids})

        rows = []
        for fruit_type in fruit_types:
            demand_kg = demand.get(fruit_type.id, ZERO_KG)
            allocated_kg = allocated.get(fruit_type.id, ZERO_KG)
            received_kg = received.get(fruit_type.id, ZERO_KG)
            rows.append(
                DemandRowDTO(
                    fruit_type_id=fruit_type.id,
                    fruit_type_name=fruit_type.name,
                    estimated_harvest_date=fruit_type.estimated_harvest_date,
                    demand_kg=demand_kg,
                    allocated_kg=allocated_kg,
                    received_kg=received_kg,
                    available_kg=max(ZERO_KG, received_kg - allocated_kg),
                    fully_received=received_kg >= demand_kg,
                )
            )
        return rows

    def list_allocations(self, fruit_type_id: Optional[Any] = None) -> List[PreOrderAllocation]:
        return list(self._stock_repo.list_allocations(fruit_type_id))

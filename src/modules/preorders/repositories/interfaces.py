"""Pre-order repository interfaces.

The services depend exclusively on these contracts.  Three
repositories cover the engine's state:

- ``IPreOrderRepository``: commitments (aggregate root) and the
  aggregate queries the allocator and dashboards run over them.
- ``IPaymentIntentRepository``: deposit and remaining-payment intents.
- ``IStockRepository``: stock ledger, allocation ledger, receive log and
  harvest batches of a fruit type.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Tuple
from uuid import UUID

from django.db import models

from modules.core.repositories.interfaces import IRepository

if TYPE_CHECKING:
    from modules.preorders.models import (
        DepositPaymentIntent,
        PreOrder,
        PreOrderAllocation,
        PreOrderHarvestBatch,
        PreOrderReceive,
        PreOrderStock,
        RemainingPaymentIntent,
    )


class IPreOrderRepository(IRepository["PreOrder"]):
    @abstractmethod
    def create(self, data: Dict[str, Any]) -> PreOrder:
        """Insert a commitment and drain its domain events to the outbox."""

    @abstractmethod
    def get_for_update(self, id: str) -> Optional[PreOrder]:
        """Retrieve a commitment with a row-level lock (SELECT FOR UPDATE)."""

    @abstractmethod
    def get_for_user(self, id: str, user_id: Any) -> Optional[PreOrder]:
        """Retrieve a commitment only if it belongs to ``user_id``."""

    @abstractmethod
    def list_for_user(self, user_id: Any) -> "models.QuerySet[PreOrder]":
        """The customer's commitments, newest first."""

    @abstractmethod
    def allocation_queue(self, fruit_type_id: Any) -> List[PreOrder]:
        """Locked allocation candidates in FIFO order.

        ``WAITING_FOR_NEXT_BATCH`` first, then ``WAITING_FOR_ALLOCATION``;
        each segment oldest first, ties broken by primary key.
        """

    @abstractmethod
    def sum_quantity(self, fruit_type_id: Any, statuses: Iterable[str]) -> Decimal:
        """Total ``quantity_kg`` of the fruit type's commitments in ``statuses``."""

    @abstractmethod
    def sum_quantity_by_fruit_type(self, statuses: Iterable[str]) -> Dict[UUID, Decimal]:
        """``sum_quantity`` for every fruit type at once."""

    @abstractmethod
    def ids_in_status(self, fruit_type_id: Any, status: str) -> List[UUID]:
        """Primary keys of the fruit type's commitments in ``status``."""

    @abstractmethod
    def overdue_allocations(self, cutoff: datetime) -> List[Tuple[UUID, UUID]]:
        """``(pre_order_id, fruit_type_id)`` pairs allocated before ``cutoff``
        and still waiting for remaining payment."""


class IPaymentIntentRepository(ABC):
    @abstractmethod
    def create_deposit(self, data: Dict[str, Any]) -> DepositPaymentIntent: ...

    @abstractmethod
    def get_deposit_for_update(self, id: str) -> Optional[DepositPaymentIntent]: ...

    @abstractmethod
    def create_remaining(self, data: Dict[str, Any]) -> RemainingPaymentIntent: ...

    @abstractmethod
    def get_remaining_for_update(self, id: str) -> Optional[RemainingPaymentIntent]: ...

    @abstractmethod
    def update_status(self, intent: Any, status: str) -> Any:
        """Persist a new intent status."""


class IStockRepository(ABC):
    # Stock ledger ------------------------------------------------------

    @abstractmethod
    def get_stock_for_update(self, fruit_type_id: Any) -> PreOrderStock:
        """Lock (creating when missing) the fruit type's stock ledger row."""

    @abstractmethod
    def add_received(self, stock: PreOrderStock, quantity_kg: Decimal) -> PreOrderStock:
        """Increment ``received_kg`` on a locked row."""

    @abstractmethod
    def received_by_fruit_type(self) -> Dict[UUID, Decimal]: ...

    # Allocation ledger -------------------------------------------------

    @abstractmethod
    def refresh_allocation_ledger(self, fruit_type_id: Any) -> PreOrderAllocation:
        """Recompute the allocated total from commitment statuses and upsert it."""

    @abstractmethod
    def list_allocations(
        self, fruit_type_id: Optional[Any] = None
    ) -> "models.QuerySet[PreOrderAllocation]": ...

    @abstractmethod
    def allocated_by_fruit_type(self) -> Dict[UUID, Decimal]: ...

    # Receive log -------------------------------------------------------

    @abstractmethod
    def add_receive(self, data: Dict[str, Any]) -> PreOrderReceive: ...

    @abstractmethod
    def list_receives(
        self, filters: Optional[Dict[str, Any]] = None
    ) -> "models.QuerySet[PreOrderReceive]": ...

    # Harvest batches ---------------------------------------------------

    @abstractmethod
    def create_batch(self, data: Dict[str, Any]) -> PreOrderHarvestBatch: ...

    @abstractmethod
    def get_batch(self, id: str) -> Optional[PreOrderHarvestBatch]: ...

    @abstractmethod
    def get_batch_for_update(self, id: str) -> Optional[PreOrderHarvestBatch]: ...

    @abstractmethod
    def batch_exists(
        self, fruit_type_id: Any, harvest_date: Any, batch_number: int, supplier_name: str
    ) -> bool: ...

    @abstractmethod
    def add_batch_received(
        self, batch: PreOrderHarvestBatch, quantity_kg: Decimal
    ) -> PreOrderHarvestBatch: ...

    @abstractmethod
    def list_batches(
        self, filters: Optional[Dict[str, Any]] = None
    ) -> "models.QuerySet[PreOrderHarvestBatch]": ...

"""Domain events for the pre-order engine.

They are written to the outbox inside the business transaction and
handled after commit, so notification delivery can never undo a state
change.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

from shared.domain.events import DomainEvent


@dataclass(frozen=True, kw_only=True)
class PreOrderCreated(DomainEvent):
    """Deposit confirmed; the commitment entered the demand pool."""

    fruit_type_id: str
    quantity_kg: str


@dataclass(frozen=True, kw_only=True)
class PreOrderDelayed(DomainEvent):
    """First allocation attempt found too little stock for this commitment."""

    fruit_type_id: str


@dataclass(frozen=True, kw_only=True)
class FruitTypeAllocated(DomainEvent):
    """An allocation run finished.

    ``aggregate_id`` is the fruit type; ``pre_order_ids`` lists every
    commitment of that type waiting for remaining payment after the run.
    """

    pre_order_ids: Tuple[str, ...] = ()
    allocated_kg: str = "0"


@dataclass(frozen=True, kw_only=True)
class PreOrderReadyForFulfillment(DomainEvent):
    """Remaining balance paid."""


@dataclass(frozen=True, kw_only=True)
class PreOrderClosed(DomainEvent):
    """The commitment reached a terminal status (completed, refund, cancelled)."""

    status: str
    actor: str = ""

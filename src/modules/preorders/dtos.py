"""Pre-order DTOs for the service layer.

Immutable Pydantic v2 models exchanged between the DRF views and the
services.  Input DTOs validate shape only; catalog bounds such as
``min_order_kg`` are checked by the services against the live row.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# ---------------------------------------------------------------------------
# Input DTOs
# ---------------------------------------------------------------------------


class CreateDepositIntentDTO(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: int
    fruit_type_id: UUID
    quantity_kg: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    client_ip: Optional[str] = None
    receiver_name: str = ""
    receiver_phone: str = ""
    receiver_address: str = ""

    @field_validator("receiver_name", "receiver_phone", "receiver_address")
    @classmethod
    def strip_text(cls, v: str) -> str:
        return v.strip()


class RecordReceiveDTO(BaseModel):
    """A warehouse receipt, either for a fruit type or for one of its batches."""

    model_config = ConfigDict(frozen=True)

    fruit_type_id: Optional[UUID] = None
    batch_id: Optional[UUID] = None
    quantity_kg: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    received_by_id: int
    confirmed: bool = True
    note: str = ""

    @model_validator(mode="after")
    def fruit_type_or_batch(self):
        if self.fruit_type_id is None and self.batch_id is None:
            raise ValueError("Either fruit_type_id or batch_id is required.")
        return self


class CreateHarvestBatchDTO(BaseModel):
    model_config = ConfigDict(frozen=True)

    fruit_type_id: UUID
    harvest_date: date
    batch_number: int = Field(default=1, ge=1)
    supplier_name: str = Field(min_length=1, max_length=150)
    quantity_kg: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    notes: str = Field(default="", max_length=500)

    @field_validator("supplier_name")
    @classmethod
    def supplier_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Supplier name must not be blank.")
        return v


# ---------------------------------------------------------------------------
# Output DTOs
# ---------------------------------------------------------------------------


class PaymentRedirectDTO(BaseModel):
    model_config = ConfigDict(frozen=True)

    intent_id: UUID
    amount: Decimal
    expires_at: datetime
    payment_url: str


class AllocationResultDTO(BaseModel):
    """Outcome of one allocation run."""

    model_config = ConfigDict(frozen=True)

    fruit_type_id: UUID
    allocated_pre_order_ids: List[UUID]
    deferred_pre_order_ids: List[UUID]
    allocated_kg: Decimal
    received_kg: Decimal
    remaining_available_kg: Decimal
    fruit_type_deactivated: bool


class DemandRowDTO(BaseModel):
    model_config = ConfigDict(frozen=True)

    fruit_type_id: UUID
    fruit_type_name: str
    estimated_harvest_date: Optional[date]
    demand_kg: Decimal
    allocated_kg: Decimal
    received_kg: Decimal
    available_kg: Decimal
    fully_received: bool


class StockRowDTO(BaseModel):
    model_config = ConfigDict(frozen=True)

    fruit_type_id: UUID
    fruit_type_name: str
    received_kg: Decimal
    allocated_kg: Decimal
    available_kg: Decimal

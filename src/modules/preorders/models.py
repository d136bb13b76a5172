"""Pre-order models: commitments, payment intents and the per-fruit ledgers.

Invariants kept here:
- ``PreOrder.quantity_kg`` and ``PreOrder.total_amount`` never change once
  the row exists; ``save()`` refuses to write a different value.
- ``PreOrderStock`` and ``PreOrderAllocation`` hold one row per fruit type.
- ``PreOrderReceive`` is append-only.
- Payment intents are never deleted; they only move PENDING → SUCCESS or
  PENDING → EXPIRED.
"""

from __future__ import annotations

import secrets
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models
from django.utils import timezone

from modules.core.models import BaseModel
from modules.preorders.constants import (
    BATCH_CODE_MAX_RETRIES,
    BATCH_CODE_PREFIX,
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    HarvestBatchStatus,
    PaymentIntentStatus,
    PreOrderStatus,
)
from shared.domain.events import DomainEventMixin

ZERO_KG = Decimal("0.00")


def _kg_field(**kwargs: Any) -> models.DecimalField:
    kwargs.setdefault("validators", [MinValueValidator(ZERO_KG)])
    return models.DecimalField(max_digits=12, decimal_places=2, **kwargs)


def _money_field(**kwargs: Any) -> models.DecimalField:
    return models.DecimalField(max_digits=14, decimal_places=2, **kwargs)


class ImmutableFieldError(Exception):
    """An attempt was made to change a field that is fixed at creation."""


# ---------------------------------------------------------------------------
# Commitment
# ---------------------------------------------------------------------------


class PreOrder(DomainEventMixin, BaseModel):
    """Commitment aggregate root: one customer's paid-deposit promise.

    Created only by a successful deposit confirmation.  ``allocated_at`` is
    stamped when the allocator matches the commitment to stock and drives
    the overdue-payment sweep.
    """

    IMMUTABLE_FIELDS = ("quantity_kg", "total_amount", "deposit_paid")

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="pre_orders",
    )
    fruit_type = models.ForeignKey(
        "fruits.FruitType",
        on_delete=models.PROTECT,
        related_name="pre_orders",
    )
    quantity_kg = _kg_field(validators=[MinValueValidator(Decimal("0.01"))])
    deposit_paid = _money_field(default=ZERO_KG)
    total_amount = _money_field(default=ZERO_KG)
    remaining_paid_at = models.DateTimeField(null=True, blank=True, default=None)
    allocated_at = models.DateTimeField(null=True, blank=True, default=None)
    status = models.CharField(
        max_length=30,
        choices=PreOrderStatus.choices,
        default=PreOrderStatus.WAITING_FOR_ALLOCATION,
    )
    receiver_name = models.CharField(max_length=150, blank=True, default="")
    receiver_phone = models.CharField(max_length=20, blank=True, default="")
    receiver_address = models.CharField(max_length=255, blank=True, default="")

    class Meta:
        db_table = "pre_orders"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["fruit_type", "status"], name="pre_orders_fruit_status_idx"),
            models.Index(fields=["user", "-created_at"], name="pre_orders_user_created_idx"),
            models.Index(fields=["status", "allocated_at"], name="pre_orders_status_alloc_idx"),
        ]

    @classmethod
    def from_db(cls, db, field_names, values):
        instance = super().from_db(db, field_names, values)
        instance._loaded_values = {
            name: value
            for name, value in zip(field_names, values)
            if name in cls.IMMUTABLE_FIELDS
        }
        return instance

    def save(self, *args: Any, **kwargs: Any) -> None:
        loaded = getattr(self, "_loaded_values", {})
        for name, original in loaded.items():
            current = getattr(self, name)
            if original is not None and Decimal(current) != Decimal(original):
                raise ImmutableFieldError(
                    f"PreOrder.{name} cannot change after creation "
                    f"({original} -> {current})."
                )
        super().save(*args, **kwargs)

    # ------------------------------------------------------------------
    # State machine helpers
    # ------------------------------------------------------------------

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATES

    def can_transition_to(self, new_status: str) -> bool:
        return new_status in VALID_TRANSITIONS.get(self.status, [])

    # ------------------------------------------------------------------
    # Payment helpers
    # ------------------------------------------------------------------

    @property
    def remaining_amount(self) -> Decimal:
        return max(ZERO_KG, self.total_amount - self.deposit_paid)

    @property
    def can_pay_remaining(self) -> bool:
        return (
            self.status == PreOrderStatus.ALLOCATED_WAITING_PAYMENT
            and self.remaining_paid_at is None
            and self.remaining_amount > 0
        )

    def __str__(self) -> str:
        return f"PreOrder {self.id} ({self.status})"


class PreOrderStatusHistory(BaseModel):
    """Audit trail of commitment status changes (written by signals)."""

    pre_order = models.ForeignKey(
        PreOrder,
        on_delete=models.CASCADE,
        related_name="status_history",
    )
    old_status = models.CharField(max_length=30, null=True, blank=True)  # noqa: DJ01
    new_status = models.CharField(max_length=30)
    notes = models.TextField(blank=True, default="")
    changed_by = models.CharField(max_length=150, blank=True, default="")

    class Meta:
        db_table = "pre_order_status_history"
        ordering = ["created_at"]

    def __str__(self) -> str:
        return f"{self.pre_order_id}: {self.old_status} -> {self.new_status}"


# ---------------------------------------------------------------------------
# Payment intents
# ---------------------------------------------------------------------------


class PaymentIntentBase(BaseModel):
    amount = _money_field()
    status = models.CharField(
        max_length=10,
        choices=PaymentIntentStatus.choices,
        default=PaymentIntentStatus.PENDING,
    )
    expires_at = models.DateTimeField()
    client_ip = models.GenericIPAddressField(null=True, blank=True)

    class Meta:
        abstract = True

    def has_elapsed(self, now: Optional[datetime] = None) -> bool:
        return (now or timezone.now()) >= self.expires_at

    @property
    def amount_minor_units(self) -> int:
        return int((self.amount * 100).to_integral_value())


class DepositPaymentIntent(PaymentIntentBase):
    """Deposit leg; confirmation creates the PreOrder.

    ``amount`` is the deposit computed from the price at creation time.
    """

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="deposit_intents",
    )
    fruit_type = models.ForeignKey(
        "fruits.FruitType",
        on_delete=models.PROTECT,
        related_name="deposit_intents",
    )
    quantity_kg = _kg_field()
    receiver_name = models.CharField(max_length=150, blank=True, default="")
    receiver_phone = models.CharField(max_length=20, blank=True, default="")
    receiver_address = models.CharField(max_length=255, blank=True, default="")
    pre_order = models.OneToOneField(
        PreOrder,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="deposit_intent",
    )

    class Meta:
        db_table = "pre_order_deposit_intents"
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"Deposit {self.id} ({self.status})"


class RemainingPaymentIntent(PaymentIntentBase):
    """Second payment leg; confirmation is the only path to READY_FOR_FULFILLMENT."""

    pre_order = models.ForeignKey(
        PreOrder,
        on_delete=models.PROTECT,
        related_name="remaining_intents",
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="remaining_intents",
    )

    class Meta:
        db_table = "pre_order_remaining_intents"
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"Remaining {self.id} ({self.status})"


# ---------------------------------------------------------------------------
# Ledgers
# ---------------------------------------------------------------------------


class PreOrderStock(BaseModel):
    """Kilograms physically received into the pre-order holding area."""

    fruit_type = models.OneToOneField(
        "fruits.FruitType",
        on_delete=models.PROTECT,
        related_name="pre_order_stock",
    )
    received_kg = _kg_field(default=ZERO_KG)

    class Meta:
        db_table = "pre_order_stock"
        constraints = [
            models.CheckConstraint(
                condition=models.Q(received_kg__gte=0),
                name="pre_order_stock_received_non_negative",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.fruit_type_id}: {self.received_kg} kg received"


class PreOrderAllocation(BaseModel):
    """Kilograms already promised to commitments of a fruit type."""

    fruit_type = models.OneToOneField(
        "fruits.FruitType",
        on_delete=models.PROTECT,
        related_name="pre_order_allocation",
    )
    allocated_kg = _kg_field(default=ZERO_KG)

    class Meta:
        db_table = "pre_order_allocations"

    def __str__(self) -> str:
        return f"{self.fruit_type_id}: {self.allocated_kg} kg allocated"


class PreOrderHarvestBatch(BaseModel):
    """A planned delivery of pre-order fruit from a supplier.

    ``batch_code`` is generated on first save (``POHB-YYYYMMDD-XXXXXX``).
    """

    batch_code = models.CharField(max_length=30, unique=True, editable=False)
    fruit_type = models.ForeignKey(
        "fruits.FruitType",
        on_delete=models.PROTECT,
        related_name="pre_order_batches",
    )
    harvest_date = models.DateField()
    batch_number = models.PositiveIntegerField(default=1)
    supplier_name = models.CharField(max_length=150)
    quantity_kg = _kg_field(validators=[MinValueValidator(Decimal("0.01"))])
    received_kg = _kg_field(default=ZERO_KG)
    notes = models.CharField(max_length=500, blank=True, default="")

    class Meta:
        db_table = "pre_order_harvest_batches"
        ordering = ["-harvest_date", "-created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["fruit_type", "harvest_date", "batch_number", "supplier_name"],
                name="pre_order_batch_unique_per_harvest",
            ),
        ]

    @property
    def remaining_kg(self) -> Decimal:
        return max(ZERO_KG, self.quantity_kg - self.received_kg)

    @property
    def status(self) -> str:
        if self.received_kg <= 0:
            return HarvestBatchStatus.NOT_RECEIVED
        if self.received_kg < self.quantity_kg:
            return HarvestBatchStatus.PARTIAL
        return HarvestBatchStatus.FULLY_RECEIVED

    @staticmethod
    def generate_batch_code() -> str:
        now = timezone.now()
        return f"{BATCH_CODE_PREFIX}-{now:%Y%m%d}-{secrets.token_hex(3).upper()}"

    def save(self, *args: Any, **kwargs: Any) -> None:
        if not self.batch_code:
            for _ in range(BATCH_CODE_MAX_RETRIES):
                candidate = self.generate_batch_code()
                if not PreOrderHarvestBatch.objects.filter(batch_code=candidate).exists():
                    self.batch_code = candidate
                    break
            else:
                raise RuntimeError(
                    f"Failed to generate unique batch_code after "
                    f"{BATCH_CODE_MAX_RETRIES} attempts"
                )
        super().save(*args, **kwargs)

    def __str__(self) -> str:
        return self.batch_code


class PreOrderReceive(BaseModel):
    """Append-only warehouse receipt of pre-order fruit."""

    fruit_type = models.ForeignKey(
        "fruits.FruitType",
        on_delete=models.PROTECT,
        related_name="pre_order_receives",
    )
    batch = models.ForeignKey(
        PreOrderHarvestBatch,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="receives",
    )
    quantity_kg = _kg_field(validators=[MinValueValidator(Decimal("0.01"))])
    received_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="pre_order_receives",
    )
    note = models.CharField(max_length=500, blank=True, default="")

    class Meta:
        db_table = "pre_order_receives"
        ordering = ["-created_at", "-id"]

    def save(self, *args: Any, **kwargs: Any) -> None:
        if not self._state.adding:
            raise ImmutableFieldError("Pre-order receives are append-only.")
        super().save(*args, **kwargs)

    def __str__(self) -> str:
        return f"Receive {self.quantity_kg} kg ({self.fruit_type_id})"

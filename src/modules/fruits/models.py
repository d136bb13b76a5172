"""Fruit type catalog.

The pre-order engine reads price, order-size bounds and the harvest date
from here and writes back exactly one field: ``status`` flips to
``INACTIVE`` once outstanding pre-order demand is fully served.
"""

from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal
from typing import Optional

from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models
from django.utils import timezone

from modules.core.models import SoftDeleteModel
from modules.fruits.constants import FruitTypeStatus


class FruitType(SoftDeleteModel):
    name = models.CharField(max_length=150, unique=True)
    description = models.TextField(blank=True, default="")
    estimated_price = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        validators=[MinValueValidator(Decimal("0.00"))],
        help_text="Estimated price per kg.",
    )
    min_order_kg = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        default=Decimal("1.00"),
        validators=[MinValueValidator(Decimal("0.01"))],
    )
    max_order_kg = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        default=Decimal("100.00"),
        validators=[MinValueValidator(Decimal("0.01"))],
    )
    estimated_harvest_date = models.DateField(null=True, blank=True)
    allow_pre_order = models.BooleanField(default=True)
    status = models.CharField(
        max_length=10,
        choices=FruitTypeStatus.choices,
        default=FruitTypeStatus.ACTIVE,
        db_index=True,
    )

    class Meta:
        db_table = "fruit_types"
        ordering = ["name"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(max_order_kg__gte=models.F("min_order_kg")),
                name="fruit_type_max_gte_min_order",
            ),
        ]

    def __str__(self) -> str:
        return self.name

    @property
    def is_active(self) -> bool:
        return self.status == FruitTypeStatus.ACTIVE

    def harvest_lock_date(self) -> Optional[date]:
        """First day on which no new pre-orders are accepted."""
        if self.estimated_harvest_date is None:
            return None
        return self.estimated_harvest_date - timedelta(
            days=settings.PREORDER_HARVEST_LOCK_DAYS
        )

    def is_locked_by_harvest(self, today: Optional[date] = None) -> bool:
        lock_date = self.harvest_lock_date()
        if lock_date is None:
            return False
        today = today or timezone.localdate()
        return today >= lock_date

    def accepts_pre_orders(self, today: Optional[date] = None) -> bool:
        return (
            self.is_active
            and self.allow_pre_order
            and not self.is_deleted
            and not self.is_locked_by_harvest(today)
        )

    def accepts_quantity(self, quantity_kg: Decimal) -> bool:
        return self.min_order_kg <= quantity_kg <= self.max_order_kg

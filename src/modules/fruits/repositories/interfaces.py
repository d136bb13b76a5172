"""Fruit type repository interface."""

from __future__ import annotations

from abc import abstractmethod
from typing import TYPE_CHECKING, Optional

from django.db import models

from modules.core.repositories.interfaces import IRepository

if TYPE_CHECKING:
    from modules.fruits.models import FruitType


class IFruitTypeRepository(IRepository["FruitType"]):
    """Repository contract for the FruitType catalog entry."""

    @abstractmethod
    def get_for_update(self, id: str) -> Optional["FruitType"]:
        """Retrieve a fruit type with a row-level lock (SELECT FOR UPDATE)."""

    @abstractmethod
    def pre_order_candidates(self) -> "models.QuerySet[FruitType]":
        """Alive, active fruit types flagged for pre-order."""

    @abstractmethod
    def mark_inactive(self, entity: "FruitType") -> "FruitType":
        """Flip the fruit type to ``INACTIVE``; no-op when already inactive."""

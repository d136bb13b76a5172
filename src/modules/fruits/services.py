"""Customer-facing queries over the fruit catalog."""

from __future__ import annotations

from datetime import date
from typing import TYPE_CHECKING, List, Optional

import structlog
from django.utils import timezone

from modules.fruits.exceptions import FruitTypeNotFound

if TYPE_CHECKING:
    from modules.fruits.models import FruitType
    from modules.fruits.repositories.interfaces import IFruitTypeRepository

logger = structlog.get_logger(__name__)


class FruitTypeService:
    def __init__(self, fruit_type_repository: IFruitTypeRepository) -> None:
        self._fruit_type_repo = fruit_type_repository

    def get_fruit_type(self, fruit_type_id: str) -> FruitType:
        fruit_type = self._fruit_type_repo.get_by_id(fruit_type_id)
        if not fruit_type:
            raise FruitTypeNotFound(f"Fruit type {fruit_type_id} not found.")
        return fruit_type

    def list_open_fruit_types(
        self, keyword: str = "", today: Optional[date] = None
    ) -> List[FruitType]:
        """Fruit types a customer can pre-order right now.

        Excludes types inside the harvest lockout window and types already
        closed by an allocation run (a commitment has been matched to stock
        and is awaiting or past remaining payment).
        """
        from modules.preorders.constants import ORDERING_CLOSED_STATUSES

        today = today or timezone.localdate()
        queryset = self._fruit_type_repo.pre_order_candidates().exclude(
            pre_orders__status__in=ORDERING_CLOSED_STATUSES
        )
        if keyword:
            queryset = queryset.filter(name__icontains=keyword.strip())

        open_types = [
            fruit_type
            for fruit_type in queryset.distinct()
            if not fruit_type.is_locked_by_harvest(today)
        ]
        logger.info("fruit_type.open_listed", keyword=keyword, count=len(open_types))
        return open_types

"""Django ORM implementation of the FruitType repository.

Missing or malformed ids resolve to ``None``; the service layer decides
how a missing fruit type surfaces to the caller.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

import structlog
from django.core.exceptions import ValidationError
from django.db import models, transaction

from modules.fruits.constants import FruitTypeStatus
from modules.fruits.models import FruitType
from modules.fruits.repositories.interfaces import IFruitTypeRepository

logger = structlog.get_logger(__name__)


class FruitTypeDjangoRepository(IFruitTypeRepository):
    def get_by_id(self, id: str) -> Optional[FruitType]:
        try:
            return FruitType.objects.alive().filter(id=id).first()
        except (ValueError, ValidationError):
            return None

    def get_for_update(self, id: str) -> Optional[FruitType]:
        try:
            return FruitType.objects.select_for_update().alive().filter(id=id).first()
        except (ValueError, ValidationError):
            return None

    def list(
        self, filters: Optional[Dict[str, Any]] = None
    ) -> "models.QuerySet[FruitType]":
        queryset = FruitType.objects.alive()
        if filters:
            queryset = queryset.filter(**filters)
        return queryset

    def pre_order_candidates(self) -> "models.QuerySet[FruitType]":
        return FruitType.objects.alive().filter(
            status=FruitTypeStatus.ACTIVE, allow_pre_order=True
        )

    @transaction.atomic
    def save(self, entity: FruitType) -> FruitType:
        entity.save()
        logger.info("fruit_type.saved", fruit_type_id=str(entity.id))
        return entity

    def mark_inactive(self, entity: FruitType) -> FruitType:
        if entity.status == FruitTypeStatus.INACTIVE:
            return entity
        entity.status = FruitTypeStatus.INACTIVE
        entity.save(update_fields=["status"])
        logger.info("fruit_type.deactivated", fruit_type_id=str(entity.id))
        return entity

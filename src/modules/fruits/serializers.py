from __future__ import annotations

from django.conf import settings
from rest_framework import serializers

from modules.fruits.models import FruitType


class OpenFruitTypeSerializer(serializers.ModelSerializer):
    """Catalog entry as shown on the customer pre-order page."""

    deposit_percent = serializers.SerializerMethodField()
    harvest_lock_date = serializers.DateField(read_only=True)

    class Meta:
        model = FruitType
        fields = [
            "id",
            "name",
            "description",
            "estimated_price",
            "min_order_kg",
            "max_order_kg",
            "estimated_harvest_date",
            "harvest_lock_date",
            "deposit_percent",
        ]
        read_only_fields = fields

    def get_deposit_percent(self, obj: FruitType) -> int:
        return settings.PREORDER_DEPOSIT_PERCENT

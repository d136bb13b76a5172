"""Pre-order DRF serializers.

Input serializers validate request shape and feed the service DTOs;
output serializers are read-only views of the models.
"""

from __future__ import annotations

from decimal import Decimal

from rest_framework import serializers

from modules.preorders.constants import HarvestBatchStatus
from modules.preorders.models import (
    PreOrder,
    PreOrderAllocation,
    PreOrderHarvestBatch,
    PreOrderReceive,
    PreOrderStatusHistory,
)

# ---------------------------------------------------------------------------
# Input Serializers
# ---------------------------------------------------------------------------


class CreateDepositIntentSerializer(serializers.Serializer):
    fruit_type_id = serializers.UUIDField()
    quantity_kg = serializers.DecimalField(
        max_digits=12, decimal_places=2, min_value=Decimal("0.01")
    )
    receiver_name = serializers.CharField(required=False, default="", allow_blank=True, max_length=150)
    receiver_phone = serializers.CharField(required=False, default="", allow_blank=True, max_length=20)
    receiver_address = serializers.CharField(
        required=False, default="", allow_blank=True, max_length=255
    )


class PaymentCallbackSerializer(serializers.Serializer):
    KIND_DEPOSIT = "deposit"
    KIND_REMAINING = "remaining"

    kind = serializers.ChoiceField(choices=[KIND_DEPOSIT, KIND_REMAINING])
    intent_id = serializers.UUIDField()
    success = serializers.BooleanField()


class RecordReceiveSerializer(serializers.Serializer):
    fruit_type_id = serializers.UUIDField(required=False, allow_null=True, default=None)
    batch_id = serializers.UUIDField(required=False, allow_null=True, default=None)
    quantity_kg = serializers.DecimalField(
        max_digits=12, decimal_places=2, min_value=Decimal("0.01")
    )
    confirmed = serializers.BooleanField(default=False)
    note = serializers.CharField(required=False, default="", allow_blank=True, max_length=500)

    def validate(self, attrs):
        if not attrs.get("fruit_type_id") and not attrs.get("batch_id"):
            raise serializers.ValidationError("Either fruit_type_id or batch_id is required.")
        return attrs


class CreateHarvestBatchSerializer(serializers.Serializer):
    fruit_type_id = serializers.UUIDField()
    harvest_date = serializers.DateField()
    batch_number = serializers.IntegerField(min_value=1, default=1)
    supplier_name = serializers.CharField(max_length=150)
    quantity_kg = serializers.DecimalField(
        max_digits=12, decimal_places=2, min_value=Decimal("0.01")
    )
    notes = serializers.CharField(required=False, default="", allow_blank=True, max_length=500)


class RunAllocationSerializer(serializers.Serializer):
    fruit_type_id = serializers.UUIDField()


class AdminActionSerializer(serializers.Serializer):
    notes = serializers.CharField(required=False, default="", allow_blank=True, max_length=500)


# ---------------------------------------------------------------------------
# Output Serializers (Read)
# ---------------------------------------------------------------------------


class StatusHistorySerializer(serializers.ModelSerializer):
    class Meta:
        model = PreOrderStatusHistory
        fields = ["id", "old_status", "new_status", "notes", "changed_by", "created_at"]
        read_only_fields = fields


class PreOrderListSerializer(serializers.ModelSerializer):
    fruit_type_name = serializers.CharField(source="fruit_type.name", read_only=True)
    remaining_amount = serializers.DecimalField(max_digits=14, decimal_places=2, read_only=True)
    can_pay_remaining = serializers.BooleanField(read_only=True)

    class Meta:
        model = PreOrder
        fields = [
            "id",
            "fruit_type_id",
            "fruit_type_name",
            "quantity_kg",
            "deposit_paid",
            "total_amount",
            "remaining_amount",
            "can_pay_remaining",
            "status",
            "remaining_paid_at",
            "created_at",
        ]
        read_only_fields = fields


class PreOrderSerializer(PreOrderListSerializer):
    status_history = StatusHistorySerializer(many=True, read_only=True)

    class Meta(PreOrderListSerializer.Meta):
        fields = PreOrderListSerializer.Meta.fields + [
            "user_id",
            "allocated_at",
            "receiver_name",
            "receiver_phone",
            "receiver_address",
            "updated_at",
            "status_history",
        ]
        read_only_fields = fields


class PaymentRedirectSerializer(serializers.Serializer):
    intent_id = serializers.UUIDField()
    amount = serializers.DecimalField(max_digits=14, decimal_places=2)
    expires_at = serializers.DateTimeField()
    payment_url = serializers.CharField()


class AllocationResultSerializer(serializers.Serializer):
    fruit_type_id = serializers.UUIDField()
    allocated_pre_order_ids = serializers.ListField(child=serializers.UUIDField())
    deferred_pre_order_ids = serializers.ListField(child=serializers.UUIDField())
    allocated_kg = serializers.DecimalField(max_digits=14, decimal_places=2)
    received_kg = serializers.DecimalField(max_digits=14, decimal_places=2)
    remaining_available_kg = serializers.DecimalField(max_digits=14, decimal_places=2)
    fruit_type_deactivated = serializers.BooleanField()


class DemandRowSerializer(serializers.Serializer):
    fruit_type_id = serializers.UUIDField()
    fruit_type_name = serializers.CharField()
    estimated_harvest_date = serializers.DateField(allow_null=True)
    demand_kg = serializers.DecimalField(max_digits=14, decimal_places=2)
    allocated_kg = serializers.DecimalField(max_digits=14, decimal_places=2)
    received_kg = serializers.DecimalField(max_digits=14, decimal_places=2)
    available_kg = serializers.DecimalField(max_digits=14, decimal_places=2)
    fully_received = serializers.BooleanField()


class StockRowSerializer(serializers.Serializer):
    fruit_type_id = serializers.UUIDField()
    fruit_type_name = serializers.CharField()
    received_kg = serializers.DecimalField(max_digits=14, decimal_places=2)
    allocated_kg = serializers.DecimalField(max_digits=14, decimal_places=2)
    available_kg = serializers.DecimalField(max_digits=14, decimal_places=2)


class AllocationLedgerSerializer(serializers.ModelSerializer):
    fruit_type_name = serializers.CharField(source="fruit_type.name", read_only=True)

    class Meta:
        model = PreOrderAllocation
        fields = ["id", "fruit_type_id", "fruit_type_name", "allocated_kg", "updated_at"]
        read_only_fields = fields


class ReceiveSerializer(serializers.ModelSerializer):
    fruit_type_name = serializers.CharField(source="fruit_type.name", read_only=True)
    batch_code = serializers.CharField(source="batch.batch_code", read_only=True, default=None)
    received_by_username = serializers.CharField(source="received_by.username", read_only=True)

    class Meta:
        model = PreOrderReceive
        fields = [
            "id",
            "fruit_type_id",
            "fruit_type_name",
            "batch_id",
            "batch_code",
            "quantity_kg",
            "received_by_id",
            "received_by_username",
            "note",
            "created_at",
        ]
        read_only_fields = fields


class HarvestBatchSerializer(serializers.ModelSerializer):
    fruit_type_name = serializers.CharField(source="fruit_type.name", read_only=True)
    remaining_kg = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)
    status = serializers.ChoiceField(choices=HarvestBatchStatus.choices, read_only=True)

    class Meta:
        model = PreOrderHarvestBatch
        fields = [
            "id",
            "batch_code",
            "fruit_type_id",
            "fruit_type_name",
            "harvest_date",
            "batch_number",
            "supplier_name",
            "quantity_kg",
            "received_kg",
            "remaining_kg",
            "status",
            "notes",
            "created_at",
        ]
        read_only_fields = fields

"""Pre-order lifecycle constants.

Defines the commitment status choices and the state machine that the
allocator, the payment confirmations and the admin actions go through.
"""

from django.db import models


class PreOrderStatus(models.TextChoices):
    WAITING_FOR_ALLOCATION = "WAITING_FOR_ALLOCATION", "Waiting for allocation"
    WAITING_FOR_NEXT_BATCH = "WAITING_FOR_NEXT_BATCH", "Waiting for next batch"
    ALLOCATED_WAITING_PAYMENT = "ALLOCATED_WAITING_PAYMENT", "Allocated, waiting payment"
    READY_FOR_FULFILLMENT = "READY_FOR_FULFILLMENT", "Ready for fulfillment"
    COMPLETED = "COMPLETED", "Completed"
    REFUND = "REFUND", "Refund"
    CANCELLED = "CANCELLED", "Cancelled"


class PaymentIntentStatus(models.TextChoices):
    PENDING = "PENDING", "Pending"
    SUCCESS = "SUCCESS", "Success"
    EXPIRED = "EXPIRED", "Expired"


class HarvestBatchStatus(models.TextChoices):
    NOT_RECEIVED = "NOT_RECEIVED", "Not received"
    PARTIAL = "PARTIAL", "Partially received"
    FULLY_RECEIVED = "FULLY_RECEIVED", "Fully received"


TERMINAL_STATES = frozenset(
    {
        PreOrderStatus.COMPLETED,
        PreOrderStatus.REFUND,
        PreOrderStatus.CANCELLED,
    }
)

# Any non-terminal state may additionally move to REFUND.
VALID_TRANSITIONS = {
    PreOrderStatus.WAITING_FOR_ALLOCATION: [
        PreOrderStatus.ALLOCATED_WAITING_PAYMENT,
        PreOrderStatus.WAITING_FOR_NEXT_BATCH,
        PreOrderStatus.REFUND,
    ],
    PreOrderStatus.WAITING_FOR_NEXT_BATCH: [
        PreOrderStatus.ALLOCATED_WAITING_PAYMENT,
        PreOrderStatus.REFUND,
    ],
    PreOrderStatus.ALLOCATED_WAITING_PAYMENT: [
        PreOrderStatus.READY_FOR_FULFILLMENT,
        PreOrderStatus.CANCELLED,
        PreOrderStatus.REFUND,
    ],
    PreOrderStatus.READY_FOR_FULFILLMENT: [
        PreOrderStatus.COMPLETED,
        PreOrderStatus.REFUND,
    ],
    PreOrderStatus.COMPLETED: [],
    PreOrderStatus.REFUND: [],
    PreOrderStatus.CANCELLED: [],
}

# Outstanding demand: not yet served, not dropped.
DEMAND_STATUSES = (
    PreOrderStatus.WAITING_FOR_ALLOCATION,
    PreOrderStatus.WAITING_FOR_NEXT_BATCH,
    PreOrderStatus.ALLOCATED_WAITING_PAYMENT,
)

# Stock already promised to a commitment.
ALLOCATED_STATUSES = (
    PreOrderStatus.ALLOCATED_WAITING_PAYMENT,
    PreOrderStatus.READY_FOR_FULFILLMENT,
    PreOrderStatus.COMPLETED,
)

# Demand the allocator has not matched yet.
UNALLOCATED_STATUSES = (
    PreOrderStatus.WAITING_FOR_ALLOCATION,
    PreOrderStatus.WAITING_FOR_NEXT_BATCH,
)

# Once any commitment of a fruit type reaches these, the type no longer
# accepts new pre-orders.
ORDERING_CLOSED_STATUSES = (
    PreOrderStatus.ALLOCATED_WAITING_PAYMENT,
    PreOrderStatus.READY_FOR_FULFILLMENT,
)

SYSTEM_ACTOR = "system"
BATCH_CODE_PREFIX = "POHB"
BATCH_CODE_MAX_RETRIES = 5
OUTBOX_TOPIC = "preorders"

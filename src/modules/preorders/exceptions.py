"""Pre-order domain exceptions.

Four families, each mapped to one HTTP status by the views:

- ``PreOrderValidationError`` → 400: bad quantity, fruit type closed.
- ``ConcurrencyConflict`` → 409: the fruit type's guard is held.
- ``BusinessRuleViolation`` → 422: the request is well formed but the
  lifecycle or the ledgers forbid it.
- ``PaymentSessionExpired`` → 410: the payment intent TTL elapsed.

Look-up failures (``PreOrderNotFound`` …) map to 404.
"""

from __future__ import annotations

from decimal import Decimal


class PreOrderValidationError(Exception):
    """Base class for rejected input."""


class ConcurrencyConflict(Exception):
    """Base class for operations refused because another one is running."""


class BusinessRuleViolation(Exception):
    """Base class for lifecycle and ledger rule violations."""


class PaymentSessionExpired(Exception):
    """Base class for payment intents used after their TTL."""


# ---------------------------------------------------------------------------
# Not found
# ---------------------------------------------------------------------------


class PreOrderNotFound(Exception):
    """The commitment does not exist or belongs to another customer."""


class PaymentIntentNotFound(Exception):
    """The payment intent does not exist."""


class HarvestBatchNotFound(Exception):
    """The pre-order harvest batch does not exist."""


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class FruitTypeUnavailable(PreOrderValidationError):
    """The fruit type is inactive or does not accept pre-orders."""


class HarvestLockActive(PreOrderValidationError):
    """The fruit type is inside its harvest lockout window."""


class InvalidQuantity(PreOrderValidationError):
    """The quantity is outside the allowed bounds."""


class ReceiveNotConfirmed(PreOrderValidationError):
    """A receive was submitted without explicit confirmation."""


class DuplicateHarvestBatch(PreOrderValidationError):
    """A batch with the same fruit type, date, number and supplier exists."""


class BatchFruitTypeMismatch(PreOrderValidationError):
    """The receive names a fruit type other than its batch's."""


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------


class AllocationInProgress(ConcurrencyConflict):
    """Another allocation or receive holds the fruit type's guard."""


# ---------------------------------------------------------------------------
# Business rules
# ---------------------------------------------------------------------------


class NothingReceived(BusinessRuleViolation):
    """No stock has been received for the fruit type yet."""


class InsufficientStock(BusinessRuleViolation):
    """Received stock is fully allocated already."""

    def __init__(
        self,
        fruit_type_id: str,
        demand_kg: Decimal,
        received_kg: Decimal,
        allocated_kg: Decimal,
    ) -> None:
        self.fruit_type_id = fruit_type_id
        self.demand_kg = demand_kg
        self.received_kg = received_kg
        self.allocated_kg = allocated_kg
        super().__init__(
            f"No stock available to allocate for fruit type {fruit_type_id}: "
            f"demand {demand_kg} kg, received {received_kg} kg, "
            f"allocated {allocated_kg} kg."
        )


class ReceiveExceedsDemand(BusinessRuleViolation):
    """The receive would stock more than customers have committed to."""


class ReceiveExceedsBatch(BusinessRuleViolation):
    """The receive is larger than the batch's remaining planned quantity."""


class InvalidPreOrderStatus(BusinessRuleViolation):
    """The commitment's status does not allow the requested transition."""


class PreOrderNotAllocated(InvalidPreOrderStatus):
    """Remaining payment requested for a commitment not awaiting it."""


class PreOrderNotCancellable(BusinessRuleViolation):
    """Paid commitments cannot be cancelled by the customer."""


class NothingToPay(BusinessRuleViolation):
    """The commitment has no remaining balance."""


# ---------------------------------------------------------------------------
# Expired session
# ---------------------------------------------------------------------------


class PaymentIntentExpired(PaymentSessionExpired):
    """The payment intent expired before it was confirmed."""

"""Pre-order service layer: commitments and their payment legs.

Covers the customer path (deposit intent → confirmation → remaining
payment), the admin lifecycle actions (complete, refund) and the
overdue-payment sweep.  Allocation lives in ``allocation.py`` and the
warehouse side in ``stock.py``.

Payment intents expire lazily: confirming an intent past its TTL marks
it ``EXPIRED`` in its own committed transaction and then raises
``PaymentIntentExpired``.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Any, Dict, List, Optional

import structlog
from django.conf import settings
from django.db import models, transaction
from django.utils import timezone

from modules.fruits.exceptions import FruitTypeNotFound
from modules.preorders.allocation import deactivate_if_demand_served, transition
from modules.preorders.constants import (
    ALLOCATED_STATUSES,
    SYSTEM_ACTOR,
    PaymentIntentStatus,
    PreOrderStatus,
)
from modules.preorders.dtos import PaymentRedirectDTO
from modules.preorders.events import (
    PreOrderClosed,
    PreOrderCreated,
    PreOrderReadyForFulfillment,
)
from modules.preorders.exceptions import (
    AllocationInProgress,
    FruitTypeUnavailable,
    HarvestLockActive,
    InvalidPreOrderStatus,
    InvalidQuantity,
    NothingToPay,
    PaymentIntentExpired,
    PaymentIntentNotFound,
    PreOrderNotAllocated,
    PreOrderNotCancellable,
    PreOrderNotFound,
)
from modules.preorders.locks import fruit_type_guard
from modules.preorders.models import PreOrder

if TYPE_CHECKING:
    from modules.fruits.repositories.interfaces import IFruitTypeRepository
    from modules.preorders.dtos import CreateDepositIntentDTO
    from modules.preorders.gateway import IPaymentGateway
    from modules.preorders.repositories.interfaces import (
        IPaymentIntentRepository,
        IPreOrderRepository,
        IStockRepository,
    )

logger = structlog.get_logger(__name__)

CENT = Decimal("0.01")


def _money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def deposit_for(price: Decimal, quantity_kg: Decimal) -> Decimal:
    percent = Decimal(settings.PREORDER_DEPOSIT_PERCENT) / Decimal(100)
    return _money(price * quantity_kg * percent)


def _intent_expiry(now: Optional[datetime] = None) -> datetime:
    return (now or timezone.now()) + timedelta(
        minutes=settings.PREORDER_INTENT_TTL_MINUTES
    )


class PreOrderService:
    """Application service for commitment use-cases.

    Receives repositories and the payment gateway via constructor
    injection.
    """

    def __init__(
        self,
        pre_order_repository: IPreOrderRepository,
        payment_intent_repository: IPaymentIntentRepository,
        stock_repository: IStockRepository,
        fruit_type_repository: IFruitTypeRepository,
        payment_gateway: IPaymentGateway,
    ) -> None:
        self._pre_order_repo = pre_order_repository
        self._intent_repo = payment_intent_repository
        self._stock_repo = stock_repository
        self._fruit_type_repo = fruit_type_repository
        self._gateway = payment_gateway

    # ------------------------------------------------------------------
    # Deposit leg
    # ------------------------------------------------------------------

    @transaction.atomic
    def create_deposit_intent(self, dto: CreateDepositIntentDTO) -> PaymentRedirectDTO:
        """Open a deposit payment for a new commitment.

        The deposit is computed from the price at this moment and never
        recomputed.  Returns the gateway redirect.

        Raises:
            FruitTypeNotFound: the fruit type does not exist.
            FruitTypeUnavailable: inactive or not open for pre-orders.
            HarvestLockActive: inside the harvest lockout window.
            InvalidQuantity: outside ``[min_order_kg, max_order_kg]``.
        """
        log = logger.bind(user_id=dto.user_id, fruit_type_id=str(dto.fruit_type_id))

        fruit_type = self._fruit_type_repo.get_by_id(str(dto.fruit_type_id))
        if not fruit_type:
            raise FruitTypeNotFound(f"Fruit type {dto.fruit_type_id} not found.")
        if not fruit_type.accepts_pre_orders():
            if not (fruit_type.is_active and fruit_type.allow_pre_order) or fruit_type.is_deleted:
                raise FruitTypeUnavailable(
                    f"{fruit_type.name} is not open for pre-orders."
                )
            raise HarvestLockActive(
                f"Pre-orders for {fruit_type.name} closed on "
                f"{fruit_type.harvest_lock_date()}: harvest is less than "
                f"{settings.PREORDER_HARVEST_LOCK_DAYS} days away."
            )
        if not fruit_type.accepts_quantity(dto.quantity_kg):
            raise InvalidQuantity(
                f"Quantity must be between {fruit_type.min_order_kg} and "
                f"{fruit_type.max_order_kg} kg."
            )

        intent = self._intent_repo.create_deposit(
            {
                "user_id": dto.user_id,
                "fruit_type": fruit_type,
                "quantity_kg": dto.quantity_kg,
                "amount": deposit_for(fruit_type.estimated_price, dto.quantity_kg),
                "expires_at": _intent_expiry(),
                "client_ip": dto.client_ip,
                "receiver_name": dto.receiver_name,
                "receiver_phone": dto.receiver_phone,
                "receiver_address": dto.receiver_address,
            }
        )
        payment_url = self._gateway.build_payment_url(
            str(intent.id), intent.amount_minor_units, dto.client_ip
        )
        log.info(
            "preorder.deposit_intent_created",
            intent_id=str(intent.id),
            amount=str(intent.amount),
        )
        return PaymentRedirectDTO(
            intent_id=intent.id,
            amount=intent.amount,
            expires_at=intent.expires_at,
            payment_url=payment_url,
        )

    def confirm_deposit_intent(self, intent_id: Any) -> PreOrder:
        """Settle a deposit: the only place a commitment is created.

        Confirming an already successful intent returns its commitment
        unchanged.

        Raises:
            PaymentIntentNotFound: unknown intent.
            PaymentIntentExpired: the intent is or just became expired.
        """
        log = logger.bind(intent_id=str(intent_id))
        with transaction.atomic():
            intent = self._intent_repo.get_deposit_for_update(str(intent_id))
            if not intent:
                raise PaymentIntentNotFound(f"Deposit intent {intent_id} not found.")

            if intent.status == PaymentIntentStatus.SUCCESS:
                log.info("preorder.deposit_confirm_noop")
                return self._pre_order_repo.get_by_id(str(intent.pre_order_id))
            if intent.status == PaymentIntentStatus.EXPIRED:
                raise PaymentIntentExpired(f"Deposit intent {intent_id} has expired.")

            expired = intent.has_elapsed()
            if expired:
                self._intent_repo.update_status(intent, PaymentIntentStatus.EXPIRED)
            else:
                pre_order = self._create_pre_order(intent)

        if expired:
            log.warning("preorder.deposit_intent_expired")
            raise PaymentIntentExpired(f"Deposit intent {intent_id} has expired.")

        log.info("preorder.deposit_confirmed", pre_order_id=str(pre_order.id))
        return pre_order

    def _create_pre_order(self, intent: Any) -> PreOrder:
        fruit_type = intent.fruit_type
        pre_order = PreOrder(
            user_id=intent.user_id,
            fruit_type=fruit_type,
            quantity_kg=intent.quantity_kg,
            deposit_paid=intent.amount,
            total_amount=_money(fruit_type.estimated_price * intent.quantity_kg),
            status=PreOrderStatus.WAITING_FOR_ALLOCATION,
            receiver_name=intent.receiver_name,
            receiver_phone=intent.receiver_phone,
            receiver_address=intent.receiver_address,
        )
        pre_order._status_change_notes = "Deposit confirmed"
        pre_order.add_domain_event(
            PreOrderCreated(
                aggregate_id=pre_order.id,
                fruit_type_id=str(fruit_type.id),
                quantity_kg=str(intent.quantity_kg),
            )
        )
        self._pre_order_repo.save(pre_order)

        intent.pre_order = pre_order
        intent.status = PaymentIntentStatus.SUCCESS
        intent.save(update_fields=["pre_order", "status"])
        return pre_order

    # ------------------------------------------------------------------
    # Remaining-payment leg
    # ------------------------------------------------------------------

    @transaction.atomic
    def create_remaining_payment_intent(
        self, pre_order_id: Any, user_id: Any, client_ip: Optional[str] = None
    ) -> PaymentRedirectDTO:
        """Open the remaining-balance payment for an allocated commitment.

        Raises:
            PreOrderNotFound: unknown commitment or owned by someone else.
            PreOrderNotAllocated: not waiting for remaining payment.
            NothingToPay: the deposit already covers the total.
        """
        pre_order = self._pre_order_repo.get_for_update(str(pre_order_id))
        if not pre_order or pre_order.user_id != user_id:
            raise PreOrderNotFound(f"Pre-order {pre_order_id} not found.")
        if pre_order.status != PreOrderStatus.ALLOCATED_WAITING_PAYMENT:
            raise PreOrderNotAllocated(
                f"Pre-order {pre_order_id} is {pre_order.status}; the remaining "
                "balance can only be paid once stock is allocated."
            )
        remaining = pre_order.remaining_amount
        if remaining <= 0:
            raise NothingToPay(f"Pre-order {pre_order_id} has nothing left to pay.")

        intent = self._intent_repo.create_remaining(
            {
                "pre_order": pre_order,
                "user_id": user_id,
                "amount": remaining,
                "expires_at": _intent_expiry(),
                "client_ip": client_ip,
            }
        )
        payment_url = self._gateway.build_payment_url(
            str(intent.id), intent.amount_minor_units, client_ip
        )
        logger.info(
            "preorder.remaining_intent_created",
            pre_order_id=str(pre_order.id),
            intent_id=str(intent.id),
            amount=str(remaining),
        )
        return PaymentRedirectDTO(
            intent_id=intent.id,
            amount=intent.amount,
            expires_at=intent.expires_at,
            payment_url=payment_url,
        )

    def confirm_remaining_payment_intent(self, intent_id: Any) -> PreOrder:
        """Settle the remaining balance and move the commitment to
        ``READY_FOR_FULFILLMENT``.

        Raises:
            PaymentIntentNotFound: unknown intent.
            PaymentIntentExpired: the intent is or just became expired.
            PreOrderNotAllocated: the commitment left
                ``ALLOCATED_WAITING_PAYMENT`` in the meantime.
        """
        log = logger.bind(intent_id=str(intent_id))
        with transaction.atomic():
            intent = self._intent_repo.get_remaining_for_update(str(intent_id))
            if not intent:
                raise PaymentIntentNotFound(f"Remaining intent {intent_id} not found.")

            if intent.status == PaymentIntentStatus.SUCCESS:
                log.info("preorder.remaining_confirm_noop")
                return self._pre_order_repo.get_by_id(str(intent.pre_order_id))
            if intent.status == PaymentIntentStatus.EXPIRED:
                raise PaymentIntentExpired(f"Remaining intent {intent_id} has expired.")

            expired = intent.has_elapsed()
            if expired:
                self._intent_repo.update_status(intent, PaymentIntentStatus.EXPIRED)
            else:
                pre_order = self._settle_remaining(intent)

        if expired:
            log.warning("preorder.remaining_intent_expired")
            raise PaymentIntentExpired(f"Remaining intent {intent_id} has expired.")

        log.info("preorder.remaining_confirmed", pre_order_id=str(pre_order.id))
        return pre_order

    def _settle_remaining(self, intent: Any) -> PreOrder:
        pre_order = self._pre_order_repo.get_for_update(str(intent.pre_order_id))
        if pre_order.status != PreOrderStatus.ALLOCATED_WAITING_PAYMENT:
            raise PreOrderNotAllocated(
                f"Pre-order {pre_order.id} is {pre_order.status} and no longer "
                "accepts the remaining payment."
            )
        transition(
            pre_order,
            PreOrderStatus.READY_FOR_FULFILLMENT,
            notes="Remaining balance paid",
        )
        pre_order.remaining_paid_at = timezone.now()
        pre_order.add_domain_event(PreOrderReadyForFulfillment(aggregate_id=pre_order.id))
        self._pre_order_repo.save(pre_order)

        self._intent_repo.update_status(intent, PaymentIntentStatus.SUCCESS)
        deactivate_if_demand_served(
            pre_order.fruit_type, self._pre_order_repo, self._fruit_type_repo
        )
        return pre_order

    # ------------------------------------------------------------------
    # Lifecycle actions
    # ------------------------------------------------------------------

    def cancel_pre_order(self, pre_order_id: Any, user_id: Any) -> None:
        """Customers cannot cancel a paid commitment; this always raises.

        Raises:
            PreOrderNotFound: unknown commitment or owned by someone else.
            PreOrderNotCancellable: for every existing commitment.
        """
        pre_order = self._pre_order_repo.get_for_user(str(pre_order_id), user_id)
        if not pre_order:
            raise PreOrderNotFound(f"Pre-order {pre_order_id} not found.")
        logger.info(
            "preorder.cancel_refused",
            pre_order_id=str(pre_order.id),
            status=pre_order.status,
        )
        raise PreOrderNotCancellable(
            "Pre-orders cannot be cancelled once the deposit is paid."
        )

    @transaction.atomic
    def mark_completed(self, pre_order_id: Any, actor: str = "", notes: str = "") -> PreOrder:
        """Record delivery of a fully paid commitment.

        Raises:
            PreOrderNotFound: unknown commitment.
            InvalidPreOrderStatus: not ``READY_FOR_FULFILLMENT``.
        """
        pre_order = self._pre_order_repo.get_for_update(str(pre_order_id))
        if not pre_order:
            raise PreOrderNotFound(f"Pre-order {pre_order_id} not found.")
        if pre_order.status != PreOrderStatus.READY_FOR_FULFILLMENT:
            raise InvalidPreOrderStatus(
                f"Only READY_FOR_FULFILLMENT pre-orders can be completed; "
                f"{pre_order_id} is {pre_order.status}."
            )

        transition(pre_order, PreOrderStatus.COMPLETED, notes or "Delivered", actor)
        pre_order.add_domain_event(
            PreOrderClosed(
                aggregate_id=pre_order.id, status=PreOrderStatus.COMPLETED, actor=actor
            )
        )
        self._pre_order_repo.save(pre_order)
        logger.info("preorder.completed", pre_order_id=str(pre_order.id), actor=actor)
        return pre_order

    def mark_refund(self, pre_order_id: Any, actor: str = "", notes: str = "") -> PreOrder:
        """Mark a non-terminal commitment for an off-system refund.

        Runs under the fruit type's guard: a refund changes both demand
        (the receive cap) and, for allocated commitments, the allocation
        ledger.

        Raises:
            PreOrderNotFound: unknown commitment.
            InvalidPreOrderStatus: already terminal.
            AllocationInProgress: the fruit type's guard is held.
        """
        current = self._pre_order_repo.get_by_id(str(pre_order_id))
        if not current:
            raise PreOrderNotFound(f"Pre-order {pre_order_id} not found.")

        with fruit_type_guard(current.fruit_type_id, operation="refund"):
            with transaction.atomic():
                pre_order = self._pre_order_repo.get_for_update(str(pre_order_id))
                was_allocated = pre_order.status in ALLOCATED_STATUSES
                transition(pre_order, PreOrderStatus.REFUND, notes or "Refund", actor)
                pre_order.add_domain_event(
                    PreOrderClosed(
                        aggregate_id=pre_order.id,
                        status=PreOrderStatus.REFUND,
                        actor=actor,
                    )
                )
                self._pre_order_repo.save(pre_order)
                if was_allocated:
                    self._stock_repo.refresh_allocation_ledger(pre_order.fruit_type_id)

        logger.info(
            "preorder.refund_marked",
            pre_order_id=str(pre_order.id),
            was_allocated=was_allocated,
            actor=actor,
        )
        return pre_order

    def cancel_overdue_pre_orders(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Cancel commitments left unpaid after allocation for too long.

        Each affected fruit type is handled under its guard; a busy guard
        skips that fruit type until the next run.
        """
        now = now or timezone.now()
        cutoff = now - timedelta(days=settings.PREORDER_DAYS_TO_PAY)

        by_fruit_type: Dict[Any, List[Any]] = defaultdict(list)
        for pre_order_id, fruit_type_id in self._pre_order_repo.overdue_allocations(cutoff):
            by_fruit_type[fruit_type_id].append(pre_order_id)

        cancelled: List[str] = []
        skipped: List[str] = []
        for fruit_type_id, pre_order_ids in by_fruit_type.items():
            try:
                with fruit_type_guard(fruit_type_id, operation="overdue_sweep"):
                    cancelled.extend(
                        self._cancel_overdue_for(fruit_type_id, pre_order_ids, cutoff)
                    )
            except AllocationInProgress:
                skipped.append(str(fruit_type_id))

        logger.info(
            "preorder.overdue_sweep_finished",
            cancelled_count=len(cancelled),
            skipped_fruit_types=skipped,
        )
        return {"cancelled": cancelled, "skipped_fruit_types": skipped}

    @transaction.atomic
    def _cancel_overdue_for(
        self, fruit_type_id: Any, pre_order_ids: List[Any], cutoff: datetime
    ) -> List[str]:
        cancelled = []
        for pre_order_id in pre_order_ids:
            pre_order = self._pre_order_repo.get_for_update(str(pre_order_id))
            # Paid or refunded between the scan and the lock.
            if (
                pre_order.status != PreOrderStatus.ALLOCATED_WAITING_PAYMENT
                or pre_order.allocated_at >= cutoff
            ):
                continue
            transition(
                pre_order,
                PreOrderStatus.CANCELLED,
                notes=(
                    f"Remaining balance not paid within "
                    f"{settings.PREORDER_DAYS_TO_PAY} days"
                ),
                actor=SYSTEM_ACTOR,
            )
            pre_order.add_domain_event(
                PreOrderClosed(
                    aggregate_id=pre_order.id,
                    status=PreOrderStatus.CANCELLED,
                    actor=SYSTEM_ACTOR,
                )
            )
            self._pre_order_repo.save(pre_order)
            cancelled.append(str(pre_order.id))

        self._stock_repo.refresh_allocation_ledger(fruit_type_id)
        return cancelled

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_my_pre_orders(self, user_id: Any) -> "models.QuerySet[PreOrder]":
        return self._pre_order_repo.list_for_user(user_id)

    def get_my_pre_order(self, pre_order_id: Any, user_id: Any) -> PreOrder:
        pre_order = self._pre_order_repo.get_for_user(str(pre_order_id), user_id)
        if not pre_order:
            raise PreOrderNotFound(f"Pre-order {pre_order_id} not found.")
        return pre_order

    def list_pre_orders(
        self,
        status: Optional[str] = None,
        include_cancelled: bool = False,
    ) -> "models.QuerySet[PreOrder]":
        """Admin listing; ``CANCELLED`` rows are hidden unless asked for."""
        queryset = self._pre_order_repo.list()
        if status:
            return queryset.filter(status=status)
        if not include_cancelled:
            queryset = queryset.exclude(status=PreOrderStatus.CANCELLED)
        return queryset

    def get_pre_order(self, pre_order_id: Any) -> PreOrder:
        pre_order = self._pre_order_repo.get_by_id(str(pre_order_id))
        if not pre_order:
            raise PreOrderNotFound(f"Pre-order {pre_order_id} not found.")
        return pre_order

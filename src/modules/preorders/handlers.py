"""Event handlers for pre-order domain events.

They run after the business transaction has committed.  Delivery to one
customer failing is logged and never stops delivery to the others.
"""

from __future__ import annotations

from typing import Any, Callable, Optional

import structlog
from django.conf import settings

from modules.notifications.interfaces import INotifier
from modules.notifications.services import DjangoNotifier
from modules.preorders.constants import SYSTEM_ACTOR, PreOrderStatus
from modules.preorders.events import (
    FruitTypeAllocated,
    PreOrderClosed,
    PreOrderCreated,
    PreOrderDelayed,
    PreOrderReadyForFulfillment,
)
from modules.preorders.models import PreOrder
from shared.domain.bus import IEventHandler

logger = structlog.get_logger(__name__)


def _customer_name(user: Any) -> str:
    return user.get_full_name() or user.get_username()


def _deliver(channel: str, pre_order_id: Any, send: Callable[[], Any]) -> bool:
    try:
        send()
    except Exception:
        logger.exception(
            "preorder.notification_failed",
            channel=channel,
            pre_order_id=str(pre_order_id),
        )
        return False
    return True


class _NotifyingHandler:
    def __init__(self, notifier: Optional[INotifier] = None) -> None:
        self._notifier = notifier or DjangoNotifier()


class PreOrderReadyHandler(_NotifyingHandler, IEventHandler[FruitTypeAllocated]):
    """Ready-to-pay e-mail and push after an allocation run."""

    def handle(self, event: FruitTypeAllocated) -> None:
        pre_orders = PreOrder.objects.select_related("user", "fruit_type").filter(
            id__in=list(event.pre_order_ids),
            status=PreOrderStatus.ALLOCATED_WAITING_PAYMENT,
        )
        days_to_pay = settings.PREORDER_DAYS_TO_PAY
        notified_users = set()
        sent = 0

        for pre_order in pre_orders:
            user = pre_order.user
            fruit_name = pre_order.fruit_type.name
            if user.email:
                sent += _deliver(
                    "email",
                    pre_order.id,
                    lambda: self._notifier.send_pre_order_ready_email(
                        user.email,
                        _customer_name(user),
                        fruit_name,
                        pre_order.quantity_kg,
                        days_to_pay,
                    ),
                )
            if user.pk in notified_users:
                continue
            notified_users.add(user.pk)
            _deliver(
                "push",
                pre_order.id,
                lambda: self._notifier.notify_user(
                    user.pk,
                    "Your pre-order is ready",
                    f"{fruit_name} has been allocated. Please pay the remaining "
                    f"balance within {days_to_pay} days.",
                    {"type": "pre_order_ready", "pre_order_id": str(pre_order.id)},
                ),
            )

        logger.info(
            "preorder.ready_notifications_sent",
            fruit_type_id=str(event.aggregate_id),
            emails=sent,
            users=len(notified_users),
        )


class PreOrderDelayedHandler(_NotifyingHandler, IEventHandler[PreOrderDelayed]):
    def handle(self, event: PreOrderDelayed) -> None:
        pre_order = (
            PreOrder.objects.select_related("user", "fruit_type")
            .filter(id=event.aggregate_id)
            .first()
        )
        if pre_order is None:
            return
        user = pre_order.user
        fruit_name = pre_order.fruit_type.name
        if user.email:
            _deliver(
                "email",
                pre_order.id,
                lambda: self._notifier.send_pre_order_delayed_email(
                    user.email, _customer_name(user), fruit_name, pre_order.quantity_kg
                ),
            )
        _deliver(
            "push",
            pre_order.id,
            lambda: self._notifier.notify_user(
                user.pk,
                "Your pre-order moves to the next batch",
                f"This harvest of {fruit_name} was not enough for your "
                f"{pre_order.quantity_kg} kg. You will be served first from the "
                "next batch.",
                {"type": "pre_order_delayed", "pre_order_id": str(pre_order.id)},
            ),
        )


class PreOrderCreatedHandler(IEventHandler[PreOrderCreated]):
    def handle(self, event: PreOrderCreated) -> None:
        logger.info(
            "preorder.event.created",
            pre_order_id=str(event.aggregate_id),
            fruit_type_id=event.fruit_type_id,
            quantity_kg=event.quantity_kg,
        )


class PreOrderPaidHandler(_NotifyingHandler, IEventHandler[PreOrderReadyForFulfillment]):
    def handle(self, event: PreOrderReadyForFulfillment) -> None:
        pre_order = PreOrder.objects.filter(id=event.aggregate_id).first()
        if pre_order is None:
            return
        _deliver(
            "push",
            pre_order.id,
            lambda: self._notifier.notify_user(
                pre_order.user_id,
                "Payment received",
                "Your pre-order is fully paid and is being prepared for delivery.",
                {"type": "pre_order_paid", "pre_order_id": str(pre_order.id)},
            ),
        )


class PreOrderClosedHandler(_NotifyingHandler, IEventHandler[PreOrderClosed]):
    def handle(self, event: PreOrderClosed) -> None:
        logger.info(
            "preorder.event.closed",
            pre_order_id=str(event.aggregate_id),
            status=event.status,
            actor=event.actor,
        )
        if event.status != PreOrderStatus.CANCELLED or event.actor != SYSTEM_ACTOR:
            return
        pre_order = PreOrder.objects.filter(id=event.aggregate_id).first()
        if pre_order is None:
            return
        _deliver(
            "push",
            pre_order.id,
            lambda: self._notifier.notify_user(
                pre_order.user_id,
                "Pre-order cancelled",
                f"The remaining balance was not paid within "
                f"{settings.PREORDER_DAYS_TO_PAY} days, so the pre-order was "
                "cancelled.",
                {"type": "pre_order_cancelled", "pre_order_id": str(pre_order.id)},
            ),
        )


pre_order_ready_handler = PreOrderReadyHandler()
pre_order_delayed_handler = PreOrderDelayedHandler()
pre_order_created_handler = PreOrderCreatedHandler()
pre_order_paid_handler = PreOrderPaidHandler()
pre_order_closed_handler = PreOrderClosedHandler()

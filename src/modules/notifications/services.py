"""Notification delivery: in-app rows plus transactional e-mail.

Callers treat every method as fire-and-forget.  Delivery errors propagate
from here so the caller can log them per recipient.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List, Optional

import structlog
from django.conf import settings
from django.core.mail import send_mail

from modules.notifications.models import Notification

logger = structlog.get_logger(__name__)


class DjangoNotifier:
    """``INotifier`` backed by the Notification table and Django's mail framework."""

    def notify_user(
        self,
        user_id: Any,
        title: str,
        body: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> Notification:
        notification = Notification.objects.create(
            user_id=user_id, title=title, body=body, data=data or {}
        )
        logger.info(
            "notification.created",
            notification_id=str(notification.id),
            user_id=str(user_id),
        )
        return notification

    def send_pre_order_ready_email(
        self,
        email: str,
        customer_name: str,
        fruit_type_name: str,
        quantity_kg: Decimal,
        days_to_pay: int,
    ) -> None:
        message = (
            f"Hello {customer_name or 'customer'},\n\n"
            f"Your pre-order {fruit_type_name} ({quantity_kg} kg) has been "
            "allocated and is ready for delivery.\n\n"
            f"Please pay the remaining balance within {days_to_pay} days. "
            "Pre-orders left unpaid after that are cancelled and the deposit "
            "is not refunded.\n\n"
            f"Pay now: {settings.FRONTEND_URL}/customer/pre-orders\n\n"
            "Smart Fruit Shop"
        )
        self._send(
            "Your pre-order is ready: please pay the remaining balance",
            message,
            email,
        )

    def send_pre_order_delayed_email(
        self,
        email: str,
        customer_name: str,
        fruit_type_name: str,
        quantity_kg: Decimal,
    ) -> None:
        message = (
            f"Hello {customer_name or 'customer'},\n\n"
            f"The current harvest was not enough to cover your pre-order "
            f"{fruit_type_name} ({quantity_kg} kg). It keeps its place in line "
            "and will be served first from the next batch.\n\n"
            "Smart Fruit Shop"
        )
        self._send("Your pre-order moves to the next batch", message, email)

    def _send(self, subject: str, message: str, email: str) -> None:
        send_mail(
            subject=subject,
            message=message,
            from_email=settings.DEFAULT_FROM_EMAIL,
            recipient_list=[email],
            fail_silently=False,
        )
        logger.info("notification.email_sent", subject=subject, recipient=email)


class NotificationService:
    def list_for_user(self, user_id: Any, unread_only: bool = False) -> List[Notification]:
        queryset = Notification.objects.filter(user_id=user_id)
        if unread_only:
            queryset = queryset.filter(read_at__isnull=True)
        return list(queryset)

    def mark_as_read(self, user_id: Any, notification_id: str) -> Optional[Notification]:
        notification = Notification.objects.filter(
            id=notification_id, user_id=user_id
        ).first()
        if notification is not None:
            notification.mark_as_read()
        return notification

"""Notifier contract consumed by the pre-order engine."""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, Optional, Protocol


class INotifier(Protocol):
    def notify_user(
        self,
        user_id: Any,
        title: str,
        body: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> None: ...

    def send_pre_order_ready_email(
        self,
        email: str,
        customer_name: str,
        fruit_type_name: str,
        quantity_kg: Decimal,
        days_to_pay: int,
    ) -> None: ...

    def send_pre_order_delayed_email(
        self,
        email: str,
        customer_name: str,
        fruit_type_name: str,
        quantity_kg: Decimal,
    ) -> None: ...

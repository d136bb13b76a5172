"""Payment gateway seam.

The engine only needs a redirect URL for an intent; signing and the
gateway's own protocol live behind this interface.
"""

from __future__ import annotations

from typing import Optional, Protocol
from urllib.parse import urlencode

from django.conf import settings


class IPaymentGateway(Protocol):
    def build_payment_url(
        self, reference_id: str, amount_minor_units: int, client_ip: Optional[str]
    ) -> str: ...


class RedirectPaymentGateway:
    """Builds the hosted-checkout redirect from ``PAYMENT_GATEWAY_*`` settings."""

    def __init__(
        self, base_url: Optional[str] = None, return_url: Optional[str] = None
    ) -> None:
        self._base_url = base_url or settings.PAYMENT_GATEWAY_URL
        self._return_url = return_url or settings.PAYMENT_GATEWAY_RETURN_URL

    def build_payment_url(
        self, reference_id: str, amount_minor_units: int, client_ip: Optional[str]
    ) -> str:
        query = urlencode(
            {
                "reference": reference_id,
                "amount": amount_minor_units,
                "return_url": self._return_url,
                "client_ip": client_ip or "127.0.0.1",
            }
        )
        return f"{self._base_url}?{query}"

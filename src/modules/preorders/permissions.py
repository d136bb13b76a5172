from __future__ import annotations

import secrets

from django.conf import settings
from rest_framework.permissions import BasePermission

GATEWAY_TOKEN_HEADER = "X-Gateway-Token"


class HasGatewayToken(BasePermission):
    """Allows the payment gateway's server-to-server callback.

    Fails closed when ``PAYMENT_GATEWAY_CALLBACK_TOKEN`` is not configured.
    """

    message = "Invalid gateway token."

    def has_permission(self, request, view) -> bool:
        expected = settings.PAYMENT_GATEWAY_CALLBACK_TOKEN
        provided = request.headers.get(GATEWAY_TOKEN_HEADER, "")
        if not expected or not provided:
            return False
        return secrets.compare_digest(provided, expected)

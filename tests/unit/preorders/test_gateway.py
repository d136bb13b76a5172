"""Unit tests for the payment redirect builder."""

from __future__ import annotations

from urllib.parse import parse_qs, urlparse

import pytest

from modules.preorders.gateway import RedirectPaymentGateway

pytestmark = pytest.mark.unit


def test_redirect_carries_reference_and_minor_units():
    gateway = RedirectPaymentGateway(
        base_url="https://pay.example.com/checkout",
        return_url="https://shop.example.com/payment-result",
    )

    url = gateway.build_payment_url("intent-1", 150000, "10.0.0.7")

    parsed = urlparse(url)
    query = parse_qs(parsed.query)
    assert f"{parsed.scheme}://{parsed.netloc}{parsed.path}" == "https://pay.example.com/checkout"
    assert query["reference"] == ["intent-1"]
    assert query["amount"] == ["150000"]
    assert query["return_url"] == ["https://shop.example.com/payment-result"]
    assert query["client_ip"] == ["10.0.0.7"]


def test_missing_client_ip_falls_back_to_loopback():
    gateway = RedirectPaymentGateway(base_url="https://pay.example.com/checkout")

    query = parse_qs(urlparse(gateway.build_payment_url("intent-2", 100, None)).query)

    assert query["client_ip"] == ["127.0.0.1"]


def test_defaults_come_from_settings(settings):
    settings.PAYMENT_GATEWAY_URL = "https://gateway.test/pay"
    settings.PAYMENT_GATEWAY_RETURN_URL = "https://shop.test/return"

    url = RedirectPaymentGateway().build_payment_url("intent-3", 1, None)

    assert url.startswith("https://gateway.test/pay?")
    assert "shop.test" in url

import pytest

from config.settings import mask_sensitive_data

pytestmark = pytest.mark.unit


class TestSensitiveDataMasking:
    @pytest.mark.parametrize("phone", ["0912345678", "+84912345678", "02838123456"])
    def test_vn_phone_masked(self, phone):
        result = mask_sensitive_data(None, None, {"event": "test", "receiver_phone": phone})
        assert phone not in result["receiver_phone"]
        assert "***MASKED***" in result["receiver_phone"]

    def test_phone_inside_text_masked(self):
        result = mask_sensitive_data(None, None, {"event": "test", "note": "call 0987654321 first"})
        assert result["note"] == "call ***MASKED*** first"

    def test_email_masked(self):
        result = mask_sensitive_data(None, None, {"event": "test", "to": "lan.nguyen@example.vn"})
        assert "lan.nguyen@example.vn" not in result["to"]
        assert "***MASKED***" in result["to"]

    def test_password_masked(self):
        result = mask_sensitive_data(None, None, {"event": "test", "data": "password='s3cret123'"})
        assert "s3cret123" not in result["data"]
        assert "***MASKED***" in result["data"]

    def test_gateway_token_masked(self):
        result = mask_sensitive_data(None, None, {"event": "test", "header": "token=abc123xyz"})
        assert "abc123xyz" not in result["header"]

    def test_identifiers_unchanged(self):
        event_dict = {
            "event": "preorder.allocation_finished",
            "fruit_type_id": "0190f1a2-7c3d-7e4f-8a9b-0c1d2e3f4a5b",
            "allocated_kg": "15.00",
            "batch_code": "POHB-20260615-A1B2C3",
        }
        result = mask_sensitive_data(None, None, dict(event_dict))
        assert result == event_dict

    def test_non_string_values_untouched(self):
        result = mask_sensitive_data(None, None, {"event": "test", "count": 912345678})
        assert result["count"] == 912345678

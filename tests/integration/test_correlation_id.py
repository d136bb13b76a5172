import logging
import uuid

import pytest

pytestmark = pytest.mark.integration


class TestCorrelationIdMiddleware:
    def test_returns_provided_request_id(self, client):
        custom_id = "my-custom-request-id-123"
        response = client.get("/health", HTTP_X_REQUEST_ID=custom_id)
        assert response["X-Request-ID"] == custom_id

    def test_generates_uuid_when_no_request_id(self, client):
        response = client.get("/health")
        parsed = uuid.UUID(response["X-Request-ID"])
        assert str(parsed) == response["X-Request-ID"]

    def test_header_on_api_errors(self, api_client_with_correlation):
        client, cid = api_client_with_correlation
        response = client.get("/api/v1/preorders/")
        assert response.status_code == 401
        assert response["X-Request-ID"] == cid

    def test_correlation_id_in_logs(self, client, caplog):
        custom_id = "log-test-correlation-456"
        with caplog.at_level(logging.INFO):
            client.get("/health", HTTP_X_REQUEST_ID=custom_id)
        assert any(custom_id in record.getMessage() for record in caplog.records)

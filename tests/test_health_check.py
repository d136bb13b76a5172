from unittest.mock import patch

from django.db.utils import OperationalError


class TestHealthCheck:
    def test_health_check_returns_200(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert "timestamp" in data
        assert "services" in data

    def test_health_check_reports_database_and_cache(self, client):
        data = client.get("/health").json()
        for service in ("database", "cache"):
            assert data["services"][service]["status"] == "up"
            assert "response_time_ms" in data["services"][service]

    def test_health_check_is_public(self, api_client):
        assert api_client.get("/health").status_code == 200

    def test_cache_down_reports_unhealthy(self, client):
        with patch("modules.core.views._check_cache", side_effect=ConnectionError("redis gone")):
            response = client.get("/health")
        assert response.status_code == 503
        data = response.json()
        assert data["status"] == "unhealthy"
        assert data["services"]["cache"] == {"status": "down"}

    def test_database_down_reports_unhealthy(self, client):
        with patch("modules.core.views._check_database", side_effect=OperationalError("no db")):
            response = client.get("/health")
        assert response.status_code == 503
        assert response.json()["services"]["database"] == {"status": "down"}

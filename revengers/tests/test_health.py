"""
Tests for the health endpoints.
"""

from unittest.mock import AsyncMock


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["environment"] == "test"
        assert body["uptime"] >= 0
        assert body["timestamp"].endswith("Z")
        assert body["memory"]["maxRss"] > 0

    def test_liveness(self, client):
        body = client.get("/health/live").json()
        assert body["alive"] is True
        assert isinstance(body["pid"], int)

    def test_ready(self, client, gateway):
        response = client.get("/health/ready")
        assert response.status_code == 200
        assert response.json() == {"ready": True}
        gateway.ping.assert_awaited_once()

    def test_not_ready_when_database_down(self, client, gateway):
        gateway.ping = AsyncMock(return_value=False)
        response = client.get("/health/ready")
        assert response.status_code == 503
        assert response.json() == {"ready": False}

    def test_not_ready_without_gateway(self, client):
        client.app.state.gateway = None
        assert client.get("/health/ready").status_code == 503

"""Tests for the health endpoint.

The health endpoint is a liveness check that:
- Does not require authentication, even with the auth middleware installed
- Does not touch the database
"""

from fastapi.testclient import TestClient


class TestHealthEndpoint:
    """Tests for GET /health"""

    def test_health_envelope(self, client: TestClient):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.headers["content-type"] == "application/json"
        assert response.json() == {"data": {"status": "ok"}}

    def test_health_is_public(self, authenticated_client: TestClient):
        """No bearer token needed behind the auth middleware."""
        response = authenticated_client.get("/health")
        assert response.status_code == 200

    def test_other_routes_are_not_public(self, authenticated_client: TestClient):
        response = authenticated_client.get("/me")

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "E_UNAUTHENTICATED"

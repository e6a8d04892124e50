"""
tests/test_health.py -- Integration tests for GET /api/v1/health.

Covers:
  - 200 response in the success envelope with status, version, timestamp
  - No authentication required
  - Unknown routes answer in the error envelope
"""

from __future__ import annotations

from fastapi.testclient import TestClient


def test_health_returns_200_with_envelope(api_client: TestClient):
    """Health endpoint returns 200 with status, version and timestamp."""
    resp = api_client.get("/api/v1/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["data"]["status"] == "ok"
    assert body["data"]["version"]
    assert body["data"]["timestamp"].endswith("+00:00")


def test_health_no_auth_required(api_client: TestClient):
    """Health endpoint is accessible without any authentication headers."""
    resp = api_client.get("/api/v1/health", headers={})
    assert resp.status_code == 200


def test_unknown_route_uses_error_envelope(api_client: TestClient):
    resp = api_client.get("/api/v1/does-not-exist")
    assert resp.status_code == 404
    assert resp.json() == {"success": False, "error": {"code": "not_found", "message": "Not Found"}}


def test_wrong_method_uses_error_envelope(api_client: TestClient):
    resp = api_client.get("/api/v1/auth/login")
    assert resp.status_code == 405
    assert resp.json()["error"]["code"] == "method_not_allowed"

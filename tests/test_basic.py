"""
Basic tests for the consortium insurance API.
"""

import pytest
from fastapi.testclient import TestClient
from consortium_api.main import app

client = TestClient(app)


@pytest.fixture(autouse=True)
def _database(api_db):
    yield


def test_root_endpoint():
    """Test the root endpoint."""
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["message"] == "Consortium Insurance API"


def test_health_endpoint():
    """Test the health check endpoint."""
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_request_id_header_is_echoed():
    response = client.get("/health", headers={"X-Request-ID": "req-abc"})
    assert response.headers["X-Request-ID"] == "req-abc"
    assert "X-Response-Time-Ms" in response.headers


@pytest.mark.parametrize("method, path", [
    ("post", "/v1/requests"),
    ("get", "/v1/requests/open"),
    ("post", "/v1/requests/req_1/bids"),
    ("post", "/v1/requests/req_1/consortium/finalize"),
    ("post", "/v1/kyc/resubmit"),
    ("get", "/v1/providers/me/awards"),
])
def test_endpoints_require_authentication(method, path):
    """Missing bearer credentials are refused before any engine call."""
    response = getattr(client, method)(path)
    assert response.status_code in (401, 403)


def test_unknown_api_key_is_unauthorized():
    response = client.get("/v1/users/me", headers={"Authorization": "Bearer NOPE"})
    assert response.status_code == 401


def test_seeded_user_profile():
    response = client.get("/v1/users/me", headers={"Authorization": "Bearer NORTHWIND_TEST_KEY"})
    assert response.status_code == 200
    assert response.json()["role"] == "provider"
    assert response.json()["kyc_status"] == "verified"

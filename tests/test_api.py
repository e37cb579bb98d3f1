"""
Tests for x402 API
"""

import pytest
from fastapi.testclient import TestClient

from x402_solana.main import DEFAULT_ROUTES, create_app


@pytest.fixture
def client(runtime):
    return TestClient(create_app(runtime=runtime))


def test_health(client):
    """Test health endpoint."""
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["service"] == "x402-solana"


def test_root(client):
    """Test root endpoint."""
    response = client.get("/")
    assert response.status_code == 200
    data = response.json()
    assert data["name"] == "x402 Solana"
    assert "endpoints" in data


def test_premium_requires_payment(client):
    """Test protected endpoint without payment returns 402."""
    response = client.get("/api/premium")
    assert response.status_code == 402
    data = response.json()
    assert data["x402Version"] == 1
    assert data["accepts"][0]["maxAmountRequired"] == DEFAULT_ROUTES[0].amount


def test_premium_report_price(client):
    response = client.get("/api/premium/report")
    assert response.status_code == 402
    requirement = response.json()["accepts"][0]
    assert requirement["maxAmountRequired"] == "5000"
    assert requirement["maxTimeoutSeconds"] == 120


def test_lifespan_closes_ledger(runtime, ledger):
    with TestClient(create_app(runtime=runtime)) as client:
        assert client.get("/health").status_code == 200
    assert ledger.closed

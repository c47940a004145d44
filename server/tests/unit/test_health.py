"""Unit tests for health endpoints."""

import pytest
from httpx import ASGITransport, AsyncClient

from reservation_core import main


@pytest.mark.asyncio
async def test_health_check(test_client):
    """Test the health check endpoint."""
    response = await test_client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["service"] == "reservation-core"
    assert "version" in data


@pytest.mark.asyncio
async def test_ready_check(test_client, monkeypatch):
    """Test the readiness check endpoint."""
    async def healthy_db():
        return None

    monkeypatch.setattr(main, "check_db", healthy_db)

    response = await test_client.get("/ready")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ready"
    assert data["checks"]["database"] == "ok"
    assert set(data["checks"]["workers"]) == {"hold_expiry", "idempotency_cleanup"}


@pytest.mark.asyncio
async def test_ready_check_without_database(test_client, monkeypatch):
    """Test that readiness fails when the database does not answer."""
    async def broken_db():
        raise ConnectionRefusedError("connection refused")

    monkeypatch.setattr(main, "check_db", broken_db)

    response = await test_client.get("/ready")
    assert response.status_code == 503
    assert response.json()["status"] == "not_ready"


@pytest.mark.asyncio
async def test_info_endpoint(test_client):
    """Test the service info endpoint."""
    response = await test_client.get("/info")
    assert response.status_code == 200
    data = response.json()
    assert data["service"] == "reservation-core"
    assert "stub" in data["payment_providers"]
    assert data["hold_ttl_seconds"] > 0
    assert "features" in data


@pytest.mark.asyncio
async def test_health_ping_rpc(test_client):
    """Test the RPC-style health ping endpoint."""
    response = await test_client.post("/v1/health/ping", json={})
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert "timestamp" in data


@pytest.mark.asyncio
async def test_metrics_endpoint(test_client):
    """Test the Prometheus metrics endpoint."""
    response = await test_client.get("/metrics")
    assert response.status_code == 200
    assert "text/plain" in response.headers["content-type"]


@pytest.mark.asyncio
async def test_unhandled_error_returns_problem_details(test_app):
    """Test that an unexpected exception becomes a 500 problem document."""
    async def broken():
        raise RuntimeError("database exploded")

    test_app.add_api_route("/broken", broken)
    transport = ASGITransport(app=test_app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/broken")

    assert response.status_code == 500
    assert response.headers["content-type"] == "application/problem+json"
    data = response.json()
    assert data["title"] == "Internal Server Error"
    assert data["instance"] == "http://test/broken"
    assert data["error_id"]
    assert "database exploded" not in response.text

"""
Tests for health check endpoints.
"""

from unittest.mock import AsyncMock, MagicMock, patch

from fastapi.testclient import TestClient

from app.main import app

client = TestClient(app)


def test_healthz_endpoint():
    """Test the basic health check endpoint."""
    response = client.get("/healthz")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"


def test_readyz_endpoint_all_services_healthy():
    """Test readiness endpoint when all services are healthy."""
    with (
        patch("app.routes.health.fast_redis.health_check", new_callable=AsyncMock, return_value={"healthy": True}),
        patch("app.routes.health.db_health_check", new_callable=AsyncMock, return_value={"healthy": True}),
    ):
        response = client.get("/readyz")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ready"
    assert data["checks"]["redis"]["ok"] is True
    assert data["checks"]["database"]["ok"] is True


def test_readyz_endpoint_redis_unhealthy():
    """Redis only backs job leases, so the service stays ready without it."""
    with (
        patch("app.routes.health.fast_redis.health_check", new_callable=AsyncMock, return_value={"healthy": False}),
        patch("app.routes.health.db_health_check", new_callable=AsyncMock, return_value={"healthy": True}),
    ):
        response = client.get("/readyz")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ready"
    assert data["checks"]["redis"]["ok"] is False


def test_readyz_endpoint_database_unhealthy():
    """Test readiness endpoint when the database pool is down."""
    with (
        patch("app.routes.health.fast_redis.health_check", new_callable=AsyncMock, return_value={"healthy": True}),
        patch(
            "app.routes.health.db_health_check",
            new_callable=AsyncMock,
            return_value={"healthy": False, "error": "Connection failed"},
        ),
    ):
        response = client.get("/readyz")

    assert response.status_code == 503
    data = response.json()
    assert data["status"] == "not_ready"
    assert data["checks"]["database"]["error"] == "Connection failed"


def test_readyz_endpoint_database_check_raises():
    with (
        patch("app.routes.health.fast_redis.health_check", new_callable=AsyncMock, return_value={"healthy": True}),
        patch("app.routes.health.db_health_check", new_callable=AsyncMock, side_effect=RuntimeError("pool closed")),
    ):
        response = client.get("/readyz")

    assert response.status_code == 503
    assert "pool closed" in response.json()["checks"]["database"]["error"]


def test_readyz_includes_latency_metrics():
    """Test that readiness checks include latency metrics."""
    with (
        patch("app.routes.health.fast_redis.health_check", new_callable=AsyncMock, return_value={"healthy": True}),
        patch("app.routes.health.db_health_check", new_callable=AsyncMock, return_value={"healthy": True}),
    ):
        response = client.get("/readyz")

    checks = response.json()["checks"]
    assert isinstance(checks["redis"]["latency_ms"], (int, float))
    assert isinstance(checks["database"]["latency_ms"], (int, float))


def test_scheduler_status_requires_services():
    app.state.container = None

    response = client.get("/scheduler/status")

    assert response.status_code == 503


def test_scheduler_status():
    container = MagicMock()
    container.sync_scheduler.get_status.return_value = {"running": False, "mail_sync": {"name": "mail_sync"}}
    app.state.container = container
    try:
        response = client.get("/scheduler/status")
    finally:
        app.state.container = None

    assert response.status_code == 200
    assert response.json()["mail_sync"]["name"] == "mail_sync"

"""Tests for health check endpoints."""

from unittest.mock import AsyncMock

from httpx import ASGITransport, AsyncClient

from cardkeeper.db.database import get_session
from cardkeeper.main import app
from cardkeeper.models.card import CardType
from cardkeeper.services.registry import get_services


class TestHealthEndpoint:
    async def test_health_returns_healthy(self, client: AsyncClient) -> None:
        """Liveness probe returns healthy."""
        response = await client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"

    async def test_health_no_db_check(self, client: AsyncClient) -> None:
        """Health endpoint does not include database status."""
        response = await client.get("/health")

        data = response.json()
        assert data.get("database") is None


class TestReadyEndpoint:
    async def test_ready_returns_ready(self, client: AsyncClient) -> None:
        """Readiness probe returns ready when DB is connected."""
        response = await client.get("/ready")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ready"
        assert data["database"] == "connected"
        assert data["inventory_cached"] is False
        assert data["usage_cached"] is False

    async def test_ready_reports_warm_caches(
        self, client: AsyncClient, seed_inventory
    ) -> None:
        """Cache flags turn on once an availability read has filled them."""
        await seed_inventory({CardType.WALMART: ["A"]})
        await client.get("/inventory/counts")

        response = await client.get("/ready")

        data = response.json()
        assert data["inventory_cached"] is True
        assert data["usage_cached"] is True

    async def test_ready_returns_503_on_db_failure(self, services) -> None:
        """Readiness probe returns 503 when DB is unavailable."""

        async def override_get_session_broken():
            mock_session = AsyncMock()
            mock_session.execute.side_effect = Exception("Database connection failed")
            yield mock_session

        app.dependency_overrides[get_session] = override_get_session_broken
        app.dependency_overrides[get_services] = lambda: services

        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/ready")

        app.dependency_overrides.clear()

        assert response.status_code == 503
        data = response.json()
        assert data["status"] == "not ready"
        assert data["database"] == "disconnected"

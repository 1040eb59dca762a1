"""
Tests for health, metrics and root endpoints.
"""

import pytest
from httpx import AsyncClient

from ticketing.core.config import get_settings


@pytest.mark.asyncio
async def test_health_without_redis(client: AsyncClient, monkeypatch):
    monkeypatch.setattr(get_settings(), "REDIS_ENABLED", False)

    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["redis"] == {"status": "disabled"}


@pytest.mark.asyncio
async def test_metrics_exposed(client: AsyncClient, pending_payment, callback_body):
    await client.post("/mpesa/callback", content=callback_body())

    response = await client.get("/metrics")

    assert response.status_code == 200
    assert "payment_reconciliation_total" in response.text
    assert 'tickets_issued_total{source="callback"}' in response.text


@pytest.mark.asyncio
async def test_root(client: AsyncClient):
    response = await client.get("/")
    assert response.status_code == 200
    assert response.json()["message"] == "Welcome to Event Ticketing API"

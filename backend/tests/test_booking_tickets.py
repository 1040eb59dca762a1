"""
Tests for listing a booking's tickets.
"""

import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_tickets_listed_after_payment(client: AsyncClient, pending_payment, callback_body):
    await client.post("/mpesa/callback", content=callback_body())

    response = await client.get(f"/api/v1/bookings/{pending_payment.booking_id}/tickets")

    assert response.status_code == 200
    tickets = response.json()
    assert [t["ticket_type_name"] for t in tickets] == ["Regular", "Regular", "VIP"]
    assert all(t["status"] == "valid" for t in tickets)
    assert all(t["qr_code"].startswith("TKT-") for t in tickets)


@pytest.mark.asyncio
async def test_unpaid_booking_has_no_tickets(client: AsyncClient, pending_payment):
    response = await client.get(f"/api/v1/bookings/{pending_payment.booking_id}/tickets")
    assert response.status_code == 200
    assert response.json() == []


@pytest.mark.asyncio
async def test_unknown_booking(client: AsyncClient, booking):
    response = await client.get("/api/v1/bookings/31337/tickets")
    assert response.status_code == 404

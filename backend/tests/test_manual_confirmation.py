"""
Tests for operator-driven payment confirmation.
"""

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select

from ticketing.core.config import get_settings
from ticketing.models import Booking, Payment, Ticket
from ticketing.services.reconciliation_service import ReconcileOutcome, reconcile_callback


@pytest.fixture
def manual_confirmation_enabled(monkeypatch):
    monkeypatch.setattr(get_settings(), "ENABLE_MANUAL_CONFIRMATION", True)


def confirm_url(booking_id: int) -> str:
    return f"/api/v1/admin/bookings/{booking_id}/confirm-payment"


@pytest.mark.asyncio
async def test_disabled_by_default(client: AsyncClient, pending_payment):
    response = await client.post(confirm_url(pending_payment.booking_id))
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_confirms_pending_payment(
    client: AsyncClient, session_factory, pending_payment, manual_confirmation_enabled
):
    response = await client.post(confirm_url(pending_payment.booking_id))

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["message"] == "Payment confirmed and tickets generated"
    assert data["payment_id"] == pending_payment.payment_id
    assert data["tickets_count"] == 3
    assert data["tickets_generated"] == 3

    async with session_factory() as db:
        booking = await db.get(Booking, pending_payment.booking_id)
        payment = await db.get(Payment, pending_payment.payment_id)
        await db.commit()
    assert booking.status == "confirmed"
    assert payment.status == "success"
    assert payment.tickets_generated is True


@pytest.mark.asyncio
async def test_repeat_confirmation_issues_nothing_new(
    client: AsyncClient, pending_payment, manual_confirmation_enabled
):
    await client.post(confirm_url(pending_payment.booking_id))
    response = await client.post(confirm_url(pending_payment.booking_id))

    assert response.status_code == 200
    data = response.json()
    assert data["message"] == "Payment confirmed (tickets already existed)"
    assert data["tickets_count"] == 3
    assert data["tickets_generated"] == 0


@pytest.mark.asyncio
async def test_booking_without_payment_gets_manual_payment(
    client: AsyncClient, session_factory, booking, manual_confirmation_enabled
):
    response = await client.post(confirm_url(booking.booking_id))
    assert response.status_code == 200

    async with session_factory() as db:
        payment = (
            await db.execute(select(Payment).where(Payment.booking_id == booking.booking_id))
        ).scalar_one()
        await db.commit()
    assert payment.method == "manual"
    assert payment.checkout_request_id == f"MANUAL-{booking.booking_id}"
    assert payment.status == "success"


@pytest.mark.asyncio
async def test_late_provider_callback_after_manual_confirmation(
    client: AsyncClient, session_factory, pending_payment, callback_body, bus, manual_confirmation_enabled
):
    await client.post(confirm_url(pending_payment.booking_id))

    result = await reconcile_callback(session_factory, callback_body(), bus)

    assert result.outcome == ReconcileOutcome.DUPLICATE
    async with session_factory() as db:
        count = (
            await db.execute(
                select(func.count(Ticket.id)).where(Ticket.booking_id == pending_payment.booking_id)
            )
        ).scalar_one()
        await db.commit()
    assert count == 3


@pytest.mark.asyncio
async def test_unknown_booking(client: AsyncClient, manual_confirmation_enabled, booking):
    response = await client.post(confirm_url(9999))
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_cancelled_booking_conflicts(
    client: AsyncClient, session_factory, pending_payment, manual_confirmation_enabled
):
    async with session_factory() as db:
        booking = await db.get(Booking, pending_payment.booking_id)
        booking.status = "cancelled"
        await db.commit()

    response = await client.post(confirm_url(pending_payment.booking_id))
    assert response.status_code == 409

"""
Tests for the payment, booking and ticket state machines.
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from ticketing.core.exceptions import InvalidTransition
from ticketing.models import Booking, Payment, Ticket
from ticketing.models.booking import new_booking_reference
from ticketing.models.payment import PaymentFailed, PaymentPending, PaymentSucceeded
from ticketing.models.ticket import TicketUsed, TicketValid

NOW = datetime(2026, 10, 18, 10, 15, tzinfo=timezone.utc)


def new_pending_payment() -> Payment:
    return Payment(
        booking_id=42,
        user_id=1,
        amount=Decimal("1500.00"),
        checkout_request_id="ws_CO_1",
        status="pending",
        tickets_generated=False,
    )


def test_payment_success_state():
    payment = new_pending_payment()
    assert payment.state == PaymentPending()

    payment.mark_succeeded(paid_at=NOW, receipt="QWE123", phone="254712345678")

    assert payment.state == PaymentSucceeded(
        paid_at=NOW, receipt="QWE123", phone="254712345678", tickets_generated=False
    )
    assert payment.result_code == 0


def test_payment_failure_state():
    payment = new_pending_payment()
    payment.mark_failed("Request cancelled by user", 1032)
    assert payment.state == PaymentFailed(reason="Request cancelled by user", result_code=1032)
    assert payment.paid_at is None


def test_payment_terminal_states_refuse_transitions():
    succeeded = new_pending_payment()
    succeeded.mark_succeeded(paid_at=NOW, receipt="QWE123", phone=None)
    with pytest.raises(InvalidTransition):
        succeeded.mark_failed("late failure", 1037)

    failed = new_pending_payment()
    failed.mark_failed("Insufficient balance", 1)
    with pytest.raises(InvalidTransition):
        failed.mark_succeeded(paid_at=NOW, receipt="QWE123", phone=None)
    with pytest.raises(InvalidTransition):
        failed.mark_tickets_generated()


def test_tickets_generated_only_after_success():
    payment = new_pending_payment()
    with pytest.raises(InvalidTransition):
        payment.mark_tickets_generated()

    payment.mark_succeeded(paid_at=NOW, receipt="QWE123", phone=None)
    payment.mark_tickets_generated()
    assert payment.state.tickets_generated is True


def test_failure_reason_truncated_to_column():
    payment = new_pending_payment()
    payment.mark_failed("x" * 400, 1)
    assert len(payment.failure_reason) == 255


def test_booking_confirm_is_idempotent():
    booking = Booking(status="pending")
    assert booking.confirm() is True
    assert booking.confirm() is False
    assert booking.status == "confirmed"


def test_cancelled_booking_cannot_be_confirmed():
    booking = Booking(status="cancelled")
    with pytest.raises(InvalidTransition):
        booking.confirm()


def test_ticket_redeemed_once():
    ticket = Ticket(status="valid", qr_code="TKT-1", manual_code="ABCD-EFGH-JKLM")
    assert ticket.state == TicketValid()

    ticket.redeem(NOW)

    assert ticket.state == TicketUsed(used_at=NOW)
    with pytest.raises(InvalidTransition):
        ticket.redeem(NOW)


def test_booking_reference_format():
    reference = new_booking_reference()
    prefix, millis, suffix = reference.split("-")
    assert prefix == "BK"
    assert millis.isdigit()
    assert len(suffix) == 6

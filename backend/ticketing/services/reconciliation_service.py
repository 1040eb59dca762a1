"""
Payment reconciliation: applies M-Pesa STK push results to payments,
bookings and tickets.

CONCURRENCY STRATEGY: Pessimistic Row Locks + Idempotency Gates
===============================================================

Problem:
  The provider delivers each callback at least once, possibly several times
  and possibly concurrently to different instances. Two deliveries of the
  same success must not both confirm the booking and issue tickets, and a
  late failure must not overwrite an earlier success.

Solution:
  Every callback is applied in one transaction that locks the rows it will
  change, always in the order booking -> payment:

  1. Resolve the correlation id (CheckoutRequestID) to its booking id
  2. SELECT ... FOR UPDATE the booking, then the payment
  3. Decide from the locked state:
       pending + success  -> payment success, booking confirmed, tickets issued
       success + success  -> duplicate; only re-check ticket issuance
       pending + failure  -> payment failed with the provider's description
       success + failure  -> ignored (success is never downgraded)
       failed  + anything -> ignored (failed is terminal)
  4. Commit, then publish domain events

  A second delivery blocks on the row lock until the first commits, then sees
  the applied state and falls into the duplicate branch. Ticket issuance is
  additionally gated on payments.tickets_generated and on existing ticket rows
  (see ticket_service).

  Any error rolls the whole transaction back. A redemption code collision
  retries the transaction from scratch, up to MAX_ISSUANCE_ATTEMPTS. Database
  failures are logged and left for the provider's redelivery or a manual
  confirmation; the provider was acknowledged before any of this started.

The manual confirmation path (confirm_booking_payment) goes through the same
apply_success routine and the same ticket issuance gate.
"""

import enum
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Awaitable, Callable, Optional, TypeVar

from fastapi import HTTPException, status
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ticketing.core.config import get_settings
from ticketing.core.exceptions import (
    IssuanceCollision,
    TicketingError,
    TransientPersistenceFailure,
    UnknownCorrelationId,
)
from ticketing.core.logging import bind_payment_context, get_logger
from ticketing.core.metrics import issuance_retries, record_reconciliation, record_tickets_issued
from ticketing.db.base import utcnow
from ticketing.db.session import apply_transaction_timeouts
from ticketing.models.booking import Booking, BookingStatus
from ticketing.models.payment import Payment, PaymentStatus
from ticketing.schemas.domain_events import BookingConfirmed, DomainEvent, PaymentFailed, TicketIssued
from ticketing.schemas.mpesa import (
    CallbackFailure,
    CallbackSuccess,
    PaymentNotification,
    StkCallbackEnvelope,
    to_notification,
)
from ticketing.services.event_bus import EventBus, get_event_bus
from ticketing.services.ticket_service import issue_tickets

logger = get_logger(__name__)
settings = get_settings()

T = TypeVar("T")


class ReconcileOutcome(str, enum.Enum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"
    UNKNOWN_CORRELATION_ID = "unknown_correlation_id"
    MALFORMED = "malformed"
    FAILED = "failed"


@dataclass
class ReconciliationResult:
    outcome: ReconcileOutcome
    booking_id: Optional[int] = None
    payment_id: Optional[int] = None
    tickets_count: int = 0
    tickets_issued: int = 0
    events: list[DomainEvent] = field(default_factory=list)


async def reconcile_callback(
    session_factory: async_sessionmaker[AsyncSession],
    raw_body: bytes,
    bus: Optional[EventBus] = None,
) -> ReconciliationResult:
    """
    Entry point for a raw provider callback body. Never raises: by the time
    this runs the provider has its acknowledgement, so every failure ends
    here as a log line and an outcome.
    """
    try:
        envelope = StkCallbackEnvelope.model_validate_json(raw_body)
    except ValidationError as e:
        logger.warning("callback_malformed", errors=e.error_count(), body_size=len(raw_body))
        record_reconciliation(ReconcileOutcome.MALFORMED.value, 0.0)
        return ReconciliationResult(outcome=ReconcileOutcome.MALFORMED)

    return await reconcile_notification(session_factory, to_notification(envelope), bus)


async def reconcile_notification(
    session_factory: async_sessionmaker[AsyncSession],
    notification: PaymentNotification,
    bus: Optional[EventBus] = None,
) -> ReconciliationResult:
    bind_payment_context(checkout_request_id=notification.checkout_request_id)
    start = time.perf_counter()

    try:
        result = await run_in_transaction(
            session_factory,
            lambda db: apply_callback(db, notification),
        )
    except UnknownCorrelationId:
        logger.warning("callback_unknown_correlation_id")
        result = ReconciliationResult(outcome=ReconcileOutcome.UNKNOWN_CORRELATION_ID)
    except TicketingError as e:
        logger.error(
            "payment_reconciliation_failed",
            error_type=type(e).__name__,
            error=str(e),
            exc_info=True,
        )
        result = ReconciliationResult(outcome=ReconcileOutcome.FAILED)
    except Exception as e:
        # The provider is already acknowledged; nothing may escape the task
        logger.error(
            "payment_reconciliation_crashed",
            error_type=type(e).__name__,
            error=str(e),
            exc_info=True,
        )
        result = ReconciliationResult(outcome=ReconcileOutcome.FAILED)
    else:
        record_tickets_issued(result.tickets_issued, source="callback")
        await (bus or get_event_bus()).publish_all(result.events)
        logger.info(
            "payment_reconciled",
            outcome=result.outcome.value,
            booking_id=result.booking_id,
            payment_id=result.payment_id,
            tickets_count=result.tickets_count,
            tickets_issued=result.tickets_issued,
        )

    record_reconciliation(result.outcome.value, time.perf_counter() - start)
    return result


async def run_in_transaction(
    session_factory: async_sessionmaker[AsyncSession],
    work: Callable[[AsyncSession], Awaitable[T]],
) -> T:
    """
    Run `work` in its own session and transaction, committing on return.

    The transaction is retried from a fresh session when ticket issuance hits
    a code collision. SQLAlchemy errors are raised as
    TransientPersistenceFailure; everything else propagates unchanged.
    """
    max_attempts = settings.MAX_ISSUANCE_ATTEMPTS
    for attempt in range(1, max_attempts + 1):
        try:
            async with session_factory() as db:
                async with db.begin():
                    await apply_transaction_timeouts(
                        db,
                        settings.RECONCILIATION_STATEMENT_TIMEOUT_MS,
                        settings.RECONCILIATION_LOCK_TIMEOUT_MS,
                    )
                    return await work(db)
        except IssuanceCollision:
            issuance_retries.inc()
            logger.warning("reconciliation_retry", attempt=attempt, reason="code_collision")
            if attempt == max_attempts:
                raise
        except SQLAlchemyError as e:
            raise TransientPersistenceFailure(str(e)) from e

    # Unreachable: the last attempt either returns or raises
    raise TransientPersistenceFailure("Reconciliation retries exhausted")


async def apply_callback(db: AsyncSession, notification: PaymentNotification) -> ReconciliationResult:
    """Apply one notification inside the caller's transaction."""
    booking_id = (
        await db.execute(
            select(Payment.booking_id).where(
                Payment.checkout_request_id == notification.checkout_request_id
            )
        )
    ).scalar_one_or_none()
    if booking_id is None:
        raise UnknownCorrelationId(notification.checkout_request_id)

    booking = await _lock_booking(db, booking_id)
    payment = (
        await db.execute(
            select(Payment)
            .where(Payment.checkout_request_id == notification.checkout_request_id)
            .with_for_update()
        )
    ).scalar_one()
    bind_payment_context(booking_id=booking.id, payment_id=payment.id)

    if isinstance(notification, CallbackSuccess):
        return await apply_success(
            db,
            booking,
            payment,
            receipt=notification.receipt,
            phone=notification.phone,
            amount=notification.amount,
        )
    return await _apply_failure(db, booking, payment, notification)


async def apply_success(
    db: AsyncSession,
    booking: Booking,
    payment: Payment,
    receipt: Optional[str],
    phone: Optional[str],
    amount: Optional[Decimal] = None,
) -> ReconciliationResult:
    """
    Settle a payment as successful and issue the booking's tickets.
    Both rows must already be locked by the caller's transaction.
    """
    result = ReconciliationResult(
        outcome=ReconcileOutcome.APPLIED,
        booking_id=booking.id,
        payment_id=payment.id,
    )

    if payment.status == PaymentStatus.FAILED.value:
        logger.warning("success_after_failure_ignored", failure_reason=payment.failure_reason)
        result.outcome = ReconcileOutcome.IGNORED
        return result

    if payment.status == PaymentStatus.SUCCESS.value:
        result.outcome = ReconcileOutcome.DUPLICATE
    else:
        if amount is not None and Decimal(amount) != Decimal(payment.amount):
            logger.warning(
                "payment_amount_mismatch",
                expected=str(payment.amount),
                received=str(amount),
            )
        payment.mark_succeeded(paid_at=utcnow(), receipt=receipt, phone=phone)

    if booking.status == BookingStatus.CANCELLED.value:
        # Money was taken for a booking cancelled in the meantime: record the
        # payment, issue nothing, leave the refund to an operator.
        await db.flush()
        logger.warning("payment_for_cancelled_booking", receipt=payment.mpesa_receipt)
        return result

    newly_confirmed = booking.confirm()
    await db.flush()

    issuance = await issue_tickets(db, booking.id, payment=payment)
    result.tickets_count = issuance.count
    result.tickets_issued = len(issuance.issued)

    if newly_confirmed:
        result.events.append(
            BookingConfirmed(
                booking_id=booking.id,
                booking_reference=booking.reference,
                user_id=booking.user_id,
                event_id=booking.event_id,
                payment_id=payment.id,
                ticket_count=issuance.count,
            )
        )
    result.events.extend(
        TicketIssued(
            ticket_id=ticket.id,
            booking_id=booking.id,
            ticket_type_id=ticket.ticket_type_id,
            user_id=booking.user_id,
        )
        for ticket in issuance.issued
    )
    return result


async def _apply_failure(
    db: AsyncSession,
    booking: Booking,
    payment: Payment,
    notification: CallbackFailure,
) -> ReconciliationResult:
    result = ReconciliationResult(
        outcome=ReconcileOutcome.APPLIED,
        booking_id=booking.id,
        payment_id=payment.id,
    )

    if not payment.is_pending:
        logger.info(
            "failure_notification_ignored",
            current_status=payment.status,
            result_code=notification.result_code,
        )
        result.outcome = (
            ReconcileOutcome.DUPLICATE
            if payment.status == PaymentStatus.FAILED.value
            else ReconcileOutcome.IGNORED
        )
        return result

    payment.mark_failed(notification.description, notification.result_code)
    await db.flush()

    logger.info(
        "payment_failed",
        result_code=notification.result_code,
        reason=notification.description,
    )
    result.events.append(
        PaymentFailed(
            payment_id=payment.id,
            booking_id=booking.id,
            user_id=payment.user_id,
            checkout_request_id=payment.checkout_request_id,
            result_code=notification.result_code,
            reason=notification.description,
        )
    )
    return result


async def _lock_booking(db: AsyncSession, booking_id: int) -> Optional[Booking]:
    result = await db.execute(
        select(Booking).where(Booking.id == booking_id).with_for_update()
    )
    return result.scalar_one_or_none()


def manual_checkout_request_id(booking_id: int) -> str:
    return f"MANUAL-{booking_id}"


async def confirm_booking_payment(
    session_factory: async_sessionmaker[AsyncSession],
    booking_id: int,
    bus: Optional[EventBus] = None,
) -> ReconciliationResult:
    """
    Confirm a booking's payment without a provider callback (local
    development, operator replay of a lost callback).

    Uses the booking's successful payment if it has one, otherwise its most
    recent pending payment, otherwise creates a MANUAL-<booking id> payment.
    The settlement then runs through apply_success, so repeated calls and
    later provider callbacks cannot issue a second set of tickets.
    """

    async def work(db: AsyncSession) -> ReconciliationResult:
        booking = await _lock_booking(db, booking_id)
        if booking is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Booking not found",
            )
        if booking.status == BookingStatus.CANCELLED.value:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Booking is cancelled",
            )

        payments = (
            await db.execute(
                select(Payment)
                .where(Payment.booking_id == booking_id)
                .order_by(Payment.id)
                .with_for_update()
            )
        ).scalars().all()
        payment = next(
            (p for p in payments if p.status == PaymentStatus.SUCCESS.value), None
        ) or next((p for p in reversed(payments) if p.is_pending), None)

        if payment is None:
            payment = Payment(
                booking_id=booking.id,
                user_id=booking.user_id,
                amount=booking.total_amount,
                method="manual",
                checkout_request_id=manual_checkout_request_id(booking.id),
                status=PaymentStatus.PENDING.value,
            )
            db.add(payment)
            await db.flush()

        bind_payment_context(
            checkout_request_id=payment.checkout_request_id,
            booking_id=booking.id,
            payment_id=payment.id,
        )
        return await apply_success(
            db,
            booking,
            payment,
            receipt=payment.mpesa_receipt or manual_checkout_request_id(booking.id),
            phone=payment.phone,
        )

    try:
        result = await run_in_transaction(session_factory, work)
    except TicketingError as e:
        logger.error("manual_confirmation_failed", booking_id=booking_id, error=str(e), exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Payment confirmation failed, try again",
        ) from e

    record_tickets_issued(result.tickets_issued, source="manual")
    await (bus or get_event_bus()).publish_all(result.events)
    logger.info(
        "payment_confirmed_manually",
        booking_id=booking_id,
        payment_id=result.payment_id,
        outcome=result.outcome.value,
        tickets_count=result.tickets_count,
        tickets_issued=result.tickets_issued,
    )
    return result

"""
Payment initiation and payment status.

The Payment row is committed twice: once under the booking lock, before the
provider is called, with a placeholder checkout id that claims the attempt,
and again with the provider's CheckoutRequestID once the push is accepted.
A push the provider rejects leaves the attempt failed, so it can be retried.
"""

import re
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from fastapi import HTTPException, status

from ticketing.core.exceptions import PaymentProviderError
from ticketing.core.logging import get_logger
from ticketing.core.metrics import record_stk_push
from ticketing.infrastructure.mpesa_client import MpesaClient
from ticketing.models.booking import Booking, BookingStatus
from ticketing.models.payment import Payment, PaymentStatus

logger = get_logger(__name__)

# 07XXXXXXXX / 01XXXXXXXX with 0, 254 or +254 prefix
_PHONE_PATTERN = re.compile(r"^(?:\+?254|0)([17]\d{8})$")

# Held by an attempt between claiming the booking and the provider's answer
PLACEHOLDER_CHECKOUT_PREFIX = "PENDING-"


def normalize_phone(raw: str) -> str:
    """Return the number as 254XXXXXXXXX or raise 400."""
    cleaned = re.sub(r"[\s\-()]", "", raw)
    match = _PHONE_PATTERN.match(cleaned)
    if not match:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Please enter a valid Safaricom phone number (07 or 01)",
        )
    return f"254{match.group(1)}"


async def initiate_payment(
    db: AsyncSession,
    mpesa: MpesaClient,
    booking_id: int,
    phone: str,
) -> Payment:
    """
    Send an STK push for a pending booking.

    The booking row is locked while the attempt is claimed: a pending Payment
    with a placeholder checkout id is committed before the provider is called,
    so a second initiation for the same booking finds it and gets 409 instead
    of sending a second prompt. The partial unique index on open payments per
    booking backs this up where row locks are not available.
    """
    msisdn = normalize_phone(phone)

    booking = (
        await db.execute(select(Booking).where(Booking.id == booking_id).with_for_update())
    ).scalar_one_or_none()
    if not booking:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Booking not found",
        )
    if booking.status != BookingStatus.PENDING.value:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Booking is {booking.status}",
        )

    open_payment = (
        await db.execute(
            select(Payment.id).where(
                Payment.booking_id == booking_id,
                Payment.status.in_([PaymentStatus.PENDING.value, PaymentStatus.SUCCESS.value]),
            )
        )
    ).first()
    if open_payment:
        raise _payment_in_progress()

    payment = Payment(
        booking_id=booking.id,
        user_id=booking.user_id,
        amount=booking.total_amount,
        method="mpesa",
        checkout_request_id=f"{PLACEHOLDER_CHECKOUT_PREFIX}{uuid4().hex}",
        initiated_phone=msisdn,
        status=PaymentStatus.PENDING.value,
    )
    db.add(payment)
    # No transaction stays open across the provider round trip
    try:
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        logger.warning("payment_initiation_conflict", booking_id=booking_id)
        raise _payment_in_progress() from e

    try:
        response = await mpesa.stk_push(
            amount=booking.total_amount,
            phone=msisdn,
            account_reference=booking.reference,
        )
    except PaymentProviderError as e:
        record_stk_push(accepted=False)
        payment.mark_failed("STK push request failed", None)
        await db.commit()
        logger.error(
            "payment_initiation_failed",
            booking_id=booking_id,
            payment_id=payment.id,
            error=str(e),
        )
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Payment initiation failed. Please try again.",
        ) from e
    record_stk_push(accepted=True)

    payment.checkout_request_id = response["CheckoutRequestID"]
    payment.merchant_request_id = response.get("MerchantRequestID")
    await db.commit()

    logger.info(
        "payment_initiated",
        booking_id=booking.id,
        payment_id=payment.id,
        checkout_request_id=payment.checkout_request_id,
    )
    return payment


def _payment_in_progress() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail="A payment for this booking is already in progress",
    )


async def get_payment_by_checkout_id(db: AsyncSession, checkout_request_id: str) -> Payment:
    result = await db.execute(
        select(Payment).where(Payment.checkout_request_id == checkout_request_id)
    )
    payment = result.scalar_one_or_none()
    if not payment:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Payment not found",
        )
    return payment

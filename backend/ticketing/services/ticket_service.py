"""
Ticket issuance: expands a confirmed booking's line items into tickets.

ISSUANCE CONTRACT
=================

issue_tickets(db, booking_id) runs inside the caller's transaction and is
called from both the provider callback and the manual confirmation path.

  1. Lock the booking row, then its successful payment (SELECT ... FOR UPDATE).
     The lock order booking -> payment is the same everywhere tickets can be
     issued, so the two paths serialize on the booking instead of deadlocking.
  2. Gate: if the payment is flagged tickets_generated, or any ticket already
     exists for the booking, nothing is inserted and the existing count is
     returned. A stale flag is brought back in line with the rows.
  3. Otherwise insert `quantity` tickets for every line item (in line item
     order), flushing after each line item, then set tickets_generated.

A redemption code collision surfaces as IssuanceCollision. Each line item is
flushed inside a savepoint, so the failed insert is undone on its own and the
caller's transaction is still usable when the exception reaches it. The caller
must let it abort the transaction; nothing here catches and continues.
"""

from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from fastapi import HTTPException, status

from ticketing.core.exceptions import BookingNotConfirmed, IssuanceCollision, PaymentNotSettled
from ticketing.core.logging import get_logger
from ticketing.models.booking import Booking, BookingLineItem, BookingStatus
from ticketing.models.event import TicketType
from ticketing.models.payment import Payment, PaymentStatus
from ticketing.models.ticket import Ticket, TicketStatus
from ticketing.services import ticket_codes

logger = get_logger(__name__)


@dataclass
class IssuanceResult:
    count: int
    issued: list[Ticket] = field(default_factory=list)


async def issue_tickets(
    db: AsyncSession,
    booking_id: int,
    payment: Optional[Payment] = None,
) -> IssuanceResult:
    """
    Issue tickets for a confirmed booking exactly once.

    `payment` is the successful payment the caller already holds locked; when
    omitted, the booking's earliest successful payment is locked and used.

    `count` is the booking's ticket total after the call; `issued` holds the
    tickets created by this call and is empty when they already existed.
    """
    booking = (
        await db.execute(select(Booking).where(Booking.id == booking_id).with_for_update())
    ).scalar_one_or_none()
    if booking is None or booking.status != BookingStatus.CONFIRMED.value:
        raise BookingNotConfirmed(booking_id, booking.status if booking else None)

    if payment is None:
        payment = await _lock_settled_payment(db, booking_id)
    if payment is None or payment.status != PaymentStatus.SUCCESS.value:
        raise PaymentNotSettled(booking_id)

    existing = await count_booking_tickets(db, booking_id)
    if payment.tickets_generated or existing:
        if not payment.tickets_generated:
            payment.mark_tickets_generated()
            await db.flush()
        logger.info(
            "ticket_issuance_skipped",
            booking_id=booking_id,
            payment_id=payment.id,
            existing_tickets=existing,
        )
        return IssuanceResult(count=existing)

    line_items = (
        await db.execute(
            select(BookingLineItem)
            .where(BookingLineItem.booking_id == booking_id)
            .order_by(BookingLineItem.id)
        )
    ).scalars().all()

    issued: list[Ticket] = []
    for line_item in line_items:
        batch = [
            Ticket(
                booking_id=booking_id,
                ticket_type_id=line_item.ticket_type_id,
                qr_code=ticket_codes.new_redemption_code(),
                manual_code=ticket_codes.new_manual_code(),
                status=TicketStatus.VALID.value,
            )
            for _ in range(line_item.quantity)
        ]
        try:
            # Savepoint: a failed insert must leave the outer transaction open
            # so IssuanceCollision reaches the caller's rollback intact
            async with db.begin_nested():
                db.add_all(batch)
                await db.flush()
        except IntegrityError as e:
            logger.error(
                "ticket_code_collision",
                booking_id=booking_id,
                ticket_type_id=line_item.ticket_type_id,
                error=str(e.orig),
            )
            raise IssuanceCollision(booking_id) from e
        issued.extend(batch)

    payment.mark_tickets_generated()
    await db.flush()

    logger.info(
        "tickets_issued",
        booking_id=booking_id,
        payment_id=payment.id,
        count=len(issued),
        line_items=len(line_items),
    )
    return IssuanceResult(count=len(issued), issued=issued)


async def _lock_settled_payment(db: AsyncSession, booking_id: int) -> Optional[Payment]:
    result = await db.execute(
        select(Payment)
        .where(
            Payment.booking_id == booking_id,
            Payment.status == PaymentStatus.SUCCESS.value,
        )
        .order_by(Payment.id)
        .limit(1)
        .with_for_update()
    )
    return result.scalar_one_or_none()


async def count_booking_tickets(db: AsyncSession, booking_id: int) -> int:
    result = await db.execute(
        select(func.count(Ticket.id)).where(Ticket.booking_id == booking_id)
    )
    return result.scalar_one()


async def get_booking_tickets(db: AsyncSession, booking_id: int) -> list[dict]:
    """Tickets of a booking with their type name, for delivery and QR rendering."""
    booking = (
        await db.execute(select(Booking.id).where(Booking.id == booking_id))
    ).scalar_one_or_none()
    if booking is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Booking not found",
        )

    result = await db.execute(
        select(Ticket, TicketType.name)
        .join(TicketType, TicketType.id == Ticket.ticket_type_id)
        .where(Ticket.booking_id == booking_id)
        .order_by(Ticket.id)
    )
    return [
        {
            "id": ticket.id,
            "booking_id": ticket.booking_id,
            "ticket_type_id": ticket.ticket_type_id,
            "ticket_type_name": type_name,
            "qr_code": ticket.qr_code,
            "manual_code": ticket.manual_code,
            "status": ticket.status,
            "used_at": ticket.used_at,
            "created_at": ticket.created_at,
        }
        for ticket, type_name in result.all()
    ]

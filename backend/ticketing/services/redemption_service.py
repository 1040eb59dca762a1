"""
Ticket redemption at the venue door.

A ticket moves valid -> used exactly once. The lookup, the check and the
update happen in one transaction holding the ticket's row lock, so two
scanners presenting the same code at the same moment get one ACCEPTED and
one ALREADY_USED.

Rejections are results, not exceptions: door staff always get a structured
answer they can show on screen.
"""

import enum
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ticketing.core.logging import get_logger
from ticketing.core.metrics import record_redemption
from ticketing.db.base import utcnow
from ticketing.models.booking import Booking, BookingStatus
from ticketing.models.event import Event, TicketType
from ticketing.models.ticket import Ticket, TicketStatus
from ticketing.models.user import User
from ticketing.services.ticket_codes import normalize_code

logger = get_logger(__name__)


class RedemptionStatus(str, enum.Enum):
    ACCEPTED = "accepted"
    ALREADY_USED = "already_used"
    NOT_FOUND = "not_found"
    BOOKING_NOT_CONFIRMED = "booking_not_confirmed"


MESSAGES = {
    RedemptionStatus.ACCEPTED: "Ticket validated. Entry granted.",
    RedemptionStatus.ALREADY_USED: "Ticket has already been used",
    RedemptionStatus.NOT_FOUND: "Ticket not found",
    RedemptionStatus.BOOKING_NOT_CONFIRMED: "Booking for this ticket is not confirmed",
}


@dataclass
class TicketContext:
    id: int
    booking_id: int
    booking_reference: str
    attendee_name: str
    ticket_type: str
    event_title: str
    venue: Optional[str]
    event_date: datetime
    manual_code: Optional[str]
    used_at: Optional[datetime] = None
    validated_at: Optional[datetime] = None


@dataclass
class RedemptionResult:
    status: RedemptionStatus
    ticket: Optional[TicketContext] = None

    @property
    def valid(self) -> bool:
        return self.status == RedemptionStatus.ACCEPTED

    @property
    def message(self) -> str:
        return MESSAGES[self.status]


async def redeem_ticket(db: AsyncSession, code: str) -> RedemptionResult:
    """
    Validate a presented QR payload or manual code and mark the ticket used.

    `db` must not be inside a transaction yet; the redemption commits its own.
    """
    start = time.perf_counter()
    normalized = normalize_code(code)

    async with db.begin():
        ticket = (
            await db.execute(
                select(Ticket)
                .where(or_(Ticket.qr_code == normalized, Ticket.manual_code == normalized))
                .with_for_update()
            )
        ).scalar_one_or_none()

        if ticket is None:
            result = RedemptionResult(status=RedemptionStatus.NOT_FOUND)
        else:
            result = await _transition(db, ticket)

    record_redemption(result.status.value, time.perf_counter() - start)
    log = logger.info if result.valid else logger.warning
    log(
        "ticket_redemption",
        result=result.status.value,
        ticket_id=result.ticket.id if result.ticket else None,
        booking_id=result.ticket.booking_id if result.ticket else None,
    )
    return result


async def _transition(db: AsyncSession, ticket: Ticket) -> RedemptionResult:
    context = await _load_context(db, ticket)
    booking_status = context.pop("booking_status")
    details = TicketContext(**context)

    if booking_status != BookingStatus.CONFIRMED.value:
        return RedemptionResult(status=RedemptionStatus.BOOKING_NOT_CONFIRMED, ticket=details)

    if ticket.status == TicketStatus.USED.value:
        details.used_at = ticket.used_at
        return RedemptionResult(status=RedemptionStatus.ALREADY_USED, ticket=details)

    ticket.redeem(utcnow())
    await db.flush()
    details.validated_at = ticket.used_at
    return RedemptionResult(status=RedemptionStatus.ACCEPTED, ticket=details)


async def _load_context(db: AsyncSession, ticket: Ticket) -> dict:
    row = (
        await db.execute(
            select(
                Booking.reference,
                Booking.status,
                User.full_name,
                TicketType.name,
                Event.title,
                Event.venue,
                Event.starts_at,
            )
            .select_from(Booking)
            .join(User, User.id == Booking.user_id)
            .join(Event, Event.id == Booking.event_id)
            .join(TicketType, TicketType.id == ticket.ticket_type_id)
            .where(Booking.id == ticket.booking_id)
        )
    ).one()
    reference, booking_status, full_name, type_name, title, venue, starts_at = row
    return {
        "id": ticket.id,
        "booking_id": ticket.booking_id,
        "booking_reference": reference,
        "booking_status": booking_status,
        "attendee_name": full_name,
        "ticket_type": type_name,
        "event_title": title,
        "venue": venue,
        "event_date": starts_at,
        "manual_code": ticket.manual_code,
    }

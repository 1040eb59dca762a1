"""
Booking read endpoints used by ticket delivery.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ticketing.db.session import get_db
from ticketing.schemas.ticket import TicketResponse
from ticketing.services.ticket_service import get_booking_tickets

router = APIRouter(prefix="/bookings", tags=["Bookings"])


@router.get("/{booking_id}/tickets", response_model=list[TicketResponse])
async def list_booking_tickets(
    booking_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Get all tickets issued for a booking, with their redemption codes."""
    return await get_booking_tickets(db, booking_id)

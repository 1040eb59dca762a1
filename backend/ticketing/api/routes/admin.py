"""
Operator endpoints. Not reachable from the provider-facing callback route,
and disabled unless ENABLE_MANUAL_CONFIRMATION is set.
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ticketing.core.config import get_settings
from ticketing.db.session import get_session_factory
from ticketing.schemas.payment import ManualConfirmationResponse
from ticketing.services.event_bus import EventBus, get_event_bus
from ticketing.services.reconciliation_service import confirm_booking_payment


def require_manual_confirmation() -> None:
    if not get_settings().ENABLE_MANUAL_CONFIRMATION:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not Found")


router = APIRouter(
    prefix="/admin",
    tags=["Admin"],
    dependencies=[Depends(require_manual_confirmation)],
)


@router.post("/bookings/{booking_id}/confirm-payment", response_model=ManualConfirmationResponse)
async def confirm_payment_manually(
    booking_id: int,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    bus: EventBus = Depends(get_event_bus),
):
    """
    Settle a booking's payment and issue its tickets without a provider
    callback. Safe to repeat: tickets are only ever issued once.
    """
    result = await confirm_booking_payment(session_factory, booking_id, bus)
    message = (
        "Payment confirmed and tickets generated"
        if result.tickets_issued
        else "Payment confirmed (tickets already existed)"
    )
    return ManualConfirmationResponse(
        message=message,
        booking_id=booking_id,
        payment_id=result.payment_id,
        tickets_count=result.tickets_count,
        tickets_generated=result.tickets_issued,
    )

"""
Door-scan endpoint.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ticketing.db.session import get_db
from ticketing.schemas.ticket import ScannedTicket, TicketValidationRequest, TicketValidationResponse
from ticketing.services.redemption_service import redeem_ticket

router = APIRouter(prefix="/tickets", tags=["Tickets"])


@router.post("/validate", response_model=TicketValidationResponse)
async def validate_ticket(
    payload: TicketValidationRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Validate a scanned QR payload or a typed manual code and admit the holder.

    Rejections (already used, unknown code, unconfirmed booking) are returned
    with status 200 and `valid: false` so the scanner can display them.
    """
    result = await redeem_ticket(db, payload.presented_code)
    return TicketValidationResponse(
        valid=result.valid,
        status=result.status.value,
        message=result.message,
        ticket=ScannedTicket(**vars(result.ticket)) if result.ticket else None,
    )

"""
Payment initiation (STK push) and payment status polling.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from ticketing.db.session import get_db
from ticketing.infrastructure.mpesa_client import MpesaClient, get_mpesa_client
from ticketing.schemas.payment import PaymentInitiate, PaymentResponse
from ticketing.services.payment_service import get_payment_by_checkout_id, initiate_payment

router = APIRouter(prefix="/payments", tags=["Payments"])


@router.post("/mpesa", response_model=PaymentResponse, status_code=status.HTTP_201_CREATED)
async def start_mpesa_payment(
    payment_data: PaymentInitiate,
    db: AsyncSession = Depends(get_db),
    mpesa: MpesaClient = Depends(get_mpesa_client),
):
    """
    Send an STK push prompt to the payer's phone for a pending booking.
    The returned payment stays pending until the provider calls back.
    """
    return await initiate_payment(db, mpesa, payment_data.booking_id, payment_data.phone)


@router.get("/{checkout_request_id}", response_model=PaymentResponse)
async def get_payment_status(
    checkout_request_id: str,
    db: AsyncSession = Depends(get_db),
):
    """Poll a payment's status; failed payments carry the provider's reason."""
    return await get_payment_by_checkout_id(db, checkout_request_id)

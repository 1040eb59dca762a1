"""
Pydantic schemas for payment initiation, status and manual confirmation.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class PaymentInitiate(BaseModel):
    booking_id: int
    phone: str = Field(..., min_length=9, max_length=20)


class PaymentResponse(BaseModel):
    id: int
    booking_id: int
    amount: Decimal
    method: str
    checkout_request_id: str
    status: str
    mpesa_receipt: Optional[str]
    phone: Optional[str]
    failure_reason: Optional[str]
    tickets_generated: bool
    paid_at: Optional[datetime]
    created_at: datetime

    model_config = {"from_attributes": True}


class ManualConfirmationResponse(BaseModel):
    success: bool = True
    message: str
    booking_id: int
    payment_id: int
    tickets_count: int
    tickets_generated: int

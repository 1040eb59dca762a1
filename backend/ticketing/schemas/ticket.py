"""
Pydantic schemas for tickets and door-scan validation.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, model_validator


class TicketResponse(BaseModel):
    id: int
    booking_id: int
    ticket_type_id: int
    ticket_type_name: str
    qr_code: str
    manual_code: Optional[str]
    status: str
    used_at: Optional[datetime]
    created_at: datetime


class TicketValidationRequest(BaseModel):
    """
    A code presented at the door. Scanners send `code`; the older client
    sends either `qr_code` or `manual_code`.
    """

    code: Optional[str] = Field(None, max_length=128)
    qr_code: Optional[str] = Field(None, max_length=128)
    manual_code: Optional[str] = Field(None, max_length=32)

    @model_validator(mode="after")
    def require_code(self):
        if not (self.presented_code or "").strip():
            raise ValueError("A non-empty code is required")
        return self

    @property
    def presented_code(self) -> Optional[str]:
        return self.code or self.qr_code or self.manual_code


class ScannedTicket(BaseModel):
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


class TicketValidationResponse(BaseModel):
    valid: bool
    status: str  # accepted, already_used, not_found, booking_not_confirmed
    message: str
    ticket: Optional[ScannedTicket] = None

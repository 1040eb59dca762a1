"""
Domain events emitted by payment reconciliation and ticket issuance.

Events are published only after the transaction that produced them has
committed. Subscribers (Redis fan-out, notifications) never see state that
was rolled back.
"""

from datetime import datetime, timezone
from typing import ClassVar, Optional

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DomainEvent(BaseModel):
    event_type: ClassVar[str] = "domain.event"

    occurred_at: datetime = Field(default_factory=_utcnow)

    def to_message(self) -> dict:
        return {"type": self.event_type, "payload": self.model_dump(mode="json")}


class BookingConfirmed(DomainEvent):
    event_type: ClassVar[str] = "booking.confirmed"

    booking_id: int
    booking_reference: str
    user_id: int
    event_id: int
    payment_id: int
    ticket_count: int


class TicketIssued(DomainEvent):
    event_type: ClassVar[str] = "ticket.issued"

    ticket_id: int
    booking_id: int
    ticket_type_id: int
    user_id: int


class PaymentFailed(DomainEvent):
    event_type: ClassVar[str] = "payment.failed"

    payment_id: int
    booking_id: int
    user_id: int
    checkout_request_id: str
    result_code: Optional[int] = None
    reason: Optional[str] = None

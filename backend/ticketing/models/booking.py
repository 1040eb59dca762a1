"""
Booking model representing a user's seat reservation for an event.

Key design decisions:
- Status moves pending -> confirmed only when a payment for the booking
  succeeds; confirmed never returns to pending
- Line items (ticket type x quantity) are fixed at creation and drive
  ticket issuance, one ticket per unit of quantity
- `reference` is the human-facing booking number shown at the door
"""

import enum
import secrets
import string
import time

from sqlalchemy import (
    Column,
    Integer,
    String,
    Numeric,
    ForeignKey,
    UniqueConstraint,
    CheckConstraint,
)
from sqlalchemy.orm import relationship

from ticketing.core.exceptions import InvalidTransition
from ticketing.db.base import Base, TimestampMixin


class BookingStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


_REFERENCE_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits


def new_booking_reference() -> str:
    suffix = "".join(secrets.choice(_REFERENCE_SUFFIX_ALPHABET) for _ in range(6))
    return f"BK-{int(time.time() * 1000)}-{suffix}"


class Booking(Base, TimestampMixin):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    reference = Column(String(40), nullable=False, unique=True, default=new_booking_reference)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    event_id = Column(Integer, ForeignKey("events.id"), nullable=False, index=True)
    seat_count = Column(Integer, nullable=False, default=1)
    total_amount = Column(Numeric(12, 2), nullable=False, default=0)
    status = Column(String(20), nullable=False, default=BookingStatus.PENDING.value)

    # Relationships
    user = relationship("User", back_populates="bookings")
    event = relationship("Event", back_populates="bookings")
    line_items = relationship(
        "BookingLineItem", back_populates="booking", order_by="BookingLineItem.id"
    )

    __table_args__ = (
        CheckConstraint("seat_count > 0", name="check_booking_seat_count_positive"),
        CheckConstraint("total_amount >= 0", name="check_booking_total_non_negative"),
        CheckConstraint(
            "status IN ('pending', 'confirmed', 'cancelled')", name="check_booking_status"
        ),
    )

    def confirm(self) -> bool:
        """Move to confirmed. Returns False when the booking already was."""
        if self.status == BookingStatus.CONFIRMED.value:
            return False
        if self.status != BookingStatus.PENDING.value:
            raise InvalidTransition("booking", self.status, BookingStatus.CONFIRMED.value)
        self.status = BookingStatus.CONFIRMED.value
        return True

    def __repr__(self) -> str:
        return f"<Booking(id={self.id}, user={self.user_id}, event={self.event_id}, status={self.status})>"


class BookingLineItem(Base):
    __tablename__ = "booking_line_items"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)
    ticket_type_id = Column(Integer, ForeignKey("ticket_types.id"), nullable=False)
    quantity = Column(Integer, nullable=False)

    booking = relationship("Booking", back_populates="line_items")
    ticket_type = relationship("TicketType")

    __table_args__ = (
        UniqueConstraint("booking_id", "ticket_type_id", name="uq_line_item_booking_ticket_type"),
        CheckConstraint("quantity > 0", name="check_line_item_quantity_positive"),
    )

    def __repr__(self) -> str:
        return f"<BookingLineItem(booking={self.booking_id}, ticket_type={self.ticket_type_id}, qty={self.quantity})>"

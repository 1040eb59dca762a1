"""
Event model and the ticket types sold for it.

Key design decisions:
- Index on `starts_at` for range queries (e.g., "events this week")
- Ticket types carry their own price and capacity; a booking references
  them through line items
"""

from sqlalchemy import (
    Column,
    Integer,
    String,
    Numeric,
    DateTime,
    ForeignKey,
    Index,
    CheckConstraint,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from ticketing.db.base import Base, TimestampMixin


class Event(Base, TimestampMixin):
    __tablename__ = "events"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    description = Column(String(1000), nullable=True)
    venue = Column(String(255), nullable=True)
    starts_at = Column(DateTime(timezone=True), nullable=False)

    # Relationships
    ticket_types = relationship("TicketType", back_populates="event")
    bookings = relationship("Booking", back_populates="event")

    __table_args__ = (
        Index("ix_events_starts_at", "starts_at"),
    )

    def __repr__(self) -> str:
        return f"<Event(id={self.id}, title={self.title})>"


class TicketType(Base, TimestampMixin):
    __tablename__ = "ticket_types"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(Integer, ForeignKey("events.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    price = Column(Numeric(12, 2), nullable=False)
    quantity = Column(Integer, nullable=False)

    event = relationship("Event", back_populates="ticket_types")

    __table_args__ = (
        UniqueConstraint("event_id", "name", name="uq_ticket_type_event_name"),
        CheckConstraint("price >= 0", name="check_ticket_type_price_non_negative"),
        CheckConstraint("quantity > 0", name="check_ticket_type_quantity_positive"),
    )

    def __repr__(self) -> str:
        return f"<TicketType(id={self.id}, event={self.event_id}, name={self.name})>"

"""
Ticket model: one redeemable seat.

Tickets are only ever inserted by issuance and only ever updated by the
valid -> used transition at the door. `used_at` is set exactly when the
ticket is used, enforced by a CHECK constraint.
"""

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Union

from sqlalchemy import (
    Column,
    Integer,
    String,
    DateTime,
    ForeignKey,
    CheckConstraint,
)
from sqlalchemy.orm import relationship

from ticketing.core.exceptions import InvalidTransition
from ticketing.db.base import Base, TimestampMixin


class TicketStatus(str, enum.Enum):
    VALID = "valid"
    USED = "used"


@dataclass(frozen=True)
class TicketValid:
    pass


@dataclass(frozen=True)
class TicketUsed:
    used_at: datetime


TicketState = Union[TicketValid, TicketUsed]


class Ticket(Base, TimestampMixin):
    __tablename__ = "tickets"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)
    ticket_type_id = Column(Integer, ForeignKey("ticket_types.id"), nullable=False)
    qr_code = Column(String(64), nullable=False, unique=True, index=True)
    manual_code = Column(String(14), nullable=True, unique=True, index=True)
    status = Column(String(20), nullable=False, default=TicketStatus.VALID.value)
    used_at = Column(DateTime(timezone=True), nullable=True)

    booking = relationship("Booking")
    ticket_type = relationship("TicketType")

    __table_args__ = (
        CheckConstraint("status IN ('valid', 'used')", name="check_ticket_status"),
        CheckConstraint(
            "(status = 'used' AND used_at IS NOT NULL) OR (status = 'valid' AND used_at IS NULL)",
            name="check_ticket_used_at_only_when_used",
        ),
    )

    @property
    def state(self) -> TicketState:
        if self.status == TicketStatus.USED.value:
            return TicketUsed(used_at=self.used_at)
        return TicketValid()

    def redeem(self, at: datetime) -> None:
        if self.status != TicketStatus.VALID.value:
            raise InvalidTransition("ticket", self.status, TicketStatus.USED.value)
        self.status = TicketStatus.USED.value
        self.used_at = at

    def __repr__(self) -> str:
        return f"<Ticket(id={self.id}, booking={self.booking_id}, status={self.status})>"

"""
Payment model: one M-Pesa push-payment attempt for one booking.

Key design decisions:
- `checkout_request_id` is the provider's correlation id; the callback is
  matched on it, so it is unique and stored before the push request returns
- At most one pending or successful payment per booking (partial unique
  index), so a booking cannot have two payment prompts in flight
- pending -> success and pending -> failed are the only transitions; both
  are terminal
- Columns that only mean something in one state (paid_at, mpesa_receipt,
  failure_reason, tickets_generated) are tied to that state by CHECK
  constraints, and `state` exposes them as a tagged value
"""

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union

from sqlalchemy import (
    Column,
    Integer,
    String,
    Numeric,
    Boolean,
    DateTime,
    ForeignKey,
    CheckConstraint,
    Index,
    text,
)
from sqlalchemy.orm import relationship

from ticketing.core.exceptions import InvalidTransition
from ticketing.db.base import Base, TimestampMixin


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass(frozen=True)
class PaymentPending:
    pass


@dataclass(frozen=True)
class PaymentSucceeded:
    paid_at: datetime
    receipt: Optional[str]
    phone: Optional[str]
    tickets_generated: bool


@dataclass(frozen=True)
class PaymentFailed:
    reason: Optional[str]
    result_code: Optional[int]


PaymentState = Union[PaymentPending, PaymentSucceeded, PaymentFailed]

OPEN_PAYMENT_CLAUSE = "status IN ('pending', 'success')"


class Payment(Base, TimestampMixin):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    method = Column(String(20), nullable=False, default="mpesa")
    checkout_request_id = Column(String(100), nullable=False, unique=True, index=True)
    merchant_request_id = Column(String(100), nullable=True)
    initiated_phone = Column(String(20), nullable=True)
    status = Column(String(20), nullable=False, default=PaymentStatus.PENDING.value)
    mpesa_receipt = Column(String(50), nullable=True)
    phone = Column(String(20), nullable=True)
    result_code = Column(Integer, nullable=True)
    failure_reason = Column(String(255), nullable=True)
    tickets_generated = Column(Boolean, nullable=False, default=False)
    paid_at = Column(DateTime(timezone=True), nullable=True)

    booking = relationship("Booking")

    __table_args__ = (
        CheckConstraint("amount >= 0", name="check_payment_amount_non_negative"),
        CheckConstraint(
            "status IN ('pending', 'success', 'failed')", name="check_payment_status"
        ),
        CheckConstraint(
            "(status = 'success' AND paid_at IS NOT NULL) OR (status <> 'success' AND paid_at IS NULL)",
            name="check_payment_paid_at_only_on_success",
        ),
        CheckConstraint(
            "status = 'failed' OR failure_reason IS NULL",
            name="check_payment_failure_reason_only_on_failed",
        ),
        CheckConstraint(
            "status = 'success' OR NOT tickets_generated",
            name="check_payment_tickets_only_on_success",
        ),
        Index(
            "uq_payments_open_per_booking",
            "booking_id",
            unique=True,
            postgresql_where=text(OPEN_PAYMENT_CLAUSE),
            sqlite_where=text(OPEN_PAYMENT_CLAUSE),
        ),
    )

    @property
    def state(self) -> PaymentState:
        if self.status == PaymentStatus.SUCCESS.value:
            return PaymentSucceeded(
                paid_at=self.paid_at,
                receipt=self.mpesa_receipt,
                phone=self.phone,
                tickets_generated=self.tickets_generated,
            )
        if self.status == PaymentStatus.FAILED.value:
            return PaymentFailed(reason=self.failure_reason, result_code=self.result_code)
        return PaymentPending()

    @property
    def is_pending(self) -> bool:
        return self.status == PaymentStatus.PENDING.value

    def mark_succeeded(
        self,
        paid_at: datetime,
        receipt: Optional[str],
        phone: Optional[str],
    ) -> None:
        if not self.is_pending:
            raise InvalidTransition("payment", self.status, PaymentStatus.SUCCESS.value)
        self.status = PaymentStatus.SUCCESS.value
        self.mpesa_receipt = receipt
        self.phone = phone
        self.result_code = 0
        self.paid_at = paid_at

    def mark_failed(self, reason: Optional[str], result_code: Optional[int]) -> None:
        if not self.is_pending:
            raise InvalidTransition("payment", self.status, PaymentStatus.FAILED.value)
        self.status = PaymentStatus.FAILED.value
        self.failure_reason = reason[:255] if reason else reason
        self.result_code = result_code

    def mark_tickets_generated(self) -> None:
        if self.status != PaymentStatus.SUCCESS.value:
            raise InvalidTransition("payment", self.status, "tickets_generated")
        self.tickets_generated = True

    def __repr__(self) -> str:
        return f"<Payment(id={self.id}, booking={self.booking_id}, status={self.status})>"

"""
Domain exceptions for payment reconciliation and ticket issuance.

Request handlers for the ordinary API raise HTTPException directly. The
exceptions below belong to code that also runs outside a request (the
background reconciler), where an HTTP status means nothing.
"""

from typing import Optional


class TicketingError(Exception):
    """Base class for ticketing domain errors."""


class UnknownCorrelationId(TicketingError):
    """A provider callback references a payment this system never created."""

    def __init__(self, checkout_request_id: str):
        super().__init__(f"No payment with checkout request id {checkout_request_id!r}")
        self.checkout_request_id = checkout_request_id


class TransientPersistenceFailure(TicketingError):
    """The database rejected or aborted a reconciliation transaction."""


class IssuanceCollision(TicketingError):
    """A freshly generated redemption code collided with an existing ticket."""

    def __init__(self, booking_id: int):
        super().__init__(f"Redemption code collision while issuing tickets for booking {booking_id}")
        self.booking_id = booking_id


class InvalidTransition(TicketingError):
    """An entity was asked to move between states its state machine forbids."""

    def __init__(self, entity: str, current: str, target: str):
        super().__init__(f"{entity} cannot move from {current!r} to {target!r}")
        self.entity = entity
        self.current = current
        self.target = target


class BookingNotConfirmed(TicketingError):
    def __init__(self, booking_id: int, status: Optional[str] = None):
        super().__init__(f"Booking {booking_id} is not confirmed (status={status})")
        self.booking_id = booking_id
        self.status = status


class PaymentNotSettled(TicketingError):
    def __init__(self, booking_id: int):
        super().__init__(f"Booking {booking_id} has no successful payment")
        self.booking_id = booking_id


class PaymentProviderError(TicketingError):
    """The payment provider refused or failed an outbound request."""

from ticketing.models.user import User
from ticketing.models.event import Event, TicketType
from ticketing.models.booking import Booking, BookingLineItem, BookingStatus
from ticketing.models.payment import Payment, PaymentStatus
from ticketing.models.ticket import Ticket, TicketStatus

__all__ = [
    "User",
    "Event", "TicketType",
    "Booking", "BookingLineItem", "BookingStatus",
    "Payment", "PaymentStatus",
    "Ticket", "TicketStatus",
]

from ticketing.schemas.mpesa import StkCallbackEnvelope, CallbackAck
from ticketing.schemas.payment import PaymentInitiate, PaymentResponse, ManualConfirmationResponse
from ticketing.schemas.ticket import TicketResponse, TicketValidationRequest, TicketValidationResponse

__all__ = [
    "StkCallbackEnvelope", "CallbackAck",
    "PaymentInitiate", "PaymentResponse", "ManualConfirmationResponse",
    "TicketResponse", "TicketValidationRequest", "TicketValidationResponse",
]

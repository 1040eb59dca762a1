"""
Pydantic schemas for the M-Pesa STK push callback.

Payload shape:
    {"Body": {"stkCallback": {
        "MerchantRequestID": "...",
        "CheckoutRequestID": "...",
        "ResultCode": 0,
        "ResultDesc": "...",
        "CallbackMetadata": {"Item": [{"Name": "Amount", "Value": 1500}, ...]}
    }}}

CallbackMetadata is only present on success.
"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Optional, Union

from pydantic import BaseModel, Field

from ticketing.core.logging import get_logger

logger = get_logger(__name__)


class CallbackMetadataItem(BaseModel):
    Name: str
    Value: Optional[Union[int, float, str]] = None


class CallbackMetadata(BaseModel):
    Item: list[CallbackMetadataItem] = Field(default_factory=list)

    def value(self, name: str):
        for item in self.Item:
            if item.Name == name:
                return item.Value
        return None


class StkCallback(BaseModel):
    merchant_request_id: Optional[str] = Field(None, alias="MerchantRequestID")
    checkout_request_id: str = Field(..., alias="CheckoutRequestID", min_length=1)
    result_code: int = Field(..., alias="ResultCode")
    result_desc: str = Field("", alias="ResultDesc")
    metadata: Optional[CallbackMetadata] = Field(None, alias="CallbackMetadata")

    model_config = {"populate_by_name": True}


class StkCallbackBody(BaseModel):
    stkCallback: StkCallback


class StkCallbackEnvelope(BaseModel):
    Body: StkCallbackBody


class CallbackAck(BaseModel):
    ResultCode: int = 0
    ResultDesc: str = "Accepted"


@dataclass(frozen=True)
class CallbackSuccess:
    checkout_request_id: str
    amount: Optional[Decimal]
    receipt: Optional[str]
    phone: Optional[str]


@dataclass(frozen=True)
class CallbackFailure:
    checkout_request_id: str
    result_code: int
    description: str


PaymentNotification = Union[CallbackSuccess, CallbackFailure]


def to_notification(envelope: StkCallbackEnvelope) -> PaymentNotification:
    callback = envelope.Body.stkCallback
    if callback.result_code != 0:
        return CallbackFailure(
            checkout_request_id=callback.checkout_request_id,
            result_code=callback.result_code,
            description=callback.result_desc,
        )

    metadata = callback.metadata or CallbackMetadata()
    amount = metadata.value("Amount")
    receipt = metadata.value("MpesaReceiptNumber")
    phone = metadata.value("PhoneNumber")
    return CallbackSuccess(
        checkout_request_id=callback.checkout_request_id,
        amount=_parse_amount(amount),
        receipt=str(receipt) if receipt is not None else None,
        phone=str(phone) if phone is not None else None,
    )


def _parse_amount(value) -> Optional[Decimal]:
    """
    The amount is only cross-checked against the stored payment, so a value
    that is not a number degrades to None instead of rejecting the callback.
    """
    if value is None:
        return None
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        amount = None
    if amount is None or not amount.is_finite():
        logger.warning("callback_amount_unreadable", raw_amount=str(value)[:50])
        return None
    return amount

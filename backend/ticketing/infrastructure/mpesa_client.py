"""
M-Pesa Daraja API client: OAuth access token and STK push.

The transport is injectable so tests can drive the client with
httpx.MockTransport instead of the provider's sandbox.
"""

import base64
from datetime import datetime
from decimal import Decimal, ROUND_CEILING
from typing import Optional

import httpx

from ticketing.core.config import Settings, get_settings
from ticketing.core.exceptions import PaymentProviderError
from ticketing.core.logging import get_logger

logger = get_logger(__name__)

TOKEN_PATH = "/oauth/v1/generate"
STK_PUSH_PATH = "/mpesa/stkpush/v1/processrequest"


def stk_password(shortcode: str, passkey: str, timestamp: str) -> str:
    return base64.b64encode(f"{shortcode}{passkey}{timestamp}".encode()).decode()


def stk_timestamp(now: Optional[datetime] = None) -> str:
    return (now or datetime.now()).strftime("%Y%m%d%H%M%S")


class MpesaClient:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings or get_settings()
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.settings.mpesa_base_url,
            timeout=self.settings.MPESA_TIMEOUT_SECONDS,
            transport=self.transport,
        )

    async def get_access_token(self, client: httpx.AsyncClient) -> str:
        try:
            response = await client.get(
                TOKEN_PATH,
                params={"grant_type": "client_credentials"},
                auth=(self.settings.MPESA_CONSUMER_KEY, self.settings.MPESA_CONSUMER_SECRET),
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("mpesa_token_failed", error=str(e))
            raise PaymentProviderError("Failed to get M-Pesa access token") from e

        token = response.json().get("access_token")
        if not token:
            logger.error("mpesa_token_missing", body=response.text[:200])
            raise PaymentProviderError("No access token returned from M-Pesa")
        return token

    async def stk_push(self, amount: Decimal, phone: str, account_reference: str) -> dict:
        """
        Ask the provider to push a payment prompt to `phone`.

        Returns the provider response, which carries the CheckoutRequestID
        the callback will later be matched on.
        """
        timestamp = stk_timestamp()
        shortcode = self.settings.MPESA_SHORTCODE
        body = {
            "BusinessShortCode": shortcode,
            "Password": stk_password(shortcode, self.settings.MPESA_PASSKEY, timestamp),
            "Timestamp": timestamp,
            "TransactionType": "CustomerPayBillOnline",
            # The provider only takes whole shillings
            "Amount": int(Decimal(amount).to_integral_value(rounding=ROUND_CEILING)),
            "PartyA": phone,
            "PartyB": shortcode,
            "PhoneNumber": phone,
            "CallBackURL": self.settings.MPESA_CALLBACK_URL,
            "AccountReference": account_reference,
            "TransactionDesc": "Event booking payment",
        }

        async with self._client() as client:
            token = await self.get_access_token(client)
            logger.info(
                "stk_push_request",
                account_reference=account_reference,
                amount=body["Amount"],
            )
            try:
                response = await client.post(
                    STK_PUSH_PATH,
                    json=body,
                    headers={"Authorization": f"Bearer {token}"},
                )
                response.raise_for_status()
            except httpx.HTTPError as e:
                logger.error("stk_push_failed", error=str(e))
                raise PaymentProviderError("M-Pesa STK Push failed") from e

        data = response.json()
        if not data.get("CheckoutRequestID"):
            logger.error("stk_push_rejected", response=data)
            raise PaymentProviderError(f"STK Push failed: {data}")

        logger.info(
            "stk_push_accepted",
            checkout_request_id=data["CheckoutRequestID"],
            merchant_request_id=data.get("MerchantRequestID"),
        )
        return data


def get_mpesa_client() -> MpesaClient:
    return MpesaClient()

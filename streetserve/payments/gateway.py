"""Razorpay gateway client.

Only two gateway operations are used: creating an order (the intent to pay)
and checking the signature the checkout widget hands back to the buyer.
"""
import hashlib
import hmac
import logging
from abc import ABC, abstractmethod
from typing import Optional

import httpx
from pydantic import BaseModel

from streetserve.shared.utils import settings

logger = logging.getLogger(__name__)


class GatewayOrder(BaseModel):
    id: str
    amount: int  # minor units (paise)
    currency: str
    receipt: Optional[str] = None
    status: str = "created"


class GatewayError(Exception):
    pass


def compute_signature(order_id: str, payment_id: str, secret: str) -> str:
    message = f"{order_id}|{payment_id}".encode()
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def verify_signature(order_id: str, payment_id: str, signature: Optional[str], secret: str) -> bool:
    if not order_id or not payment_id or not signature:
        return False
    expected = compute_signature(order_id, payment_id, secret)
    return hmac.compare_digest(expected.encode(), signature.encode())


class PaymentGateway(ABC):
    key_id: str = ""

    @abstractmethod
    async def create_order(self, amount_minor: int, currency: str, receipt: str) -> GatewayOrder:
        ...

    def verify_signature(self, order_id: str, payment_id: str, signature: Optional[str], secret: str) -> bool:
        return verify_signature(order_id, payment_id, signature, secret)


class RazorpayGateway(PaymentGateway):
    def __init__(
        self,
        key_id: str,
        key_secret: str,
        api_url: str = settings.RAZORPAY_API_URL,
        timeout: float = settings.GATEWAY_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.key_id = key_id
        self.key_secret = key_secret
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    async def create_order(self, amount_minor, currency, receipt):
        payload = {
            "amount": amount_minor,
            "currency": currency,
            "receipt": receipt,
            "payment_capture": 1,
        }
        async with httpx.AsyncClient(
            auth=(self.key_id, self.key_secret), timeout=self.timeout, transport=self.transport
        ) as client:
            try:
                response = await client.post(f"{self.api_url}/orders", json=payload)
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                logger.error(f"Gateway rejected order creation: {e.response.status_code} {e.response.text}")
                raise GatewayError(f"gateway returned {e.response.status_code}") from e
            except httpx.RequestError as e:
                logger.error(f"Gateway unreachable: {e!r}")
                raise GatewayError("gateway unreachable") from e

        data = response.json()
        return GatewayOrder(
            id=data["id"],
            amount=data["amount"],
            currency=data["currency"],
            receipt=data.get("receipt"),
            status=data.get("status", "created"),
        )


def get_gateway() -> PaymentGateway:
    return RazorpayGateway(settings.RAZORPAY_KEY_ID, settings.RAZORPAY_KEY_SECRET)

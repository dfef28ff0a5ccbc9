import base64
import json

import httpx
import pytest

from streetserve.payments.gateway import GatewayError, RazorpayGateway


def gateway_with(handler):
    return RazorpayGateway(
        "rzp_key", "rzp_secret", api_url="https://gateway.test/v1/", transport=httpx.MockTransport(handler)
    )


async def test_create_order():
    seen = {}

    def handler(request: httpx.Request):
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={
            "id": "order_123", "amount": 5997, "currency": "INR",
            "receipt": seen["body"]["receipt"], "status": "created",
        })

    order = await gateway_with(handler).create_order(5997, "INR", "receipt_1")

    assert order.id == "order_123"
    assert order.amount == 5997
    assert order.receipt == "receipt_1"
    assert seen["url"] == "https://gateway.test/v1/orders"
    assert seen["auth"] == "Basic " + base64.b64encode(b"rzp_key:rzp_secret").decode()
    assert seen["body"] == {"amount": 5997, "currency": "INR", "receipt": "receipt_1", "payment_capture": 1}


async def test_gateway_rejection():
    def handler(request):
        return httpx.Response(400, json={"error": {"description": "amount too small"}})

    with pytest.raises(GatewayError, match="400"):
        await gateway_with(handler).create_order(1, "INR", "receipt_1")


async def test_gateway_unreachable():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(GatewayError, match="unreachable"):
        await gateway_with(handler).create_order(100, "INR", "receipt_1")


def test_signature_check_uses_secret():
    gateway = gateway_with(lambda request: httpx.Response(500))
    assert not gateway.verify_signature("order_1", "pay_1", "bad", "secret")

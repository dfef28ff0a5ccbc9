from decimal import Decimal

import pytest

from conftest import BUYER_ID, VENDOR_Y, FakeGateway, add_product, shipping_info
from streetserve.orders.checkout import CheckoutService, build_cart
from streetserve.orders.models import BuyerContact, PaymentMethod
from streetserve.shared.utils import (
    EmptyCartError, InsufficientStockError, PaymentCreationError, ProductNotFoundError
)


async def run_checkout(service, cart, method=PaymentMethod.COD):
    return await service.checkout(cart, BUYER_ID, BuyerContact(name="Asha"), shipping_info(), method)


async def test_build_cart_uses_stored_prices(store):
    a = add_product(store, price=25)

    cart = await build_cart(store, [(a["id"], 1), (a["id"], 2)])

    assert cart.items[0].price == Decimal(25)
    assert cart.items[0].quantity == 3


async def test_build_cart_rejects_unknown_or_inactive(store):
    hidden = add_product(store, is_active=False)
    with pytest.raises(ProductNotFoundError):
        await build_cart(store, [("missing", 1)])
    with pytest.raises(ProductNotFoundError):
        await build_cart(store, [(hidden["id"], 1)])


async def test_empty_cart(store):
    cart = await build_cart(store, [])
    with pytest.raises(EmptyCartError):
        await run_checkout(CheckoutService(store), cart)


async def test_cod_checkout(store, gateway):
    a = add_product(store, price=40, quantity=5)
    b = add_product(store, price=80, quantity=2, vendor_id=VENDOR_Y)
    cart = await build_cart(store, [(a["id"], 2), (b["id"], 1)])

    result = await run_checkout(CheckoutService(store, gateway), cart)

    assert len(result.orders) == 2
    assert result.total_amount == Decimal(160)
    assert result.payment is None
    assert gateway.calls == []
    assert cart.is_empty()
    assert store.products[a["id"]]["quantity"] == 3
    assert store.products[b["id"]]["quantity"] == 1


async def test_online_checkout_creates_gateway_order(store, gateway):
    a = add_product(store, price="19.99", quantity=5)
    cart = await build_cart(store, [(a["id"], 3)])

    result = await run_checkout(CheckoutService(store, gateway, currency="INR"), cart, PaymentMethod.CARD)

    assert gateway.calls[0]["amount"] == 5997
    assert gateway.calls[0]["currency"] == "INR"
    assert gateway.calls[0]["receipt"].startswith("receipt_")
    assert result.payment.id == "order_fake_1"
    assert result.orders[0]["payment_info"]["gateway_order_id"] == "order_fake_1"
    assert result.orders[0]["payment_info"]["status"] == "pending"


async def test_gateway_failure_writes_nothing(store):
    a = add_product(store, quantity=5)
    cart = await build_cart(store, [(a["id"], 1)])

    with pytest.raises(PaymentCreationError):
        await run_checkout(CheckoutService(store, FakeGateway(fail=True)), cart, PaymentMethod.UPI)

    assert store.orders == {}
    assert store.products[a["id"]]["quantity"] == 5
    assert not cart.is_empty()


async def test_online_checkout_without_gateway(store):
    a = add_product(store, quantity=5)
    cart = await build_cart(store, [(a["id"], 1)])

    with pytest.raises(PaymentCreationError):
        await run_checkout(CheckoutService(store, None), cart, PaymentMethod.CARD)


async def test_insufficient_stock_keeps_cart(store, gateway):
    a = add_product(store, quantity=1)
    cart = await build_cart(store, [(a["id"], 2)])

    with pytest.raises(InsufficientStockError):
        await run_checkout(CheckoutService(store, gateway), cart, PaymentMethod.UPI)

    assert len(cart) == 1
    assert store.orders == {}
    assert store.products[a["id"]]["quantity"] == 1

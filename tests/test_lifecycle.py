import pytest

from conftest import BUYER_ID, VENDOR_X, add_order, add_product
from streetserve.orders.inventory import InventoryLedger
from streetserve.orders.lifecycle import OrderLifecycle
from streetserve.orders.models import OrderStatus, PaymentMethod
from streetserve.orders.state_machine import Actor
from streetserve.shared.utils import (
    ConcurrentUpdateError, ForbiddenException, InvalidStateTransitionError, NotFoundException
)


def lifecycle_for(store):
    return OrderLifecycle(store, InventoryLedger(store))


async def test_vendor_advances_one_step(store):
    order = add_order(store, add_product(store))

    result = await lifecycle_for(store).transition(order["id"], VENDOR_X, Actor.VENDOR, OrderStatus.CONFIRMED)

    assert result.order["status"] == "confirmed"
    assert result.order["version"] == 1
    assert result.restoration is None


async def test_skip_is_rejected_and_nothing_written(store):
    order = add_order(store, add_product(store))

    with pytest.raises(InvalidStateTransitionError):
        await lifecycle_for(store).transition(order["id"], VENDOR_X, Actor.VENDOR, OrderStatus.SHIPPED)

    assert store.orders[order["id"]]["status"] == "pending"
    assert store.orders[order["id"]]["version"] == 0


async def test_ownership(store):
    order = add_order(store, add_product(store))
    lifecycle = lifecycle_for(store)

    with pytest.raises(ForbiddenException):
        await lifecycle.transition(order["id"], "vendor_y", Actor.VENDOR, OrderStatus.CONFIRMED)
    with pytest.raises(ForbiddenException):
        await lifecycle.transition(order["id"], "someone_else", Actor.BUYER, OrderStatus.CANCELLED)
    with pytest.raises(NotFoundException):
        await lifecycle.transition("missing", BUYER_ID, Actor.BUYER, OrderStatus.CANCELLED)


async def test_stale_version_is_rejected(store):
    order = add_order(store, add_product(store))
    lifecycle = lifecycle_for(store)
    await lifecycle.transition(order["id"], VENDOR_X, Actor.VENDOR, OrderStatus.CONFIRMED)

    with pytest.raises(ConcurrentUpdateError):
        await lifecycle.transition(
            order["id"], VENDOR_X, Actor.VENDOR, OrderStatus.PROCESSING, expected_version=0
        )
    assert store.orders[order["id"]]["status"] == "confirmed"


async def test_cod_delivery_marks_paid(store):
    order = add_order(store, add_product(store), status="shipped")

    result = await lifecycle_for(store).transition(order["id"], VENDOR_X, Actor.VENDOR, OrderStatus.DELIVERED)

    assert result.order["payment_info"]["status"] == "paid"
    assert result.order["payment_info"]["paid_at"] is not None


async def test_online_delivery_leaves_payment_alone(store):
    order = add_order(store, add_product(store), status="shipped", method=PaymentMethod.UPI)

    result = await lifecycle_for(store).transition(order["id"], VENDOR_X, Actor.VENDOR, OrderStatus.DELIVERED)

    assert result.order["payment_info"]["status"] == "pending"


async def test_cancel_restores_stock(store):
    product = add_product(store, quantity=7)
    order = add_order(store, product, quantity=3, status="confirmed")

    result = await lifecycle_for(store).transition(order["id"], BUYER_ID, Actor.BUYER, OrderStatus.CANCELLED)

    assert result.order["status"] == "cancelled"
    assert result.order["cancelled_by"] == "buyer"
    assert result.order["inventory_restored"] is True
    assert result.restoration.complete
    assert store.products[product["id"]]["quantity"] == 10


async def test_cancel_after_shipping_rejected(store):
    product = add_product(store, quantity=7)
    order = add_order(store, product, quantity=3, status="shipped")

    with pytest.raises(InvalidStateTransitionError):
        await lifecycle_for(store).transition(order["id"], BUYER_ID, Actor.BUYER, OrderStatus.CANCELLED)
    assert store.products[product["id"]]["quantity"] == 7


async def test_cancel_many_survives_partial_restore_failure(flaky_store):
    p = add_product(flaky_store, quantity=7)
    q = add_product(flaky_store, title="Misal", quantity=2)
    flaky_store.failing.add(q["id"])
    first = add_order(flaky_store, p, quantity=3)
    second = add_order(flaky_store, q, quantity=1)

    result = await lifecycle_for(flaky_store).cancel_many([first["id"], second["id"]], BUYER_ID, Actor.BUYER)

    assert [o["status"] for o in result.orders] == ["cancelled", "cancelled"]
    assert flaky_store.products[p["id"]]["quantity"] == 10
    assert flaky_store.products[q["id"]]["quantity"] == 2
    assert not result.restoration.complete
    assert result.restoration.failures[0].order_id == second["id"]
    assert flaky_store.orders[first["id"]]["inventory_restored"] is True
    assert flaky_store.orders[second["id"]]["inventory_restored"] is False
    assert flaky_store.orders[second["id"]]["status"] == "cancelled"


async def test_cancel_many_reports_rejections(store):
    product = add_product(store, quantity=5)
    ok = add_order(store, product, quantity=1)
    shipped = add_order(store, product, quantity=1, status="shipped")

    result = await lifecycle_for(store).cancel_many([ok["id"], shipped["id"], "missing"], BUYER_ID, Actor.BUYER)

    assert [o["id"] for o in result.orders] == [ok["id"]]
    assert {r.order_id for r in result.rejected} == {shipped["id"], "missing"}
    assert store.products[product["id"]]["quantity"] == 6

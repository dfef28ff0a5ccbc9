from decimal import Decimal

import pytest

from streetserve.orders.cart import Cart
from streetserve.shared.utils import InvalidQuantityError


def product(pid, price, vendor="vendor_x"):
    return {"id": pid, "title": pid.title(), "price": price, "vendor_id": vendor}


def test_add_merges_same_product():
    cart = Cart()
    cart.add(product("samosa", 15), 2)
    cart.add(product("samosa", 15), 3)

    assert len(cart) == 1
    assert cart.items[0].quantity == 5
    assert cart.total_items() == 5


def test_add_rejects_non_positive_quantity():
    with pytest.raises(InvalidQuantityError):
        Cart().add(product("samosa", 15), 0)


def test_prices_are_exact_decimals():
    cart = Cart()
    cart.add(product("chai", 0.1), 3)

    assert cart.total_price() == Decimal("0.3")


def test_vendor_subtotals():
    cart = Cart()
    cart.add(product("samosa", 15), 2)
    cart.add(product("chai", 10), 1)
    cart.add(product("dosa", 80, vendor="vendor_y"), 1)

    assert cart.vendor_subtotals() == {"vendor_x": Decimal(40), "vendor_y": Decimal(80)}
    assert cart.total_price() == Decimal(120)


def test_update_quantity_and_remove():
    cart = Cart()
    cart.add(product("samosa", 15), 2)
    cart.add(product("chai", 10), 1)

    cart.update_quantity("samosa", 4)
    cart.update_quantity("chai", 0)

    assert cart.stock_lines() == [("samosa", 4)]
    cart.remove("samosa")
    assert cart.is_empty()


def test_clear():
    cart = Cart()
    cart.add(product("samosa", 15))
    cart.clear()
    assert cart.is_empty()
    assert cart.total_price() == 0

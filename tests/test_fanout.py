from datetime import datetime
from decimal import Decimal

from conftest import shipping_info
from streetserve.orders.cart import Cart
from streetserve.orders.fanout import fan_out
from streetserve.orders.models import BuyerContact, PaymentMethod


def make_cart():
    cart = Cart()
    cart.add({"id": "p1", "title": "Pani Puri", "price": 40, "vendor_id": "X"}, 2)
    cart.add({"id": "p2", "title": "Bhel", "price": "35.50", "vendor_id": "X"}, 1)
    cart.add({"id": "p3", "title": "Dosa", "price": 80, "vendor_id": "Y", "vendor_name": "Dosa Point"}, 3)
    return cart


def test_one_order_per_line():
    now = datetime(2024, 1, 1, 12, 0)
    plan = fan_out(make_cart(), "buyer_1", BuyerContact(name="Asha"), shipping_info(), PaymentMethod.COD, now=now)

    assert len(plan.orders) == 3
    assert [o.vendor_id for o in plan.orders] == ["X", "X", "Y"]
    for order in plan.orders:
        assert order.total_amount == order.price * order.quantity
        assert order.status == "pending"
        assert order.payment_info.status == "pending"
        assert order.created_at == now
    assert plan.orders[2].vendor_name == "Dosa Point"


def test_totals():
    plan = fan_out(make_cart(), "buyer_1", BuyerContact(), shipping_info(), PaymentMethod.COD)

    assert plan.vendor_subtotals == {"X": Decimal("115.50"), "Y": Decimal(240)}
    assert plan.total_amount == Decimal("355.50")


def test_documents_have_no_shared_parent():
    plan = fan_out(make_cart(), "buyer_1", BuyerContact(), shipping_info(), PaymentMethod.UPI)
    plan.attach_gateway_order("order_abc")

    docs = plan.documents()
    assert all("id" not in doc for doc in docs)
    assert all(doc["payment_info"]["gateway_order_id"] == "order_abc" for doc in docs)
    assert all(doc["payment_info"]["method"] == "upi" for doc in docs)
    assert docs[1]["price"] == 35.5
    assert isinstance(docs[0]["total_amount"], float)

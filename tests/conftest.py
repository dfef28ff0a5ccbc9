from datetime import datetime
from typing import List

import pytest
from fastapi.testclient import TestClient

from streetserve.orders.models import BuyerContact, OrderDB, PaymentInfo, PaymentMethod, ShippingInfo
from streetserve.payments.gateway import GatewayError, GatewayOrder, PaymentGateway
from streetserve.shared.security_config import limiter
from streetserve.shared.store import MemoryStore, new_id
from streetserve.shared.utils import create_access_token

BUYER_ID = "buyer_1"
VENDOR_X = "vendor_x"
VENDOR_Y = "vendor_y"


class FakeGateway(PaymentGateway):
    key_id = "rzp_test_fake"

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls: List[dict] = []

    async def create_order(self, amount_minor, currency, receipt):
        self.calls.append({"amount": amount_minor, "currency": currency, "receipt": receipt})
        if self.fail:
            raise GatewayError("gateway unreachable")
        return GatewayOrder(
            id=f"order_fake_{len(self.calls)}", amount=amount_minor, currency=currency, receipt=receipt
        )


class FlakyStore(MemoryStore):
    """Memory store whose stock increments fail for selected products."""

    def __init__(self):
        super().__init__()
        self.failing = set()

    async def increment_stock(self, product_id, amount):
        if product_id in self.failing:
            raise ConnectionError("store unavailable")
        return await super().increment_stock(product_id, amount)


def add_product(store: MemoryStore, title="Vada Pav", price=20, quantity=10,
                vendor_id=VENDOR_X, is_active=True, **extra) -> dict:
    doc = {
        "id": new_id(),
        "vendor_id": vendor_id,
        "vendor_name": f"{vendor_id} stall",
        "title": title,
        "description": None,
        "price": price,
        "category": "snacks",
        "image_url": None,
        "quantity": quantity,
        "is_active": is_active,
        "created_at": datetime.utcnow(),
        "updated_at": None,
    }
    doc.update(extra)
    store.products[doc["id"]] = doc
    return doc


def shipping_info(**overrides) -> ShippingInfo:
    data = {
        "full_name": "Asha Rao",
        "phone": "9876543210",
        "address": "12 Market Road",
        "city": "Pune",
        "pincode": "411001",
    }
    data.update(overrides)
    return ShippingInfo(**data)


def add_order(store: MemoryStore, product: dict, quantity=1, buyer_id=BUYER_ID,
              status="pending", method=PaymentMethod.COD, gateway_order_id=None) -> dict:
    order = OrderDB(
        buyer_id=buyer_id,
        buyer_contact=BuyerContact(name="Asha"),
        product_id=product["id"],
        product_title=product["title"],
        quantity=quantity,
        price=product["price"],
        total_amount=product["price"] * quantity,
        vendor_id=product["vendor_id"],
        vendor_name=product.get("vendor_name"),
        shipping_info=shipping_info(),
        payment_info=PaymentInfo(method=method, gateway_order_id=gateway_order_id),
        status=status,
    )
    doc = order.to_document()
    doc["id"] = new_id()
    store.orders[doc["id"]] = doc
    return doc


def auth_headers(sub: str, role: str, **claims) -> dict:
    token = create_access_token({"sub": sub, "role": role, **claims})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture(autouse=True)
def no_rate_limits():
    limiter.enabled = False
    yield
    limiter.enabled = True


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def flaky_store():
    return FlakyStore()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def buyer_headers():
    return auth_headers(BUYER_ID, "buyer", name="Asha", email="asha@example.com")


@pytest.fixture
def vendor_headers():
    return auth_headers(VENDOR_X, "vendor", name="Chaat Corner")


@pytest.fixture
def orders_client(store, gateway):
    from streetserve.orders.main import app
    app.store = store
    app.gateway = gateway
    yield TestClient(app)
    app.store = None
    app.gateway = None


@pytest.fixture
def products_client(store):
    from streetserve.products.main import app
    app.store = store
    yield TestClient(app)
    app.store = None


@pytest.fixture
def payments_client(store, gateway):
    from streetserve.payments.main import app
    app.store = store
    app.gateway = gateway
    yield TestClient(app)
    app.store = None
    app.gateway = None

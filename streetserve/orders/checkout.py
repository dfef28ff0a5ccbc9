import logging
import time
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple
from pydantic import BaseModel

from streetserve.orders.cart import Cart
from streetserve.orders.fanout import fan_out
from streetserve.orders.inventory import InventoryLedger, merge_lines
from streetserve.orders.models import BuyerContact, PaymentMethod, ShippingInfo
from streetserve.payments.gateway import GatewayError, GatewayOrder, PaymentGateway
from streetserve.shared.store import DocumentStore
from streetserve.shared.utils import (
    EmptyCartError, PaymentCreationError, ProductNotFoundError, settings, to_minor_units
)

logger = logging.getLogger(__name__)


class CheckoutResult(BaseModel):
    orders: List[dict]
    total_amount: Decimal
    vendor_subtotals: Dict[str, Decimal]
    payment: Optional[GatewayOrder] = None


async def build_cart(store: DocumentStore, lines: Iterable[Tuple[str, int]]) -> Cart:
    """Price a cart from stored products; client-side prices are ignored."""
    cart = Cart()
    for product_id, quantity in merge_lines(lines):
        product = await store.get_product(product_id)
        if not product or not product.get("is_active", True):
            raise ProductNotFoundError(product_id)
        cart.add(product, quantity)
    return cart


class CheckoutService:
    def __init__(
        self,
        store: DocumentStore,
        gateway: Optional[PaymentGateway] = None,
        currency: str = settings.PAYMENT_CURRENCY,
    ):
        self.ledger = InventoryLedger(store)
        self.gateway = gateway
        self.currency = currency

    async def checkout(
        self,
        cart: Cart,
        buyer_id: str,
        buyer_contact: BuyerContact,
        shipping_info: ShippingInfo,
        payment_method: PaymentMethod,
    ) -> CheckoutResult:
        """Turn a cart into persisted orders.

        Order of effects:
        1. online payments get a gateway order first, so a gateway failure
           leaves nothing behind;
        2. stock is checked and decremented and the orders inserted in one
           transaction;
        3. the cart is cleared.
        """
        if cart.is_empty():
            raise EmptyCartError()

        method = PaymentMethod(payment_method)
        plan = fan_out(cart, buyer_id, buyer_contact, shipping_info, method)

        gateway_order = None
        if method.is_online:
            gateway_order = await self._create_gateway_order(plan.total_amount)
            plan.attach_gateway_order(gateway_order.id)

        try:
            created = await self.ledger.commit(cart.stock_lines(), plan.documents())
        except Exception:
            if gateway_order:
                # unpaid gateway orders expire on the gateway side
                logger.warning("Gateway order left unused", extra={"gateway_order_id": gateway_order.id})
            raise
        cart.clear()

        logger.info("Checkout completed", extra={
            "buyer_id": buyer_id,
            "order_ids": [o["id"] for o in created],
            "gateway_order_id": gateway_order.id if gateway_order else None,
        })
        return CheckoutResult(
            orders=created,
            total_amount=plan.total_amount,
            vendor_subtotals=plan.vendor_subtotals,
            payment=gateway_order,
        )

    async def _create_gateway_order(self, total: Decimal) -> GatewayOrder:
        if self.gateway is None:
            raise PaymentCreationError("no payment gateway configured")
        receipt = f"receipt_{int(time.time() * 1000)}"
        try:
            return await self.gateway.create_order(to_minor_units(total), self.currency, receipt)
        except GatewayError as e:
            raise PaymentCreationError(str(e)) from e

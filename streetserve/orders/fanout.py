from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional
from pydantic import BaseModel

from streetserve.orders.cart import Cart
from streetserve.orders.models import (
    BuyerContact, OrderDB, OrderStatus, PaymentInfo, PaymentMethod, PaymentStatus, ShippingInfo
)


class FanOutPlan(BaseModel):
    orders: List[OrderDB]
    vendor_subtotals: Dict[str, Decimal]
    total_amount: Decimal

    def attach_gateway_order(self, gateway_order_id: str):
        for order in self.orders:
            order.payment_info.gateway_order_id = gateway_order_id

    def documents(self) -> List[dict]:
        return [order.to_document() for order in self.orders]


def fan_out(
    cart: Cart,
    buyer_id: str,
    buyer_contact: BuyerContact,
    shipping_info: ShippingInfo,
    payment_method: PaymentMethod,
    now: Optional[datetime] = None,
) -> FanOutPlan:
    """Build one pending order per cart line.

    Lines are grouped by vendor only to report sub-totals. Every order starts
    with an unpaid payment record whatever the method.
    """
    now = now or datetime.utcnow()
    orders = []
    for item in cart:
        orders.append(OrderDB(
            buyer_id=buyer_id,
            buyer_contact=buyer_contact,
            product_id=item.product_id,
            product_title=item.title,
            quantity=item.quantity,
            price=item.price,
            total_amount=item.line_total,
            vendor_id=item.vendor_id,
            vendor_name=item.vendor_name,
            shipping_info=shipping_info,
            payment_info=PaymentInfo(method=payment_method, status=PaymentStatus.PENDING),
            status=OrderStatus.PENDING,
            created_at=now,
            updated_at=now,
        ))
    return FanOutPlan(
        orders=orders,
        vendor_subtotals=cart.vendor_subtotals(),
        total_amount=cart.total_price(),
    )

from pydantic import BaseModel, Field, field_validator
from typing import Dict, Optional, List
from decimal import Decimal
from datetime import datetime
from streetserve.shared.security_config import sanitize_input
from streetserve.orders.inventory import RestorationReport
from streetserve.orders.lifecycle import RejectedCancellation
from streetserve.orders.models import (
    BuyerContact, OrderStatus, PaymentInfo, PaymentMethod, ShippingInfo
)

class CheckoutLine(BaseModel):
    product_id: str
    quantity: int = Field(..., gt=0)

class ShippingInfoIn(ShippingInfo):
    @field_validator('full_name', 'phone', 'email', 'address', 'city', 'pincode', 'notes')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class CheckoutRequest(BaseModel):
    items: List[CheckoutLine]
    shipping_info: ShippingInfoIn
    payment_method: PaymentMethod = PaymentMethod.COD

class OrderResponse(BaseModel):
    id: str
    buyer_id: str
    buyer_contact: BuyerContact
    product_id: str
    product_title: str
    quantity: int
    price: Decimal
    total_amount: Decimal
    vendor_id: str
    vendor_name: Optional[str] = None
    shipping_info: ShippingInfo
    payment_info: PaymentInfo
    status: OrderStatus
    version: int
    inventory_restored: bool = False
    cancelled_by: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

class CheckoutPayment(BaseModel):
    gateway_order_id: str
    key_id: str
    amount: int  # minor units
    currency: str

class CheckoutResponse(BaseModel):
    orders: List[OrderResponse]
    total_amount: Decimal
    vendor_subtotals: Dict[str, Decimal]
    payment: Optional[CheckoutPayment] = None

class OrderStatusUpdate(BaseModel):
    status: OrderStatus
    version: Optional[int] = None  # last version the client saw

class StatusUpdateResponse(BaseModel):
    order: OrderResponse
    restoration: Optional[RestorationReport] = None

class CancelOrdersRequest(BaseModel):
    order_ids: List[str] = Field(..., min_length=1)

class CancellationResponse(BaseModel):
    orders: List[OrderResponse]
    rejected: List[RejectedCancellation]
    restoration: RestorationReport

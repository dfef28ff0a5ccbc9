from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field

class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

class PaymentMethod(str, Enum):
    COD = "cod"
    CARD = "card"
    UPI = "upi"

    @property
    def is_online(self) -> bool:
        return self is not PaymentMethod.COD

class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"

class BuyerContact(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None

class ShippingInfo(BaseModel):
    full_name: str
    phone: str
    email: Optional[str] = None
    address: str
    city: str
    pincode: str
    notes: Optional[str] = None

class PaymentInfo(BaseModel):
    method: PaymentMethod
    status: PaymentStatus = PaymentStatus.PENDING
    gateway_order_id: Optional[str] = None
    gateway_payment_id: Optional[str] = None
    paid_at: Optional[datetime] = None

    class Config:
        use_enum_values = True

class OrderDB(BaseModel):
    """One order per cart line. There is no parent checkout record."""
    id: Optional[str] = None
    buyer_id: str
    buyer_contact: BuyerContact
    product_id: str
    product_title: str
    quantity: int = Field(..., gt=0)
    price: Decimal
    total_amount: Decimal
    vendor_id: str
    vendor_name: Optional[str] = None
    shipping_info: ShippingInfo
    payment_info: PaymentInfo
    status: OrderStatus = OrderStatus.PENDING
    version: int = 0
    inventory_restored: bool = False
    cancelled_by: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        use_enum_values = True

    def to_document(self) -> dict:
        # Mongo has no Decimal codec configured, store money as float
        doc = self.dict(exclude={"id"})
        doc["price"] = float(doc["price"])
        doc["total_amount"] = float(doc["total_amount"])
        return doc

from pydantic import BaseModel, Field, field_validator
from typing import List, Optional
from streetserve.orders.models import PaymentStatus
from streetserve.shared.security_config import sanitize_input

class CreateGatewayOrderRequest(BaseModel):
    amount: int = Field(..., gt=0)  # minor units (paise)
    currency: str = Field("INR", pattern="^[A-Z]{3}$")

class VerifyPaymentRequest(BaseModel):
    # The widget callback uses razorpay_* names; accept both spellings
    order_id: str = Field(..., alias="razorpay_order_id")
    payment_id: str = Field(..., alias="razorpay_payment_id")
    signature: str = Field(..., alias="razorpay_signature")

    class Config:
        populate_by_name = True

    @field_validator('order_id', 'payment_id', 'signature')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class VerifyPaymentResponse(BaseModel):
    status: str  # success, failure
    message: str
    order_ids: List[str] = []
    # cancelled before the payment landed
    refund_order_ids: List[str] = []

class PaymentCancelledRequest(BaseModel):
    order_id: str = Field(..., alias="razorpay_order_id")
    reason: Optional[str] = None

    class Config:
        populate_by_name = True

    @field_validator('order_id', 'reason')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class PaymentDetails(BaseModel):
    gateway_order_id: str
    key_id: str
    amount: int
    currency: str
    order_ids: List[str]
    status: PaymentStatus

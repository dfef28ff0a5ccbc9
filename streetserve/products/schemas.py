from pydantic import BaseModel, Field, field_validator
from typing import Optional, List
from decimal import Decimal
from datetime import datetime
from streetserve.shared.security_config import sanitize_input

class ProductCreate(BaseModel):
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    price: Decimal = Field(..., gt=0)
    category: str = Field(..., min_length=1)
    image_url: Optional[str] = None
    quantity: int = Field(0, ge=0)

    @field_validator('title', 'description', 'category', 'image_url')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class ProductUpdate(BaseModel):
    # stock is not editable here, see StockAdjust
    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    price: Optional[Decimal] = Field(None, gt=0)
    category: Optional[str] = None
    image_url: Optional[str] = None
    is_active: Optional[bool] = None

    @field_validator('title', 'description', 'category', 'image_url')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class StockAdjust(BaseModel):
    quantity: int = Field(..., gt=0)

class ProductResponse(BaseModel):
    id: str
    vendor_id: str
    vendor_name: Optional[str] = None
    title: str
    description: Optional[str] = None
    price: Decimal
    category: str
    image_url: Optional[str] = None
    quantity: int
    is_active: bool = True
    created_at: datetime
    updated_at: Optional[datetime] = None

class ProductListResponse(BaseModel):
    products: List[ProductResponse]
    total: int
    page: int
    limit: int

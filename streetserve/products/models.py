from datetime import datetime
from typing import Optional
from decimal import Decimal
from pydantic import BaseModel, Field

class ProductDB(BaseModel):
    id: Optional[str] = None
    vendor_id: str
    vendor_name: Optional[str] = None
    title: str
    description: Optional[str] = None
    price: Decimal
    category: str
    image_url: Optional[str] = None
    quantity: int = Field(0, ge=0)
    is_active: bool = True
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: Optional[datetime] = None

    def to_document(self) -> dict:
        doc = self.dict(exclude={"id"})
        doc["price"] = float(doc["price"])
        return doc

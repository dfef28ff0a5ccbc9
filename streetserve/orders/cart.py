"""Session-scoped shopping cart.

The cart is a value object owned by the caller (the buyer's session); nothing
here is shared between requests.
"""
from decimal import Decimal
from typing import Dict, Iterator, List, Optional, Tuple
from pydantic import BaseModel, Field

from streetserve.shared.utils import InvalidQuantityError, to_decimal


class CartItem(BaseModel):
    product_id: str
    title: str
    price: Decimal
    quantity: int = Field(..., gt=0)
    vendor_id: str
    vendor_name: Optional[str] = None

    @property
    def line_total(self) -> Decimal:
        return self.price * self.quantity


class Cart:
    def __init__(self, items: Optional[List[CartItem]] = None):
        self._items: Dict[str, CartItem] = {}
        for item in items or []:
            self._items[item.product_id] = item

    def add(self, product: dict, quantity: int = 1) -> CartItem:
        """Add a stored product, merging with an existing line for the same product."""
        if quantity <= 0:
            raise InvalidQuantityError(product["id"], quantity)
        existing = self._items.get(product["id"])
        if existing:
            existing.quantity += quantity
            return existing
        item = CartItem(
            product_id=product["id"],
            title=product["title"],
            price=to_decimal(product["price"]),
            quantity=quantity,
            vendor_id=product["vendor_id"],
            vendor_name=product.get("vendor_name"),
        )
        self._items[item.product_id] = item
        return item

    def remove(self, product_id: str):
        self._items.pop(product_id, None)

    def update_quantity(self, product_id: str, quantity: int):
        if quantity <= 0:
            self.remove(product_id)
            return
        if product_id in self._items:
            self._items[product_id].quantity = quantity

    def clear(self):
        self._items.clear()

    @property
    def items(self) -> List[CartItem]:
        return list(self._items.values())

    def __iter__(self) -> Iterator[CartItem]:
        return iter(self.items)

    def __len__(self) -> int:
        return len(self._items)

    def is_empty(self) -> bool:
        return not self._items

    def total_price(self) -> Decimal:
        return sum((item.line_total for item in self._items.values()), Decimal(0))

    def total_items(self) -> int:
        return sum(item.quantity for item in self._items.values())

    def vendor_subtotals(self) -> Dict[str, Decimal]:
        subtotals: Dict[str, Decimal] = {}
        for item in self._items.values():
            subtotals[item.vendor_id] = subtotals.get(item.vendor_id, Decimal(0)) + item.line_total
        return subtotals

    def stock_lines(self) -> List[Tuple[str, int]]:
        return [(item.product_id, item.quantity) for item in self._items.values()]

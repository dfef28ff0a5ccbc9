"""Inventory ledger.

Product quantity is written only from here: the checkout commit, the
cancellation restore batch, and vendor restocks.
"""
import asyncio
import logging
from typing import Iterable, List, Optional, Tuple
from pydantic import BaseModel

from streetserve.shared.store import DocumentStore
from streetserve.shared.utils import (
    InsufficientStockError, InvalidQuantityError, ProductNotFoundError
)

logger = logging.getLogger(__name__)


class StockLine(BaseModel):
    product_id: str
    quantity: int
    order_id: Optional[str] = None


class RestoredLine(StockLine):
    quantity_after: int


class InventoryRestorationFailure(StockLine):
    reason: str


class RestorationReport(BaseModel):
    restored: List[RestoredLine] = []
    failures: List[InventoryRestorationFailure] = []

    @property
    def complete(self) -> bool:
        return not self.failures


def merge_lines(lines: Iterable[Tuple[str, int]]) -> List[Tuple[str, int]]:
    """Validate quantities and collapse repeated products into one line."""
    merged = {}
    for product_id, quantity in lines:
        if quantity <= 0:
            raise InvalidQuantityError(product_id, quantity)
        merged[product_id] = merged.get(product_id, 0) + quantity
    return list(merged.items())


class InventoryLedger:
    def __init__(self, store: DocumentStore):
        self.store = store

    async def commit(self, lines: Iterable[Tuple[str, int]], orders: List[dict]) -> List[dict]:
        """Check and decrement stock for every line, then insert ``orders``, atomically."""
        decrements = merge_lines(lines)
        try:
            created = await self.store.apply_checkout(decrements, orders)
        except InsufficientStockError as e:
            logger.warning("Stock check failed", extra={
                "product_id": e.product_id, "available": e.available
            })
            raise
        except ProductNotFoundError as e:
            logger.warning("Checkout references missing product", extra={"product_id": e.product_id})
            raise

        logger.info("Stock committed", extra={
            "order_ids": [o["id"] for o in created],
            "quantity": sum(q for _, q in decrements),
        })
        return created

    async def restore(self, lines: List[StockLine]) -> RestorationReport:
        """Give stock back line by line.

        Every line is attempted once, independently of the others. Failures are
        collected in the report and never raised.
        """
        results = await asyncio.gather(
            *(self.store.increment_stock(line.product_id, line.quantity) for line in lines),
            return_exceptions=True,
        )

        report = RestorationReport()
        for line, result in zip(lines, results):
            if isinstance(result, Exception):
                reason = str(result) or type(result).__name__
            elif result is None:
                reason = "Product not found"
            else:
                report.restored.append(RestoredLine(**line.dict(), quantity_after=result["quantity"]))
                continue
            failure = InventoryRestorationFailure(**line.dict(), reason=reason)
            report.failures.append(failure)
            logger.error("Inventory restoration failed", extra={
                "product_id": line.product_id,
                "order_id": line.order_id,
                "quantity": line.quantity,
            }, exc_info=result if isinstance(result, Exception) else None)

        return report

    async def restock(self, product_id: str, quantity: int) -> dict:
        if quantity <= 0:
            raise InvalidQuantityError(product_id, quantity)
        product = await self.store.increment_stock(product_id, quantity)
        if product is None:
            raise ProductNotFoundError(product_id)
        logger.info("Product restocked", extra={"product_id": product_id, "quantity": quantity})
        return product

import logging
from datetime import datetime
from typing import Any, Iterable, List, Optional
from pydantic import BaseModel, Field

from streetserve.orders.inventory import InventoryLedger, RestorationReport, StockLine
from streetserve.orders.models import OrderStatus, PaymentMethod, PaymentStatus
from streetserve.orders.state_machine import Actor, assert_transition
from streetserve.shared.store import DocumentStore
from streetserve.shared.utils import (
    AppException, ConcurrentUpdateError, ForbiddenException, NotFoundException
)

logger = logging.getLogger(__name__)


class TransitionResult(BaseModel):
    order: dict
    restoration: Optional[RestorationReport] = None


class RejectedCancellation(BaseModel):
    order_id: str
    error: Any


class CancellationResult(BaseModel):
    orders: List[dict] = []
    rejected: List[RejectedCancellation] = []
    restoration: RestorationReport = Field(default_factory=RestorationReport)


class OrderLifecycle:
    """Applies status transitions to stored orders.

    A cancellation is written first and stays written; the stock give-back
    that follows can partially fail without undoing it.
    """

    def __init__(self, store: DocumentStore, ledger: InventoryLedger):
        self.store = store
        self.ledger = ledger

    async def load(self, order_id: str, actor_id: str, actor: Actor) -> dict:
        order = await self.store.get_order(order_id)
        if not order:
            raise NotFoundException("Order not found")
        owner = order["vendor_id"] if actor is Actor.VENDOR else order["buyer_id"]
        if owner != actor_id:
            raise ForbiddenException("Not authorized to modify this order")
        return order

    async def transition(
        self,
        order_id: str,
        actor_id: str,
        actor: Actor,
        target: OrderStatus,
        expected_version: Optional[int] = None,
    ) -> TransitionResult:
        order = await self.load(order_id, actor_id, actor)
        updated = await self._write_status(order, OrderStatus(target), actor, expected_version)
        if updated["status"] != OrderStatus.CANCELLED:
            return TransitionResult(order=updated)

        restoration, (updated,) = await self._restore([updated])
        return TransitionResult(order=updated, restoration=restoration)

    async def cancel_many(self, order_ids: Iterable[str], actor_id: str, actor: Actor) -> CancellationResult:
        result = CancellationResult()
        cancelled = []
        for order_id in dict.fromkeys(order_ids):
            try:
                order = await self.load(order_id, actor_id, actor)
                cancelled.append(await self._write_status(order, OrderStatus.CANCELLED, actor))
            except AppException as e:
                result.rejected.append(RejectedCancellation(order_id=order_id, error=e.detail))

        result.restoration, result.orders = await self._restore(cancelled)
        return result

    async def _write_status(
        self, order: dict, target: OrderStatus, actor: Actor, expected_version: Optional[int] = None
    ) -> dict:
        current = order["status"]
        assert_transition(current, target, actor)

        now = datetime.utcnow()
        fields = {"status": target.value, "updated_at": now}
        if target is OrderStatus.CANCELLED:
            fields["cancelled_by"] = actor.value
        payment = order["payment_info"]
        if (target is OrderStatus.DELIVERED and payment["method"] == PaymentMethod.COD
                and payment["status"] != PaymentStatus.PAID):
            # cash is collected on delivery
            fields["payment_info.status"] = PaymentStatus.PAID.value
            fields["payment_info.paid_at"] = now

        version = order.get("version", 0) if expected_version is None else expected_version
        updated = await self.store.update_order(order["id"], fields, expected_version=version)
        if updated is None:
            raise ConcurrentUpdateError(order["id"])

        logger.info("Order status changed", extra={
            "order_id": order["id"],
            "from_status": current,
            "to_status": target.value,
            "user_id": order["vendor_id"] if actor is Actor.VENDOR else order["buyer_id"],
        })
        return updated

    async def _restore(self, orders: List[dict]):
        lines = [
            StockLine(product_id=o["product_id"], quantity=o["quantity"], order_id=o["id"])
            for o in orders if not o.get("inventory_restored")
        ]
        report = await self.ledger.restore(lines) if lines else RestorationReport()

        by_id = {o["id"]: o for o in orders}
        for line in report.restored:
            try:
                marked = await self.store.update_order(line.order_id, {"inventory_restored": True})
            except Exception:
                # stock is already back; a missing flag only matters for a manual re-run
                logger.exception("Could not flag order as restored", extra={"order_id": line.order_id})
                continue
            if marked:
                by_id[line.order_id] = marked

        if report.failures:
            logger.warning("Inventory restoration incomplete", extra={
                "failures": [f.dict() for f in report.failures]
            })
        return report, [by_id[o["id"]] for o in orders]

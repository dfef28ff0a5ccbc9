import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from streetserve.orders.models import OrderStatus, PaymentStatus
from streetserve.payments.gateway import PaymentGateway
from streetserve.payments.schemas import PaymentDetails
from streetserve.shared.store import DocumentStore
from streetserve.shared.utils import (
    NotFoundException, PaymentCancelledError, PaymentVerificationError,
    settings, to_decimal, to_minor_units
)

logger = logging.getLogger(__name__)


class PaymentVerifier:
    """Server side of the two-phase payment flow.

    The signature check in ``verify`` is the only place an order becomes paid
    from an online payment; what the browser reports is never trusted on its own.
    """

    def __init__(self, store: DocumentStore, gateway: PaymentGateway, secret: str):
        self.store = store
        self.gateway = gateway
        self.secret = secret

    async def _orders_for(self, gateway_order_id: str, buyer_id: str) -> List[dict]:
        orders = await self.store.find_orders({
            "payment_info.gateway_order_id": gateway_order_id,
            "buyer_id": buyer_id,
        })
        if not orders:
            raise NotFoundException("No orders for this payment")
        return orders

    async def verify(self, gateway_order_id: str, payment_id: str, signature: str, buyer_id: str) -> List[dict]:
        if not self.gateway.verify_signature(gateway_order_id, payment_id, signature, self.secret):
            logger.warning("Payment signature rejected", extra={
                "gateway_order_id": gateway_order_id, "buyer_id": buyer_id
            })
            raise PaymentVerificationError(gateway_order_id)

        orders = await self._orders_for(gateway_order_id, buyer_id)
        # Stock for these is already back; the captured amount has to be refunded
        refund_ids = [o["id"] for o in orders if o["status"] == OrderStatus.CANCELLED]
        if refund_ids:
            logger.warning("Payment captured for cancelled orders, refund required", extra={
                "gateway_order_id": gateway_order_id,
                "gateway_payment_id": payment_id,
                "order_ids": refund_ids,
            })
        if all(o["payment_info"]["status"] == PaymentStatus.PAID or o["id"] in refund_ids for o in orders):
            return orders

        now = datetime.utcnow()
        await self.store.update_orders(
            {
                "payment_info.gateway_order_id": gateway_order_id,
                "buyer_id": buyer_id,
                "payment_info.status": PaymentStatus.PENDING.value,
                "status": {"$ne": OrderStatus.CANCELLED.value},
            },
            {
                "payment_info.status": PaymentStatus.PAID.value,
                "payment_info.gateway_payment_id": payment_id,
                "payment_info.paid_at": now,
                "updated_at": now,
            },
        )
        logger.info("Payment verified", extra={
            "gateway_order_id": gateway_order_id,
            "order_ids": [o["id"] for o in orders if o["id"] not in refund_ids],
        })
        return await self._orders_for(gateway_order_id, buyer_id)

    async def cancel(self, gateway_order_id: str, buyer_id: str, reason: Optional[str] = None):
        """Record that the buyer closed the payment widget.

        Always raises PaymentCancelledError; stock stays committed and the same
        gateway order can be paid later.
        """
        await self._orders_for(gateway_order_id, buyer_id)
        logger.info("Payment cancelled by user", extra={
            "gateway_order_id": gateway_order_id, "buyer_id": buyer_id, "reason": reason,
        })
        raise PaymentCancelledError(gateway_order_id)

    async def details(self, gateway_order_id: str, buyer_id: str) -> PaymentDetails:
        orders = await self._orders_for(gateway_order_id, buyer_id)
        total = sum((to_decimal(o["total_amount"]) for o in orders), Decimal(0))
        live = [o for o in orders if o["status"] != OrderStatus.CANCELLED]
        paid = bool(live) and all(o["payment_info"]["status"] == PaymentStatus.PAID for o in live)
        return PaymentDetails(
            gateway_order_id=gateway_order_id,
            key_id=self.gateway.key_id,
            amount=to_minor_units(total),
            currency=settings.PAYMENT_CURRENCY,
            order_ids=[o["id"] for o in orders],
            status=PaymentStatus.PAID if paid else PaymentStatus.PENDING,
        )

#!/usr/bin/env python3
"""One-time migration of legacy marketplace documents.

Older clients wrote camelCase documents, kept product quantity as a string and
stored a whole cart as one order with an ``items`` array. This tool rewrites
them into the current schema so the services never have to branch on format.

Legacy order documents are kept and stamped with ``migrated_at`` /
``migrated_to``; orders are never deleted.

Usage:
    python -m streetserve.migrations --dry-run
    python -m streetserve.migrations --mongo-url mongodb://localhost:27017 --db streetserve
"""
import argparse
import asyncio
import logging
import sys
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from streetserve.orders.models import OrderStatus, PaymentMethod, PaymentStatus
from streetserve.shared.logging_config import setup_logging
from streetserve.shared.store import parse_quantity
from streetserve.shared.utils import get_db_client, settings, to_decimal

logger = logging.getLogger("migrations")

LEGACY_ORDER_QUERY = {
    "migrated_at": {"$exists": False},
    "$or": [{"items": {"$exists": True}}, {"productId": {"$exists": True}}],
}

LEGACY_PRODUCT_FIELDS = {
    "vendorId": "vendor_id",
    "vendorName": "vendor_name",
    "createdAt": "created_at",
    "updatedAt": "updated_at",
}

LEGACY_PRODUCT_QUERY = {
    "$or": [
        {"quantity": {"$not": {"$type": "int"}}},
        {"is_active": {"$exists": False}},
    ] + [{field: {"$exists": True}} for field in LEGACY_PRODUCT_FIELDS],
}


def normalize_quantity(product: dict) -> Optional[int]:
    """New integer quantity for a product, or None if it is already an int."""
    value = product.get("quantity")
    if isinstance(value, int) and not isinstance(value, bool):
        return None
    return max(parse_quantity(value), 0)


def normalize_product(product: dict) -> Optional[dict]:
    """Update document bringing a product to the current schema, or None."""
    set_fields = {}
    unset_fields = {}
    for legacy, current in LEGACY_PRODUCT_FIELDS.items():
        if legacy not in product:
            continue
        unset_fields[legacy] = ""
        if current not in product:
            set_fields[current] = product[legacy]
    quantity = normalize_quantity(product)
    if quantity is not None:
        set_fields["quantity"] = quantity
    if "is_active" not in product:
        set_fields["is_active"] = True

    update = {}
    if set_fields:
        update["$set"] = set_fields
    if unset_fields:
        update["$unset"] = unset_fields
    return update or None


def convert_shipping(info: Optional[dict]) -> dict:
    info = info or {}
    return {
        "full_name": info.get("fullName") or info.get("full_name") or "",
        "phone": info.get("phone") or "",
        "email": info.get("email"),
        "address": info.get("address") or "",
        "city": info.get("city") or "",
        "pincode": info.get("pincode") or "",
        "notes": info.get("notes"),
    }


def convert_payment(info: Optional[dict]) -> dict:
    info = info or {}
    method = info.get("method")
    if method not in {m.value for m in PaymentMethod}:
        method = PaymentMethod.COD.value
    status = PaymentStatus.PAID.value if info.get("status") == "paid" else PaymentStatus.PENDING.value
    return {
        "method": method,
        "status": status,
        "gateway_order_id": info.get("razorpay_order_id") or info.get("gatewayOrderId"),
        "gateway_payment_id": info.get("razorpay_payment_id") or info.get("gatewayPaymentId"),
        "paid_at": info.get("paidAt"),
    }


def _status(value) -> str:
    return value if value in {s.value for s in OrderStatus} else OrderStatus.PENDING.value


def _line(doc: dict, item: dict) -> dict:
    quantity = max(parse_quantity(item.get("quantity")), 1)
    price = to_decimal(item.get("price") or 0)
    created_at = doc.get("createdAt") or datetime.utcnow()
    return {
        "buyer_id": doc.get("buyerId"),
        "buyer_contact": {
            "name": doc.get("buyerName"),
            "email": doc.get("buyerEmail"),
            "phone": doc.get("buyerPhone") or (doc.get("shippingInfo") or {}).get("phone"),
        },
        "product_id": item.get("productId"),
        "product_title": item.get("title") or item.get("productTitle") or "",
        "quantity": quantity,
        "price": float(price),
        "total_amount": float(price * Decimal(quantity)),
        "vendor_id": item.get("vendorId"),
        "vendor_name": item.get("vendorName"),
        "shipping_info": convert_shipping(doc.get("shippingInfo")),
        "payment_info": convert_payment(doc.get("paymentInfo")),
        "status": _status(doc.get("status")),
        "version": 0,
        "inventory_restored": False,
        "cancelled_by": None,
        "created_at": created_at,
        "updated_at": doc.get("updatedAt") or created_at,
    }


def split_legacy_order(doc: dict) -> List[dict]:
    """Rewrite one legacy order document as current per-line orders.

    Returns an empty list for documents already in the current schema.
    """
    if isinstance(doc.get("items"), list):
        return [_line(doc, item) for item in doc["items"]]
    if "productId" in doc:
        return [_line(doc, doc)]
    return []


async def migrate(db, dry_run: bool = False) -> dict:
    stats = {"products": 0, "legacy_orders": 0, "orders_created": 0}

    async for product in db.products.find(LEGACY_PRODUCT_QUERY):
        update = normalize_product(product)
        if update is None:
            continue
        stats["products"] += 1
        if not dry_run:
            await db.products.update_one({"_id": product["_id"]}, update)

    async for legacy in db.orders.find(LEGACY_ORDER_QUERY):
        lines = split_legacy_order(legacy)
        stats["legacy_orders"] += 1
        stats["orders_created"] += len(lines)
        if dry_run or not lines:
            continue
        result = await db.orders.insert_many(lines)
        await db.orders.update_one(
            {"_id": legacy["_id"]},
            {"$set": {
                "migrated_at": datetime.utcnow(),
                "migrated_to": [str(i) for i in result.inserted_ids],
            }},
        )
        logger.info("Legacy order migrated", extra={
            "order_id": str(legacy["_id"]),
            "order_ids": [str(i) for i in result.inserted_ids],
        })

    return stats


async def run(mongo_url: str, db_name: str, dry_run: bool) -> dict:
    client = get_db_client(mongo_url)
    try:
        return await migrate(client[db_name], dry_run=dry_run)
    finally:
        client.close()


def main(argv=None):
    parser = argparse.ArgumentParser(description="Migrate legacy marketplace documents")
    parser.add_argument("--mongo-url", default=settings.MONGO_URL)
    parser.add_argument("--db", default=settings.MONGO_DB)
    parser.add_argument("--dry-run", action="store_true", help="Report what would change without writing")
    args = parser.parse_args(argv)

    setup_logging("migrations", settings.LOG_LEVEL)
    stats = asyncio.run(run(args.mongo_url, args.db, args.dry_run))
    logger.info(
        f"{'Would migrate' if args.dry_run else 'Migrated'} {stats['products']} products, "
        f"{stats['legacy_orders']} legacy orders into {stats['orders_created']} orders"
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())

"""Document store used by every service.

Two implementations share one interface: ``MongoStore`` (Motor, multi-document
transactions, needs a replica set) and ``MemoryStore`` (process-local, for tests
and single-process development). Documents go in and come out as plain dicts
with a string ``id``; Mongo's ``_id`` never leaves this module.
"""
import asyncio
import copy
import logging
import re
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ReturnDocument

from streetserve.shared.utils import (
    get_db_client, settings, InsufficientStockError, ProductNotFoundError
)

logger = logging.getLogger(__name__)

# (product_id, quantity) pairs
StockLines = List[Tuple[str, int]]

LEADING_INT = re.compile(r"\s*([+-]?\d+)")

# Products written before soft delete have no is_active flag
ACTIVE = {"$ne": False}


def parse_quantity(value: Any) -> int:
    """Read a stored quantity.

    Legacy documents hold strings and floats (`"5"`, `"5.5"`, `12.0`). The leading
    integer is kept and anything without one reads as 0.
    """
    if isinstance(value, bool) or value is None:
        return 0
    if isinstance(value, int):
        return value
    match = LEADING_INT.match(str(value))
    return int(match.group(1)) if match else 0


def new_id() -> str:
    return str(ObjectId())


class DocumentStore(ABC):
    @abstractmethod
    async def ping(self) -> bool: ...

    # Products
    @abstractmethod
    async def get_product(self, product_id: str) -> Optional[dict]: ...

    @abstractmethod
    async def find_products(self, filters: dict, search: Optional[str] = None,
                            skip: int = 0, limit: int = 0) -> Tuple[List[dict], int]: ...

    @abstractmethod
    async def insert_product(self, doc: dict) -> dict: ...

    @abstractmethod
    async def update_product(self, product_id: str, fields: dict) -> Optional[dict]: ...

    @abstractmethod
    async def increment_stock(self, product_id: str, amount: int) -> Optional[dict]:
        """Add ``amount`` to a product's quantity. Returns None if the product is gone."""

    @abstractmethod
    async def apply_checkout(self, decrements: StockLines, orders: List[dict]) -> List[dict]:
        """Decrement every product and insert ``orders`` in one transaction.

        Raises ProductNotFoundError or InsufficientStockError and leaves every
        document untouched when any line cannot be satisfied.
        """

    # Orders
    @abstractmethod
    async def get_order(self, order_id: str) -> Optional[dict]: ...

    @abstractmethod
    async def find_orders(self, query: dict, skip: int = 0, limit: int = 0) -> List[dict]:
        """Equality query (dotted keys allowed), newest first."""

    @abstractmethod
    async def update_order(self, order_id: str, fields: dict,
                           expected_version: Optional[int] = None) -> Optional[dict]:
        """Set ``fields`` and bump ``version``.

        With ``expected_version`` the write only happens if the stored version
        still matches; otherwise None is returned.
        """

    @abstractmethod
    async def update_orders(self, query: dict, fields: dict) -> int: ...

    async def close(self):
        pass


# --- Mongo ---
def _oid(value: str) -> Optional[ObjectId]:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


def _out(doc: Optional[dict]) -> Optional[dict]:
    if doc is None:
        return None
    doc["id"] = str(doc.pop("_id"))
    if "quantity" in doc:
        doc["quantity"] = parse_quantity(doc["quantity"])
    return doc


class MongoStore(DocumentStore):
    def __init__(self, client, db_name: str = settings.MONGO_DB):
        self.client = client
        self.db = client[db_name]

    async def ensure_indexes(self):
        await self.db.products.create_index("vendor_id")
        await self.db.products.create_index("category")
        await self.db.orders.create_index("buyer_id")
        await self.db.orders.create_index("vendor_id")
        await self.db.orders.create_index("payment_info.gateway_order_id")

    async def ping(self) -> bool:
        await self.client.admin.command("ping")
        return True

    async def get_product(self, product_id):
        oid = _oid(product_id)
        if oid is None:
            return None
        return _out(await self.db.products.find_one({"_id": oid}))

    async def find_products(self, filters, search=None, skip=0, limit=0):
        query = dict(filters)
        if search:
            query["title"] = {"$regex": re.escape(search), "$options": "i"}
        total = await self.db.products.count_documents(query)
        cursor = self.db.products.find(query).sort("created_at", -1).skip(skip)
        if limit:
            cursor = cursor.limit(limit)
        return [_out(doc) async for doc in cursor], total

    async def insert_product(self, doc):
        doc = {k: v for k, v in doc.items() if k != "id"}
        result = await self.db.products.insert_one(doc)
        return await self.get_product(str(result.inserted_id))

    async def update_product(self, product_id, fields):
        oid = _oid(product_id)
        if oid is None:
            return None
        doc = await self.db.products.find_one_and_update(
            {"_id": oid}, {"$set": fields}, return_document=ReturnDocument.AFTER
        )
        return _out(doc)

    async def increment_stock(self, product_id, amount):
        oid = _oid(product_id)
        if oid is None:
            return None
        doc = await self.db.products.find_one_and_update(
            {"_id": oid},
            {"$inc": {"quantity": amount}, "$set": {"updated_at": datetime.utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        return _out(doc)

    async def apply_checkout(self, decrements, orders):
        async def txn(session):
            now = datetime.utcnow()
            for product_id, quantity in decrements:
                oid = _oid(product_id)
                if oid is None:
                    raise ProductNotFoundError(product_id)
                result = await self.db.products.update_one(
                    {"_id": oid, "is_active": ACTIVE, "quantity": {"$gte": quantity}},
                    {"$inc": {"quantity": -quantity}, "$set": {"updated_at": now}},
                    session=session,
                )
                if result.matched_count == 0:
                    product = await self.db.products.find_one(
                        {"_id": oid, "is_active": ACTIVE}, session=session
                    )
                    if not product:
                        raise ProductNotFoundError(product_id)
                    raise InsufficientStockError(
                        product_id, parse_quantity(product.get("quantity")), product.get("title")
                    )

            docs = [{k: v for k, v in order.items() if k != "id"} for order in orders]
            if docs:
                await self.db.orders.insert_many(docs, session=session)
            return docs

        async with await self.client.start_session() as session:
            inserted = await session.with_transaction(txn)
        return [_out(doc) for doc in inserted]

    async def get_order(self, order_id):
        oid = _oid(order_id)
        if oid is None:
            return None
        return _out(await self.db.orders.find_one({"_id": oid}))

    async def find_orders(self, query, skip=0, limit=0):
        cursor = self.db.orders.find(self._order_query(query)).sort("created_at", -1).skip(skip)
        if limit:
            cursor = cursor.limit(limit)
        return [_out(doc) async for doc in cursor]

    async def update_order(self, order_id, fields, expected_version=None):
        oid = _oid(order_id)
        if oid is None:
            return None
        query = {"_id": oid}
        if expected_version is not None:
            query["version"] = expected_version
        doc = await self.db.orders.find_one_and_update(
            query,
            {"$set": fields, "$inc": {"version": 1}},
            return_document=ReturnDocument.AFTER,
        )
        return _out(doc)

    async def update_orders(self, query, fields):
        result = await self.db.orders.update_many(
            self._order_query(query), {"$set": fields, "$inc": {"version": 1}}
        )
        return result.modified_count

    def _order_query(self, query: dict) -> dict:
        query = dict(query)
        if "id" in query:
            query["_id"] = _oid(query.pop("id"))
        return query

    async def close(self):
        self.client.close()


# --- In-memory ---
def _get_path(doc: dict, path: str) -> Any:
    value: Any = doc
    for part in path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def _set_path(doc: dict, path: str, value: Any):
    parts = path.split(".")
    target = doc
    for part in parts[:-1]:
        target = target.setdefault(part, {})
    target[parts[-1]] = value


def _match_value(actual: Any, expected: Any) -> bool:
    if isinstance(expected, dict) and "$ne" in expected:
        return actual != expected["$ne"]
    return actual == expected


def _matches(doc: dict, query: dict) -> bool:
    # equality and $ne only
    return all(_match_value(_get_path(doc, key), value) for key, value in query.items())


class MemoryStore(DocumentStore):
    """Single-process store; the lock makes every write batch atomic."""

    def __init__(self):
        self.products: Dict[str, dict] = {}
        self.orders: Dict[str, dict] = {}
        self._lock = asyncio.Lock()

    async def ping(self):
        return True

    async def get_product(self, product_id):
        doc = self.products.get(product_id)
        return copy.deepcopy(doc) if doc else None

    async def find_products(self, filters, search=None, skip=0, limit=0):
        docs = [d for d in self.products.values() if _matches(d, filters)]
        if search:
            needle = search.lower()
            docs = [d for d in docs if needle in str(d.get("title", "")).lower()]
        docs.sort(key=lambda d: d.get("created_at") or datetime.min, reverse=True)
        total = len(docs)
        docs = docs[skip:skip + limit] if limit else docs[skip:]
        return copy.deepcopy(docs), total

    async def insert_product(self, doc):
        async with self._lock:
            doc = copy.deepcopy(doc)
            doc["id"] = doc.get("id") or new_id()
            doc["quantity"] = parse_quantity(doc.get("quantity"))
            self.products[doc["id"]] = doc
            return copy.deepcopy(doc)

    async def update_product(self, product_id, fields):
        async with self._lock:
            doc = self.products.get(product_id)
            if doc is None:
                return None
            for key, value in fields.items():
                _set_path(doc, key, copy.deepcopy(value))
            return copy.deepcopy(doc)

    async def increment_stock(self, product_id, amount):
        async with self._lock:
            doc = self.products.get(product_id)
            if doc is None:
                return None
            doc["quantity"] = parse_quantity(doc.get("quantity")) + amount
            doc["updated_at"] = datetime.utcnow()
            return copy.deepcopy(doc)

    async def apply_checkout(self, decrements, orders):
        async with self._lock:
            # check everything before touching anything
            for product_id, quantity in decrements:
                product = self.products.get(product_id)
                if product is None or not product.get("is_active", True):
                    raise ProductNotFoundError(product_id)
                available = parse_quantity(product.get("quantity"))
                if available < quantity:
                    raise InsufficientStockError(product_id, available, product.get("title"))

            now = datetime.utcnow()
            for product_id, quantity in decrements:
                product = self.products[product_id]
                product["quantity"] = parse_quantity(product.get("quantity")) - quantity
                product["updated_at"] = now

            created = []
            for order in orders:
                doc = copy.deepcopy(order)
                doc["id"] = new_id()
                self.orders[doc["id"]] = doc
                created.append(copy.deepcopy(doc))
            return created

    async def get_order(self, order_id):
        doc = self.orders.get(order_id)
        return copy.deepcopy(doc) if doc else None

    async def find_orders(self, query, skip=0, limit=0):
        docs = [d for d in self.orders.values() if _matches(d, query)]
        docs.sort(key=lambda d: d.get("created_at") or datetime.min, reverse=True)
        docs = docs[skip:skip + limit] if limit else docs[skip:]
        return copy.deepcopy(docs)

    async def update_order(self, order_id, fields, expected_version=None):
        async with self._lock:
            doc = self.orders.get(order_id)
            if doc is None:
                return None
            if expected_version is not None and doc.get("version", 0) != expected_version:
                return None
            for key, value in fields.items():
                _set_path(doc, key, copy.deepcopy(value))
            doc["version"] = doc.get("version", 0) + 1
            return copy.deepcopy(doc)

    async def update_orders(self, query, fields):
        async with self._lock:
            count = 0
            for doc in self.orders.values():
                if _matches(doc, query):
                    for key, value in fields.items():
                        _set_path(doc, key, copy.deepcopy(value))
                    doc["version"] = doc.get("version", 0) + 1
                    count += 1
            return count


def create_store(backend: str = settings.STORE_BACKEND) -> DocumentStore:
    if backend == "memory":
        logger.warning("Using in-memory store; data is lost on restart")
        return MemoryStore()
    return MongoStore(get_db_client(), settings.MONGO_DB)

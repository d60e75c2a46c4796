"""
Persistence for products, discount codes and orders.

Every storage error surfaces as TransientFailure so the API can tell
"try again" apart from "fix your input".
"""

import functools
import logging
import re
from typing import Dict, Iterable, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from database import create_document, get_documents, utcnow
from discounts import generate_code, normalize_code
from schemas import (
    DiscountCode,
    DiscountCodeCreate,
    DiscountCodeUpdate,
    Order,
    Product,
    ProductOut,
    ProductUpdate,
    stock_status,
)

logger = logging.getLogger(__name__)

MAX_CODE_ATTEMPTS = 5


class TransientFailure(Exception):
    """The data store could not be reached or rejected the operation."""


class DuplicateCode(Exception):
    pass


def storage_call(func):
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except PyMongoError as e:
            if isinstance(e, DuplicateKeyError):
                raise
            logger.exception("Storage error in %s", func.__qualname__)
            raise TransientFailure(str(e)[:200]) from e
    return wrapper


def to_object_id(id_str: str) -> Optional[ObjectId]:
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        return None


class _Repository:
    collection_name: str

    def __init__(self, database) -> None:
        if database is None:
            raise TransientFailure("Database not initialized")
        self.database = database

    @property
    def collection(self):
        return self.database[self.collection_name]


# ---------------------- Products ----------------------
class ProductRepository(_Repository):
    collection_name = "product"

    @storage_call
    def list(self, category: Optional[str] = None, q: Optional[str] = None,
             discounted: Optional[bool] = None) -> List[ProductOut]:
        filter_q: dict = {}
        if category:
            filter_q["category"] = category
        if q:
            filter_q["name"] = {"$regex": re.escape(q), "$options": "i"}
        if discounted is True:
            filter_q["discount"] = {"$gt": 0}
        elif discounted is False:
            filter_q["$or"] = [{"discount": None}, {"discount": {"$lte": 0}}]
        docs = get_documents(self.collection_name, filter_q, sort=[("created_at", DESCENDING)],
                             database=self.database)
        return [ProductOut.from_document(d) for d in docs]

    @storage_call
    def get(self, product_id: str) -> Optional[ProductOut]:
        oid = to_object_id(product_id)
        if oid is None:
            return None
        doc = self.collection.find_one({"_id": oid})
        return ProductOut.from_document(doc) if doc else None

    @storage_call
    def get_many(self, product_ids: Iterable[str]) -> Dict[str, ProductOut]:
        oids = [oid for oid in (to_object_id(pid) for pid in product_ids) if oid is not None]
        if not oids:
            return {}
        products = [ProductOut.from_document(d) for d in self.collection.find({"_id": {"$in": oids}})]
        return {p.id: p for p in products}

    @storage_call
    def create(self, product: Product) -> ProductOut:
        product_id = create_document(self.collection_name, product, database=self.database)
        return ProductOut(**product.model_dump(), id=product_id, status=stock_status(product.stock))

    @storage_call
    def update(self, product_id: str, updates: ProductUpdate) -> Optional[ProductOut]:
        oid = to_object_id(product_id)
        if oid is None:
            return None
        changes = updates.model_dump(exclude_unset=True)
        changes["updated_at"] = utcnow()
        doc = self.collection.find_one_and_update(
            {"_id": oid}, {"$set": changes}, return_document=ReturnDocument.AFTER
        )
        return ProductOut.from_document(doc) if doc else None

    @storage_call
    def delete(self, product_id: str) -> bool:
        oid = to_object_id(product_id)
        if oid is None:
            return False
        return self.collection.delete_one({"_id": oid}).deleted_count == 1

    @storage_call
    def set_discount(self, product_ids: Iterable[str], percentage: float) -> int:
        """Write one sale percentage to every listed product in a single update. 0 clears it."""
        oids = [oid for oid in (to_object_id(pid) for pid in product_ids) if oid is not None]
        if not oids:
            return 0
        result = self.collection.update_many(
            {"_id": {"$in": oids}},
            {"$set": {"discount": percentage, "updated_at": utcnow()}},
        )
        logger.info("Set discount %s%% on %d/%d products", percentage, result.matched_count, len(oids))
        return result.matched_count

    def summary(self) -> dict:
        products = self.list()
        categories: Dict[str, int] = {}
        for p in products:
            categories[p.category] = categories.get(p.category, 0) + 1
        return {
            "product_count": len(products),
            "total_stock": sum(p.stock for p in products),
            "low_stock_count": sum(1 for p in products if p.status == "Low Stock"),
            "out_of_stock_count": sum(1 for p in products if p.status == "Out of Stock"),
            "discounted_count": sum(1 for p in products if (p.discount or 0) > 0),
            "categories": categories,
        }


# ---------------------- Discount codes ----------------------
class DiscountCodeRepository(_Repository):
    collection_name = "discount_code"

    @storage_call
    def ensure_indexes(self) -> None:
        self.collection.create_index("code", unique=True)

    @storage_call
    def list(self) -> List[DiscountCode]:
        docs = get_documents(self.collection_name, sort=[("created_at", DESCENDING)], database=self.database)
        return [DiscountCode.from_document(d) for d in docs]

    @storage_call
    def get(self, code_id: str) -> Optional[DiscountCode]:
        oid = to_object_id(code_id)
        if oid is None:
            return None
        doc = self.collection.find_one({"_id": oid})
        return DiscountCode.from_document(doc) if doc else None

    @storage_call
    def find_by_code(self, code: str) -> Optional[DiscountCode]:
        doc = self.collection.find_one({"code": normalize_code(code)})
        return DiscountCode.from_document(doc) if doc else None

    @storage_call
    def find_active(self, code: str) -> Optional[DiscountCode]:
        doc = self.collection.find_one({"code": normalize_code(code), "is_active": True})
        return DiscountCode.from_document(doc) if doc else None

    @storage_call
    def create(self, payload: DiscountCodeCreate) -> DiscountCode:
        """
        Insert a new code. A supplied code that already exists raises
        DuplicateCode; a generated one is simply drawn again.
        """
        attempts = 1 if payload.code else MAX_CODE_ATTEMPTS
        for _ in range(attempts):
            code = payload.code or generate_code()
            if self.find_by_code(code) is not None:
                if payload.code:
                    raise DuplicateCode(code)
                continue

            record = DiscountCode(
                code=code,
                discount_percentage=payload.discount_percentage,
                description=payload.description,
                max_uses=payload.max_uses,
                uses_count=0,
                is_active=True,
                expires_at=payload.expires_at,
                minimum_amount=payload.minimum_amount,
                applicable_products=payload.applicable_products,
                applicable_categories=payload.applicable_categories,
                created_by=payload.created_by,
                created_at=utcnow(),
            )
            try:
                code_id = create_document(self.collection_name, record.model_dump(exclude={"id"}),
                                          database=self.database)
            except DuplicateKeyError:
                if payload.code:
                    raise DuplicateCode(code)
                continue
            logger.info("Created discount code %s (%s%% off) by %s", code,
                        record.discount_percentage, record.created_by)
            return record.model_copy(update={"id": code_id})

        raise TransientFailure("Could not generate a unique discount code")

    @storage_call
    def update(self, code_id: str, updates: DiscountCodeUpdate) -> Optional[DiscountCode]:
        oid = to_object_id(code_id)
        if oid is None:
            return None
        changes = updates.model_dump(exclude_unset=True)
        changes["updated_at"] = utcnow()
        doc = self.collection.find_one_and_update(
            {"_id": oid}, {"$set": changes}, return_document=ReturnDocument.AFTER
        )
        return DiscountCode.from_document(doc) if doc else None

    @storage_call
    def soft_delete(self, code_id: str) -> bool:
        """Deactivate rather than remove, so usage history stays."""
        oid = to_object_id(code_id)
        if oid is None:
            return False
        result = self.collection.update_one(
            {"_id": oid}, {"$set": {"is_active": False, "updated_at": utcnow()}}
        )
        if result.matched_count:
            logger.info("Deactivated discount code %s", code_id)
        return result.matched_count == 1

    @storage_call
    def increment_usage(self, code_id: str) -> bool:
        """
        Count one redemption as a single conditional update.

        Capped codes only match while uses_count < max_uses, so two racing
        checkouts cannot both take the last use. Returns False when the cap
        was already reached (or the code is gone).
        """
        oid = to_object_id(code_id)
        if oid is None:
            return False
        current = self.collection.find_one({"_id": oid}, {"max_uses": 1})
        if current is None:
            return False

        filter_q: dict = {"_id": oid}
        max_uses = current.get("max_uses")
        if max_uses is not None:
            filter_q["max_uses"] = max_uses
            filter_q["uses_count"] = {"$lt": max_uses}

        doc = self.collection.find_one_and_update(
            filter_q,
            {"$inc": {"uses_count": 1}, "$set": {"updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            logger.warning("Usage cap reached for discount code %s", code_id)
            return False
        logger.info("Discount code %s used %s time(s)", doc.get("code"), doc.get("uses_count"))
        return True


# ---------------------- Orders ----------------------
class OrderRepository(_Repository):
    collection_name = "order"

    @storage_call
    def create(self, order: Order) -> str:
        order_id = create_document(self.collection_name, order, database=self.database)
        logger.info("Order %s created for user %s: total %s", order_id, order.user_id, order.total_amount)
        return order_id

    @storage_call
    def get(self, order_id: str) -> Optional[dict]:
        oid = to_object_id(order_id)
        if oid is None:
            return None
        doc = self.collection.find_one({"_id": oid})
        if not doc:
            return None
        doc["id"] = str(doc.pop("_id"))
        return doc

    @storage_call
    def set_status(self, order_id: str, status: str) -> bool:
        oid = to_object_id(order_id)
        if oid is None:
            return False
        result = self.collection.update_one({"_id": oid}, {"$set": {"status": status, "updated_at": utcnow()}})
        return result.matched_count == 1

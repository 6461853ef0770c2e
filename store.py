"""
Catalog / order storage.

Two interchangeable backends with the same surface:

- MongoStore: the production document store (pymongo).
- MemoryStore: process-local dictionaries, used for local runs and tests.

Inventory and order creation are the only operations that need atomicity;
both backends implement them as single conditional writes.
"""

from __future__ import annotations

import enum
import logging
import threading
import uuid
from copy import deepcopy
from typing import Any, Dict, List, Optional, Tuple

from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import create_document, get_documents, id_filter, to_str_id, utcnow
from schemas import UNLIMITED_INVENTORY, StoreSettings

logger = logging.getLogger(__name__)

SETTINGS_ID = "store"


class NotFound(Exception):
    pass


class InventoryOutcome(enum.Enum):
    APPLIED = "applied"
    UNLIMITED = "unlimited"
    INSUFFICIENT = "insufficient"
    MISSING = "missing"


class BaseStore:
    """Domain operations shared by both backends, built on the generic CRUD calls."""

    # generic CRUD, implemented per backend
    def insert(self, collection: str, data: dict) -> str:
        raise NotImplementedError

    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        raise NotImplementedError

    def find(self, collection: str, filters: Optional[dict] = None, newest_first: bool = False) -> List[dict]:
        raise NotImplementedError

    def update(self, collection: str, doc_id: str, fields: dict) -> Optional[dict]:
        raise NotImplementedError

    def delete(self, collection: str, doc_id: str) -> bool:
        raise NotImplementedError

    def count(self, collection: str) -> int:
        return len(self.find(collection))

    # atomic operations
    def create_order(self, order: dict) -> Tuple[str, bool]:
        """Insert `order` unless one exists for its payment session. Returns (order_id, created)."""
        raise NotImplementedError

    def decrement_inventory(self, product_id: str, quantity: int) -> InventoryOutcome:
        raise NotImplementedError

    def upsert(self, collection: str, doc_id: str, fields: dict) -> dict:
        raise NotImplementedError

    # products
    def get_product(self, product_id: str) -> Optional[dict]:
        return self.get("products", product_id)

    def list_products(self, active_only: bool = False) -> List[dict]:
        filters = {"is_active": True} if active_only else None
        return self.find("products", filters, newest_first=True)

    # orders
    def get_order(self, order_id: str) -> Optional[dict]:
        return self.get("orders", order_id)

    def get_order_by_session(self, session_id: str) -> Optional[dict]:
        found = self.find("orders", {"payment_session_id": session_id})
        return found[0] if found else None

    def list_orders(self, status: Optional[str] = None) -> List[dict]:
        filters = {"status": status} if status else None
        return self.find("orders", filters, newest_first=True)

    def update_order(self, order_id: str, fields: dict) -> dict:
        updated = self.update("orders", order_id, fields)
        if updated is None:
            raise NotFound(f"Order not found: {order_id}")
        return updated

    # settings
    def get_settings(self) -> StoreSettings:
        doc = self.get("settings", SETTINGS_ID)
        if not doc:
            return StoreSettings()
        return StoreSettings(**{k: v for k, v in doc.items() if k in StoreSettings.model_fields})

    def save_settings(self, settings: StoreSettings) -> StoreSettings:
        self.upsert("settings", SETTINGS_ID, settings.model_dump())
        return settings

    # subscribers
    def list_subscribers(self, sms_only: bool = False) -> List[dict]:
        filters: Dict[str, Any] = {"active": True}
        if sms_only:
            filters["sms_opt_in"] = True
        return self.find("subscribers", filters)

    # mail queue
    def enqueue_mail(self, message: dict) -> str:
        return self.insert("mail", message)

    def pending_mail(self) -> List[dict]:
        return self.find("mail", {"delivered": False})


class MongoStore(BaseStore):
    def __init__(self, database: Database):
        self.db = database

    def ensure_indexes(self) -> None:
        self.db["orders"].create_index("payment_session_id", unique=True)
        self.db["orders"].create_index([("created_at", DESCENDING)])

    def insert(self, collection: str, data: dict) -> str:
        return create_document(collection, data, database=self.db)

    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        return to_str_id(self.db[collection].find_one(id_filter(doc_id)))

    def find(self, collection: str, filters: Optional[dict] = None, newest_first: bool = False) -> List[dict]:
        sort = [("created_at", DESCENDING)] if newest_first else None
        docs = get_documents(collection, filters, sort=sort, database=self.db)
        return [to_str_id(d) for d in docs]

    def update(self, collection: str, doc_id: str, fields: dict) -> Optional[dict]:
        fields = dict(fields, updated_at=utcnow())
        doc = self.db[collection].find_one_and_update(
            id_filter(doc_id), {"$set": fields}, return_document=ReturnDocument.AFTER
        )
        return to_str_id(doc)

    def upsert(self, collection: str, doc_id: str, fields: dict) -> dict:
        now = utcnow()
        doc = self.db[collection].find_one_and_update(
            {"_id": doc_id},
            {"$set": dict(fields, updated_at=now), "$setOnInsert": {"created_at": now}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return to_str_id(doc)

    def delete(self, collection: str, doc_id: str) -> bool:
        return self.db[collection].delete_one(id_filter(doc_id)).deleted_count > 0

    def count(self, collection: str) -> int:
        return self.db[collection].count_documents({})

    def create_order(self, order: dict) -> Tuple[str, bool]:
        session_id = order["payment_session_id"]
        now = utcnow()
        doc = dict(order)
        # supplied by the equality match on upsert
        doc.pop("payment_session_id")
        doc["created_at"] = doc.get("created_at") or now
        doc["updated_at"] = now
        try:
            result = self.db["orders"].update_one(
                {"payment_session_id": session_id}, {"$setOnInsert": doc}, upsert=True
            )
        except DuplicateKeyError:
            # lost the race against a concurrent delivery of the same session
            logger.info("order for session %s inserted concurrently", session_id)
            result = None
        if result is not None and result.upserted_id is not None:
            return str(result.upserted_id), True
        existing = self.db["orders"].find_one({"payment_session_id": session_id}, {"_id": 1})
        return str(existing["_id"]), False

    def decrement_inventory(self, product_id: str, quantity: int) -> InventoryOutcome:
        match = dict(id_filter(product_id), inventory={"$gte": quantity})
        doc = self.db["products"].find_one_and_update(
            match,
            {"$inc": {"inventory": -quantity}, "$set": {"updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is not None:
            return InventoryOutcome.APPLIED
        return _classify_miss(self.get_product(product_id))


class MemoryStore(BaseStore):
    """
    In-memory store.

    Every call holds one lock, so each operation is atomic with respect to
    the others, matching the guarantees of the conditional writes in
    MongoStore.
    """

    def __init__(self) -> None:
        self._collections: Dict[str, Dict[str, dict]] = {}
        self._lock = threading.RLock()

    def _coll(self, collection: str) -> Dict[str, dict]:
        return self._collections.setdefault(collection, {})

    @staticmethod
    def _out(doc_id: str, doc: dict) -> dict:
        out = deepcopy(doc)
        out["id"] = doc_id
        return out

    def insert(self, collection: str, data: dict) -> str:
        doc = dict(data)
        doc.pop("id", None)
        doc_id = str(doc.pop("_id", None) or uuid.uuid4().hex)
        now = utcnow()
        doc["created_at"] = doc.get("created_at") or now
        doc["updated_at"] = now
        with self._lock:
            self._coll(collection)[doc_id] = deepcopy(doc)
        return doc_id

    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        with self._lock:
            doc = self._coll(collection).get(doc_id)
            return self._out(doc_id, doc) if doc is not None else None

    def find(self, collection: str, filters: Optional[dict] = None, newest_first: bool = False) -> List[dict]:
        filters = filters or {}
        with self._lock:
            found = [
                self._out(doc_id, doc)
                for doc_id, doc in self._coll(collection).items()
                if all(doc.get(k) == v for k, v in filters.items())
            ]
        if newest_first:
            found.sort(key=lambda d: d.get("created_at") or utcnow(), reverse=True)
        return found

    def update(self, collection: str, doc_id: str, fields: dict) -> Optional[dict]:
        with self._lock:
            doc = self._coll(collection).get(doc_id)
            if doc is None:
                return None
            doc.update(deepcopy(fields))
            doc["updated_at"] = utcnow()
            return self._out(doc_id, doc)

    def upsert(self, collection: str, doc_id: str, fields: dict) -> dict:
        with self._lock:
            coll = self._coll(collection)
            if doc_id not in coll:
                coll[doc_id] = {"created_at": utcnow()}
            return self.update(collection, doc_id, fields)

    def delete(self, collection: str, doc_id: str) -> bool:
        with self._lock:
            return self._coll(collection).pop(doc_id, None) is not None

    def create_order(self, order: dict) -> Tuple[str, bool]:
        session_id = order["payment_session_id"]
        with self._lock:
            for doc_id, doc in self._coll("orders").items():
                if doc.get("payment_session_id") == session_id:
                    return doc_id, False
            return self.insert("orders", order), True

    def decrement_inventory(self, product_id: str, quantity: int) -> InventoryOutcome:
        with self._lock:
            doc = self._coll("products").get(product_id)
            if doc is not None and doc.get("inventory", UNLIMITED_INVENTORY) >= quantity:
                doc["inventory"] -= quantity
                doc["updated_at"] = utcnow()
                return InventoryOutcome.APPLIED
            return _classify_miss(self.get_product(product_id))

    # Seed helpers (handy for tests and local runs)
    def add_product(self, product_id: str, **fields: Any) -> dict:
        fields.setdefault("is_active", True)
        fields.setdefault("images", [])
        fields.setdefault("inventory", UNLIMITED_INVENTORY)
        self.insert("products", dict(fields, _id=product_id))
        return self.get_product(product_id)


def _classify_miss(product: Optional[dict]) -> InventoryOutcome:
    if product is None:
        return InventoryOutcome.MISSING
    if product.get("inventory", UNLIMITED_INVENTORY) == UNLIMITED_INVENTORY:
        return InventoryOutcome.UNLIMITED
    return InventoryOutcome.INSUFFICIENT

"""
Admin operations over orders and the managed collections.

Order status is free-form among the five known statuses: admins may move an
order forwards or backwards. Saving tracking info marks the order shipped.
"""

import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from database import utcnow
from schemas import ADMIN_COLLECTIONS, ORDER_STATUSES, Product
from store import BaseStore, NotFound


class InvalidAdminRequest(Exception):
    pass


def slugify(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", name.strip().lower()).strip("-")


# ---------- Orders ----------

def _check_status(status: str) -> str:
    if status not in ORDER_STATUSES:
        raise InvalidAdminRequest(f"Unknown order status: {status}")
    return status


def list_orders(store: BaseStore, status: Optional[str] = None) -> List[dict]:
    if status in (None, "", "all"):
        return store.list_orders()
    return store.list_orders(_check_status(status))


def get_order(store: BaseStore, order_id: str) -> dict:
    order = store.get_order(order_id)
    if not order:
        raise NotFound(f"Order not found: {order_id}")
    return order


def update_order_status(store: BaseStore, order_id: str, status: str) -> dict:
    return store.update_order(order_id, {"status": _check_status(status)})


def save_tracking(store: BaseStore, order_id: str, tracking_number: str, carrier: str = "") -> dict:
    tracking_number = (tracking_number or "").strip()
    if not tracking_number:
        raise InvalidAdminRequest("Please enter a tracking number")
    return store.update_order(order_id, {
        "tracking_number": tracking_number,
        "tracking_carrier": carrier or "",
        "status": "shipped",
    })


def save_notes(store: BaseStore, order_id: str, notes: str) -> dict:
    return store.update_order(order_id, {"notes": (notes or "").strip()})


def dashboard_stats(store: BaseStore, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or utcnow()
    orders = store.list_orders()

    def in_month(order: dict) -> bool:
        created = order.get("created_at")
        return bool(created) and created.year == now.year and created.month == now.month

    this_month = [o for o in orders if in_month(o)]
    return {
        "total_revenue": sum(o.get("total") or 0 for o in orders if o.get("status") != "refunded"),
        "month_revenue": sum(o.get("total") or 0 for o in this_month if o.get("status") != "refunded"),
        "order_count": len(orders),
        "month_order_count": len(this_month),
        "product_count": store.count("products"),
        "recent_orders": orders[:10],
    }


# ---------- Managed collections ----------

def _collection(name: str):
    if name not in ADMIN_COLLECTIONS:
        raise NotFound(f"Unknown collection: {name}")
    return ADMIN_COLLECTIONS[name]


def _validate(name: str, data: dict) -> dict:
    model = _collection(name)
    data = {k: v for k, v in data.items() if k not in ("id", "_id", "created_at", "updated_at")}
    if model is None:
        return data
    try:
        clean = model(**data).model_dump()
    except ValidationError as e:
        raise InvalidAdminRequest(str(e.errors()[0].get("msg", "Invalid data")))
    if model is Product:
        clean["slug"] = clean.get("slug") or slugify(clean["name"])
    return clean


def list_items(store: BaseStore, name: str) -> List[dict]:
    _collection(name)
    return store.find(name, newest_first=True)


def create_item(store: BaseStore, name: str, data: dict) -> dict:
    doc_id = store.insert(name, _validate(name, data))
    return store.get(name, doc_id)


def update_item(store: BaseStore, name: str, doc_id: str, data: dict) -> dict:
    existing = store.get(name, doc_id) if name in ADMIN_COLLECTIONS else None
    if not existing:
        raise NotFound(f"Not found: {name}/{doc_id}")
    merged = dict(existing, **data)
    updated = store.update(name, doc_id, _validate(name, merged))
    if updated is None:
        raise NotFound(f"Not found: {name}/{doc_id}")
    return updated


def delete_item(store: BaseStore, name: str, doc_id: str) -> None:
    _collection(name)
    if not store.delete(name, doc_id):
        raise NotFound(f"Not found: {name}/{doc_id}")

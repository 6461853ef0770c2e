"""
Shopper cart, persisted locally.

The cart holds snapshots (name, price, category) taken when an item is
added; they may drift from the catalog and are re-validated server-side at
checkout. Every operation re-reads and rewrites the whole record, and an
unreadable record is treated as an empty cart.
"""

import json
import logging
import os
import tempfile
import time
from typing import Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

CART_KEY = "eb_cart"


class LocalStorage:
    """A tiny JSON-file key/value store, the local stand-in for browser storage."""

    def __init__(self, path: str):
        self.path = path

    def _read_all(self) -> Dict[str, str]:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except ValueError:
            logger.warning("local storage file %s is corrupt, discarding it", self.path)
            return {}
        return data if isinstance(data, dict) else {}

    def _write_all(self, data: Dict[str, str]) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f)
            os.replace(tmp, self.path)
        except BaseException:
            os.unlink(tmp)
            raise

    def get_item(self, key: str) -> Optional[str]:
        return self._read_all().get(key)

    def set_item(self, key: str, value: str) -> None:
        data = self._read_all()
        data[key] = value
        self._write_all(data)

    def remove_item(self, key: str) -> None:
        data = self._read_all()
        if data.pop(key, None) is not None:
            self._write_all(data)


def _empty() -> dict:
    return {"items": [], "updated_at": int(time.time() * 1000)}


def _valid_item(item) -> bool:
    return (
        isinstance(item, dict)
        and isinstance(item.get("product_id"), str)
        and isinstance(item.get("name"), str)
        and isinstance(item.get("price"), int)
        and isinstance(item.get("quantity"), int)
    )


class Cart:
    def __init__(
        self,
        storage: LocalStorage,
        key: str = CART_KEY,
        on_change: Optional[Callable[["Cart"], None]] = None,
        on_open: Optional[Callable[[], None]] = None,
    ):
        self.storage = storage
        self.key = key
        self.on_change = on_change
        self.on_open = on_open

    def get_cart(self) -> dict:
        try:
            raw = self.storage.get_item(self.key)
            if not raw:
                return _empty()
            cart = json.loads(raw)
            if not isinstance(cart, dict) or not isinstance(cart.get("items"), list):
                return _empty()
            if not all(_valid_item(i) for i in cart["items"]):
                return _empty()
            return cart
        except (OSError, TypeError, ValueError) as e:
            logger.warning("cart storage unreadable, starting over: %s", e)
            return _empty()

    def save_cart(self, cart: dict) -> None:
        cart["updated_at"] = int(time.time() * 1000)
        self.storage.set_item(self.key, json.dumps(cart))
        self._changed()

    def _changed(self) -> None:
        if self.on_change:
            self.on_change(self)

    @property
    def items(self) -> List[dict]:
        return self.get_cart()["items"]

    def add_item(self, product: dict, quantity: int = 1) -> None:
        if quantity < 1:
            raise ValueError("quantity must be >= 1")
        cart = self.get_cart()
        existing = next((i for i in cart["items"] if i["product_id"] == product["id"]), None)
        if existing:
            existing["quantity"] += quantity
        else:
            images = product.get("images") or []
            cart["items"].append({
                "product_id": product["id"],
                "name": product["name"],
                "price": product["price"],
                "quantity": quantity,
                "category": product.get("category", "physical"),
                "image": images[0] if images else "",
            })
        self.save_cart(cart)
        if self.on_open:
            self.on_open()

    def remove_item(self, product_id: str) -> None:
        cart = self.get_cart()
        cart["items"] = [i for i in cart["items"] if i["product_id"] != product_id]
        self.save_cart(cart)

    def update_quantity(self, product_id: str, quantity: int) -> None:
        cart = self.get_cart()
        item = next((i for i in cart["items"] if i["product_id"] == product_id), None)
        if not item:
            return
        if quantity <= 0:
            self.remove_item(product_id)
            return
        item["quantity"] = quantity
        self.save_cart(cart)

    def get_total(self) -> int:
        return sum(i["price"] * i["quantity"] for i in self.items)

    def get_count(self) -> int:
        return sum(i["quantity"] for i in self.items)

    def clear(self) -> None:
        self.storage.remove_item(self.key)
        self._changed()

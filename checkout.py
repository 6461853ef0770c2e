"""
Checkout session builder.

The only place where prices and availability are authoritative: every cart
line is re-read from the catalog, and the payment session is built from the
stored name and price, never from anything the client sent. Nothing is
written here.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from config import Settings
from payments import StripeGateway
from schemas import UNLIMITED_INVENTORY, OrderItem
from store import BaseStore

logger = logging.getLogger(__name__)

# Stripe rejects metadata values longer than this
MAX_METADATA_VALUE = 500
ORDER_ITEMS_METADATA_KEY = "order_items"


class CheckoutError(Exception):
    status_code = 400


class InvalidCheckoutRequest(CheckoutError):
    pass


class ProductUnavailable(CheckoutError):
    pass


class CheckoutItemIn(BaseModel):
    # unknown keys (a forged "price", say) are dropped
    model_config = ConfigDict(populate_by_name=True)

    product_id: str = Field(..., alias="productId", min_length=1)
    quantity: int = Field(..., ge=1)


@dataclass
class CheckoutRequest:
    items: List[CheckoutItemIn]
    success_url: str
    cancel_url: str


def parse_checkout_request(payload: Optional[Dict[str, Any]]) -> CheckoutRequest:
    payload = payload or {}
    raw_items = payload.get("items")
    if not raw_items or not isinstance(raw_items, list):
        raise InvalidCheckoutRequest("No items provided")

    success_url = payload.get("successUrl")
    cancel_url = payload.get("cancelUrl")
    if not success_url or not cancel_url:
        raise InvalidCheckoutRequest("Missing redirect URLs")

    try:
        items = [CheckoutItemIn.model_validate(raw) for raw in raw_items]
    except ValidationError:
        raise InvalidCheckoutRequest("Invalid item data")
    return CheckoutRequest(items=merge_items(items), success_url=success_url, cancel_url=cancel_url)


def merge_items(items: List[CheckoutItemIn]) -> List[CheckoutItemIn]:
    """Collapse repeated product ids into one line so stock is checked against the combined quantity."""
    merged: Dict[str, CheckoutItemIn] = {}
    for item in items:
        if item.product_id in merged:
            merged[item.product_id].quantity += item.quantity
        else:
            merged[item.product_id] = item.model_copy()
    return list(merged.values())


def validate_item(store: BaseStore, item: CheckoutItemIn) -> tuple:
    """Return (product, OrderItem) for a purchasable line, or raise ProductUnavailable."""
    product = store.get_product(item.product_id)
    if not product:
        raise ProductUnavailable(f"Product not found: {item.product_id}")

    name = product.get("name", "Product")
    if not product.get("is_active"):
        raise ProductUnavailable(f"{name} is no longer available")

    category = product.get("category", "physical")
    inventory = product.get("inventory", UNLIMITED_INVENTORY)
    if category == "physical" and inventory != UNLIMITED_INVENTORY and inventory < item.quantity:
        raise ProductUnavailable(f"{name} only has {inventory} left in stock")

    order_item = OrderItem(
        product_id=item.product_id,
        name=name,
        price=int(product.get("price") or 0),
        quantity=item.quantity,
        category=category,
    )
    return product, order_item


def to_line_item(product: dict, item: OrderItem, currency: str) -> dict:
    images = product.get("images") or []
    return {
        "price_data": {
            "currency": currency,
            "product_data": {
                "name": item.name,
                "images": images[:1],
                "metadata": {"product_id": item.product_id},
            },
            "unit_amount": item.price,
        },
        "quantity": item.quantity,
    }


def encode_order_items(items: List[OrderItem]) -> str:
    return json.dumps([i.model_dump() for i in items], separators=(",", ":"))


def build_session_params(
    req: CheckoutRequest,
    validated: List[tuple],
    settings: Settings,
    shipping_rate: int = 0,
    free_shipping_threshold: int = 0,
) -> Dict[str, Any]:
    order_items = [item for _, item in validated]
    metadata = encode_order_items(order_items)
    if len(metadata) > MAX_METADATA_VALUE:
        raise InvalidCheckoutRequest("Too many different items for a single checkout")

    params: Dict[str, Any] = {
        "payment_method_types": ["card"],
        "line_items": [to_line_item(p, i, settings.currency) for p, i in validated],
        "mode": "payment",
        "success_url": req.success_url,
        "cancel_url": req.cancel_url,
        "billing_address_collection": "required",
        "metadata": {ORDER_ITEMS_METADATA_KEY: metadata},
    }

    if any(i.category == "physical" for i in order_items):
        params["shipping_address_collection"] = {"allowed_countries": settings.shipping_countries}
        subtotal = sum(i.price * i.quantity for i in order_items)
        free = free_shipping_threshold > 0 and subtotal >= free_shipping_threshold
        if shipping_rate > 0 and not free:
            params["shipping_options"] = [{
                "shipping_rate_data": {
                    "type": "fixed_amount",
                    "fixed_amount": {"amount": shipping_rate, "currency": settings.currency},
                    "display_name": "Standard shipping",
                }
            }]
    return params


def create_checkout_session(
    payload: Optional[Dict[str, Any]],
    store: BaseStore,
    gateway: StripeGateway,
    settings: Settings,
) -> str:
    """Validate a checkout request against the catalog and return the payment session URL."""
    req = parse_checkout_request(payload)

    store_settings = store.get_settings()
    if not store_settings.store_enabled:
        raise ProductUnavailable("The store is currently closed")

    validated = [validate_item(store, item) for item in req.items]
    params = build_session_params(
        req,
        validated,
        settings,
        shipping_rate=store_settings.shipping_rate,
        free_shipping_threshold=store_settings.free_shipping_threshold,
    )
    url = gateway.create_session(params)
    logger.info("checkout session created for %d line(s)", len(validated))
    return url

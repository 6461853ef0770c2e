"""
Payment webhook reconciliation.

A verified `checkout.session.completed` event goes through:

    verified -> order created -> inventory applied -> notified

The order is created at most once per payment session. Once it exists, later
steps never undo it: a failed inventory decrement is logged for manual
reconciliation and a failed notification is logged and left in the mail
queue. Anything that fails before the order is stored propagates, so the
provider sees an error and redelivers the event.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import stripe

from checkout import ORDER_ITEMS_METADATA_KEY
from config import Settings
from downloads import create_download_token, download_url
from notifications import MailQueue, confirmation_email, downloads_email
from payments import StripeGateway
from schemas import Address, Order, OrderItem
from store import BaseStore, InventoryOutcome

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"
PAYMENT_FAILED = "payment_intent.payment_failed"


class WebhookSignatureError(Exception):
    pass


@dataclass
class ReconcileResult:
    event_type: str
    handled: bool = False
    order_id: Optional[str] = None
    created: bool = False
    inventory: Dict[str, InventoryOutcome] = field(default_factory=dict)
    failed_decrements: List[str] = field(default_factory=list)
    confirmation_queued: bool = False
    digital_delivered: bool = False


def _get(obj: Optional[dict], *path: str) -> Any:
    for key in path:
        if not isinstance(obj, dict):
            return None
        obj = obj.get(key)
    return obj


def order_from_session(session: Dict[str, Any]) -> Order:
    metadata = session.get("metadata") or {}
    raw_items = json.loads(metadata.get(ORDER_ITEMS_METADATA_KEY) or "[]")

    # Newer API versions nest shipping under collected_information
    shipping = session.get("shipping_details") or _get(session, "collected_information", "shipping_details") or {}
    address = shipping.get("address")

    return Order(
        payment_session_id=session["id"],
        payment_intent_id=session.get("payment_intent"),
        customer_email=_get(session, "customer_details", "email") or "",
        customer_name=_get(session, "customer_details", "name") or "",
        items=[OrderItem(**i) for i in raw_items],
        subtotal=session.get("amount_subtotal") or 0,
        shipping=_get(session, "total_details", "amount_shipping") or 0,
        total=session.get("amount_total") or 0,
        status="paid",
        shipping_address=Address(**address) if address else None,
        shipping_name=shipping.get("name"),
    )


class WebhookReconciler:
    def __init__(self, store: BaseStore, gateway: StripeGateway, settings: Settings,
                 mail_queue: Optional[MailQueue] = None):
        self.store = store
        self.gateway = gateway
        self.settings = settings
        self.mail_queue = mail_queue or MailQueue(store)

    def handle(self, payload: bytes, sig_header: Optional[str]) -> ReconcileResult:
        event = self.verify(payload, sig_header)
        return self.dispatch(event)

    def verify(self, payload: bytes, sig_header: Optional[str]) -> Dict[str, Any]:
        try:
            return self.gateway.construct_event(payload, sig_header)
        except stripe.SignatureVerificationError as e:
            logger.warning("webhook signature verification failed: %s", e)
            raise WebhookSignatureError(str(e))
        except ValueError as e:
            logger.warning("webhook payload is not valid JSON: %s", e)
            raise WebhookSignatureError("Invalid payload")

    def dispatch(self, event: Dict[str, Any]) -> ReconcileResult:
        event_type = event.get("type", "")
        obj = _get(event, "data", "object") or {}

        if event_type == CHECKOUT_COMPLETED:
            return self.complete_checkout(obj)

        if event_type == PAYMENT_FAILED:
            logger.error("payment failed: %s %s", obj.get("id"), _get(obj, "last_payment_error", "message"))
            return ReconcileResult(event_type, handled=True)

        logger.info("unhandled event type: %s", event_type)
        return ReconcileResult(event_type)

    def complete_checkout(self, session: Dict[str, Any]) -> ReconcileResult:
        result = ReconcileResult(CHECKOUT_COMPLETED, handled=True)
        order = order_from_session(session)

        order_id, created = self.store.create_order(order.model_dump())
        result.order_id = order_id
        result.created = created
        if not created:
            logger.info("[session=%s] duplicate delivery, order %s already exists", order.payment_session_id, order_id)
            return result
        logger.info("[session=%s] order created: %s", order.payment_session_id, order_id)

        self.apply_inventory(order_id, order.items, result)
        self.notify(order_id, order, result)
        return result

    def apply_inventory(self, order_id: str, items: List[OrderItem], result: ReconcileResult) -> None:
        for item in items:
            if item.category != "physical":
                continue
            try:
                outcome = self.store.decrement_inventory(item.product_id, item.quantity)
            except Exception:
                logger.exception("[order=%s] inventory decrement failed for %s", order_id, item.product_id)
                result.failed_decrements.append(item.product_id)
                continue

            result.inventory[item.product_id] = outcome
            if outcome in (InventoryOutcome.INSUFFICIENT, InventoryOutcome.MISSING):
                logger.error(
                    "[order=%s] inventory not applied for %s qty=%d (%s), needs manual reconciliation",
                    order_id, item.product_id, item.quantity, outcome.value,
                )
                result.failed_decrements.append(item.product_id)
            else:
                logger.info("[order=%s] inventory %s: %s qty=%d", order_id, outcome.value, item.product_id, item.quantity)

    def notify(self, order_id: str, order: Order, result: ReconcileResult) -> None:
        if not order.customer_email:
            logger.warning("[order=%s] no customer email, skipping notifications", order_id)
            return

        items = [i.model_dump() for i in order.items]
        try:
            subject, body = confirmation_email(order_id, order.customer_name, items, order.total,
                                               store_name=self.settings.mail_from_name)
            self.mail_queue.enqueue(order.customer_email, subject, body)
            result.confirmation_queued = True
        except Exception:
            logger.exception("[order=%s] could not queue confirmation mail", order_id)

        digital = [i for i in order.items if i.category == "digital"]
        if not digital:
            return
        try:
            links = self.download_links(order_id, digital)
            if not links:
                logger.warning("[order=%s] digital items without a file url", order_id)
                return
            subject, body = downloads_email(links, self.settings.download_link_ttl_hours,
                                            store_name=self.settings.mail_from_name)
            self.mail_queue.enqueue(order.customer_email, subject, body)
            self.store.update_order(order_id, {"digital_delivered": True})
            result.digital_delivered = True
        except Exception:
            logger.exception("[order=%s] digital delivery failed", order_id)

    def download_links(self, order_id: str, items: List[OrderItem]) -> List[tuple]:
        links = []
        for item in items:
            product = self.store.get_product(item.product_id)
            if not product or not product.get("digital_file_url"):
                continue
            token = create_download_token(
                item.product_id, order_id, self.settings.download_token_secret,
                ttl_hours=self.settings.download_link_ttl_hours,
            )
            links.append((item.name, download_url(self.settings.public_base_url, token)))
        return links

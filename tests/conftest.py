"""Pytest fixtures for the storefront backend (in-memory store, fake Stripe sessions, signed webhooks)."""

import hashlib
import hmac
import json
import time

import pytest

from config import Settings
from payments import StripeGateway
from store import MemoryStore

WEBHOOK_SECRET = "whsec_test_secret"
ADMIN_SECRET = "admin-test-secret"


class FakeGateway(StripeGateway):
    """Real webhook verification, recorded (not sent) session creation."""

    def __init__(self):
        super().__init__("sk_test_123", WEBHOOK_SECRET)
        self.sessions = []

    def create_session(self, params):
        self.sessions.append(params)
        return f"https://checkout.stripe.test/c/pay/cs_test_{len(self.sessions)}"


@pytest.fixture
def settings() -> Settings:
    return Settings(
        stripe_secret_key="sk_test_123",
        stripe_webhook_secret=WEBHOOK_SECRET,
        admin_jwt_secret=ADMIN_SECRET,
        admin_emails=["owner@ethereal-balance.com"],
        download_token_secret="download-test-secret",
        public_base_url="https://shop.test",
    )


@pytest.fixture
def store() -> MemoryStore:
    store = MemoryStore()

    store.add_product("candle", name="Lavender Candle", price=2400, category="physical", inventory=2,
                      images=["https://img.test/candle.jpg"])
    store.add_product("journal", name="Gratitude Journal", price=1800, category="physical", inventory=-1)
    store.add_product("guide", name="Breathwork Guide", price=999, category="digital",
                      digital_file_url="https://files.test/breathwork.pdf")
    store.add_product("session", name="Reiki Session", price=5000, category="service")
    store.add_product("retired", name="Sage Bundle", price=1200, category="physical", inventory=5,
                      is_active=False)

    return store


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def sign():
    def _sign(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp=None) -> str:
        ts = timestamp or int(time.time())
        signed = f"{ts}.{payload.decode('utf-8')}".encode("utf-8")
        signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
        return f"t={ts},v1={signature}"
    return _sign


@pytest.fixture
def completed_event():
    """Build a raw checkout.session.completed payload."""
    def _event(session_id: str, items, email: str = "ada@example.com", name: str = "Ada Lovelace",
               shipping: int = 0, event_id: str = None) -> bytes:
        subtotal = sum(i["price"] * i["quantity"] for i in items)
        session = {
            "id": session_id,
            "object": "checkout.session",
            "payment_intent": f"pi_{session_id}",
            "customer_details": {"email": email, "name": name},
            "amount_subtotal": subtotal,
            "amount_total": subtotal + shipping,
            "total_details": {"amount_shipping": shipping},
            "shipping_details": {
                "name": name,
                "address": {"line1": "1 Main St", "line2": None, "city": "Austin", "state": "TX",
                            "postal_code": "78701", "country": "US"},
            },
            "metadata": {"order_items": json.dumps(items)},
        }
        event = {
            "id": event_id or f"evt_{session_id}",
            "object": "event",
            "type": "checkout.session.completed",
            "data": {"object": session},
        }
        return json.dumps(event).encode("utf-8")
    return _event


def order_item(product_id: str, name: str, price: int, quantity: int, category: str = "physical") -> dict:
    return {"product_id": product_id, "name": name, "price": price, "quantity": quantity, "category": category}


@pytest.fixture
def item():
    return order_item

import json
from typing import Any, Dict, Optional

import stripe

SIGNATURE_HEADER = "stripe-signature"


class PaymentsNotConfigured(Exception):
    pass


class StripeGateway:
    """
    Thin wrapper over the Stripe SDK: Checkout Session creation and webhook
    signature verification.
    """

    def __init__(self, secret_key: Optional[str], webhook_secret: Optional[str] = None):
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret

    def create_session(self, params: Dict[str, Any]) -> str:
        if not self.secret_key:
            raise PaymentsNotConfigured("STRIPE_SECRET_KEY is not set")
        session = stripe.checkout.Session.create(api_key=self.secret_key, **params)
        return session.url

    def construct_event(self, payload: bytes, sig_header: Optional[str]) -> Dict[str, Any]:
        """
        Verify the signature over the raw body and return the event as plain
        dicts. Raises stripe.SignatureVerificationError when the signature
        (or the secret) does not match.
        """
        if not self.webhook_secret:
            raise PaymentsNotConfigured("STRIPE_WEBHOOK_SECRET is not set")
        if hasattr(payload, "decode"):
            payload = payload.decode("utf-8")
        stripe.WebhookSignature.verify_header(payload, sig_header or "", self.webhook_secret)
        return json.loads(payload)

import logging
import webbrowser
from typing import Callable, List, Mapping, Optional

import httpx

from cart import Cart

logger = logging.getLogger(__name__)

GENERIC_CHECKOUT_ERROR = "Something went wrong with checkout. Please try again."


class CheckoutFailed(Exception):
    pass


def _json_object(resp: httpx.Response) -> dict:
    """The response body as a dict; anything else (HTML, a list, garbage) reads as {}."""
    try:
        body = resp.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


class StorefrontClient:
    """HTTP client for the public storefront API."""

    def __init__(self, base_url: str, client: Optional[httpx.Client] = None):
        self.client = client or httpx.Client(base_url=base_url, timeout=30)

    def list_products(self) -> List[dict]:
        resp = self.client.get("/api/products")
        resp.raise_for_status()
        return resp.json().get("products", [])

    def get_product(self, product_id: str) -> dict:
        resp = self.client.get(f"/api/products/{product_id}")
        resp.raise_for_status()
        return resp.json()

    def create_checkout_session(self, items: List[dict], success_url: str, cancel_url: str) -> httpx.Response:
        return self.client.post(
            "/api/checkout/create-session",
            json={"items": items, "successUrl": success_url, "cancelUrl": cancel_url},
        )


class CheckoutInitiator:
    """
    Turns the current cart into a checkout request and sends the shopper to
    the returned payment page. A failure leaves the cart exactly as it was;
    the shopper retries by hand.
    """

    def __init__(self, cart: Cart, client: StorefrontClient,
                 navigate: Callable[[str], object] = webbrowser.open):
        self.cart = cart
        self.client = client
        self.navigate = navigate

    def initiate(self, shop_url: str) -> Optional[str]:
        items = self.cart.items
        if not items:
            return None

        payload = [{"productId": i["product_id"], "quantity": i["quantity"]} for i in items]
        success_url = f"{shop_url}?checkout=success"
        cancel_url = f"{shop_url}?checkout=cancelled#shop"
        try:
            resp = self.client.create_checkout_session(payload, success_url, cancel_url)
        except httpx.HTTPError as e:
            logger.error("checkout request failed: %s", e)
            raise CheckoutFailed(GENERIC_CHECKOUT_ERROR)

        body = _json_object(resp)
        if resp.is_error:
            message = body.get("error")
            raise CheckoutFailed(message if isinstance(message, str) and message else "Checkout failed")

        session_url = body.get("sessionUrl")
        if not isinstance(session_url, str) or not session_url:
            raise CheckoutFailed("No checkout URL received")
        self.navigate(session_url)
        return session_url

    def confirm_return(self, query: Mapping[str, str]) -> bool:
        """Clear the cart when the shopper comes back from a successful payment."""
        if query.get("checkout") == "success":
            self.cart.clear()
            return True
        return False

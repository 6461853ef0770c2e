"""Tests for the shopper-side checkout initiator."""
import json

import httpx
import pytest

from cart import Cart, LocalStorage
from shop_client import CheckoutFailed, CheckoutInitiator, StorefrontClient

CANDLE = {"id": "candle", "name": "Lavender Candle", "price": 2400, "category": "physical", "images": []}
SHOP = "https://shop.test/"


@pytest.fixture
def cart(tmp_path) -> Cart:
    return Cart(LocalStorage(str(tmp_path / "cart.json")))


def _client(handler) -> StorefrontClient:
    return StorefrontClient(SHOP, client=httpx.Client(base_url="https://api.test", transport=httpx.MockTransport(handler)))


def test_success_navigates_to_session_url(cart):
    cart.add_item(CANDLE, 2)
    seen, visited = [], []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        return httpx.Response(200, json={"sessionUrl": "https://checkout.stripe.test/cs_1"})

    url = CheckoutInitiator(cart, _client(handler), navigate=visited.append).initiate(SHOP)

    assert url == "https://checkout.stripe.test/cs_1"
    assert visited == [url]
    assert seen == [{
        "items": [{"productId": "candle", "quantity": 2}],
        "successUrl": "https://shop.test/?checkout=success",
        "cancelUrl": "https://shop.test/?checkout=cancelled#shop",
    }]


def test_request_never_carries_prices(cart):
    cart.add_item(CANDLE, 1)
    bodies = []

    def handler(request):
        bodies.append(request.content.decode())
        return httpx.Response(200, json={"sessionUrl": "https://checkout.stripe.test/cs_2"})

    CheckoutInitiator(cart, _client(handler), navigate=lambda u: None).initiate(SHOP)

    assert "price" not in bodies[0]


def test_empty_cart_is_noop(cart):
    def handler(request):
        raise AssertionError("no request expected")

    assert CheckoutInitiator(cart, _client(handler), navigate=lambda u: None).initiate(SHOP) is None


def test_server_error_message_surfaces_and_cart_untouched(cart):
    cart.add_item(CANDLE, 3)
    visited = []

    def handler(request):
        return httpx.Response(400, json={"error": "Lavender Candle only has 2 left in stock"})

    with pytest.raises(CheckoutFailed, match="only has 2 left"):
        CheckoutInitiator(cart, _client(handler), navigate=visited.append).initiate(SHOP)

    assert visited == []
    assert [(i["product_id"], i["quantity"]) for i in cart.items] == [("candle", 3)]


def test_error_without_body_uses_fallback(cart):
    cart.add_item(CANDLE, 1)

    with pytest.raises(CheckoutFailed, match="Checkout failed"):
        CheckoutInitiator(cart, _client(lambda r: httpx.Response(502, text="Bad gateway")),
                          navigate=lambda u: None).initiate(SHOP)


def test_missing_session_url(cart):
    cart.add_item(CANDLE, 1)

    with pytest.raises(CheckoutFailed, match="No checkout URL received"):
        CheckoutInitiator(cart, _client(lambda r: httpx.Response(200, json={})),
                          navigate=lambda u: None).initiate(SHOP)
    assert cart.get_count() == 1


def test_network_error_gives_generic_retry_prompt(cart):
    cart.add_item(CANDLE, 1)

    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(CheckoutFailed, match="Please try again"):
        CheckoutInitiator(cart, _client(handler), navigate=lambda u: None).initiate(SHOP)
    assert cart.get_count() == 1


def test_successful_return_clears_cart(cart):
    cart.add_item(CANDLE, 1)
    initiator = CheckoutInitiator(cart, _client(lambda r: httpx.Response(500)), navigate=lambda u: None)

    assert initiator.confirm_return({"checkout": "cancelled"}) is False
    assert cart.get_count() == 1
    assert initiator.confirm_return({"checkout": "success"}) is True
    assert cart.get_count() == 0


def test_list_products():
    client = _client(lambda r: httpx.Response(200, json={"products": [CANDLE]}))
    assert client.list_products() == [CANDLE]


@pytest.mark.parametrize("response, message", [
    (httpx.Response(200, text="<html>maintenance</html>"), "No checkout URL received"),
    (httpx.Response(200, json=["https://checkout.stripe.test/cs_3"]), "No checkout URL received"),
    (httpx.Response(200, json={"sessionUrl": 42}), "No checkout URL received"),
    (httpx.Response(502, json=["upstream"]), "Checkout failed"),
    (httpx.Response(500, text="<html>error</html>"), "Checkout failed"),
])
def test_malformed_reply_is_a_checkout_failure(cart, response, message):
    cart.add_item(CANDLE, 1)
    visited = []

    with pytest.raises(CheckoutFailed, match=message):
        CheckoutInitiator(cart, _client(lambda r: response), navigate=visited.append).initiate(SHOP)

    assert visited == []
    assert cart.get_count() == 1

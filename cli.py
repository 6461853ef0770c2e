import argparse
import logging
import os
import sys

from cart import Cart, LocalStorage
from notifications import format_money
from shop_client import CheckoutFailed, CheckoutInitiator, StorefrontClient


def print_cart(cart: Cart) -> None:
    items = cart.items
    if not items:
        print("Your bag is empty")
        return
    for item in items:
        print(f"{item['product_id']}  {item['name']} x{item['quantity']}  {format_money(item['price'] * item['quantity'])}")
    print(f"Subtotal: {format_money(cart.get_total())} ({cart.get_count()} items)")


def main(argv=None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(message)s")

    p = argparse.ArgumentParser(description="Storefront shopper CLI: browse, manage the cart and check out.")
    p.add_argument("--api", default=os.getenv("CHECKOUT_API_URL", "http://localhost:8000"))
    p.add_argument("--cart", default=os.getenv("CART_PATH", os.path.expanduser("~/.eb_cart.json")))
    sub = p.add_subparsers(dest="command", required=True)

    sub.add_parser("products", help="List products for sale")
    add = sub.add_parser("add", help="Add a product to the cart")
    add.add_argument("product_id")
    add.add_argument("--qty", type=int, default=1)
    qty = sub.add_parser("set-qty", help="Set a line's quantity (0 removes it)")
    qty.add_argument("product_id")
    qty.add_argument("qty", type=int)
    rm = sub.add_parser("remove", help="Remove a product from the cart")
    rm.add_argument("product_id")
    sub.add_parser("show", help="Show the cart")
    sub.add_parser("clear", help="Empty the cart")
    co = sub.add_parser("checkout", help="Start checkout and open the payment page")
    co.add_argument("--shop-url", default="https://ethereal-balance.com/")
    args = p.parse_args(argv)

    cart = Cart(LocalStorage(args.cart))
    client = StorefrontClient(args.api)

    if args.command == "products":
        for prod in client.list_products():
            print(f"{prod['id']}  {prod['name']}  {format_money(prod['price'])}  [{prod.get('category')}]")
    elif args.command == "add":
        cart.add_item(client.get_product(args.product_id), args.qty)
        print_cart(cart)
    elif args.command == "set-qty":
        cart.update_quantity(args.product_id, args.qty)
        print_cart(cart)
    elif args.command == "remove":
        cart.remove_item(args.product_id)
        print_cart(cart)
    elif args.command == "show":
        print_cart(cart)
    elif args.command == "clear":
        cart.clear()
        print_cart(cart)
    elif args.command == "checkout":
        try:
            url = CheckoutInitiator(cart, client, navigate=print).initiate(args.shop_url)
        except CheckoutFailed as e:
            print(f"Checkout failed: {e}", file=sys.stderr)
            return 1
        if url is None:
            print("Your bag is empty")
    return 0


if __name__ == "__main__":
    sys.exit(main())

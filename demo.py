#!/usr/bin/env python
# Walkthrough against a running server seeded with `python -m storefront.seed`.
import uuid
from sdk.storefront import StoreClient
from storefront.seed import ADMIN_EMAIL, ADMIN_PASSWORD


def main():
    admin = StoreClient(base_url="http://127.0.0.1:8085")
    shopper = StoreClient(base_url="http://127.0.0.1:8085")

    # -----------------------------
    # Admin adds a product
    # -----------------------------
    print("Logging in as admin...")
    admin.login(ADMIN_EMAIL, ADMIN_PASSWORD)
    headphones = admin.create_product("Studio Headphones", "Closed-back studio headphones", "199.99", 50,
                                      "Electronics")
    print(headphones)

    # -----------------------------
    # Shopper signs up and browses
    # -----------------------------
    email = f"shopper-{uuid.uuid4().hex[:8]}@example.com"
    print(f"\nRegistering {email}...")
    shopper.register("Demo Shopper", email, "secret123")

    print("\nSearching for 'headphones'...")
    print(shopper.list_products(search="headphones"))

    # -----------------------------
    # Place order (2 units)
    # -----------------------------
    print("\nPlacing order...")
    order = shopper.place_order([{"product_id": headphones["id"], "quantity": 2}], str(uuid.uuid4()))
    print(order)
    print("Stock after order:", shopper.get_product(headphones["id"])["stock"])

    # -----------------------------
    # Cancel it again
    # -----------------------------
    print("\nCancelling order...")
    print(shopper.cancel_order(order["id"]))
    print("Stock after cancel:", shopper.get_product(headphones["id"])["stock"])

    # -----------------------------
    # Admin view
    # -----------------------------
    print("\nAdmin dashboard...")
    print(admin.analytics())
    print("\nLow stock...")
    print(admin.low_stock())


if __name__ == "__main__":
    main()

# sdk/storefront.py
import requests
import uuid
import httpx
from decimal import Decimal
from typing import Optional, Dict, Any, List


class StoreClient:
    def __init__(self, base_url: str = "http://localhost:8085", token: Optional[str] = None, timeout: int = 10):
        self.base_url = base_url.rstrip("/")
        self.session = requests.Session()
        self.timeout = timeout
        self.token: Optional[str] = None
        self.user: Optional[Dict[str, Any]] = None
        if token:
            self.set_token(token)

    def set_token(self, token: Optional[str]):
        self.token = token
        if token:
            self.session.headers.update({"Authorization": f"Bearer {token}"})
        else:
            self.session.headers.pop("Authorization", None)

    def _make_idempotency_key(self, provided: Optional[str]) -> str:
        return provided if provided else uuid.uuid4().hex

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None):
        r = self.session.get(f"{self.base_url}{path}", params=params, timeout=self.timeout)
        r.raise_for_status()
        return r.json()

    def _send(self, method: str, path: str, json: Optional[Dict[str, Any]] = None,
              headers: Optional[Dict[str, str]] = None):
        r = self.session.request(method, f"{self.base_url}{path}", json=json, headers=headers,
                                 timeout=self.timeout)
        r.raise_for_status()
        return r.json()

    # Auth
    def register(self, name: str, email: str, password: str):
        body = self._send("POST", "/auth/register", {"name": name, "email": email, "password": password})
        self.set_token(body["token"])
        self.user = body["user"]
        return body

    def login(self, email: str, password: str):
        body = self._send("POST", "/auth/login", {"email": email, "password": password})
        self.set_token(body["token"])
        self.user = body["user"]
        return body

    def logout(self):
        self.set_token(None)
        self.user = None

    def profile(self):
        return self._get("/users/profile")["user"]

    def stats(self):
        return self._get("/users/stats")["stats"]

    # Products
    def list_products(self, page: int = 1, limit: int = 12, search: Optional[str] = None,
                      category: Optional[str] = None, min_price: Optional[Decimal] = None,
                      max_price: Optional[Decimal] = None):
        params: Dict[str, Any] = {"page": page, "limit": limit}
        if search:
            params["search"] = search
        if category:
            params["category"] = category
        if min_price is not None:
            params["min_price"] = str(min_price)
        if max_price is not None:
            params["max_price"] = str(max_price)
        return self._get("/products", params)

    def featured_products(self, limit: int = 8):
        return self._get("/products/featured/list", {"limit": limit})["products"]

    def get_product(self, product_id: int):
        return self._get(f"/products/{product_id}")["product"]

    def create_product(self, name: str, description: str, price: Decimal, stock: int,
                       category: Optional[str] = None, image_url: Optional[str] = None):
        payload = {"name": name, "description": description, "price": str(price), "stock": stock,
                   "category": category, "image_url": image_url}
        return self._send("POST", "/products", payload)["product"]

    def update_product(self, product_id: int, **changes):
        if "price" in changes and changes["price"] is not None:
            changes["price"] = str(changes["price"])
        return self._send("PUT", f"/products/{product_id}", changes)["product"]

    def delete_product(self, product_id: int):
        return self._send("DELETE", f"/products/{product_id}")

    # Orders
    def place_order(self, items: List[Dict[str, int]], idempotency_key: Optional[str] = None):
        """items: [{"product_id": .., "quantity": ..}, ...]"""
        key = self._make_idempotency_key(idempotency_key)
        return self._send("POST", "/orders", {"items": items}, headers={"Idempotency-Key": key})["order"]

    def place_order_raw(self, items: List[Dict[str, int]], idempotency_key: Optional[str] = None):
        # do not raise_for_status: callers may want to inspect 400/404
        key = self._make_idempotency_key(idempotency_key)
        return self.session.post(f"{self.base_url}/orders", json={"items": items},
                                 headers={"Idempotency-Key": key}, timeout=self.timeout)

    async def place_order_async(self, items: List[Dict[str, int]], idempotency_key: Optional[str] = None):
        key = self._make_idempotency_key(idempotency_key)
        headers = {"Idempotency-Key": key}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.post(f"{self.base_url}/orders", json={"items": items}, headers=headers)

    def list_orders(self, page: int = 1, limit: int = 10):
        return self._get("/orders", {"page": page, "limit": limit})

    def get_order(self, order_id: int):
        return self._get(f"/orders/{order_id}")["order"]

    def cancel_order(self, order_id: int):
        return self._send("DELETE", f"/orders/{order_id}")["order"]

    def update_order_status(self, order_id: int, status: str):
        return self._send("PUT", f"/orders/{order_id}/status", {"status": status})["order"]

    # Payments
    def create_payment_intent(self, order_id: int):
        return self._send("POST", "/payments/create-payment-intent", {"order_id": order_id})

    def confirm_payment(self, order_id: int, payment_intent_id: str):
        payload = {"order_id": order_id, "payment_intent_id": payment_intent_id}
        return self._send("POST", "/payments/confirm-payment", payload)["order"]

    def payment_history(self):
        return self._get("/payments/history")["orders"]

    # Admin
    def analytics(self):
        return self._get("/admin/analytics")["analytics"]

    def low_stock(self, threshold: Optional[int] = None):
        params = {"threshold": threshold} if threshold is not None else None
        return self._get("/admin/products/low-stock", params)["products"]

    def admin_orders(self, page: int = 1, limit: int = 20, status: Optional[str] = None):
        params: Dict[str, Any] = {"page": page, "limit": limit}
        if status:
            params["status"] = status
        return self._get("/admin/orders", params)

    def admin_users(self, page: int = 1, limit: int = 20, search: Optional[str] = None):
        params: Dict[str, Any] = {"page": page, "limit": limit}
        if search:
            params["search"] = search
        return self._get("/admin/users", params)

    def admin_set_status(self, order_id: int, status: str):
        return self._send("PUT", f"/admin/orders/{order_id}/status", {"status": status})["order"]

    def delete_user(self, user_id: int):
        return self._send("DELETE", f"/admin/users/{user_id}")


if __name__ == "__main__":
    import argparse
    from rich import print

    parser = argparse.ArgumentParser(description="storefront SDK")
    parser.add_argument("--base-url", default="http://127.0.0.1:8085")
    parser.add_argument("--email", help="Log in with this account first")
    parser.add_argument("--password")
    subparsers = parser.add_subparsers(dest="command", required=True)

    lp = subparsers.add_parser("list-products", help="List products")
    lp.add_argument("--search", help="Search name/description")
    lp.add_argument("--category", help="Filter products by category")
    lp.add_argument("--page", type=int, default=1)

    gp = subparsers.add_parser("get-product", help="Get a product by its ID")
    gp.add_argument("--product-id", type=int, required=True)

    po = subparsers.add_parser("place-order", help="Order one product")
    po.add_argument("--product-id", type=int, required=True)
    po.add_argument("--qty", type=int, default=1)

    subparsers.add_parser("list-orders", help="List your orders")

    co = subparsers.add_parser("cancel-order", help="Cancel a pending order")
    co.add_argument("--order-id", type=int, required=True)

    ls = subparsers.add_parser("low-stock", help="Admin: low stock products")
    ls.add_argument("--threshold", type=int)

    subparsers.add_parser("analytics", help="Admin: dashboard numbers")

    args = parser.parse_args()
    c = StoreClient(base_url=args.base_url)
    if args.email:
        c.login(args.email, args.password or "")

    if args.command == "list-products":
        print(c.list_products(page=args.page, search=args.search, category=args.category))
    elif args.command == "get-product":
        print(c.get_product(args.product_id))
    elif args.command == "place-order":
        print(c.place_order([{"product_id": args.product_id, "quantity": args.qty}]))
    elif args.command == "list-orders":
        print(c.list_orders())
    elif args.command == "cancel-order":
        print(c.cancel_order(args.order_id))
    elif args.command == "low-stock":
        print(c.low_stock(args.threshold))
    elif args.command == "analytics":
        print(c.analytics())

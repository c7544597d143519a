import asyncio
import uuid
from sdk.storefront import StoreClient
from storefront.seed import ADMIN_EMAIL, ADMIN_PASSWORD

BASE_URL = "http://127.0.0.1:8085"


async def simulate_purchase(client: StoreClient, product_id: int, qty: int):
    r = await client.place_order_async([{"product_id": product_id, "quantity": qty}])
    email = client.user["email"]
    if r.status_code == 201:
        order = r.json()["order"]
        print(f"✅ {email} bought {qty} unit(s) (Order #{order['id']}, Total: {order['total_amount']})")
    else:
        print(f"❌ {email} order failed ({r.status_code}): {r.json()}")


async def main():
    admin = StoreClient(base_url=BASE_URL)
    admin.login(ADMIN_EMAIL, ADMIN_PASSWORD)

    # the last unit: only one buyer can get it
    product = admin.create_product("Limited Edition Print", "Only one left", "89.99", 1, "Art")
    print(f"\n🖼️  Registered product: {product}")

    buyers = []
    for name in ("alice", "bob"):
        c = StoreClient(base_url=BASE_URL)
        c.register(name.title(), f"{name}-{uuid.uuid4().hex[:6]}@example.com", "secret123")
        buyers.append(c)

    print("\n⚡ Simulating concurrent purchases...")
    await asyncio.gather(*(simulate_purchase(b, product["id"], 1) for b in buyers))

    print("\n📦 Final product state:", admin.get_product(product["id"]))
    for b in buyers:
        print(f"🧾 {b.user['email']} orders:", b.list_orders()["orders"])


if __name__ == "__main__":
    asyncio.run(main())

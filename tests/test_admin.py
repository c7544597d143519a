# tests/test_admin.py
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from storefront import admin as reports
from storefront.errors import ValidationError
from tests.conftest import make_product


@pytest.fixture
def shop(client, db, alice, bob):
    """Three products and three orders, one of them cancelled."""
    p1 = make_product(db, "Keyboard", "10.00", 50)
    p2 = make_product(db, "Mouse", "5.00", 12)
    p3 = make_product(db, "Cable", "2.00", 3)

    def order(account, pid, qty):
        r = client.post("/orders", json={"items": [{"product_id": pid, "quantity": qty}]}, headers=account.headers)
        return r.json()["order"]["id"]

    order(alice, p1, 2)
    order(bob, p2, 1)
    cancelled = order(alice, p2, 3)
    client.delete(f"/orders/{cancelled}", headers=alice.headers)
    return {"keyboard": p1, "mouse": p2, "cable": p3, "cancelled": cancelled}


def test_admin_routes_require_admin(client, alice):
    assert client.get("/admin/analytics").status_code == 401
    r = client.get("/admin/analytics", headers=alice.headers)
    assert r.status_code == 403
    assert r.json()["message"] == "Access denied. Admin only."
    assert client.get("/admin/users", headers=alice.headers).status_code == 403


def test_analytics(client, admin, shop):
    data = client.get("/admin/analytics", headers=admin.headers).json()["analytics"]
    assert data["total_users"] == 3
    assert data["total_products"] == 3
    assert data["total_orders"] == 3
    assert data["pending_orders"] == 2
    # the cancelled order is not revenue
    assert Decimal(str(data["total_revenue"])) == Decimal("25.00")
    assert data["low_stock_products"] == 1

    top = data["top_products"]
    assert [p["name"] for p in top[:2]] == ["Mouse", "Keyboard"]
    assert top[0]["total_sold"] == 4
    assert top[-1]["total_sold"] == 0

    recent = data["recent_orders"]
    assert len(recent) == 3
    assert recent[0]["id"] == shop["cancelled"]
    assert recent[0]["user"]["email"] == "alice@example.com"

    assert len(data["monthly_revenue"]) == 1
    assert Decimal(str(data["monthly_revenue"][0]["revenue"])) == Decimal("25.00")


def test_monthly_revenue_window(session, shop):
    now = datetime.now(timezone.utc)
    rows = reports.monthly_revenue(session, now=now)
    assert rows == [{"month": rows[0]["month"], "revenue": Decimal("25.00")}]
    assert reports.monthly_revenue(session, months=1, now=now + timedelta(days=400)) == []


def test_total_revenue_empty(session):
    assert reports.total_revenue(session) == Decimal("0")


def test_low_stock(client, admin, shop):
    r = client.get("/admin/products/low-stock", headers=admin.headers)
    assert [p["name"] for p in r.json()["products"]] == ["Cable"]

    r = client.get("/admin/products/low-stock", params={"threshold": 48}, headers=admin.headers)
    assert [p["name"] for p in r.json()["products"]] == ["Cable", "Mouse", "Keyboard"]

    r = client.get("/admin/products/low-stock", params={"threshold": -1}, headers=admin.headers)
    assert r.status_code == 400
    assert r.json()["errors"][0]["field"] == "threshold"


def test_low_stock_rejects_negative_threshold(session):
    with pytest.raises(ValidationError):
        reports.low_stock_products(session, -5)


def test_admin_order_listing_and_filter(client, admin, shop):
    body = client.get("/admin/orders", headers=admin.headers).json()
    assert body["pagination"]["total"] == 3
    assert all("user" in o for o in body["orders"])

    body = client.get("/admin/orders", params={"status": "CANCELLED"}, headers=admin.headers).json()
    assert [o["id"] for o in body["orders"]] == [shop["cancelled"]]

    assert client.get("/admin/orders", params={"status": "LOST"}, headers=admin.headers).status_code == 400


def test_admin_sets_order_status(client, admin, alice, shop):
    body = client.get("/admin/orders", params={"status": "PENDING"}, headers=admin.headers).json()
    order_id = body["orders"][0]["id"]

    r = client.put(f"/admin/orders/{order_id}/status", json={"status": "SHIPPED"}, headers=admin.headers)
    assert r.status_code == 200
    assert r.json()["order"]["status"] == "SHIPPED"

    r = client.put(f"/admin/orders/{order_id}/status", json={"status": "DELIVERED"}, headers=alice.headers)
    assert r.status_code == 403


def test_user_listing_and_search(client, admin, shop):
    body = client.get("/admin/users", headers=admin.headers).json()
    assert body["pagination"]["total"] == 3
    counts = {u["email"]: u["order_count"] for u in body["users"]}
    assert counts == {"admin@example.com": 0, "alice@example.com": 2, "bob@example.com": 1}
    assert all("password_hash" not in u for u in body["users"])

    body = client.get("/admin/users", params={"search": "ALI"}, headers=admin.headers).json()
    assert [u["email"] for u in body["users"]] == ["alice@example.com"]

    # LIKE wildcards in the search term match only themselves
    for term in ("%", "_", "a_i"):
        body = client.get("/admin/users", params={"search": term}, headers=admin.headers).json()
        assert body["users"] == []


def test_delete_user_rules(client, db, admin, alice, bob):
    pid = make_product(db)
    client.post("/orders", json={"items": [{"product_id": pid, "quantity": 1}]}, headers=alice.headers)

    r = client.delete(f"/admin/users/{admin.identity.user_id}", headers=admin.headers)
    assert r.status_code == 400
    assert r.json()["message"] == "Cannot delete your own account"

    r = client.delete(f"/admin/users/{alice.identity.user_id}", headers=admin.headers)
    assert r.status_code == 400
    assert r.json()["message"] == "Cannot delete user with existing orders"

    assert client.delete("/admin/users/999", headers=admin.headers).status_code == 404

    r = client.delete(f"/admin/users/{bob.identity.user_id}", headers=admin.headers)
    assert r.status_code == 200
    # bob's tokens went with him
    assert client.get("/users/profile", headers=bob.headers).status_code == 401

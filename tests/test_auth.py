# tests/test_auth.py
from decimal import Decimal

import pytest

from storefront.auth import Identity, can_access, ensure_owner, hash_password, hash_token, verify_password
from storefront.errors import Forbidden, NotFound
from storefront.models import ApiToken, Product, Role, User
from storefront.seed import ADMIN_EMAIL, SAMPLE_PRODUCTS, create_sample_data
from tests.conftest import PASSWORD, make_product


def register(client, email="carol@example.com", password="secret123", name="Carol"):
    return client.post("/auth/register", json={"name": name, "email": email, "password": password})


def test_register_and_use_token(client):
    r = register(client)
    assert r.status_code == 201
    body = r.json()
    assert body["user"]["email"] == "carol@example.com"
    assert body["user"]["role"] == "USER"
    assert "password_hash" not in body["user"]
    assert body["token"].startswith("sf_")

    profile = client.get("/users/profile", headers={"Authorization": f"Bearer {body['token']}"}).json()
    assert profile["user"]["name"] == "Carol"
    assert profile["user"]["order_count"] == 0


def test_register_rejects_duplicates_case_insensitively(client):
    register(client)
    r = register(client, email="Carol@Example.com")
    assert r.status_code == 400
    assert r.json()["message"] == "User already exists"


def test_register_validation(client):
    r = register(client, email="not-an-email", password="123")
    assert r.status_code == 400
    assert {e["field"] for e in r.json()["errors"]} == {"email", "password"}


def test_login(client, alice):
    r = client.post("/auth/login", json={"email": "ALICE@example.com", "password": PASSWORD})
    assert r.status_code == 200
    token = r.json()["token"]
    assert token != alice.token
    # both tokens stay valid
    for t in (token, alice.token):
        assert client.get("/users/profile", headers={"Authorization": f"Bearer {t}"}).status_code == 200


def test_login_failures_look_the_same(client, alice):
    wrong = client.post("/auth/login", json={"email": alice.email, "password": "nope"})
    unknown = client.post("/auth/login", json={"email": "ghost@example.com", "password": "nope"})
    assert wrong.status_code == unknown.status_code == 401
    assert wrong.json() == unknown.json() == {"message": "Invalid credentials"}


def test_bad_tokens(client):
    r = client.get("/users/profile")
    assert r.status_code == 401
    assert r.json()["message"] == "No token, authorization denied"

    r = client.get("/users/profile", headers={"Authorization": "Bearer sf_forged"})
    assert r.json()["message"] == "Token is not valid"

    assert client.get("/users/profile", headers={"Authorization": "Basic abc"}).status_code == 401


def test_only_token_hashes_are_stored(db, alice):
    with db.session() as s:
        stored = [t.token_hash for t in s.query(ApiToken).all()]
    assert alice.token not in stored
    assert hash_token(alice.token) in stored


def test_stats(client, db, alice):
    pid = make_product(db, "Book", "12.50", 10)
    ids = []
    for qty in (1, 2, 3):
        r = client.post("/orders", json={"items": [{"product_id": pid, "quantity": qty}]}, headers=alice.headers)
        ids.append(r.json()["order"]["id"])
    client.delete(f"/orders/{ids[0]}", headers=alice.headers)

    stats = client.get("/users/stats", headers=alice.headers).json()["stats"]
    assert stats["total_orders"] == 3
    assert stats["pending_orders"] == 2
    assert Decimal(str(stats["total_spent"])) == Decimal("62.50")
    assert [o["id"] for o in stats["recent_orders"]] == list(reversed(ids))


def test_password_hashing():
    stored = hash_password("hunter22", rounds=4)
    assert stored.startswith("$2b$04$")
    assert verify_password("hunter22", stored)
    assert not verify_password("hunter23", stored)
    assert not verify_password("hunter22", "garbage")
    assert hash_password("hunter22", rounds=4) != stored


def test_ownership_predicates():
    owner = Identity(user_id=1, role=Role.USER)
    other = Identity(user_id=2, role=Role.USER)
    admin = Identity(user_id=3, role=Role.ADMIN)

    assert can_access(1, owner)
    assert not can_access(1, other)
    assert can_access(1, admin)
    assert not can_access(1, admin, allow_admin=False)

    ensure_owner(1, owner)
    with pytest.raises(Forbidden):
        ensure_owner(1, other)
    with pytest.raises(NotFound):
        ensure_owner(1, other, error=NotFound("Order not found"))


def test_seed_is_idempotent(db, settings, client):
    assert create_sample_data(db, settings) is True
    assert create_sample_data(db, settings) is False

    with db.session() as s:
        assert s.query(User).filter_by(email=ADMIN_EMAIL).one().role == Role.ADMIN
        assert s.query(Product).count() == len(SAMPLE_PRODUCTS)

    r = client.post("/auth/login", json={"email": ADMIN_EMAIL, "password": "password"})
    assert r.json()["user"]["role"] == "ADMIN"

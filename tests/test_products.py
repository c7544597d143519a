# tests/test_products.py
from decimal import Decimal

from fastapi.testclient import TestClient

from tests.conftest import make_product, stock_of

NEW_PRODUCT = {
    "name": "Coffee Maker",
    "description": "Automatic coffee maker with programmable settings",
    "price": "89.99",
    "stock": 25,
    "category": "Home & Kitchen",
}


def test_health(client):
    assert client.get("/health").json() == {"status": "OK"}


def test_list_products_newest_first(client, db):
    ids = [make_product(db, f"Item {i}") for i in range(3)]
    body = client.get("/products").json()
    assert [p["id"] for p in body["products"]] == list(reversed(ids))
    assert body["pagination"] == {"current_page": 1, "total_pages": 1, "total": 3,
                                  "has_next": False, "has_prev": False}


def test_pagination(client, db):
    for i in range(5):
        make_product(db, f"Item {i}")
    body = client.get("/products", params={"page": 2, "limit": 2}).json()
    assert len(body["products"]) == 2
    assert body["pagination"]["total_pages"] == 3
    assert body["pagination"]["has_next"] is True
    assert body["pagination"]["has_prev"] is True

    assert client.get("/products", params={"limit": 101}).status_code == 400
    assert client.get("/products", params={"page": 0}).status_code == 400


def test_search_and_filters(client, db):
    make_product(db, "Wireless Headphones", "199.99", category="Electronics")
    make_product(db, "Smart Watch", "299.99", category="Electronics")
    make_product(db, "Coffee Maker", "89.99", category="Home & Kitchen")

    names = lambda r: sorted(p["name"] for p in r.json()["products"])  # noqa: E731
    assert names(client.get("/products", params={"search": "HEADPHONES"})) == ["Wireless Headphones"]
    # description matches too
    assert names(client.get("/products", params={"search": "watch desc"})) == ["Smart Watch"]
    assert names(client.get("/products", params={"category": "Electronics"})) == ["Smart Watch",
                                                                                 "Wireless Headphones"]
    assert names(client.get("/products", params={"min_price": "100", "max_price": "250"})) == \
        ["Wireless Headphones"]
    assert client.get("/products", params={"min_price": "-1"}).status_code == 400


def test_get_product(client, db):
    pid = make_product(db, "Lamp", "19.50", 4)
    p = client.get(f"/products/{pid}").json()["product"]
    assert p["name"] == "Lamp"
    assert Decimal(str(p["price"])) == Decimal("19.50")
    assert p["stock"] == 4

    r = client.get("/products/999")
    assert r.status_code == 404
    assert r.json() == {"message": "Product not found"}


def test_create_product_is_admin_only(client, admin, alice):
    assert client.post("/products", json=NEW_PRODUCT).status_code == 401
    assert client.post("/products", json=NEW_PRODUCT, headers=alice.headers).status_code == 403

    r = client.post("/products", json=NEW_PRODUCT, headers=admin.headers)
    assert r.status_code == 201
    product = r.json()["product"]
    assert product["name"] == "Coffee Maker"
    assert Decimal(str(product["price"])) == Decimal("89.99")
    assert product["image_url"] is None


def test_create_product_validation(client, admin):
    bad = dict(NEW_PRODUCT, price="-1", stock=-3, name="   ")
    r = client.post("/products", json=bad, headers=admin.headers)
    assert r.status_code == 400
    fields = {e["field"] for e in r.json()["errors"]}
    assert fields == {"name", "price", "stock"}

    r = client.post("/products", json={"name": "x"}, headers=admin.headers)
    assert r.status_code == 400


def test_update_product(client, db, admin):
    pid = make_product(db, "Lamp", "19.50", 4, category="Home")

    r = client.put(f"/products/{pid}", json={"stock": 0, "category": None}, headers=admin.headers)
    assert r.status_code == 200
    product = r.json()["product"]
    assert product["stock"] == 0
    assert product["category"] is None
    assert product["name"] == "Lamp"

    # explicit null for a required column leaves it alone
    r = client.put(f"/products/{pid}", json={"name": None, "price": "21.00"}, headers=admin.headers)
    assert r.json()["product"]["name"] == "Lamp"
    assert Decimal(str(r.json()["product"]["price"])) == Decimal("21.00")

    assert client.put("/products/999", json={"stock": 1}, headers=admin.headers).status_code == 404
    assert client.put(f"/products/{pid}", json={"stock": -1}, headers=admin.headers).status_code == 400


def test_delete_product(client, db, admin, alice):
    unused = make_product(db, "Unused")
    ordered = make_product(db, "Ordered")
    client.post("/orders", json={"items": [{"product_id": ordered, "quantity": 1}]}, headers=alice.headers)

    assert client.delete(f"/products/{unused}", headers=alice.headers).status_code == 403
    assert client.delete(f"/products/{unused}", headers=admin.headers).status_code == 200
    assert client.get(f"/products/{unused}").status_code == 404

    r = client.delete(f"/products/{ordered}", headers=admin.headers)
    assert r.status_code == 400
    assert "setting stock to 0" in r.json()["message"]
    assert stock_of(db, ordered) == 9


def test_featured_products(client, db, alice):
    popular = make_product(db, "Popular", stock=5)
    steady = make_product(db, "Steady", stock=5)
    last_one = make_product(db, "Last One", stock=1)
    unsold = make_product(db, "Unsold", stock=5)
    for pid in (popular, popular, steady, last_one):
        r = client.post("/orders", json={"items": [{"product_id": pid, "quantity": 1}]}, headers=alice.headers)
        assert r.status_code == 201

    r = client.get("/products/featured/list")
    assert r.status_code == 200
    # sold out products drop out even when they sell well
    assert [p["id"] for p in r.json()["products"]] == [popular, steady, unsold]

    r = client.get("/products/featured/list", params={"limit": 1})
    assert [p["name"] for p in r.json()["products"]] == ["Popular"]
    assert client.get("/products/featured/list", params={"limit": 0}).status_code == 400


def test_search_treats_wildcards_literally(client, db):
    make_product(db, "Cable 100% copper")
    make_product(db, "Cable_USB")
    make_product(db, "Plain Cable")

    names = lambda r: sorted(p["name"] for p in r.json()["products"])  # noqa: E731
    assert names(client.get("/products", params={"search": "%"})) == ["Cable 100% copper"]
    assert names(client.get("/products", params={"search": "_"})) == ["Cable_USB"]
    assert names(client.get("/products", params={"search": "e_u"})) == ["Cable_USB"]
    assert client.get("/products", params={"search": "\\"}).json()["pagination"]["total"] == 0


def test_app_is_built_by_the_server_not_at_import(monkeypatch, tmp_path):
    import uvicorn

    import storefront.main as main
    from storefront.payments import StripeGateway

    assert not hasattr(main, "app")

    seen = {}
    monkeypatch.setattr(uvicorn, "run", lambda target, **kwargs: seen.update(kwargs, target=target))
    main.run()
    assert seen["target"] == "storefront.main:create_app"
    assert seen["factory"] is True

    # what uvicorn's factory call does: everything comes from the environment
    monkeypatch.setenv("STOREFRONT_DATABASE_URL", f"sqlite:///{tmp_path / 'env.db'}")
    monkeypatch.setenv("STOREFRONT_STRIPE_SECRET_KEY", "sk_test_env")
    monkeypatch.setenv("STOREFRONT_LOG_LEVEL", "WARNING")
    app = main.create_app()
    assert isinstance(app.state.gateway, StripeGateway)
    with TestClient(app) as c:
        assert c.get("/health").json() == {"status": "OK"}

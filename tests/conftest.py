# tests/conftest.py
import hashlib
import hmac
import time
from collections import namedtuple
from decimal import Decimal
from typing import Dict

import pytest
from fastapi.testclient import TestClient

from storefront.auth import Identity, issue_token
from storefront.database import Database
from storefront.errors import GatewayError
from storefront.main import create_app
from storefront.models import Product, Role
from storefront.payments import PaymentIntent
from storefront.settings import Settings
from storefront.users import create_user

WEBHOOK_SECRET = "whsec_test_secret"
PASSWORD = "secret123"

Account = namedtuple("Account", "identity token headers email")


def sign_payload(payload: bytes, secret: str, timestamp=None) -> str:
    """Signature header the way the gateway builds it: t=<unix time>,v1=<hmac-sha256 hex>."""
    ts = int(time.time()) if timestamp is None else timestamp
    signed = f"{ts}.".encode() + payload
    return f"t={ts},v1={hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()}"


class FakeGateway:
    """In-memory stand-in for the payment gateway."""

    def __init__(self):
        self.intents: Dict[str, PaymentIntent] = {}

    def create_payment_intent(self, amount_cents, currency, metadata):
        intent_id = f"pi_test_{len(self.intents) + 1}"
        intent = PaymentIntent(id=intent_id, status="requires_payment_method", amount=amount_cents,
                               currency=currency, client_secret=f"{intent_id}_secret", metadata=metadata)
        self.intents[intent_id] = intent
        return intent

    def retrieve_payment_intent(self, intent_id):
        if intent_id not in self.intents:
            raise GatewayError(f"No such payment_intent: {intent_id}")
        return self.intents[intent_id]

    def succeed(self, intent_id):
        self.intents[intent_id] = self.intents[intent_id].model_copy(update={"status": "succeeded"})


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'store.db'}",
        stripe_webhook_secret=WEBHOOK_SECRET,
        bcrypt_rounds=4,
        log_level="WARNING",
    )


@pytest.fixture
def db(settings):
    database = Database(settings.database_url)
    database.create_all()
    yield database
    database.dispose()


@pytest.fixture
def session(db):
    with db.session() as s:
        yield s


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def client(settings, db, gateway):
    app = create_app(settings, gateway=gateway, database=db)
    with TestClient(app) as c:
        yield c


def make_account(db, email, role=Role.USER, name="Test User") -> Account:
    with db.session() as s, s.begin():
        user = create_user(s, name, email, PASSWORD, role=role, rounds=4)
        token = issue_token(s, user)
        identity = Identity(user_id=user.id, role=user.role)
    return Account(identity, token, {"Authorization": f"Bearer {token}"}, email)


def make_product(db, name="Widget", price="10.00", stock=10, category="general") -> int:
    with db.session() as s, s.begin():
        p = Product(name=name, description=f"{name} description", price=Decimal(price), stock=stock,
                    category=category)
        s.add(p)
        s.flush()
        return p.id


def stock_of(db, product_id) -> int:
    with db.session() as s:
        return s.get(Product, product_id).stock


@pytest.fixture
def admin(db):
    return make_account(db, "admin@example.com", Role.ADMIN, name="Admin User")


@pytest.fixture
def alice(db):
    return make_account(db, "alice@example.com", name="Alice")


@pytest.fixture
def bob(db):
    return make_account(db, "bob@example.com", name="Bob")

"""Pytest fixtures for the store tests."""

import itertools
import json

import mongomock
import pytest
from fastapi.testclient import TestClient

from auth import create_access_token, get_password_hash, user_out
from catalog import slugify
from database import create_document, ensure_indexes, get_db
from errors import ValidationFailed
from main import app
from payments import PaymentIntent, get_gateway
from schemas import OrderCreate

PASSWORD = "secret123"
PASSWORD_HASH = get_password_hash(PASSWORD)

ADDRESS = {
    "full_name": "Amina Khan",
    "street": "12 Perfume Lane",
    "city": "Lucknow",
    "state": "UP",
    "country": "India",
    "zip_code": "226001",
    "phone": "+911234567890",
}


class FakeGateway:
    """Stands in for Stripe: hands out predictable intents and trusts the signature "valid"."""

    configured = True

    def __init__(self):
        self.intents = []

    def create_intent(self, amount_cents, metadata, idempotency_key):
        n = len(self.intents) + 1
        intent = PaymentIntent(f"pi_test_{n}", f"pi_test_{n}_secret", amount_cents, "usd")
        self.intents.append({"intent": intent, "metadata": metadata, "idempotency_key": idempotency_key})
        return intent

    def parse_event(self, payload, signature):
        if signature != "valid":
            raise ValidationFailed("Invalid webhook signature")
        return json.loads(payload)


@pytest.fixture
def db():
    """A fresh in-memory database with the production indexes."""
    database = mongomock.MongoClient().attar_test
    ensure_indexes(database)
    return database


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def client(db, gateway):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_gateway] = lambda: gateway
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    counter = itertools.count(1)

    def _make(name=None, email=None, role="user", is_active=True):
        n = next(counter)
        doc = create_document(db, "user", {
            "name": name or f"Customer {n}",
            "email": email or f"customer{n}@example.com",
            "password_hash": PASSWORD_HASH,
            "phone": None,
            "avatar": None,
            "role": role,
            "is_active": is_active,
            "last_login": None,
        })
        return user_out(doc)

    return _make


@pytest.fixture
def customer(make_user):
    return make_user("Amina Khan", "amina@example.com")


@pytest.fixture
def admin(make_user):
    return make_user("Store Admin", "admin@example.com", role="admin")


@pytest.fixture
def auth_headers():
    def _headers(user):
        return {"Authorization": f"Bearer {create_access_token({'sub': user.id})}"}

    return _headers


@pytest.fixture
def make_product(db):
    """Insert a product straight into the store; 3ml at 40.00 (10 left) and 6ml at 75.00 (5 left) by default."""
    counter = itertools.count(1)

    def _make(name=None, sizes=None, category="Oud & Agarwood", is_active=True, **extra):
        n = next(counter)
        name = name or f"Test Attar {n}"
        doc = {
            "name": name,
            "slug": slugify(name),
            "description": "A test attar distilled in Kannauj.",
            "short_description": None,
            "category": category,
            "origin": "Kannauj, India",
            "sizes": sizes or [
                {"volume": "3ml", "price": 40.0, "stock": 10, "sku": f"TA{n}-3"},
                {"volume": "6ml", "price": 75.0, "stock": 5, "sku": f"TA{n}-6"},
            ],
            "images": [{"url": f"/img/attar-{n}.jpg", "alt": name, "is_primary": True}],
            "tags": ["oud", "woody"],
            "badge": None,
            "gender": "Unisex",
            "is_featured": False,
            "is_active": is_active,
            "ratings": {"average": 0.0, "count": 0},
        }
        doc.update(extra)
        return create_document(db, "product", doc)

    return _make


@pytest.fixture
def stock_of(db):
    def _stock(product, volume):
        doc = db["product"].find_one({"_id": product["_id"]})
        return next(size["stock"] for size in doc["sizes"] if size["volume"] == volume)

    return _stock


@pytest.fixture
def order_request():
    def _request(*lines, coupon=None, method="stripe"):
        """Each line is ``(product, size, quantity)``."""
        return OrderCreate(
            items=[{"product_id": str(p["_id"]), "size": size, "quantity": qty} for p, size, qty in lines],
            shipping_address=ADDRESS,
            payment={"method": method},
            coupon=coupon,
        )

    return _request

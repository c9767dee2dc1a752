import uuid
from types import SimpleNamespace

import fakeredis
import mongomock
import pytest
from fastapi.testclient import TestClient

from cache import ResponseCache, get_cache
from database import create_document, ensure_indexes, get_db
from main import app
from schemas import BankAccount, Product, Vendor
from security import hash_password, token_for

ADDRESS = {
    "first_name": "Ada",
    "last_name": "Potter",
    "email": "ada@example.com",
    "phone": "555-0100",
    "address": "12 Kiln Lane",
    "city": "Portland",
    "state": "OR",
    "zip_code": "97201",
    "country": "US",
}


@pytest.fixture
def mongo():
    database = mongomock.MongoClient().artisanmarket
    ensure_indexes(database)
    return database


@pytest.fixture
def cache():
    return ResponseCache(fakeredis.FakeRedis(decode_responses=True))


@pytest.fixture
def client(mongo, cache):
    app.dependency_overrides[get_db] = lambda: mongo
    app.dependency_overrides[get_cache] = lambda: cache
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(mongo):
    def _make(role="customer", email=None, name="Test User"):
        email = email or f"{role}-{uuid.uuid4().hex[:8]}@example.com"
        uid = create_document("user", {
            "name": name,
            "email": email,
            "password_hash": hash_password("secret123"),
            "role": role,
            "is_active": True,
        }, db=mongo)
        user = {"id": uid, "email": email, "role": role}
        return SimpleNamespace(id=uid, email=email, headers={"Authorization": f"Bearer {token_for(user)}"})
    return _make


@pytest.fixture
def make_vendor(mongo, make_user):
    def _make(store_name="Clay & Grain"):
        user = make_user("vendor")
        vendor = Vendor(user_id=user.id, store_name=store_name, contact={"email": user.email})
        user.vendor_id = create_document("vendor", vendor, db=mongo)
        return user
    return _make


@pytest.fixture
def customer(make_user):
    return make_user("customer")


@pytest.fixture
def vendor(make_vendor):
    return make_vendor()


@pytest.fixture
def admin(make_user):
    return make_user("admin")


@pytest.fixture
def make_product(mongo):
    def _make(vendor, title="Stoneware Mug", price=20.0, quantity=10, **extra):
        product = Product(
            vendor_id=vendor.vendor_id,
            title=title,
            price=price,
            inventory={"quantity": quantity},
            **extra,
        )
        return create_document("product", product, db=mongo)
    return _make


@pytest.fixture
def make_bank_account(mongo):
    def _make(user, balance=1000.0):
        account = BankAccount(
            user_id=user.id,
            account_holder="Ada Potter",
            bank_name="First Craft Bank",
            account_last4="6789",
            routing_last4="0021",
            balance=balance,
        )
        return create_document("bankaccount", account, db=mongo)
    return _make


def order_payload(items, bank_account_id, total, shipping_method="standard", **extra):
    return {
        "items": [{"product_id": pid, "quantity": qty} for pid, qty in items],
        "shipping_address": ADDRESS,
        "payment_method": {"bank_account_id": bank_account_id},
        "shipping_method": shipping_method,
        "total": total,
        **extra,
    }

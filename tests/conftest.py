"""
Shared fixtures: an in-memory MongoDB, fake payment gateway and image store,
and ready-made users with auth headers.
"""
import mongomock
import pytest
from bson.objectid import ObjectId
from fastapi import HTTPException
from fastapi.testclient import TestClient

import config
import main
from auth import create_token, hash_password
from database import create_document, ensure_indexes, get_db, to_object_id
from payments import get_gateway
from storage import get_storage

SHIPPING_ADDRESS = {
    "full_name": "Asha Rao",
    "phone": "9876543210",
    "pincode": "560001",
    "city": "Bengaluru",
    "state": "Karnataka",
    "country": "India",
    "address_line": "12 MG Road",
}


class FakeGateway:
    def __init__(self):
        self.orders = []
        self.refunds = []
        self.fail_refunds = False

    def create_order(self, amount, receipt=None):
        order = {"id": f"order_{len(self.orders) + 1}", "amount": int(round(amount * 100)), "currency": "INR"}
        self.orders.append(order)
        return order

    def fetch_order(self, order_id):
        for order in self.orders:
            if order["id"] == order_id:
                return order
        raise HTTPException(status_code=400, detail="Unknown payment order")

    def refund(self, payment_id, amount):
        if self.fail_refunds:
            raise RuntimeError("gateway down")
        self.refunds.append((payment_id, amount))
        return {"id": f"rfnd_{len(self.refunds)}", "payment_id": payment_id}


class FakeStorage:
    def __init__(self):
        self.uploaded = []
        self.deleted = []

    def upload(self, content, folder="bumpicare"):
        public_id = f"{folder}/img{len(self.uploaded) + 1}"
        self.uploaded.append(public_id)
        return {"url": f"https://cdn.example.com/{public_id}.jpg", "public_id": public_id}

    def delete(self, public_id):
        self.deleted.append(public_id)
        return public_id in self.uploaded


@pytest.fixture
def db():
    database = mongomock.MongoClient()["bumpicare_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def client(db, gateway, storage, monkeypatch):
    monkeypatch.setattr(config, "MOBILE_API_KEY", None)
    monkeypatch.setattr(main.limiter, "enabled", False)
    main.app.dependency_overrides[get_db] = lambda: db
    main.app.dependency_overrides[get_gateway] = lambda: gateway
    main.app.dependency_overrides[get_storage] = lambda: storage
    with TestClient(main.app) as c:
        yield c
    main.app.dependency_overrides.clear()


def make_user(db, email="user@example.com", role="user", password="secret123", **extra):
    uid = create_document(db, "user", {
        "name": extra.pop("name", email.split("@")[0].title()),
        "phone": "9000000000",
        "email": email,
        "password_hash": hash_password(password),
        "role": role,
        "addresses": [],
        "wishlist": [],
        "is_blocked": False,
        **extra,
    })
    return db["user"].find_one({"_id": to_object_id(uid)})


def auth_headers(user):
    return {"Authorization": f"Bearer {create_token({'id': str(user['_id']), 'role': user['role']})}"}


@pytest.fixture
def user(db):
    return make_user(db)


@pytest.fixture
def other_user(db):
    return make_user(db, email="other@example.com")


@pytest.fixture
def admin(db):
    return make_user(db, email="admin@example.com", role="admin")


@pytest.fixture
def user_headers(user):
    return auth_headers(user)


@pytest.fixture
def other_headers(other_user):
    return auth_headers(other_user)


@pytest.fixture
def admin_headers(admin):
    return auth_headers(admin)


@pytest.fixture
def category(db):
    cid = create_document(db, "category", {"name": "Baby Care", "description": None, "image": None})
    return db["category"].find_one({"_id": ObjectId(cid)})


@pytest.fixture
def make_product(db, category):
    def _make(name="Muslin Swaddle", price=500.0, stock=10, **extra):
        data = {
            "name": name,
            "price": price,
            "stock": stock,
            "category": category["_id"],
            "brand": "Generic",
            "images": ["https://cdn.example.com/p.jpg"],
            "is_active": True,
            "is_draft": False,
            "status": "published",
            "ratings": 0,
            "reviews_count": 0,
        }
        data.update(extra)
        pid = create_document(db, "product", data)
        return db["product"].find_one({"_id": ObjectId(pid)})
    return _make


@pytest.fixture
def product(make_product):
    return make_product()


def stock_of(db, product):
    return db["product"].find_one({"_id": product["_id"]})["stock"]

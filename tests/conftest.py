"""
Shared fixtures: an in-memory mongomock database wired into the app through
the `get_db` dependency, plus factories for users and products.
"""

import mongomock
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

from auth import create_access_token, hash_password
from database import get_db
from main import app
from schemas import Product, User


@pytest.fixture
def db():
    return mongomock.MongoClient()["krishibandhu_test"]


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    """Insert a user and return (user_id, auth headers)."""
    counter = {"n": 0}

    def _make(name=None):
        counter["n"] += 1
        name = name or f"user{counter['n']}"
        user = User(name=name, email=f"{name}@example.com", password_hash=hash_password("secret123"))
        user_id = str(db["user"].insert_one(user.model_dump()).inserted_id)
        token = create_access_token({"sub": user_id})
        return user_id, {"Authorization": f"Bearer {token}"}

    return _make


@pytest.fixture
def make_product(db):
    def _make(seller_id, price=100, stock=2, title="Wheat seeds", **extra):
        fields = dict(
            title=title,
            description="Certified seed",
            category="seeds",
            type="buy",
            price=price,
            stock=stock,
            unit="kg",
            images=["/uploads/products/p.jpg"],
            seller_id=seller_id,
        )
        fields.update(extra)
        return str(db["product"].insert_one(Product(**fields).model_dump()).inserted_id)

    return _make


@pytest.fixture
def address():
    return {
        "full_name": "Ravi Kumar",
        "phone": "9876543210",
        "address_line1": "Main road",
        "village": "Rampur",
        "district": "Nashik",
        "state": "Maharashtra",
        "pincode": "422001",
    }


@pytest.fixture
def stock_of(db):
    def _stock(product_id):
        return db["product"].find_one({"_id": ObjectId(product_id)})["stock"]

    return _stock


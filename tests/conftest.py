import os

os.environ.setdefault("BCRYPT_ROUNDS", "4")

import mongomock
import pytest
from fastapi.testclient import TestClient

from embroidery_store import config
from embroidery_store.database import get_db
from embroidery_store.main import app


@pytest.fixture
def db():
    return mongomock.MongoClient()["embroidery_store_test"]


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def super_headers(client):
    assert client.post("/init/bootstrap").status_code == 200
    res = client.post("/admin/auth/login", json={
        "username": config.DEFAULT_ADMIN_USERNAME,
        "password": config.DEFAULT_ADMIN_PASSWORD,
    })
    assert res.status_code == 200, res.text
    return bearer(res.json()["access_token"])


@pytest.fixture
def register_customer(client):
    def _register(email="jane@example.com", password="secret123", first_name="Jane", last_name="Doe"):
        res = client.post("/auth/register", json={
            "first_name": first_name, "last_name": last_name, "email": email, "password": password,
        })
        assert res.status_code == 201, res.text
        return bearer(res.json()["access_token"])
    return _register


@pytest.fixture
def customer_headers(register_customer):
    return register_customer()


@pytest.fixture
def make_admin(client, super_headers):
    """Create a role with the given permissions plus an admin on it; returns auth headers."""
    counter = {"n": 0}

    def _make(permissions, status=True):
        counter["n"] += 1
        n = counter["n"]
        role = client.post("/roles", headers=super_headers, json={
            "name": f"Role {n}", "permissions": permissions, "status": status,
        })
        assert role.status_code == 201, role.text
        admin = client.post("/admins", headers=super_headers, json={
            "username": f"staff{n}", "email": f"staff{n}@example.com", "password": "password123",
            "role_id": role.json()["data"]["id"],
        })
        assert admin.status_code == 201, admin.text
        login = client.post("/admin/auth/login", json={"username": f"staff{n}", "password": "password123"})
        assert login.status_code == 200, login.text
        return bearer(login.json()["access_token"])
    return _make


@pytest.fixture
def make_product(client, super_headers):
    """Create a product with DST/PES options; returns the admin view of it."""
    counter = {"n": 0}
    formats = {}

    def _option(name):
        if name not in formats:
            res = client.post("/admin/options", headers=super_headers, json={"name": name})
            assert res.status_code == 201, res.text
            formats[name] = res.json()["id"]
        return formats[name]

    def _make(prices=None, **fields):
        counter["n"] += 1
        prices = prices if prices is not None else {"DST": 100.0, "PES": 150.0}
        body = {
            "product_model": f"Rose Design {counter['n']}",
            "sku": f"SKU-{counter['n']}",
            "options": [
                {"option_id": _option(name), "price": price, "file_path": f"designs/{counter['n']}.{name.lower()}"}
                for name, price in prices.items()
            ],
        }
        body.update(fields)
        res = client.post("/admin/products", headers=super_headers, json=body)
        assert res.status_code == 201, res.text
        return res.json()
    return _make


@pytest.fixture
def buy(client):
    """Put product options in the cart, check out and pay from the wallet."""
    counter = {"n": 0}

    def _buy(headers, product, option_ids=None):
        counter["n"] += 1
        option_ids = option_ids or [o["id"] for o in product["options"]]
        total = sum(o["price"] for o in product["options"] if o["id"] in option_ids)
        if total:
            client.post("/wallet/add-funds", headers=headers,
                        json={"amount": max(total, 1), "payment_reference": f"pay-{counter['n']}-{product['id']}"})
        assert client.post("/cart", headers=headers, json={"product_id": product["id"], "options": option_ids}).status_code == 200
        order = client.post("/checkout", headers=headers)
        assert order.status_code == 201, order.text
        order_id = order.json()["data"]["id"]
        paid = client.post(f"/checkout/{order_id}/pay", headers=headers, json={"payment_method": "wallet"})
        assert paid.status_code == 200, paid.text
        return paid.json()["data"]
    return _buy

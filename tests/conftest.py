"""Pytest fixtures: an in-memory MongoDB, stores, and a stubbed payment provider."""

import json

import httpx
import mongomock
import pytest
from fastapi.testclient import TestClient

import main
from catalog import Catalog, Product
from payments import PaymentLinkClient
from session import Cart, SessionContext
from storage import PhotoStore
from store import AccountStore, CartStore, OrderStore, UserStore

USER_ID = "64b7f0c2a1b2c3d4e5f60718"


@pytest.fixture
def db():
    return mongomock.MongoClient().shop


@pytest.fixture
def catalog():
    return Catalog([
        Product(1, "Boxing Gloves", "12oz gloves", "Php100.00"),
        Product(2, "Heavy Bag", "100lb bag", "Php4,999.00"),
        Product(3, "Speed Bag Platform", "Wall mounted", "Php6,250.50"),
    ])


@pytest.fixture
def users(db):
    return UserStore(db)


@pytest.fixture
def carts(db):
    return CartStore(db)


@pytest.fixture
def orders(db):
    return OrderStore(db)


@pytest.fixture
def accounts(db):
    return AccountStore(db)


@pytest.fixture
def photos(db):
    return PhotoStore(db, base_url="http://shop.test")


@pytest.fixture
def user_id(users):
    """A profile document with a display name and no addresses."""
    users.create(USER_ID, email="ana@example.com", display_name="Ana")
    return USER_ID


@pytest.fixture
def session(user_id):
    return SessionContext(user_id=user_id, cart=Cart())


class PaymentProvider:
    """Records link requests and answers with a checkout URL or an error list."""

    def __init__(self):
        self.requests = []
        self.error = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error:
            return httpx.Response(400, json={"errors": [{"code": "parameter_invalid", "detail": self.error}]})
        body = json.loads(request.content)
        return httpx.Response(200, json={
            "data": {
                "id": f"link_{len(self.requests)}",
                "type": "link",
                "attributes": {
                    "amount": body["amount"],
                    "checkout_url": f"https://pm.link/shop/test/{len(self.requests)}",
                },
            }
        })


@pytest.fixture
def provider():
    return PaymentProvider()


@pytest.fixture
def payments(provider):
    return PaymentLinkClient(
        secret_key="sk_test_key",
        url="https://payments.test/v1/links",
        success_url="https://shop.test/ok",
        failed_url="https://shop.test/failed",
        client=httpx.Client(transport=httpx.MockTransport(provider)),
    )


@pytest.fixture
def client(db, payments, catalog):
    main.app.dependency_overrides[main.get_db] = lambda: db
    main.app.dependency_overrides[main.get_payments] = lambda: payments
    main.app.dependency_overrides[main.get_catalog] = lambda: catalog
    with TestClient(main.app) as c:
        yield c
    main.app.dependency_overrides.clear()


@pytest.fixture
def auth(client):
    """Register a shopper and return their Authorization header."""
    res = client.post("/auth/register", json={"name": "Ana", "email": "ana@example.com", "password": "pw"})
    assert res.status_code == 200
    return {"Authorization": f"Bearer {res.json()['token']}"}

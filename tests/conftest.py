import json

import httpx
import mongomock
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

import main
from auth import Identity, create_token
from cart import Cart, CartStorage
from checkout import CheckoutService
from database import create_document, get_db, serialize_doc
from notifications import NotificationDispatcher
from orders import OrderService
from payments import PaymentInitiator
from schemas import Product

BUYER = Identity(uid="buyer-1", email="jane@example.com", name="Jane Buyer", role="customer")
ADMIN = Identity(uid="admin-1", email="admin@shop.com", name="Admin", role="admin")


class FakeUpstream:
    """Stands in for the email relay and the M-Pesa payment API."""

    def __init__(self):
        self.emails = []
        self.payments = []
        self.email_status = 200
        self.payment_status = 200
        self.payment_reply = {
            "success": True,
            "checkoutRequestId": "ws_CO_123456",
            "responseCode": "0",
            "message": "Success. Request accepted for processing",
        }
        self.client = httpx.Client(transport=httpx.MockTransport(self.handle))

    def handle(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        if request.url.path == "/api/send-email":
            self.emails.append(body)
            if self.email_status != 200:
                return httpx.Response(self.email_status, json={"success": False, "error": "relay down"})
            return httpx.Response(200, json={"success": True, "message": f"Email sent to {body['to']}"})
        if request.url.path == "/api/mpesa/initiate-payment":
            self.payments.append(body)
            return httpx.Response(self.payment_status, json=self.payment_reply)
        return httpx.Response(404, json={"success": False, "error": "unknown route"})


@pytest.fixture
def db():
    return mongomock.MongoClient().storefront


@pytest.fixture
def upstream():
    fake = FakeUpstream()
    yield fake
    fake.client.close()


@pytest.fixture
def notifier(db, upstream):
    return NotificationDispatcher(db, upstream.client, relay_url="http://relay", sleep=lambda s: None)


@pytest.fixture
def payments(upstream):
    return PaymentInitiator(upstream.client, base_url="http://payments")


@pytest.fixture
def order_service(db, notifier):
    return OrderService(db, notifier)


@pytest.fixture
def storage(db):
    return CartStorage(db)


@pytest.fixture
def checkout_service(db, order_service, payments, notifier, storage):
    return CheckoutService(db, order_service, payments, notifier, storage)


@pytest.fixture
def make_product(db):
    def _make(name="Widget", price=1000, stock=3, **extra):
        product = Product(name=name, price=price, stock=stock, category="electronics", **extra)
        pid = create_document(db, "product", product)
        return serialize_doc(db["product"].find_one({"_id": ObjectId(pid)}))
    return _make


@pytest.fixture
def cart(storage):
    return Cart.load(storage, "session-1")


@pytest.fixture
def shipping():
    return {
        "full_name": "Jane Buyer",
        "email": "jane@example.com",
        "phone": "0712345678",
        "address": "12 Moi Avenue",
        "city": "Nairobi",
        "county": "Nairobi",
        "postal_code": "00100",
    }


@pytest.fixture
def api(db, upstream, notifier, payments):
    main.app.dependency_overrides[get_db] = lambda: db
    main.app.dependency_overrides[main.get_http_client] = lambda: upstream.client
    main.app.dependency_overrides[main.get_notifier] = lambda: notifier
    main.app.dependency_overrides[main.get_payments] = lambda: payments
    with TestClient(main.app) as client:
        yield client
    main.app.dependency_overrides.clear()


@pytest.fixture
def buyer():
    return BUYER


@pytest.fixture
def admin():
    return ADMIN


@pytest.fixture
def bearer():
    def _bearer(identity: Identity) -> dict:
        return {"Authorization": f"Bearer {create_token(identity)}"}
    return _bearer

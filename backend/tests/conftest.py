import hashlib
import hmac
import json
import time
from contextlib import contextmanager
from itertools import count

import pytest
from fastapi.testclient import TestClient

from kaimono.adapters.stripe_gateway import StripeGateway
from kaimono.config import Settings
from kaimono.errors import PaymentGatewayError
from kaimono.main import create_app
from kaimono.models.user import User
from kaimono.security import get_password_hash, token_for
from kaimono.services.address_service import AddressService
from kaimono.services.cart_service import CartService
from kaimono.services.catalogue_service import ProductService
from kaimono.services.order_service import OrderService

WEBHOOK_SECRET = "whsec_test_secret"

TOKYO = {
    "name": "山田 太郎",
    "postal_code": "100-0001",
    "prefecture": "東京都",
    "city": "千代田区",
    "address_line1": "千代田1-1",
    "phone": "03-0000-0000",
}


class FakeGateway(StripeGateway):
    """Keeps sessions in memory; webhook signature checks stay real."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.sessions = {}
        self.created = []
        self._ids = count(1)

    def create_checkout_session(self, **params):
        sid = f"cs_test_{next(self._ids)}"
        session = {
            "id": sid,
            "object": "checkout.session",
            "url": f"https://checkout.stripe.test/{sid}",
            "payment_status": "unpaid",
            "status": "open",
            "payment_intent": f"pi_test_{sid}",
            "metadata": dict(params.get("metadata") or {}),
            "customer_details": {"email": params.get("customer_email")},
        }
        self.sessions[sid] = session
        self.created.append(params)
        return dict(session)

    def retrieve_checkout_session(self, session_id):
        if session_id not in self.sessions:
            raise PaymentGatewayError(f"Checkout session not found: {session_id}")
        return dict(self.sessions[session_id])

    def mark_paid(self, session_id):
        self.sessions[session_id]["payment_status"] = "paid"
        self.sessions[session_id]["status"] = "complete"
        return dict(self.sessions[session_id])


def sign(payload: str, secret: str = WEBHOOK_SECRET, timestamp: int = None) -> str:
    ts = timestamp or int(time.time())
    sig = hmac.new(secret.encode(), f"{ts}.{payload}".encode(), hashlib.sha256).hexdigest()
    return f"t={ts},v1={sig}"


def event_payload(event_type: str, obj: dict, event_id: str = "evt_test_1") -> str:
    return json.dumps({"id": event_id, "object": "event", "type": event_type, "data": {"object": obj}})


@pytest.fixture
def settings(tmp_path):
    return Settings(
        DATABASE_URL=f"sqlite:///{tmp_path / 'test.db'}",
        SCHEDULER_ENABLED=False,
        STRIPE_SECRET_KEY="sk_test_dummy",
        STRIPE_WEBHOOK_SECRET=WEBHOOK_SECRET,
        SECRET_KEY="test-secret",
        LOG_LEVEL="WARNING",
    )


@pytest.fixture
def app(settings):
    app = create_app(settings)
    app.state.payment_gateway = FakeGateway(
        settings.STRIPE_SECRET_KEY, settings.STRIPE_WEBHOOK_SECRET, settings.STRIPE_WEBHOOK_TOLERANCE_SECONDS
    )
    app.state.database.init_db(reset=True)
    yield app
    app.state.database.dispose()


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def gateway(app):
    return app.state.payment_gateway


@pytest.fixture
def session_scope(app):
    """Short-lived sessions so no transaction stays open while the client runs."""

    @contextmanager
    def _scope():
        db = app.state.database.session()
        try:
            yield db
        finally:
            db.close()

    return _scope


@pytest.fixture
def make_user(session_scope):
    seq = count(1)

    def _make(email=None, role="user", password="password123", **fields):
        with session_scope() as db:
            user = User(
                email=email or f"user{next(seq)}@example.com",
                password_hash=get_password_hash(password),
                role=role,
                **fields,
            )
            db.add(user)
            db.commit()
            return user

    return _make


@pytest.fixture
def auth(settings):
    def _headers(user):
        return {"Authorization": f"Bearer {token_for(user, settings)}"}

    return _headers


@pytest.fixture
def make_product(session_scope):
    seq = count(1)

    def _make(price=1000, stock=10, **fields):
        n = next(seq)
        data = {"sku": f"SKU-{n:03d}", "name": f"商品{n}", "price": price, "stock_quantity": stock}
        data.update(fields)
        with session_scope() as db:
            return ProductService(db).create(data)

    return _make


@pytest.fixture
def make_address(session_scope):
    def _make(user, **fields):
        with session_scope() as db:
            return AddressService(db).create(user.id, {**TOKYO, **fields})

    return _make


@pytest.fixture
def buyer(make_user):
    return make_user(email="buyer@example.com", first_name="太郎", last_name="山田")


@pytest.fixture
def admin(make_user):
    return make_user(email="admin@example.com", role="admin")


@pytest.fixture
def place_order(session_scope, make_address):
    """Materialize a paid order straight from a session dict, skipping Stripe."""
    seq = count(1)

    def _place(user, *items):
        addr = make_address(user)
        with session_scope() as db:
            for product, qty in items:
                CartService(db).add_item(user.id, product.id, qty)
            session = {
                "id": f"cs_order_{next(seq)}",
                "payment_status": "paid",
                "payment_intent": "pi_order",
                "metadata": {"user_id": str(user.id), "shipping_address_id": str(addr.id)},
            }
            order, created = OrderService(db).materialize_from_session(session)
            assert created
            return order

    return _place

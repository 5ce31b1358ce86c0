from kaimono.api import routes_checkout
from kaimono.models.order import Order
from kaimono.models.webhook_log import WebhookLog

from conftest import event_payload, sign


def paid_session(client, gateway, user, auth, make_product, make_address, qty=2):
    h = auth(user)
    p = make_product(price=1000, stock=5)
    client.post("/api/cart/items", json={"product_id": p.id, "quantity": qty}, headers=h)
    r = client.post("/api/checkout/create-session", json={"shipping_address_id": make_address(user).id}, headers=h)
    assert r.status_code == 200, r.text
    return p, gateway.mark_paid(r.json()["session_id"])


def post_event(client, payload, signature=None):
    return client.post(
        "/api/checkout/webhook",
        content=payload,
        headers={"Stripe-Signature": signature or sign(payload), "Content-Type": "application/json"},
    )


def test_completed_session_creates_order(client, gateway, buyer, auth, make_product, make_address, session_scope):
    p, session = paid_session(client, gateway, buyer, auth, make_product, make_address)

    r = post_event(client, event_payload("checkout.session.completed", session))
    assert r.status_code == 200
    assert r.json() == {"received": True}

    with session_scope() as db:
        order = db.query(Order).filter(Order.stripe_session_id == session["id"]).one()
        assert order.total_amount == 2700
        assert order.user_id == buyer.id
        entry = db.query(WebhookLog).one()
        assert entry.status == "completed"
        assert entry.order_created is True
        assert entry.inventory_decreased is True
        assert entry.order_id == order.id
        assert entry.response_status == 200
        assert entry.processed_at is not None

    assert client.get(f"/api/products/{p.id}").json()["stock_quantity"] == 3


def test_replayed_event_does_not_duplicate(client, gateway, buyer, auth, make_product, make_address, session_scope):
    p, session = paid_session(client, gateway, buyer, auth, make_product, make_address)
    payload = event_payload("checkout.session.completed", session)

    assert post_event(client, payload).status_code == 200
    assert post_event(client, payload).status_code == 200

    with session_scope() as db:
        assert db.query(Order).count() == 1
        logs = db.query(WebhookLog).order_by(WebhookLog.id).all()
        assert [e.order_created for e in logs] == [True, False]
    assert client.get(f"/api/products/{p.id}").json()["stock_quantity"] == 3


def test_webhook_then_verify_returns_same_order(client, gateway, buyer, auth, make_product, make_address):
    _, session = paid_session(client, gateway, buyer, auth, make_product, make_address)
    post_event(client, event_payload("checkout.session.completed", session))

    r = client.get("/api/checkout/verify-payment", params={"session_id": session["id"]}, headers=auth(buyer))
    assert r.status_code == 200
    assert r.json()["created"] is False


def test_unpaid_session_is_logged_without_order(client, gateway, buyer, auth, make_product, make_address, session_scope):
    h = auth(buyer)
    p = make_product()
    client.post("/api/cart/items", json={"product_id": p.id}, headers=h)
    sid = client.post(
        "/api/checkout/create-session", json={"shipping_address_id": make_address(buyer).id}, headers=h
    ).json()["session_id"]

    r = post_event(client, event_payload("checkout.session.completed", gateway.sessions[sid]))
    assert r.status_code == 200
    with session_scope() as db:
        assert db.query(Order).count() == 0
        entry = db.query(WebhookLog).one()
        assert entry.status == "completed"
        assert entry.order_created is False


def test_bad_signature_is_rejected(client, session_scope):
    payload = event_payload("checkout.session.completed", {"id": "cs_x"})
    r = post_event(client, payload, signature=sign(payload, secret="whsec_wrong"))
    assert r.status_code == 400
    assert r.json()["success"] is False
    with session_scope() as db:
        assert db.query(WebhookLog).count() == 0


def test_missing_signature_header(client):
    r = client.post("/api/checkout/webhook", content=event_payload("payment_intent.succeeded", {"id": "pi_1"}))
    assert r.status_code == 400


def test_unconfigured_secret_answers_500(client, gateway):
    gateway.webhook_secret = None
    payload = event_payload("payment_intent.succeeded", {"id": "pi_1"})
    r = post_event(client, payload)
    assert r.status_code == 500
    assert r.json() == {"success": False, "message": "Webhook secret is not configured"}


def test_other_event_types_are_acknowledged(client, session_scope):
    for n, event_type in enumerate(["payment_intent.succeeded", "payment_intent.payment_failed", "customer.created"]):
        payload = event_payload(event_type, {"id": f"obj_{n}"}, event_id=f"evt_{n}")
        assert post_event(client, payload).status_code == 200

    with session_scope() as db:
        logs = db.query(WebhookLog).order_by(WebhookLog.id).all()
        assert [e.status for e in logs] == ["completed"] * 3
        assert logs[2].response_message == "unhandled event type customer.created"


def test_processing_failure_answers_500(client, gateway, buyer, auth, make_product, make_address, session_scope):
    _, session = paid_session(client, gateway, buyer, auth, make_product, make_address)
    # cart already emptied elsewhere: the order cannot be built
    client.delete("/api/cart", headers=auth(buyer))

    r = post_event(client, event_payload("checkout.session.completed", session))
    assert r.status_code == 500
    assert r.json()["received"] is True
    with session_scope() as db:
        entry = db.query(WebhookLog).one()
        assert entry.status == "failed"
        assert "EmptyCartError" in entry.error_message


def test_admin_can_read_webhook_logs(client, admin, auth):
    payload = event_payload("payment_intent.succeeded", {"id": "pi_9"})
    post_event(client, payload)

    body = client.get("/api/admin/webhook-logs", headers=auth(admin)).json()
    assert body["total"] == 1
    log_id = body["items"][0]["id"]
    detail = client.get(f"/api/admin/webhook-logs/{log_id}", headers=auth(admin)).json()
    assert detail["request_body"] == {"id": "pi_9"}


def test_webhook_processing_runs_off_the_event_loop(client, gateway, buyer, auth, make_product, make_address, monkeypatch):
    _, session = paid_session(client, gateway, buyer, auth, make_product, make_address)
    offloaded = []
    real = routes_checkout.run_in_threadpool

    async def recording(func, *args, **kwargs):
        offloaded.append(func.__name__)
        return await real(func, *args, **kwargs)

    monkeypatch.setattr(routes_checkout, "run_in_threadpool", recording)
    assert post_event(client, event_payload("checkout.session.completed", session)).status_code == 200
    assert offloaded == ["handle"]

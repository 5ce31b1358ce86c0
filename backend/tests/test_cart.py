from datetime import timedelta

from kaimono.models.campaign import Campaign
from kaimono.utils.clock import utcnow


def test_add_item_merges_quantities(client, buyer, auth, make_product):
    p = make_product(price=1200, stock=5)
    h = auth(buyer)

    r = client.post("/api/cart/items", json={"product_id": p.id, "quantity": 2}, headers=h)
    assert r.status_code == 200, r.text
    r = client.post("/api/cart/items", json={"product_id": p.id, "quantity": 1}, headers=h)
    assert r.json()["quantity"] == 3

    cart = client.get("/api/cart", headers=h).json()
    assert len(cart["items"]) == 1
    assert cart["subtotal"] == 3600
    assert client.get("/api/cart/count", headers=h).json() == {"count": 3}


def test_add_item_beyond_stock_is_rejected(client, buyer, auth, make_product):
    p = make_product(stock=2)
    h = auth(buyer)
    client.post("/api/cart/items", json={"product_id": p.id, "quantity": 2}, headers=h)

    r = client.post("/api/cart/items", json={"product_id": p.id, "quantity": 1}, headers=h)
    assert r.status_code == 400
    assert "Insufficient stock" in r.json()["message"]
    assert client.get("/api/cart/count", headers=h).json()["count"] == 2


def test_inactive_or_missing_product_cannot_be_added(client, buyer, auth, make_product):
    p = make_product(status="inactive")
    h = auth(buyer)
    assert client.post("/api/cart/items", json={"product_id": p.id}, headers=h).status_code == 404
    assert client.post("/api/cart/items", json={"product_id": 9999}, headers=h).status_code == 404


def test_update_quantity_and_remove_on_zero(client, buyer, auth, make_product):
    p = make_product(stock=10)
    h = auth(buyer)
    client.post("/api/cart/items", json={"product_id": p.id, "quantity": 1}, headers=h)

    r = client.put(f"/api/cart/items/{p.id}", json={"quantity": 4}, headers=h)
    assert r.json()["quantity"] == 4
    assert client.put(f"/api/cart/items/{p.id}", json={"quantity": 11}, headers=h).status_code == 400

    r = client.put(f"/api/cart/items/{p.id}", json={"quantity": 0}, headers=h)
    assert r.json() == {"success": True, "removed": True}
    assert client.get("/api/cart", headers=h).json()["items"] == []


def test_remove_and_clear(client, buyer, auth, make_product):
    a, b = make_product(), make_product()
    h = auth(buyer)
    client.post("/api/cart/items", json={"product_id": a.id}, headers=h)
    client.post("/api/cart/items", json={"product_id": b.id}, headers=h)

    assert client.delete(f"/api/cart/items/{a.id}", headers=h).status_code == 200
    assert client.delete(f"/api/cart/items/{a.id}", headers=h).status_code == 404

    r = client.delete("/api/cart", headers=h)
    assert r.json()["removed"] == 1
    assert client.get("/api/cart/count", headers=h).json()["count"] == 0


def test_carts_are_per_user(client, buyer, make_user, auth, make_product):
    p = make_product()
    other = make_user()
    client.post("/api/cart/items", json={"product_id": p.id, "quantity": 2}, headers=auth(buyer))
    assert client.get("/api/cart", headers=auth(other)).json()["items"] == []


def test_cart_with_campaigns(client, buyer, auth, make_product, session_scope):
    p = make_product(price=1000)
    now = utcnow()
    with session_scope() as db:
        db.add(Campaign(name="10%オフ", discount_type="percent", discount_value=10,
                        start_date=now - timedelta(hours=1), end_date=now + timedelta(days=1)))
        db.commit()
    h = auth(buyer)
    client.post("/api/cart/items", json={"product_id": p.id, "quantity": 3}, headers=h)

    body = client.get("/api/cart", params={"with_campaigns": True}, headers=h).json()
    priced = body["campaigns"]
    assert priced["subtotal"] == 3000
    assert priced["total_discount"] == 300
    assert priced["discounted_subtotal"] == 2700
    assert priced["items"][0]["discounted_price"] == 900
    assert [c["name"] for c in priced["applied_campaigns"]] == ["10%オフ"]
    assert client.get("/api/cart/campaigns", headers=h).json() == priced


def test_cart_requires_login(client):
    assert client.get("/api/cart").status_code == 401

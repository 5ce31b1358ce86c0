from datetime import timedelta

from kaimono.models.campaign import Campaign, CampaignUsage
from kaimono.models.product import Product
from kaimono.utils.clock import utcnow


def fill_cart(client, headers, *items):
    for product, qty in items:
        r = client.post("/api/cart/items", json={"product_id": product.id, "quantity": qty}, headers=headers)
        assert r.status_code == 200, r.text


def start_checkout(client, headers, address):
    r = client.post("/api/checkout/create-session", json={"shipping_address_id": address.id}, headers=headers)
    assert r.status_code == 200, r.text
    return r.json()


def test_create_session_builds_line_items(client, gateway, buyer, auth, make_product, make_address):
    p = make_product(price=1000, stock=5)
    addr = make_address(buyer)
    h = auth(buyer)
    fill_cart(client, h, (p, 2))

    body = start_checkout(client, h, addr)
    assert body["session_id"] == "cs_test_1"
    assert body["url"].endswith("cs_test_1")
    assert body["totals"] == {"subtotal": 2000, "discount": 0, "tax": 200, "shipping": 500, "total": 2700}

    params = gateway.created[0]
    names = [li["price_data"]["product_data"]["name"] for li in params["line_items"]]
    assert names == [p.name, "送料", "消費税 (10%)"]
    assert params["line_items"][0]["price_data"]["unit_amount"] == 1000
    assert params["line_items"][0]["quantity"] == 2
    assert params["line_items"][0]["price_data"]["currency"] == "jpy"
    assert params["customer_email"] == buyer.email

    meta = params["metadata"]
    assert meta["user_id"] == str(buyer.id)
    assert meta["shipping_address_id"] == str(addr.id)
    assert (meta["subtotal"], meta["tax_amount"], meta["shipping_cost"], meta["total_amount"]) == (
        "2000", "200", "500", "2700",
    )


def test_free_shipping_over_threshold(client, gateway, buyer, auth, make_product, make_address):
    p = make_product(price=2500, stock=5)
    addr = make_address(buyer, prefecture="北海道")
    h = auth(buyer)
    fill_cart(client, h, (p, 2))

    totals = start_checkout(client, h, addr)["totals"]
    assert totals["shipping"] == 0
    assert totals["total"] == 5500
    names = [li["price_data"]["product_data"]["name"] for li in gateway.created[0]["line_items"]]
    assert "送料" not in names


def test_campaign_price_used_for_line_items(client, gateway, buyer, auth, make_product, make_address, session_scope):
    p = make_product(price=1000)
    now = utcnow()
    with session_scope() as db:
        db.add(Campaign(name="半額", discount_type="percent", discount_value=50,
                        start_date=now - timedelta(hours=1), end_date=now + timedelta(days=1)))
        db.commit()
    h = auth(buyer)
    fill_cart(client, h, (p, 2))

    body = start_checkout(client, h, make_address(buyer))
    assert body["totals"] == {"subtotal": 2000, "discount": 1000, "tax": 100, "shipping": 500, "total": 1600}
    assert gateway.created[0]["line_items"][0]["price_data"]["unit_amount"] == 500
    assert [c["name"] for c in body["applied_campaigns"]] == ["半額"]


def test_cart_level_discount_is_folded_into_one_line(client, gateway, buyer, auth, make_product, make_address, session_scope):
    a, b = make_product(price=1500), make_product(price=1500)
    now = utcnow()
    with session_scope() as db:
        db.add(Campaign(name="3000円以上で300円引き", discount_type="amount", discount_value=300,
                        minimum_purchase=3000, start_date=now - timedelta(hours=1), end_date=now + timedelta(days=1)))
        db.commit()
    h = auth(buyer)
    fill_cart(client, h, (a, 1), (b, 1))

    body = start_checkout(client, h, make_address(buyer))
    assert body["totals"]["discount"] == 300
    items = gateway.created[0]["line_items"]
    assert items[0]["price_data"]["unit_amount"] == 2700
    assert items[0]["quantity"] == 1
    charged = sum(li["price_data"]["unit_amount"] * li["quantity"] for li in items)
    assert charged == body["totals"]["total"]


def test_create_session_empty_cart(client, buyer, auth, make_address):
    r = client.post("/api/checkout/create-session", json={"shipping_address_id": make_address(buyer).id},
                    headers=auth(buyer))
    assert r.status_code == 400
    assert r.json() == {"success": False, "message": "Cart is empty"}


def test_create_session_with_someone_elses_address(client, buyer, make_user, auth, make_product, make_address):
    other = make_user()
    addr = make_address(other)
    p = make_product()
    h = auth(buyer)
    fill_cart(client, h, (p, 1))
    r = client.post("/api/checkout/create-session", json={"shipping_address_id": addr.id}, headers=h)
    assert r.status_code == 404


def test_create_session_rechecks_stock(client, buyer, auth, make_product, make_address, session_scope):
    from kaimono.services.inventory_service import InventoryService

    p = make_product(stock=3)
    h = auth(buyer)
    fill_cart(client, h, (p, 3))
    with session_scope() as db:
        InventoryService(db).adjust(p.id, -2, change_type="adjustment")
    r = client.post("/api/checkout/create-session", json={"shipping_address_id": make_address(buyer).id}, headers=h)
    assert r.status_code == 400
    assert "Insufficient stock" in r.json()["message"]


def test_verify_payment_before_payment(client, buyer, auth, make_product, make_address):
    h = auth(buyer)
    fill_cart(client, h, (make_product(), 1))
    sid = start_checkout(client, h, make_address(buyer))["session_id"]

    r = client.get("/api/checkout/verify-payment", params={"session_id": sid}, headers=h)
    assert r.status_code == 400
    assert r.json()["message"] == "Payment has not been completed"


def test_verify_payment_creates_order_once(client, gateway, buyer, auth, make_product, make_address):
    p = make_product(price=1000, stock=5)
    h = auth(buyer)
    fill_cart(client, h, (p, 2))
    sid = start_checkout(client, h, make_address(buyer))["session_id"]
    gateway.mark_paid(sid)

    r = client.get("/api/checkout/verify-payment", params={"session_id": sid}, headers=h)
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["created"] is True
    order = body["order"]
    assert order["status"] == "processing"
    assert order["payment_status"] == "paid"
    assert order["total_amount"] == 2700
    assert order["shipping_address"]["prefecture"] == "東京都"
    assert [(i["sku"], i["quantity"], i["price"], i["total"]) for i in order["items"]] == [(p.sku, 2, 1000, 2000)]

    again = client.get("/api/checkout/verify-payment", params={"session_id": sid}, headers=h).json()
    assert again["created"] is False
    assert again["order"]["id"] == order["id"]

    assert client.get("/api/cart/count", headers=h).json()["count"] == 0
    assert client.get(f"/api/products/{p.id}").json()["stock_quantity"] == 3


def test_verify_payment_for_another_users_session(client, gateway, buyer, make_user, auth, make_product, make_address):
    h = auth(buyer)
    fill_cart(client, h, (make_product(), 1))
    sid = start_checkout(client, h, make_address(buyer))["session_id"]
    gateway.mark_paid(sid)

    r = client.get("/api/checkout/verify-payment", params={"session_id": sid}, headers=auth(make_user()))
    assert r.status_code == 404


def test_unknown_session_is_a_gateway_error(client, buyer, auth):
    r = client.get("/api/checkout/verify-payment", params={"session_id": "cs_nope"}, headers=auth(buyer))
    assert r.status_code == 502
    assert r.json()["success"] is False


def test_order_by_session(client, gateway, buyer, auth, make_product, make_address):
    h = auth(buyer)
    fill_cart(client, h, (make_product(), 1))
    sid = start_checkout(client, h, make_address(buyer))["session_id"]

    r = client.get("/api/checkout/order-by-session", params={"session_id": sid}, headers=h)
    assert r.json() == {"success": True, "found": False, "order": None}

    gateway.mark_paid(sid)
    client.get("/api/checkout/verify-payment", params={"session_id": sid}, headers=h)
    r = client.get("/api/checkout/order-by-session", params={"session_id": sid}, headers=h)
    assert r.json()["found"] is True
    assert r.json()["order"]["stripe_session_id"] == sid


def test_validate_campaigns_reports_discounts(client, buyer, auth, make_product):
    h = auth(buyer)
    fill_cart(client, h, (make_product(price=800), 2))
    body = client.post("/api/checkout/validate-campaigns", headers=h).json()
    assert body["valid"] is True
    assert body["discounts"]["subtotal"] == 1600
    assert body["discounts"]["total_discount"] == 0


def test_paid_item_sold_out_by_another_buyer_still_ships(client, gateway, buyer, make_user, auth, make_product, make_address, session_scope):
    p = make_product(price=1000, stock=2)
    other = make_user()
    h_a, h_b = auth(other), auth(buyer)
    fill_cart(client, h_a, (p, 2))
    fill_cart(client, h_b, (p, 2))
    sid_a = start_checkout(client, h_a, make_address(other))["session_id"]
    sid_b = start_checkout(client, h_b, make_address(buyer))["session_id"]
    gateway.mark_paid(sid_a)
    gateway.mark_paid(sid_b)

    assert client.get("/api/checkout/verify-payment", params={"session_id": sid_a}, headers=h_a).status_code == 200
    with session_scope() as db:
        assert db.get(Product, p.id).status == "out_of_stock"

    r = client.get("/api/checkout/verify-payment", params={"session_id": sid_b}, headers=h_b)
    assert r.status_code == 200, r.text
    order = r.json()["order"]
    assert [(i["sku"], i["quantity"]) for i in order["items"]] == [(p.sku, 2)]
    assert order["total_amount"] == 2700
    with session_scope() as db:
        assert db.get(Product, p.id).stock_quantity == 0


def test_campaign_ended_before_payment_keeps_paid_prices(client, gateway, buyer, auth, make_product, make_address, session_scope):
    p = make_product(price=1000, stock=5)
    now = utcnow()
    with session_scope() as db:
        c = Campaign(name="10%オフ", discount_type="percent", discount_value=10, user_limit=1,
                     start_date=now - timedelta(hours=1), end_date=now + timedelta(days=1))
        db.add(c)
        db.commit()
        campaign_id = c.id
    h = auth(buyer)
    fill_cart(client, h, (p, 2))
    sid = start_checkout(client, h, make_address(buyer))["session_id"]
    assert gateway.sessions[sid]["metadata"]["campaign_ids"] == str(campaign_id)

    with session_scope() as db:
        db.get(Campaign, campaign_id).is_active = False
        db.commit()
    gateway.mark_paid(sid)

    r = client.get("/api/checkout/verify-payment", params={"session_id": sid}, headers=h)
    assert r.status_code == 200, r.text
    order = r.json()["order"]
    assert order["subtotal"] - order["discount_amount"] == 1800
    assert [(i["price"], i["total"]) for i in order["items"]] == [(900, 1800)]
    with session_scope() as db:
        usage = db.query(CampaignUsage).filter(CampaignUsage.campaign_id == campaign_id).all()
        assert [(u.user_id, u.usage_count) for u in usage] == [(buyer.id, 1)]
        assert db.get(Campaign, campaign_id).current_usage == 1

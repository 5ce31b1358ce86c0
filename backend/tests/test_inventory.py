from kaimono.models.audit_log import AuditLog
from kaimono.models.stock_history import StockHistory


def test_new_product_gets_initial_ledger_row(client, admin, auth, session_scope):
    r = client.post(
        "/api/products",
        json={"sku": "INV-1", "name": "在庫テスト", "price": 500, "stock_quantity": 12},
        headers=auth(admin),
    )
    assert r.status_code == 201, r.text
    pid = r.json()["id"]

    with session_scope() as db:
        rows = db.query(StockHistory).filter(StockHistory.product_id == pid).all()
        assert [(h.change_type, h.quantity_change, h.quantity_after) for h in rows] == [("initial", 12, 12)]


def test_adjust_stock(client, admin, auth, make_product, session_scope):
    p = make_product(stock=5)
    r = client.post(
        f"/api/admin/stock/{p.id}/adjust",
        json={"quantity_change": 10, "change_type": "restock", "notes": "入荷"},
        headers=auth(admin),
    )
    assert r.status_code == 200, r.text
    entry = r.json()["entry"]
    assert (entry["quantity_before"], entry["quantity_after"], entry["change_type"]) == (5, 15, "restock")
    assert client.get(f"/api/products/{p.id}").json()["stock_quantity"] == 15

    with session_scope() as db:
        audit = db.query(AuditLog).filter(AuditLog.action == "stock.adjust").one()
        assert audit.old_values == {"stock_quantity": 5}


def test_adjust_cannot_go_negative(client, admin, auth, make_product):
    p = make_product(stock=2)
    r = client.post(f"/api/admin/stock/{p.id}/adjust", json={"quantity_change": -3}, headers=auth(admin))
    assert r.status_code == 400
    assert "negative" in r.json()["message"]
    assert client.get(f"/api/products/{p.id}").json()["stock_quantity"] == 2


def test_adjust_rejects_reserved_change_types(client, admin, auth, make_product):
    p = make_product(stock=2)
    h = auth(admin)
    assert client.post(f"/api/admin/stock/{p.id}/adjust", json={"quantity_change": 1, "change_type": "order"},
                       headers=h).status_code == 400
    assert client.post(f"/api/admin/stock/{p.id}/adjust", json={"quantity_change": 0}, headers=h).status_code == 400
    assert client.post("/api/admin/stock/9999/adjust", json={"quantity_change": 1}, headers=h).status_code == 404


def test_zero_stock_flips_status(client, admin, auth, make_product):
    p = make_product(stock=1)
    h = auth(admin)
    client.post(f"/api/admin/stock/{p.id}/adjust", json={"quantity_change": -1}, headers=h)
    assert client.get(f"/api/products/{p.id}").json()["status"] == "out_of_stock"
    client.post(f"/api/admin/stock/{p.id}/adjust", json={"quantity_change": 4}, headers=h)
    assert client.get(f"/api/products/{p.id}").json()["status"] == "active"


def test_history_is_newest_first_and_filterable(client, admin, auth, make_product):
    a, b = make_product(stock=3), make_product(stock=3)
    h = auth(admin)
    client.post(f"/api/admin/stock/{a.id}/adjust", json={"quantity_change": 2}, headers=h)
    client.post(f"/api/admin/stock/{a.id}/adjust", json={"quantity_change": -1}, headers=h)

    body = client.get("/api/admin/stock/history", params={"product_id": a.id}, headers=h).json()
    assert body["total"] == 3
    assert [e["quantity_change"] for e in body["items"]] == [-1, 2, 3]

    only_initial = client.get("/api/admin/stock/history", params={"change_type": "initial"}, headers=h).json()
    assert {e["product_id"] for e in only_initial["items"]} == {a.id, b.id}


def test_low_stock(client, admin, auth, make_product):
    low = make_product(stock=2, low_stock_threshold=5)
    make_product(stock=50)
    items = client.get("/api/admin/stock/low", headers=auth(admin)).json()["items"]
    assert [p["id"] for p in items] == [low.id]


def test_stock_endpoints_need_admin(client, buyer, auth):
    assert client.get("/api/admin/stock/history", headers=auth(buyer)).status_code == 403

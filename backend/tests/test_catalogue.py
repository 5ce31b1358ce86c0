from datetime import timedelta

from kaimono.models.audit_log import AuditLog
from kaimono.utils.clock import utcnow


def test_product_crud(client, admin, auth, session_scope):
    h = auth(admin)
    cat = client.post("/api/categories", json={"name": "お茶"}, headers=h).json()

    r = client.post(
        "/api/products",
        json={"sku": "TEA-1", "name": "煎茶", "price": 1200, "stock_quantity": 10, "category_ids": [cat["id"]]},
        headers=h,
    )
    assert r.status_code == 201, r.text
    product = r.json()
    assert product["category_ids"] == [cat["id"]]

    dup = client.post("/api/products", json={"sku": "TEA-1", "name": "copy", "price": 1}, headers=h)
    assert dup.status_code == 409

    r = client.put(f"/api/products/{product['id']}", json={"price": 1500, "name": "上煎茶"}, headers=h)
    assert (r.json()["price"], r.json()["name"], r.json()["stock_quantity"]) == (1500, "上煎茶", 10)
    assert client.put(f"/api/products/{product['id']}", json={"status": "gone"}, headers=h).status_code == 400

    assert client.delete(f"/api/products/{product['id']}", headers=h).status_code == 200
    assert client.get(f"/api/products/{product['id']}").status_code == 404

    with session_scope() as db:
        actions = [a.action for a in db.query(AuditLog).order_by(AuditLog.id)]
        assert actions == ["product.create", "product.update", "product.delete"]


def test_product_writes_need_admin(client, buyer, auth):
    r = client.post("/api/products", json={"sku": "X", "name": "x", "price": 1}, headers=auth(buyer))
    assert r.status_code == 403


def test_product_listing(client, make_product):
    a = make_product(price=300, name="あんぱん")
    b = make_product(price=100, name="かりんとう")
    make_product(price=200, name="せんべい", status="inactive")
    make_product(price=50, name="だんご", stock=0)

    body = client.get("/api/products").json()
    assert body["total"] == 2
    assert [p["name"] for p in body["items"]] == ["あんぱん", "かりんとう"]

    by_price = client.get("/api/products", params={"sort": "price"}).json()["items"]
    assert [p["id"] for p in by_price] == [b.id, a.id]

    found = client.get("/api/products", params={"q": "かりん"}).json()["items"]
    assert [p["id"] for p in found] == [b.id]

    out = client.get("/api/products", params={"status": "out_of_stock"}).json()["items"]
    assert [p["name"] for p in out] == ["だんご"]


def test_product_listing_by_category(client, admin, auth, make_product):
    cat = client.post("/api/categories", json={"name": "和菓子", "slug": "wagashi"}, headers=auth(admin)).json()
    inside = make_product(category_ids=[cat["id"]])
    make_product()
    items = client.get("/api/products", params={"category_id": cat["id"]}).json()["items"]
    assert [p["id"] for p in items] == [inside.id]


def test_category_tree_and_delete_rules(client, admin, auth):
    h = auth(admin)
    food = client.post("/api/categories", json={"name": "Food", "sort_order": 1}, headers=h).json()
    sweets = client.post("/api/categories", json={"name": "Sweets", "parent_id": food["id"]}, headers=h).json()
    client.post("/api/categories", json={"name": "Drinks", "sort_order": 2}, headers=h)

    assert food["slug"] == "food"
    assert client.post("/api/categories", json={"name": "food"}, headers=h).status_code == 409

    tree = client.get("/api/categories/tree").json()["items"]
    assert [n["name"] for n in tree] == ["Food", "Drinks"]
    assert [c["id"] for c in tree[0]["children"]] == [sweets["id"]]

    r = client.put(f"/api/categories/{food['id']}", json={"parent_id": food["id"]}, headers=h)
    assert r.status_code == 400

    r = client.delete(f"/api/categories/{food['id']}", headers=h)
    assert r.status_code == 400
    assert client.delete(f"/api/categories/{sweets['id']}", headers=h).status_code == 200
    assert client.delete(f"/api/categories/{food['id']}", headers=h).status_code == 200
    assert [c["name"] for c in client.get("/api/categories").json()["items"]] == ["Drinks"]


def test_favorites(client, buyer, make_user, auth, make_product):
    a, b = make_product(), make_product()
    h = auth(buyer)

    assert client.post("/api/favorites", json={"product_id": a.id}, headers=h).status_code == 200
    first = client.post("/api/favorites", json={"product_id": a.id}, headers=h).json()
    assert client.get("/api/favorites", headers=h).json()["total"] == 1
    assert client.post("/api/favorites", json={"product_id": 9999}, headers=h).status_code == 404

    client.post("/api/favorites", json={"product_id": a.id}, headers=auth(make_user()))
    assert client.get(f"/api/products/{a.id}/favorites/count").json()["count"] == 2

    status = client.get("/api/favorites/status", params=[("product_ids", a.id), ("product_ids", b.id)], headers=h)
    assert status.json() == {"status": {str(a.id): True, str(b.id): False}}

    assert client.delete(f"/api/favorites/{a.id}", headers=h).json() == {"success": True}
    assert client.delete(f"/api/favorites/{a.id}", headers=h).status_code == 404
    assert first["product_id"] == a.id


def test_banners(client, admin, auth):
    h = auth(admin)
    now = utcnow()
    r = client.post(
        "/api/banners",
        json=[
            {"title": "秋のセール", "image_url": "/img/autumn.jpg", "sort_order": 2},
            {"title": "新商品", "image_url": "/img/new.jpg", "sort_order": 1},
            {"title": "終了", "image_url": "/img/old.jpg", "end_date": (now - timedelta(days=1)).isoformat()},
            {"title": "予告", "image_url": "/img/soon.jpg", "start_date": (now + timedelta(days=1)).isoformat()},
            {"title": "非表示", "image_url": "/img/off.jpg", "is_active": False},
        ],
        headers=h,
    )
    assert r.status_code == 201, r.text
    assert r.json()["count"] == 5

    live = client.get("/api/banners").json()["items"]
    assert [b["title"] for b in live] == ["新商品", "秋のセール"]
    assert len(client.get("/api/banners/all", headers=h).json()["items"]) == 5

    single = client.post("/api/banners", json={"title": "単品", "image_url": "/img/one.jpg"}, headers=h).json()
    bid = single["banner"]["id"]
    client.put(f"/api/banners/{bid}", json={"sort_order": -1}, headers=h)
    assert client.get("/api/banners").json()["items"][0]["id"] == bid

    assert client.delete(f"/api/banners/{bid}", headers=h).status_code == 200
    assert client.get(f"/api/banners/{bid}", headers=h).status_code == 404


def test_banner_bulk_create_is_all_or_nothing(client, admin, auth):
    r = client.post(
        "/api/banners",
        json=[
            {"title": "ok", "image_url": "/img/a.jpg"},
            {"title": "bad", "image_url": "/img/b.jpg", "start_date": "2024-02-01T00:00:00", "end_date": "2024-01-01T00:00:00"},
        ],
        headers=auth(admin),
    )
    assert r.status_code == 400
    assert client.get("/api/banners/all", headers=auth(admin)).json()["items"] == []

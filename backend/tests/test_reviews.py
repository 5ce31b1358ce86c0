def write_review(client, headers, product, rating=5, **fields):
    return client.post("/api/reviews", json={"product_id": product.id, "rating": rating, **fields}, headers=headers)


def test_review_requires_purchase(client, buyer, auth, make_product):
    p = make_product()
    r = write_review(client, auth(buyer), p)
    assert r.status_code == 403
    assert r.json()["message"] == "You can only review products you have purchased"


def test_review_unknown_product(client, buyer, auth):
    r = client.post("/api/reviews", json={"product_id": 404, "rating": 3}, headers=auth(buyer))
    assert r.status_code == 404


def test_rating_must_be_between_one_and_five(client, buyer, auth, place_order, make_product):
    p = make_product()
    place_order(buyer, (p, 1))
    assert write_review(client, auth(buyer), p, rating=6).status_code == 400
    assert write_review(client, auth(buyer), p, rating=0).status_code == 400


def test_one_review_per_order(client, buyer, auth, place_order, make_product):
    p = make_product()
    place_order(buyer, (p, 1))
    h = auth(buyer)

    r = write_review(client, h, p, title="良い", comment="また買います")
    assert r.status_code == 201, r.text
    assert r.json()["review"]["status"] == "pending"
    assert write_review(client, h, p).status_code == 409


def test_cancelled_order_does_not_count_as_purchase(client, buyer, auth, place_order, make_product):
    p = make_product()
    order = place_order(buyer, (p, 1))
    client.post(f"/api/orders/{order.id}/cancel", headers=auth(buyer))
    assert write_review(client, auth(buyer), p).status_code == 403


def test_moderation_updates_rating(client, buyer, make_user, admin, auth, place_order, make_product):
    p = make_product(stock=20)
    other = make_user(first_name="花子", last_name="佐藤")
    place_order(buyer, (p, 1))
    place_order(other, (p, 1))
    first = write_review(client, auth(buyer), p, rating=5).json()["review"]
    second = write_review(client, auth(other), p, rating=2).json()["review"]

    # pending reviews are not public and do not count
    assert client.get(f"/api/reviews/product/{p.id}").json()["total"] == 0
    assert client.get(f"/api/products/{p.id}").json()["review_count"] == 0

    h = auth(admin)
    assert client.put(f"/api/reviews/{first['id']}/moderate", json={"status": "approved"}, headers=h).status_code == 200
    client.put(f"/api/reviews/{second['id']}/moderate", json={"status": "approved"}, headers=h)

    product = client.get(f"/api/products/{p.id}").json()
    assert product["rating"] == 3.5
    assert product["review_count"] == 2

    public = client.get(f"/api/reviews/product/{p.id}").json()
    assert public["total"] == 2
    assert public["distribution"] == {"1": 0, "2": 1, "3": 0, "4": 0, "5": 1}

    client.put(f"/api/reviews/{second['id']}/moderate", json={"status": "rejected"}, headers=h)
    assert client.get(f"/api/products/{p.id}").json()["rating"] == 5.0

    bad = client.put(f"/api/reviews/{first['id']}/moderate", json={"status": "maybe"}, headers=h)
    assert bad.status_code == 400


def test_edit_sends_review_back_to_moderation(client, buyer, admin, auth, place_order, make_product):
    p = make_product()
    place_order(buyer, (p, 1))
    review = write_review(client, auth(buyer), p, rating=4).json()["review"]
    client.put(f"/api/reviews/{review['id']}/moderate", json={"status": "approved"}, headers=auth(admin))

    r = client.put(f"/api/reviews/{review['id']}", json={"rating": 1}, headers=auth(buyer))
    assert r.json()["review"]["status"] == "pending"
    assert client.get(f"/api/products/{p.id}").json()["review_count"] == 0


def test_reviewable_and_my_reviews(client, buyer, auth, place_order, make_product):
    a, b = make_product(), make_product()
    order = place_order(buyer, (a, 1), (b, 1))
    h = auth(buyer)

    reviewable = client.get("/api/reviews/reviewable", headers=h).json()["items"]
    assert {(i["product_id"], i["order_id"]) for i in reviewable} == {(a.id, order.id), (b.id, order.id)}

    write_review(client, h, a, order_id=order.id)
    reviewable = client.get("/api/reviews/reviewable", headers=h).json()["items"]
    assert [i["product_id"] for i in reviewable] == [b.id]

    mine = client.get("/api/reviews/my", headers=h).json()["items"]
    assert [r["product_name"] for r in mine] == [a.name]


def test_reply_and_delete(client, buyer, make_user, admin, auth, place_order, make_product):
    p = make_product()
    place_order(buyer, (p, 1))
    review = write_review(client, auth(buyer), p).json()["review"]

    r = client.post(f"/api/reviews/{review['id']}/reply", json={"reply": "ありがとうございます"}, headers=auth(admin))
    assert r.json()["review"]["admin_reply"] == "ありがとうございます"

    assert client.delete(f"/api/reviews/{review['id']}", headers=auth(make_user())).status_code == 404
    assert client.delete(f"/api/reviews/{review['id']}", headers=auth(buyer)).status_code == 200
    assert client.get("/api/reviews", headers=auth(admin)).json()["total"] == 0

from conftest import TOKYO


def defaults(client, headers):
    return {a["id"]: a["is_default"] for a in client.get("/api/shipping-addresses", headers=headers).json()["items"]}


def test_missing_fields_are_named(client, buyer, auth):
    r = client.post("/api/shipping-addresses", json={"name": "山田 太郎", "city": "千代田区"}, headers=auth(buyer))
    assert r.status_code == 400
    message = r.json()["message"]
    assert message.startswith("Missing required fields:")
    assert "postal_code" in message
    assert "phone" in message
    assert "city" not in message


def test_first_address_becomes_default(client, buyer, auth):
    h = auth(buyer)
    first = client.post("/api/shipping-addresses", json=TOKYO, headers=h)
    assert first.status_code == 201
    assert first.json()["address"]["is_default"] is True

    second = client.post("/api/shipping-addresses", json={**TOKYO, "city": "港区"}, headers=h).json()["address"]
    assert second["is_default"] is False


def test_only_one_default(client, buyer, auth):
    h = auth(buyer)
    a = client.post("/api/shipping-addresses", json=TOKYO, headers=h).json()["address"]
    b = client.post("/api/shipping-addresses", json={**TOKYO, "is_default": True}, headers=h).json()["address"]
    assert defaults(client, h) == {a["id"]: False, b["id"]: True}

    r = client.put(f"/api/shipping-addresses/{a['id']}/default", headers=h)
    assert r.json()["address"]["is_default"] is True
    assert defaults(client, h) == {a["id"]: True, b["id"]: False}


def test_update_address(client, buyer, auth):
    h = auth(buyer)
    a = client.post("/api/shipping-addresses", json=TOKYO, headers=h).json()["address"]
    r = client.put(f"/api/shipping-addresses/{a['id']}", json={"prefecture": "大阪府", "city": "大阪市"}, headers=h)
    assert r.status_code == 200
    got = client.get(f"/api/shipping-addresses/{a['id']}", headers=h).json()
    assert (got["prefecture"], got["city"], got["postal_code"]) == ("大阪府", "大阪市", TOKYO["postal_code"])

    assert client.put(f"/api/shipping-addresses/{a['id']}", json={"phone": " "}, headers=h).status_code == 400


def test_addresses_are_private(client, buyer, make_user, auth, make_address):
    addr = make_address(buyer)
    other = auth(make_user())
    assert client.get(f"/api/shipping-addresses/{addr.id}", headers=other).status_code == 404
    assert client.delete(f"/api/shipping-addresses/{addr.id}", headers=other).status_code == 404
    assert client.get("/api/shipping-addresses", headers=other).json()["items"] == []

    assert client.delete(f"/api/shipping-addresses/{addr.id}", headers=auth(buyer)).json() == {"success": True}
    assert client.get(f"/api/shipping-addresses/{addr.id}", headers=auth(buyer)).status_code == 404

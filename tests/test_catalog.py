from decimal import Decimal


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_list_products_sorted_by_name(client, products):
    body = client.get("/products/").json()

    assert [p["name"] for p in body] == ["Keyboard", "Monitor", "Mouse"]
    assert Decimal(body[0]["price"]) == Decimal("199.99")


def test_get_product(client, products):
    resp = client.get("/products/P3")

    assert resp.status_code == 200
    assert resp.json()["stock"] == 3
    assert client.get("/products/nope").status_code == 404

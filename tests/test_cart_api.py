from decimal import Decimal

from sqlalchemy import update

from storefront.data.database import SessionLocal
from storefront.data.models import CartModel, ProductModel
from storefront.repos.cart_repo import CartRepo
from tests.conftest import auth


def add(client, user_id, product_id, quantity=1, color=None):
    return client.post(
        f"/carts/{user_id}/items",
        json={"product_id": product_id, "quantity": quantity, "selected_color": color},
        headers=auth(user_id),
    )


def test_get_cart_creates_empty_cart(client, products):
    resp = client.get("/carts/u1", headers=auth("u1"))

    assert resp.status_code == 200
    body = resp.json()
    assert body["user_id"] == "u1"
    assert body["items"] == []
    assert body["total_items"] == 0

    again = client.get("/carts/u1", headers=auth("u1")).json()
    assert again["cart_id"] == body["cart_id"]


def test_add_same_product_and_color_merges_into_one_line(client, products):
    add(client, "u1", "P1", 1, "red")
    add(client, "u1", "P1", 2, "red")
    body = add(client, "u1", "P1", 4, "red").json()

    assert len(body["items"]) == 1
    assert body["items"][0]["quantity"] == 7
    assert body["total_items"] == 7
    assert Decimal(body["total_price"]) == Decimal("199.99") * 7


def test_different_colors_are_separate_lines(client, products):
    add(client, "u1", "P1", 1, "red")
    body = add(client, "u1", "P1", 1, "blue").json()

    assert len(body["items"]) == 2
    assert {line["selected_color"] for line in body["items"]} == {"red", "blue"}


def test_add_accepts_camel_case_body(client, products):
    resp = client.post(
        "/carts/u1/items",
        json={"productId": "P2", "quantity": 2, "selectedColor": "black"},
        headers=auth("u1"),
    )

    assert resp.status_code == 200
    assert resp.json()["items"][0]["selected_color"] == "black"


def test_add_unknown_product_is_404(client, products):
    resp = add(client, "u1", "NOPE")
    assert resp.status_code == 404


def test_add_non_positive_quantity_is_rejected(client, products):
    resp = add(client, "u1", "P1", 0)
    assert resp.status_code == 422


def test_update_quantity_by_line_id(client, products):
    line_id = add(client, "u1", "P2", 1).json()["items"][0]["line_id"]

    resp = client.put(f"/carts/u1/items/{line_id}", json={"quantity": 5}, headers=auth("u1"))

    assert resp.status_code == 200
    assert resp.json()["items"][0]["quantity"] == 5


def test_update_quantity_below_one_is_rejected(client, products):
    line_id = add(client, "u1", "P2", 1).json()["items"][0]["line_id"]

    resp = client.put(f"/carts/u1/items/{line_id}", json={"quantity": 0}, headers=auth("u1"))

    assert resp.status_code == 422
    assert client.get("/carts/u1", headers=auth("u1")).json()["items"][0]["quantity"] == 1


def test_update_line_of_another_users_cart_is_forbidden(client, products):
    line_id = add(client, "u2", "P2", 1).json()["items"][0]["line_id"]

    resp = client.put(f"/carts/u1/items/{line_id}", json={"quantity": 3}, headers=auth("u1"))

    assert resp.status_code == 403


def test_update_unknown_line_is_404(client, products):
    resp = client.put("/carts/u1/items/missing", json={"quantity": 3}, headers=auth("u1"))
    assert resp.status_code == 404


def test_remove_by_line_id_removes_exactly_that_line(client, products):
    add(client, "u1", "P1", 1, "red")
    body = add(client, "u1", "P1", 2, "blue").json()
    blue = next(line for line in body["items"] if line["selected_color"] == "blue")

    resp = client.request(
        "DELETE",
        "/carts/u1/items/P1",
        json={"selected_color": "red", "line_id": blue["line_id"]},
        headers=auth("u1"),
    )

    items = resp.json()["items"]
    assert resp.status_code == 200
    assert len(items) == 1
    assert items[0]["selected_color"] == "red"


def test_remove_by_product_and_color(client, products):
    add(client, "u1", "P1", 1, "red")
    add(client, "u1", "P1", 1)
    add(client, "u1", "P2", 1)

    resp = client.request("DELETE", "/carts/u1/items/P1", json={}, headers=auth("u1"))

    remaining = {(line["product"]["id"], line["selected_color"]) for line in resp.json()["items"]}
    assert remaining == {("P1", "red"), ("P2", None)}


def test_clear_cart_keeps_cart(client, products):
    cart_id = add(client, "u1", "P1", 1).json()["cart_id"]
    add(client, "u1", "P2", 3)

    resp = client.delete("/carts/u1", headers=auth("u1"))
    assert resp.status_code == 200
    assert resp.json() == {"message": "Cart cleared"}

    body = client.get("/carts/u1", headers=auth("u1")).json()
    assert body["cart_id"] == cart_id
    assert body["items"] == []


def test_every_mutation_bumps_cart_version(client, products):
    v1 = client.get("/carts/u1", headers=auth("u1")).json()["version"]
    v2 = add(client, "u1", "P1", 1).json()["version"]
    v3 = add(client, "u1", "P1", 1).json()["version"]

    assert v1 < v2 < v3


def test_lines_of_vanished_products_are_dropped(client, products, db):
    add(client, "u1", "P1", 1)
    add(client, "u1", "P3", 2)

    db.delete(db.get(ProductModel, "P3"))
    db.commit()

    body = client.get("/carts/u1", headers=auth("u1")).json()
    assert [line["product"]["id"] for line in body["items"]] == ["P1"]
    assert body["total_items"] == 1


def test_cart_requires_identity(client, products):
    assert client.get("/carts/u1").status_code == 401


def test_cart_of_another_user_is_forbidden(client, products):
    assert client.get("/carts/u1", headers=auth("u2")).status_code == 403


def test_admin_can_read_any_cart(client, products):
    add(client, "u1", "P1", 1)
    resp = client.get("/carts/u1", headers=auth("admin-1", role="admin"))

    assert resp.status_code == 200
    assert resp.json()["total_items"] == 1


def test_concurrent_cart_change_is_a_conflict(client, products, monkeypatch):
    add(client, "u1", "P1", 1)
    original = CartRepo.update_cart_version

    def bump_elsewhere_first(self, cart_id, old_version, new_data):
        other = SessionLocal()
        try:
            other.execute(
                update(CartModel).where(CartModel.id == cart_id).values(version=CartModel.version + 1)
            )
            other.commit()
        finally:
            other.close()
        return original(self, cart_id, old_version, new_data)

    monkeypatch.setattr(CartRepo, "update_cart_version", bump_elsewhere_first)

    resp = add(client, "u1", "P2", 1)
    assert resp.status_code == 409

    monkeypatch.undo()
    body = client.get("/carts/u1", headers=auth("u1")).json()
    assert [(line["product"]["id"], line["quantity"]) for line in body["items"]] == [("P1", 1)]
    assert body["version"] == 3

import base64
import json
from decimal import Decimal

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from storefront.data.models import OrderLineModel, OrderModel, ProductModel
from storefront.domain.errors import (
    InsufficientStock,
    MissingFields,
    ProductNotFound,
    ProofRequired,
)
from storefront.domain.schemas import OrderCreateIn
from storefront.repos.catalog_repo import CatalogRepo
from storefront.repos.order_repo import OrderRepo
from storefront.services.notification_service import NotificationService
from storefront.services.order_service import OrderService
from tests.conftest import auth, order_payload, stock_of


def place(client, payload, user_id="u1", **kwargs):
    return client.post("/orders/", json=payload, headers=auth(user_id), **kwargs)


def count(db, model):
    return db.query(model).count()


def test_place_order_debits_stock(client, products):
    resp = place(client, order_payload())

    assert resp.status_code == 201
    body = resp.json()
    assert body["status"] == "pending"
    assert body["payment_method"] == "credit_card"
    assert body["proof_url"] == ""
    assert len(body["items"]) == 1
    assert body["items"][0]["quantity"] == 2
    assert stock_of("P1") == 3


def test_every_item_is_debited_by_its_quantity(client, products):
    items = [
        {"product_id": "P1", "quantity": 1},
        {"product_id": "P2", "quantity": 4, "selected_color": "black"},
        {"product_id": "P3", "quantity": 3},
    ]

    resp = place(client, order_payload(items=items))

    assert resp.status_code == 201
    assert len(resp.json()["items"]) == 3
    assert (stock_of("P1"), stock_of("P2"), stock_of("P3")) == (4, 16, 0)


def test_insufficient_stock_creates_nothing(client, products, db):
    resp = place(client, order_payload(items=[{"product_id": "P1", "quantity": 6}]))

    assert resp.status_code == 400
    detail = resp.json()["detail"]
    assert detail["product_id"] == "P1"
    assert detail["available_stock"] == 5
    assert detail["requested_quantity"] == 6
    assert count(db, OrderModel) == 0
    assert count(db, OrderLineModel) == 0
    assert stock_of("P1") == 5


def test_same_product_in_several_colors_is_checked_against_total(client, products, db):
    items = [
        {"product_id": "P1", "quantity": 3, "selected_color": "red"},
        {"product_id": "P1", "quantity": 3, "selected_color": "blue"},
    ]

    resp = place(client, order_payload(items=items))

    assert resp.status_code == 400
    assert resp.json()["detail"]["requested_quantity"] == 6
    assert count(db, OrderModel) == 0
    assert stock_of("P1") == 5


def test_unknown_product_is_404_and_nothing_is_debited(client, products, db):
    items = [{"product_id": "P1", "quantity": 1}, {"product_id": "GONE", "quantity": 1}]

    resp = place(client, order_payload(items=items))

    assert resp.status_code == 404
    assert "GONE" in resp.json()["detail"]
    assert count(db, OrderModel) == 0
    assert stock_of("P1") == 5


def test_missing_fields_are_reported(client, products):
    payload = order_payload()
    del payload["shipping_details"]
    payload["items"] = []

    resp = place(client, payload)

    assert resp.status_code == 400
    details = resp.json()["detail"]["details"]
    assert details["has_shipping_details"] is False
    assert details["has_items"] is False
    assert details["has_user_id"] is True


def test_unsupported_payment_method_is_rejected(client, products):
    resp = place(client, order_payload(payment_method="cash"))
    assert resp.status_code == 400


def test_bank_transfer_without_proof_is_rejected(client, products, db):
    resp = place(client, order_payload(payment_method="bank_transfer"))

    assert resp.status_code == 400
    assert "Slip image is required" in resp.json()["detail"]
    assert count(db, OrderModel) == 0


def test_proof_is_checked_before_any_product_lookup(db, monkeypatch):
    def fail(*args, **kwargs):
        raise AssertionError("catalog must not be queried")

    monkeypatch.setattr(CatalogRepo, "get_products", fail)
    monkeypatch.setattr(CatalogRepo, "get_product", fail)

    payload = OrderCreateIn.model_validate(
        order_payload(items=[{"product_id": "NOPE", "quantity": 100}], payment_method="bank_transfer")
    )
    with pytest.raises(ProofRequired):
        OrderService(db).place_order(payload)


def test_missing_fields_come_before_everything_else(db):
    payload = OrderCreateIn.model_validate({"payment_method": "bank_transfer"})

    with pytest.raises(MissingFields):
        OrderService(db).place_order(payload)


def test_service_raises_structured_errors(db, products):
    svc = OrderService(db)

    with pytest.raises(ProductNotFound) as not_found:
        svc.place_order(OrderCreateIn.model_validate(order_payload(items=[{"product_id": "X", "quantity": 1}])))
    assert not_found.value.product_id == "X"

    with pytest.raises(InsufficientStock) as insufficient:
        svc.place_order(OrderCreateIn.model_validate(order_payload(items=[{"product_id": "P3", "quantity": 4}])))
    assert (insufficient.value.available, insufficient.value.requested) == (3, 4)


def test_multipart_order_with_slip(client, products):
    slip = b"\x89PNG\r\n\x1a\nfake-slip"
    resp = client.post(
        "/orders/",
        data={"orderData": json.dumps(order_payload(payment_method="bank_transfer"))},
        files={"slip": ("slip.png", slip, "image/png")},
        headers=auth("u1"),
    )

    assert resp.status_code == 201
    expected = "data:image/png;base64," + base64.b64encode(slip).decode()
    assert resp.json()["proof_url"] == expected
    assert stock_of("P1") == 3


def test_json_order_data_wrapper_with_camel_case(client, products):
    payload = {
        "orderData": {
            "userId": "u1",
            "totalAmount": 99.0,
            "shippingDetails": {"firstName": "Ala", "phone": "123"},
            "items": [{"productId": "P2", "quantity": 1, "price": 1.0}],
            "paymentMethod": "credit_card",
        }
    }

    resp = place(client, payload)

    assert resp.status_code == 201
    shipping = resp.json()["shipping_details"]
    assert shipping["first_name"] == "Ala"
    assert shipping["last_name"] == ""
    assert shipping["recipient_name"] == "Ala"
    assert shipping["phone_number"] == "123"
    assert shipping["city"] == ""


def test_invalid_order_data_format(client, products):
    resp = client.post(
        "/orders/",
        data={"orderData": "{not json"},
        headers=auth("u1"),
    )
    assert resp.status_code == 400


def test_unit_price_is_a_point_in_time_copy(client, products, db):
    body = place(client, order_payload(items=[{"product_id": "P1", "quantity": 1, "price": "1.00"}])).json()
    assert Decimal(body["items"][0]["unit_price"]) == Decimal("199.99")

    product = db.get(ProductModel, "P1")
    product.price = Decimal("10.00")
    db.commit()

    again = client.get(f"/orders/{body['id']}", headers=auth("u1")).json()
    assert Decimal(again["items"][0]["unit_price"]) == Decimal("199.99")


def test_cannot_place_order_for_another_user(client, products):
    resp = place(client, order_payload(user_id="u2"), user_id="u1")
    assert resp.status_code == 403
    assert stock_of("P1") == 5


def test_checkout_in_progress_is_rejected(client, products, lock_service):
    lock_service.acquire_checkout_lock("u1", "other-request", ttl=30)

    resp = place(client, order_payload())

    assert resp.status_code == 409
    assert stock_of("P1") == 5


def test_checkout_lock_is_released_after_failure(client, products, lock_service):
    assert place(client, order_payload(items=[{"product_id": "P1", "quantity": 50}])).status_code == 400
    assert lock_service.locks == {}
    assert place(client, order_payload()).status_code == 201
    assert lock_service.locks == {}


def test_failed_lock_release_does_not_fail_committed_order(client, products, db, monkeypatch, lock_service):
    def redis_down(user_id, token):
        raise RedisConnectionError("redis went away")

    monkeypatch.setattr(lock_service, "release_checkout_lock", redis_down)

    resp = place(client, order_payload())

    assert resp.status_code == 201
    assert count(db, OrderModel) == 1
    assert stock_of("P1") == 3


def test_lock_acquire_failure_is_503(client, products, db, monkeypatch, lock_service):
    def redis_down(user_id, token, ttl):
        raise RedisConnectionError("redis went away")

    monkeypatch.setattr(lock_service, "acquire_checkout_lock", redis_down)

    resp = place(client, order_payload())

    assert resp.status_code == 503
    assert count(db, OrderModel) == 0
    assert stock_of("P1") == 5


def test_persistence_failure_leaves_no_partial_state(client, products, db, monkeypatch):
    def broken(self, order):
        raise SQLAlchemyError("disk full")

    monkeypatch.setattr(OrderRepo, "add_order", broken)

    resp = place(client, order_payload())

    assert resp.status_code == 500
    assert count(db, OrderModel) == 0
    assert stock_of("P1") == 5


def test_transient_database_errors_are_retried(db, products, monkeypatch):
    calls = []
    original = OrderRepo.add_order

    def flaky(self, order):
        calls.append(1)
        if len(calls) == 1:
            raise OperationalError("INSERT", {}, Exception("database is locked"))
        return original(self, order)

    monkeypatch.setattr(OrderRepo, "add_order", flaky)

    order = OrderService(db).place_order(OrderCreateIn.model_validate(order_payload()))

    assert len(calls) == 2
    assert len(order["items"]) == 1
    assert stock_of("P1") == 3


def test_notification_is_sent_after_commit(db, products, monkeypatch):
    sent = []
    monkeypatch.setattr(
        NotificationService,
        "send_order_placed",
        staticmethod(lambda user_id, order_id, total: sent.append((user_id, order_id))),
    )

    order = OrderService(db).place_order(OrderCreateIn.model_validate(order_payload()))

    assert sent == [("u1", order["id"])]


def test_customer_sees_only_own_orders(client, products):
    place(client, order_payload(items=[{"product_id": "P2", "quantity": 1}]))
    place(client, order_payload(user_id="u2", items=[{"product_id": "P2", "quantity": 1}]), user_id="u2")

    own = client.get("/orders/", headers=auth("u1")).json()
    assert [o["user_id"] for o in own] == ["u1"]

    assert client.get("/orders/?user_id=u2", headers=auth("u1")).status_code == 403

    everything = client.get("/orders/", headers=auth("admin", role="admin")).json()
    assert {o["user_id"] for o in everything} == {"u1", "u2"}


def test_order_of_another_user_is_forbidden(client, products):
    order_id = place(client, order_payload()).json()["id"]

    assert client.get(f"/orders/{order_id}", headers=auth("u2")).status_code == 403
    assert client.get("/orders/missing", headers=auth("u1")).status_code == 404


def test_upload_slip_after_placement(client, products):
    order_id = place(client, order_payload()).json()["id"]

    resp = client.post(
        f"/orders/{order_id}/slip",
        files={"slip": ("slip.jpg", b"jpeg-bytes", "image/jpeg")},
        headers=auth("u1"),
    )

    assert resp.status_code == 200
    assert resp.json()["proof_url"].startswith("data:image/jpeg;base64,")

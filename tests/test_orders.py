import re

import pytest

from conftest import SHIPPING
from errors import ConflictError, ValidationError
from orders import cancel_order, create_order, generate_order_number, update_status, validate_shipping_address


def _checkout(client, headers, **extra):
    payload = {"shipping_address": dict(SHIPPING), "payment_method": "cash_on_delivery"}
    payload.update(extra)
    return client.post("/orders", json=payload, headers=headers)


def test_checkout_from_cart(client, artwork, bob):
    headers, user = bob
    client.post("/cart/items", json={"artwork_id": artwork["id"], "quantity": 2}, headers=headers)

    r = _checkout(client, headers)
    assert r.status_code == 201, r.text
    order = r.json()
    assert order["subtotal"] == 200
    assert order["shipping_cost"] == 50
    assert order["tax"] == 30
    assert order["total"] == 280
    assert order["payment_status"] == "pending"
    assert order["status"] == "pending"
    assert order["user_id"] == user["id"]
    assert order["shipping_address"]["country"] == "Ethiopia"
    assert order["items"][0]["title"] == "Sunset"
    assert order["items"][0]["seller_id"] == artwork["artist"]["id"]
    assert re.fullmatch(r"ORD-\d+-\d{4}", order["order_number"])

    assert client.get("/cart", headers=headers).json()["items"] == []


def test_checkout_with_explicit_items(client, db, artwork, bob):
    r = _checkout(client, bob[0], items=[{"artwork_id": artwork["id"], "quantity": 1}], notes="Gift wrap")
    assert r.status_code == 201
    assert r.json()["subtotal"] == 100
    assert r.json()["notes"] == "Gift wrap"

    payment = db["payment"].find_one({"order_id": r.json()["id"]})
    assert payment["amount"] == r.json()["total"]
    assert payment["status"] == "pending"


def test_checkout_validation(client, artwork, bob):
    headers = bob[0]
    r = _checkout(client, headers)
    assert r.status_code == 400
    assert r.json()["detail"] == "Cart is empty"

    items = [{"artwork_id": artwork["id"], "quantity": 1}]
    r = _checkout(client, headers, items=items, payment_method="bitcoin")
    assert r.status_code == 400

    r = _checkout(client, headers, items=items, shipping_address=dict(SHIPPING, city=" "))
    assert r.status_code == 400
    assert "city" in r.json()["detail"]


def test_total_is_frozen_at_checkout(client, db, artwork, alice, bob):
    order = _checkout(client, bob[0], items=[{"artwork_id": artwork["id"], "quantity": 1}]).json()
    client.put(f"/artworks/{artwork['id']}/sell", json={"price": 999}, headers=alice[0])

    again = client.get(f"/orders/{order['id']}", headers=bob[0]).json()
    assert again["total"] == order["total"] == again["subtotal"] + again["shipping_cost"] + again["tax"]


def test_total_invariant_with_rounding(db):
    from artworks import create_artwork

    art = create_artwork(db, "artist", "T", "D", "img", 33.33)
    order = create_order(db, "buyer", SHIPPING, "card", items=[{"artwork_id": art["id"], "quantity": 3}])
    assert order["subtotal"] == 99.99
    assert order["tax"] == 15.0
    assert order["total"] == round(order["subtotal"] + order["shipping_cost"] + order["tax"], 2)


def test_order_visibility(client, artwork, alice, bob, admin):
    order = _checkout(client, bob[0], items=[{"artwork_id": artwork["id"], "quantity": 1}]).json()

    assert [o["id"] for o in client.get("/orders", headers=bob[0]).json()] == [order["id"]]
    assert client.get("/orders", headers=alice[0]).json() == []
    assert client.get(f"/orders/{order['id']}", headers=alice[0]).status_code == 403
    assert client.get(f"/orders/{order['id']}", headers=admin[0]).status_code == 200

    assert client.get("/orders/all", headers=bob[0]).status_code == 403
    assert len(client.get("/orders/all", headers=admin[0]).json()) == 1


def test_admin_cancel_then_conflict(client, artwork, bob, admin):
    order = _checkout(client, bob[0], items=[{"artwork_id": artwork["id"], "quantity": 1}]).json()

    r = client.put(f"/orders/{order['id']}/cancel", headers=admin[0])
    assert r.status_code == 200
    assert r.json()["status"] == "cancelled"
    assert r.json()["cancelled_at"] is not None

    r = client.put(f"/orders/{order['id']}/cancel", headers=admin[0])
    assert r.status_code == 409


def test_owner_can_cancel_but_others_cannot(client, artwork, alice, bob):
    order = _checkout(client, bob[0], items=[{"artwork_id": artwork["id"], "quantity": 1}]).json()
    assert client.put(f"/orders/{order['id']}/cancel", headers=alice[0]).status_code == 403
    assert client.put(f"/orders/{order['id']}/cancel", headers=bob[0]).status_code == 200


def test_cannot_cancel_delivered(db):
    from artworks import create_artwork

    art = create_artwork(db, "artist", "T", "D", "img", 10)
    order = create_order(db, "buyer", SHIPPING, "card", items=[{"artwork_id": art["id"], "quantity": 1}])
    admin = {"id": "admin-id", "role": "admin"}
    delivered = update_status(db, order["id"], "delivered", admin)
    assert delivered["delivered_at"] is not None
    with pytest.raises(ConflictError):
        cancel_order(db, order["id"], {"id": "buyer", "role": "user"})


def test_status_and_tracking(client, artwork, bob, admin):
    order = _checkout(client, bob[0], items=[{"artwork_id": artwork["id"], "quantity": 1}]).json()

    r = client.put(f"/orders/{order['id']}/status", json={"status": "processing"}, headers=bob[0])
    assert r.status_code == 403
    r = client.put(f"/orders/{order['id']}/status", json={"status": "lost"}, headers=admin[0])
    assert r.status_code == 400
    r = client.put(f"/orders/{order['id']}/status", json={"status": "processing"}, headers=admin[0])
    assert r.json()["status"] == "processing"

    r = client.put(f"/orders/{order['id']}/tracking", json={"tracking_number": "ET123"}, headers=admin[0])
    assert r.json()["tracking_number"] == "ET123"
    assert r.json()["status"] == "shipped"
    assert r.json()["shipped_at"] is not None


def test_mark_paid(client, db, artwork, alice, bob):
    order = _checkout(client, bob[0], items=[{"artwork_id": artwork["id"], "quantity": 1}]).json()
    assert client.put(f"/orders/{order['id']}/payment", json={}, headers=alice[0]).status_code == 403

    r = client.put(f"/orders/{order['id']}/payment", json={"transaction_ref": "TX-1"}, headers=bob[0])
    assert r.status_code == 200
    assert r.json()["payment_status"] == "paid"
    assert r.json()["payment_transaction_id"] == "TX-1"
    assert db["payment"].find_one({"order_id": order["id"]})["status"] == "paid"


def test_shipping_address_defaults_country():
    assert validate_shipping_address(SHIPPING).country == "Ethiopia"
    assert validate_shipping_address(dict(SHIPPING, country="Kenya")).country == "Kenya"
    with pytest.raises(ValidationError):
        validate_shipping_address({})


def test_order_numbers_look_right():
    assert re.fullmatch(r"ORD-\d{13}-\d{4}", generate_order_number())

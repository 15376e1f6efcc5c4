from datetime import datetime, timedelta, timezone

import pytest

from admin import sales_report
from errors import ValidationError

from conftest import SHIPPING


def _order(client, headers, artwork_id):
    r = client.post("/orders", json={"shipping_address": SHIPPING, "payment_method": "card",
                                      "items": [{"artwork_id": artwork_id, "quantity": 1}]}, headers=headers)
    assert r.status_code == 201, r.text
    return r.json()


def test_admin_routes_require_admin(client, bob):
    assert client.get("/admin/dashboard").status_code == 401
    assert client.get("/admin/dashboard", headers=bob[0]).status_code == 403
    assert client.get("/admin/users", headers=bob[0]).status_code == 403


def test_dashboard(client, artwork, bob, admin):
    order = _order(client, bob[0], artwork["id"])
    client.put(f"/orders/{order['id']}/payment", json={"transaction_ref": "TX"}, headers=bob[0])
    _order(client, bob[0], artwork["id"])

    stats = client.get("/admin/dashboard", headers=admin[0]).json()
    assert stats["total_users"] == 3
    assert stats["total_artworks"] == 1
    assert stats["total_orders"] == 2
    assert stats["pending_orders"] == 2
    assert stats["completed_orders"] == 0
    assert stats["total_revenue"] == 2 * order["total"]
    assert stats["paid_revenue"] == order["total"]


def test_manage_users(client, db, alice, bob, admin, shipping):
    headers = admin[0]
    _, user = bob
    emails = {u["email"] for u in client.get("/admin/users", headers=headers).json()}
    assert emails == {"alice@example.com", "bob@example.com", "admin@example.com"}

    r = client.put(f"/admin/users/{user['id']}", json={"bio": "Collector", "username": "alice"}, headers=headers)
    assert r.status_code == 400
    r = client.put(f"/admin/users/{user['id']}", json={"username": "  "}, headers=headers)
    assert r.status_code == 400
    r = client.put(f"/admin/users/{user['id']}", json={"bio": "Collector"}, headers=headers)
    assert r.json()["bio"] == "Collector"

    r = client.put(f"/admin/users/{user['id']}/role", json={"role": "superuser"}, headers=headers)
    assert r.status_code == 400
    r = client.put(f"/admin/users/{user['id']}/role", json={"role": "admin"}, headers=headers)
    assert r.json()["role"] == "admin"
    assert client.get("/admin/dashboard", headers=bob[0]).status_code == 200

    client.post("/orders/addresses", json=shipping, headers=bob[0])
    r = client.delete(f"/admin/users/{user['id']}", headers=headers)
    assert r.status_code == 200
    assert client.get(f"/admin/users/{user['id']}", headers=headers).status_code == 404
    assert db["shippingaddress"].count_documents({"user_id": user["id"]}) == 0
    # The deleted user's token no longer resolves to an account.
    assert client.get("/auth/profile", headers=bob[0]).status_code == 401


def test_manage_artworks(client, db, artwork, bob, admin):
    headers = admin[0]
    r = client.put(f"/admin/artworks/{artwork['id']}", json={"price": -5}, headers=headers)
    assert r.status_code == 400
    r = client.put(f"/admin/artworks/{artwork['id']}", json={"title": "Dusk", "price": 150}, headers=headers)
    assert r.json()["title"] == "Dusk"
    assert r.json()["price"] == 150

    client.post("/cart/items", json={"artwork_id": artwork["id"], "quantity": 1}, headers=bob[0])
    assert client.delete(f"/admin/artworks/{artwork['id']}", headers=headers).status_code == 200
    assert client.get(f"/artworks/{artwork['id']}").status_code == 404
    assert db["cart"].find_one({"user_id": bob[1]["id"]})["items"] == []


def test_admin_cannot_relist_sold_artwork(client, artwork, bob, admin):
    client.post(f"/artworks/{artwork['id']}/buy", headers=bob[0])
    r = client.put(f"/admin/artworks/{artwork['id']}", json={"for_sale": True}, headers=admin[0])
    assert r.status_code == 409


def test_admin_orders(client, artwork, bob, admin):
    order = _order(client, bob[0], artwork["id"])
    orders = client.get("/admin/orders", headers=admin[0]).json()
    assert [o["id"] for o in orders] == [order["id"]]
    assert orders[0]["user"]["email"] == "bob@example.com"
    assert client.get(f"/admin/orders/{order['id']}", headers=admin[0]).status_code == 200


def test_sales_report(client, db, artwork, bob, admin):
    order = _order(client, bob[0], artwork["id"])
    today = datetime.now(timezone.utc).date().isoformat()

    report = client.get("/admin/reports/sales", params={"start_date": today, "end_date": today},
                        headers=admin[0]).json()
    assert report["total_orders"] == 1
    assert report["total_revenue"] == order["total"]
    assert report["orders"][0]["order_number"] == order["order_number"]

    tomorrow = (datetime.now(timezone.utc) + timedelta(days=1)).date().isoformat()
    report = client.get("/admin/reports/sales", params={"start_date": tomorrow}, headers=admin[0]).json()
    assert report["total_orders"] == 0
    assert report["total_revenue"] == 0


def test_sales_report_rejects_inverted_range(db):
    start = datetime(2024, 2, 1, tzinfo=timezone.utc)
    end = datetime(2024, 1, 1, tzinfo=timezone.utc)
    with pytest.raises(ValidationError):
        sales_report(db, start, end)

from fastapi.testclient import TestClient

import database
from main import app


def test_root(client):
    r = client.get("/")
    assert r.status_code == 200
    assert r.json() == {"message": "BRANA Arts API"}


def test_diagnostics_are_admin_only(client, bob, admin):
    assert client.get("/test").status_code == 401
    assert client.get("/test", headers=bob[0]).status_code == 403

    r = client.get("/test", headers=admin[0])
    assert r.status_code == 200
    body = r.json()
    assert body["database"] == "connected"
    assert "user" in body["collections"]


def test_lifespan_runs_without_database(monkeypatch):
    monkeypatch.setattr(database, "db", None)
    with TestClient(app) as anonymous:
        assert anonymous.get("/").status_code == 200


def test_request_validation_errors_are_400(client, bob):
    r = client.post("/cart/items", json={"quantity": 1}, headers=bob[0])
    assert r.status_code == 400
    assert r.json()["error"] == "ValidationError"
    assert "artwork_id" in r.json()["detail"]


def test_errors_carry_their_class(client, bob):
    r = client.get("/orders/000000000000000000000000", headers=bob[0])
    assert r.status_code == 404
    assert r.json() == {"detail": "Order not found", "error": "NotFoundError"}

import cart


def _add(client, headers, artwork_id, quantity=1):
    return client.post("/cart/items", json={"artwork_id": artwork_id, "quantity": quantity}, headers=headers)


def test_empty_cart_is_created_on_demand(client, bob):
    r = client.get("/cart", headers=bob[0])
    assert r.status_code == 200
    assert r.json()["items"] == []
    assert r.json()["total_items"] == 0
    assert r.json()["total_price"] == 0


def test_add_item_totals(client, artwork, bob):
    r = _add(client, bob[0], artwork["id"], 2)
    assert r.status_code == 200
    cart = r.json()
    assert cart["total_items"] == 2
    assert cart["total_price"] == 200
    assert cart["items"][0]["artwork"]["title"] == "Sunset"


def test_adding_again_sums_quantity(client, artwork, bob):
    _add(client, bob[0], artwork["id"], 1)
    cart = _add(client, bob[0], artwork["id"], 2).json()
    assert len(cart["items"]) == 1
    assert cart["items"][0]["quantity"] == 3


def test_update_and_remove(client, artwork, bob):
    headers = bob[0]
    _add(client, headers, artwork["id"], 1)

    cart = client.put(f"/cart/items/{artwork['id']}", json={"quantity": 4}, headers=headers).json()
    assert cart["total_items"] == 4

    cart = client.put(f"/cart/items/{artwork['id']}", json={"quantity": 0}, headers=headers).json()
    assert cart["items"] == []

    r = client.put(f"/cart/items/{artwork['id']}", json={"quantity": 2}, headers=headers)
    assert r.status_code == 404

    _add(client, headers, artwork["id"], 1)
    cart = client.delete(f"/cart/items/{artwork['id']}", headers=headers).json()
    assert cart["items"] == []


def test_clear(client, artwork, bob):
    _add(client, bob[0], artwork["id"], 1)
    cart = client.delete("/cart", headers=bob[0]).json()
    assert cart["items"] == []
    assert cart["total_items"] == 0


def test_rejects_unpurchasable_artworks(client, alice, bob):
    sketch = client.post("/artworks", json={"title": "Sketch", "description": "Pencil", "image_url": "img2"},
                         headers=alice[0]).json()
    r = _add(client, bob[0], sketch["id"])
    assert r.status_code == 409

    r = _add(client, bob[0], "000000000000000000000000")
    assert r.status_code == 404


def test_rejects_non_positive_quantity(client, artwork, bob):
    assert _add(client, bob[0], artwork["id"], 0).status_code == 400


def test_carts_are_per_user(client, artwork, alice, bob):
    _add(client, bob[0], artwork["id"], 1)
    assert client.get("/cart", headers=alice[0]).json()["items"] == []


def test_cart_requires_auth(client):
    assert client.get("/cart").status_code == 401


def test_unlisted_line_counts_items_but_not_price(client, artwork, alice, bob):
    dusk = client.post("/artworks", json={"title": "Dusk", "description": "Later", "image_url": "img3", "price": 40},
                       headers=alice[0]).json()
    _add(client, bob[0], artwork["id"], 2)
    _add(client, bob[0], dusk["id"], 1)

    client.put(f"/artworks/{artwork['id']}/remove-sale", headers=alice[0])
    cart = client.get("/cart", headers=bob[0]).json()
    assert cart["total_items"] == 3
    assert cart["total_price"] == 40


def test_repeated_loads_share_one_cart(db, bob):
    user_id = bob[1]["id"]
    assert cart.get_cart(db, user_id)["items"] == []
    assert cart.get_cart(db, user_id)["items"] == []
    assert db["cart"].count_documents({"user_id": user_id}) == 1


def test_existing_cart_is_not_reset(client, db, artwork, bob):
    _add(client, bob[0], artwork["id"], 2)
    created = db["cart"].find_one({"user_id": bob[1]["id"]})["created_at"]
    lines = cart.get_cart(db, bob[1]["id"])["items"]
    assert [line["quantity"] for line in lines] == [2]
    assert db["cart"].find_one({"user_id": bob[1]["id"]})["created_at"] == created

"""Tests for the /api/cart endpoints."""

from conftest import bearer, register


def add(client, headers, alien_id, quantity=1, path="/api/cart/add"):
    return client.post(path, json={"alienId": alien_id, "quantity": quantity}, headers=headers)


def cart_of(response):
    return response.json()["data"]["cart"]


class TestCartBasics:
    def test_empty_cart_created_on_first_read(self, client, auth_headers):
        response = client.get("/api/cart", headers=auth_headers)
        cart = cart_of(response)
        assert response.status_code == 200
        assert cart["items"] == []
        assert cart["totalItems"] == 0
        assert cart["totalPrice"] == 0

    def test_requires_login(self, client):
        assert client.get("/api/cart").status_code == 401

    def test_add_then_update_to_zero(self, client, auth_headers, make_alien):
        alien_id = make_alien(price=150.0)
        cart = cart_of(add(client, auth_headers, alien_id, 2))
        assert cart["totalItems"] == 2
        assert cart["totalPrice"] == 300.0
        assert cart["items"][0]["alien"]["name"].startswith("Specimen")

        response = client.put(f"/api/cart/update/{alien_id}", json={"quantity": 0}, headers=auth_headers)
        cart = cart_of(response)
        assert cart["items"] == []
        assert cart["totalItems"] == 0

    def test_quantity_clamped(self, client, auth_headers, make_alien):
        alien_id = make_alien()
        add(client, auth_headers, alien_id, 7)
        cart = cart_of(add(client, auth_headers, alien_id, 7))
        assert len(cart["items"]) == 1
        assert cart["items"][0]["quantity"] == 10

    def test_post_root_alias(self, client, auth_headers, make_alien):
        alien_id = make_alien()
        response = add(client, auth_headers, alien_id, 1, path="/api/cart")
        assert response.status_code == 200
        assert response.json()["message"] == "Item added to cart successfully"

    def test_remove_and_clear(self, client, auth_headers, make_alien):
        first, second = make_alien(), make_alien()
        add(client, auth_headers, first)
        add(client, auth_headers, second)
        cart = cart_of(client.delete(f"/api/cart/remove/{first}", headers=auth_headers))
        assert [item["alienId"] for item in cart["items"]] == [second]
        cart = cart_of(client.delete("/api/cart/clear", headers=auth_headers))
        assert cart["items"] == []

    def test_one_cart_per_user(self, client, auth_headers, make_alien, db):
        alien_id = make_alien()
        add(client, auth_headers, alien_id)
        other = register(client, "other@example.com")
        add(client, bearer(other["token"]), alien_id, 3)
        add(client, auth_headers, alien_id)
        assert db["cart"].count_documents({}) == 2
        assert cart_of(client.get("/api/cart", headers=auth_headers))["totalItems"] == 2


class TestCartRules:
    def test_out_of_stock(self, client, auth_headers, make_alien):
        alien_id = make_alien(in_stock=False)
        response = add(client, auth_headers, alien_id)
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "OUT_OF_STOCK"

    def test_unknown_alien(self, client, auth_headers):
        response = add(client, auth_headers, "507f1f77bcf86cd799439011")
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "ALIEN_NOT_FOUND"

    def test_invalid_quantity(self, client, auth_headers, make_alien):
        alien_id = make_alien()
        assert add(client, auth_headers, alien_id, 0).status_code == 400
        response = client.put(f"/api/cart/update/{alien_id}", json={"quantity": 11}, headers=auth_headers)
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_deleted_product_counts_zero(self, client, auth_headers, make_alien, db):
        kept, gone = make_alien(price=20.0), make_alien(price=99.0)
        add(client, auth_headers, kept)
        add(client, auth_headers, gone, 2)
        db["alien"].delete_one({"name": "Specimen 2"})

        cart = cart_of(client.get("/api/cart", headers=auth_headers))
        lines = {item["alienId"]: item for item in cart["items"]}
        assert lines[gone]["alien"] is None
        assert cart["totalPrice"] == 20.0
        assert cart["totalItems"] == 3

    def test_total_uses_current_price(self, client, auth_headers, make_alien, db):
        alien_id = make_alien(price=10.0)
        add(client, auth_headers, alien_id, 2)
        db["alien"].update_one({}, {"$set": {"price": 15.0}})
        assert cart_of(client.get("/api/cart", headers=auth_headers))["totalPrice"] == 30.0

    def test_malformed_alien_id_in_path(self, client, auth_headers, make_alien):
        add(client, auth_headers, make_alien())
        updated = client.put("/api/cart/update/not-an-id", json={"quantity": 2}, headers=auth_headers)
        removed = client.delete("/api/cart/remove/not-an-id", headers=auth_headers)
        for response in (updated, removed):
            assert response.status_code == 400
            assert response.json()["error"]["code"] == "INVALID_ID"
        assert cart_of(client.get("/api/cart", headers=auth_headers))["totalItems"] == 1

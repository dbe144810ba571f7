"""Tests for the /api/wishlist endpoints."""


def add(client, headers, alien_id):
    return client.post("/api/wishlist/add", json={"alienId": alien_id}, headers=headers)


class TestWishlist:
    def test_add_and_list(self, client, auth_headers, make_alien):
        alien_id = make_alien(name="Rizzok")
        response = add(client, auth_headers, alien_id)
        assert response.status_code == 201
        data = client.get("/api/wishlist", headers=auth_headers).json()["data"]
        assert data["count"] == 1
        assert data["wishlist"][0]["name"] == "Rizzok"

    def test_duplicate_add(self, client, auth_headers, make_alien):
        alien_id = make_alien()
        add(client, auth_headers, alien_id)
        response = add(client, auth_headers, alien_id)
        assert response.status_code == 409
        assert response.json()["error"]["code"] == "ALREADY_IN_WISHLIST"

    def test_add_unknown_alien(self, client, auth_headers):
        response = add(client, auth_headers, "507f1f77bcf86cd799439011")
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "ALIEN_NOT_FOUND"

    def test_check(self, client, auth_headers, make_alien):
        alien_id = make_alien()
        before = client.get(f"/api/wishlist/check/{alien_id}", headers=auth_headers).json()["data"]
        add(client, auth_headers, alien_id)
        after = client.get(f"/api/wishlist/check/{alien_id}", headers=auth_headers).json()["data"]
        assert before == {"isInWishlist": False, "alienId": alien_id}
        assert after["isInWishlist"] is True

    def test_remove(self, client, auth_headers, make_alien):
        alien_id = make_alien()
        add(client, auth_headers, alien_id)
        response = client.delete(f"/api/wishlist/remove/{alien_id}", headers=auth_headers)
        assert response.json()["data"]["count"] == 0
        again = client.delete(f"/api/wishlist/remove/{alien_id}", headers=auth_headers)
        assert again.status_code == 404
        assert again.json()["error"]["code"] == "NOT_IN_WISHLIST"

    def test_clear(self, client, auth_headers, make_alien):
        add(client, auth_headers, make_alien())
        add(client, auth_headers, make_alien())
        response = client.delete("/api/wishlist/clear", headers=auth_headers)
        assert response.json()["data"] == {"wishlist": [], "count": 0}

    def test_deleted_alien_is_skipped(self, client, auth_headers, make_alien, db):
        add(client, auth_headers, make_alien(name="Kept"))
        add(client, auth_headers, make_alien(name="Gone"))
        db["alien"].delete_one({"name": "Gone"})
        data = client.get("/api/wishlist", headers=auth_headers).json()["data"]
        assert [a["name"] for a in data["wishlist"]] == ["Kept"]

    def test_profile_lists_wishlist_ids(self, client, auth_headers, make_alien):
        alien_id = make_alien()
        add(client, auth_headers, alien_id)
        profile = client.get("/api/auth/profile", headers=auth_headers).json()["data"]
        assert profile["wishlist"] == [alien_id]

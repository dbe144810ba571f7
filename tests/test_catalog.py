"""Tests for catalog listing, lookup and admin writes."""

import io

import pytest
from starlette.datastructures import Headers, UploadFile

from catalog import AlienFilters, build_alien_query, paginate
from errors import PayloadTooLarge, ValidationFailed
from uploads import save_image

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64

NEW_ALIEN = {
    "name": "Quorzel",
    "faction": "Cryonox",
    "planet": "Niflheim Prime",
    "rarity": "Rare",
    "price": 275.5,
    "image": "https://cdn.example.com/quorzel.webp",
    "abilities": ["Frost Rend"],
    "clothingStyle": "Glacial plate",
}


def aliens(response):
    return response.json()["data"]["aliens"]


class TestQueryBuilding:
    def test_search_is_escaped(self):
        query, _ = build_alien_query(AlienFilters(search="a.b*"))
        assert query["$or"][0]["name"]["$regex"] == r"a\.b\*"

    def test_price_range_and_sort(self):
        query, sort = build_alien_query(AlienFilters(min_price=10, max_price=20, sort_by="price", sort_order="asc"))
        assert query["price"] == {"$gte": 10, "$lte": 20}
        assert sort == [("price", 1)]

    def test_paginate(self):
        assert paginate(25, 3, 12) == {
            "currentPage": 3,
            "totalPages": 3,
            "totalCount": 25,
            "hasNextPage": False,
            "hasPrevPage": True,
            "limit": 12,
        }


class TestListing:
    def test_pagination(self, client, make_alien):
        for _ in range(5):
            make_alien()
        response = client.get("/api/aliens?page=2&limit=2")
        pagination = response.json()["data"]["pagination"]
        assert len(aliens(response)) == 2
        assert pagination["totalCount"] == 5
        assert pagination["totalPages"] == 3
        assert pagination["hasNextPage"] is True
        assert pagination["hasPrevPage"] is True

    def test_search_across_fields(self, client, make_alien):
        make_alien(name="Rizzok")
        make_alien(name="Other", planet="Rizzok Prime")
        make_alien(name="Unrelated")
        assert len(aliens(client.get("/api/aliens?search=rizz"))) == 2

    def test_filters(self, client, make_alien):
        make_alien(faction="Acid", rarity="Epic", price=500.0)
        make_alien(faction="Acid", rarity="Common", price=50.0, in_stock=False)
        make_alien(faction="Prism", rarity="Epic", price=900.0)

        assert len(aliens(client.get("/api/aliens?faction=acid"))) == 2
        assert len(aliens(client.get("/api/aliens?rarity=Epic"))) == 2
        assert len(aliens(client.get("/api/aliens?minPrice=100&maxPrice=600"))) == 1
        assert len(aliens(client.get("/api/aliens?inStock=false"))) == 1

    def test_sort_by_price(self, client, make_alien):
        for price in (300.0, 100.0, 200.0):
            make_alien(price=price)
        prices = [a["price"] for a in aliens(client.get("/api/aliens?sortBy=price&sortOrder=asc"))]
        assert prices == [100.0, 200.0, 300.0]

    def test_invalid_query(self, client):
        response = client.get("/api/aliens?limit=500")
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_payload_is_camel_case(self, client, make_alien):
        make_alien(clothing_style="Spore cape")
        alien = aliens(client.get("/api/aliens"))[0]
        assert alien["clothingStyle"] == "Spore cape"
        assert alien["inStock"] is True
        assert "in_stock" not in alien


class TestFeaturedAndOptions:
    def test_featured_only_in_stock(self, client, make_alien):
        make_alien(featured=True)
        make_alien(featured=True, in_stock=False)
        make_alien()
        data = client.get("/api/aliens/featured").json()["data"]
        assert len(data) == 1
        assert data[0]["featured"] is True

    def test_filter_options_empty_catalog(self, client):
        data = client.get("/api/aliens/filter-options").json()["data"]
        assert data == {"factions": [], "planets": [], "rarities": [], "priceRange": {"minPrice": 0, "maxPrice": 1000}}

    def test_filter_options(self, client, make_alien):
        make_alien(faction="Prism", rarity="Legendary", price=1000.0)
        make_alien(faction="Acid", rarity="Common", price=20.0)
        make_alien(faction="Acid", rarity="Epic", price=400.0)
        data = client.get("/api/aliens/filter-options").json()["data"]
        assert data["factions"] == ["Acid", "Prism"]
        assert data["rarities"] == ["Common", "Epic", "Legendary"]
        assert data["priceRange"] == {"minPrice": 20.0, "maxPrice": 1000.0}


class TestDetail:
    def test_detail(self, client, make_alien):
        alien_id = make_alien(name="Rizzok")
        response = client.get(f"/api/aliens/{alien_id}")
        assert response.status_code == 200
        assert response.json()["data"]["name"] == "Rizzok"

    def test_not_found(self, client):
        response = client.get("/api/aliens/507f1f77bcf86cd799439011")
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "ALIEN_NOT_FOUND"

    def test_malformed_id(self, client):
        response = client.get("/api/aliens/not-an-id")
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_ID"

    def test_related(self, client, make_alien):
        alien_id = make_alien(faction="Acid", planet="Glorax Marsh")
        make_alien(faction="Acid", planet="Elsewhere")
        make_alien(faction="Other", planet="Glorax Marsh")
        make_alien(faction="Acid", planet="Elsewhere", in_stock=False)
        make_alien(faction="Other", planet="Elsewhere")
        related = client.get(f"/api/aliens/{alien_id}/related").json()["data"]
        assert len(related) == 2
        assert alien_id not in [a["id"] for a in related]


class TestAdminWrites:
    def test_customer_cannot_create(self, client, auth_headers):
        response = client.post("/api/aliens", json=NEW_ALIEN, headers=auth_headers)
        assert response.status_code == 403

    def test_create_json(self, client, admin_headers):
        response = client.post("/api/aliens", json=NEW_ALIEN, headers=admin_headers)
        assert response.status_code == 201
        data = response.json()["data"]
        assert data["name"] == "Quorzel"
        assert data["featured"] is False
        assert data["inStock"] is True

    def test_create_validation(self, client, admin_headers):
        response = client.post("/api/aliens", json={**NEW_ALIEN, "rarity": "Mythic", "price": -1}, headers=admin_headers)
        body = response.json()
        assert response.status_code == 400
        assert body["error"]["code"] == "VALIDATION_ERROR"
        assert {d["field"] for d in body["error"]["details"]} == {"rarity", "price"}

    def test_create_rejects_bad_image_url(self, client, admin_headers):
        response = client.post("/api/aliens", json={**NEW_ALIEN, "image": "https://cdn.example.com/x.exe"}, headers=admin_headers)
        assert response.status_code == 400

    def test_create_multipart_with_upload(self, client, admin_headers, settings):
        form = {k: v for k, v in NEW_ALIEN.items() if k not in ("image", "abilities")}
        form["price"] = "275.5"
        form["abilities"] = "Frost Rend, Ice Veil"
        response = client.post(
            "/api/aliens",
            data=form,
            files={"image": ("quorzel.png", PNG_BYTES, "image/png")},
            headers=admin_headers,
        )
        assert response.status_code == 201, response.text
        data = response.json()["data"]
        assert data["abilities"] == ["Frost Rend", "Ice Veil"]
        assert data["image"].startswith("/uploads/alien-")
        served = client.get(data["image"])
        assert served.status_code == 200
        assert served.content == PNG_BYTES

    def test_upload_wrong_type(self, client, admin_headers):
        form = {k: str(v) for k, v in NEW_ALIEN.items() if k not in ("image", "abilities")}
        response = client.post(
            "/api/aliens",
            data=form,
            files={"image": ("notes.txt", b"hello", "text/plain")},
            headers=admin_headers,
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_FILE_TYPE"

    def test_update(self, client, admin_headers, make_alien):
        alien_id = make_alien(price=10.0)
        response = client.put(f"/api/aliens/{alien_id}", json={"price": 12.5, "inStock": False}, headers=admin_headers)
        data = response.json()["data"]
        assert data["price"] == 12.5
        assert data["inStock"] is False
        assert data["name"].startswith("Specimen")

    def test_update_missing(self, client, admin_headers):
        response = client.put("/api/aliens/507f1f77bcf86cd799439011", json={"price": 1.0}, headers=admin_headers)
        assert response.status_code == 404

    def test_delete(self, client, admin_headers, make_alien):
        alien_id = make_alien()
        assert client.delete(f"/api/aliens/{alien_id}", headers=admin_headers).status_code == 200
        assert client.get(f"/api/aliens/{alien_id}").status_code == 404
        assert client.delete(f"/api/aliens/{alien_id}", headers=admin_headers).status_code == 404


class TestSaveImage:
    def upload(self, content, content_type="image/png", filename="pic.png"):
        return UploadFile(io.BytesIO(content), filename=filename, headers=Headers({"content-type": content_type}))

    def test_too_large(self, tmp_path):
        with pytest.raises(PayloadTooLarge) as exc_info:
            save_image(self.upload(b"x" * 2048), str(tmp_path), max_size=1024)
        assert exc_info.value.status_code == 413
        assert exc_info.value.code == "FILE_TOO_LARGE"
        assert list(tmp_path.iterdir()) == []

    def test_wrong_type(self, tmp_path):
        with pytest.raises(ValidationFailed):
            save_image(self.upload(b"x", "application/pdf", "doc.pdf"), str(tmp_path), max_size=1024)

    def test_saves_with_extension_from_type(self, tmp_path):
        path = save_image(self.upload(PNG_BYTES, "image/jpeg", "photo"), str(tmp_path), max_size=1024)
        assert path.endswith(".jpg")
        assert (tmp_path / path.rsplit("/", 1)[1]).read_bytes() == PNG_BYTES

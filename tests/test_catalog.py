import pytest


@pytest.fixture
def product_payload(category):
    return {
        "name": "Maternity Pillow",
        "description": "Full body support",
        "price": 1499.0,
        "stock": 12,
        "category": str(category["_id"]),
        "colors": ["Grey", "Pink"],
        "sizes": ["M"],
        "specifications": [{"title": "Material", "value": "Cotton"}],
        "key_info": ["Washable cover"],
    }


class TestCategories:
    def test_create_and_list(self, client, admin_headers):
        res = client.post("/api/categories", json={"name": "Nutrition"}, headers=admin_headers)
        assert res.status_code == 201
        names = [c["name"] for c in client.get("/api/categories").json()["data"]]
        assert "Nutrition" in names

    def test_duplicate_name(self, client, admin_headers, category):
        res = client.post("/api/categories", json={"name": category["name"]}, headers=admin_headers)
        assert res.status_code == 400

    def test_delete_in_use_refused(self, client, admin_headers, category, product):
        res = client.delete(f"/api/categories/{category['_id']}", headers=admin_headers)
        assert res.status_code == 400

    def test_delete_unused(self, client, admin_headers, category):
        res = client.delete(f"/api/categories/{category['_id']}", headers=admin_headers)
        assert res.status_code == 200


class TestProductWrites:
    def test_created_product_round_trips(self, client, admin_headers, product_payload):
        res = client.post("/api/products", json=product_payload, headers=admin_headers)
        assert res.status_code == 201
        created = res.json()["data"]
        fetched = client.get(f"/api/products/{created['id']}").json()["data"]
        assert fetched == created
        for key in ("name", "description", "price", "stock", "category", "colors", "sizes", "key_info"):
            assert fetched[key] == product_payload[key]
        assert fetched["specifications"] == product_payload["specifications"]
        assert fetched["slug"] == "maternity-pillow"
        assert fetched["brand"] == "Generic"

    @pytest.mark.parametrize("payload", [{}, {"name": "x"}, {"price": -5}])
    def test_non_admin_rejected_regardless_of_payload(self, client, user_headers, payload):
        res = client.post("/api/products", json=payload, headers=user_headers)
        assert res.status_code == 403

    def test_anonymous_rejected(self, client):
        res = client.post("/api/products", json={})
        assert res.status_code == 401

    def test_publish_requires_price_and_category(self, client, admin_headers):
        res = client.post("/api/products", json={"name": "Half done"}, headers=admin_headers)
        assert res.status_code == 400

    def test_draft_needs_only_name_and_is_hidden(self, client, admin_headers):
        res = client.post("/api/products", json={"name": "Idea", "is_draft": True}, headers=admin_headers)
        assert res.status_code == 201
        draft = res.json()["data"]
        assert draft["status"] == "draft"
        assert draft["is_active"] is False
        assert client.get(f"/api/products/{draft['id']}").status_code == 404
        assert client.get("/api/products").json()["data"] == []

    def test_publish_draft_via_update(self, client, admin_headers, category):
        draft = client.post("/api/products", json={"name": "Idea", "is_draft": True}, headers=admin_headers).json()["data"]
        res = client.put(f"/api/products/{draft['id']}", json={"is_draft": False}, headers=admin_headers)
        assert res.status_code == 400
        res = client.put(
            f"/api/products/{draft['id']}",
            json={"is_draft": False, "price": 10, "category": str(category["_id"])},
            headers=admin_headers,
        )
        assert res.status_code == 200
        assert res.json()["data"]["status"] == "published"
        assert res.json()["data"]["published_at"]

    def test_update_and_delete(self, client, admin_headers, product):
        res = client.put(f"/api/products/{product['_id']}", json={"price": 450}, headers=admin_headers)
        assert res.json()["data"]["price"] == 450
        assert client.delete(f"/api/products/{product['_id']}", headers=admin_headers).status_code == 200
        assert client.get(f"/api/products/{product['_id']}").status_code == 404

    def test_unknown_category(self, client, admin_headers, product_payload):
        product_payload["category"] = "0" * 24
        res = client.post("/api/products", json=product_payload, headers=admin_headers)
        assert res.status_code == 404


class TestProductListing:
    def test_pages_never_repeat(self, client, make_product):
        for i in range(25):
            make_product(name=f"Item {i:02d}")
        seen = []
        for page in (1, 2, 3):
            res = client.get("/api/products", params={"page": page, "limit": 10}).json()
            ids = [p["id"] for p in res["data"]]
            assert not set(ids) & set(seen)
            seen.extend(ids)
        assert len(seen) == 25
        assert res["pagination"]["pages"] == 3
        assert res["pagination"]["has_next"] is False

    def test_search_and_category_filter(self, client, make_product, category):
        make_product(name="Baby Lotion")
        make_product(name="Nursing Top")
        found = client.get("/api/products", params={"search": "lotion"}).json()["data"]
        assert [p["name"] for p in found] == ["Baby Lotion"]
        in_cat = client.get("/api/products", params={"category": str(category["_id"])}).json()["data"]
        assert len(in_cat) == 2

    def test_search_is_literal(self, client, make_product):
        make_product(name="Lotion")
        assert client.get("/api/products", params={"search": ".*"}).json()["data"] == []


class TestUploads:
    def test_upload_images(self, client, admin_headers, storage):
        files = [("files", (f"p{i}.jpg", b"\xff\xd8data", "image/jpeg")) for i in range(2)]
        res = client.post("/api/products/upload", files=files, headers=admin_headers)
        assert res.status_code == 201
        urls = [i["url"] for i in res.json()["data"]]
        assert len(urls) == 2
        assert all(u.startswith("https://cdn.example.com/bumpicare/products/") for u in urls)

    def test_too_many_images(self, client, admin_headers):
        files = [("files", (f"p{i}.jpg", b"x", "image/jpeg")) for i in range(5)]
        res = client.post("/api/products/upload", files=files, headers=admin_headers)
        assert res.status_code == 400

    def test_rejects_non_images(self, client, admin_headers):
        files = [("files", ("notes.txt", b"hello", "text/plain"))]
        res = client.post("/api/products/upload", files=files, headers=admin_headers)
        assert res.status_code == 400

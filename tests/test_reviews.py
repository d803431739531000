import csv
import io

import pytest

from conftest import auth_headers, make_user


def post_review(client, headers, product, rating, comment=None):
    return client.post("/api/reviews", json={"product_id": str(product["_id"]), "rating": rating, "comment": comment},
                       headers=headers)


@pytest.fixture
def reviewed(client, db, user_headers, other_headers, product):
    post_review(client, user_headers, product, 5, "Lovely and soft")
    post_review(client, other_headers, product, 2, "Thin fabric")
    return product


class TestUserReviews:
    def test_rating_aggregate(self, db, reviewed):
        stored = db["product"].find_one({"_id": reviewed["_id"]})
        assert stored["ratings"] == 3.5
        assert stored["reviews_count"] == 2

    def test_one_review_per_product(self, client, db, user_headers, reviewed):
        res = post_review(client, user_headers, reviewed, 1)
        assert res.status_code == 200
        assert res.json()["message"] == "You already reviewed this product"
        assert db["review"].count_documents({}) == 2

    def test_rating_bounds(self, client, user_headers, product):
        assert post_review(client, user_headers, product, 6).status_code == 400

    def test_listing_includes_author(self, client, user, reviewed):
        data = client.get(f"/api/reviews/product/{reviewed['_id']}").json()["data"]
        assert {r["user_name"] for r in data} == {user["name"], "Other"}

    def test_author_updates_and_deletes(self, client, db, user_headers, other_headers, reviewed):
        mine = db["review"].find_one({"rating": 5})
        assert client.put(f"/api/reviews/{mine['_id']}", json={"rating": 1}, headers=other_headers).status_code == 403
        client.put(f"/api/reviews/{mine['_id']}", json={"rating": 4}, headers=user_headers)
        assert db["product"].find_one({"_id": reviewed["_id"]})["ratings"] == 3.0
        client.delete(f"/api/reviews/{mine['_id']}", headers=user_headers)
        stored = db["product"].find_one({"_id": reviewed["_id"]})
        assert (stored["ratings"], stored["reviews_count"]) == (2.0, 1)

    def test_verified_purchase(self, client, db, product):
        buyer = make_user(db, email="buyer@example.com")
        db["order"].insert_one({
            "user_id": buyer["_id"], "order_number": "ORD-1", "order_status": "Delivered",
            "order_items": [{"product": product["_id"], "quantity": 1}],
        })
        res = post_review(client, auth_headers(buyer), product, 4)
        assert res.json()["data"]["verified_purchase"] is True


class TestAdminReviews:
    def test_list_with_average(self, client, admin_headers, reviewed):
        res = client.get("/api/admin/reviews", headers=admin_headers).json()
        assert res["pagination"]["total"] == 2
        assert res["average_rating"] == 3.5
        low = client.get("/api/admin/reviews", params={"rating": 2}, headers=admin_headers).json()
        assert [r["comment"] for r in low["data"]] == ["Thin fabric"]

    def test_stats(self, client, admin_headers, reviewed):
        stats = client.get("/api/admin/reviews/stats", headers=admin_headers).json()["data"]
        assert stats["total"] == 2
        assert stats["distribution"][0] == {"rating": 5, "count": 1, "percentage": 50.0}
        products = client.get("/api/admin/reviews/products", headers=admin_headers).json()["data"]
        assert products[0]["product_name"] == reviewed["name"]

    def test_export(self, client, admin_headers, reviewed):
        res = client.get("/api/admin/reviews/export", headers=admin_headers)
        rows = list(csv.reader(io.StringIO(res.text)))
        assert rows[0] == ["Review ID", "Product", "Customer", "Rating", "Comment", "Date"]
        assert len(rows) == 3

    def test_bulk_delete_refreshes_rating(self, client, db, admin_headers, reviewed):
        ids = [str(r["_id"]) for r in db["review"].find({})]
        res = client.post("/api/admin/reviews/bulk-delete", json={"ids": ids}, headers=admin_headers)
        assert res.json()["data"]["deleted"] == 2
        stored = db["product"].find_one({"_id": reviewed["_id"]})
        assert (stored["ratings"], stored["reviews_count"]) == (0, 0)

import pytest

from conftest import SHIPPING_ADDRESS
from routers.subscriptions import activate_plan


@pytest.fixture
def subscribed(db, user):
    plan = {"name": "plus", "display_name": "Plus", "price": 0, "duration": 30, "is_active": True,
            "features": {"max_cart_items": 20}}
    plan["_id"] = db["subscription_plan"].insert_one(plan).inserted_id
    activate_plan(db, user, plan)
    return user


def cart_usage(db, user):
    return db["user_subscription"].find_one({"user_id": user["_id"]})["usage"]["cart_items_used"]


class TestCart:
    def test_empty_cart(self, client, user_headers):
        res = client.get("/api/cart", headers=user_headers)
        assert res.json()["data"]["items"] == []

    def test_add_merges_same_variant(self, client, user_headers, product):
        body = {"product_id": str(product["_id"]), "quantity": 1, "color": "Red", "size": "M"}
        client.post("/api/cart", json=body, headers=user_headers)
        res = client.post("/api/cart", json={**body, "quantity": 2}, headers=user_headers)
        items = res.json()["data"]["items"]
        assert len(items) == 1
        assert items[0]["quantity"] == 3
        assert items[0]["product"]["name"] == product["name"]

    def test_different_variant_is_new_line(self, client, user_headers, product):
        pid = str(product["_id"])
        client.post("/api/cart", json={"product_id": pid, "size": "S"}, headers=user_headers)
        res = client.post("/api/cart", json={"product_id": pid, "size": "L"}, headers=user_headers)
        assert res.json()["data"]["count"] == 2

    def test_cannot_exceed_stock(self, client, user_headers, make_product):
        product = make_product(stock=2)
        res = client.post("/api/cart", json={"product_id": str(product["_id"]), "quantity": 3}, headers=user_headers)
        assert res.status_code == 400

    def test_update_quantity_floors_at_one(self, client, user_headers, product):
        pid = str(product["_id"])
        client.post("/api/cart", json={"product_id": pid, "quantity": 2}, headers=user_headers)
        res = client.put("/api/cart", json={"product_id": pid, "quantity": 0}, headers=user_headers)
        assert res.json()["data"]["items"][0]["quantity"] == 1

    def test_remove(self, client, user_headers, product):
        pid = str(product["_id"])
        client.post("/api/cart", json={"product_id": pid}, headers=user_headers)
        res = client.delete(f"/api/cart/{pid}", headers=user_headers)
        assert res.json()["data"]["items"] == []

    def test_default_cart_limit(self, client, user_headers, make_product):
        products = [make_product(name=f"P{i}") for i in range(6)]
        for p in products[:5]:
            assert client.post("/api/cart", json={"product_id": str(p["_id"])}, headers=user_headers).status_code == 200
        res = client.post("/api/cart", json={"product_id": str(products[5]["_id"])}, headers=user_headers)
        assert res.status_code == 403
        assert "Cart limit" in res.json()["message"]

    def test_subtotal(self, client, user_headers, make_product):
        a = make_product(name="A", price=100)
        b = make_product(name="B", price=250, discount_price=200)
        client.post("/api/cart", json={"product_id": str(a["_id"]), "quantity": 2}, headers=user_headers)
        res = client.post("/api/cart", json={"product_id": str(b["_id"])}, headers=user_headers)
        assert res.json()["data"]["subtotal"] == 400


class TestCartUsage:
    def test_removing_product_drops_every_variant(self, client, db, user_headers, product, subscribed):
        pid = str(product["_id"])
        client.post("/api/cart", json={"product_id": pid, "size": "S"}, headers=user_headers)
        client.post("/api/cart", json={"product_id": pid, "size": "L"}, headers=user_headers)
        client.post("/api/cart", json={"product_id": pid, "size": "L"}, headers=user_headers)
        assert cart_usage(db, subscribed) == 2
        client.delete(f"/api/cart/{pid}", headers=user_headers)
        assert cart_usage(db, subscribed) == 0

    def test_clear_resets_counter(self, client, db, user_headers, product, subscribed):
        client.post("/api/cart", json={"product_id": str(product["_id"])}, headers=user_headers)
        client.delete("/api/cart", headers=user_headers)
        assert cart_usage(db, subscribed) == 0

    def test_checkout_resets_counter(self, client, db, user_headers, product, subscribed):
        client.post("/api/cart", json={"product_id": str(product["_id"])}, headers=user_headers)
        res = client.post("/api/orders", json={"shipping_address": SHIPPING_ADDRESS}, headers=user_headers)
        assert res.status_code == 201
        assert cart_usage(db, subscribed) == 0


class TestWishlist:
    def test_add_is_idempotent(self, client, user_headers, product, db, user):
        body = {"product_id": str(product["_id"])}
        client.post("/api/wishlist", json=body, headers=user_headers)
        res = client.post("/api/wishlist", json=body, headers=user_headers)
        assert res.json()["message"] == "Already in wishlist"
        assert db["user"].find_one({"_id": user["_id"]})["wishlist"] == [product["_id"]]

    def test_get_and_remove(self, client, user_headers, product):
        client.post("/api/wishlist", json={"product_id": str(product["_id"])}, headers=user_headers)
        items = client.get("/api/wishlist", headers=user_headers).json()["data"]
        assert items[0]["name"] == product["name"]
        client.delete(f"/api/wishlist/{product['_id']}", headers=user_headers)
        assert client.get("/api/wishlist", headers=user_headers).json()["data"] == []


class TestAddresses:
    def test_first_address_selected(self, client, user_headers):
        res = client.post("/api/users/address", json=SHIPPING_ADDRESS, headers=user_headers)
        assert res.status_code == 201
        assert res.json()["data"][0]["selected"] is True

    def test_duplicate_line_is_not_saved_twice(self, client, user_headers):
        client.post("/api/users/address", json=SHIPPING_ADDRESS, headers=user_headers)
        dup = {**SHIPPING_ADDRESS, "address_line": "  12 mg ROAD "}
        res = client.post("/api/users/address", json=dup, headers=user_headers)
        assert res.status_code == 200
        assert res.json()["message"] == "Address already saved"
        assert len(res.json()["data"]) == 1

    def test_select_is_exclusive(self, client, user_headers):
        client.post("/api/users/address", json=SHIPPING_ADDRESS, headers=user_headers)
        res = client.post("/api/users/address", json={**SHIPPING_ADDRESS, "address_line": "7 Park St"}, headers=user_headers)
        second = res.json()["data"][1]
        res = client.patch(f"/api/users/address/{second['id']}/select", headers=user_headers)
        selected = [a["address_line"] for a in res.json()["data"] if a["selected"]]
        assert selected == ["7 Park St"]

    def test_update_and_delete(self, client, user_headers):
        address = client.post("/api/users/address", json=SHIPPING_ADDRESS, headers=user_headers).json()["data"][0]
        res = client.put(f"/api/users/address/{address['id']}", json={"city": "Mysuru"}, headers=user_headers)
        assert res.json()["data"][0]["city"] == "Mysuru"
        res = client.delete(f"/api/users/address/{address['id']}", headers=user_headers)
        assert res.json()["data"] == []

from datetime import timedelta, timezone

import pytest

from conftest import stock_of
from database import now
from routers.inventory import apply_movement


@pytest.fixture
def warehouse(client, admin_headers):
    res = client.post("/api/admin/warehouses", json={
        "warehouse_id": "blr-01", "name": "Bengaluru Hub", "location": {"city": "Bengaluru"},
        "capacity": 1000, "current_utilization": 250,
    }, headers=admin_headers)
    assert res.status_code == 201
    return res.json()["data"]


class TestMovementRules:
    @pytest.mark.parametrize("kind,current,qty,expected", [
        ("in", 5, 3, 8),
        ("return", 5, 2, 7),
        ("out", 5, 3, 2),
        ("damage", 2, 5, 0),
        ("adjustment", 5, 40, 40),
        ("transfer", 5, 3, 5),
    ])
    def test_apply_movement(self, kind, current, qty, expected):
        assert apply_movement(kind, current, qty) == expected


class TestStock:
    def test_summary_buckets(self, client, admin_headers, make_product):
        make_product(name="Plenty", stock=50)
        make_product(name="Few", stock=3)
        make_product(name="None", stock=0)
        data = client.get("/api/admin/stock/summary", headers=admin_headers).json()["data"]
        assert data == {"total_products": 3, "in_stock": 1, "low_stock": 1, "out_of_stock": 1}

    def test_filter_low(self, client, admin_headers, make_product):
        make_product(name="Plenty", stock=50)
        make_product(name="Few", stock=3)
        res = client.get("/api/admin/stock/products", params={"stock": "low"}, headers=admin_headers)
        assert [p["name"] for p in res.json()["data"]] == ["Few"]

    def test_update_cannot_go_negative(self, client, db, admin_headers, product):
        res = client.patch("/api/admin/stock/update", json={"product_id": str(product["_id"]), "quantity": -11},
                           headers=admin_headers)
        assert res.status_code == 400
        res = client.patch("/api/admin/stock/update", json={"product_id": str(product["_id"]), "quantity": -4},
                           headers=admin_headers)
        assert res.json()["data"]["stock"] == 6
        assert stock_of(db, product) == 6

    def test_bulk(self, client, db, admin_headers, product):
        missing = "0" * 24
        res = client.put("/api/admin/stock/bulk", json={"items": [
            {"product_id": str(product["_id"]), "stock": 42},
            {"product_id": missing, "stock": 1},
        ]}, headers=admin_headers)
        assert res.json()["data"] == {"updated": 1, "not_found": [missing]}
        assert stock_of(db, product) == 42

    def test_users_forbidden(self, client, user_headers):
        assert client.get("/api/admin/stock/summary", headers=user_headers).status_code == 403


class TestWarehouses:
    def test_id_normalised_and_unique(self, client, admin_headers, warehouse):
        assert warehouse["warehouse_id"] == "BLR-01"
        res = client.post("/api/admin/warehouses", json={
            "warehouse_id": "BLR-01", "name": "Dup", "location": {"city": "X"}, "capacity": 10,
        }, headers=admin_headers)
        assert res.status_code == 400

    def test_utilization(self, client, admin_headers, warehouse):
        data = client.get(f"/api/admin/warehouses/{warehouse['id']}", headers=admin_headers).json()["data"]
        assert data["utilization_percentage"] == 25

    def test_over_capacity_rejected(self, client, admin_headers, warehouse):
        res = client.put(f"/api/admin/warehouses/{warehouse['id']}", json={"current_utilization": 1001},
                         headers=admin_headers)
        assert res.status_code == 400

    def test_filter_by_city(self, client, admin_headers, warehouse):
        assert len(client.get("/api/admin/warehouses", params={"city": "benga"}, headers=admin_headers).json()["data"]) == 1
        assert client.get("/api/admin/warehouses", params={"city": "Pune"}, headers=admin_headers).json()["data"] == []


class TestSuppliers:
    def test_email_lower_cased_and_unique(self, client, admin_headers, product):
        body = {"name": "Cotton Co", "email": "Sales@Cotton.com", "phone": "1", "products": [str(product["_id"])]}
        res = client.post("/api/admin/suppliers", json=body, headers=admin_headers)
        assert res.status_code == 201
        assert res.json()["data"]["email"] == "sales@cotton.com"
        assert res.json()["data"]["products"] == [str(product["_id"])]
        assert client.post("/api/admin/suppliers", json={**body, "email": "sales@cotton.com"},
                           headers=admin_headers).status_code == 400


class TestOrderRequests:
    def test_completion_adds_stock_once(self, client, db, admin_headers, product, warehouse):
        res = client.post("/api/admin/order-requests", json={
            "product_id": str(product["_id"]), "quantity": 15, "warehouse_id": warehouse["id"],
        }, headers=admin_headers)
        assert res.status_code == 201
        request = res.json()["data"]
        assert request["status"] == "pending"
        assert request["current_stock"] == 10

        client.patch(f"/api/admin/order-requests/{request['id']}/status", json={"status": "approved"}, headers=admin_headers)
        res = client.patch(f"/api/admin/order-requests/{request['id']}/status", json={"status": "completed"},
                           headers=admin_headers)
        assert res.json()["data"]["status"] == "completed"
        assert stock_of(db, product) == 25
        movement = db["inventory_movement"].find_one({"reference_type": "order_request"})
        assert (movement["previous_stock"], movement["new_stock"]) == (10, 25)

        again = client.patch(f"/api/admin/order-requests/{request['id']}/status", json={"status": "completed"},
                             headers=admin_headers)
        assert again.status_code == 400
        assert stock_of(db, product) == 25


class TestMovements:
    def test_record_and_list(self, client, db, admin_headers, product):
        res = client.post("/api/admin/inventory/movements", json={
            "product_id": str(product["_id"]), "movement_type": "damage", "quantity": 3, "reason": "Torn packaging",
        }, headers=admin_headers)
        assert res.status_code == 201
        movement = res.json()["data"]
        assert movement["previous_stock"] == 10
        assert movement["new_stock"] == 7
        assert stock_of(db, product) == 7

        listed = client.get("/api/admin/inventory/movements", params={"movement_type": "damage"},
                            headers=admin_headers).json()["data"]
        assert len(listed) == 1

    def test_date_filter_honours_offsets(self, client, admin_headers, product):
        client.post("/api/admin/inventory/movements", json={
            "product_id": str(product["_id"]), "movement_type": "in", "quantity": 1,
        }, headers=admin_headers)
        ist = timezone(timedelta(hours=5, minutes=30))
        hour_ago = (now() - timedelta(hours=1)).replace(tzinfo=timezone.utc).astimezone(ist)
        listed = client.get("/api/admin/inventory/movements", params={"start_date": hour_ago.isoformat()},
                            headers=admin_headers).json()["data"]
        assert len(listed) == 1
        in_an_hour = (now() + timedelta(hours=1)).replace(tzinfo=timezone.utc).astimezone(ist)
        listed = client.get("/api/admin/inventory/movements", params={"start_date": in_an_hour.isoformat()},
                            headers=admin_headers).json()["data"]
        assert listed == []

    def test_adjustment_sets_level(self, client, db, admin_headers, product):
        client.post("/api/admin/inventory/movements", json={
            "product_id": str(product["_id"]), "movement_type": "adjustment", "quantity": 4,
        }, headers=admin_headers)
        assert stock_of(db, product) == 4

    def test_reports(self, client, admin_headers, make_product, category):
        make_product(name="Cheap", price=10, stock=5)
        make_product(name="Dear", price=1000, stock=2)
        overview = client.get("/api/admin/inventory/overview", headers=admin_headers).json()["data"]
        assert overview["total_stock"] == 7
        assert overview["total_stock_value"] == 2050
        top = client.get("/api/admin/inventory/top-value", params={"limit": 1}, headers=admin_headers).json()["data"]
        assert top[0]["name"] == "Dear"
        cats = client.get("/api/admin/inventory/category-stock", headers=admin_headers).json()["data"]
        assert cats == [{"category_id": str(category["_id"]), "category": "Baby Care", "products": 2, "stock": 7, "value": 2050}]
        trends = client.get("/api/admin/inventory/trends", params={"days": 3}, headers=admin_headers).json()["data"]
        assert len(trends) == 3

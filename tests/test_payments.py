import pytest
from fastapi import HTTPException

from checkout import cancel_order
from conftest import SHIPPING_ADDRESS, stock_of
from payments import compute_signature, to_paise, verify_signature


def verify_body(product, order_id="order_1", payment_id="pay_1", signature=None, **extra):
    body = {
        "razorpay_order_id": order_id,
        "razorpay_payment_id": payment_id,
        "razorpay_signature": signature or compute_signature(order_id, payment_id),
        "is_cart": False,
        "product_id": str(product["_id"]),
        "quantity": 1,
        "shipping_address": SHIPPING_ADDRESS,
    }
    body.update(extra)
    return body


@pytest.fixture
def paid_order(client, user_headers, product, gateway):
    gateway.create_order(550)
    res = client.post("/api/payment/verify", json=verify_body(product), headers=user_headers)
    assert res.status_code == 201
    return res.json()["data"]


class TestSignature:
    def test_matches_known_hmac(self):
        sig = compute_signature("order_A", "pay_B", secret="s3cret")
        assert verify_signature("order_A", "pay_B", sig, secret="s3cret")
        assert not verify_signature("order_A", "pay_C", sig, secret="s3cret")

    def test_missing_parts_fail(self):
        assert not verify_signature("", "pay", "sig")

    def test_to_paise(self):
        assert to_paise(10.5) == 1050
        assert to_paise(0.1 + 0.2) == 30


class TestGatewayOrder:
    def test_create_order(self, client, user_headers, gateway):
        res = client.post("/api/payment/order", json={"amount": 549.5}, headers=user_headers)
        assert res.status_code == 200
        data = res.json()["data"]
        assert data["amount"] == 54950
        assert data["order"]["id"] == "order_1"
        assert len(gateway.orders) == 1

    def test_amount_must_be_positive(self, client, user_headers):
        res = client.post("/api/payment/order", json={"amount": 0}, headers=user_headers)
        assert res.status_code == 400


class TestVerify:
    def test_bad_signature(self, client, db, user_headers, product):
        res = client.post("/api/payment/verify", json=verify_body(product, signature="forged"), headers=user_headers)
        assert res.status_code == 400
        assert res.json()["message"] == "Invalid payment signature"
        assert db["order"].count_documents({}) == 0
        assert stock_of(db, product) == 10

    def test_valid_payment_creates_paid_order(self, db, product, paid_order):
        assert paid_order["payment_method"] == "ONLINE"
        assert paid_order["payment_status"] == "Paid"
        assert paid_order["razorpay_payment_id"] == "pay_1"
        assert paid_order["paid_at"]
        assert stock_of(db, product) == 9
        txn = db["transaction"].find_one({"tracking_number": paid_order["order_number"]})
        assert txn["payment_status"] == "paid"

    def test_payment_id_used_once(self, client, user_headers, product, paid_order):
        res = client.post("/api/payment/verify", json=verify_body(product), headers=user_headers)
        assert res.status_code == 400
        assert res.json()["message"] == "Payment already processed"

    def test_cart_checkout(self, client, db, user_headers, product, gateway):
        gateway.create_order(1050)
        client.post("/api/cart", json={"product_id": str(product["_id"]), "quantity": 2}, headers=user_headers)
        body = verify_body(product, is_cart=True)
        res = client.post("/api/payment/verify", json=body, headers=user_headers)
        assert res.status_code == 201
        assert res.json()["data"]["order_items"][0]["quantity"] == 2
        assert db["cart"].count_documents({}) == 0

    def test_underpaid_gateway_order_rejected(self, client, db, user_headers, product, gateway):
        client.post("/api/cart", json={"product_id": str(product["_id"]), "quantity": 2}, headers=user_headers)
        gateway.create_order(1)
        res = client.post("/api/payment/verify", json=verify_body(product, is_cart=True), headers=user_headers)
        assert res.status_code == 400
        assert res.json()["message"] == "Paid amount does not match order total"
        assert db["order"].count_documents({}) == 0
        assert stock_of(db, product) == 10
        assert db["cart"].count_documents({}) == 1

    def test_unknown_gateway_order_rejected(self, client, db, user_headers, product):
        res = client.post("/api/payment/verify", json=verify_body(product), headers=user_headers)
        assert res.status_code == 400
        assert db["order"].count_documents({}) == 0


class TestRefunds:
    def test_cancel_paid_order_refunds(self, client, db, user_headers, product, gateway, paid_order):
        res = client.post(f"/api/orders/{paid_order['id']}/cancel", headers=user_headers)
        order = res.json()["data"]
        assert order["order_status"] == "Cancelled"
        assert order["payment_status"] == "Refund Initiated"
        assert order["refund_id"] == "rfnd_1"
        assert gateway.refunds == [("pay_1", paid_order["total_amount"])]
        assert stock_of(db, product) == 10

    def test_stale_cancel_does_not_refund_twice(self, client, db, user, user_headers, product, gateway, paid_order):
        stale = db["order"].find_one({"order_number": paid_order["order_number"]})
        client.post(f"/api/orders/{paid_order['id']}/cancel", headers=user_headers)
        with pytest.raises(HTTPException) as exc:
            cancel_order(db, stale, gateway, "again", user["_id"])
        assert exc.value.status_code == 400
        assert len(gateway.refunds) == 1
        assert stock_of(db, product) == 10

    def test_gateway_failure_still_cancels(self, client, db, user_headers, product, gateway, paid_order):
        gateway.fail_refunds = True
        res = client.post(f"/api/orders/{paid_order['id']}/cancel", headers=user_headers)
        order = res.json()["data"]
        assert order["order_status"] == "Cancelled"
        assert order["refund_status"] == "Refund Failed"
        assert order["payment_status"] == "Paid"
        assert stock_of(db, product) == 10

    def test_refund_endpoint(self, client, db, user_headers, product, paid_order):
        res = client.post("/api/payment/refund", json={
            "order_id": paid_order["id"], "payment_id": "pay_1", "amount": paid_order["total_amount"],
        }, headers=user_headers)
        assert res.status_code == 200
        assert res.json()["data"]["payment_status"] == "Refunded"
        assert stock_of(db, product) == 10

    def test_refund_by_stranger(self, client, other_headers, paid_order):
        res = client.post("/api/payment/refund", json={
            "order_id": paid_order["id"], "payment_id": "pay_1", "amount": 1,
        }, headers=other_headers)
        assert res.status_code == 403

    def test_refund_wrong_payment_id(self, client, user_headers, paid_order):
        res = client.post("/api/payment/refund", json={
            "order_id": paid_order["id"], "payment_id": "pay_other", "amount": 1,
        }, headers=user_headers)
        assert res.status_code == 400

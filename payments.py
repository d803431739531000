"""Razorpay integration.

The API only creates gateway orders, requests refunds and checks callback
signatures; card data never reaches this service.
"""
import hashlib
import hmac
import logging

from fastapi import HTTPException

from config import RAZORPAY_KEY_ID, RAZORPAY_KEY_SECRET

logger = logging.getLogger(__name__)


def compute_signature(order_id: str, payment_id: str, secret: str = None) -> str:
    secret = RAZORPAY_KEY_SECRET if secret is None else secret
    message = f"{order_id}|{payment_id}".encode()
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def verify_signature(order_id: str, payment_id: str, signature: str, secret: str = None) -> bool:
    if not (order_id and payment_id and signature):
        return False
    expected = compute_signature(order_id, payment_id, secret)
    return hmac.compare_digest(expected, signature)


def to_paise(amount: float) -> int:
    return int(round(float(amount) * 100))


def paid_paise(gateway, order_id: str) -> int:
    """Amount, in paise, the gateway order was created for."""
    return int(gateway.fetch_order(order_id).get("amount", 0))


class RazorpayGateway:
    def __init__(self, key_id: str, key_secret: str):
        self.key_id = key_id
        self.key_secret = key_secret
        self._client = None

    @property
    def client(self):
        if self._client is None:
            if not (self.key_id and self.key_secret):
                raise HTTPException(status_code=500, detail="Payment gateway not configured")
            import razorpay
            self._client = razorpay.Client(auth=(self.key_id, self.key_secret))
        return self._client

    def create_order(self, amount: float, receipt: str = None) -> dict:
        payload = {"amount": to_paise(amount), "currency": "INR", "payment_capture": 1}
        if receipt:
            payload["receipt"] = receipt
        return self.client.order.create(data=payload)

    def fetch_order(self, order_id: str) -> dict:
        from razorpay.errors import BadRequestError
        try:
            return self.client.order.fetch(order_id)
        except BadRequestError:
            raise HTTPException(status_code=400, detail="Unknown payment order")

    def refund(self, payment_id: str, amount: float) -> dict:
        return self.client.payment.refund(payment_id, {"amount": to_paise(amount), "speed": "optimum"})


_gateway = RazorpayGateway(RAZORPAY_KEY_ID, RAZORPAY_KEY_SECRET)


def get_gateway():
    return _gateway

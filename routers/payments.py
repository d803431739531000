import logging

from fastapi import APIRouter, Depends, HTTPException

from auth import get_current_user
from checkout import build_line, lines_from_cart, place_order, restock_order, set_status
from config import RAZORPAY_KEY_ID
from database import find_or_404, get_db
from helpers import respond, serialize_doc
from payments import get_gateway, paid_paise, to_paise, verify_signature
from schemas import PaymentOrderBody, PaymentVerifyBody, RefundBody
from usage import sync_cart_usage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/payment", tags=["payments"])


@router.post("/order")
def create_payment_order(body: PaymentOrderBody, user=Depends(get_current_user), gateway=Depends(get_gateway)):
    order = gateway.create_order(body.amount, receipt=f"rcpt_{user['_id']}")
    return respond({"order": order, "key_id": RAZORPAY_KEY_ID, "amount": to_paise(body.amount)}, "Payment order created")


@router.post("/verify", status_code=201)
def verify_payment(body: PaymentVerifyBody, user=Depends(get_current_user), db=Depends(get_db),
                   gateway=Depends(get_gateway)):
    if not verify_signature(body.razorpay_order_id, body.razorpay_payment_id, body.razorpay_signature):
        logger.warning("Invalid payment signature for gateway order %s", body.razorpay_order_id)
        raise HTTPException(status_code=400, detail="Invalid payment signature")

    if db["order"].find_one({"razorpay_payment_id": body.razorpay_payment_id}):
        raise HTTPException(status_code=400, detail="Payment already processed")

    cart = None
    if body.is_cart:
        cart = db["cart"].find_one({"user_id": user["_id"]})
        lines = lines_from_cart(db, cart)
    else:
        if not body.product_id:
            raise HTTPException(status_code=400, detail="product_id is required")
        lines = [build_line(db, body.product_id, body.quantity, body.color, body.size)]

    payment = {
        "razorpay_order_id": body.razorpay_order_id,
        "razorpay_payment_id": body.razorpay_payment_id,
        "razorpay_signature": body.razorpay_signature,
    }
    paid = paid_paise(gateway, body.razorpay_order_id)
    order = place_order(db, user, lines, body.shipping_address.model_dump(), body.note, body.coupon_code, payment, paid)
    if cart:
        db["cart"].delete_one({"_id": cart["_id"]})
        sync_cart_usage(db, user["_id"])
    return respond(serialize_doc(order), "Payment verified and order placed")


@router.post("/refund")
def refund(body: RefundBody, user=Depends(get_current_user), db=Depends(get_db), gateway=Depends(get_gateway)):
    order = find_or_404(db, "order", body.order_id, "Order")
    if order["user_id"] != user["_id"]:
        raise HTTPException(status_code=403, detail="Not allowed")
    if order.get("payment_status") != "Paid" or order.get("razorpay_payment_id") != body.payment_id:
        raise HTTPException(status_code=400, detail="Order is not refundable")
    if body.amount > order["total_amount"]:
        raise HTTPException(status_code=400, detail="Refund exceeds order total")
    result = gateway.refund(body.payment_id, body.amount)
    restock_order(db, order)
    order = set_status(db, order, "Cancelled", "Refunded to customer", user["_id"], {
        "payment_status": "Refunded",
        "refund_id": result.get("id"),
        "refund_amount": body.amount,
        "refund_status": "Refunded",
    })
    return respond(serialize_doc(order), "Refund processed")

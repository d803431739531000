import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from auth import get_current_user, require_admin
from checkout import build_line, cancel_order, lines_from_cart, place_order, restock_order, set_status
from database import find_or_404, get_db
from helpers import page_info, paginate, respond, serialize_doc
from payments import get_gateway
from schemas import CancelOrderBody, OrderFromCartBody, OrderStatusBody, PaymentStatus, SingleOrderBody
from usage import sync_cart_usage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/orders", tags=["orders"])

RESTOCK_ON = ("Cancelled", "Returned")


def owned_order(db, order_id: str, user: dict) -> dict:
    order = find_or_404(db, "order", order_id, "Order")
    if order["user_id"] != user["_id"] and user.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Not allowed")
    return order


@router.post("", status_code=201)
def create_order_from_cart(body: OrderFromCartBody, user=Depends(get_current_user), db=Depends(get_db)):
    cart = db["cart"].find_one({"user_id": user["_id"]})
    lines = lines_from_cart(db, cart)
    order = place_order(db, user, lines, body.shipping_address.model_dump(), body.note, body.coupon_code)
    db["cart"].delete_one({"_id": cart["_id"]})
    sync_cart_usage(db, user["_id"])
    return respond(serialize_doc(order), "Order placed successfully")


@router.post("/single", status_code=201)
def create_single_order(body: SingleOrderBody, user=Depends(get_current_user), db=Depends(get_db)):
    lines = [build_line(db, body.product_id, body.quantity, body.color, body.size)]
    order = place_order(db, user, lines, body.shipping_address.model_dump(), body.note, body.coupon_code)
    return respond(serialize_doc(order), "Order placed successfully")


@router.get("")
def my_orders(user=Depends(get_current_user), db=Depends(get_db)):
    orders = db["order"].find({"user_id": user["_id"]}).sort([("created_at", -1), ("_id", -1)])
    return respond([serialize_doc(o) for o in orders])


@router.get("/admin/all")
def all_orders(
    status: Optional[str] = None,
    payment_method: Optional[str] = None,
    payment_status: Optional[PaymentStatus] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    admin=Depends(require_admin),
    db=Depends(get_db),
):
    filt = {}
    if status:
        filt["order_status"] = status
    if payment_method:
        filt["payment_method"] = payment_method
    if payment_status:
        filt["payment_status"] = payment_status
    total = db["order"].count_documents(filt)
    cursor, page, limit = paginate(db["order"].find(filt).sort([("created_at", -1), ("_id", -1)]), page, limit)
    return respond([serialize_doc(o) for o in cursor], pagination=page_info(total, page, limit))


@router.get("/{order_id}")
def get_order(order_id: str, user=Depends(get_current_user), db=Depends(get_db)):
    return respond(serialize_doc(owned_order(db, order_id, user)))


@router.post("/{order_id}/cancel")
def cancel(order_id: str, body: Optional[CancelOrderBody] = None, user=Depends(get_current_user),
           db=Depends(get_db), gateway=Depends(get_gateway)):
    order = find_or_404(db, "order", order_id, "Order")
    if order["user_id"] != user["_id"]:
        raise HTTPException(status_code=403, detail="Not allowed")
    order = cancel_order(db, order, gateway, body.reason if body else None, user["_id"])
    return respond(serialize_doc(order), "Order cancelled")


@router.put("/{order_id}/status")
def update_status(order_id: str, body: OrderStatusBody, admin=Depends(require_admin), db=Depends(get_db)):
    order = find_or_404(db, "order", order_id, "Order")
    if order["order_status"] in RESTOCK_ON and body.status != order["order_status"]:
        raise HTTPException(status_code=400, detail=f"Order is already {order['order_status']}")
    extra = {}
    if body.tracking_number:
        extra["tracking_number"] = body.tracking_number
    if body.courier_name:
        extra["courier_name"] = body.courier_name
    if body.status == "Delivered" and order.get("payment_method") == "COD":
        extra["payment_status"] = "Paid"
    if body.status in RESTOCK_ON:
        restock_order(db, order)
    order = set_status(db, order, body.status, body.note, admin["_id"], extra)
    logger.info("Order %s moved to %s by %s", order["order_number"], body.status, admin["_id"])
    return respond(serialize_doc(order), "Order status updated")

"""
Order placement and reversal.

Stock is taken with a conditional decrement (``stock >= qty``) per line. When a
later line cannot be satisfied, or the order insert fails, the decrements
already applied are put back before the error propagates. Cancelling an order
restocks its recorded quantities exactly once, guarded by ``stock_restored``.
"""
import logging
import secrets
from typing import Dict, List, Optional

from fastapi import HTTPException
from pymongo.errors import DuplicateKeyError

from database import create_document, now, to_object_id
from payments import to_paise
from pricing import shipping_cost, unit_price, validate_coupon
from usage import ensure_order_quota, record_usage

logger = logging.getLogger(__name__)

NON_CANCELLABLE = ("Shipped", "Delivered", "Cancelled")


def generate_order_number() -> str:
    return f"ORD-{now():%Y%m%d}-{secrets.randbelow(10000):04d}"


def build_line(db, product_id, quantity: int, color=None, size=None) -> dict:
    product = db["product"].find_one({"_id": to_object_id(product_id, "product")})
    if not product or not product.get("is_active", True) or product.get("is_draft"):
        raise HTTPException(status_code=404, detail="Product not found")
    if quantity < 1:
        raise HTTPException(status_code=400, detail="Quantity must be at least 1")
    return {
        "product": product["_id"],
        "product_name": product["name"],
        "category": product.get("category"),
        "image": (product.get("images") or [None])[0],
        "quantity": int(quantity),
        "price": unit_price(product),
        "color": color,
        "size": size,
    }


def lines_from_cart(db, cart: Optional[dict]) -> List[dict]:
    if not cart or not cart.get("items"):
        raise HTTPException(status_code=400, detail="Cart is empty")
    return [
        build_line(db, i["product"], i.get("quantity", 1), i.get("color"), i.get("size"))
        for i in cart["items"]
    ]


def reserve_stock(db, lines: List[dict]):
    taken = []
    for line in lines:
        res = db["product"].update_one(
            {"_id": line["product"], "stock": {"$gte": line["quantity"]}},
            {"$inc": {"stock": -line["quantity"]}},
        )
        if res.modified_count == 0:
            if taken:
                logger.warning("Rolling back stock for %d lines after failure on %s", len(taken), line["product"])
                release_stock(db, taken)
            raise HTTPException(status_code=400, detail=f"Insufficient stock for {line['product_name']}")
        taken.append(line)


def release_stock(db, lines: List[dict]):
    for line in lines:
        db["product"].update_one({"_id": line["product"]}, {"$inc": {"stock": line["quantity"]}})


def history_entry(status: str, note: str = None, updated_by=None) -> dict:
    return {"status": status, "timestamp": now(), "note": note, "updated_by": updated_by}


def place_order(db, user: dict, lines: List[dict], shipping_address: dict, note: str = None,
                coupon_code: str = None, payment: Optional[Dict] = None, paid: Optional[int] = None) -> dict:
    """Create an order for ``user`` and return the stored document.

    ``payment`` carries the gateway fields of an already captured online
    payment and ``paid`` the captured amount in paise, which must equal the
    order total. Without ``payment`` the order is cash on delivery.
    """
    ensure_order_quota(db, user["_id"])

    subtotal = round(sum(l["price"] * l["quantity"] for l in lines), 2)
    discount = 0.0
    coupon = None
    if coupon_code:
        coupon = db["coupon"].find_one({"code": coupon_code.strip().upper()})
        discount = validate_coupon(coupon, subtotal, user["_id"], lines)
    shipping = shipping_cost(subtotal)
    total = round(subtotal + shipping - discount, 2)
    if payment is not None and paid != to_paise(total):
        logger.warning("Paid %s paise for an order totalling %s", paid, total)
        raise HTTPException(status_code=400, detail="Paid amount does not match order total")

    reserve_stock(db, lines)

    online = payment is not None
    order = {
        "user_id": user["_id"],
        "order_items": [{k: v for k, v in l.items() if k != "category"} for l in lines],
        "shipping_address": shipping_address,
        "note": note,
        "subtotal": subtotal,
        "shipping_cost": shipping,
        "tax": 0.0,
        "discount": discount,
        "coupon_code": coupon["code"] if coupon else None,
        "total_amount": total,
        "payment_method": "ONLINE" if online else "COD",
        "payment_status": "Paid" if online else "Pending",
        "order_status": "Processing",
        "status_history": [history_entry("Processing", "Order placed", user["_id"])],
        "stock_restored": False,
    }
    if online:
        order.update(payment)
        order["paid_at"] = now()
    order_id = _insert_with_number(db, order, lines)
    order = db["order"].find_one({"_id": to_object_id(order_id)})

    if coupon:
        db["coupon"].update_one({"_id": coupon["_id"]}, {"$inc": {"used_count": 1}, "$push": {"used_by": user["_id"]}})
    create_transaction(db, order, user)
    record_usage(db, user["_id"], "order")
    logger.info("Order %s placed by %s (%s)", order["order_number"], user["_id"], order["payment_method"])
    return order


def _insert_with_number(db, order: dict, lines: List[dict]) -> str:
    """Insert ``order`` under a fresh order number; give the stock back on failure."""
    try:
        for _ in range(5):
            order["order_number"] = generate_order_number()
            try:
                return create_document(db, "order", order)
            except DuplicateKeyError:
                logger.info("Order number %s taken, retrying", order["order_number"])
        raise HTTPException(status_code=500, detail="Could not allocate an order number")
    except Exception:
        logger.warning("Order insert failed; releasing reserved stock")
        release_stock(db, lines)
        raise


def create_transaction(db, order: dict, user: dict) -> str:
    return create_document(db, "transaction", {
        "order_id": order["_id"],
        "user_id": user["_id"],
        "email": user.get("email"),
        "tracking_number": order["order_number"],
        "product_price": order["subtotal"],
        "delivery_fee": order["shipping_cost"],
        "total_amount": order["total_amount"],
        "payment_method": order["payment_method"],
        "payment_status": order["payment_status"].lower(),
        "status": order["order_status"],
        "date": order["created_at"],
    })


def sync_transaction(db, order_id, **fields):
    if "payment_status" in fields:
        fields["payment_status"] = fields["payment_status"].lower()
    db["transaction"].update_one({"order_id": order_id}, {"$set": fields})


def restock_order(db, order: dict) -> bool:
    """Return an order's quantities to stock; a no-op after the first call."""
    res = db["order"].update_one(
        {"_id": order["_id"], "stock_restored": {"$ne": True}},
        {"$set": {"stock_restored": True}},
    )
    if res.modified_count == 0:
        return False
    release_stock(db, order.get("order_items", []))
    return True


def set_status(db, order: dict, status: str, note: str = None, updated_by=None, extra: Optional[Dict] = None) -> dict:
    fields = {"order_status": status, "updated_at": now()}
    if status == "Delivered":
        fields["delivered_at"] = now()
    if extra:
        fields.update(extra)
    db["order"].update_one(
        {"_id": order["_id"]},
        {"$set": fields, "$push": {"status_history": history_entry(status, note, updated_by)}},
    )
    sync = {"status": status}
    if "payment_status" in fields:
        sync["payment_status"] = fields["payment_status"]
    sync_transaction(db, order["_id"], **sync)
    return db["order"].find_one({"_id": order["_id"]})


def cancel_order(db, order: dict, gateway, reason: str = None, cancelled_by=None) -> dict:
    """Cancel ``order``, refunding an online payment and restocking.

    The move to Cancelled is claimed with a conditional update first, so only
    one of several concurrent cancels reaches the gateway refund.
    """
    ts = now()
    claimed = db["order"].find_one_and_update(
        {"_id": order["_id"], "order_status": {"$nin": list(NON_CANCELLABLE)}},
        {"$set": {"order_status": "Cancelled", "cancelled_at": ts, "cancellation_reason": reason, "updated_at": ts}},
    )
    if claimed is None:
        current = db["order"].find_one({"_id": order["_id"]}) or order
        raise HTTPException(status_code=400, detail=f"Order cannot be cancelled once {current['order_status']}")
    order = claimed
    extra = {"cancelled_at": ts, "cancellation_reason": reason}
    if order.get("payment_status") == "Paid" and order.get("razorpay_payment_id"):
        try:
            refund = gateway.refund(order["razorpay_payment_id"], order["total_amount"])
            extra.update({
                "refund_id": refund.get("id"),
                "refund_amount": order["total_amount"],
                "refund_status": "Refund Initiated",
                "payment_status": "Refund Initiated",
            })
        except Exception:
            logger.exception("Refund failed for order %s", order["order_number"])
            extra["refund_status"] = "Refund Failed"
    restock_order(db, order)
    return set_status(db, order, "Cancelled", reason or "Cancelled by customer", cancelled_by, extra)

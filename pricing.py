from typing import Dict, Iterable, Optional

from fastapi import HTTPException

from config import FREE_SHIPPING_ABOVE, SHIPPING_FEE
from database import now


def unit_price(product: dict) -> float:
    price = float(product.get("price") or 0)
    discount = product.get("discount_price")
    if discount and 0 < float(discount) < price:
        return float(discount)
    return price


def shipping_cost(subtotal: float) -> float:
    if subtotal <= 0:
        return 0.0
    return 0.0 if subtotal > FREE_SHIPPING_ABOVE else float(SHIPPING_FEE)


def coupon_discount(coupon: dict, amount: float) -> float:
    if coupon["discount_type"] == "percentage":
        discount = amount * float(coupon["discount_value"]) / 100
        cap = coupon.get("max_discount_amount")
        if cap:
            discount = min(discount, float(cap))
    else:
        discount = float(coupon["discount_value"])
    return round(min(discount, amount), 2)


def validate_coupon(coupon: Optional[dict], cart_total: float, user_id=None,
                    items: Optional[Iterable[Dict]] = None) -> float:
    """Check that ``coupon`` can be used on a cart and return the discount.

    ``items`` are ``{"product": ObjectId, "category": str}`` dicts; they are only
    needed for product or category restricted coupons.
    """
    if not coupon or not coupon.get("is_active"):
        raise HTTPException(status_code=400, detail="Invalid or inactive coupon")
    current = now()
    if coupon.get("start_date") and coupon["start_date"] > current:
        raise HTTPException(status_code=400, detail="Coupon is not active yet")
    if coupon.get("end_date") and coupon["end_date"] < current:
        raise HTTPException(status_code=400, detail="Coupon has expired")
    limit = coupon.get("usage_limit")
    if limit and coupon.get("used_count", 0) >= limit:
        raise HTTPException(status_code=400, detail="Coupon usage limit reached")
    if user_id is not None:
        uses = sum(1 for u in coupon.get("used_by", []) if u == user_id)
        if uses >= coupon.get("user_usage_limit", 1):
            raise HTTPException(status_code=400, detail="You have already used this coupon")
    if cart_total < float(coupon.get("min_order_value") or 0):
        raise HTTPException(
            status_code=400,
            detail=f"Minimum order value of ₹{coupon['min_order_value']:g} required",
        )

    scope = coupon.get("applicable_for", "all")
    if scope != "all":
        items = list(items or [])
        if scope == "specific-products":
            allowed = {str(p) for p in coupon.get("applicable_products", [])}
            ok = any(str(i.get("product")) in allowed for i in items)
        else:
            allowed = {str(c) for c in coupon.get("applicable_categories", [])}
            ok = any(str(i.get("category")) in allowed for i in items)
        if not ok:
            raise HTTPException(status_code=400, detail="Coupon is not applicable to items in your cart")

    return coupon_discount(coupon, cart_total)

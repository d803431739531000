"""Subscription lookups and the per-plan limits they impose."""
import logging
from typing import Optional

from fastapi import HTTPException

from config import DEFAULT_LIMITS
from database import now
from helpers import start_of_month

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = ("active", "trial")


def get_active_subscription(db, user_id) -> Optional[dict]:
    sub = db["user_subscription"].find_one({"user_id": user_id})
    if not sub or sub.get("status") not in ACTIVE_STATUSES:
        return None
    if sub.get("end_date") and sub["end_date"] < now():
        db["user_subscription"].update_one({"_id": sub["_id"]}, {"$set": {"status": "expired"}})
        logger.info("Subscription %s expired", sub["_id"])
        return None
    return reset_usage_if_needed(db, sub)


def reset_usage_if_needed(db, sub: dict) -> dict:
    usage = sub.get("usage") or {}
    last = usage.get("last_reset_date")
    current = now()
    updates = {}
    if last is None or (last.year, last.month) != (current.year, current.month):
        updates["usage.orders_this_month"] = 0
    if last is None or last.date() != current.date():
        updates["usage.product_views_today"] = 0
    if updates:
        updates["usage.last_reset_date"] = current
        db["user_subscription"].update_one({"_id": sub["_id"]}, {"$set": updates})
        sub = db["user_subscription"].find_one({"_id": sub["_id"]})
    return sub


def get_limits(db, user_id) -> dict:
    """Limits for ``user_id``: the active plan's features, else the default
    plan's, else the built-in defaults."""
    plan = None
    sub = get_active_subscription(db, user_id)
    if sub:
        plan = db["subscription_plan"].find_one({"_id": sub.get("current_plan")})
    if plan is None:
        plan = db["subscription_plan"].find_one({"is_default": True, "is_active": True})
    limits = dict(DEFAULT_LIMITS)
    if plan:
        limits.update(plan.get("features") or {})
        limits["plan"] = plan.get("name")
    else:
        limits["plan"] = None
    return limits


def within_limit(limit: int, used: int) -> bool:
    return limit == -1 or used < limit


def limit_status(limit: int, used: int) -> dict:
    return {
        "limit": limit,
        "used": used,
        "remaining": None if limit == -1 else max(0, limit - used),
        "can_add": within_limit(limit, used),
        "unlimited": limit == -1,
    }


def ensure_cart_capacity(db, user_id, lines_in_cart: int):
    limit = get_limits(db, user_id)["max_cart_items"]
    if not within_limit(limit, lines_in_cart):
        raise HTTPException(status_code=403, detail=f"Cart limit of {limit} items reached. Upgrade your plan to add more")


def ensure_wishlist_capacity(db, user_id, items_in_wishlist: int):
    limit = get_limits(db, user_id)["max_wishlist_items"]
    if not within_limit(limit, items_in_wishlist):
        raise HTTPException(status_code=403, detail=f"Wishlist limit of {limit} items reached. Upgrade your plan to add more")


def orders_this_month(db, user_id) -> int:
    return db["order"].count_documents({"user_id": user_id, "created_at": {"$gte": start_of_month(now())}})


def ensure_order_quota(db, user_id):
    limit = get_limits(db, user_id)["max_orders_per_month"]
    if not within_limit(limit, orders_this_month(db, user_id)):
        raise HTTPException(status_code=403, detail=f"Monthly order limit of {limit} reached")


USAGE_FIELDS = {
    "cart": "usage.cart_items_used",
    "wishlist": "usage.wishlist_items_used",
    "order": "usage.orders_this_month",
    "product_view": "usage.product_views_today",
}


def record_usage(db, user_id, kind: str, delta: int = 1):
    sub = get_active_subscription(db, user_id)
    if not sub:
        return None
    field = USAGE_FIELDS[kind]
    db["user_subscription"].update_one({"_id": sub["_id"]}, {"$inc": {field: delta}})
    if delta < 0:
        db["user_subscription"].update_one(
            {"_id": sub["_id"], field: {"$lt": 0}}, {"$set": {field: 0}}
        )
    return db["user_subscription"].find_one({"_id": sub["_id"]})


def sync_cart_usage(db, user_id):
    """Set the cart counter to the number of lines actually in the cart."""
    sub = get_active_subscription(db, user_id)
    if not sub:
        return None
    cart = db["cart"].find_one({"user_id": user_id}) or {}
    db["user_subscription"].update_one(
        {"_id": sub["_id"]}, {"$set": {"usage.cart_items_used": len(cart.get("items", []))}}
    )
    return db["user_subscription"].find_one({"_id": sub["_id"]})

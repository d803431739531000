import logging
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pymongo.errors import DuplicateKeyError

from auth import get_current_user, require_admin
from database import create_document, find_or_404, get_db, now, to_object_id
from helpers import page_info, paginate, respond, serialize_doc
from payments import get_gateway, paid_paise, to_paise, verify_signature
from schemas import (
    AssignPlanBody,
    Feature,
    FeatureUpdate,
    SubscribeBody,
    SubscriptionPlan,
    SubscriptionPlanUpdate,
    UsageBody,
)
from usage import get_active_subscription, get_limits, limit_status, record_usage

logger = logging.getLogger(__name__)

router = APIRouter(tags=["subscriptions"])


def activate_plan(db, user: dict, plan: dict, payment: Optional[dict] = None, auto_renew: bool = False,
                  duration: Optional[int] = None, assigned_by=None) -> dict:
    """Put ``user`` on ``plan`` starting now, keeping the previous term in history."""
    start = now()
    end = start + timedelta(days=duration or plan.get("duration", 30))
    payment = payment or {}
    history_item = {
        "plan": plan["_id"],
        "plan_name": plan["name"],
        "start_date": start,
        "end_date": end,
        "amount": payment.get("amount", plan.get("price", 0)),
        "payment_id": payment.get("payment_id"),
        "assigned_by": assigned_by,
    }
    fields = {
        "current_plan": plan["_id"],
        "start_date": start,
        "end_date": end,
        "status": "active",
        "auto_renew": auto_renew,
        "last_payment_id": payment.get("payment_id"),
        "last_payment_amount": payment.get("amount", plan.get("price", 0)),
        "last_payment_date": start if payment.get("payment_id") else None,
        "updated_at": start,
    }
    db["user_subscription"].update_one(
        {"user_id": user["_id"]},
        {
            "$set": fields,
            "$push": {"history": history_item},
            "$setOnInsert": {
                "created_at": start,
                "usage": {
                    "cart_items_used": 0,
                    "wishlist_items_used": 0,
                    "orders_this_month": 0,
                    "product_views_today": 0,
                    "last_reset_date": start,
                },
            },
        },
        upsert=True,
    )
    sub = db["user_subscription"].find_one({"user_id": user["_id"]})
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"subscription": sub["_id"], "current_plan": plan["name"]}})
    logger.info("User %s subscribed to %s until %s", user["_id"], plan["name"], end.date())
    return sub


def subscription_view(db, sub: Optional[dict]) -> Optional[dict]:
    if not sub:
        return None
    data = serialize_doc(sub)
    plan = db["subscription_plan"].find_one({"_id": sub.get("current_plan")})
    data["plan"] = serialize_doc(plan) if plan else None
    if sub.get("end_date"):
        data["days_remaining"] = max(0, (sub["end_date"] - now()).days)
    return data

# ----------------------- User -----------------------

@router.get("/api/subscriptions/plans")
def active_plans(db=Depends(get_db)):
    plans = db["subscription_plan"].find({"is_active": True}).sort([("display_order", 1), ("price", 1)])
    return respond([serialize_doc(p) for p in plans])


@router.get("/api/subscriptions/my-subscription")
def my_subscription(user=Depends(get_current_user), db=Depends(get_db)):
    sub = get_active_subscription(db, user["_id"])
    return respond({"subscription": subscription_view(db, sub), "limits": get_limits(db, user["_id"])})


@router.post("/api/subscriptions/subscribe")
def subscribe(body: SubscribeBody, user=Depends(get_current_user), db=Depends(get_db), gateway=Depends(get_gateway)):
    plan = find_or_404(db, "subscription_plan", body.plan_id, "Plan")
    if not plan.get("is_active"):
        raise HTTPException(status_code=400, detail="Plan is not available")
    if plan.get("price", 0) > 0 or body.razorpay_signature:
        if not verify_signature(body.razorpay_order_id, body.payment_id, body.razorpay_signature):
            logger.warning("Rejected subscription payment for user %s", user["_id"])
            raise HTTPException(status_code=400, detail="Invalid payment signature")
    if plan.get("price", 0) > 0 and paid_paise(gateway, body.razorpay_order_id) != to_paise(plan["price"]):
        logger.warning("Subscription payment for user %s does not match plan %s", user["_id"], plan["name"])
        raise HTTPException(status_code=400, detail="Paid amount does not match plan price")
    payment = {"payment_id": body.payment_id, "amount": plan.get("price", 0)}
    sub = activate_plan(db, user, plan, payment, body.auto_renew)
    return respond(subscription_view(db, sub), f"Subscribed to {plan['display_name']}")


@router.get("/api/subscriptions/check-cart-limit")
def check_cart_limit(user=Depends(get_current_user), db=Depends(get_db)):
    cart = db["cart"].find_one({"user_id": user["_id"]}) or {}
    limits = get_limits(db, user["_id"])
    return respond(limit_status(limits["max_cart_items"], len(cart.get("items", []))))


@router.get("/api/subscriptions/check-wishlist-limit")
def check_wishlist_limit(user=Depends(get_current_user), db=Depends(get_db)):
    limits = get_limits(db, user["_id"])
    return respond(limit_status(limits["max_wishlist_items"], len(user.get("wishlist", []))))


@router.post("/api/subscriptions/update-usage")
def update_usage(body: UsageBody, user=Depends(get_current_user), db=Depends(get_db)):
    sub = record_usage(db, user["_id"], body.type, 1 if body.action == "increment" else -1)
    if not sub:
        raise HTTPException(status_code=404, detail="No active subscription")
    return respond(serialize_doc(sub.get("usage", {})), "Usage updated")

# ----------------------- Admin: plans -----------------------

@router.get("/api/admin/subscriptions/plans")
def list_plans(admin=Depends(require_admin), db=Depends(get_db)):
    plans = []
    for plan in db["subscription_plan"].find({}).sort("display_order", 1):
        item = serialize_doc(plan)
        item["subscribers"] = db["user_subscription"].count_documents({"current_plan": plan["_id"], "status": "active"})
        plans.append(item)
    return respond(plans)


def _clear_default(db, keep_id=None):
    db["subscription_plan"].update_many({"is_default": True, "_id": {"$ne": keep_id}}, {"$set": {"is_default": False}})


@router.post("/api/admin/subscriptions/plans", status_code=201)
def create_plan(body: SubscriptionPlan, admin=Depends(require_admin), db=Depends(get_db)):
    name = body.name.strip().lower()
    if db["subscription_plan"].find_one({"name": name}):
        raise HTTPException(status_code=400, detail="Plan already exists")
    try:
        pid = create_document(db, "subscription_plan", {**body.model_dump(), "name": name})
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="Plan already exists")
    plan_id = to_object_id(pid)
    if body.is_default:
        _clear_default(db, plan_id)
    return respond(serialize_doc(db["subscription_plan"].find_one({"_id": plan_id})), "Plan created")


@router.put("/api/admin/subscriptions/plans/{plan_id}")
def update_plan(plan_id: str, body: SubscriptionPlanUpdate, admin=Depends(require_admin), db=Depends(get_db)):
    plan = find_or_404(db, "subscription_plan", plan_id, "Plan")
    update = body.model_dump(exclude_unset=True)
    update["updated_at"] = now()
    db["subscription_plan"].update_one({"_id": plan["_id"]}, {"$set": update})
    return respond(serialize_doc(db["subscription_plan"].find_one({"_id": plan["_id"]})), "Plan updated")


@router.delete("/api/admin/subscriptions/plans/{plan_id}")
def delete_plan(plan_id: str, admin=Depends(require_admin), db=Depends(get_db)):
    plan = find_or_404(db, "subscription_plan", plan_id, "Plan")
    active = db["user_subscription"].count_documents({"current_plan": plan["_id"], "status": "active"})
    if active:
        raise HTTPException(status_code=400, detail=f"Cannot delete plan with {active} active subscribers")
    db["subscription_plan"].delete_one({"_id": plan["_id"]})
    return respond(None, "Plan deleted")


@router.patch("/api/admin/subscriptions/plans/{plan_id}/toggle")
def toggle_plan(plan_id: str, admin=Depends(require_admin), db=Depends(get_db)):
    plan = find_or_404(db, "subscription_plan", plan_id, "Plan")
    state = not plan.get("is_active", True)
    db["subscription_plan"].update_one({"_id": plan["_id"]}, {"$set": {"is_active": state, "updated_at": now()}})
    return respond({"id": str(plan["_id"]), "is_active": state}, "Plan status updated")


@router.patch("/api/admin/subscriptions/plans/{plan_id}/set-default")
def set_default_plan(plan_id: str, admin=Depends(require_admin), db=Depends(get_db)):
    plan = find_or_404(db, "subscription_plan", plan_id, "Plan")
    _clear_default(db, plan["_id"])
    db["subscription_plan"].update_one({"_id": plan["_id"]}, {"$set": {"is_default": True, "updated_at": now()}})
    return respond({"id": str(plan["_id"]), "is_default": True}, "Default plan updated")

# ----------------------- Admin: user subscriptions -----------------------

@router.get("/api/admin/subscriptions/users")
def list_user_subscriptions(
    status: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    admin=Depends(require_admin),
    db=Depends(get_db),
):
    filt = {"status": status} if status else {}
    total = db["user_subscription"].count_documents(filt)
    cursor, page, limit = paginate(db["user_subscription"].find(filt).sort([("created_at", -1), ("_id", -1)]), page, limit)
    subs = list(cursor)
    users = {u["_id"]: u for u in db["user"].find({"_id": {"$in": [s["user_id"] for s in subs]}}, {"name": 1, "email": 1})}
    plans = {p["_id"]: p for p in db["subscription_plan"].find({"_id": {"$in": [s.get("current_plan") for s in subs]}}, {"name": 1, "display_name": 1})}
    data = []
    for s in subs:
        item = serialize_doc(s)
        item["user"] = serialize_doc(users.get(s["user_id"]))
        item["plan"] = serialize_doc(plans.get(s.get("current_plan")))
        data.append(item)
    return respond(data, pagination=page_info(total, page, limit))


@router.post("/api/admin/subscriptions/assign")
def assign_plan(body: AssignPlanBody, admin=Depends(require_admin), db=Depends(get_db)):
    user = find_or_404(db, "user", body.user_id, "User")
    plan = find_or_404(db, "subscription_plan", body.plan_id, "Plan")
    sub = activate_plan(db, user, plan, {"amount": 0}, duration=body.duration, assigned_by=admin["_id"])
    return respond(subscription_view(db, sub), "Plan assigned")


@router.post("/api/admin/subscriptions/users/{user_id}/cancel")
def cancel_subscription(user_id: str, admin=Depends(require_admin), db=Depends(get_db)):
    uid = to_object_id(user_id, "user")
    res = db["user_subscription"].update_one(
        {"user_id": uid, "status": {"$in": ["active", "trial"]}},
        {"$set": {"status": "cancelled", "auto_renew": False, "cancelled_at": now()}},
    )
    if res.matched_count == 0:
        raise HTTPException(status_code=404, detail="No active subscription for this user")
    db["user"].update_one({"_id": uid}, {"$set": {"current_plan": None}})
    return respond(None, "Subscription cancelled")

# ----------------------- Admin: features -----------------------

@router.get("/api/admin/subscriptions/features")
def list_features(admin=Depends(require_admin), db=Depends(get_db)):
    return respond([serialize_doc(f) for f in db["feature"].find({}).sort("name", 1)])


@router.post("/api/admin/subscriptions/features", status_code=201)
def create_feature(body: Feature, admin=Depends(require_admin), db=Depends(get_db)):
    if db["feature"].find_one({"name": body.name}):
        raise HTTPException(status_code=400, detail="Feature already exists")
    fid = create_document(db, "feature", body)
    return respond(serialize_doc(db["feature"].find_one({"_id": to_object_id(fid)})), "Feature created")


@router.put("/api/admin/subscriptions/features/{feature_id}")
def update_feature(feature_id: str, body: FeatureUpdate, admin=Depends(require_admin), db=Depends(get_db)):
    feature = find_or_404(db, "feature", feature_id, "Feature")
    update = body.model_dump(exclude_unset=True)
    update["updated_at"] = now()
    db["feature"].update_one({"_id": feature["_id"]}, {"$set": update})
    return respond(serialize_doc(db["feature"].find_one({"_id": feature["_id"]})), "Feature updated")


@router.delete("/api/admin/subscriptions/features/{feature_id}")
def delete_feature(feature_id: str, admin=Depends(require_admin), db=Depends(get_db)):
    feature = find_or_404(db, "feature", feature_id, "Feature")
    db["feature"].delete_one({"_id": feature["_id"]})
    return respond(None, "Feature deleted")

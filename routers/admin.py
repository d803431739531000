import logging
from collections import Counter, defaultdict
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from auth import public_user, require_admin
from config import PROFIT_MARGIN
from database import find_or_404, get_db, now, to_object_id
from helpers import (
    csv_response,
    fmt_date,
    page_info,
    paginate,
    percent_change,
    regex,
    require_fields,
    respond,
    serialize_doc,
    shift_month,
    start_of_day,
    start_of_month,
)
from routers.catalog import PUBLISH_REQUIRED, completion, publish_fields
from routers.inventory import STOCK_LEVELS
from routers.reviews import refresh_rating
from schemas import BulkDeleteBody, ORDER_STATUSES

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])


def _sum(orders, field="total_amount") -> float:
    return round(sum(o.get(field, 0) or 0 for o in orders), 2)


def _between(start, end) -> dict:
    return {"created_at": {"$gte": start, "$lt": end}}

# ----------------------- Dashboard -----------------------

@router.get("/dashboard")
def dashboard(admin=Depends(require_admin), db=Depends(get_db)):
    current = now()
    this_month = start_of_month(current)
    last_month = shift_month(this_month, -1)

    paid = list(db["order"].find({"payment_status": "Paid"}, {"total_amount": 1, "created_at": 1}))
    revenue_now = _sum(o for o in paid if o["created_at"] >= this_month)
    revenue_prev = _sum(o for o in paid if last_month <= o["created_at"] < this_month)

    def monthly(collection, extra=None):
        filt = dict(extra or {})
        cur = db[collection].count_documents({**filt, **_between(this_month, shift_month(this_month, 1))})
        prev = db[collection].count_documents({**filt, **_between(last_month, this_month)})
        return percent_change(cur, prev)

    since = start_of_day(current) - timedelta(days=29)
    by_date = defaultdict(float)
    for o in paid:
        if o["created_at"] >= since:
            by_date[o["created_at"].strftime("%Y-%m-%d")] += o.get("total_amount", 0)
    revenue_by_date = [
        {"date": d, "revenue": round(by_date.get(d, 0), 2)}
        for d in ((since + timedelta(days=i)).strftime("%Y-%m-%d") for i in range(30))
    ]

    status_counts = Counter(o["order_status"] for o in db["order"].find({}, {"order_status": 1}))
    recent = db["order"].find({}).sort([("created_at", -1), ("_id", -1)]).limit(10)
    low = db["product"].find(STOCK_LEVELS["low"], {"name": 1, "stock": 1}).sort("stock", 1).limit(5)
    stuck = db["order"].count_documents({
        "order_status": {"$nin": ["Delivered", "Cancelled", "Returned"]},
        "created_at": {"$lt": current - timedelta(days=5)},
    })

    return respond({
        "totals": {
            "users": db["user"].count_documents({"role": "user"}),
            "products": db["product"].count_documents({}),
            "orders": db["order"].count_documents({}),
            "revenue": _sum(paid),
        },
        "growth": {
            "revenue": percent_change(revenue_now, revenue_prev),
            "orders": monthly("order"),
            "users": monthly("user", {"role": "user"}),
            "products": monthly("product"),
        },
        "orders_by_status": [{"status": s, "count": status_counts.get(s, 0)} for s in ORDER_STATUSES],
        "order_fulfillment": {
            "delivered": status_counts.get("Delivered", 0),
            "pending": sum(status_counts.get(s, 0) for s in ("Processing", "Confirmed", "Packed")),
            "in_transit": sum(status_counts.get(s, 0) for s in ("Shipped", "Out for Delivery")),
            "stuck": stuck,
        },
        "orders_by_country": orders_by_country(db, this_month, last_month),
        "revenue_by_date": revenue_by_date,
        "recent_orders": [serialize_doc(o) for o in recent],
        "low_stock_products": [serialize_doc(p) for p in low],
    })


def orders_by_country(db, this_month, last_month):
    current, previous = Counter(), Counter()
    for o in db["order"].find({"created_at": {"$gte": last_month}}, {"shipping_address.country": 1, "created_at": 1}):
        country = (o.get("shipping_address") or {}).get("country") or "Unknown"
        (current if o["created_at"] >= this_month else previous)[country] += 1
    rows = []
    for country in set(current) | set(previous):
        cur, prev = current[country], previous[country]
        rows.append({
            "country": country,
            "orders": cur,
            "previous": prev,
            "trend": "up" if cur > prev else "down" if cur < prev else "same",
        })
    rows.sort(key=lambda r: r["orders"], reverse=True)
    return rows

# ----------------------- Users -----------------------

@router.get("/users")
def list_users(
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    admin=Depends(require_admin),
    db=Depends(get_db),
):
    filt = {"role": "user"}
    if search:
        filt["$or"] = [{"name": regex(search)}, {"email": regex(search)}, {"phone": regex(search)}]
    total = db["user"].count_documents(filt)
    cursor, page, limit = paginate(db["user"].find(filt).sort([("created_at", -1), ("_id", -1)]), page, limit)
    return respond([public_user(u) for u in cursor], pagination=page_info(total, page, limit))


@router.get("/users/admins")
def list_admins(admin=Depends(require_admin), db=Depends(get_db)):
    return respond([public_user(u) for u in db["user"].find({"role": "admin"})])


@router.get("/users/{user_id}")
def user_details(user_id: str, admin=Depends(require_admin), db=Depends(get_db)):
    user = find_or_404(db, "user", user_id, "User")
    orders = list(db["order"].find({"user_id": user["_id"]}).sort("created_at", -1))
    return respond({
        "user": public_user(user),
        "orders": [serialize_doc(o) for o in orders],
        "total_spent": _sum(o for o in orders if o.get("payment_status") == "Paid"),
    })


@router.patch("/users/{user_id}/block")
def toggle_block(user_id: str, admin=Depends(require_admin), db=Depends(get_db)):
    user = find_or_404(db, "user", user_id, "User")
    if user["_id"] == admin["_id"]:
        raise HTTPException(status_code=400, detail="You cannot block yourself")
    blocked = not user.get("is_blocked", False)
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"is_blocked": blocked, "updated_at": now()}})
    logger.info("User %s %s by %s", user["_id"], "blocked" if blocked else "unblocked", admin["_id"])
    return respond({"id": str(user["_id"]), "is_blocked": blocked}, "User blocked" if blocked else "User unblocked")

# ----------------------- Products -----------------------

@router.get("/products")
def admin_products(
    search: Optional[str] = None,
    category: Optional[str] = None,
    seller: Optional[str] = None,
    is_active: Optional[bool] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    admin=Depends(require_admin),
    db=Depends(get_db),
):
    filt = {"is_draft": {"$ne": True}}
    if search:
        filt["$or"] = [{"name": regex(search)}, {"brand": regex(search)}, {"description": regex(search)}]
    if category:
        filt["category"] = to_object_id(category, "category")
    if seller:
        filt["seller"] = to_object_id(seller, "seller")
    if is_active is not None:
        filt["is_active"] = is_active
    total = db["product"].count_documents(filt)
    cursor, page, limit = paginate(db["product"].find(filt).sort([("created_at", -1), ("_id", -1)]), page, limit)
    return respond([serialize_doc(p) for p in cursor], pagination=page_info(total, page, limit))


@router.get("/products/drafts")
def draft_products(admin=Depends(require_admin), db=Depends(get_db)):
    drafts = []
    for p in db["product"].find({"is_draft": True}).sort("updated_at", -1):
        item = serialize_doc(p)
        item.update(completion(p))
        drafts.append(item)
    return respond(drafts)


@router.patch("/products/{product_id}/publish")
def publish_product(product_id: str, admin=Depends(require_admin), db=Depends(get_db)):
    product = find_or_404(db, "product", product_id, "Product")
    if not product.get("is_draft"):
        raise HTTPException(status_code=400, detail="Product is already published")
    require_fields(product, PUBLISH_REQUIRED, "Cannot publish, missing")
    db["product"].update_one({"_id": product["_id"]}, {"$set": {**publish_fields(), "updated_at": now()}})
    return respond(serialize_doc(db["product"].find_one({"_id": product["_id"]})), "Product published")


@router.patch("/products/{product_id}/toggle")
def toggle_product(product_id: str, admin=Depends(require_admin), db=Depends(get_db)):
    product = find_or_404(db, "product", product_id, "Product")
    if product.get("is_draft"):
        raise HTTPException(status_code=400, detail="Publish the draft first")
    state = not product.get("is_active", True)
    db["product"].update_one({"_id": product["_id"]}, {"$set": {"is_active": state, "updated_at": now()}})
    return respond({"id": str(product["_id"]), "is_active": state}, "Product status updated")

# ----------------------- Orders -----------------------

@router.get("/orders/stats")
def order_stats(admin=Depends(require_admin), db=Depends(get_db)):
    counts = Counter(o["order_status"] for o in db["order"].find({}, {"order_status": 1}))
    data = {s: counts.get(s, 0) for s in ORDER_STATUSES}
    data["total"] = sum(counts.values())
    return respond(data)


def chart_buckets(period: str, current):
    """Return (start, bucket_key_fn, labels) for a chart period."""
    if period == "24hours":
        start = current.replace(minute=0, second=0, microsecond=0) - timedelta(hours=23)
        labels = [(start + timedelta(hours=i)).strftime("%Y-%m-%d %H:00") for i in range(24)]
        return start, lambda d: d.strftime("%Y-%m-%d %H:00"), labels
    if period in ("7days", "30days"):
        days = 7 if period == "7days" else 30
        start = start_of_day(current) - timedelta(days=days - 1)
        labels = [(start + timedelta(days=i)).strftime("%Y-%m-%d") for i in range(days)]
        return start, lambda d: d.strftime("%Y-%m-%d"), labels
    start = shift_month(start_of_month(current), -11)
    labels = [shift_month(start, i).strftime("%Y-%m") for i in range(12)]
    return start, lambda d: d.strftime("%Y-%m"), labels


@router.get("/orders/chart")
def order_chart(period: str = Query("7days", pattern="^(24hours|7days|30days|12months)$"),
                admin=Depends(require_admin), db=Depends(get_db)):
    start, key, labels = chart_buckets(period, now())
    orders = Counter()
    earnings = defaultdict(float)
    for o in db["order"].find({"created_at": {"$gte": start}}):
        k = key(o["created_at"])
        orders[k] += 1
        if o.get("payment_status") == "Paid":
            earnings[k] += o.get("total_amount", 0)
    return respond([
        {
            "label": label,
            "orders": orders.get(label, 0),
            "earnings": round(earnings.get(label, 0), 2),
            "profits": round(earnings.get(label, 0) * PROFIT_MARGIN, 2),
        }
        for label in labels
    ])

# ----------------------- Reviews -----------------------

def review_filter(rating: Optional[int], product_id: Optional[str], search: Optional[str]) -> dict:
    filt = {}
    if rating:
        filt["rating"] = rating
    if product_id:
        filt["product_id"] = to_object_id(product_id, "product")
    if search:
        filt["comment"] = regex(search)
    return filt


@router.get("/reviews")
def admin_reviews(
    rating: Optional[int] = Query(None, ge=1, le=5),
    product_id: Optional[str] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    admin=Depends(require_admin),
    db=Depends(get_db),
):
    filt = review_filter(rating, product_id, search)
    total = db["review"].count_documents(filt)
    ratings = [r["rating"] for r in db["review"].find(filt, {"rating": 1})]
    cursor, page, limit = paginate(db["review"].find(filt).sort([("created_at", -1), ("_id", -1)]), page, limit)
    return respond(
        [serialize_doc(r) for r in cursor],
        pagination=page_info(total, page, limit),
        average_rating=round(sum(ratings) / len(ratings), 1) if ratings else 0,
    )


@router.get("/reviews/stats")
def review_stats(admin=Depends(require_admin), db=Depends(get_db)):
    ratings = Counter(r["rating"] for r in db["review"].find({}, {"rating": 1}))
    total = sum(ratings.values())
    distribution = [
        {"rating": star, "count": ratings.get(star, 0),
         "percentage": round(ratings.get(star, 0) / total * 100, 1) if total else 0}
        for star in range(5, 0, -1)
    ]
    average = round(sum(k * v for k, v in ratings.items()) / total, 1) if total else 0
    return respond({"total": total, "average_rating": average, "distribution": distribution})


@router.get("/reviews/products")
def product_review_stats(admin=Depends(require_admin), db=Depends(get_db)):
    grouped = defaultdict(list)
    for r in db["review"].find({}, {"product_id": 1, "rating": 1}):
        grouped[r["product_id"]].append(r["rating"])
    names = {p["_id"]: p["name"] for p in db["product"].find({"_id": {"$in": list(grouped)}}, {"name": 1})}
    data = [
        {"product_id": str(pid), "product_name": names.get(pid), "reviews": len(rs),
         "average_rating": round(sum(rs) / len(rs), 1)}
        for pid, rs in grouped.items()
    ]
    data.sort(key=lambda d: d["reviews"], reverse=True)
    return respond(data)


@router.get("/reviews/export")
def export_reviews(rating: Optional[int] = Query(None, ge=1, le=5), product_id: Optional[str] = None,
                   search: Optional[str] = None, admin=Depends(require_admin), db=Depends(get_db)):
    reviews = list(db["review"].find(review_filter(rating, product_id, search)).sort("created_at", -1))
    products = {p["_id"]: p["name"] for p in db["product"].find({"_id": {"$in": [r["product_id"] for r in reviews]}}, {"name": 1})}
    users = {u["_id"]: u.get("name") for u in db["user"].find({"_id": {"$in": [r["user_id"] for r in reviews]}}, {"name": 1})}
    rows = (
        [str(r["_id"]), products.get(r["product_id"], ""), users.get(r["user_id"], ""), r["rating"],
         r.get("comment") or "", fmt_date(r.get("created_at"))]
        for r in reviews
    )
    return csv_response("reviews.csv", ["Review ID", "Product", "Customer", "Rating", "Comment", "Date"], rows)


@router.delete("/reviews/{review_id}")
def admin_delete_review(review_id: str, admin=Depends(require_admin), db=Depends(get_db)):
    review = find_or_404(db, "review", review_id, "Review")
    db["review"].delete_one({"_id": review["_id"]})
    refresh_rating(db, review["product_id"])
    return respond(None, "Review deleted")


@router.post("/reviews/bulk-delete")
def bulk_delete_reviews(body: BulkDeleteBody, admin=Depends(require_admin), db=Depends(get_db)):
    ids = [to_object_id(i, "review") for i in body.ids]
    products = {r["product_id"] for r in db["review"].find({"_id": {"$in": ids}}, {"product_id": 1})}
    res = db["review"].delete_many({"_id": {"$in": ids}})
    for pid in products:
        refresh_rating(db, pid)
    return respond({"deleted": res.deleted_count}, f"{res.deleted_count} reviews deleted")

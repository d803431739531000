from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pymongo.errors import DuplicateKeyError

from auth import get_current_user, require_admin
from database import create_document, find_or_404, get_db, now, to_object_id
from helpers import naive_utc, page_info, paginate, regex, respond, serialize_doc
from pricing import validate_coupon
from schemas import ApplyCouponBody, Coupon, CouponUpdate

router = APIRouter(tags=["coupons"])


def _cart_items(db, user_id):
    cart = db["cart"].find_one({"user_id": user_id}) or {}
    ids = [i["product"] for i in cart.get("items", [])]
    categories = {p["_id"]: p.get("category") for p in db["product"].find({"_id": {"$in": ids}}, {"category": 1})}
    return [{"product": pid, "category": categories.get(pid)} for pid in ids]


@router.get("/api/coupons/active")
def active_coupons(user=Depends(get_current_user), db=Depends(get_db)):
    current = now()
    filt = {"is_active": True, "start_date": {"$lte": current}, "end_date": {"$gte": current}}
    coupons = [
        c for c in db["coupon"].find(filt).sort("created_at", -1)
        if not c.get("usage_limit") or c.get("used_count", 0) < c["usage_limit"]
    ]
    return respond([serialize_doc({k: v for k, v in c.items() if k != "used_by"}) for c in coupons])


@router.post("/api/coupons/apply")
def apply_coupon(body: ApplyCouponBody, user=Depends(get_current_user), db=Depends(get_db)):
    coupon = db["coupon"].find_one({"code": body.code.strip().upper()})
    if not coupon:
        raise HTTPException(status_code=404, detail="Invalid coupon code")
    discount = validate_coupon(coupon, body.cart_total, user["_id"], _cart_items(db, user["_id"]))
    return respond({
        "code": coupon["code"],
        "discount_type": coupon["discount_type"],
        "discount_value": coupon["discount_value"],
        "discount_amount": discount,
        "final_amount": round(body.cart_total - discount, 2),
    }, "Coupon applied")


@router.post("/api/coupons/remove")
def remove_coupon(user=Depends(get_current_user)):
    # Coupons are only bound to an order at checkout, so there is nothing to undo.
    return respond({"discount_amount": 0}, "Coupon removed")

# ----------------------- Admin -----------------------

@router.get("/api/admin/coupons")
def list_coupons(
    is_active: Optional[bool] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    admin=Depends(require_admin),
    db=Depends(get_db),
):
    filt = {}
    if is_active is not None:
        filt["is_active"] = is_active
    if search:
        filt["$or"] = [{"code": regex(search)}, {"description": regex(search)}]
    total = db["coupon"].count_documents(filt)
    cursor, page, limit = paginate(db["coupon"].find(filt).sort([("created_at", -1), ("_id", -1)]), page, limit)
    return respond([serialize_doc(c) for c in cursor], pagination=page_info(total, page, limit))


@router.get("/api/admin/coupons/{coupon_id}")
def get_coupon(coupon_id: str, admin=Depends(require_admin), db=Depends(get_db)):
    return respond(serialize_doc(find_or_404(db, "coupon", coupon_id, "Coupon")))


def _check_window(start, end):
    if start and end and end <= start:
        raise HTTPException(status_code=400, detail="End date must be after start date")


@router.post("/api/admin/coupons", status_code=201)
def create_coupon(body: Coupon, admin=Depends(require_admin), db=Depends(get_db)):
    data = body.model_dump()
    data["code"] = data["code"].strip().upper()
    data["start_date"] = naive_utc(data["start_date"])
    data["end_date"] = naive_utc(data["end_date"])
    _check_window(data["start_date"], data["end_date"])
    if db["coupon"].find_one({"code": data["code"]}):
        raise HTTPException(status_code=400, detail="Coupon code already exists")
    data["applicable_products"] = [to_object_id(p, "product") for p in data["applicable_products"]]
    data["applicable_categories"] = [to_object_id(c, "category") for c in data["applicable_categories"]]
    data.update({"used_count": 0, "used_by": [], "created_by": admin["_id"]})
    try:
        cid = create_document(db, "coupon", data)
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="Coupon code already exists")
    return respond(serialize_doc(db["coupon"].find_one({"_id": to_object_id(cid)})), "Coupon created")


@router.put("/api/admin/coupons/{coupon_id}")
def update_coupon(coupon_id: str, body: CouponUpdate, admin=Depends(require_admin), db=Depends(get_db)):
    coupon = find_or_404(db, "coupon", coupon_id, "Coupon")
    update = body.model_dump(exclude_unset=True)
    for field in ("start_date", "end_date"):
        if field in update:
            update[field] = naive_utc(update[field])
    _check_window(update.get("start_date", coupon.get("start_date")), update.get("end_date", coupon.get("end_date")))
    if update.get("applicable_products") is not None:
        update["applicable_products"] = [to_object_id(p, "product") for p in update["applicable_products"]]
    if update.get("applicable_categories") is not None:
        update["applicable_categories"] = [to_object_id(c, "category") for c in update["applicable_categories"]]
    update["updated_at"] = now()
    db["coupon"].update_one({"_id": coupon["_id"]}, {"$set": update})
    return respond(serialize_doc(db["coupon"].find_one({"_id": coupon["_id"]})), "Coupon updated")


@router.delete("/api/admin/coupons/{coupon_id}")
def delete_coupon(coupon_id: str, admin=Depends(require_admin), db=Depends(get_db)):
    coupon = find_or_404(db, "coupon", coupon_id, "Coupon")
    db["coupon"].delete_one({"_id": coupon["_id"]})
    return respond(None, "Coupon deleted")


@router.patch("/api/admin/coupons/{coupon_id}/toggle")
def toggle_coupon(coupon_id: str, admin=Depends(require_admin), db=Depends(get_db)):
    coupon = find_or_404(db, "coupon", coupon_id, "Coupon")
    state = not coupon.get("is_active", True)
    db["coupon"].update_one({"_id": coupon["_id"]}, {"$set": {"is_active": state, "updated_at": now()}})
    return respond({"id": str(coupon["_id"]), "is_active": state}, "Coupon activated" if state else "Coupon deactivated")

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from auth import require_admin
from database import create_document, find_or_404, get_db, now, to_object_id
from helpers import page_info, paginate, regex, respond, serialize_doc
from schemas import AssignProductsBody, Seller, SellerStatusBody, SellerUpdate

logger = logging.getLogger(__name__)

router = APIRouter(tags=["sellers"])


def seller_filter(status: Optional[str], search: Optional[str]) -> dict:
    filt = {}
    if status:
        filt["status"] = status
    if search:
        filt["$or"] = [{"name": regex(search)}, {"shop_name": regex(search)}, {"email": regex(search)}]
    return filt


@router.get("/api/sellers")
def public_sellers(db=Depends(get_db)):
    sellers = db["seller"].find({"status": "approved", "is_active": True}, {"name": 1, "shop_name": 1})
    return respond([serialize_doc(s) for s in sellers])


@router.get("/api/sellers/{seller_id}")
def public_seller(seller_id: str, db=Depends(get_db)):
    seller = db["seller"].find_one(
        {"_id": to_object_id(seller_id, "seller"), "status": "approved", "is_active": True},
        {"name": 1, "shop_name": 1},
    )
    if not seller:
        raise HTTPException(status_code=404, detail="Seller not found")
    data = serialize_doc(seller)
    products = db["product"].find(
        {"seller": seller["_id"], "is_active": True, "is_draft": {"$ne": True}}, {"name": 1, "price": 1, "images": 1}
    )
    data["products"] = [serialize_doc(p) for p in products]
    return respond(data)


@router.get("/api/admin/sellers")
def list_sellers(
    status: Optional[str] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    admin=Depends(require_admin),
    db=Depends(get_db),
):
    filt = seller_filter(status, search)
    total = db["seller"].count_documents(filt)
    cursor, page, limit = paginate(db["seller"].find(filt).sort([("created_at", -1), ("_id", -1)]), page, limit)
    sellers = []
    for s in cursor:
        item = serialize_doc(s)
        item["product_count"] = db["product"].count_documents({"seller": s["_id"]})
        sellers.append(item)
    return respond(sellers, pagination=page_info(total, page, limit))


@router.get("/api/admin/sellers/{seller_id}")
def get_seller(seller_id: str, admin=Depends(require_admin), db=Depends(get_db)):
    seller = find_or_404(db, "seller", seller_id, "Seller")
    data = serialize_doc(seller)
    data["products"] = [serialize_doc(p) for p in db["product"].find({"seller": seller["_id"]}, {"name": 1, "price": 1, "stock": 1})]
    return respond(data)


@router.post("/api/admin/sellers", status_code=201)
def create_seller(body: Seller, admin=Depends(require_admin), db=Depends(get_db)):
    email = body.email.lower()
    if db["seller"].find_one({"email": email}):
        raise HTTPException(status_code=400, detail="Seller with this email already exists")
    sid = create_document(db, "seller", {**body.model_dump(), "email": email})
    return respond(serialize_doc(db["seller"].find_one({"_id": to_object_id(sid)})), "Seller created")


@router.put("/api/admin/sellers/{seller_id}")
def update_seller(seller_id: str, body: SellerUpdate, admin=Depends(require_admin), db=Depends(get_db)):
    seller = find_or_404(db, "seller", seller_id, "Seller")
    update = body.model_dump(exclude_unset=True)
    update["updated_at"] = now()
    db["seller"].update_one({"_id": seller["_id"]}, {"$set": update})
    return respond(serialize_doc(db["seller"].find_one({"_id": seller["_id"]})), "Seller updated")


@router.patch("/api/admin/sellers/{seller_id}/status")
def update_seller_status(seller_id: str, body: SellerStatusBody, admin=Depends(require_admin), db=Depends(get_db)):
    seller = find_or_404(db, "seller", seller_id, "Seller")
    db["seller"].update_one({"_id": seller["_id"]}, {"$set": {"status": body.status, "updated_at": now()}})
    logger.info("Seller %s set to %s", seller["_id"], body.status)
    return respond({"id": str(seller["_id"]), "status": body.status}, f"Seller {body.status}")


@router.post("/api/admin/sellers/{seller_id}/products")
def assign_products(seller_id: str, body: AssignProductsBody, admin=Depends(require_admin), db=Depends(get_db)):
    seller = find_or_404(db, "seller", seller_id, "Seller")
    ids = [to_object_id(p, "product") for p in body.product_ids]
    res = db["product"].update_many({"_id": {"$in": ids}}, {"$set": {"seller": seller["_id"], "updated_at": now()}})
    return respond({"assigned": res.matched_count}, "Products assigned")


@router.delete("/api/admin/sellers/{seller_id}")
def delete_seller(seller_id: str, admin=Depends(require_admin), db=Depends(get_db)):
    seller = find_or_404(db, "seller", seller_id, "Seller")
    db["product"].update_many({"seller": seller["_id"]}, {"$set": {"seller": None}})
    db["seller"].delete_one({"_id": seller["_id"]})
    return respond(None, "Seller deleted")

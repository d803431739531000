"""Stock levels, warehouses, suppliers, restocking requests and stock movements."""
import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from auth import require_admin
from config import LOW_STOCK_THRESHOLD
from database import create_document, find_or_404, get_db, get_documents, now, to_object_id
from helpers import naive_utc, page_info, paginate, regex, respond, serialize_doc, start_of_day
from schemas import (
    BulkStockBody,
    InventoryMovement,
    OrderRequest,
    OrderRequestStatusBody,
    StockUpdateBody,
    Supplier,
    SupplierUpdate,
    Warehouse,
    WarehouseUpdate,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["inventory"])

STOCK_LEVELS = {
    "in": {"stock": {"$gt": LOW_STOCK_THRESHOLD}},
    "low": {"stock": {"$gt": 0, "$lte": LOW_STOCK_THRESHOLD}},
    "out": {"stock": {"$lte": 0}},
}


def apply_movement(movement_type: str, current: int, quantity: int) -> int:
    """New stock level after a movement of ``quantity`` units."""
    if movement_type in ("in", "return"):
        return current + quantity
    if movement_type in ("out", "damage"):
        return max(0, current - quantity)
    if movement_type == "adjustment":
        return quantity
    return current


def move_stock(db, product: dict, movement_type: str, quantity: int, performed_by=None, **details) -> dict:
    """Apply a movement with compare-and-set on the stock level and log it."""
    for _ in range(5):
        previous = product.get("stock", 0)
        new = apply_movement(movement_type, previous, quantity)
        res = db["product"].update_one(
            {"_id": product["_id"], "stock": previous},
            {"$set": {"stock": new, "updated_at": now()}},
        )
        if res.modified_count or previous == new:
            break
        product = db["product"].find_one({"_id": product["_id"]})
    else:
        raise HTTPException(status_code=409, detail="Stock changed concurrently, try again")
    movement = {
        "product_id": product["_id"],
        "product_name": product.get("name"),
        "movement_type": movement_type,
        "quantity": quantity,
        "previous_stock": previous,
        "new_stock": new,
        "reference_type": details.pop("reference_type", "manual"),
        "performed_by": performed_by,
        **details,
    }
    mid = create_document(db, "inventory_movement", movement)
    return db["inventory_movement"].find_one({"_id": to_object_id(mid)})

# ----------------------- Stock -----------------------

@router.get("/stock/summary")
def stock_summary(admin=Depends(require_admin), db=Depends(get_db)):
    return respond({
        "total_products": db["product"].count_documents({}),
        "in_stock": db["product"].count_documents(STOCK_LEVELS["in"]),
        "low_stock": db["product"].count_documents(STOCK_LEVELS["low"]),
        "out_of_stock": db["product"].count_documents(STOCK_LEVELS["out"]),
    })


@router.get("/stock/products")
def stock_products(
    stock: Optional[str] = Query(None, pattern="^(in|low|out)$"),
    category: Optional[str] = None,
    status: Optional[str] = Query(None, pattern="^(active|inactive)$"),
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    admin=Depends(require_admin),
    db=Depends(get_db),
):
    filt = dict(STOCK_LEVELS[stock]) if stock else {}
    if category:
        filt["category"] = to_object_id(category, "category")
    if status:
        filt["is_active"] = status == "active"
    if search:
        filt["$or"] = [{"name": regex(search)}, {"brand": regex(search)}]
    total = db["product"].count_documents(filt)
    cursor, page, limit = paginate(db["product"].find(filt).sort([("stock", 1), ("_id", 1)]), page, limit)
    return respond([serialize_doc(p) for p in cursor], pagination=page_info(total, page, limit))


@router.patch("/stock/update")
def update_stock(body: StockUpdateBody, admin=Depends(require_admin), db=Depends(get_db)):
    product = find_or_404(db, "product", body.product_id, "Product")
    filt = {"_id": product["_id"]}
    if body.quantity < 0:
        filt["stock"] = {"$gte": -body.quantity}
    res = db["product"].update_one(filt, {"$inc": {"stock": body.quantity}, "$set": {"updated_at": now()}})
    if res.modified_count == 0:
        raise HTTPException(status_code=400, detail="Stock cannot go below zero")
    product = db["product"].find_one({"_id": product["_id"]})
    return respond({"id": str(product["_id"]), "stock": product["stock"]}, "Stock updated")


@router.put("/stock/bulk")
def bulk_update_stock(body: BulkStockBody, admin=Depends(require_admin), db=Depends(get_db)):
    updated, missing = 0, []
    for item in body.items:
        res = db["product"].update_one(
            {"_id": to_object_id(item.product_id, "product")},
            {"$set": {"stock": item.stock, "updated_at": now()}},
        )
        if res.matched_count:
            updated += 1
        else:
            missing.append(item.product_id)
    return respond({"updated": updated, "not_found": missing}, f"{updated} products updated")

# ----------------------- Warehouses -----------------------

def utilization(warehouse: dict) -> int:
    capacity = warehouse.get("capacity") or 0
    if not capacity:
        return 0
    return round(warehouse.get("current_utilization", 0) / capacity * 100)


@router.get("/warehouses")
def list_warehouses(is_active: Optional[bool] = None, city: Optional[str] = None, search: Optional[str] = None,
                    admin=Depends(require_admin), db=Depends(get_db)):
    filt = {}
    if is_active is not None:
        filt["is_active"] = is_active
    if city:
        filt["location.city"] = regex(city)
    if search:
        filt["$or"] = [{"name": regex(search)}, {"warehouse_id": regex(search)}]
    data = []
    for w in db["warehouse"].find(filt).sort("name", 1):
        item = serialize_doc(w)
        item["utilization_percentage"] = utilization(w)
        data.append(item)
    return respond(data)


@router.get("/warehouses/{warehouse_id}")
def get_warehouse(warehouse_id: str, admin=Depends(require_admin), db=Depends(get_db)):
    warehouse = find_or_404(db, "warehouse", warehouse_id, "Warehouse")
    item = serialize_doc(warehouse)
    item["utilization_percentage"] = utilization(warehouse)
    return respond(item)


@router.post("/warehouses", status_code=201)
def create_warehouse(body: Warehouse, admin=Depends(require_admin), db=Depends(get_db)):
    code = body.warehouse_id.strip().upper()
    if db["warehouse"].find_one({"warehouse_id": code}):
        raise HTTPException(status_code=400, detail="Warehouse ID already exists")
    if body.current_utilization > body.capacity:
        raise HTTPException(status_code=400, detail="Utilization cannot exceed capacity")
    wid = create_document(db, "warehouse", {**body.model_dump(), "warehouse_id": code})
    return respond(serialize_doc(db["warehouse"].find_one({"_id": to_object_id(wid)})), "Warehouse created")


@router.put("/warehouses/{warehouse_id}")
def update_warehouse(warehouse_id: str, body: WarehouseUpdate, admin=Depends(require_admin), db=Depends(get_db)):
    warehouse = find_or_404(db, "warehouse", warehouse_id, "Warehouse")
    update = body.model_dump(exclude_unset=True)
    merged = {**warehouse, **update}
    if merged.get("current_utilization", 0) > merged["capacity"]:
        raise HTTPException(status_code=400, detail="Utilization cannot exceed capacity")
    update["updated_at"] = now()
    db["warehouse"].update_one({"_id": warehouse["_id"]}, {"$set": update})
    return respond(serialize_doc(db["warehouse"].find_one({"_id": warehouse["_id"]})), "Warehouse updated")


@router.delete("/warehouses/{warehouse_id}")
def delete_warehouse(warehouse_id: str, admin=Depends(require_admin), db=Depends(get_db)):
    warehouse = find_or_404(db, "warehouse", warehouse_id, "Warehouse")
    db["warehouse"].delete_one({"_id": warehouse["_id"]})
    return respond(None, "Warehouse deleted")

# ----------------------- Suppliers -----------------------

@router.get("/suppliers")
def list_suppliers(is_active: Optional[bool] = None, search: Optional[str] = None,
                   admin=Depends(require_admin), db=Depends(get_db)):
    filt = {}
    if is_active is not None:
        filt["is_active"] = is_active
    if search:
        filt["$or"] = [{"name": regex(search)}, {"email": regex(search)}, {"contact_person": regex(search)}]
    return respond([serialize_doc(s) for s in db["supplier"].find(filt).sort("name", 1)])


@router.get("/suppliers/{supplier_id}")
def get_supplier(supplier_id: str, admin=Depends(require_admin), db=Depends(get_db)):
    return respond(serialize_doc(find_or_404(db, "supplier", supplier_id, "Supplier")))


@router.post("/suppliers", status_code=201)
def create_supplier(body: Supplier, admin=Depends(require_admin), db=Depends(get_db)):
    email = body.email.lower()
    if db["supplier"].find_one({"email": email}):
        raise HTTPException(status_code=400, detail="Supplier with this email already exists")
    data = {**body.model_dump(), "email": email, "products": [to_object_id(p, "product") for p in body.products]}
    sid = create_document(db, "supplier", data)
    return respond(serialize_doc(db["supplier"].find_one({"_id": to_object_id(sid)})), "Supplier created")


@router.put("/suppliers/{supplier_id}")
def update_supplier(supplier_id: str, body: SupplierUpdate, admin=Depends(require_admin), db=Depends(get_db)):
    supplier = find_or_404(db, "supplier", supplier_id, "Supplier")
    update = body.model_dump(exclude_unset=True)
    if update.get("email"):
        update["email"] = update["email"].lower()
        if db["supplier"].find_one({"email": update["email"], "_id": {"$ne": supplier["_id"]}}):
            raise HTTPException(status_code=400, detail="Supplier with this email already exists")
    if update.get("products") is not None:
        update["products"] = [to_object_id(p, "product") for p in update["products"]]
    update["updated_at"] = now()
    db["supplier"].update_one({"_id": supplier["_id"]}, {"$set": update})
    return respond(serialize_doc(db["supplier"].find_one({"_id": supplier["_id"]})), "Supplier updated")


@router.delete("/suppliers/{supplier_id}")
def delete_supplier(supplier_id: str, admin=Depends(require_admin), db=Depends(get_db)):
    supplier = find_or_404(db, "supplier", supplier_id, "Supplier")
    db["supplier"].delete_one({"_id": supplier["_id"]})
    return respond(None, "Supplier deleted")

# ----------------------- Order requests -----------------------

@router.get("/order-requests")
def list_order_requests(status: Optional[str] = None, priority: Optional[str] = None,
                        order_type: Optional[str] = None, admin=Depends(require_admin), db=Depends(get_db)):
    filt = {}
    for key, value in (("status", status), ("priority", priority), ("order_type", order_type)):
        if value:
            filt[key] = value
    requests = db["order_request"].find(filt).sort([("created_at", -1), ("_id", -1)])
    return respond([serialize_doc(r) for r in requests])


@router.post("/order-requests", status_code=201)
def create_order_request(body: OrderRequest, admin=Depends(require_admin), db=Depends(get_db)):
    product = find_or_404(db, "product", body.product_id, "Product")
    data = body.model_dump()
    data["product_id"] = product["_id"]
    data["product_name"] = product["name"]
    data["current_stock"] = product.get("stock", 0)
    if body.supplier_id:
        data["supplier_id"] = find_or_404(db, "supplier", body.supplier_id, "Supplier")["_id"]
    if body.warehouse_id:
        data["warehouse_id"] = find_or_404(db, "warehouse", body.warehouse_id, "Warehouse")["_id"]
    data.update({"status": "pending", "requested_by": admin["_id"]})
    rid = create_document(db, "order_request", data)
    return respond(serialize_doc(db["order_request"].find_one({"_id": to_object_id(rid)})), "Order request created")


@router.patch("/order-requests/{request_id}/status")
def update_order_request_status(request_id: str, body: OrderRequestStatusBody,
                                admin=Depends(require_admin), db=Depends(get_db)):
    request = find_or_404(db, "order_request", request_id, "Order request")
    if request["status"] in ("completed", "cancelled", "rejected"):
        raise HTTPException(status_code=400, detail=f"Request is already {request['status']}")
    fields = {"status": body.status, "updated_at": now()}
    if body.status == "approved":
        fields.update({"approved_by": admin["_id"], "approved_at": now()})
    elif body.status == "rejected":
        fields["rejection_reason"] = body.rejection_reason
    elif body.status == "completed":
        fields["completed_at"] = now()
    res = db["order_request"].update_one({"_id": request["_id"], "status": request["status"]}, {"$set": fields})
    if res.modified_count and body.status == "completed":
        product = db["product"].find_one({"_id": request["product_id"]})
        if product:
            move_stock(db, product, "in", request["quantity"], admin["_id"],
                       reference_type="order_request", reference_id=request["_id"],
                       warehouse_id=request.get("warehouse_id"))
    return respond(serialize_doc(db["order_request"].find_one({"_id": request["_id"]})), "Order request updated")

# ----------------------- Movements & reports -----------------------

@router.get("/inventory/movements")
def list_movements(
    movement_type: Optional[str] = None,
    warehouse_id: Optional[str] = None,
    product_id: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    limit: int = Query(50, ge=1, le=500),
    admin=Depends(require_admin),
    db=Depends(get_db),
):
    filt = {}
    if movement_type:
        filt["movement_type"] = movement_type
    if warehouse_id:
        filt["warehouse_id"] = to_object_id(warehouse_id, "warehouse")
    if product_id:
        filt["product_id"] = to_object_id(product_id, "product")
    if start_date or end_date:
        filt["created_at"] = {}
        if start_date:
            filt["created_at"]["$gte"] = naive_utc(start_date)
        if end_date:
            filt["created_at"]["$lte"] = naive_utc(end_date)
    movements = db["inventory_movement"].find(filt).sort([("created_at", -1), ("_id", -1)]).limit(limit)
    return respond([serialize_doc(m) for m in movements])


@router.post("/inventory/movements", status_code=201)
def create_movement(body: InventoryMovement, admin=Depends(require_admin), db=Depends(get_db)):
    product = find_or_404(db, "product", body.product_id, "Product")
    details = body.model_dump(exclude={"product_id", "movement_type", "quantity"})
    for field in ("warehouse_id", "from_warehouse", "to_warehouse"):
        if details.get(field):
            details[field] = find_or_404(db, "warehouse", details[field], "Warehouse")["_id"]
    movement = move_stock(db, product, body.movement_type, body.quantity, admin["_id"], **details)
    return respond(serialize_doc(movement), "Stock movement recorded")


@router.get("/inventory/overview")
def inventory_overview(admin=Depends(require_admin), db=Depends(get_db)):
    products = list(db["product"].find({}, {"price": 1, "stock": 1}))
    warehouses = get_documents(db, "warehouse", {"is_active": True})
    return respond({
        "total_products": len(products),
        "total_stock": sum(p.get("stock", 0) for p in products),
        "total_stock_value": round(sum((p.get("price") or 0) * p.get("stock", 0) for p in products), 2),
        "low_stock": sum(1 for p in products if 0 < p.get("stock", 0) <= LOW_STOCK_THRESHOLD),
        "out_of_stock": sum(1 for p in products if p.get("stock", 0) <= 0),
        "warehouses": [
            {"id": str(w["_id"]), "name": w["name"], "utilization_percentage": utilization(w)} for w in warehouses
        ],
        "active_suppliers": db["supplier"].count_documents({"is_active": True}),
        "pending_requests": db["order_request"].count_documents({"status": "pending"}),
        "movements_last_30_days": db["inventory_movement"].count_documents(
            {"created_at": {"$gte": now() - timedelta(days=30)}}
        ),
    })


@router.get("/inventory/low-stock")
def low_stock(limit: int = Query(20, ge=1, le=100), admin=Depends(require_admin), db=Depends(get_db)):
    products = db["product"].find(STOCK_LEVELS["low"]).sort("stock", 1).limit(limit)
    return respond([serialize_doc(p) for p in products])


@router.get("/inventory/out-of-stock")
def out_of_stock(limit: int = Query(20, ge=1, le=100), admin=Depends(require_admin), db=Depends(get_db)):
    products = db["product"].find(STOCK_LEVELS["out"]).sort("updated_at", -1).limit(limit)
    return respond([serialize_doc(p) for p in products])


@router.get("/inventory/top-value")
def top_by_value(limit: int = Query(10, ge=1, le=100), admin=Depends(require_admin), db=Depends(get_db)):
    products = list(db["product"].find({}, {"name": 1, "price": 1, "stock": 1}))
    for p in products:
        p["stock_value"] = round((p.get("price") or 0) * p.get("stock", 0), 2)
    products.sort(key=lambda p: p["stock_value"], reverse=True)
    return respond([serialize_doc(p) for p in products[:limit]])


@router.get("/inventory/trends")
def movement_trends(days: int = Query(7, ge=1, le=90), admin=Depends(require_admin), db=Depends(get_db)):
    since = start_of_day(now()) - timedelta(days=days - 1)
    buckets = defaultdict(lambda: defaultdict(int))
    for m in db["inventory_movement"].find({"created_at": {"$gte": since}}):
        buckets[m["created_at"].strftime("%Y-%m-%d")][m["movement_type"]] += m.get("quantity", 0)
    series = []
    for i in range(days):
        day = (since + timedelta(days=i)).strftime("%Y-%m-%d")
        series.append({"date": day, **buckets.get(day, {})})
    return respond(series)


@router.get("/inventory/category-stock")
def category_stock(admin=Depends(require_admin), db=Depends(get_db)):
    totals = defaultdict(lambda: {"products": 0, "stock": 0, "value": 0.0})
    for p in db["product"].find({}, {"category": 1, "stock": 1, "price": 1}):
        entry = totals[p.get("category")]
        entry["products"] += 1
        entry["stock"] += p.get("stock", 0)
        entry["value"] += (p.get("price") or 0) * p.get("stock", 0)
    names = {c["_id"]: c["name"] for c in db["category"].find({"_id": {"$in": [k for k in totals if k]}})}
    data = [
        {"category_id": str(k) if k else None, "category": names.get(k, "Uncategorized"),
         "products": v["products"], "stock": v["stock"], "value": round(v["value"], 2)}
        for k, v in totals.items()
    ]
    data.sort(key=lambda d: d["stock"], reverse=True)
    return respond(data)

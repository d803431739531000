import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile

from auth import require_admin
from database import create_document, find_or_404, get_db, now, to_object_id
from helpers import page_info, paginate, regex, require_fields, respond, serialize_doc, slugify
from schemas import Category, CategoryUpdate, Product, ProductUpdate
from storage import get_storage, read_images

logger = logging.getLogger(__name__)

router = APIRouter(tags=["catalog"])

PUBLISH_REQUIRED = ("name", "price", "category")
COMPLETION_FIELDS = ("name", "price", "category", "description", "images", "stock")

# ----------------------- Categories -----------------------

@router.get("/api/categories")
def list_categories(db=Depends(get_db)):
    items = db["category"].find({}).sort("created_at", -1)
    return respond([serialize_doc(c) for c in items])


@router.post("/api/categories", status_code=201)
def add_category(body: Category, admin=Depends(require_admin), db=Depends(get_db)):
    name = body.name.strip()
    if db["category"].find_one({"name": name}):
        raise HTTPException(status_code=400, detail="Category already exists")
    cid = create_document(db, "category", {**body.model_dump(), "name": name})
    return respond(serialize_doc(db["category"].find_one({"_id": to_object_id(cid)})), "Category created")


@router.put("/api/categories/{category_id}")
def update_category(category_id: str, body: CategoryUpdate, admin=Depends(require_admin), db=Depends(get_db)):
    category = find_or_404(db, "category", category_id, "Category")
    update = body.model_dump(exclude_unset=True)
    if update.get("name") and db["category"].find_one({"name": update["name"], "_id": {"$ne": category["_id"]}}):
        raise HTTPException(status_code=400, detail="Category already exists")
    update["updated_at"] = now()
    db["category"].update_one({"_id": category["_id"]}, {"$set": update})
    return respond(serialize_doc(db["category"].find_one({"_id": category["_id"]})), "Category updated")


@router.delete("/api/categories/{category_id}")
def delete_category(category_id: str, admin=Depends(require_admin), db=Depends(get_db)):
    category = find_or_404(db, "category", category_id, "Category")
    in_use = db["product"].count_documents({"category": category["_id"]})
    if in_use:
        raise HTTPException(status_code=400, detail=f"Cannot delete category used by {in_use} products")
    db["category"].delete_one({"_id": category["_id"]})
    return respond(None, "Category deleted")

# ----------------------- Products -----------------------

def resolve_refs(db, data: dict) -> dict:
    """Turn id strings in a product payload into ObjectIds, checking they exist."""
    refs = {"category": ("category", "Category"), "seller": ("seller", "Seller"), "product_type": ("product_type", "Product type")}
    for field, (collection, label) in refs.items():
        if data.get(field):
            data[field] = find_or_404(db, collection, data[field], label)["_id"]
    if data.get("tags"):
        tag_ids = [to_object_id(t, "tag") for t in data["tags"]]
        if db["tag"].count_documents({"_id": {"$in": tag_ids}}) != len(set(tag_ids)):
            raise HTTPException(status_code=404, detail="Tag not found")
        data["tags"] = tag_ids
    return data


def missing_fields(product: dict, fields=COMPLETION_FIELDS) -> List[str]:
    return [f for f in fields if not product.get(f)]


def completion(product: dict) -> dict:
    missing = missing_fields(product)
    done = len(COMPLETION_FIELDS) - len(missing)
    return {
        "completion_percentage": round(done / len(COMPLETION_FIELDS) * 100),
        "missing_fields": missing,
    }


def _unique_slug(db, name: str, exclude_id=None) -> str:
    base = slugify(name) or "product"
    slug, n = base, 1
    while db["product"].find_one({"slug": slug, "_id": {"$ne": exclude_id}}):
        n += 1
        slug = f"{base}-{n}"
    return slug


def publish_fields() -> dict:
    return {"is_draft": False, "status": "published", "is_active": True, "published_at": now()}


@router.get("/api/products")
def list_products(
    category: Optional[str] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db=Depends(get_db),
):
    filt = {"is_active": True, "is_draft": {"$ne": True}}
    if category:
        filt["category"] = to_object_id(category, "category")
    if search:
        filt["name"] = regex(search)
    total = db["product"].count_documents(filt)
    cursor, page, limit = paginate(db["product"].find(filt).sort([("created_at", -1), ("_id", -1)]), page, limit)
    return respond([serialize_doc(p) for p in cursor], pagination=page_info(total, page, limit))


@router.get("/api/products/{product_id}")
def get_product(product_id: str, db=Depends(get_db)):
    product = find_or_404(db, "product", product_id, "Product")
    if product.get("is_draft"):
        raise HTTPException(status_code=404, detail="Product not found")
    return respond(serialize_doc(product))


@router.post("/api/products", status_code=201)
def create_product(body: Product, admin=Depends(require_admin), db=Depends(get_db)):
    data = body.model_dump()
    if not body.is_draft:
        require_fields(data, PUBLISH_REQUIRED)
    data = resolve_refs(db, data)
    data["slug"] = _unique_slug(db, data["name"])
    data["ratings"] = 0
    data["reviews_count"] = 0
    data["created_by"] = admin["_id"]
    if body.is_draft:
        data.update({"status": "draft", "is_active": False, "published_at": None})
    else:
        data.update(publish_fields())
    pid = create_document(db, "product", data)
    product = db["product"].find_one({"_id": to_object_id(pid)})
    message = "Draft saved" if body.is_draft else "Product created"
    return respond(serialize_doc(product), message)


@router.put("/api/products/{product_id}")
def update_product(product_id: str, body: ProductUpdate, admin=Depends(require_admin), db=Depends(get_db)):
    product = find_or_404(db, "product", product_id, "Product")
    update = resolve_refs(db, body.model_dump(exclude_unset=True))
    if update.get("name") and update["name"] != product.get("name"):
        update["slug"] = _unique_slug(db, update["name"], product["_id"])

    merged = {**product, **update}
    if update.get("is_draft") is False and product.get("is_draft"):
        require_fields(merged, PUBLISH_REQUIRED, "Cannot publish, missing")
        update.update(publish_fields())
    elif update.get("is_draft") is True and not product.get("is_draft"):
        update.update({"status": "draft", "is_active": False})

    update["updated_at"] = now()
    db["product"].update_one({"_id": product["_id"]}, {"$set": update})
    return respond(serialize_doc(db["product"].find_one({"_id": product["_id"]})), "Product updated")


@router.delete("/api/products/{product_id}")
def delete_product(product_id: str, admin=Depends(require_admin), db=Depends(get_db)):
    res = db["product"].delete_one({"_id": to_object_id(product_id, "product")})
    if res.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Product not found")
    db["cart"].update_many({}, {"$pull": {"items": {"product": to_object_id(product_id)}}})
    return respond(None, "Product deleted")


@router.post("/api/products/upload", status_code=201)
async def upload_images(
    files: List[UploadFile] = File(...),
    admin=Depends(require_admin),
    storage=Depends(get_storage),
):
    contents = await read_images(files)
    uploaded = [storage.upload(c, folder="bumpicare/products") for c in contents]
    logger.info("Uploaded %d product images", len(uploaded))
    return respond(uploaded, "Images uploaded")


@router.delete("/api/products/images/{public_id:path}")
def delete_image(public_id: str, admin=Depends(require_admin), storage=Depends(get_storage)):
    if not storage.delete(public_id):
        raise HTTPException(status_code=404, detail="Image not found")
    return respond(None, "Image deleted")

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from auth import require_admin
from database import create_document, find_or_404, get_db, now, to_object_id
from helpers import regex, respond, serialize_doc, slugify
from schemas import ProductType, ProductTypeUpdate, Tag, TagUpdate

router = APIRouter(prefix="/api/admin", tags=["taxonomy"])


def _ensure_unique(db, collection: str, name: str, label: str, exclude_id=None):
    clash = db[collection].find_one({
        "$or": [{"name": name}, {"slug": slugify(name)}],
        "_id": {"$ne": exclude_id},
    })
    if clash:
        raise HTTPException(status_code=400, detail=f"{label} already exists")

# ----------------------- Tags -----------------------

@router.get("/tags")
def list_tags(category: Optional[str] = None, search: Optional[str] = None, is_active: Optional[bool] = None,
              admin=Depends(require_admin), db=Depends(get_db)):
    filt = {}
    if category:
        filt["category"] = category
    if search:
        filt["name"] = regex(search)
    if is_active is not None:
        filt["is_active"] = is_active
    tags = []
    for t in db["tag"].find(filt).sort("name", 1):
        item = serialize_doc(t)
        item["product_count"] = db["product"].count_documents({"tags": t["_id"]})
        tags.append(item)
    return respond(tags)


@router.get("/tags/{tag_id}")
def get_tag(tag_id: str, admin=Depends(require_admin), db=Depends(get_db)):
    return respond(serialize_doc(find_or_404(db, "tag", tag_id, "Tag")))


@router.post("/tags", status_code=201)
def create_tag(body: Tag, admin=Depends(require_admin), db=Depends(get_db)):
    name = body.name.strip()
    _ensure_unique(db, "tag", name, "Tag")
    tid = create_document(db, "tag", {**body.model_dump(), "name": name, "slug": slugify(name), "created_by": admin["_id"]})
    return respond(serialize_doc(db["tag"].find_one({"_id": to_object_id(tid)})), "Tag created")


@router.put("/tags/{tag_id}")
def update_tag(tag_id: str, body: TagUpdate, admin=Depends(require_admin), db=Depends(get_db)):
    tag = find_or_404(db, "tag", tag_id, "Tag")
    update = body.model_dump(exclude_unset=True)
    if update.get("name"):
        update["name"] = update["name"].strip()
        _ensure_unique(db, "tag", update["name"], "Tag", tag["_id"])
        update["slug"] = slugify(update["name"])
    update["updated_at"] = now()
    db["tag"].update_one({"_id": tag["_id"]}, {"$set": update})
    return respond(serialize_doc(db["tag"].find_one({"_id": tag["_id"]})), "Tag updated")


@router.delete("/tags/{tag_id}")
def delete_tag(tag_id: str, admin=Depends(require_admin), db=Depends(get_db)):
    tag = find_or_404(db, "tag", tag_id, "Tag")
    used = db["product"].count_documents({"tags": tag["_id"]})
    if used:
        raise HTTPException(status_code=400, detail=f"Tag is used by {used} products")
    db["tag"].delete_one({"_id": tag["_id"]})
    return respond(None, "Tag deleted")

# ----------------------- Product types -----------------------

@router.get("/product-types")
def list_product_types(admin=Depends(require_admin), db=Depends(get_db)):
    return respond([serialize_doc(t) for t in db["product_type"].find({}).sort("name", 1)])


@router.post("/product-types", status_code=201)
def create_product_type(body: ProductType, admin=Depends(require_admin), db=Depends(get_db)):
    name = body.name.strip()
    _ensure_unique(db, "product_type", name, "Product type")
    tid = create_document(db, "product_type", {**body.model_dump(), "name": name, "slug": slugify(name)})
    return respond(serialize_doc(db["product_type"].find_one({"_id": to_object_id(tid)})), "Product type created")


@router.put("/product-types/{type_id}")
def update_product_type(type_id: str, body: ProductTypeUpdate, admin=Depends(require_admin), db=Depends(get_db)):
    ptype = find_or_404(db, "product_type", type_id, "Product type")
    update = body.model_dump(exclude_unset=True)
    if update.get("name"):
        update["name"] = update["name"].strip()
        _ensure_unique(db, "product_type", update["name"], "Product type", ptype["_id"])
        update["slug"] = slugify(update["name"])
    update["updated_at"] = now()
    db["product_type"].update_one({"_id": ptype["_id"]}, {"$set": update})
    return respond(serialize_doc(db["product_type"].find_one({"_id": ptype["_id"]})), "Product type updated")


@router.delete("/product-types/{type_id}")
def delete_product_type(type_id: str, admin=Depends(require_admin), db=Depends(get_db)):
    ptype = find_or_404(db, "product_type", type_id, "Product type")
    used = db["product"].count_documents({"product_type": ptype["_id"]})
    if used:
        raise HTTPException(status_code=400, detail=f"Product type is used by {used} products")
    db["product_type"].delete_one({"_id": ptype["_id"]})
    return respond(None, "Product type deleted")

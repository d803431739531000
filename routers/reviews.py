from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from auth import get_current_user
from database import create_document, find_or_404, get_db, now, to_object_id
from helpers import respond, serialize_doc
from schemas import ReviewBody, ReviewUpdate

router = APIRouter(prefix="/api/reviews", tags=["reviews"])


def refresh_rating(db, product_id):
    """Recompute a product's average rating and review count from its reviews."""
    ratings = [r["rating"] for r in db["review"].find({"product_id": product_id}, {"rating": 1})]
    average = round(sum(ratings) / len(ratings), 1) if ratings else 0
    db["product"].update_one(
        {"_id": product_id}, {"$set": {"ratings": average, "reviews_count": len(ratings)}}
    )
    return average, len(ratings)


def with_author(db, reviews):
    ids = list({r["user_id"] for r in reviews})
    names = {u["_id"]: u.get("name") for u in db["user"].find({"_id": {"$in": ids}}, {"name": 1})}
    out = []
    for r in reviews:
        item = serialize_doc(r)
        item["user_name"] = names.get(r["user_id"])
        out.append(item)
    return out


@router.get("/product/{product_id}")
def product_reviews(product_id: str, db=Depends(get_db)):
    pid = to_object_id(product_id, "product")
    reviews = list(db["review"].find({"product_id": pid}).sort([("created_at", -1), ("_id", -1)]))
    return respond(with_author(db, reviews))


@router.post("", status_code=201)
def add_review(body: ReviewBody, user=Depends(get_current_user), db=Depends(get_db)):
    product = find_or_404(db, "product", body.product_id, "Product")
    existing = db["review"].find_one({"product_id": product["_id"], "user_id": user["_id"]})
    if existing:
        return JSONResponse(status_code=200, content=respond(serialize_doc(existing), "You already reviewed this product"))
    verified = db["order"].count_documents({
        "user_id": user["_id"], "order_items.product": product["_id"], "order_status": "Delivered",
    }) > 0
    rid = create_document(db, "review", {
        "product_id": product["_id"],
        "user_id": user["_id"],
        "rating": body.rating,
        "comment": body.comment,
        "verified_purchase": verified,
    })
    refresh_rating(db, product["_id"])
    return respond(serialize_doc(db["review"].find_one({"_id": to_object_id(rid)})), "Review added")


def _own_review(db, review_id: str, user: dict) -> dict:
    review = find_or_404(db, "review", review_id, "Review")
    if review["user_id"] != user["_id"]:
        raise HTTPException(status_code=403, detail="Not allowed")
    return review


@router.put("/{review_id}")
def update_review(review_id: str, body: ReviewUpdate, user=Depends(get_current_user), db=Depends(get_db)):
    review = _own_review(db, review_id, user)
    update = body.model_dump(exclude_unset=True)
    update["updated_at"] = now()
    db["review"].update_one({"_id": review["_id"]}, {"$set": update})
    refresh_rating(db, review["product_id"])
    return respond(serialize_doc(db["review"].find_one({"_id": review["_id"]})), "Review updated")


@router.delete("/{review_id}")
def delete_review(review_id: str, user=Depends(get_current_user), db=Depends(get_db)):
    review = _own_review(db, review_id, user)
    db["review"].delete_one({"_id": review["_id"]})
    refresh_rating(db, review["product_id"])
    return respond(None, "Review deleted")

from fastapi import APIRouter, Depends, HTTPException

from auth import get_current_user
from database import find_or_404, get_db, now, to_object_id
from helpers import respond, serialize_doc
from pricing import unit_price
from schemas import CartItemBody, CartQuantityBody, WishlistBody
from usage import ensure_cart_capacity, ensure_wishlist_capacity, record_usage, sync_cart_usage

router = APIRouter(tags=["cart"])


def _same_line(item: dict, product_id, color, size) -> bool:
    return item["product"] == product_id and item.get("color") == color and item.get("size") == size


def populated_cart(db, user_id) -> dict:
    cart = db["cart"].find_one({"user_id": user_id})
    if not cart:
        return {"items": [], "subtotal": 0, "count": 0}
    ids = [i["product"] for i in cart.get("items", [])]
    products = {p["_id"]: p for p in db["product"].find({"_id": {"$in": ids}})}
    items = []
    for item in cart.get("items", []):
        product = products.get(item["product"])
        if not product:
            continue
        items.append({
            "product": {
                "id": str(product["_id"]),
                "name": product["name"],
                "price": unit_price(product),
                "images": product.get("images", []),
                "stock": product.get("stock", 0),
            },
            "quantity": item["quantity"],
            "color": item.get("color"),
            "size": item.get("size"),
        })
    subtotal = round(sum(i["product"]["price"] * i["quantity"] for i in items), 2)
    return {"id": str(cart["_id"]), "items": items, "subtotal": subtotal, "count": len(items)}


@router.get("/api/cart")
def get_cart(user=Depends(get_current_user), db=Depends(get_db)):
    return respond(populated_cart(db, user["_id"]))


@router.post("/api/cart")
def add_to_cart(body: CartItemBody, user=Depends(get_current_user), db=Depends(get_db)):
    product = find_or_404(db, "product", body.product_id, "Product")
    if not product.get("is_active", True) or product.get("is_draft"):
        raise HTTPException(status_code=404, detail="Product not found")

    cart = db["cart"].find_one({"user_id": user["_id"]}) or {"user_id": user["_id"], "items": []}
    items = cart["items"]
    line = next((i for i in items if _same_line(i, product["_id"], body.color, body.size)), None)
    wanted = body.quantity + (line["quantity"] if line else 0)
    if wanted > product.get("stock", 0):
        raise HTTPException(status_code=400, detail=f"Only {product.get('stock', 0)} left in stock")
    if line:
        line["quantity"] = wanted
    else:
        ensure_cart_capacity(db, user["_id"], len(items))
        items.append({"product": product["_id"], "quantity": body.quantity, "color": body.color, "size": body.size})

    db["cart"].update_one(
        {"user_id": user["_id"]},
        {"$set": {"items": items, "updated_at": now()}, "$setOnInsert": {"created_at": now()}},
        upsert=True,
    )
    sync_cart_usage(db, user["_id"])
    return respond(populated_cart(db, user["_id"]), "Added to cart")


@router.put("/api/cart")
def update_cart_item(body: CartQuantityBody, user=Depends(get_current_user), db=Depends(get_db)):
    pid = to_object_id(body.product_id, "product")
    cart = db["cart"].find_one({"user_id": user["_id"]})
    if not cart:
        raise HTTPException(status_code=404, detail="Cart not found")
    items = cart.get("items", [])
    if body.color is not None or body.size is not None:
        line = next((i for i in items if _same_line(i, pid, body.color, body.size)), None)
    else:
        line = next((i for i in items if i["product"] == pid), None)
    if not line:
        raise HTTPException(status_code=404, detail="Item not in cart")
    line["quantity"] = max(1, body.quantity)
    db["cart"].update_one({"_id": cart["_id"]}, {"$set": {"items": items, "updated_at": now()}})
    return respond(populated_cart(db, user["_id"]), "Cart updated")


@router.delete("/api/cart/{product_id}")
def remove_from_cart(product_id: str, user=Depends(get_current_user), db=Depends(get_db)):
    pid = to_object_id(product_id, "product")
    db["cart"].update_one({"user_id": user["_id"]}, {"$pull": {"items": {"product": pid}}})
    sync_cart_usage(db, user["_id"])
    return respond(populated_cart(db, user["_id"]), "Removed from cart")


@router.delete("/api/cart")
def clear_cart(user=Depends(get_current_user), db=Depends(get_db)):
    db["cart"].delete_one({"user_id": user["_id"]})
    sync_cart_usage(db, user["_id"])
    return respond({"items": [], "subtotal": 0, "count": 0}, "Cart cleared")

# ----------------------- Wishlist -----------------------

@router.get("/api/wishlist")
def get_wishlist(user=Depends(get_current_user), db=Depends(get_db)):
    ids = user.get("wishlist", [])
    products = db["product"].find({"_id": {"$in": ids}})
    return respond([serialize_doc(p) for p in products])


@router.post("/api/wishlist")
def add_to_wishlist(body: WishlistBody, user=Depends(get_current_user), db=Depends(get_db)):
    product = find_or_404(db, "product", body.product_id, "Product")
    wishlist = user.get("wishlist", [])
    if product["_id"] in wishlist:
        return respond([str(p) for p in wishlist], "Already in wishlist")
    ensure_wishlist_capacity(db, user["_id"], len(wishlist))
    db["user"].update_one({"_id": user["_id"]}, {"$addToSet": {"wishlist": product["_id"]}})
    record_usage(db, user["_id"], "wishlist")
    return respond([str(p) for p in wishlist + [product["_id"]]], "Added to wishlist")


@router.delete("/api/wishlist/{product_id}")
def remove_from_wishlist(product_id: str, user=Depends(get_current_user), db=Depends(get_db)):
    pid = to_object_id(product_id, "product")
    db["user"].update_one({"_id": user["_id"]}, {"$pull": {"wishlist": pid}})
    if pid in user.get("wishlist", []):
        record_usage(db, user["_id"], "wishlist", -1)
    return respond([str(p) for p in user.get("wishlist", []) if p != pid], "Removed from wishlist")

import logging
import os
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from starlette.exceptions import HTTPException as StarletteHTTPException

import config
from auth import hash_password
from database import create_document, db, ensure_indexes, get_db, to_object_id
from routers import (
    admin,
    auth,
    cart,
    catalog,
    coupons,
    finance,
    inventory,
    orders,
    payments,
    reviews,
    sellers,
    subscriptions,
    taxonomy,
    users,
)

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Reachable without the mobile API key.
API_KEY_EXEMPT = ("/api/admin", "/docs", "/redoc", "/openapi.json", "/test")


@asynccontextmanager
async def lifespan(app: FastAPI):
    if db is not None:
        try:
            ensure_indexes(db)
        except Exception:
            logger.exception("Could not create MongoDB indexes")
    yield


# One shared budget per client IP; the health and seed routes are exempt.
limiter = Limiter(key_func=get_remote_address, application_limits=[config.RATE_LIMIT], enabled=config.RATE_LIMIT_ENABLED)

app = FastAPI(title="Bumpicare Commerce API", lifespan=lifespan)
app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials="*" not in config.CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)


def envelope(status_code: int, message: str, data=None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message, "data": data})


@app.middleware("http")
async def api_key_and_headers(request: Request, call_next):
    path = request.url.path
    if (
        config.MOBILE_API_KEY
        and request.method != "OPTIONS"
        and path != "/"
        and not path.startswith(API_KEY_EXEMPT)
        and request.headers.get("x-api-key") != config.MOBILE_API_KEY
    ):
        logger.warning("Rejected request to %s with missing or bad API key", path)
        response = envelope(401, "Invalid or missing API key")
    else:
        response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["X-XSS-Protection"] = "1; mode=block"
    response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    return response


# Called synchronously from SlowAPIMiddleware.
def rate_limited(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    logger.warning("Rate limit hit by %s on %s", get_remote_address(request), request.url.path)
    return envelope(429, "Too many requests, please try again later.")


app.add_exception_handler(RateLimitExceeded, rate_limited)


@app.exception_handler(StarletteHTTPException)
async def http_error(request: Request, exc: StarletteHTTPException):
    message = exc.detail
    if exc.status_code == 404 and message == "Not Found":
        message = "Route not found"
    return envelope(exc.status_code, str(message))


@app.exception_handler(RequestValidationError)
async def validation_error(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(p) for p in first.get("loc", ())[1:])
    message = f"{field}: {first.get('msg')}" if field else first.get("msg", "Invalid request")
    return envelope(400, message, [{"loc": list(e.get("loc", ())), "msg": e.get("msg")} for e in errors])


@app.exception_handler(Exception)
async def unhandled_error(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return envelope(500, "Internal server error")


for module in (auth, users, catalog, cart, orders, payments, reviews, coupons, subscriptions,
               sellers, taxonomy, inventory, admin, finance):
    app.include_router(module.router)

# ----------------------- Health -----------------------

@app.get("/")
@limiter.exempt
def root():
    return {"success": True, "message": "Bumpicare API running", "data": None}


@app.get("/test")
@limiter.exempt
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if config.DATABASE_URL else "❌ Not Set",
        "database_name": "✅ Set" if config.DATABASE_NAME else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        if db is not None:
            db.command("ping")
            response["database"] = "✅ Connected & Working"
            response["connection_status"] = "Connected"
            response["collections"] = db.list_collection_names()[:10]
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response

# ----------------------- Seed -----------------------

SEED_CATEGORIES = ["Maternity Wear", "Baby Care", "Nutrition"]

SEED_PRODUCTS = [
    ("Maternity Support Belt", "Maternity Wear", 1299, 40),
    ("Cotton Nursing Top", "Maternity Wear", 899, 25),
    ("Organic Baby Lotion", "Baby Care", 349, 60),
    ("Muslin Swaddle Set", "Baby Care", 1199, 8),
    ("Prenatal Protein Mix", "Nutrition", 799, 0),
]


@app.post("/seed")
@limiter.exempt
def seed(database=Depends(get_db)):
    """Load a small demo catalog, an admin account and a default plan into an empty database."""
    if database["product"].count_documents({}) > 0:
        return {"success": True, "message": "Products already exist", "data": {"seeded": False}}
    categories = {name: create_document(database, "category", {"name": name, "description": None, "image": None})
                  for name in SEED_CATEGORIES}
    for name, category, price, stock in SEED_PRODUCTS:
        create_document(database, "product", {
            "name": name, "price": price, "stock": stock, "brand": "Bumpicare",
            "category": to_object_id(categories[category]),
            "images": [], "is_active": True, "is_draft": False, "status": "published",
            "ratings": 0, "reviews_count": 0,
        })
    if database["user"].count_documents({"role": "admin"}) == 0:
        create_document(database, "user", {
            "name": "Admin",
            "email": os.getenv("SEED_ADMIN_EMAIL", "admin@bumpicare.com"),
            "phone": "0000000000",
            "password_hash": hash_password(os.getenv("SEED_ADMIN_PASSWORD", "admin123")),
            "role": "admin",
            "addresses": [],
            "wishlist": [],
            "is_blocked": False,
        })
    if database["subscription_plan"].count_documents({}) == 0:
        create_document(database, "subscription_plan", {
            "name": "basic", "display_name": "Basic", "price": 0, "currency": "INR", "duration": 30,
            "billing_cycle": "monthly", "is_active": True, "is_default": True, "display_order": 0,
            "features": {"max_cart_items": 5, "max_wishlist_items": 10, "max_orders_per_month": 10},
        })
    return {"success": True, "message": "Seeded", "data": {"seeded": True, "products": database["product"].count_documents({})}}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)

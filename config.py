import os

from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

JWT_SECRET = os.getenv("JWT_SECRET", "devsecret")
JWT_ALGO = "HS256"
JWT_EXPIRE_DAYS = int(os.getenv("JWT_EXPIRE_DAYS", 7))

# Per client IP across all /api routes, in the `limits` notation.
RATE_LIMIT = os.getenv("RATE_LIMIT", "100 per 15 minutes")
RATE_LIMIT_ENABLED = os.getenv("RATE_LIMIT_ENABLED", "true").lower() != "false"

# Static key sent by the mobile app; unset disables the check.
MOBILE_API_KEY = os.getenv("MOBILE_API_KEY")

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

RAZORPAY_KEY_ID = os.getenv("RAZORPAY_KEY_ID", "")
RAZORPAY_KEY_SECRET = os.getenv("RAZORPAY_KEY_SECRET", "")

CLOUDINARY_CLOUD_NAME = os.getenv("CLOUDINARY_CLOUD_NAME", "")
CLOUDINARY_API_KEY = os.getenv("CLOUDINARY_API_KEY", "")
CLOUDINARY_API_SECRET = os.getenv("CLOUDINARY_API_SECRET", "")
UPLOAD_FOLDER = os.getenv("UPLOAD_FOLDER", "bumpicare")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
PORT = int(os.getenv("PORT", 8000))

# Business rules
LOW_STOCK_THRESHOLD = 10
FREE_SHIPPING_ABOVE = 1000
SHIPPING_FEE = 50
PROFIT_MARGIN = 0.3
MAX_UPLOAD_FILES = 4
MAX_UPLOAD_BYTES = 10 * 1024 * 1024

# Applied when the user has no active subscription. -1 means unlimited.
DEFAULT_LIMITS = {
    "max_cart_items": 5,
    "max_wishlist_items": 10,
    "max_orders_per_month": 10,
}

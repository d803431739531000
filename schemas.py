"""
Database Schemas for the Bumpicare commerce API

Each Pydantic model describes one MongoDB collection or the body of a request
that writes to it. Collection names are the snake_case of the entity name
(``product_type``, ``inventory_movement``...). ``*Update`` models carry the
same fields as optional and are applied with ``exclude_unset``.
"""
from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

OrderStatus = Literal[
    "Processing", "Confirmed", "Packed", "Shipped", "Out for Delivery",
    "Delivered", "Cancelled", "Returned",
]
PaymentStatus = Literal["Pending", "Paid", "Failed", "Refund Initiated", "Refunded"]

ORDER_STATUSES = list(OrderStatus.__args__)

# ----------------------- Users -----------------------

class RegisterBody(BaseModel):
    name: str = Field(..., min_length=1, description="Full name")
    phone: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)


class LoginBody(BaseModel):
    email: EmailStr
    password: str


class Address(BaseModel):
    full_name: str
    phone: str
    pincode: str
    city: str
    state: str
    country: str = "India"
    address_line: str
    selected: bool = False


class AddressUpdate(BaseModel):
    full_name: Optional[str] = None
    phone: Optional[str] = None
    pincode: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    address_line: Optional[str] = None


class ShippingAddress(BaseModel):
    full_name: str
    phone: str
    pincode: str
    city: str
    state: str
    country: str = "India"
    address_line: str

# ----------------------- Catalog -----------------------

class Category(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    image: Optional[str] = None


class CategoryUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None


class Specification(BaseModel):
    title: str
    value: str


class Product(BaseModel):
    """Product as written by admins. Drafts only need a name."""
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    discount_price: Optional[float] = Field(None, ge=0)
    stock: int = Field(0, ge=0)
    category: Optional[str] = None
    images: List[str] = []
    brand: str = "Generic"
    colors: List[str] = []
    sizes: List[str] = []
    specifications: List[Specification] = []
    key_info: List[str] = []
    size_guide: Optional[str] = None
    seller: Optional[str] = None
    tags: List[str] = []
    product_type: Optional[str] = None
    cover_photo: Optional[str] = None
    videos: List[str] = []
    is_draft: bool = False
    is_active: bool = True


class ProductUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    discount_price: Optional[float] = Field(None, ge=0)
    stock: Optional[int] = Field(None, ge=0)
    category: Optional[str] = None
    images: Optional[List[str]] = None
    brand: Optional[str] = None
    colors: Optional[List[str]] = None
    sizes: Optional[List[str]] = None
    specifications: Optional[List[Specification]] = None
    key_info: Optional[List[str]] = None
    size_guide: Optional[str] = None
    seller: Optional[str] = None
    tags: Optional[List[str]] = None
    product_type: Optional[str] = None
    cover_photo: Optional[str] = None
    videos: Optional[List[str]] = None
    is_draft: Optional[bool] = None
    is_active: Optional[bool] = None


class Tag(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    category: str = "General"
    color: str = "#06A096"
    is_active: bool = True


class TagUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    color: Optional[str] = None
    is_active: Optional[bool] = None


class ProductType(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    icon: Optional[str] = None
    is_active: bool = True


class ProductTypeUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    icon: Optional[str] = None
    is_active: Optional[bool] = None

# ----------------------- Cart / Orders -----------------------

class CartItemBody(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)
    color: Optional[str] = None
    size: Optional[str] = None


class CartQuantityBody(BaseModel):
    product_id: str
    quantity: int
    color: Optional[str] = None
    size: Optional[str] = None


class WishlistBody(BaseModel):
    product_id: str


class OrderFromCartBody(BaseModel):
    shipping_address: ShippingAddress
    note: Optional[str] = None
    coupon_code: Optional[str] = None


class SingleOrderBody(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)
    color: Optional[str] = None
    size: Optional[str] = None
    shipping_address: ShippingAddress
    note: Optional[str] = None
    coupon_code: Optional[str] = None


class OrderStatusBody(BaseModel):
    status: OrderStatus
    note: Optional[str] = None
    tracking_number: Optional[str] = None
    courier_name: Optional[str] = None


class CancelOrderBody(BaseModel):
    reason: Optional[str] = None

# ----------------------- Payments -----------------------

class PaymentOrderBody(BaseModel):
    amount: float = Field(..., gt=0)


class PaymentVerifyBody(BaseModel):
    razorpay_order_id: str
    razorpay_payment_id: str
    razorpay_signature: str
    is_cart: bool = True
    product_id: Optional[str] = None
    quantity: int = Field(1, ge=1)
    color: Optional[str] = None
    size: Optional[str] = None
    shipping_address: ShippingAddress
    note: Optional[str] = None
    coupon_code: Optional[str] = None


class RefundBody(BaseModel):
    order_id: str
    payment_id: str
    amount: float = Field(..., gt=0)

# ----------------------- Reviews -----------------------

class ReviewBody(BaseModel):
    product_id: str
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None


class ReviewUpdate(BaseModel):
    rating: Optional[int] = Field(None, ge=1, le=5)
    comment: Optional[str] = None


class BulkDeleteBody(BaseModel):
    ids: List[str] = Field(..., min_length=1)

# ----------------------- Coupons -----------------------

class Coupon(BaseModel):
    code: str = Field(..., min_length=3)
    description: Optional[str] = None
    discount_type: Literal["percentage", "fixed"]
    discount_value: float = Field(..., gt=0)
    min_order_value: float = Field(0, ge=0)
    max_discount_amount: Optional[float] = Field(None, ge=0)
    usage_limit: Optional[int] = Field(None, ge=1)
    user_usage_limit: int = Field(1, ge=1)
    applicable_for: Literal["all", "specific-products", "specific-categories"] = "all"
    applicable_products: List[str] = []
    applicable_categories: List[str] = []
    start_date: datetime
    end_date: datetime
    is_active: bool = True


class CouponUpdate(BaseModel):
    description: Optional[str] = None
    discount_type: Optional[Literal["percentage", "fixed"]] = None
    discount_value: Optional[float] = Field(None, gt=0)
    min_order_value: Optional[float] = Field(None, ge=0)
    max_discount_amount: Optional[float] = Field(None, ge=0)
    usage_limit: Optional[int] = Field(None, ge=1)
    user_usage_limit: Optional[int] = Field(None, ge=1)
    applicable_for: Optional[Literal["all", "specific-products", "specific-categories"]] = None
    applicable_products: Optional[List[str]] = None
    applicable_categories: Optional[List[str]] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    is_active: Optional[bool] = None


class ApplyCouponBody(BaseModel):
    code: str
    cart_total: float = Field(..., ge=0)

# ----------------------- Subscriptions -----------------------

class PlanFeatures(BaseModel):
    model_config = ConfigDict(extra="allow")

    max_cart_items: int = 5
    max_wishlist_items: int = 10
    max_orders_per_month: int = 10
    can_bulk_order: bool = False
    max_bulk_order_items: int = 0
    has_advanced_search: bool = False
    free_shipping_above: float = 999
    return_window: int = 7
    priority_support: bool = False
    early_access: bool = False


class SubscriptionPlan(BaseModel):
    name: str = Field(..., min_length=1)
    display_name: str
    description: Optional[str] = None
    tagline: Optional[str] = None
    price: float = Field(..., ge=0)
    currency: str = "INR"
    duration: int = Field(30, ge=1, description="Days")
    billing_cycle: Literal["monthly", "quarterly", "yearly", "lifetime"] = "monthly"
    features: PlanFeatures = PlanFeatures()
    color: Optional[str] = None
    icon: Optional[str] = None
    badge: Optional[str] = None
    is_active: bool = True
    is_default: bool = False
    display_order: int = 0


class SubscriptionPlanUpdate(BaseModel):
    display_name: Optional[str] = None
    description: Optional[str] = None
    tagline: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    duration: Optional[int] = Field(None, ge=1)
    billing_cycle: Optional[Literal["monthly", "quarterly", "yearly", "lifetime"]] = None
    features: Optional[PlanFeatures] = None
    color: Optional[str] = None
    icon: Optional[str] = None
    badge: Optional[str] = None
    is_active: Optional[bool] = None
    display_order: Optional[int] = None


class SubscribeBody(BaseModel):
    plan_id: str
    payment_id: Optional[str] = None
    razorpay_order_id: Optional[str] = None
    razorpay_signature: Optional[str] = None
    auto_renew: bool = False


class AssignPlanBody(BaseModel):
    user_id: str
    plan_id: str
    duration: Optional[int] = Field(None, ge=1)


class UsageBody(BaseModel):
    type: Literal["cart", "wishlist", "order", "product_view"]
    action: Literal["increment", "decrement"] = "increment"


class Feature(BaseModel):
    name: str = Field(..., min_length=1)
    display_name: str
    description: Optional[str] = None
    category: Literal["shopping", "shipping", "support", "discounts", "exclusive", "other"] = "other"
    is_active: bool = True


class FeatureUpdate(BaseModel):
    display_name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[Literal["shopping", "shipping", "support", "discounts", "exclusive", "other"]] = None
    is_active: Optional[bool] = None

# ----------------------- Sellers / Warehouses -----------------------

class Seller(BaseModel):
    name: str
    email: EmailStr
    phone: str
    shop_name: str
    address: Optional[str] = None
    gst_number: Optional[str] = None
    pan_number: Optional[str] = None
    commission_rate: float = Field(10, ge=0, le=100)
    status: Literal["pending", "approved", "suspended"] = "pending"
    is_active: bool = True


class SellerUpdate(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    shop_name: Optional[str] = None
    address: Optional[str] = None
    gst_number: Optional[str] = None
    pan_number: Optional[str] = None
    commission_rate: Optional[float] = Field(None, ge=0, le=100)
    is_active: Optional[bool] = None


class SellerStatusBody(BaseModel):
    status: Literal["pending", "approved", "suspended"]


class AssignProductsBody(BaseModel):
    product_ids: List[str] = Field(..., min_length=1)


class Location(BaseModel):
    address: Optional[str] = None
    city: str
    state: Optional[str] = None
    country: str = "India"
    zip_code: Optional[str] = None
    coordinates: Optional[Dict[str, float]] = None


class Warehouse(BaseModel):
    warehouse_id: str = Field(..., min_length=1)
    name: str
    location: Location
    capacity: int = Field(..., gt=0)
    current_utilization: int = Field(0, ge=0)
    manager: Optional[str] = None
    contact_number: Optional[str] = None
    operating_hours: Optional[str] = None
    is_active: bool = True


class WarehouseUpdate(BaseModel):
    name: Optional[str] = None
    location: Optional[Location] = None
    capacity: Optional[int] = Field(None, gt=0)
    current_utilization: Optional[int] = Field(None, ge=0)
    manager: Optional[str] = None
    contact_number: Optional[str] = None
    operating_hours: Optional[str] = None
    is_active: Optional[bool] = None


class Supplier(BaseModel):
    name: str
    email: EmailStr
    phone: str
    address: Optional[str] = None
    contact_person: Optional[str] = None
    products: List[str] = []
    rating: float = Field(0, ge=0, le=5)
    payment_terms: Optional[str] = None
    delivery_time: Optional[str] = None
    notes: Optional[str] = None
    is_active: bool = True


class SupplierUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    contact_person: Optional[str] = None
    products: Optional[List[str]] = None
    rating: Optional[float] = Field(None, ge=0, le=5)
    payment_terms: Optional[str] = None
    delivery_time: Optional[str] = None
    notes: Optional[str] = None
    is_active: Optional[bool] = None

# ----------------------- Inventory -----------------------

class OrderRequest(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1)
    unit: str = "pcs"
    order_type: Literal["purchase", "restocking", "emergency"] = "restocking"
    priority: Literal["low", "medium", "high", "urgent"] = "medium"
    supplier_id: Optional[str] = None
    warehouse_id: Optional[str] = None
    notes: Optional[str] = None


class OrderRequestStatusBody(BaseModel):
    status: Literal["pending", "approved", "rejected", "completed", "cancelled"]
    rejection_reason: Optional[str] = None


class InventoryMovement(BaseModel):
    product_id: str
    movement_type: Literal["in", "out", "adjustment", "transfer", "return", "damage"]
    quantity: int = Field(..., ge=0)
    warehouse_id: Optional[str] = None
    from_warehouse: Optional[str] = None
    to_warehouse: Optional[str] = None
    reason: Optional[str] = None
    notes: Optional[str] = None
    reference_number: Optional[str] = None


class StockUpdateBody(BaseModel):
    product_id: str
    quantity: int = Field(..., description="Signed change to apply")


class BulkStockItem(BaseModel):
    product_id: str
    stock: int = Field(..., ge=0)


class BulkStockBody(BaseModel):
    items: List[BulkStockItem] = Field(..., min_length=1)

# ----------------------- Finance -----------------------

WithdrawalStatus = Literal["Pending", "Approved", "Rejected", "Processing", "Completed"]


class Withdrawal(BaseModel):
    seller_id: str
    requested_amount: float = Field(..., gt=0)
    payment_method: Literal["Wallet", "Bank Transfer", "PayPal", "UPI", "Check"]
    bank_details: Optional[Dict[str, str]] = None
    upi_id: Optional[str] = None
    paypal_email: Optional[EmailStr] = None
    notes: Optional[str] = None


class WithdrawalStatusBody(BaseModel):
    status: WithdrawalStatus
    note: Optional[str] = None
    transaction_id: Optional[str] = None
    rejection_reason: Optional[str] = None


class PayoutBody(BaseModel):
    transaction_id: str


class FinanceRefundBody(BaseModel):
    order_id: str
    amount: Optional[float] = Field(None, gt=0)
    reason: Optional[str] = None

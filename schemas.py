"""
Domain Schemas for the Marketplace Storefront

Each Pydantic model is a plain record persisted as JSON under a storage key.

Storage keys:
- products
- sellers
- buyers
- orders
- unseen_orders_<seller_id>
- theme
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

SYSTEM_SELLER_ID = "system"


class OrderStatus(str, Enum):
    PENDING = "Pending"
    SHIPPED = "Shipped"
    DELIVERED = "Delivered"
    COMPLETED = "Completed"


class LoyaltyTier(str, Enum):
    BRONZE = "Bronze"
    SILVER = "Silver"
    GOLD = "Gold"


class Theme(str, Enum):
    LIGHT = "light"
    DARK = "dark"


class View(str, Enum):
    SHOP = "shop"
    SELLER = "seller"
    AUTH = "auth"
    HELP_CENTER = "help-center"
    HOW_TO_BUY = "how-to-buy"
    TRACK_ORDER = "track-order"
    RETURNS_REFUNDS = "returns-refunds"
    ABOUT_US = "about-us"
    CAREERS = "careers"
    TERMS_CONDITIONS = "terms-conditions"
    PRIVACY_POLICY = "privacy-policy"
    VENDOR_HUB = "vendor-hub"
    SUCCESS_STORIES = "success-stories"
    BUYER_DASHBOARD = "buyer-dashboard"
    CHECKOUT = "checkout"
    WISHLIST = "wishlist"


SELLER_VIEWS = {View.SELLER, View.VENDOR_HUB}
BUYER_VIEWS = {View.BUYER_DASHBOARD, View.WISHLIST}


class Category(str, Enum):
    ALL = "All"
    ELECTRONICS = "Electronics"
    SMART_HOME = "Smart Home"
    WEARABLES = "Wearables"
    GAMING = "Gaming"
    ACCESSORIES = "Accessories"


CATEGORY_LABELS: Dict[Category, str] = {
    Category.ALL: "All",
    Category.ELECTRONICS: "Electronics",
    Category.SMART_HOME: "Smart Home",
    Category.WEARABLES: "Wearables",
    Category.GAMING: "Gaming",
    Category.ACCESSORIES: "Accessories",
}


class RatingFilter(int, Enum):
    ALL = 0
    THREE_UP = 3
    FOUR_UP = 4


RATING_FILTER_LABELS: Dict[RatingFilter, str] = {
    RatingFilter.ALL: "All ratings",
    RatingFilter.FOUR_UP: "4 stars & up",
    RatingFilter.THREE_UP: "3 stars & up",
}


class SortOrder(str, Enum):
    DEFAULT = "default"
    PRICE_ASC = "price-asc"
    PRICE_DESC = "price-desc"


# -----------------------------
# Catalog
# -----------------------------
class Review(BaseModel):
    author: str = Field(..., description="Display name of the reviewer")
    rating: int = Field(..., ge=1, le=5)
    comment: str = ""
    date: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    image: Optional[str] = Field(None, description="Optional review photo URL")


class VariantOption(BaseModel):
    name: str = Field(..., description="e.g. 'Red', 'Large'")
    price: float = Field(..., ge=0)
    stock: int = Field(0, ge=0)


class Variant(BaseModel):
    type: str = Field(..., description="e.g. 'Color', 'Size'")
    options: List[VariantOption] = Field(default_factory=list)


class Product(BaseModel):
    id: int
    name: str
    description: str = ""
    price: float = Field(..., ge=0, description="Current (sale) price")
    original_price: Optional[float] = Field(None, ge=0, description="Price before discount")
    stock: Optional[int] = Field(None, ge=0, description="Units in stock; None when variants carry stock")
    sale_end_date: Optional[datetime] = None
    category: str
    images: List[str] = Field(..., min_length=1)
    vendor: str = Field(..., description="Store name of the owning seller")
    seller_id: str = Field(..., description="Owning seller id, or 'system'")
    rating: float = Field(0, ge=0, le=5)
    reviews_count: int = Field(0, ge=0)
    reviews: List[Review] = Field(default_factory=list)
    variants: Optional[List[Variant]] = None
    is_subscribable: bool = False
    is_negotiable: bool = False
    min_price: Optional[float] = Field(None, ge=0, description="Negotiation floor, never shown to buyers")

    def public(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude={"min_price"})


# -----------------------------
# Cart & orders
# -----------------------------
class Subscription(BaseModel):
    frequency: Literal["monthly"] = "monthly"


class CartItem(BaseModel):
    product: Product
    quantity: int = Field(..., ge=1)
    variant: Optional[Dict[str, str]] = None
    cart_item_id: str
    subscription: Optional[Subscription] = None
    negotiated_price: Optional[float] = Field(None, ge=0)

    @property
    def unit_price(self) -> float:
        return self.negotiated_price if self.negotiated_price is not None else self.product.price

    @property
    def line_total(self) -> float:
        return self.unit_price * self.quantity


class BuyerInfo(BaseModel):
    full_name: str = Field(..., min_length=1)
    phone_number: str = Field(..., min_length=1)
    delivery_address: str = Field(..., min_length=1)


class Order(BaseModel):
    id: str = Field(..., description="Public order code, e.g. IG-1718000000000")
    date: datetime
    buyer_info: BuyerInfo
    items: List[CartItem]
    total: float = Field(..., ge=0)
    status: OrderStatus = OrderStatus.PENDING
    buyer_id: Optional[str] = None


class TrackingEvent(BaseModel):
    status: str
    time: datetime


class TrackingInfo(BaseModel):
    order_id: str
    status: OrderStatus
    history: List[TrackingEvent]


class TopProduct(BaseModel):
    product: Product
    units_sold: int


# -----------------------------
# Accounts
# -----------------------------
class Seller(BaseModel):
    id: str
    email: str
    password: str
    store_name: str
    story: Optional[str] = None
    story_inputs: Optional[str] = None


class Loyalty(BaseModel):
    points: int = Field(0, ge=0)
    tier: LoyaltyTier = LoyaltyTier.BRONZE


class BuyerQuest(BaseModel):
    id: str
    title: str
    description: str
    points: int = Field(..., ge=0)
    is_completed: bool = False


class Buyer(BaseModel):
    id: str
    email: str
    password: str
    full_name: str
    phone_number: str
    browsing_history: List[int] = Field(default_factory=list)
    wishlist: List[int] = Field(default_factory=list)
    loyalty: Loyalty = Field(default_factory=Loyalty)
    quests: List[BuyerQuest] = Field(default_factory=list)


# -----------------------------
# Results
# -----------------------------
class Result(BaseModel):
    success: bool
    error: Optional[str] = None
    value: Any = None

    @classmethod
    def ok(cls, value: Any = None) -> "Result":
        return cls(success=True, value=value)

    @classmethod
    def fail(cls, error: str) -> "Result":
        return cls(success=False, error=error)


class ErrorCode:
    AUTH_STORAGE_ERROR = "auth_storage_error"
    EMAIL_IN_USE = "email_in_use_error"
    EMAIL_EXISTS = "signup_email_exists"
    INVALID_EMAIL = "signup_invalid_email"
    PASSWORD_WEAK = "signup_password_weak"
    PASSWORD_MISMATCH = "signup_password_mismatch"
    FILL_ALL_FIELDS = "fill_all_fields"
    STORE_NAME_REQUIRED = "store_name_required"
    LOGIN_ERROR = "login_error"
    NOT_LOGGED_IN = "not_logged_in"
    EMPTY_CART = "empty_cart"
    ORDER_STORAGE_ERROR = "order_storage_error"
    ORDER_NOT_FOUND = "order_not_found_error"
    INVALID_ORDER_ID = "invalid_order_id_format"
    INVALID_STATUS_TRANSITION = "invalid_status_transition"
    PRODUCT_NOT_FOUND = "product_not_found"
    COMPARISON_LIMIT = "comparison_limit_error"
    CATALOG_STORAGE_ERROR = "catalog_storage_error"

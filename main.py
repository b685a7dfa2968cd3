import base64
import binascii
import logging
import os
import threading
import uuid
from typing import Dict, List, Literal, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Response
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

import ai
import commands as cmd
from database import db, durable_store
from schemas import (
    CATEGORY_LABELS,
    RATING_FILTER_LABELS,
    Buyer,
    BuyerInfo,
    CartItem,
    Category,
    ErrorCode,
    Order,
    OrderStatus,
    Product,
    Result,
    Review,
    Seller,
    SortOrder,
    Subscription,
    Variant,
    View,
)
from storefront import Services, Storefront

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Marketplace API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Session-Id"],
)

SESSION_HEADER = "X-Session-Id"

UNAUTHORIZED = {ErrorCode.LOGIN_ERROR, ErrorCode.NOT_LOGGED_IN}
NOT_FOUND = {ErrorCode.PRODUCT_NOT_FOUND, ErrorCode.ORDER_NOT_FOUND}
SERVER_ERRORS = {ErrorCode.AUTH_STORAGE_ERROR, ErrorCode.ORDER_STORAGE_ERROR, ErrorCode.CATALOG_STORAGE_ERROR}


# Helpers
_services: Optional[Services] = None
_services_lock = threading.Lock()


def get_services() -> Services:
    global _services
    with _services_lock:
        if _services is None:
            _services = Services(durable_store())
        return _services


def get_storefront(
    response: Response,
    x_session_id: Optional[str] = Header(default=None),
    services: Services = Depends(get_services),
) -> Storefront:
    """Resolve the caller's session, opening a new one when the header is missing or unknown."""
    sid = x_session_id or uuid.uuid4().hex
    storefront = services.open_session(sid)
    response.headers[SESSION_HEADER] = sid
    return storefront


def unwrap(res: Result):
    if res.success:
        return res.value
    if res.error in UNAUTHORIZED:
        code = 401
    elif res.error in NOT_FOUND:
        code = 404
    elif res.error in SERVER_ERRORS:
        code = 500
    else:
        code = 400
    raise HTTPException(status_code=code, detail=res.error)


def serialize_product(p: Product) -> dict:
    return p.public()


def serialize_item(item: CartItem) -> dict:
    return item.model_dump(mode="json", exclude={"product": {"min_price"}})


def serialize_order(order: Order) -> dict:
    return order.model_dump(mode="json", exclude={"items": {"__all__": {"product": {"min_price"}}}})


def serialize_seller(seller: Optional[Seller]) -> Optional[dict]:
    return seller.model_dump(mode="json", exclude={"password"}) if seller else None


def serialize_buyer(buyer: Optional[Buyer]) -> Optional[dict]:
    return buyer.model_dump(mode="json", exclude={"password"}) if buyer else None


def serialize_state(sf: Storefront) -> dict:
    s = sf.state
    return {
        "view": s.view.value,
        "view_payload": s.view_payload,
        "cart": [serialize_item(i) for i in s.cart],
        "cart_total": s.cart.total(),
        "seller": serialize_seller(s.current_seller),
        "buyer": serialize_buyer(s.current_buyer),
        "unseen_order_ids": s.unseen_order_ids,
        "wishlist": s.wishlist,
        "comparison": [serialize_product(p) for p in s.comparison],
        "visual_search_active": s.visual_search_results is not None,
        "active_shop_tab": s.active_shop_tab,
        "theme": s.theme.value,
    }


def find_product(sf: Storefront, product_id: int) -> Product:
    product = sf.catalog.get(product_id)
    if product is None:
        raise HTTPException(status_code=404, detail=ErrorCode.PRODUCT_NOT_FOUND)
    return product


@app.get("/")
def read_root():
    return {"message": "Marketplace API running"}


@app.get("/test")
def test_database(services: Services = Depends(get_services)):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": None,
        "storage": type(services.store).__name__,
        "ai": "✅ Enabled" if ai.get_client() is not None else "❌ Disabled",
    }
    try:
        if db is not None:
            response["database_name"] = db.name
            db.command("ping")
            response["database"] = "✅ Connected & Working"
        else:
            response["database"] = "⚠️ Not configured, using in-memory storage"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


# Session state
@app.get("/api/state")
def get_state(sf: Storefront = Depends(get_storefront)):
    return serialize_state(sf)


class NavigatePayload(BaseModel):
    view: View
    payload: Optional[dict] = None


@app.post("/api/navigate")
def navigate(body: NavigatePayload, sf: Storefront = Depends(get_storefront)):
    view = unwrap(sf.dispatch(cmd.Navigate(view=body.view, payload=body.payload)))
    return {"view": view.value}


@app.post("/api/theme")
def toggle_theme(sf: Storefront = Depends(get_storefront)):
    theme = unwrap(sf.dispatch(cmd.ToggleTheme()))
    return {"theme": theme.value}


@app.get("/api/categories")
def list_categories():
    return {
        "categories": [{"value": c.value, "label": label} for c, label in CATEGORY_LABELS.items()],
        "ratings": [{"value": r.value, "label": label} for r, label in RATING_FILTER_LABELS.items()],
    }


# Auth
class SellerSignupPayload(BaseModel):
    email: str
    password: str
    confirm_password: str
    store_name: str


class BuyerSignupPayload(BaseModel):
    email: str
    password: str
    confirm_password: str
    full_name: str
    phone_number: str


class LoginPayload(BaseModel):
    email: str
    password: str


@app.post("/api/auth/seller/signup")
def signup_seller(body: SellerSignupPayload, sf: Storefront = Depends(get_storefront)):
    seller = unwrap(sf.dispatch(cmd.SignupSeller(**body.model_dump())))
    return serialize_seller(seller)


@app.post("/api/auth/buyer/signup")
def signup_buyer(body: BuyerSignupPayload, sf: Storefront = Depends(get_storefront)):
    buyer = unwrap(sf.dispatch(cmd.SignupBuyer(**body.model_dump())))
    return serialize_buyer(buyer)


@app.post("/api/auth/{role}/login")
def login(role: Literal["seller", "buyer"], body: LoginPayload, sf: Storefront = Depends(get_storefront)):
    account = unwrap(sf.dispatch(cmd.Login(role=role, email=body.email, password=body.password)))
    return serialize_seller(account) if role == "seller" else serialize_buyer(account)


@app.post("/api/auth/logout")
def logout(
    response: Response,
    sf: Storefront = Depends(get_storefront),
    services: Services = Depends(get_services),
):
    unwrap(sf.dispatch(cmd.Logout()))
    # sessions with an empty cart are released on logout
    if len(sf.state.cart) == 0:
        services.close_session(response.headers[SESSION_HEADER])
    return {"ok": True}


# Products
class ProductIn(BaseModel):
    name: str
    description: str = ""
    price: float = Field(..., ge=0)
    original_price: Optional[float] = Field(None, ge=0)
    stock: Optional[int] = Field(None, ge=0)
    category: str
    images: List[str] = Field(..., min_length=1)
    variants: Optional[List[Variant]] = None
    is_subscribable: bool = False
    is_negotiable: bool = False
    min_price: Optional[float] = Field(None, ge=0)


@app.get("/api/products")
def list_products(
    category: str = "All",
    q: str = "",
    price_range: str = "all",
    min_rating: float = 0,
    sort: SortOrder = SortOrder.DEFAULT,
    sf: Storefront = Depends(get_storefront),
):
    try:
        items = sf.visible_products(category, q, price_range, min_rating, sort)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid price range")
    return [serialize_product(p) for p in items]


@app.post("/api/products", status_code=201)
def create_product(body: ProductIn, sf: Storefront = Depends(get_storefront)):
    product = Product(id=sf.catalog.next_product_id(), vendor="", seller_id="", **body.model_dump())
    created = unwrap(sf.dispatch(cmd.AddProduct(product=product)))
    return serialize_product(created)


@app.get("/api/seller/products")
def list_seller_products(sf: Storefront = Depends(get_storefront)):
    return [serialize_product(p) for p in sf.seller_products()]


@app.get("/api/products/{product_id}")
def get_product(product_id: int, sf: Storefront = Depends(get_storefront)):
    return serialize_product(find_product(sf, product_id))


@app.put("/api/products/{product_id}")
def update_product(product_id: int, body: ProductIn, sf: Storefront = Depends(get_storefront)):
    product = Product(id=product_id, vendor="", seller_id="", **body.model_dump())
    updated = unwrap(sf.dispatch(cmd.UpdateProduct(product=product)))
    return serialize_product(updated)


class StockPayload(BaseModel):
    stock: int = Field(..., ge=0)


@app.patch("/api/products/{product_id}/stock")
def update_stock(product_id: int, body: StockPayload, sf: Storefront = Depends(get_storefront)):
    product = find_product(sf, product_id).model_copy(update={"stock": body.stock})
    updated = unwrap(sf.dispatch(cmd.UpdateProduct(product=product)))
    return serialize_product(updated)


@app.post("/api/products/{product_id}/view")
def view_product(product_id: int, sf: Storefront = Depends(get_storefront)):
    return serialize_product(unwrap(sf.dispatch(cmd.ViewProduct(product_id=product_id))))


# Reviews
class ReviewPayload(BaseModel):
    author: str
    rating: int = Field(..., ge=1, le=5)
    comment: str = ""
    image: Optional[str] = None


@app.post("/api/products/{product_id}/reviews", status_code=201)
def add_review(product_id: int, body: ReviewPayload, sf: Storefront = Depends(get_storefront)):
    product = unwrap(sf.dispatch(cmd.AddReview(product_id=product_id, review=Review(**body.model_dump()))))
    return serialize_product(product)


# Cart
class CartItemPayload(BaseModel):
    product_id: int
    quantity: int = Field(1, ge=1)
    variant: Optional[Dict[str, str]] = None
    subscription: Optional[Subscription] = None
    negotiated_price: Optional[float] = Field(None, ge=0)


class QuantityPayload(BaseModel):
    quantity: int


@app.get("/api/cart")
def get_cart(sf: Storefront = Depends(get_storefront)):
    return {"items": [serialize_item(i) for i in sf.state.cart], "total": sf.state.cart.total()}


@app.post("/api/cart/items", status_code=201)
def add_to_cart(body: CartItemPayload, sf: Storefront = Depends(get_storefront)):
    item = unwrap(sf.dispatch(cmd.AddToCart(**body.model_dump())))
    return serialize_item(item)


@app.patch("/api/cart/items/{cart_item_id}")
def update_cart_item(cart_item_id: str, body: QuantityPayload, sf: Storefront = Depends(get_storefront)):
    unwrap(sf.dispatch(cmd.UpdateQuantity(cart_item_id=cart_item_id, quantity=body.quantity)))
    return get_cart(sf)


@app.delete("/api/cart/items/{cart_item_id}")
def remove_cart_item(cart_item_id: str, sf: Storefront = Depends(get_storefront)):
    unwrap(sf.dispatch(cmd.RemoveFromCart(cart_item_id=cart_item_id)))
    return get_cart(sf)


# Orders
@app.post("/api/checkout", status_code=201)
def checkout(body: BuyerInfo, sf: Storefront = Depends(get_storefront)):
    order = unwrap(sf.dispatch(cmd.PlaceOrder(buyer_info=body)))
    return serialize_order(order)


@app.get("/api/orders")
def list_orders(role: Literal["buyer", "seller"] = "buyer", sf: Storefront = Depends(get_storefront)):
    if role == "seller":
        if sf.state.current_seller is None:
            raise HTTPException(status_code=401, detail=ErrorCode.NOT_LOGGED_IN)
        return [serialize_order(o) for o in sf.seller_orders()]
    if sf.state.current_buyer is None:
        raise HTTPException(status_code=401, detail=ErrorCode.NOT_LOGGED_IN)
    return [serialize_order(o) for o in sf.buyer_orders()]


class StatusPayload(BaseModel):
    status: OrderStatus


@app.post("/api/orders/seen")
def mark_orders_seen(sf: Storefront = Depends(get_storefront)):
    unwrap(sf.dispatch(cmd.MarkOrdersSeen()))
    return {"unseen_order_ids": sf.state.unseen_order_ids}


@app.patch("/api/orders/{order_id}/status")
def update_order_status(order_id: str, body: StatusPayload, sf: Storefront = Depends(get_storefront)):
    order = unwrap(sf.dispatch(cmd.UpdateOrderStatus(order_id=order_id, status=body.status)))
    return serialize_order(order)


@app.get("/api/orders/{order_id}/track")
def track_order(order_id: str, sf: Storefront = Depends(get_storefront)):
    info = unwrap(sf.orders.track_order(order_id))
    return info.model_dump(mode="json")


# Seller
class SellerProfilePayload(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None
    store_name: Optional[str] = Field(None, min_length=1)


@app.patch("/api/seller/profile")
def update_seller_profile(body: SellerProfilePayload, sf: Storefront = Depends(get_storefront)):
    changes = body.model_dump(exclude_none=True)
    seller = unwrap(sf.dispatch(cmd.UpdateSellerProfile(changes=changes)))
    return serialize_seller(seller)


class SellerStoryPayload(BaseModel):
    story: str
    story_inputs: str = ""


@app.put("/api/seller/story")
def update_seller_story(body: SellerStoryPayload, sf: Storefront = Depends(get_storefront)):
    seller = unwrap(sf.dispatch(cmd.UpdateSellerStory(story=body.story, story_inputs=body.story_inputs)))
    return serialize_seller(seller)


@app.get("/api/seller/analytics")
def seller_analytics(sf: Storefront = Depends(get_storefront)):
    seller = sf.state.current_seller
    if seller is None:
        raise HTTPException(status_code=401, detail=ErrorCode.NOT_LOGGED_IN)
    orders = sf.seller_orders()
    return {
        "orders": len(orders),
        "revenue": sum(o.total for o in orders),
        "unseen_order_ids": sf.orders.unseen_order_ids(seller.id),
        "top_products": [
            {"product": serialize_product(t.product), "units_sold": t.units_sold}
            for t in sf.seller_top_products()
        ],
    }


# Buyer
class BuyerProfilePayload(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None
    full_name: Optional[str] = Field(None, min_length=1)
    phone_number: Optional[str] = Field(None, min_length=1)


@app.patch("/api/buyer/profile")
def update_buyer_profile(body: BuyerProfilePayload, sf: Storefront = Depends(get_storefront)):
    changes = body.model_dump(exclude_none=True)
    buyer = unwrap(sf.dispatch(cmd.UpdateBuyerProfile(changes=changes)))
    return serialize_buyer(buyer)


@app.post("/api/wishlist/{product_id}")
def toggle_wishlist(product_id: int, sf: Storefront = Depends(get_storefront)):
    unwrap(sf.dispatch(cmd.ToggleWishlist(product_id=product_id)))
    return {"wishlist": sf.state.wishlist}


@app.get("/api/wishlist")
def get_wishlist(sf: Storefront = Depends(get_storefront)):
    if sf.state.current_buyer is None:
        raise HTTPException(status_code=401, detail=ErrorCode.NOT_LOGGED_IN)
    products = [sf.catalog.get(pid) for pid in sf.state.wishlist]
    return [serialize_product(p) for p in products if p is not None]


# Comparison tray
@app.post("/api/compare/{product_id}")
def toggle_compare(product_id: int, sf: Storefront = Depends(get_storefront)):
    items = unwrap(sf.dispatch(cmd.ToggleCompare(product_id=product_id)))
    return [serialize_product(p) for p in items]


@app.delete("/api/compare")
def clear_compare(sf: Storefront = Depends(get_storefront)):
    unwrap(sf.dispatch(cmd.ClearCompare()))
    return []


# AI features
class KeywordsPayload(BaseModel):
    keywords: str = Field(..., min_length=1)


class TicketPayload(BaseModel):
    message: str = Field(..., min_length=1)


class NegotiationPayload(BaseModel):
    product_id: int
    history: List[ai.ChatMessage] = Field(..., min_length=1)


class StoryPayload(BaseModel):
    points: str = Field(..., min_length=1)


class ImagePayload(BaseModel):
    image_base64: str
    mime_type: str = "image/jpeg"


class ChatPayload(BaseModel):
    message: str = Field(..., min_length=1)
    history: List[ai.ChatMessage] = Field(default_factory=list)


@app.post("/api/ai/description")
def ai_description(body: KeywordsPayload):
    return {"text": ai.generate_product_description(body.keywords)}


@app.get("/api/ai/products/{product_id}/summary")
def ai_review_summary(product_id: int, sf: Storefront = Depends(get_storefront)):
    return {"text": ai.summarize_reviews(find_product(sf, product_id).reviews)}


@app.post("/api/ai/support-ticket")
def ai_support_ticket(body: TicketPayload):
    triage = ai.categorize_support_ticket(body.message)
    return triage.model_dump() if triage else None


@app.get("/api/ai/search-suggestions")
def ai_search_suggestions(q: str = ""):
    categories = [c.value for c in Category if c != Category.ALL]
    return ai.search_suggestions(q, categories).model_dump()


@app.post("/api/ai/negotiate")
def ai_negotiate(body: NegotiationPayload, sf: Storefront = Depends(get_storefront)):
    product = find_product(sf, body.product_id)
    if not product.is_negotiable:
        raise HTTPException(status_code=400, detail="product_not_negotiable")
    return ai.negotiate_price(product, body.history).model_dump()


@app.post("/api/ai/vendor-story")
def ai_vendor_story(body: StoryPayload, sf: Storefront = Depends(get_storefront)):
    seller = sf.state.current_seller
    if seller is None:
        raise HTTPException(status_code=401, detail=ErrorCode.NOT_LOGGED_IN)
    story = ai.generate_vendor_story(seller.store_name, body.points)
    updated = unwrap(sf.dispatch(cmd.UpdateSellerStory(story=story, story_inputs=body.points)))
    return serialize_seller(updated)


@app.get("/api/ai/recommendations")
def ai_recommendations(sf: Storefront = Depends(get_storefront)):
    buyer = sf.state.current_buyer
    if buyer is None:
        raise HTTPException(status_code=401, detail=ErrorCode.NOT_LOGGED_IN)
    ids = ai.recommend_products(buyer.browsing_history, sf.catalog.products)
    products = [sf.catalog.get(pid) for pid in ids]
    return [serialize_product(p) for p in products if p is not None]


@app.post("/api/ai/visual-search")
def ai_visual_search(body: ImagePayload, sf: Storefront = Depends(get_storefront)):
    try:
        image = base64.b64decode(body.image_base64, validate=True)
    except (binascii.Error, ValueError):
        raise HTTPException(status_code=400, detail="Invalid image data")
    ids = ai.find_similar_products(image, body.mime_type, sf.catalog.products)
    results = unwrap(sf.dispatch(cmd.SetVisualSearchResults(product_ids=ids)))
    return [serialize_product(p) for p in results]


@app.delete("/api/ai/visual-search")
def clear_visual_search(sf: Storefront = Depends(get_storefront)):
    unwrap(sf.dispatch(cmd.SetVisualSearchResults(product_ids=None)))
    return {"ok": True}


@app.post("/api/ai/quests")
def ai_quests(sf: Storefront = Depends(get_storefront)):
    buyer = sf.state.current_buyer
    if buyer is None:
        raise HTTPException(status_code=401, detail=ErrorCode.NOT_LOGGED_IN)
    quests = ai.generate_quests(buyer)
    if quests:
        buyer = unwrap(sf.dispatch(cmd.AddQuests(quests=quests)))
    return [q.model_dump() for q in buyer.quests]


@app.post("/api/ai/chat")
def ai_chat(body: ChatPayload, sf: Storefront = Depends(get_storefront)):
    return {"text": ai.chat_reply(body.history, body.message, sf.catalog.products)}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)

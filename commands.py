"""
Commands accepted by Storefront.dispatch.

Each command is a small message; the `type` field selects the handler.
"""
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field

from schemas import BuyerInfo, BuyerQuest, OrderStatus, Product, Review, Subscription, View


class Navigate(BaseModel):
    type: Literal["navigate"] = "navigate"
    view: View
    payload: Optional[Dict[str, Any]] = None


class SignupSeller(BaseModel):
    type: Literal["signup_seller"] = "signup_seller"
    email: str
    password: str
    confirm_password: str
    store_name: str


class SignupBuyer(BaseModel):
    type: Literal["signup_buyer"] = "signup_buyer"
    email: str
    password: str
    confirm_password: str
    full_name: str
    phone_number: str


class Login(BaseModel):
    type: Literal["login"] = "login"
    role: Literal["seller", "buyer"]
    email: str
    password: str


class Logout(BaseModel):
    type: Literal["logout"] = "logout"


class AddToCart(BaseModel):
    type: Literal["add_to_cart"] = "add_to_cart"
    product_id: int
    quantity: int = Field(1, ge=1)
    variant: Optional[Dict[str, str]] = None
    subscription: Optional[Subscription] = None
    negotiated_price: Optional[float] = Field(None, ge=0)


class RemoveFromCart(BaseModel):
    type: Literal["remove_from_cart"] = "remove_from_cart"
    cart_item_id: str


class UpdateQuantity(BaseModel):
    type: Literal["update_quantity"] = "update_quantity"
    cart_item_id: str
    quantity: int


class PlaceOrder(BaseModel):
    type: Literal["place_order"] = "place_order"
    buyer_info: BuyerInfo


class UpdateOrderStatus(BaseModel):
    type: Literal["update_order_status"] = "update_order_status"
    order_id: str
    status: OrderStatus


class MarkOrdersSeen(BaseModel):
    type: Literal["mark_orders_seen"] = "mark_orders_seen"


class UpdateSellerProfile(BaseModel):
    type: Literal["update_seller_profile"] = "update_seller_profile"
    changes: Dict[str, Any]


class UpdateBuyerProfile(BaseModel):
    type: Literal["update_buyer_profile"] = "update_buyer_profile"
    changes: Dict[str, Any]


class UpdateSellerStory(BaseModel):
    type: Literal["update_seller_story"] = "update_seller_story"
    story: str
    story_inputs: str


class AddProduct(BaseModel):
    type: Literal["add_product"] = "add_product"
    product: Product


class UpdateProduct(BaseModel):
    type: Literal["update_product"] = "update_product"
    product: Product


class AddReview(BaseModel):
    type: Literal["add_review"] = "add_review"
    product_id: int
    review: Review


class ViewProduct(BaseModel):
    type: Literal["view_product"] = "view_product"
    product_id: int


class ToggleWishlist(BaseModel):
    type: Literal["toggle_wishlist"] = "toggle_wishlist"
    product_id: int


class ToggleCompare(BaseModel):
    type: Literal["toggle_compare"] = "toggle_compare"
    product_id: int


class ClearCompare(BaseModel):
    type: Literal["clear_compare"] = "clear_compare"


class ToggleTheme(BaseModel):
    type: Literal["toggle_theme"] = "toggle_theme"


class SetVisualSearchResults(BaseModel):
    type: Literal["set_visual_search_results"] = "set_visual_search_results"
    product_ids: Optional[List[int]] = None


class AddQuests(BaseModel):
    type: Literal["add_quests"] = "add_quests"
    quests: List[BuyerQuest]


Command = Annotated[
    Union[
        Navigate, SignupSeller, SignupBuyer, Login, Logout,
        AddToCart, RemoveFromCart, UpdateQuantity,
        PlaceOrder, UpdateOrderStatus, MarkOrdersSeen,
        UpdateSellerProfile, UpdateBuyerProfile, UpdateSellerStory,
        AddProduct, UpdateProduct, AddReview, ViewProduct,
        ToggleWishlist, ToggleCompare, ClearCompare, ToggleTheme,
        SetVisualSearchResults, AddQuests,
    ],
    Field(discriminator="type"),
]

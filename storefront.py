"""
Per-session storefront controller.

`Storefront` owns one session's application state (cart, identities, navigation,
comparison tray, ...) and exposes `dispatch(command)` as its only mutation
surface. Catalog, orders and accounts are shared `Services` over the durable
store; identities are restored from the session store.
"""
import logging
import os
import threading
from collections import OrderedDict
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

import commands as cmd
from accounts import Accounts, record_view, toggled
from cart import Cart
from catalog import Catalog, filter_products
from database import KeyValueStore, MemoryStore, StorageError, StorageKeys, read_json
from orders import OrderBook, seller_orders, top_selling_products
from schemas import (
    BUYER_VIEWS,
    SELLER_VIEWS,
    Buyer,
    ErrorCode,
    Order,
    Product,
    Result,
    Seller,
    SortOrder,
    Theme,
    TopProduct,
    View,
)

logger = logging.getLogger(__name__)

COMPARE_LIMIT = 4
DEFAULT_SHOP_TAB = "all_products"
SESSION_LIMIT = int(os.getenv("SESSION_LIMIT", "1000"))


class Services:
    """Managers shared by every session over one durable store.

    `sessions` keeps at most `session_limit` storefronts; the least recently
    used one is dropped first.
    """

    def __init__(self, store: KeyValueStore, session_limit: int = SESSION_LIMIT):
        self.store = store
        self.catalog = Catalog(store)
        self.orders = OrderBook(store)
        self.accounts = Accounts(store)
        self.lock = threading.RLock()
        self.session_limit = session_limit
        self.sessions: "OrderedDict[str, Storefront]" = OrderedDict()

    def open_session(self, session_id: str) -> "Storefront":
        with self.lock:
            storefront = self.sessions.get(session_id)
            if storefront is None:
                storefront = Storefront(self, MemoryStore())
                self.sessions[session_id] = storefront
            self.sessions.move_to_end(session_id)
            while len(self.sessions) > self.session_limit:
                evicted, _ = self.sessions.popitem(last=False)
                logger.info("Evicted least recently used session %s", evicted)
            return storefront

    def close_session(self, session_id: str) -> None:
        with self.lock:
            self.sessions.pop(session_id, None)


class StorefrontState(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    view: View = View.SHOP
    view_payload: Optional[Dict[str, Any]] = None
    cart: Cart = Field(default_factory=Cart)
    current_seller: Optional[Seller] = None
    current_buyer: Optional[Buyer] = None
    unseen_order_ids: List[str] = Field(default_factory=list)
    wishlist: List[int] = Field(default_factory=list)
    comparison: List[Product] = Field(default_factory=list)
    visual_search_results: Optional[List[Product]] = None
    active_shop_tab: str = DEFAULT_SHOP_TAB
    theme: Theme = Theme.LIGHT


class Storefront:
    def __init__(self, services: Services, session: KeyValueStore):
        self.services = services
        self.session = session
        self.state = StorefrontState()
        self._handlers = {
            cmd.Navigate: self._navigate,
            cmd.SignupSeller: self._signup_seller,
            cmd.SignupBuyer: self._signup_buyer,
            cmd.Login: self._login,
            cmd.Logout: self._logout,
            cmd.AddToCart: self._add_to_cart,
            cmd.RemoveFromCart: self._remove_from_cart,
            cmd.UpdateQuantity: self._update_quantity,
            cmd.PlaceOrder: self._place_order,
            cmd.UpdateOrderStatus: self._update_order_status,
            cmd.MarkOrdersSeen: self._mark_orders_seen,
            cmd.UpdateSellerProfile: self._update_seller_profile,
            cmd.UpdateBuyerProfile: self._update_buyer_profile,
            cmd.UpdateSellerStory: self._update_seller_story,
            cmd.AddProduct: self._add_product,
            cmd.UpdateProduct: self._update_product,
            cmd.AddReview: self._add_review,
            cmd.ViewProduct: self._view_product,
            cmd.ToggleWishlist: self._toggle_wishlist,
            cmd.ToggleCompare: self._toggle_compare,
            cmd.ClearCompare: self._clear_compare,
            cmd.ToggleTheme: self._toggle_theme,
            cmd.SetVisualSearchResults: self._set_visual_search_results,
            cmd.AddQuests: self._add_quests,
        }
        self._restore()

    @property
    def catalog(self) -> Catalog:
        return self.services.catalog

    @property
    def orders(self) -> OrderBook:
        return self.services.orders

    @property
    def accounts(self) -> Accounts:
        return self.services.accounts

    def _restore(self) -> None:
        theme = read_json(self.services.store, StorageKeys.THEME, Theme.LIGHT.value)
        self.state.theme = Theme(theme) if theme in (t.value for t in Theme) else Theme.LIGHT

        seller_id = read_json(self.session, StorageKeys.SELLER_ID, None)
        if seller_id:
            seller = self.accounts.find_seller(seller_id)
            if seller:
                self.state.current_seller = seller
                self.state.unseen_order_ids = self.orders.unseen_order_ids(seller.id)

        buyer_id = read_json(self.session, StorageKeys.BUYER_ID, None)
        if buyer_id:
            buyer = self.accounts.find_buyer(buyer_id)
            if buyer:
                self.state.current_buyer = buyer
                self.state.wishlist = list(buyer.wishlist)

    def dispatch(self, command) -> Result:
        handler = self._handlers.get(type(command))
        if handler is None:
            raise TypeError(f"Unknown command {type(command).__name__}")
        with self.services.lock:
            return handler(command)

    # -----------------
    # navigation & identity
    # -----------------
    def _navigate(self, c: cmd.Navigate) -> Result:
        s = self.state
        s.visual_search_results = None
        s.active_shop_tab = DEFAULT_SHOP_TAB
        s.view_payload = c.payload
        if c.view in SELLER_VIEWS and s.current_seller is None:
            s.view = View.AUTH
        elif c.view in BUYER_VIEWS and s.current_buyer is None:
            s.view = View.AUTH
        else:
            s.view = c.view
        return Result.ok(s.view)

    def _remember(self, key: str, value: str) -> None:
        try:
            self.session.set(key, value)
        except StorageError:
            logger.exception("Failed to store session key %s", key)

    def _seller_logged_in(self, seller: Seller) -> None:
        self.state.current_seller = seller
        self._remember(StorageKeys.SELLER_ID, seller.id)
        self.state.unseen_order_ids = self.orders.unseen_order_ids(seller.id)
        self.state.view = View.SELLER

    def _buyer_logged_in(self, buyer: Buyer) -> None:
        self.state.current_buyer = buyer
        self.state.wishlist = list(buyer.wishlist)
        self._remember(StorageKeys.BUYER_ID, buyer.id)
        self.state.view = View.SHOP

    def _signup_seller(self, c: cmd.SignupSeller) -> Result:
        res = self.accounts.signup_seller(c.email, c.password, c.confirm_password, c.store_name)
        if res.success:
            self._seller_logged_in(res.value)
        return res

    def _signup_buyer(self, c: cmd.SignupBuyer) -> Result:
        res = self.accounts.signup_buyer(c.email, c.password, c.confirm_password, c.full_name, c.phone_number)
        if res.success:
            self._buyer_logged_in(res.value)
        return res

    def _login(self, c: cmd.Login) -> Result:
        if c.role == "seller":
            res = self.accounts.login_seller(c.email, c.password)
            if res.success:
                self._seller_logged_in(res.value)
        else:
            res = self.accounts.login_buyer(c.email, c.password)
            if res.success:
                self._buyer_logged_in(res.value)
        return res

    def _logout(self, c: cmd.Logout) -> Result:
        s = self.state
        s.current_seller = None
        s.current_buyer = None
        s.unseen_order_ids = []
        s.wishlist = []
        for key in (StorageKeys.SELLER_ID, StorageKeys.BUYER_ID):
            try:
                self.session.remove(key)
            except StorageError:
                logger.exception("Failed to clear session key %s", key)
        s.view = View.SHOP
        return Result.ok()

    # -----------------
    # cart & checkout
    # -----------------
    def _add_to_cart(self, c: cmd.AddToCart) -> Result:
        product = self.catalog.get(c.product_id)
        if product is None:
            return Result.fail(ErrorCode.PRODUCT_NOT_FOUND)
        item = self.state.cart.add(product, c.quantity, c.variant, c.subscription, c.negotiated_price)
        return Result.ok(item)

    def _remove_from_cart(self, c: cmd.RemoveFromCart) -> Result:
        self.state.cart.remove(c.cart_item_id)
        return Result.ok(self.state.cart.items)

    def _update_quantity(self, c: cmd.UpdateQuantity) -> Result:
        self.state.cart.update_quantity(c.cart_item_id, c.quantity)
        return Result.ok(self.state.cart.items)

    def _place_order(self, c: cmd.PlaceOrder) -> Result:
        s = self.state
        if len(s.cart) == 0:
            return Result.fail(ErrorCode.EMPTY_CART)
        buyer_id = s.current_buyer.id if s.current_buyer else None
        order = self.orders.place_order(s.cart, c.buyer_info, buyer_id)
        if order is None:
            return Result.fail(ErrorCode.ORDER_STORAGE_ERROR)
        if s.current_seller and any(it.product.seller_id == s.current_seller.id for it in order.items):
            s.unseen_order_ids = self.orders.unseen_order_ids(s.current_seller.id)
        logger.info("Placed order %s (%d lines, total %.2f)", order.id, len(order.items), order.total)
        return Result.ok(order)

    def _update_order_status(self, c: cmd.UpdateOrderStatus) -> Result:
        if self.state.current_seller is None:
            return Result.fail(ErrorCode.NOT_LOGGED_IN)
        return self.orders.update_order_status(c.order_id, c.status)

    def _mark_orders_seen(self, c: cmd.MarkOrdersSeen) -> Result:
        s = self.state
        if s.current_seller is None:
            return Result.fail(ErrorCode.NOT_LOGGED_IN)
        res = self.orders.mark_orders_as_seen(s.current_seller.id)
        if res.success:
            s.unseen_order_ids = []
        return res

    # -----------------
    # profiles
    # -----------------
    def _update_seller_profile(self, c: cmd.UpdateSellerProfile) -> Result:
        res = self.accounts.update_seller_profile(self.state.current_seller, c.changes, self.catalog)
        if res.success:
            self.state.current_seller = res.value
        return res

    def _update_buyer_profile(self, c: cmd.UpdateBuyerProfile) -> Result:
        res = self.accounts.update_buyer_profile(self.state.current_buyer, c.changes)
        if res.success:
            self.state.current_buyer = res.value
            self.state.wishlist = list(res.value.wishlist)
        return res

    def _update_seller_story(self, c: cmd.UpdateSellerStory) -> Result:
        return self._update_seller_profile(cmd.UpdateSellerProfile(
            changes={"story": c.story, "story_inputs": c.story_inputs}
        ))

    def _add_quests(self, c: cmd.AddQuests) -> Result:
        buyer = self.state.current_buyer
        if buyer is None:
            return Result.fail(ErrorCode.NOT_LOGGED_IN)
        quests = [q.model_dump() for q in buyer.quests + c.quests]
        return self._update_buyer_profile(cmd.UpdateBuyerProfile(changes={"quests": quests}))

    # -----------------
    # catalog
    # -----------------
    def _add_product(self, c: cmd.AddProduct) -> Result:
        seller = self.state.current_seller
        if seller is None:
            return Result.fail(ErrorCode.NOT_LOGGED_IN)
        product_id = c.product.id
        if self.catalog.get(product_id) is not None:
            product_id = self.catalog.next_product_id()
        product = c.product.model_copy(update={
            "id": product_id,
            "seller_id": seller.id,
            "vendor": seller.store_name,
        })
        return self.catalog.add_product(product)

    def _update_product(self, c: cmd.UpdateProduct) -> Result:
        seller = self.state.current_seller
        if seller is None:
            return Result.fail(ErrorCode.NOT_LOGGED_IN)
        existing = self.catalog.get(c.product.id)
        if existing is None or existing.seller_id != seller.id:
            return Result.fail(ErrorCode.PRODUCT_NOT_FOUND)
        # ratings are derived from reviews and the owner is fixed
        product = c.product.model_copy(update={
            "seller_id": seller.id,
            "vendor": seller.store_name,
            "reviews": existing.reviews,
            "rating": existing.rating,
            "reviews_count": existing.reviews_count,
        })
        return self.catalog.update_product(product)

    def _add_review(self, c: cmd.AddReview) -> Result:
        return self.catalog.add_review(c.product_id, c.review)

    def _view_product(self, c: cmd.ViewProduct) -> Result:
        product = self.catalog.get(c.product_id)
        if product is None:
            return Result.fail(ErrorCode.PRODUCT_NOT_FOUND)
        buyer = self.state.current_buyer
        if buyer:
            history = record_view(buyer.browsing_history, product.id)
            saved = self._update_buyer_profile(cmd.UpdateBuyerProfile(changes={"browsing_history": history}))
            if not saved.success:
                logger.warning("Browsing history of buyer %s not saved: %s", buyer.id, saved.error)
        return Result.ok(product)

    def _toggle_wishlist(self, c: cmd.ToggleWishlist) -> Result:
        if self.state.current_buyer is None:
            self._navigate(cmd.Navigate(view=View.AUTH))
            return Result.fail(ErrorCode.NOT_LOGGED_IN)
        # the in-session toggle sticks even when the profile cannot be saved
        wishlist = toggled(self.state.wishlist, c.product_id)
        self.state.wishlist = wishlist
        return self._update_buyer_profile(cmd.UpdateBuyerProfile(changes={"wishlist": wishlist}))

    def _toggle_compare(self, c: cmd.ToggleCompare) -> Result:
        s = self.state
        if any(p.id == c.product_id for p in s.comparison):
            s.comparison = [p for p in s.comparison if p.id != c.product_id]
            return Result.ok(s.comparison)
        product = self.catalog.get(c.product_id)
        if product is None:
            return Result.fail(ErrorCode.PRODUCT_NOT_FOUND)
        if len(s.comparison) >= COMPARE_LIMIT:
            return Result.fail(ErrorCode.COMPARISON_LIMIT)
        s.comparison = s.comparison + [product]
        return Result.ok(s.comparison)

    def _clear_compare(self, c: cmd.ClearCompare) -> Result:
        self.state.comparison = []
        return Result.ok(self.state.comparison)

    def _toggle_theme(self, c: cmd.ToggleTheme) -> Result:
        theme = Theme.DARK if self.state.theme == Theme.LIGHT else Theme.LIGHT
        self.state.theme = theme
        try:
            self.services.store.set(StorageKeys.THEME, theme.value)
        except StorageError:
            logger.exception("Failed to save theme")
        return Result.ok(theme)

    def _set_visual_search_results(self, c: cmd.SetVisualSearchResults) -> Result:
        if c.product_ids is None:
            self.state.visual_search_results = None
            return Result.ok()
        found = [self.catalog.get(pid) for pid in c.product_ids]
        self.state.visual_search_results = [p for p in found if p is not None]
        return Result.ok(self.state.visual_search_results)

    # -----------------
    # queries
    # -----------------
    def visible_products(
        self,
        category: str = "All",
        search: str = "",
        price_range: str = "all",
        min_rating: float = 0,
        sort: SortOrder = SortOrder.DEFAULT,
    ) -> List[Product]:
        if self.state.visual_search_results is not None:
            return self.state.visual_search_results
        return filter_products(self.catalog.products, category, search, price_range, min_rating, sort)

    def seller_products(self) -> List[Product]:
        seller = self.state.current_seller
        return self.catalog.products_for_seller(seller.id) if seller else []

    def seller_orders(self) -> List[Order]:
        seller = self.state.current_seller
        return seller_orders(self.orders.orders, seller.id) if seller else []

    def seller_top_products(self, limit: int = 5) -> List[TopProduct]:
        seller = self.state.current_seller
        if seller is None:
            return []
        return top_selling_products(self.orders.orders, self.catalog.products, seller.id, limit)

    def buyer_orders(self) -> List[Order]:
        buyer = self.state.current_buyer
        return self.orders.orders_for_buyer(buyer.id) if buyer else []

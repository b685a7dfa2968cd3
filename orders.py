"""
Order placement, status progression, per-seller notifications and tracking.
"""
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from pydantic import ValidationError

from cart import Cart
from database import KeyValueStore, StorageError, StorageKeys, read_json
from schemas import (
    SYSTEM_SELLER_ID,
    BuyerInfo,
    ErrorCode,
    Order,
    OrderStatus,
    Product,
    Result,
    TopProduct,
    TrackingEvent,
    TrackingInfo,
)

logger = logging.getLogger(__name__)

ORDER_ID_PREFIX = "IG-"

# Each status may only advance to the next one; Completed is terminal.
STATUS_TRANSITIONS: Dict[OrderStatus, Optional[OrderStatus]] = {
    OrderStatus.PENDING: OrderStatus.SHIPPED,
    OrderStatus.SHIPPED: OrderStatus.DELIVERED,
    OrderStatus.DELIVERED: OrderStatus.COMPLETED,
    OrderStatus.COMPLETED: None,
}

STATUS_RANK = {s: i for i, s in enumerate(STATUS_TRANSITIONS)}


def seller_orders(orders: List[Order], seller_id: str) -> List[Order]:
    """Orders reduced to one seller's lines, re-totalled, newest first."""
    res = []
    for order in orders:
        items = [it for it in order.items if it.product.seller_id == seller_id]
        if not items:
            continue
        res.append(order.model_copy(update={
            "items": items,
            "total": sum(it.line_total for it in items),
        }))
    res.sort(key=lambda o: o.date, reverse=True)
    return res


def top_selling_products(
    orders: List[Order], products: List[Product], seller_id: str, limit: int = 5
) -> List[TopProduct]:
    current = {p.id: p for p in products}
    units: Dict[int, int] = {}
    snapshot: Dict[int, Product] = {}
    for order in seller_orders(orders, seller_id):
        for it in order.items:
            units[it.product.id] = units.get(it.product.id, 0) + it.quantity
            snapshot.setdefault(it.product.id, it.product)
    ranked = sorted(units.items(), key=lambda kv: kv[1], reverse=True)[:limit]
    return [
        TopProduct(product=current.get(pid, snapshot[pid]), units_sold=n)
        for pid, n in ranked
    ]


def tracking_history(order: Order) -> List[TrackingEvent]:
    placed = order.date
    steps = [
        ("Order Placed", placed, OrderStatus.PENDING),
        ("Order Confirmed", placed + timedelta(minutes=5), OrderStatus.PENDING),
        ("Shipped", placed + timedelta(hours=2), OrderStatus.SHIPPED),
        ("Delivered", placed + timedelta(hours=24), OrderStatus.DELIVERED),
        ("Completed", placed + timedelta(hours=30), OrderStatus.COMPLETED),
    ]
    reached = STATUS_RANK[order.status]
    return [
        TrackingEvent(status=label, time=at)
        for label, at, needs in steps
        if STATUS_RANK[needs] <= reached
    ]


class OrderBook:
    def __init__(self, store: KeyValueStore):
        self.store = store
        try:
            self.orders: List[Order] = [Order(**o) for o in read_json(store, StorageKeys.ORDERS, [])]
        except (TypeError, ValidationError):
            logger.exception("Malformed order records in storage, starting with no orders")
            self.orders = []

    def get(self, order_id: str) -> Optional[Order]:
        return next((o for o in self.orders if o.id == order_id), None)

    def _new_id(self) -> str:
        stamp = int(time.time() * 1000)
        taken = {o.id for o in self.orders}
        while f"{ORDER_ID_PREFIX}{stamp}" in taken:
            stamp += 1
        return f"{ORDER_ID_PREFIX}{stamp}"

    def _write(self, orders: List[Order]) -> None:
        self.store.set(StorageKeys.ORDERS, [o.model_dump(mode="json") for o in orders])

    def place_order(
        self, cart: Cart, buyer_info: BuyerInfo, buyer_id: Optional[str] = None
    ) -> Optional[Order]:
        """
        Turn the cart into a persisted order.

        Returns None (and leaves the cart untouched) when the cart is empty or the
        order list cannot be written. On success every seller represented in the
        order gets the order id queued in its unseen list and the cart is cleared.
        """
        if len(cart) == 0:
            return None

        items = cart.snapshot()
        order = Order(
            id=self._new_id(),
            date=datetime.now(timezone.utc),
            buyer_info=buyer_info,
            items=items,
            total=sum(it.line_total for it in items),
            buyer_id=buyer_id,
            status=OrderStatus.PENDING,
        )
        updated = self.orders + [order]
        try:
            self._write(updated)
        except StorageError:
            logger.exception("Failed to save order")
            return None
        self.orders = updated

        for seller_id in dict.fromkeys(it.product.seller_id for it in items):
            if seller_id == SYSTEM_SELLER_ID:
                continue
            self.notify_seller(seller_id, order.id)

        cart.clear()
        return order

    def notify_seller(self, seller_id: str, order_id: str) -> List[str]:
        """Queue `order_id` for the seller. An unreadable list is left untouched."""
        key = StorageKeys.unseen_orders(seller_id)
        try:
            unseen = list(self.store.get(key) or [])
            if order_id not in unseen:
                unseen.append(order_id)
            self.store.set(key, unseen)
        except StorageError:
            logger.exception("Failed to update unseen orders for seller %s", seller_id)
            return []
        return unseen

    def unseen_order_ids(self, seller_id: str) -> List[str]:
        return list(read_json(self.store, StorageKeys.unseen_orders(seller_id), []))

    def mark_orders_as_seen(self, seller_id: str) -> Result:
        try:
            self.store.remove(StorageKeys.unseen_orders(seller_id))
        except StorageError:
            logger.exception("Failed to mark orders as seen for seller %s", seller_id)
            return Result.fail(ErrorCode.ORDER_STORAGE_ERROR)
        return Result.ok()

    def update_order_status(self, order_id: str, status: OrderStatus) -> Result:
        order = self.get(order_id)
        if order is None:
            return Result.fail(ErrorCode.ORDER_NOT_FOUND)
        if STATUS_TRANSITIONS[order.status] != status:
            return Result.fail(ErrorCode.INVALID_STATUS_TRANSITION)

        changed = order.model_copy(update={"status": status})
        updated = [changed if o.id == order_id else o for o in self.orders]
        try:
            self._write(updated)
        except StorageError:
            logger.exception("Failed to update status of order %s", order_id)
            return Result.fail(ErrorCode.ORDER_STORAGE_ERROR)
        self.orders = updated
        return Result.ok(changed)

    def orders_for_buyer(self, buyer_id: str) -> List[Order]:
        res = [o for o in self.orders if o.buyer_id == buyer_id]
        res.sort(key=lambda o: o.date, reverse=True)
        return res

    def track_order(self, order_id: str) -> Result:
        wanted = (order_id or "").strip()
        if not wanted.upper().startswith(ORDER_ID_PREFIX):
            return Result.fail(ErrorCode.INVALID_ORDER_ID)
        order = next((o for o in self.orders if o.id.lower() == wanted.lower()), None)
        if order is None:
            return Result.fail(ErrorCode.ORDER_NOT_FOUND)
        return Result.ok(TrackingInfo(order_id=order.id, status=order.status, history=tracking_history(order)))

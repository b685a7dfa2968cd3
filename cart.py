from typing import Dict, Iterator, List, Optional

from schemas import CartItem, Product, Subscription


def _price_marker(price: float) -> str:
    price = float(price)
    return str(int(price)) if price.is_integer() else repr(price)


def cart_item_id(
    product_id: int,
    variant: Optional[Dict[str, str]] = None,
    subscription: Optional[Subscription] = None,
    negotiated_price: Optional[float] = None,
) -> str:
    """Identity of a cart line: product + variant choice + subscription + negotiated price."""
    if variant:
        variant_part = "-".join(f"{k},{v}" for k, v in sorted(variant.items()))
    else:
        variant_part = "none"
    sub_part = f"-{subscription.frequency}" if subscription else ""
    price_part = f"-neg{_price_marker(negotiated_price)}" if negotiated_price is not None else ""
    return f"{product_id}-{variant_part}{sub_part}{price_part}"


class Cart:
    """In-memory line items for one browsing session."""

    def __init__(self, items: Optional[List[CartItem]] = None):
        self.items: List[CartItem] = list(items or [])

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self) -> Iterator[CartItem]:
        return iter(self.items)

    def find(self, item_id: str) -> Optional[CartItem]:
        return next((it for it in self.items if it.cart_item_id == item_id), None)

    def add(
        self,
        product: Product,
        quantity: int = 1,
        variant: Optional[Dict[str, str]] = None,
        subscription: Optional[Subscription] = None,
        negotiated_price: Optional[float] = None,
    ) -> CartItem:
        if quantity < 1:
            raise ValueError("quantity must be at least 1")
        item_id = cart_item_id(product.id, variant, subscription, negotiated_price)
        existing = self.find(item_id)
        if existing:
            existing.quantity += quantity
            return existing
        item = CartItem(
            product=product.model_copy(deep=True),
            quantity=quantity,
            variant=dict(variant) if variant else None,
            cart_item_id=item_id,
            subscription=subscription,
            negotiated_price=negotiated_price,
        )
        self.items.append(item)
        return item

    def remove(self, item_id: str) -> None:
        self.items = [it for it in self.items if it.cart_item_id != item_id]

    def update_quantity(self, item_id: str, quantity: int) -> None:
        if quantity <= 0:
            self.remove(item_id)
            return
        item = self.find(item_id)
        if item:
            item.quantity = quantity

    def total(self) -> float:
        return sum(it.line_total for it in self.items)

    def snapshot(self) -> List[CartItem]:
        return [it.model_copy(deep=True) for it in self.items]

    def clear(self) -> None:
        self.items = []

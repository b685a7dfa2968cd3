import logging
import time
from typing import Iterable, List, Optional

from pydantic import ValidationError

from database import KeyValueStore, StorageError, StorageKeys, read_json
from schemas import ErrorCode, Product, Result, Review, SortOrder

logger = logging.getLogger(__name__)


def average_rating(reviews: Iterable[Review]) -> float:
    ratings = [r.rating for r in reviews]
    if not ratings:
        return 0
    return round(sum(ratings) / len(ratings), 1)


def _in_price_range(price: float, price_range: str) -> bool:
    if not price_range or price_range == "all":
        return True
    if price_range.endswith("+"):
        return price >= float(price_range[:-1])
    low, high = (float(x) for x in price_range.split("-"))
    return low <= price <= high


def filter_products(
    products: List[Product],
    category: str = "All",
    search: str = "",
    price_range: str = "all",
    min_rating: float = 0,
    sort: SortOrder = SortOrder.DEFAULT,
) -> List[Product]:
    term = (search or "").lower()
    res = [
        p for p in products
        if (category == "All" or p.category == category)
        and term in p.name.lower()
        and _in_price_range(p.price, price_range)
        and p.rating >= min_rating
    ]
    if sort == SortOrder.PRICE_ASC:
        res.sort(key=lambda p: p.price)
    elif sort == SortOrder.PRICE_DESC:
        res.sort(key=lambda p: p.price, reverse=True)
    return res


class Catalog:
    def __init__(self, store: KeyValueStore):
        self.store = store
        try:
            self.products: List[Product] = [
                Product(**p) for p in read_json(store, StorageKeys.PRODUCTS, [])
            ]
        except (TypeError, ValidationError):
            logger.exception("Malformed product records in storage, starting with an empty catalog")
            self.products = []

    def get(self, product_id: int) -> Optional[Product]:
        return next((p for p in self.products if p.id == product_id), None)

    def products_for_seller(self, seller_id: str) -> List[Product]:
        return [p for p in self.products if p.seller_id == seller_id]

    def next_product_id(self) -> int:
        candidate = int(time.time() * 1000)
        taken = {p.id for p in self.products}
        while candidate in taken:
            candidate += 1
        return candidate

    def persist(self, products: List[Product]) -> None:
        """Write `products` and adopt them as the in-memory catalog. Raises StorageError."""
        self.store.set(StorageKeys.PRODUCTS, [p.model_dump(mode="json") for p in products])
        self.products = products

    def _save(self, products: List[Product], action: str) -> Result:
        try:
            self.persist(products)
        except StorageError:
            logger.exception("Failed to %s in storage", action)
            return Result.fail(ErrorCode.CATALOG_STORAGE_ERROR)
        return Result.ok()

    def add_product(self, product: Product) -> Result:
        res = self._save(self.products + [product], "save product")
        if res.success:
            res.value = product
        return res

    def update_product(self, product: Product) -> Result:
        if self.get(product.id) is None:
            return Result.fail(ErrorCode.PRODUCT_NOT_FOUND)
        updated = [product if p.id == product.id else p for p in self.products]
        res = self._save(updated, "update product")
        if res.success:
            res.value = product
        return res

    def add_review(self, product_id: int, review: Review) -> Result:
        product = self.get(product_id)
        if product is None:
            return Result.fail(ErrorCode.PRODUCT_NOT_FOUND)
        reviews = product.reviews + [review]
        updated = product.model_copy(update={
            "reviews": reviews,
            "rating": average_rating(reviews),
            "reviews_count": len(reviews),
        })
        return self.update_product(updated)

    def with_vendor(self, seller_id: str, store_name: str) -> List[Product]:
        return [
            p.model_copy(update={"vendor": store_name}) if p.seller_id == seller_id else p
            for p in self.products
        ]

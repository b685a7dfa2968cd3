"""
Seller and buyer accounts: signup, login and profile updates.

Account lists are always re-read from the store, so a login sees accounts
created by any other session. Passwords are compared verbatim.
"""
import logging
import re
import time
from typing import Any, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from catalog import Catalog
from database import KeyValueStore, StorageError, StorageKeys
from schemas import Buyer, ErrorCode, Loyalty, Result, Seller

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
SYMBOL_RE = re.compile(r"[!@#$%^&*(),.?\":{}|<>]")
HISTORY_LIMIT = 20

M = TypeVar("M", bound=BaseModel)


def validate_email(email: str) -> bool:
    return bool(EMAIL_RE.match(email or ""))


def validate_password(password: str) -> bool:
    password = password or ""
    return len(password) >= 8 and any(c.isdigit() for c in password) and bool(SYMBOL_RE.search(password))


def record_view(history: List[int], product_id: int) -> List[int]:
    """Most-recent-first, deduplicated, capped browsing history."""
    return list(dict.fromkeys([product_id, *history]))[:HISTORY_LIMIT]


def toggled(wishlist: List[int], product_id: int) -> List[int]:
    if product_id in wishlist:
        return [pid for pid in wishlist if pid != product_id]
    return wishlist + [product_id]


def _new_id(prefix: str, accounts: List[BaseModel]) -> str:
    stamp = int(time.time() * 1000)
    taken = {a.id for a in accounts}
    while f"{prefix}-{stamp}" in taken:
        stamp += 1
    return f"{prefix}-{stamp}"


def _credentials_error(email: str, password: str, confirm: str) -> Optional[str]:
    if not validate_email(email):
        return ErrorCode.INVALID_EMAIL
    if not validate_password(password):
        return ErrorCode.PASSWORD_WEAK
    if password != confirm:
        return ErrorCode.PASSWORD_MISMATCH
    return None


class Accounts:
    def __init__(self, store: KeyValueStore):
        self.store = store

    # -----------------
    # storage helpers
    # -----------------
    def _load(self, key: str, model: Type[M]) -> List[M]:
        raw = self.store.get(key) or []
        try:
            return [model(**item) for item in raw]
        except (TypeError, ValidationError) as e:
            raise StorageError(f"Malformed records under '{key}': {e}") from e

    def _save(self, key: str, records: List[BaseModel]) -> None:
        self.store.set(key, [r.model_dump(mode="json") for r in records])

    def sellers(self) -> List[Seller]:
        try:
            return self._load(StorageKeys.SELLERS, Seller)
        except StorageError:
            logger.exception("Failed to read sellers")
            return []

    def buyers(self) -> List[Buyer]:
        try:
            return self._load(StorageKeys.BUYERS, Buyer)
        except StorageError:
            logger.exception("Failed to read buyers")
            return []

    def find_seller(self, seller_id: str) -> Optional[Seller]:
        return next((s for s in self.sellers() if s.id == seller_id), None)

    def find_buyer(self, buyer_id: str) -> Optional[Buyer]:
        return next((b for b in self.buyers() if b.id == buyer_id), None)

    # -----------------
    # signup / login
    # -----------------
    def signup_seller(self, email: str, password: str, confirm_password: str, store_name: str) -> Result:
        if not (store_name or "").strip():
            return Result.fail(ErrorCode.STORE_NAME_REQUIRED)
        email = (email or "").strip().lower()
        error = _credentials_error(email, password, confirm_password)
        if error:
            return Result.fail(error)
        try:
            sellers = self._load(StorageKeys.SELLERS, Seller)
            if any(s.email.lower() == email for s in sellers):
                return Result.fail(ErrorCode.EMAIL_EXISTS)
            seller = Seller(
                id=_new_id("seller", sellers),
                email=email,
                password=password,
                store_name=store_name.strip(),
            )
            self._save(StorageKeys.SELLERS, sellers + [seller])
        except StorageError:
            logger.exception("Failed to create seller account")
            return Result.fail(ErrorCode.AUTH_STORAGE_ERROR)
        logger.info("Created seller account %s", seller.id)
        return Result.ok(seller)

    def signup_buyer(
        self, email: str, password: str, confirm_password: str, full_name: str, phone_number: str
    ) -> Result:
        if not (full_name or "").strip() or not (phone_number or "").strip():
            return Result.fail(ErrorCode.FILL_ALL_FIELDS)
        email = (email or "").strip().lower()
        error = _credentials_error(email, password, confirm_password)
        if error:
            return Result.fail(error)
        try:
            buyers = self._load(StorageKeys.BUYERS, Buyer)
            if any(b.email.lower() == email for b in buyers):
                return Result.fail(ErrorCode.EMAIL_EXISTS)
            buyer = Buyer(
                id=_new_id("buyer", buyers),
                email=email,
                password=password,
                full_name=full_name.strip(),
                phone_number=phone_number.strip(),
                loyalty=Loyalty(),
            )
            self._save(StorageKeys.BUYERS, buyers + [buyer])
        except StorageError:
            logger.exception("Failed to create buyer account")
            return Result.fail(ErrorCode.AUTH_STORAGE_ERROR)
        logger.info("Created buyer account %s", buyer.id)
        return Result.ok(buyer)

    def _login(self, key: str, model: Type[M], email: str, password: str) -> Result:
        try:
            accounts = self._load(key, model)
        except StorageError:
            logger.exception("Failed to read accounts for login")
            return Result.fail(ErrorCode.AUTH_STORAGE_ERROR)
        wanted = (email or "").strip().lower()
        account = next((a for a in accounts if a.email.lower() == wanted), None)
        if account is None or account.password != password:
            return Result.fail(ErrorCode.LOGIN_ERROR)
        return Result.ok(account)

    def login_seller(self, email: str, password: str) -> Result:
        return self._login(StorageKeys.SELLERS, Seller, email, password)

    def login_buyer(self, email: str, password: str) -> Result:
        return self._login(StorageKeys.BUYERS, Buyer, email, password)

    # -----------------
    # profile updates
    # -----------------
    def _merge(self, key: str, model: Type[M], current: M, changes: Dict[str, Any]):
        """Load the account list, check email uniqueness and merge `changes`.

        Returns (accounts, updated) or an error token string.
        """
        accounts = self._load(key, model)
        changes = {k: v for k, v in changes.items() if k != "id"}
        new_email = changes.get("email")
        if new_email:
            new_email = new_email.strip().lower()
            changes["email"] = new_email
            if new_email != current.email.lower() and any(
                a.email.lower() == new_email and a.id != current.id for a in accounts
            ):
                return ErrorCode.EMAIL_IN_USE
        updated = model(**{**current.model_dump(), **changes})
        return [updated if a.id == current.id else a for a in accounts], updated

    def update_seller_profile(
        self, seller: Optional[Seller], changes: Dict[str, Any], catalog: Catalog
    ) -> Result:
        """
        Merge `changes` into the stored seller.

        A store rename is cascaded to the vendor field of every product the seller
        owns. If the catalog cannot be written the previous seller list is put
        back and the update reports a storage error.
        """
        if seller is None:
            return Result.fail(ErrorCode.NOT_LOGGED_IN)
        try:
            previous = self.store.get(StorageKeys.SELLERS)
            merged = self._merge(StorageKeys.SELLERS, Seller, seller, changes)
            if isinstance(merged, str):
                return Result.fail(merged)
            sellers, updated = merged
            self._save(StorageKeys.SELLERS, sellers)
        except (StorageError, ValidationError):
            logger.exception("Failed to update seller profile")
            return Result.fail(ErrorCode.AUTH_STORAGE_ERROR)

        if updated.store_name != seller.store_name:
            try:
                catalog.persist(catalog.with_vendor(seller.id, updated.store_name))
            except StorageError:
                logger.exception("Failed to cascade store name to products, restoring seller")
                try:
                    self.store.set(StorageKeys.SELLERS, previous or [])
                except StorageError:
                    logger.exception("Failed to restore seller list")
                return Result.fail(ErrorCode.AUTH_STORAGE_ERROR)
        return Result.ok(updated)

    def update_buyer_profile(self, buyer: Optional[Buyer], changes: Dict[str, Any]) -> Result:
        if buyer is None:
            return Result.fail(ErrorCode.NOT_LOGGED_IN)
        try:
            merged = self._merge(StorageKeys.BUYERS, Buyer, buyer, changes)
            if isinstance(merged, str):
                return Result.fail(merged)
            buyers, updated = merged
            self._save(StorageKeys.BUYERS, buyers)
        except (StorageError, ValidationError):
            logger.exception("Failed to update buyer profile")
            return Result.fail(ErrorCode.AUTH_STORAGE_ERROR)
        return Result.ok(updated)

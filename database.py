"""
Key/value persistence for the storefront.

Two scopes are used:
- durable: products, sellers, buyers, orders, per-seller unseen order ids, theme
- session: the logged-in seller / buyer ids for one browsing session

Values are JSON documents. Every read returns a freshly decoded copy, so callers
never share mutable state with the store.
"""
import json
import logging
import os
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from pymongo import MongoClient
from pymongo.errors import PyMongoError

load_dotenv()

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")
STORAGE_COLLECTION = os.getenv("STORAGE_COLLECTION", "storage")

db = None
if DATABASE_URL and DATABASE_NAME:
    try:
        _client = MongoClient(DATABASE_URL)
        db = _client[DATABASE_NAME]
    except PyMongoError:
        logger.exception("Could not connect to MongoDB at DATABASE_URL")
        db = None


class StorageKeys:
    PRODUCTS = "products"
    SELLERS = "sellers"
    BUYERS = "buyers"
    ORDERS = "orders"
    THEME = "theme"

    # session scope
    SELLER_ID = "seller_id"
    BUYER_ID = "buyer_id"

    @staticmethod
    def unseen_orders(seller_id: str) -> str:
        return f"unseen_orders_{seller_id}"


class StorageError(Exception):
    """Raised when a read or write against a store fails."""


def _encode(key: str, value: Any) -> str:
    try:
        return json.dumps(value)
    except (TypeError, ValueError) as e:
        raise StorageError(f"Cannot serialize value for '{key}': {e}") from e


def _decode(key: str, raw: str) -> Any:
    try:
        return json.loads(raw)
    except (TypeError, ValueError) as e:
        raise StorageError(f"Corrupt value stored under '{key}': {e}") from e


class KeyValueStore:
    def get(self, key: str) -> Optional[Any]:
        raise NotImplementedError

    def set(self, key: str, value: Any) -> None:
        raise NotImplementedError

    def remove(self, key: str) -> None:
        raise NotImplementedError


class MemoryStore(KeyValueStore):
    """In-process store. `quota` caps the total serialized size in characters."""

    def __init__(self, quota: Optional[int] = None):
        self.quota = quota
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[Any]:
        raw = self._data.get(key)
        if raw is None:
            return None
        return _decode(key, raw)

    def set(self, key: str, value: Any) -> None:
        raw = _encode(key, value)
        if self.quota is not None:
            used = sum(len(v) for k, v in self._data.items() if k != key)
            if used + len(raw) > self.quota:
                raise StorageError(f"Quota exceeded while writing '{key}'")
        self._data[key] = raw

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self):
        return list(self._data.keys())


class MongoStore(KeyValueStore):
    """Each key is one document: {"_id": key, "value": "<json>"}."""

    def __init__(self, collection):
        self.collection = collection

    def get(self, key: str) -> Optional[Any]:
        try:
            doc = self.collection.find_one({"_id": key})
        except PyMongoError as e:
            raise StorageError(str(e)) from e
        if not doc:
            return None
        return _decode(key, doc.get("value"))

    def set(self, key: str, value: Any) -> None:
        raw = _encode(key, value)
        try:
            self.collection.replace_one({"_id": key}, {"_id": key, "value": raw}, upsert=True)
        except PyMongoError as e:
            raise StorageError(str(e)) from e

    def remove(self, key: str) -> None:
        try:
            self.collection.delete_one({"_id": key})
        except PyMongoError as e:
            raise StorageError(str(e)) from e


def read_json(store: KeyValueStore, key: str, default: Any) -> Any:
    """Read `key`, falling back to `default` when missing or unreadable."""
    try:
        value = store.get(key)
    except StorageError:
        logger.exception("Failed to read '%s' from storage", key)
        return default
    return default if value is None else value


_fallback_store: Optional[MemoryStore] = None


def durable_store() -> KeyValueStore:
    global _fallback_store
    if db is not None:
        return MongoStore(db[STORAGE_COLLECTION])
    if _fallback_store is None:
        logger.warning("DATABASE_URL/DATABASE_NAME not set, durable data is kept in memory")
        _fallback_store = MemoryStore()
    return _fallback_store

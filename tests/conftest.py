from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

import ai
from database import MemoryStore, StorageError
from schemas import BuyerInfo, Product
from storefront import Services, Storefront


class FailingStore(MemoryStore):
    """MemoryStore whose writes to selected keys fail."""

    def __init__(self):
        super().__init__()
        self.fail_writes = set()
        self.fail_reads = set()

    def get(self, key):
        if key in self.fail_reads:
            raise StorageError(f"read of {key} disabled")
        return super().get(key)

    def set(self, key, value):
        if key in self.fail_writes:
            raise StorageError(f"write of {key} disabled")
        super().set(key, value)


class FakeModels:
    def __init__(self, replies):
        self.replies = replies
        self.calls = []

    def generate_content(self, model, contents, config=None):
        self.calls.append({"model": model, "contents": contents, "config": config})
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return SimpleNamespace(text=reply)


class FakeChat:
    def __init__(self, reply):
        self.reply = reply
        self.sent = []

    def send_message(self, message):
        self.sent.append(message)
        if isinstance(self.reply, Exception):
            raise self.reply
        return SimpleNamespace(text=self.reply)


class FakeChats:
    def __init__(self, reply):
        self.reply = reply
        self.created = []

    def create(self, model, config=None, history=None):
        chat = FakeChat(self.reply)
        self.created.append({"model": model, "config": config, "history": history, "chat": chat})
        return chat


class FakeGenAI:
    def __init__(self, replies=None, chat_reply=""):
        self.models = FakeModels(list(replies or []))
        self.chats = FakeChats(chat_reply)


@pytest.fixture(autouse=True)
def no_ai(monkeypatch):
    monkeypatch.setattr(ai, "API_KEY", None)
    ai.set_client(None)
    yield
    ai.set_client(None)


@pytest.fixture
def fake_ai():
    def install(replies=None, chat_reply=""):
        client = FakeGenAI(replies, chat_reply)
        ai.set_client(client)
        return client
    return install


@pytest.fixture
def store():
    return FailingStore()


@pytest.fixture
def services(store):
    return Services(store)


@pytest.fixture
def storefront(services):
    return Storefront(services, MemoryStore())


@pytest.fixture
def make_product():
    counter = {"id": 100}

    def factory(**overrides):
        counter["id"] += 1
        data = {
            "id": counter["id"],
            "name": f"Gadget {counter['id']}",
            "description": "A useful gadget",
            "price": 100.0,
            "stock": 10,
            "category": "Electronics",
            "images": ["https://example.com/gadget.jpg"],
            "vendor": "Volt Shop",
            "seller_id": "seller-1",
        }
        data.update(overrides)
        return Product(**data)
    return factory


@pytest.fixture
def buyer_info():
    return BuyerInfo(full_name="Ada Kamara", phone_number="+23276000000", delivery_address="12 Wilkinson Rd, Freetown")


@pytest.fixture
def client(services):
    from main import app, get_services

    app.dependency_overrides[get_services] = lambda: services
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()

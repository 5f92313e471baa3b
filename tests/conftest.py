import time
from types import SimpleNamespace

import mongomock
import pytest
from fastapi.testclient import TestClient

import push
from database import DocumentStore
from events import EventBus
from main import create_app
from push import PushGateway


class FakeMessaging:
    """Stands in for firebase_admin.messaging send calls and records every message"""

    def __init__(self):
        self.sent = []
        self.failing_tokens = set()

    def send(self, message, app=None):
        self.sent.append(message)
        if message.token in self.failing_tokens:
            raise push.FirebaseError("invalid-argument", "registration token is not valid")
        return f"projects/test/messages/{len(self.sent)}"

    def send_each(self, messages, app=None):
        responses = []
        for message in messages:
            self.sent.append(message)
            if message.token in self.failing_tokens:
                responses.append(SimpleNamespace(success=False, exception="not registered", message_id=None))
            else:
                responses.append(SimpleNamespace(success=True, exception=None,
                                                 message_id=f"projects/test/messages/{len(self.sent)}"))
        return SimpleNamespace(responses=responses)

    @property
    def tokens(self):
        return [m.token for m in self.sent]


class FakeStream:
    """A change stream that replays a fixed list of change events"""

    def __init__(self, changes):
        self.changes = list(changes)
        self.closed = False

    @property
    def alive(self):
        return not self.closed

    def try_next(self):
        if self.changes:
            return self.changes.pop(0)
        time.sleep(0.01)
        return None

    def close(self):
        self.closed = True


@pytest.fixture
def mongo_db():
    return mongomock.MongoClient()["campus_market_test"]


@pytest.fixture
def store(mongo_db):
    # small batches so the batched delete path runs more than once
    return DocumentStore(mongo_db, delete_batch_size=2)


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def fake_messaging(monkeypatch):
    fake = FakeMessaging()
    monkeypatch.setattr(push.messaging, "send", fake.send)
    monkeypatch.setattr(push.messaging, "send_each", fake.send_each)
    return fake


@pytest.fixture
def gateway(fake_messaging):
    return PushGateway(app=object())


@pytest.fixture
def client(store, gateway, bus):
    app = create_app(store=store, gateway=gateway, bus=bus, from_env=False)
    return TestClient(app)


def seed_product(store, product_id="P123", owner="alice", **extra):
    data = {"_id": product_id, "owner_id": owner, "title": "Desk lamp", "price": 12.5,
            "status": "active", "is_sold": False}
    data.update(extra)
    store.create_document("products", data)
    return product_id


@pytest.fixture
def marketplace(store):
    """
    Product P123 owned by alice with 2 images, 1 favorite by bob, 1 review,
    3 messages and a notification about it, next to an unrelated product P999
    with its own dependents.
    """
    seed_product(store, "P123", "alice")
    seed_product(store, "P999", "carol", title="Bike")

    for url in ("a.jpg", "b.jpg"):
        store.create_document("product_images", {"product_id": "P123", "url": url, "is_primary": url == "a.jpg"})
    store.create_document("product_images", {"product_id": "P999", "url": "bike.jpg", "is_primary": True})

    store.create_document("user_favorites", {"user_id": "bob", "item_id": "P123", "item_type": "product"})
    store.create_document("user_favorites", {"user_id": "bob", "item_id": "P999", "item_type": "product"})
    # same id under another listing type must survive
    store.create_document("user_favorites", {"user_id": "bob", "item_id": "P123", "item_type": "service"})

    store.create_document("reviews", {"listing_id": "P123", "listing_type": "product", "reviewer_id": "bob",
                                      "reviewee_id": "alice", "rating": 5})
    store.create_document("reviews", {"listing_id": "P999", "listing_type": "product", "reviewer_id": "bob",
                                      "reviewee_id": "carol", "rating": 4})

    for i in range(3):
        store.create_document("messages", {"listing_id": "P123", "listing_type": "product",
                                           "conversation_id": "c1", "sender_id": "bob",
                                           "receiver_id": "alice", "content": f"hi {i}"})
    store.create_document("messages", {"listing_id": "P999", "listing_type": "product",
                                       "conversation_id": "c2", "sender_id": "bob",
                                       "receiver_id": "carol", "content": "still available?"})

    store.create_document("notifications", {"user_id": "alice", "title": "New favorite", "read": False,
                                            "extra_data": {"listing_id": "P123"}})
    store.create_document("notifications", {"user_id": "carol", "title": "New favorite", "read": False,
                                            "extra_data": {"listing_id": "P999"}})
    return store

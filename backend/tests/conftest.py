import os
import tempfile
from pathlib import Path

# settings are read at import time: point the engine at a throwaway SQLite file first
_TMP = Path(tempfile.mkdtemp(prefix="stockroom-tests-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP / 'test.db'}"
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")

import pytest  # noqa: E402
from sqlmodel import SQLModel  # noqa: E402

import stockroom.models  # noqa: E402,F401
from stockroom.core import redis_client  # noqa: E402
from stockroom.core.context import Actor  # noqa: E402
from stockroom.core.database import engine  # noqa: E402
from stockroom.services import catalog, low_stock, stock_moves  # noqa: E402
from stockroom.services.events import bus  # noqa: E402


class FakeRedis:
    """In-memory stand-in for the handful of Redis commands the engine uses."""

    def __init__(self):
        self.store = {}
        self.ttls = {}
        self.published = []

    def get(self, key):
        return self.store.get(key)

    def setex(self, key, ttl, value):
        self.store[key] = value
        self.ttls[key] = ttl
        return True

    def set(self, key, value, nx=False, px=None):
        if nx and key in self.store:
            return None
        self.store[key] = value
        if px is not None:
            self.ttls[key] = px / 1000.0
        return True

    def delete(self, *keys):
        removed = 0
        for key in keys:
            removed += int(self.store.pop(key, None) is not None)
            self.ttls.pop(key, None)
        return removed

    def publish(self, channel, message):
        self.published.append((channel, message))
        return 1


class FakeTask:
    def __init__(self):
        self.calls = []

    def apply_async(self, args=None, countdown=None, **kwargs):
        self.calls.append({"args": args, "countdown": countdown, **kwargs})


@pytest.fixture(autouse=True)
def fresh_db():
    SQLModel.metadata.drop_all(engine)
    SQLModel.metadata.create_all(engine)
    bus.drain()
    bus.clear()
    yield
    bus.drain()
    bus.clear()


@pytest.fixture(autouse=True)
def fake_redis():
    client = FakeRedis()
    redis_client.set_redis(client)
    yield client
    # deliver queued events while the fake is still installed
    bus.drain()
    redis_client.set_redis(None)


@pytest.fixture
def scan_task(monkeypatch):
    task = FakeTask()
    monkeypatch.setattr(low_stock, "low_stock_scan", task)
    return task


@pytest.fixture
def actor():
    org = catalog.bootstrap_organization("Acme Repairs")
    return Actor(organization_id=org["id"], user_id=7)


@pytest.fixture
def other_actor():
    org = catalog.bootstrap_organization("Globex Service")
    return Actor(organization_id=org["id"], user_id=8)


@pytest.fixture
def make_bin():
    def _make(actor, code):
        return catalog.create_bin(actor, code)["id"]

    return _make


@pytest.fixture
def make_product():
    def _make(actor, sku, stock=None, **fields):
        """Create a product and receive ``stock`` ({bin_id: qty}) into it."""
        product = catalog.create_product(actor, sku, fields.pop("name", sku.title()), **fields)
        for bin_id, qty in (stock or {}).items():
            stock_moves.move(actor, product["id"], qty, to_bin_id=bin_id, reason="receive")
        return product["id"]

    return _make

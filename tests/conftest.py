import pytest
from fastapi.testclient import TestClient

import catalog
from auth import create_access_token, register_admin
from cache import LocalCache
from config import DEFAULT_STORE_ID, Settings, get_settings
from database import MemoryStore, ResilientStore, get_store
from main import app
from notifications import get_mailer
from payments import get_gateway
from schemas import Product
from seed import seed_default_store

WEBHOOK_SECRET = "whsec_test"


class FlakyStore(MemoryStore):
    """Memory backend that raises on every call while `down` is set."""

    name = "flaky"

    def __init__(self, down: bool = True):
        super().__init__()
        self.down = down

    def _check(self):
        if self.down:
            raise ConnectionError("remote unreachable")

    def get_documents(self, collection, filter_dict=None, limit=None):
        self._check()
        return super().get_documents(collection, filter_dict, limit)

    def get_document(self, collection, doc_id):
        self._check()
        return super().get_document(collection, doc_id)

    def create_document(self, collection, data, doc_id=None):
        self._check()
        return super().create_document(collection, data, doc_id)

    def update_document(self, collection, doc_id, patch):
        self._check()
        return super().update_document(collection, doc_id, patch)

    def delete_document(self, collection, doc_id):
        self._check()
        return super().delete_document(collection, doc_id)

    def increment_field(self, collection, doc_id, field, delta):
        self._check()
        return super().increment_field(collection, doc_id, field, delta)

    def ping(self):
        self._check()
        return super().ping()


class FakeGateway:
    def __init__(self):
        self.links = []
        self.checks = []
        self.paid = True
        self.link_error = None

    def create_checkout_link(self, payload):
        self.links.append(payload)
        if self.link_error is not None:
            raise self.link_error
        return f"https://checkout.infinitepay.io/{payload['handle']}/{payload['order_nsu']}"

    def check_payment(self, payload):
        self.checks.append(payload)
        return 200, {"success": True, "paid": self.paid}


class RecordingMailer:
    def __init__(self):
        self.sent = []

    def send(self, to, subject, body):
        self.sent.append({"to": to, "subject": subject, "html": body})
        return {"id": f"email_{len(self.sent)}"}


@pytest.fixture
def settings():
    return Settings(_env_file=None, SECRET_KEY="test-secret", INFINITEPAY_WEBHOOK_SECRET=WEBHOOK_SECRET, STORE_BACKEND="memory")


@pytest.fixture
def store(tmp_path):
    return ResilientStore(MemoryStore(), LocalCache(tmp_path / "cache"))


@pytest.fixture
def flaky(tmp_path):
    remote = FlakyStore()
    return remote, ResilientStore(remote, LocalCache(tmp_path / "flaky-cache"))


@pytest.fixture
def seeded(store):
    seed_default_store(store, DEFAULT_STORE_ID)
    return store


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def client(seeded, gateway, mailer, settings):
    app.dependency_overrides[get_store] = lambda: seeded
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_mailer] = lambda: mailer
    app.dependency_overrides[get_settings] = lambda: settings
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def make_product(store, store_id=DEFAULT_STORE_ID, **overrides):
    data = {"name": "Terço de Madeira", "price": 100.0, "stock": 10, "category": "Terços"}
    data.update(overrides)
    return catalog.create_product(store, Product(**data).model_dump(), store_id)


def admin_headers(store, settings, store_id=DEFAULT_STORE_ID, role="owner", email="dono@loja.com"):
    admin = register_admin(store, store_id, email, "segredo123", role)
    return {"Authorization": f"Bearer {create_access_token(admin, settings)}"}

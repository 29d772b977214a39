import os
import tempfile
import uuid

_DB_DIR = tempfile.mkdtemp(prefix="storefront-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'storefront.db')}"
os.environ["CELERY_TASK_ALWAYS_EAGER"] = "1"

from decimal import Decimal  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from storefront.api.deps import get_lock_service  # noqa: E402
from storefront.data.database import Base, SessionLocal, engine  # noqa: E402
from storefront.data.models import ProductModel  # noqa: E402
from storefront.main import app  # noqa: E402


class InMemoryLockService:
    """Zamiennik LockService bez Redisa, ta sama semantyka NX + compare-and-delete."""

    def __init__(self):
        self.locks = {}

    @staticmethod
    def new_token():
        return uuid.uuid4().hex

    def acquire_checkout_lock(self, user_id, token, ttl):
        key = f"checkout:{user_id}:lock"
        if key in self.locks:
            return False
        self.locks[key] = token
        return True

    def release_checkout_lock(self, user_id, token):
        key = f"checkout:{user_id}:lock"
        if self.locks.get(key) == token:
            del self.locks[key]
            return True
        return False


@pytest.fixture(autouse=True)
def database():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def lock_service():
    svc = InMemoryLockService()
    app.dependency_overrides[get_lock_service] = lambda: svc
    yield svc
    app.dependency_overrides.pop(get_lock_service, None)


@pytest.fixture
def client(lock_service):
    return TestClient(app)


@pytest.fixture
def products(db):
    rows = [
        ProductModel(id="P1", name="Keyboard", price=Decimal("199.99"), stock=5),
        ProductModel(id="P2", name="Mouse", price=Decimal("49.50"), stock=20),
        ProductModel(id="P3", name="Monitor", price=Decimal("899.00"), stock=3),
    ]
    db.add_all(rows)
    db.commit()
    return {p.id: p for p in rows}


def auth(user_id, role=None):
    headers = {"X-User-Id": user_id}
    if role:
        headers["X-User-Role"] = role
    return headers


def stock_of(product_id):
    session = SessionLocal()
    try:
        return session.get(ProductModel, product_id).stock
    finally:
        session.close()


def order_payload(user_id="u1", items=None, payment_method="credit_card", total_amount="449.98"):
    return {
        "user_id": user_id,
        "total_amount": total_amount,
        "shipping_details": {
            "first_name": "Jan",
            "last_name": "Kowalski",
            "email": "jan@example.com",
            "phone": "500600700",
            "address": "Dluga 1",
            "city": "Krakow",
            "postal_code": "30-001",
            "country": "PL",
        },
        "items": items if items is not None else [{"product_id": "P1", "quantity": 2}],
        "payment_method": payment_method,
    }

"""Shared pytest fixtures for the order service tests."""
import os

os.environ.setdefault("KAFKA_ENABLED", "false")

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional

import jwt
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from orderflow.core.config import settings
from orderflow.db import models
from orderflow.db.session import Base
from orderflow.domain import (
    AuthorizationContext,
    CustomerInfo,
    OrderItemRequest,
    PaymentInfo,
    PreferenceResult,
    Role,
    ShippingSnapshot,
)
from orderflow.gateway.client import PaymentGateway, PreferenceManifest
from orderflow.kafka.producer import EventPublisher
from orderflow.services.lifecycle import OrderLifecycle
from orderflow.services.payments import PaymentReconciler
from orderflow.services.storage import FileService, UploadedFile
from orderflow.store.inventory import SqlInventoryLedger
from orderflow.store.orders import SqlOrderStore

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64
PDF_BYTES = b"%PDF-1.4\n" + b"0" * 64
JPEG_BYTES = b"\xff\xd8\xff\xe0" + b"\x00" * 64

WEBHOOK_SECRET = "whsec-test"


class FrozenClock:
    """Callable clock the services accept in place of utcnow."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class InMemoryFileService(FileService):

    def __init__(self):
        self.saved: List[tuple] = []

    def save(self, file: UploadedFile, folder: str) -> str:
        self.saved.append((folder, file))
        return f"http://files.test/{folder}/{len(self.saved)}{file.extension}"


class FakeGateway(PaymentGateway):

    def __init__(self):
        self.payments: Dict[str, PaymentInfo] = {}
        self.manifests: List[PreferenceManifest] = []
        self.lookups: List[str] = []

    def add_payment(self, payment_id, status, external_reference, payment_type_id="credit_card"):
        self.payments[str(payment_id)] = PaymentInfo(
            id=str(payment_id),
            status=status,
            external_reference=None if external_reference is None else str(external_reference),
            payment_type_id=payment_type_id,
            transaction_amount=Decimal("100"),
        )

    def create_preference(self, manifest: PreferenceManifest) -> PreferenceResult:
        self.manifests.append(manifest)
        pref = f"pref-{len(self.manifests)}"
        return PreferenceResult(preference_id=pref, init_point=f"https://pay.test/{pref}")

    def get_payment(self, payment_id: str) -> PaymentInfo:
        self.lookups.append(payment_id)
        return self.payments[payment_id]


class RecordingPublisher(EventPublisher):

    def __init__(self):
        super().__init__(topic="order.events.test", enabled=False)
        self.events: List[dict] = []

    def emit(self, event: dict):
        self.events.append(event)

    def types(self) -> List[str]:
        return [e["type"] for e in self.events]


@pytest.fixture
def engine(tmp_path):
    # file-backed so worker threads share one database
    eng = create_engine(
        f"sqlite:///{tmp_path / 'orders.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


@pytest.fixture
def order_store(session_factory):
    return SqlOrderStore(session_factory)


@pytest.fixture
def inventory(session_factory):
    return SqlInventoryLedger(session_factory)


@pytest.fixture
def add_product(session_factory):
    def _add(name="Hammer", price="10.00", stock=10, active=True, deleted=False) -> int:
        db = session_factory()
        try:
            row = models.Product(name=name, price=Decimal(price), stock=stock, active=active, deleted=deleted,
                                 brand="Acme", model="X1")
            db.add(row)
            db.commit()
            return row.id
        finally:
            db.close()
    return _add


@pytest.fixture
def stock_of(session_factory):
    def _stock(product_id: int) -> int:
        db = session_factory()
        try:
            return db.get(models.Product, product_id).stock
        finally:
            db.close()
    return _stock


@pytest.fixture
def clock():
    return FrozenClock(datetime(2025, 8, 1, 12, 0, 0))


@pytest.fixture
def files():
    return InMemoryFileService()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def events():
    return RecordingPublisher()


@pytest.fixture
def lifecycle(order_store, inventory, files, events, clock):
    return OrderLifecycle(order_store, inventory, files, events, expiration=timedelta(hours=24), clock=clock)


@pytest.fixture
def reconciler(order_store, gateway, events, clock):
    return PaymentReconciler(order_store, gateway, webhook_secret=WEBHOOK_SECRET, events=events, clock=clock)


@pytest.fixture
def customer():
    return AuthorizationContext(user_id=7, email="buyer@example.com", role=Role.CUSTOMER, is_authenticated=True)


@pytest.fixture
def other_customer():
    return AuthorizationContext(user_id=8, email="other@example.com", role=Role.CUSTOMER, is_authenticated=True)


@pytest.fixture
def admin():
    return AuthorizationContext(user_id=1, email="admin@example.com", role=Role.ADMIN, is_authenticated=True)


@pytest.fixture
def customer_info():
    return CustomerInfo(
        customer_name="Ana Perez",
        customer_email="buyer@example.com",
        receiver_first_name="Ana",
        receiver_last_name="Perez",
        receiver_phone="+54 11 5555-1234",
        receiver_dni="30123456",
        shipping=ShippingSnapshot(street="Av. Siempre Viva", number="742", city="Springfield", province="BA"),
    )


@pytest.fixture
def place_order(lifecycle, customer, customer_info):
    """Create an order for ``customer`` with the given ``{product_id: qty}`` lines."""
    def _place(lines: Dict[int, int], ctx=None, payment_method="bank_transfer"):
        items = [OrderItemRequest(product_id=pid, quantity=qty) for pid, qty in lines.items()]
        return lifecycle.create_order(ctx or customer, customer_info, 1, items, payment_method)
    return _place


def make_token(user_id: Optional[int], email: str, role: str = "customer", token_type: str = "access") -> str:
    claims = {"sub": email, "role": role, "type": token_type}
    if user_id is not None:
        claims["uid"] = user_id
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}

from datetime import timedelta
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from conftest import PNG_BYTES, WEBHOOK_SECRET, bearer, make_token
from orderflow.api import deps
from orderflow.core.config import settings
from orderflow.core.errors import ExternalDependencyError
from orderflow.domain import AuthorizationContext, CustomerInfo, OrderItemRequest, OrderStatus
from orderflow.gateway.signature import compute_signature
from orderflow.main import app
from orderflow.services.lifecycle import OrderLifecycle
from orderflow.store.cart import CartReader

CUSTOMER = bearer(make_token(7, "buyer@example.com"))
OTHER = bearer(make_token(8, "other@example.com"))
ADMIN = bearer(make_token(1, "admin@example.com", role="admin"))

CHECKOUT = {
    "customer_name": "Ana Perez",
    "customer_email": "buyer@example.com",
    "shipping_address_id": 3,
    "receiver_first_name": "Ana",
    "receiver_last_name": "Perez",
    "receiver_phone": "1155551234",
    "receiver_dni": "30123456",
    "shipping": {"street": "Av. Siempre Viva", "number": "742", "city": "Springfield"},
}


@pytest.fixture
def redis_client():
    return MagicMock()


@pytest.fixture
def client(order_store, inventory, files, events, gateway, redis_client, monkeypatch):
    monkeypatch.setattr(settings, "GATEWAY_WEBHOOK_SECRET", WEBHOOK_SECRET)
    monkeypatch.setattr(settings, "CLEANUP_API_KEY", "cleanup-key")
    app.dependency_overrides[deps.get_order_store] = lambda: order_store
    app.dependency_overrides[deps.get_inventory] = lambda: inventory
    app.dependency_overrides[deps.get_file_service] = lambda: files
    app.dependency_overrides[deps.get_event_publisher] = lambda: events
    app.dependency_overrides[deps.get_gateway] = lambda: gateway
    app.dependency_overrides[deps.get_cart_reader] = lambda: CartReader(redis_client)
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def _create(client, product_id, qty=1, headers=CUSTOMER, **extra):
    body = dict(CHECKOUT, items=[{"product_id": product_id, "quantity": qty}], **extra)
    return client.post("/order/v1/orders", json=body, headers=headers)


def test_health_and_info(client):
    assert client.get("/health").json() == {"status": "ok"}
    assert client.get("/order/health").status_code == 200
    assert client.get("/v1/_info").json()["service"] == "order"


def test_create_and_read_order(client, add_product, stock_of):
    pid = add_product(price="15.00", stock=4)
    resp = _create(client, pid, qty=2)
    assert resp.status_code == 201
    body = resp.json()
    assert body["status"] == "pending_payment"
    assert body["status_description"] == "Awaiting payment"
    assert Decimal(str(body["total"])) == Decimal("30.00")
    assert body["items"][0]["quantity"] == 2
    assert stock_of(pid) == 2

    assert client.get(f"/order/v1/orders/{body['id']}", headers=CUSTOMER).status_code == 200
    assert client.get(f"/order/v1/orders/{body['id']}", headers=OTHER).status_code == 403
    assert client.get("/order/v1/orders/999", headers=ADMIN).status_code == 404


def test_create_errors_map_to_status_codes(client, add_product):
    pid = add_product(stock=1)
    resp = _create(client, pid, qty=5)
    assert resp.status_code == 400
    assert "Insufficient stock" in resp.json()["detail"]
    assert _create(client, pid, payment_method="cash").status_code == 400
    assert client.post("/order/v1/orders", json={"items": []}, headers=CUSTOMER).status_code == 422


def test_guest_checkout_is_allowed(client, add_product):
    resp = _create(client, add_product(stock=3), headers={})
    assert resp.status_code == 201
    assert resp.json()["user_id"] is None


def test_invalid_token_is_rejected(client, add_product):
    pid = add_product(stock=3)
    assert _create(client, pid, headers=bearer("not-a-jwt")).status_code == 401
    refresh = bearer(make_token(7, "buyer@example.com", token_type="refresh"))
    assert client.get("/order/v1/orders/my-orders", headers=refresh).status_code == 401


def test_checkout_from_cart(client, add_product, redis_client, stock_of):
    pid = add_product(stock=5)
    redis_client.hgetall.return_value = {str(pid): f'{{"product_id": {pid}, "qty": 2}}'}
    resp = client.post("/order/v1/orders/checkout", json=CHECKOUT, headers=CUSTOMER)
    assert resp.status_code == 201
    assert stock_of(pid) == 3
    redis_client.delete.assert_called_once_with("cart:buyer@example.com")

    redis_client.hgetall.return_value = {}
    assert client.post("/order/v1/orders/checkout", json=CHECKOUT, headers=CUSTOMER).status_code == 400
    assert client.post("/order/v1/orders/checkout", json=CHECKOUT).status_code == 401


def test_admin_listings_are_gated(client, add_product):
    _create(client, add_product(stock=3))
    assert client.get("/order/v1/orders").status_code == 401
    assert client.get("/order/v1/orders", headers=CUSTOMER).status_code == 403
    listed = client.get("/order/v1/orders", headers=ADMIN)
    assert listed.status_code == 200
    assert len(listed.json()) == 1
    assert client.get("/order/v1/orders/pending-review", headers=CUSTOMER).status_code == 403
    assert client.get("/order/v1/orders/status/shipped", headers=ADMIN).json() == []
    assert client.get("/order/v1/orders/status/lost", headers=ADMIN).status_code == 400
    assert len(client.get("/order/v1/orders/my-orders", headers=CUSTOMER).json()) == 1
    assert client.get("/order/v1/orders/my-orders", headers=OTHER).json() == []


def test_subject_only_token_owns_its_orders(client, add_product, stock_of):
    # access tokens from the auth service carry sub/role/type and no uid claim
    subject_only = bearer(make_token(None, "Buyer@Example.com"))
    stranger = bearer(make_token(None, "stranger@example.com"))
    pid = add_product(stock=3)

    created = _create(client, pid, headers=subject_only)
    assert created.status_code == 201
    order_id = created.json()["id"]

    assert client.get(f"/order/v1/orders/{order_id}", headers=subject_only).status_code == 200
    assert client.get(f"/order/v1/orders/{order_id}", headers=stranger).status_code == 403
    assert [o["id"] for o in client.get("/order/v1/orders/my-orders", headers=subject_only).json()] == [order_id]
    assert client.get("/order/v1/orders/my-orders", headers=stranger).json() == []

    assert client.delete(f"/order/v1/orders/{order_id}/cancel", headers=stranger).status_code == 403
    cancelled = client.delete(f"/order/v1/orders/{order_id}/cancel", headers=subject_only)
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "cancelled"
    assert stock_of(pid) == 3


def test_bank_transfer_flow_over_http(client, add_product):
    order_id = _create(client, add_product(stock=3)).json()["id"]

    upload = client.post(f"/order/v1/orders/{order_id}/payment-receipt", headers=CUSTOMER,
                         files={"receipt_file": ("transfer.png", PNG_BYTES, "image/png")})
    assert upload.status_code == 200
    assert upload.json()["status"] == "payment_submitted"

    receipt = client.get(f"/order/v1/orders/{order_id}/payment-receipt", headers=CUSTOMER)
    assert receipt.json()["receiptUrl"].startswith("http://files.test/receipts/")

    pending = client.get("/order/v1/orders/pending-review", headers=ADMIN).json()
    assert [o["id"] for o in pending] == [order_id]

    assert client.put(f"/order/v1/orders/{order_id}/approve-payment", json={}, headers=CUSTOMER).status_code == 403
    approved = client.put(f"/order/v1/orders/{order_id}/approve-payment", json={"admin_notes": "ok"}, headers=ADMIN)
    assert approved.json()["status"] == "payment_approved"

    early = client.put(f"/order/v1/orders/{order_id}/mark-delivered", json={}, headers=ADMIN)
    assert early.status_code == 409

    shipped = client.put(f"/order/v1/orders/{order_id}/mark-shipped", headers=ADMIN,
                         json={"tracking_number": "TRK-9", "shipping_provider": "Andreani"})
    assert shipped.json()["tracking_number"] == "TRK-9"
    delivered = client.put(f"/order/v1/orders/{order_id}/mark-delivered", json={}, headers=ADMIN)
    assert delivered.json()["status"] == "delivered"


def test_oversized_and_invalid_receipts(client, add_product, monkeypatch):
    order_id = _create(client, add_product(stock=3)).json()["id"]
    bad = client.post(f"/order/v1/orders/{order_id}/payment-receipt", headers=CUSTOMER,
                      files={"receipt_file": ("notes.txt", b"hello world", "text/plain")})
    assert bad.status_code == 400

    monkeypatch.setattr(settings, "RECEIPT_MAX_BYTES", 16)
    big = client.post(f"/order/v1/orders/{order_id}/payment-receipt", headers=CUSTOMER,
                      files={"receipt_file": ("big.png", PNG_BYTES, "image/png")})
    assert big.status_code == 400


def test_cancel_and_status_override(client, add_product, stock_of):
    pid = add_product(stock=3)
    order_id = _create(client, pid, qty=2).json()["id"]

    assert client.delete(f"/order/v1/orders/{order_id}/cancel", headers=OTHER).status_code == 403
    cancelled = client.delete(f"/order/v1/orders/{order_id}/cancel", headers=CUSTOMER)
    assert cancelled.json()["status"] == "cancelled"
    assert stock_of(pid) == 3
    assert client.delete(f"/order/v1/orders/{order_id}/cancel", headers=CUSTOMER).status_code == 409

    forced = client.put(f"/order/v1/orders/{order_id}/status", json={"status": "pending_payment"}, headers=ADMIN)
    assert forced.json()["status"] == "pending_payment"
    unknown = client.put(f"/order/v1/orders/{order_id}/status", json={"status": "teleported"}, headers=ADMIN)
    assert unknown.status_code == 400


def test_cleanup_requires_key(client, add_product, order_store, inventory, files, clock, stock_of):
    pid = add_product(stock=3)
    clock.advance(hours=-48)
    past = OrderLifecycle(order_store, inventory, files, expiration=timedelta(hours=24), clock=clock)
    info = CustomerInfo(customer_name="Ana Perez", receiver_first_name="Ana", receiver_last_name="Perez",
                        receiver_phone="1155551234", receiver_dni="30123456")
    past.create_order(AuthorizationContext.anonymous(), info, 1, [OrderItemRequest(product_id=pid, quantity=2)])
    assert stock_of(pid) == 1

    assert client.post("/order/v1/orders/cleanup-expired").status_code == 401
    assert client.post("/order/v1/orders/cleanup-expired", headers={"X-Cleanup-Key": "nope"}).status_code == 401

    resp = client.post("/order/v1/orders/cleanup-expired", headers={"X-Cleanup-Key": "cleanup-key"})
    assert resp.status_code == 200
    assert resp.json()["success"] is True
    assert resp.json()["cancelledCount"] == 1
    assert stock_of(pid) == 3


def test_cleanup_disabled_without_configured_key(client, monkeypatch):
    monkeypatch.setattr(settings, "CLEANUP_API_KEY", "")
    assert client.post("/order/v1/orders/cleanup-expired", headers={"X-Cleanup-Key": ""}).status_code == 401


def _webhook(client, payment_id, secret=WEBHOOK_SECRET, kind="payment"):
    ts, rid = "1700000000", "req-42"
    sig = compute_signature(secret, str(payment_id), rid, ts)
    return client.post("/order/v1/payments/gateway/webhook",
                       json={"type": kind, "action": "payment.updated", "data": {"id": payment_id}},
                       headers={"x-signature": f"ts={ts},v1={sig}", "x-request-id": rid})


def test_gateway_checkout_and_webhook(client, add_product, gateway, order_store):
    order_id = _create(client, add_product(stock=3), payment_method="gateway").json()["id"]

    pref = client.post("/order/v1/payments/gateway/create", headers=CUSTOMER,
                       json={"order_id": order_id, "back_url": "https://shop.test/pay"})
    assert pref.status_code == 200
    assert pref.json()["preference_id"] == "pref-1"

    gateway.add_payment("321", "approved", order_id)
    first = _webhook(client, "321")
    assert first.status_code == 200
    assert first.json() == {"status": "processed"}
    assert order_store.get_by_id(order_id).status == OrderStatus.PAYMENT_APPROVED

    assert _webhook(client, "321").json() == {"status": "processed"}

    info = client.get("/order/v1/payments/gateway/321", headers=ADMIN)
    assert info.json()["status"] == "approved"
    assert client.get("/order/v1/payments/gateway/321", headers=CUSTOMER).status_code == 403


def test_webhook_answers(client, gateway):
    assert _webhook(client, "1", secret="forged").status_code == 401
    assert _webhook(client, "1", kind="merchant_order").json() == {"status": "ignored"}

    gateway.add_payment("2", "approved", "98765")
    assert _webhook(client, "2").json() == {"status": "ignored"}

    raw = client.post("/order/v1/payments/gateway/webhook", content=b"<xml/>",
                      headers={"content-type": "application/xml"})
    assert raw.status_code == 200
    assert raw.json() == {"status": "ignored"}


def test_webhook_defers_when_gateway_is_down(client, gateway, monkeypatch):
    def down(payment_id):
        raise ExternalDependencyError("Payment gateway unavailable")

    monkeypatch.setattr(gateway, "get_payment", down)
    resp = _webhook(client, "5")
    assert resp.status_code == 200
    assert resp.json() == {"status": "deferred"}


def test_webhook_with_missing_secret_fails_closed(client, monkeypatch):
    monkeypatch.setattr(settings, "GATEWAY_WEBHOOK_SECRET", "")
    assert _webhook(client, "1").status_code == 401

from datetime import timedelta
from functools import lru_cache

from fastapi import Depends

from orderflow.core.config import settings
from orderflow.db.session import SessionLocal
from orderflow.gateway.client import HttpxPaymentGateway, PaymentGateway
from orderflow.kafka.producer import EventPublisher
from orderflow.services.lifecycle import OrderLifecycle
from orderflow.services.payments import PaymentReconciler
from orderflow.services.storage import FileService, MinioFileService
from orderflow.store.cart import CartReader, get_client
from orderflow.store.inventory import InventoryLedger, SqlInventoryLedger
from orderflow.store.orders import OrderStore, SqlOrderStore

# Collaborators are built once per process; tests swap them through
# app.dependency_overrides.

@lru_cache
def get_order_store() -> OrderStore:
    return SqlOrderStore(SessionLocal)

@lru_cache
def get_inventory() -> InventoryLedger:
    return SqlInventoryLedger(SessionLocal)

@lru_cache
def get_file_service() -> FileService:
    return MinioFileService.from_settings()

@lru_cache
def get_event_publisher() -> EventPublisher:
    return EventPublisher()

@lru_cache
def get_gateway() -> PaymentGateway:
    return HttpxPaymentGateway.from_settings()

def get_cart_reader() -> CartReader:
    return CartReader(get_client())

def get_lifecycle(
    orders: OrderStore = Depends(get_order_store),
    inventory: InventoryLedger = Depends(get_inventory),
    files: FileService = Depends(get_file_service),
    events: EventPublisher = Depends(get_event_publisher),
) -> OrderLifecycle:
    return OrderLifecycle(
        orders, inventory, files, events,
        expiration=timedelta(hours=settings.ORDER_EXPIRATION_HOURS),
    )

def get_reconciler(
    orders: OrderStore = Depends(get_order_store),
    gateway: PaymentGateway = Depends(get_gateway),
    events: EventPublisher = Depends(get_event_publisher),
) -> PaymentReconciler:
    return PaymentReconciler(
        orders, gateway,
        webhook_secret=settings.GATEWAY_WEBHOOK_SECRET,
        events=events,
        currency=settings.GATEWAY_CURRENCY,
        statement_descriptor=settings.GATEWAY_STATEMENT_DESCRIPTOR,
        notification_url=settings.GATEWAY_NOTIFICATION_URL,
    )

import hmac
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Header, HTTPException, UploadFile

from orderflow.api.deps import get_cart_reader, get_lifecycle
from orderflow.api.schemas import (
    AdminActionIn,
    CheckoutIn,
    CleanupOut,
    CreateOrderIn,
    OrderOut,
    OrderSummaryOut,
    ShippingInfoIn,
    UpdateStatusIn,
)
from orderflow.core.auth import get_current_context, get_optional_context, require_admin
from orderflow.core.config import settings
from orderflow.core.errors import ValidationError
from orderflow.domain import AuthorizationContext, Order, utcnow
from orderflow.services.lifecycle import OrderLifecycle
from orderflow.services.storage import UploadedFile
from orderflow.store.cart import CartReader

logger = logging.getLogger(__name__)

router = APIRouter()


def _out(order: Order) -> OrderOut:
    return OrderOut.model_validate(order)


def _summaries(orders: List[Order]) -> List[OrderSummaryOut]:
    return [OrderSummaryOut.model_validate(o) for o in orders]


@router.post("/v1/orders", response_model=OrderOut, status_code=201)
def create_order(payload: CreateOrderIn,
                 ctx: AuthorizationContext = Depends(get_optional_context),
                 engine: OrderLifecycle = Depends(get_lifecycle)):
    order = engine.create_order(ctx, payload.customer_info(), payload.shipping_address_id,
                                payload.items, payload.payment_method)
    return _out(order)


@router.post("/v1/orders/checkout", response_model=OrderOut, status_code=201)
def checkout(payload: CheckoutIn,
             ctx: AuthorizationContext = Depends(get_current_context),
             engine: OrderLifecycle = Depends(get_lifecycle),
             cart: CartReader = Depends(get_cart_reader)):
    if not ctx.email:
        raise HTTPException(status_code=401, detail="Token has no subject")
    items = cart.items(ctx.email)
    if not items:
        raise ValidationError("Cart is empty")
    order = engine.create_order(ctx, payload.customer_info(), payload.shipping_address_id,
                                items, payload.payment_method)
    cart.clear(ctx.email)
    return _out(order)


@router.get("/v1/orders", response_model=List[OrderSummaryOut])
def list_orders(ctx: AuthorizationContext = Depends(require_admin),
                engine: OrderLifecycle = Depends(get_lifecycle)):
    return _summaries(engine.list_orders(ctx))


@router.get("/v1/orders/my-orders", response_model=List[OrderSummaryOut])
def my_orders(ctx: AuthorizationContext = Depends(get_current_context),
              engine: OrderLifecycle = Depends(get_lifecycle)):
    return _summaries(engine.list_my_orders(ctx))


@router.get("/v1/orders/pending-review", response_model=List[OrderSummaryOut])
def pending_review(ctx: AuthorizationContext = Depends(require_admin),
                   engine: OrderLifecycle = Depends(get_lifecycle)):
    return _summaries(engine.pending_review(ctx))


@router.get("/v1/orders/status/{status}", response_model=List[OrderSummaryOut])
def orders_by_status(status: str,
                     ctx: AuthorizationContext = Depends(require_admin),
                     engine: OrderLifecycle = Depends(get_lifecycle)):
    return _summaries(engine.list_by_status(ctx, status[:30]))


@router.post("/v1/orders/cleanup-expired", response_model=CleanupOut)
def cleanup_expired(x_cleanup_key: Optional[str] = Header(default=None, alias="X-Cleanup-Key"),
                    engine: OrderLifecycle = Depends(get_lifecycle)):
    expected = settings.CLEANUP_API_KEY or ""
    if not expected or not x_cleanup_key or not hmac.compare_digest(
            x_cleanup_key.encode("utf-8"), expected.encode("utf-8")):
        logger.warning("Unauthorized cleanup attempt")
        raise HTTPException(status_code=401, detail="Invalid API key")
    count = engine.sweeper.sweep()
    logger.info("Cleanup completed: %d orders cancelled", count)
    return CleanupOut(success=True, cancelledCount=count, timestamp=utcnow())


@router.get("/v1/orders/{order_id}", response_model=OrderOut)
def get_order(order_id: int,
              ctx: AuthorizationContext = Depends(get_optional_context),
              engine: OrderLifecycle = Depends(get_lifecycle)):
    return _out(engine.get_order(ctx, order_id))


@router.post("/v1/orders/{order_id}/payment-receipt", response_model=OrderOut)
def upload_receipt(order_id: int,
                   receipt_file: UploadFile = File(...),
                   ctx: AuthorizationContext = Depends(get_current_context),
                   engine: OrderLifecycle = Depends(get_lifecycle)):
    # one byte past the limit is enough to reject oversized uploads
    data = receipt_file.file.read(settings.RECEIPT_MAX_BYTES + 1)
    file = UploadedFile(filename=receipt_file.filename or "", content_type=receipt_file.content_type or "", data=data)
    return _out(engine.upload_receipt(ctx, order_id, file))


@router.get("/v1/orders/{order_id}/payment-receipt")
def get_receipt(order_id: int,
                ctx: AuthorizationContext = Depends(get_current_context),
                engine: OrderLifecycle = Depends(get_lifecycle)):
    return {"receiptUrl": engine.get_receipt_url(ctx, order_id)}


@router.put("/v1/orders/{order_id}/approve-payment", response_model=OrderOut)
def approve_payment(order_id: int, payload: AdminActionIn,
                    ctx: AuthorizationContext = Depends(require_admin),
                    engine: OrderLifecycle = Depends(get_lifecycle)):
    return _out(engine.approve_payment(ctx, order_id, payload.admin_notes))


@router.put("/v1/orders/{order_id}/reject-payment", response_model=OrderOut)
def reject_payment(order_id: int, payload: AdminActionIn,
                   ctx: AuthorizationContext = Depends(require_admin),
                   engine: OrderLifecycle = Depends(get_lifecycle)):
    return _out(engine.reject_payment(ctx, order_id, payload.admin_notes))


@router.put("/v1/orders/{order_id}/mark-shipped", response_model=OrderOut)
def mark_shipped(order_id: int, payload: ShippingInfoIn,
                 ctx: AuthorizationContext = Depends(require_admin),
                 engine: OrderLifecycle = Depends(get_lifecycle)):
    return _out(engine.mark_shipped(ctx, order_id, payload.tracking_number, payload.shipping_provider, payload.admin_notes))


@router.put("/v1/orders/{order_id}/mark-delivered", response_model=OrderOut)
def mark_delivered(order_id: int, payload: AdminActionIn,
                   ctx: AuthorizationContext = Depends(require_admin),
                   engine: OrderLifecycle = Depends(get_lifecycle)):
    return _out(engine.mark_delivered(ctx, order_id, payload.admin_notes))


@router.put("/v1/orders/{order_id}/status", response_model=OrderOut)
def update_status(order_id: int, payload: UpdateStatusIn,
                  ctx: AuthorizationContext = Depends(require_admin),
                  engine: OrderLifecycle = Depends(get_lifecycle)):
    return _out(engine.update_status(ctx, order_id, payload.status, payload.admin_notes))


@router.delete("/v1/orders/{order_id}/cancel", response_model=OrderOut)
def cancel_order(order_id: int,
                 ctx: AuthorizationContext = Depends(get_current_context),
                 engine: OrderLifecycle = Depends(get_lifecycle)):
    return _out(engine.cancel_order(ctx, order_id))

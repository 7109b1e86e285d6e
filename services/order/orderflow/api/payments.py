import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from orderflow.api.deps import get_reconciler
from orderflow.api.schemas import CreatePreferenceIn, PreferenceOut
from orderflow.core.auth import get_current_context, require_admin
from orderflow.core.errors import OrderError, SecurityError
from orderflow.domain import AuthorizationContext
from orderflow.services.payments import PaymentReconciler

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/v1/payments/gateway/create", response_model=PreferenceOut)
def create_preference(payload: CreatePreferenceIn,
                      ctx: AuthorizationContext = Depends(get_current_context),
                      reconciler: PaymentReconciler = Depends(get_reconciler)):
    result = reconciler.create_preference(ctx, payload.order_id, payload.back_url)
    return PreferenceOut(**result.model_dump())


@router.post("/v1/payments/gateway/webhook")
async def gateway_webhook(request: Request,
                          x_signature: Optional[str] = Header(default=None, alias="x-signature"),
                          x_request_id: Optional[str] = Header(default=None, alias="x-request-id"),
                          reconciler: PaymentReconciler = Depends(get_reconciler)):
    # The gateway redelivers on anything but 2xx, so only a failed signature
    # check is answered with an error.
    try:
        body = json.loads(await request.body() or b"{}")
    except ValueError:
        logger.warning("Webhook ignored: body is not JSON")
        return {"status": "ignored"}
    try:
        outcome = await run_in_threadpool(reconciler.handle_webhook, body, x_signature, x_request_id)
    except SecurityError as e:
        return JSONResponse(status_code=e.status_code, content={"detail": e.message})
    except OrderError as e:
        logger.warning("Webhook processing failed, waiting for redelivery: %s", e.message)
        return {"status": "deferred"}
    except Exception:
        logger.exception("Unexpected error while processing gateway webhook")
        return {"status": "deferred"}
    return {"status": outcome}


@router.get("/v1/payments/gateway/{payment_id}")
def payment_info(payment_id: str,
                 ctx: AuthorizationContext = Depends(require_admin),
                 reconciler: PaymentReconciler = Depends(get_reconciler)):
    return reconciler.get_payment_info(ctx, payment_id)

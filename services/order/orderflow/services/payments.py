"""Payment-gateway reconciliation.

Webhooks are delivered at least once, possibly duplicated and out of order.
Notifications are therefore only used as a pointer: the authoritative payment
record is fetched from the gateway and mapped onto the order idempotently
(status moves only along gateway edges, timestamps are written once).
"""
import logging
from typing import Callable, Optional

from orderflow.core.auth import can_access_order, is_admin
from orderflow.core.errors import (
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
    SecurityError,
    ValidationError,
)
from orderflow.domain import (
    AuthorizationContext,
    Order,
    OrderStatus,
    PaymentInfo,
    PaymentMethod,
    PreferenceResult,
    utcnow,
)
from orderflow.gateway.client import BackUrls, ManifestItem, Payer, PaymentGateway, PreferenceManifest
from orderflow.gateway.signature import verify_webhook_signature
from orderflow.kafka.producer import EventPublisher
from orderflow.services.transitions import EdgeKind, is_allowed
from orderflow.store.orders import OrderStore

logger = logging.getLogger(__name__)

GATEWAY_STATUS_MAP = {
    "approved": OrderStatus.PAYMENT_APPROVED,
    "pending": OrderStatus.PAYMENT_SUBMITTED,
    "in_process": OrderStatus.PAYMENT_SUBMITTED,
    "rejected": OrderStatus.PAYMENT_REJECTED,
    "cancelled": OrderStatus.PAYMENT_REJECTED,
    "refunded": OrderStatus.REFUNDED,
    "charged_back": OrderStatus.REFUNDED,
}

PAYABLE_STATUSES = frozenset({OrderStatus.PENDING_PAYMENT, OrderStatus.PAYMENT_REJECTED})

SAVE_ATTEMPTS = 3


class PaymentReconciler:

    def __init__(
        self,
        orders: OrderStore,
        gateway: PaymentGateway,
        webhook_secret: str = "",
        events: Optional[EventPublisher] = None,
        currency: str = "ARS",
        statement_descriptor: Optional[str] = None,
        notification_url: Optional[str] = None,
        clock: Callable = utcnow,
    ):
        self._orders = orders
        self._gateway = gateway
        self._webhook_secret = webhook_secret
        self._events = events or EventPublisher(enabled=False)
        self._currency = currency
        self._statement_descriptor = statement_descriptor
        self._notification_url = notification_url
        self._clock = clock

    # -- checkout --------------------------------------------------------

    def build_manifest(self, order: Order, return_base_url: str) -> PreferenceManifest:
        base = return_base_url.rstrip("/")
        ref = str(order.id)
        return PreferenceManifest(
            external_reference=ref,
            items=[
                ManifestItem(title=line.product_name, quantity=line.quantity,
                             unit_price=line.unit_price, currency_id=self._currency)
                for line in order.items
            ],
            payer=Payer(name=order.customer_name, email=order.customer_email, phone=order.receiver_phone or ""),
            back_urls=BackUrls(
                success=f"{base}/success?external_reference={ref}",
                failure=f"{base}/failure?external_reference={ref}",
                pending=f"{base}/pending?external_reference={ref}",
            ),
            statement_descriptor=self._statement_descriptor,
            binary_mode=True,
            notification_url=self._notification_url or None,
        )

    def create_preference(self, ctx: AuthorizationContext, order_id: int, return_base_url: str) -> PreferenceResult:
        if not return_base_url or not return_base_url.startswith(("http://", "https://")):
            raise ValidationError("A valid return URL is required")
        order = self._orders.get_by_id(order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        if not can_access_order(ctx, order):
            raise PermissionDeniedError("You cannot pay for this order")
        if order.total <= 0:
            raise ValidationError("Order total must be greater than 0")
        if order.status not in PAYABLE_STATUSES:
            raise InvalidStateError(f"Order in status '{order.status.value}' is not awaiting payment")

        result = self._gateway.create_preference(self.build_manifest(order, return_base_url))

        saved = self._orders.save(order.model_copy(update={
            "gateway_preference_id": result.preference_id,
            "payment_method": PaymentMethod.GATEWAY,
            "updated_at": self._clock(),
        }), expected_status=order.status)
        if saved is None:
            raise InvalidStateError(f"Order {order_id} changed while creating the payment preference")
        logger.info("Gateway preference created: order_id=%s preference_id=%s", order_id, result.preference_id)
        return result

    def get_payment_info(self, ctx: AuthorizationContext, payment_id: str) -> PaymentInfo:
        if not is_admin(ctx):
            raise PermissionDeniedError("Only administrators may inspect gateway payments")
        return self._gateway.get_payment(payment_id)

    # -- notifications ---------------------------------------------------

    def verify(self, signature_header: Optional[str], request_id: Optional[str], payment_id: str) -> None:
        if not self._webhook_secret:
            logger.error("Webhook secret is not configured; refusing unauthenticated notification")
            raise SecurityError("Webhook signature cannot be verified")
        if not verify_webhook_signature(signature_header, request_id, payment_id, self._webhook_secret):
            logger.warning("Webhook rejected: invalid signature payment_id=%s request_id=%s", payment_id, request_id)
            raise SecurityError("Invalid webhook signature")

    def handle_webhook(self, body: dict, signature_header: Optional[str], request_id: Optional[str]) -> str:
        """Transport-facing entry point.

        Raises SecurityError only for authentication failures; every other
        outcome is reported as a string so the caller can always answer 2xx.
        """
        body = body if isinstance(body, dict) else {}
        data = body.get("data") if isinstance(body.get("data"), dict) else {}
        payment_id = data.get("id")
        logger.info("Gateway webhook received: action=%s type=%s payment_id=%s",
                    body.get("action"), body.get("type"), payment_id)
        if body.get("type") != "payment" or not payment_id:
            logger.warning("Webhook ignored: type=%s unsupported or missing id", body.get("type"))
            return "ignored"
        payment_id = str(payment_id)
        self.verify(signature_header, request_id, payment_id)
        order = self.process_notification(payment_id)
        return "processed" if order is not None else "ignored"

    def process_notification(self, payment_id: str) -> Optional[Order]:
        payment = self._gateway.get_payment(payment_id)
        ref = (payment.external_reference or "").strip()
        try:
            order_id = int(ref)
        except ValueError:
            logger.warning("Payment %s has no usable external reference (%r); ignoring", payment_id, ref)
            return None
        order = self._orders.get_by_id(order_id)
        if order is None:
            logger.warning("Payment %s references unknown order %s; ignoring", payment_id, order_id)
            return None

        for _ in range(SAVE_ATTEMPTS):
            changes = self._changes_for(order, payment)
            if not changes:
                logger.info("Payment %s already reflected on order %s", payment_id, order.id)
                return order
            saved = self._orders.save(order.model_copy(update=changes), expected_status=order.status)
            if saved is not None:
                if saved.status != order.status:
                    logger.info("Order status changed by gateway: order_id=%s from=%s to=%s payment_id=%s",
                                order.id, order.status.value, saved.status.value, payment_id)
                    self._events.status_changed(saved, order.status)
                return saved
            order = self._orders.get_by_id(order_id)
            if order is None:
                return None
        logger.warning("Gave up applying payment %s to order %s after concurrent updates", payment_id, order_id)
        return order

    def _changes_for(self, order: Order, payment: PaymentInfo) -> dict:
        changes = {}
        for field, value in (
            ("gateway_payment_id", payment.id),
            ("gateway_status", payment.status),
            ("gateway_payment_type", payment.payment_type_id),
        ):
            if value is not None and getattr(order, field) != value:
                changes[field] = value

        now = self._clock()
        target = GATEWAY_STATUS_MAP.get((payment.status or "").lower())
        if target is None:
            if payment.status:
                logger.warning("Unmapped gateway status %r for order %s", payment.status, order.id)
        elif target != order.status:
            if is_allowed(order.status, target, EdgeKind.GATEWAY):
                changes["status"] = target
            else:
                logger.warning("Gateway status %s cannot move order %s from %s; recorded only",
                               payment.status, order.id, order.status.value)

        effective = changes.get("status", order.status)
        if target is not None and effective == target:
            if target == OrderStatus.PAYMENT_APPROVED and order.payment_approved_at is None:
                changes["payment_approved_at"] = now
            elif target == OrderStatus.PAYMENT_SUBMITTED and order.payment_submitted_at is None:
                changes["payment_submitted_at"] = now

        if changes:
            changes["updated_at"] = now
        return changes

"""Order lifecycle engine.

Creates orders (reserving stock through the inventory ledger) and runs every
guarded transition of the order state machine. Each state change re-reads the
order, checks the transition table and writes back conditionally on the
status it read, so a concurrent change surfaces as InvalidStateError instead
of being overwritten.
"""
import logging
import re
from datetime import timedelta
from decimal import Decimal
from typing import Callable, Dict, List, Optional

from orderflow.core.auth import can_access_order, can_cancel_order, is_admin, normalize_email
from orderflow.core.errors import (
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from orderflow.domain import (
    AuthorizationContext,
    CustomerInfo,
    Order,
    OrderItemRequest,
    OrderLine,
    OrderStatus,
    PaymentMethod,
    utcnow,
)
from orderflow.kafka.producer import EventPublisher
from orderflow.services.compensation import cancel_with_restore, release_lines
from orderflow.services.storage import FileService, UploadedFile, validate_receipt
from orderflow.services.sweeper import ExpirationSweeper
from orderflow.services.transitions import Action, EdgeKind, is_allowed, target_for
from orderflow.store.inventory import InventoryLedger
from orderflow.store.orders import OrderStore

logger = logging.getLogger(__name__)

MAX_QTY_PER_PRODUCT = 100
MAX_NOTES_LENGTH = 1000
RECEIPTS_FOLDER = "receipts"

_PHONE_RE = re.compile(r"^[\d\s\+\-\(\)]+$")
_DNI_RE = re.compile(r"^[0-9]{7,8}$")

CENTS = Decimal("0.01")


def _require_text(value: Optional[str], label: str, max_len: int, min_len: int = 1) -> str:
    value = (value or "").strip()
    if not value:
        raise ValidationError(f"{label} is required")
    if len(value) < min_len:
        raise ValidationError(f"{label} must have at least {min_len} characters")
    if len(value) > max_len:
        raise ValidationError(f"{label} cannot exceed {max_len} characters")
    return value


def _check_notes(notes: Optional[str]) -> Optional[str]:
    if notes and len(notes) > MAX_NOTES_LENGTH:
        raise ValidationError(f"Admin notes cannot exceed {MAX_NOTES_LENGTH} characters")
    return notes


def validate_customer(customer: CustomerInfo) -> None:
    _require_text(customer.customer_name, "Customer name", 100, min_len=2)
    _require_text(customer.receiver_first_name, "Receiver first name", 50)
    _require_text(customer.receiver_last_name, "Receiver last name", 50)
    phone = _require_text(customer.receiver_phone, "Receiver phone", 20)
    if not _PHONE_RE.match(phone):
        raise ValidationError("Receiver phone may only contain digits, spaces and + - ( )")
    dni = _require_text(customer.receiver_dni, "Receiver DNI", 20)
    if not _DNI_RE.match(dni):
        raise ValidationError("Receiver DNI must contain 7 or 8 digits")


def merge_items(items: List[OrderItemRequest]) -> Dict[int, int]:
    """Validate requested lines and fold duplicates of the same product together."""
    if not items:
        raise ValidationError("The order must contain at least one product")
    merged: Dict[int, int] = {}
    for it in items:
        if it.product_id <= 0:
            raise ValidationError("Product id must be a positive integer")
        if it.quantity <= 0:
            raise ValidationError("Quantity must be greater than 0")
        merged[it.product_id] = merged.get(it.product_id, 0) + it.quantity
        if merged[it.product_id] > MAX_QTY_PER_PRODUCT:
            raise ValidationError(f"Cannot order more than {MAX_QTY_PER_PRODUCT} units of the same product")
    return merged


class OrderLifecycle:

    def __init__(
        self,
        orders: OrderStore,
        inventory: InventoryLedger,
        files: FileService,
        events: Optional[EventPublisher] = None,
        expiration: timedelta = timedelta(hours=24),
        clock: Callable = utcnow,
    ):
        self._orders = orders
        self._inventory = inventory
        self._files = files
        self._events = events or EventPublisher(enabled=False)
        self._expiration = expiration
        self._clock = clock
        self.sweeper = ExpirationSweeper(orders, inventory, events=self._events, clock=clock)

    # -- creation --------------------------------------------------------

    def create_order(
        self,
        ctx: AuthorizationContext,
        customer: CustomerInfo,
        shipping_address_id: int,
        items: List[OrderItemRequest],
        payment_method: PaymentMethod = PaymentMethod.BANK_TRANSFER,
    ) -> Order:
        validate_customer(customer)
        if not shipping_address_id or shipping_address_id <= 0:
            raise ValidationError("A valid shipping address must be selected")
        if not isinstance(payment_method, PaymentMethod):
            try:
                payment_method = PaymentMethod(payment_method)
            except ValueError:
                raise ValidationError("Payment method must be 'bank_transfer' or 'gateway'")
        requested = merge_items(items)

        lines: List[OrderLine] = []
        for product_id, qty in requested.items():
            product = self._inventory.get_product(product_id)
            if product is None or product.deleted or not product.active:
                raise ValidationError(f"Product {product_id} does not exist or is not available")
            if product.stock < qty:
                logger.warning("Insufficient stock: product_id=%s available=%s requested=%s",
                               product_id, product.stock, qty)
                raise ValidationError(
                    f"Insufficient stock for {product.name}. Available: {product.stock}, requested: {qty}"
                )
            unit_price = Decimal(product.price).quantize(CENTS)
            lines.append(OrderLine(
                product_id=product.id,
                quantity=qty,
                unit_price=unit_price,
                subtotal=(unit_price * qty).quantize(CENTS),
                product_name=product.name,
                product_image_url=product.image_url,
                product_brand=product.brand,
                product_model=product.model,
            ))

        now = self._clock()
        ship = customer.shipping
        order = Order(
            user_id=ctx.user_id if ctx.is_authenticated else None,
            owner_email=normalize_email(ctx.email) if ctx.is_authenticated else None,
            shipping_address_id=shipping_address_id,
            customer_name=customer.customer_name.strip(),
            customer_email=customer.customer_email or ctx.email,
            receiver_first_name=customer.receiver_first_name.strip(),
            receiver_last_name=customer.receiver_last_name.strip(),
            receiver_phone=customer.receiver_phone.strip(),
            receiver_dni=customer.receiver_dni.strip(),
            shipping_address_type=ship.address_type,
            shipping_street=ship.street,
            shipping_number=ship.number,
            shipping_floor=ship.floor,
            shipping_apartment=ship.apartment,
            shipping_tower=ship.tower,
            shipping_between_streets=ship.between_streets,
            shipping_postal_code=ship.postal_code,
            shipping_province=ship.province,
            shipping_city=ship.city,
            shipping_observations=ship.observations,
            total=sum((line.subtotal for line in lines), Decimal("0.00")),
            status=OrderStatus.PENDING_PAYMENT,
            payment_method=payment_method,
            created_at=now,
            updated_at=now,
            expires_at=now + self._expiration,
            items=lines,
        )

        reserved: List[OrderLine] = []
        try:
            for line in lines:
                if not self._inventory.try_reserve(line.product_id, line.quantity):
                    raise ValidationError(f"Insufficient stock for {line.product_name}")
                reserved.append(line)
            created = self._orders.create(order)
        except Exception:
            if reserved:
                logger.warning("Order creation failed, releasing %d reserved line(s)", len(reserved))
                release_lines(self._inventory, reserved)
            raise

        logger.info("Order created: order_id=%s user_id=%s total=%s", created.id, created.user_id, created.total)
        self._events.order_created(created)
        return created

    # -- reads -----------------------------------------------------------

    def _load(self, order_id: int) -> Order:
        if not order_id or order_id <= 0:
            raise ValidationError("Invalid order id")
        order = self._orders.get_by_id(order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        return order

    def _require_admin(self, ctx: AuthorizationContext, operation: str):
        if not is_admin(ctx):
            logger.warning("Non-admin attempted %s: user_id=%s", operation, ctx.user_id)
            raise PermissionDeniedError(f"Only administrators may {operation}")

    def get_order(self, ctx: AuthorizationContext, order_id: int) -> Order:
        order = self._load(order_id)
        if not can_access_order(ctx, order):
            logger.warning("Unauthorized order access: order_id=%s user_id=%s", order_id, ctx.user_id)
            raise PermissionDeniedError("You do not have access to this order")
        return order

    def list_orders(self, ctx: AuthorizationContext) -> List[Order]:
        self._require_admin(ctx, "list all orders")
        self.sweeper.sweep()
        return self._orders.list_all()

    def list_my_orders(self, ctx: AuthorizationContext) -> List[Order]:
        email = normalize_email(ctx.email)
        if not ctx.is_authenticated or (ctx.user_id is None and email is None):
            raise PermissionDeniedError("A valid user session is required")
        self.sweeper.sweep()
        if ctx.user_id is None:
            return self._orders.get_by_owner_email(email)
        orders = self._orders.get_by_user(ctx.user_id)
        if email:
            # orders placed with a subject-only token carry no user id
            orders += [o for o in self._orders.get_by_owner_email(email) if o.user_id is None]
            orders.sort(key=lambda o: o.created_at, reverse=True)
        return orders

    def list_by_status(self, ctx: AuthorizationContext, status: str) -> List[Order]:
        self._require_admin(ctx, "list orders by status")
        parsed = OrderStatus.parse(status)
        if parsed is None:
            raise ValidationError(f"Unknown order status '{status}'")
        return self._orders.get_by_status(parsed)

    def pending_review(self, ctx: AuthorizationContext) -> List[Order]:
        return self.list_by_status(ctx, OrderStatus.PAYMENT_SUBMITTED.value)

    def get_receipt_url(self, ctx: AuthorizationContext, order_id: int) -> str:
        order = self.get_order(ctx, order_id)
        if not order.payment_receipt_url:
            raise NotFoundError("No payment receipt for this order")
        return order.payment_receipt_url

    # -- transitions -----------------------------------------------------

    def _apply(self, order: Order, target: OrderStatus, changes: dict) -> Order:
        now = self._clock()
        changes = dict(changes, status=target, updated_at=now)
        saved = self._orders.save(order.model_copy(update=changes), expected_status=order.status)
        if saved is None:
            raise InvalidStateError(f"Order {order.id} changed concurrently; reload it and retry")
        logger.info("Order status changed: order_id=%s from=%s to=%s", order.id, order.status.value, target.value)
        self._events.status_changed(saved, order.status)
        return saved

    def _transition(self, order_id: int, action: Action, changes: Callable[[Order], dict]) -> Order:
        order = self._load(order_id)
        try:
            target = target_for(action, order.status)
        except InvalidStateError:
            logger.warning("Rejected transition: order_id=%s action=%s status=%s",
                           order_id, action.value, order.status.value)
            raise
        return self._apply(order, target, changes(order))

    def upload_receipt(self, ctx: AuthorizationContext, order_id: int, file: UploadedFile) -> Order:
        order = self._load(order_id)
        if not can_access_order(ctx, order):
            logger.warning("Unauthorized receipt upload: order_id=%s user_id=%s", order_id, ctx.user_id)
            raise PermissionDeniedError("You cannot upload a receipt for this order")
        target_for(Action.SUBMIT_PAYMENT, order.status)
        validate_receipt(file)
        # re-read so a status change during validation is caught before storage
        order = self._load(order_id)
        target = target_for(Action.SUBMIT_PAYMENT, order.status)
        url = self._files.save(file, RECEIPTS_FOLDER)
        now = self._clock()
        try:
            return self._apply(order, target, {
                "payment_receipt_url": url,
                "payment_receipt_uploaded_at": now,
                "payment_submitted_at": now,
            })
        except InvalidStateError:
            logger.warning("Receipt stored but order changed before save: order_id=%s url=%s", order_id, url)
            raise

    def approve_payment(self, ctx: AuthorizationContext, order_id: int, notes: Optional[str] = None) -> Order:
        self._require_admin(ctx, "approve payments")
        _check_notes(notes)
        return self._transition(order_id, Action.APPROVE_PAYMENT, lambda o: {
            "payment_approved_at": self._clock(),
            "admin_notes": notes if notes else o.admin_notes,
        })

    def reject_payment(self, ctx: AuthorizationContext, order_id: int, reason: str) -> Order:
        self._require_admin(ctx, "reject payments")
        if not reason or not reason.strip():
            raise ValidationError("A rejection reason is required")
        _check_notes(reason)
        return self._transition(order_id, Action.REJECT_PAYMENT, lambda o: {"admin_notes": reason.strip()})

    def mark_shipped(
        self,
        ctx: AuthorizationContext,
        order_id: int,
        tracking_number: str,
        provider: str,
        notes: Optional[str] = None,
    ) -> Order:
        self._require_admin(ctx, "mark orders as shipped")
        tracking_number = _require_text(tracking_number, "Tracking number", 64)
        provider = _require_text(provider, "Shipping provider", 64)
        _check_notes(notes)
        return self._transition(order_id, Action.SHIP, lambda o: {
            "tracking_number": tracking_number,
            "shipping_provider": provider,
            "shipped_at": self._clock(),
            "admin_notes": notes if notes else o.admin_notes,
        })

    def mark_delivered(self, ctx: AuthorizationContext, order_id: int, notes: Optional[str] = None) -> Order:
        self._require_admin(ctx, "mark orders as delivered")
        _check_notes(notes)
        return self._transition(order_id, Action.DELIVER, lambda o: {
            "delivered_at": self._clock(),
            "admin_notes": notes if notes else o.admin_notes,
        })

    def cancel_order(self, ctx: AuthorizationContext, order_id: int) -> Order:
        order = self._load(order_id)
        if not can_cancel_order(ctx, order):
            logger.warning("Unauthorized order cancellation: order_id=%s user_id=%s", order_id, ctx.user_id)
            raise PermissionDeniedError("You cannot cancel this order")
        target = target_for(Action.CANCEL, order.status)
        saved = cancel_with_restore(self._orders, self._inventory, order, order.status, self._clock(), target=target)
        if saved is None:
            raise InvalidStateError(f"Order {order_id} changed concurrently; reload it and retry")
        logger.info("Order cancelled: order_id=%s user_id=%s", order_id, ctx.user_id)
        self._events.status_changed(saved, order.status)
        return saved

    def update_status(
        self,
        ctx: AuthorizationContext,
        order_id: int,
        status: str,
        notes: Optional[str] = None,
    ) -> Order:
        """Administrative override: force any recognised status."""
        self._require_admin(ctx, "override order status")
        target = status if isinstance(status, OrderStatus) else OrderStatus.parse(status)
        if target is None:
            allowed = ", ".join(s.value for s in OrderStatus)
            raise ValidationError(f"Status must be one of: {allowed}")
        _check_notes(notes)
        order = self._load(order_id)
        if not is_allowed(order.status, target, EdgeKind.PRIVILEGED):
            raise InvalidStateError(f"Cannot move order from '{order.status.value}' to '{target.value}'")
        logger.warning("Privileged status override: order_id=%s from=%s to=%s admin_id=%s",
                       order_id, order.status.value, target.value, ctx.user_id)
        if target == OrderStatus.CANCELLED:
            saved = cancel_with_restore(
                self._orders, self._inventory, order, order.status, self._clock(),
                admin_notes=notes if notes else order.admin_notes,
            )
            if saved is None:
                raise InvalidStateError(f"Order {order_id} changed concurrently; reload it and retry")
            self._events.status_changed(saved, order.status)
            return saved
        return self._apply(order, target, {"admin_notes": notes if notes else order.admin_notes})

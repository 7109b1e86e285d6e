from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class OrderStatus(str, Enum):
    PENDING_PAYMENT = "pending_payment"
    PAYMENT_SUBMITTED = "payment_submitted"
    PAYMENT_APPROVED = "payment_approved"
    PAYMENT_REJECTED = "payment_rejected"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"

    @classmethod
    def parse(cls, value: str) -> Optional["OrderStatus"]:
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            return None


STATUS_DESCRIPTIONS = {
    OrderStatus.PENDING_PAYMENT: "Awaiting payment",
    OrderStatus.PAYMENT_SUBMITTED: "Payment under review",
    OrderStatus.PAYMENT_APPROVED: "Payment approved - preparing shipment",
    OrderStatus.PAYMENT_REJECTED: "Payment rejected",
    OrderStatus.SHIPPED: "Shipped",
    OrderStatus.DELIVERED: "Delivered",
    OrderStatus.CANCELLED: "Cancelled",
    OrderStatus.REFUNDED: "Refunded",
}


def utcnow() -> datetime:
    """Naive UTC timestamp, the representation stored in the database."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class PaymentMethod(str, Enum):
    BANK_TRANSFER = "bank_transfer"
    GATEWAY = "gateway"


class Role(str, Enum):
    CUSTOMER = "customer"
    ADMIN = "admin"


class AuthorizationContext(BaseModel):
    """Who is calling: built once per request and passed to every operation."""
    model_config = ConfigDict(frozen=True)

    user_id: Optional[int] = None
    email: Optional[str] = None
    role: Role = Role.CUSTOMER
    is_authenticated: bool = False

    @classmethod
    def anonymous(cls) -> "AuthorizationContext":
        return cls()

    @classmethod
    def system(cls) -> "AuthorizationContext":
        return cls(role=Role.ADMIN, is_authenticated=True)


class ProductInfo(BaseModel):
    id: int
    name: str
    price: Decimal
    stock: int
    active: bool = True
    deleted: bool = False
    image_url: Optional[str] = None
    brand: Optional[str] = None
    model: Optional[str] = None


class OrderItemRequest(BaseModel):
    product_id: int
    quantity: int


class ShippingSnapshot(BaseModel):
    address_type: Optional[str] = None
    street: str = ""
    number: Optional[str] = None
    floor: Optional[str] = None
    apartment: Optional[str] = None
    tower: Optional[str] = None
    between_streets: Optional[str] = None
    postal_code: Optional[str] = None
    province: Optional[str] = None
    city: Optional[str] = None
    observations: Optional[str] = None


class CustomerInfo(BaseModel):
    customer_name: str
    customer_email: Optional[str] = None
    receiver_first_name: str
    receiver_last_name: str
    receiver_phone: str
    receiver_dni: str
    shipping: ShippingSnapshot = Field(default_factory=ShippingSnapshot)


class OrderLine(BaseModel):
    model_config = ConfigDict(from_attributes=True, frozen=True)

    product_id: int
    quantity: int
    unit_price: Decimal
    subtotal: Decimal
    product_name: str
    product_image_url: Optional[str] = None
    product_brand: Optional[str] = None
    product_model: Optional[str] = None


class Order(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = None
    user_id: Optional[int] = None
    owner_email: Optional[str] = None
    shipping_address_id: Optional[int] = None

    customer_name: str
    customer_email: Optional[str] = None
    receiver_first_name: str
    receiver_last_name: str
    receiver_phone: str
    receiver_dni: str
    shipping_address_type: Optional[str] = None
    shipping_street: str = ""
    shipping_number: Optional[str] = None
    shipping_floor: Optional[str] = None
    shipping_apartment: Optional[str] = None
    shipping_tower: Optional[str] = None
    shipping_between_streets: Optional[str] = None
    shipping_postal_code: Optional[str] = None
    shipping_province: Optional[str] = None
    shipping_city: Optional[str] = None
    shipping_observations: Optional[str] = None

    total: Decimal
    status: OrderStatus = OrderStatus.PENDING_PAYMENT
    payment_method: PaymentMethod = PaymentMethod.BANK_TRANSFER

    payment_receipt_url: Optional[str] = None
    payment_receipt_uploaded_at: Optional[datetime] = None

    gateway_preference_id: Optional[str] = None
    gateway_payment_id: Optional[str] = None
    gateway_status: Optional[str] = None
    gateway_payment_type: Optional[str] = None

    payment_submitted_at: Optional[datetime] = None
    payment_approved_at: Optional[datetime] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    admin_notes: Optional[str] = None
    tracking_number: Optional[str] = None
    shipping_provider: Optional[str] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    stock_restored: bool = False

    items: List[OrderLine] = Field(default_factory=list)

    @property
    def status_description(self) -> str:
        return STATUS_DESCRIPTIONS.get(self.status, "Unknown status")


class PaymentInfo(BaseModel):
    id: str
    status: Optional[str] = None
    status_detail: Optional[str] = None
    transaction_amount: Decimal = Decimal("0")
    payment_type_id: Optional[str] = None
    external_reference: Optional[str] = None


class PreferenceResult(BaseModel):
    preference_id: str
    init_point: Optional[str] = None
    sandbox_init_point: Optional[str] = None

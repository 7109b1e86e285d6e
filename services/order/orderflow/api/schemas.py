from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from orderflow.domain import CustomerInfo, OrderItemRequest, OrderStatus, PaymentMethod, ShippingSnapshot


class CheckoutIn(BaseModel):
    customer_name: str
    customer_email: Optional[EmailStr] = None
    shipping_address_id: int
    receiver_first_name: str
    receiver_last_name: str
    receiver_phone: str
    receiver_dni: str
    shipping: ShippingSnapshot = Field(default_factory=ShippingSnapshot)
    payment_method: str = "bank_transfer"

    def customer_info(self) -> CustomerInfo:
        return CustomerInfo(
            customer_name=self.customer_name,
            customer_email=self.customer_email,
            receiver_first_name=self.receiver_first_name,
            receiver_last_name=self.receiver_last_name,
            receiver_phone=self.receiver_phone,
            receiver_dni=self.receiver_dni,
            shipping=self.shipping,
        )


class CreateOrderIn(CheckoutIn):
    items: List[OrderItemRequest]


class AdminActionIn(BaseModel):
    admin_notes: Optional[str] = None


class ShippingInfoIn(BaseModel):
    tracking_number: str
    shipping_provider: str
    admin_notes: Optional[str] = None


class UpdateStatusIn(BaseModel):
    status: str
    admin_notes: Optional[str] = None


class OrderItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    product_id: int
    quantity: int
    unit_price: Decimal
    subtotal: Decimal
    product_name: str
    product_image_url: Optional[str] = None
    product_brand: Optional[str] = None
    product_model: Optional[str] = None


class OrderSummaryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    user_id: Optional[int] = None
    customer_name: str
    total: Decimal
    status: OrderStatus
    status_description: str
    payment_method: PaymentMethod
    created_at: datetime
    expires_at: Optional[datetime] = None


class OrderOut(OrderSummaryOut):
    shipping_address_id: Optional[int] = None
    customer_email: Optional[str] = None
    receiver_first_name: str
    receiver_last_name: str
    receiver_phone: str
    receiver_dni: str
    shipping_street: str = ""
    shipping_number: Optional[str] = None
    shipping_city: Optional[str] = None
    shipping_province: Optional[str] = None
    shipping_postal_code: Optional[str] = None
    payment_receipt_url: Optional[str] = None
    payment_receipt_uploaded_at: Optional[datetime] = None
    gateway_preference_id: Optional[str] = None
    gateway_payment_id: Optional[str] = None
    gateway_status: Optional[str] = None
    payment_submitted_at: Optional[datetime] = None
    payment_approved_at: Optional[datetime] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    admin_notes: Optional[str] = None
    tracking_number: Optional[str] = None
    shipping_provider: Optional[str] = None
    updated_at: Optional[datetime] = None
    items: List[OrderItemOut] = []


class CreatePreferenceIn(BaseModel):
    order_id: int
    back_url: str


class PreferenceOut(BaseModel):
    preference_id: str
    init_point: Optional[str] = None
    sandbox_init_point: Optional[str] = None


class CleanupOut(BaseModel):
    success: bool
    cancelledCount: int
    timestamp: datetime

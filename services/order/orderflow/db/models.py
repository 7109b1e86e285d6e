from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import Integer, String, Text, Boolean, DateTime, ForeignKey, Numeric, CheckConstraint
from datetime import datetime
from decimal import Decimal
from typing import Optional
from orderflow.db.session import Base
from orderflow.domain import utcnow

class Product(Base):
    """Catalog row as seen by the order service; only stock is ever written here."""
    __tablename__ = "products"
    __table_args__ = (CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),)
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(240), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    stock: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    deleted: Mapped[bool] = mapped_column(Boolean, default=False)
    image_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    brand: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    model: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)

class Order(Base):
    __tablename__ = "orders"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[Optional[int]] = mapped_column(Integer, index=True, nullable=True)
    # token subject of the buyer; tokens without a uid claim are matched on it
    owner_email: Mapped[Optional[str]] = mapped_column(String(255), index=True, nullable=True)
    shipping_address_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # snapshot taken at checkout
    customer_name: Mapped[str] = mapped_column(String(100))
    customer_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    receiver_first_name: Mapped[str] = mapped_column(String(50))
    receiver_last_name: Mapped[str] = mapped_column(String(50))
    receiver_phone: Mapped[str] = mapped_column(String(20))
    receiver_dni: Mapped[str] = mapped_column(String(20))
    shipping_address_type: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    shipping_street: Mapped[str] = mapped_column(String(255), default="")
    shipping_number: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    shipping_floor: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    shipping_apartment: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    shipping_tower: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    shipping_between_streets: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    shipping_postal_code: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    shipping_province: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    shipping_city: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    shipping_observations: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    total: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    status: Mapped[str] = mapped_column(String(32), index=True, default="pending_payment")
    payment_method: Mapped[str] = mapped_column(String(20), default="bank_transfer")

    payment_receipt_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    payment_receipt_uploaded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(), nullable=True)

    gateway_preference_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    gateway_payment_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    gateway_status: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    gateway_payment_type: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    payment_submitted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(), nullable=True)
    payment_approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(), nullable=True)
    shipped_at: Mapped[Optional[datetime]] = mapped_column(DateTime(), nullable=True)
    delivered_at: Mapped[Optional[datetime]] = mapped_column(DateTime(), nullable=True)
    admin_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    tracking_number: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    shipping_provider: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(), default=utcnow)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(), index=True, nullable=True)
    stock_restored: Mapped[bool] = mapped_column(Boolean, default=False)

    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan", lazy="selectin")

class OrderItem(Base):
    __tablename__ = "order_items"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"))
    product_id: Mapped[int] = mapped_column(Integer)
    quantity: Mapped[int] = mapped_column(Integer)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    product_name: Mapped[str] = mapped_column(String(240))
    product_image_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    product_brand: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    product_model: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)

    order = relationship("Order", back_populates="items")

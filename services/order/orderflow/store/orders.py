import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session, sessionmaker

from orderflow.db import models
from orderflow.domain import Order, OrderStatus

logger = logging.getLogger(__name__)

# Columns a save() may overwrite. Snapshot fields, lines and the total are
# written once by create() and never touched again.
MUTABLE_FIELDS = (
    "status",
    "payment_method",
    "payment_receipt_url",
    "payment_receipt_uploaded_at",
    "gateway_preference_id",
    "gateway_payment_id",
    "gateway_status",
    "gateway_payment_type",
    "payment_submitted_at",
    "payment_approved_at",
    "shipped_at",
    "delivered_at",
    "admin_notes",
    "tracking_number",
    "shipping_provider",
    "updated_at",
    "expires_at",
    "stock_restored",
)


class OrderStore(ABC):

    @abstractmethod
    def create(self, order: Order) -> Order: ...

    @abstractmethod
    def get_by_id(self, order_id: int) -> Optional[Order]: ...

    @abstractmethod
    def get_by_user(self, user_id: int) -> List[Order]: ...

    @abstractmethod
    def get_by_owner_email(self, email: str) -> List[Order]: ...

    @abstractmethod
    def get_by_status(self, status: OrderStatus) -> List[Order]: ...

    @abstractmethod
    def get_expired_pending(self, now: datetime) -> List[Order]: ...

    @abstractmethod
    def list_all(self) -> List[Order]: ...

    @abstractmethod
    def save(self, order: Order, expected_status: Optional[OrderStatus] = None) -> Optional[Order]:
        """Overwrite the mutable fields of ``order``.

        With ``expected_status`` the write only lands if the stored status still
        equals it. Returns None when no row matched.
        """


def _to_domain(row: models.Order) -> Order:
    return Order.model_validate(row, from_attributes=True)


def _enum_value(value):
    return value.value if hasattr(value, "value") else value


class SqlOrderStore(OrderStore):

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def _query(self, stmt) -> List[Order]:
        db: Session = self._session_factory()
        try:
            return [_to_domain(r) for r in db.scalars(stmt).all()]
        finally:
            db.close()

    def create(self, order: Order) -> Order:
        data = order.model_dump(exclude={"id", "items"})
        data["status"] = _enum_value(order.status)
        data["payment_method"] = _enum_value(order.payment_method)
        row = models.Order(**data)
        row.items = [models.OrderItem(**line.model_dump()) for line in order.items]
        db: Session = self._session_factory()
        try:
            db.add(row)
            db.commit()
            order_id = row.id
        finally:
            db.close()
        return self.get_by_id(order_id)

    def get_by_id(self, order_id: int) -> Optional[Order]:
        db: Session = self._session_factory()
        try:
            row = db.get(models.Order, order_id)
            return _to_domain(row) if row else None
        finally:
            db.close()

    def get_by_user(self, user_id: int) -> List[Order]:
        return self._query(
            select(models.Order).where(models.Order.user_id == user_id).order_by(models.Order.created_at.desc())
        )

    def get_by_owner_email(self, email: str) -> List[Order]:
        return self._query(
            select(models.Order).where(models.Order.owner_email == email).order_by(models.Order.created_at.desc())
        )

    def get_by_status(self, status: OrderStatus) -> List[Order]:
        return self._query(
            select(models.Order).where(models.Order.status == status.value).order_by(models.Order.created_at.desc())
        )

    def get_expired_pending(self, now: datetime) -> List[Order]:
        return self._query(
            select(models.Order)
            .where(
                models.Order.status == OrderStatus.PENDING_PAYMENT.value,
                models.Order.expires_at.is_not(None),
                models.Order.expires_at <= now,
            )
            .order_by(models.Order.expires_at)
        )

    def list_all(self) -> List[Order]:
        return self._query(select(models.Order).order_by(models.Order.created_at.desc()))

    def save(self, order: Order, expected_status: Optional[OrderStatus] = None) -> Optional[Order]:
        values = {name: _enum_value(getattr(order, name)) for name in MUTABLE_FIELDS}
        stmt = update(models.Order).where(models.Order.id == order.id)
        if expected_status is not None:
            stmt = stmt.where(models.Order.status == expected_status.value)
        stmt = stmt.values(**values).execution_options(synchronize_session=False)
        db: Session = self._session_factory()
        try:
            res = db.execute(stmt)
            if res.rowcount != 1:
                db.rollback()
                logger.debug("Conditional save missed: order_id=%s expected=%s", order.id, expected_status)
                return None
            db.commit()
        finally:
            db.close()
        return self.get_by_id(order.id)

"""Inventory ledger: the only writer of product stock.

Every mutation is a single conditional UPDATE so two concurrent checkouts can
never both pass a read-then-write check and push stock below zero.
"""
import logging
from abc import ABC, abstractmethod
from typing import Optional

from sqlalchemy import update
from sqlalchemy.orm import Session, sessionmaker

from orderflow.db.models import Product
from orderflow.domain import ProductInfo

logger = logging.getLogger(__name__)


class InventoryLedger(ABC):

    @abstractmethod
    def get_product(self, product_id: int) -> Optional[ProductInfo]:
        """Read-only product snapshot used for validation and line pricing."""

    @abstractmethod
    def try_reserve(self, product_id: int, qty: int) -> bool:
        """Atomically take ``qty`` units; False when stock is short or the product is gone."""

    @abstractmethod
    def restore(self, product_id: int, qty: int) -> None:
        """Atomically give back ``qty`` units."""


class SqlInventoryLedger(InventoryLedger):

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def get_product(self, product_id: int) -> Optional[ProductInfo]:
        db: Session = self._session_factory()
        try:
            row = db.get(Product, product_id)
            if not row:
                return None
            return ProductInfo.model_validate(row, from_attributes=True)
        finally:
            db.close()

    def try_reserve(self, product_id: int, qty: int) -> bool:
        if qty <= 0:
            return False
        stmt = (
            update(Product)
            .where(
                Product.id == product_id,
                Product.stock >= qty,
                Product.active.is_(True),
                Product.deleted.is_(False),
            )
            .values(stock=Product.stock - qty)
            .execution_options(synchronize_session=False)
        )
        db: Session = self._session_factory()
        try:
            res = db.execute(stmt)
            db.commit()
        finally:
            db.close()
        ok = res.rowcount == 1
        if not ok:
            logger.warning("Stock reservation refused: product_id=%s qty=%s", product_id, qty)
        return ok

    def restore(self, product_id: int, qty: int) -> None:
        if qty <= 0:
            return
        stmt = (
            update(Product)
            .where(Product.id == product_id)
            .values(stock=Product.stock + qty)
            .execution_options(synchronize_session=False)
        )
        db: Session = self._session_factory()
        try:
            res = db.execute(stmt)
            db.commit()
        finally:
            db.close()
        if res.rowcount != 1:
            logger.error("Stock restore hit no product row: product_id=%s qty=%s", product_id, qty)
        else:
            logger.info("Stock restored: product_id=%s qty=%s", product_id, qty)

"""Stock compensation shared by cancellation, the admin override and the sweeper."""
import logging
from datetime import datetime
from typing import Iterable, Optional

from orderflow.domain import Order, OrderLine, OrderStatus
from orderflow.store.inventory import InventoryLedger
from orderflow.store.orders import OrderStore

logger = logging.getLogger(__name__)


def release_lines(inventory: InventoryLedger, lines: Iterable[OrderLine]) -> None:
    for line in lines:
        inventory.restore(line.product_id, line.quantity)


def cancel_with_restore(
    orders: OrderStore,
    inventory: InventoryLedger,
    order: Order,
    expected_status: OrderStatus,
    now: datetime,
    target: OrderStatus = OrderStatus.CANCELLED,
    admin_notes: Optional[str] = None,
) -> Optional[Order]:
    """Move ``order`` to ``target`` and give its stock back exactly once.

    The status write is conditional on ``expected_status`` and flips
    ``stock_restored`` in the same row update, so only the caller that wins
    the write restores inventory. Returns None when the write lost.
    """
    updated = order.model_copy(update={
        "status": target,
        "stock_restored": True,
        "updated_at": now,
        "admin_notes": admin_notes if admin_notes is not None else order.admin_notes,
    })
    saved = orders.save(updated, expected_status=expected_status)
    if saved is None:
        logger.info("Cancellation lost race: order_id=%s expected=%s", order.id, expected_status.value)
        return None
    if order.stock_restored:
        logger.info("Stock already restored, skipping: order_id=%s", order.id)
    else:
        release_lines(inventory, order.items)
    return saved

import logging
from datetime import datetime
from typing import Callable, Optional

from orderflow.domain import OrderStatus, utcnow
from orderflow.services.compensation import cancel_with_restore
from orderflow.store.inventory import InventoryLedger
from orderflow.store.orders import OrderStore

logger = logging.getLogger(__name__)

EXPIRED_NOTE = "Cancelled automatically: payment window expired"


class ExpirationSweeper:
    """Cancels orders still awaiting payment after their deadline and frees their stock.

    Safe to run concurrently with itself and with customer cancellation: each
    order is claimed with a write conditional on ``pending_payment``, and an
    order someone else already moved is skipped.
    """

    def __init__(self, orders: OrderStore, inventory: InventoryLedger, events=None, clock: Callable = utcnow):
        self._orders = orders
        self._inventory = inventory
        self._events = events
        self._clock = clock

    def sweep(self, now: Optional[datetime] = None) -> int:
        now = now or self._clock()
        cancelled = 0
        for order in self._orders.get_expired_pending(now):
            saved = cancel_with_restore(
                self._orders,
                self._inventory,
                order,
                expected_status=OrderStatus.PENDING_PAYMENT,
                now=now,
                admin_notes=order.admin_notes or EXPIRED_NOTE,
            )
            if saved is None:
                continue
            cancelled += 1
            logger.info("Expired order cancelled: order_id=%s expires_at=%s", order.id, order.expires_at)
            if self._events is not None:
                self._events.status_changed(saved, order.status)
        if cancelled:
            logger.info("Expiration sweep cancelled %d order(s)", cancelled)
        return cancelled

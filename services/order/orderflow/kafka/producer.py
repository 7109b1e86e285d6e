import json
import logging
from kafka import KafkaProducer
from kafka.errors import KafkaError
from orderflow.core.config import settings

logger = logging.getLogger(__name__)

_producer = None

def _get_producer() -> KafkaProducer:
    global _producer
    if _producer is None:
        _producer = KafkaProducer(
            bootstrap_servers=[settings.KAFKA_BOOTSTRAP],
            value_serializer=lambda v: json.dumps(v, default=str).encode("utf-8"),
            key_serializer=lambda v: (v.encode("utf-8") if isinstance(v, str) else v),
            linger_ms=5,
            retries=3,
        )
    return _producer

class EventPublisher:
    """Emits order lifecycle events to order.events (configurable).

    Events describe state that is already committed, so a broker failure is
    logged and never propagated back into the order operation.
    """

    def __init__(self, topic: str = None, enabled: bool = None):
        self.topic = topic or settings.TOPIC_ORDER_EVENTS
        self.enabled = settings.KAFKA_ENABLED if enabled is None else enabled

    def emit(self, event: dict):
        if not self.enabled:
            logger.debug("Kafka disabled, event not sent: %s", event)
            return
        try:
            p = _get_producer()
            p.send(self.topic, key=str(event.get("order_id", "")), value=event)
            p.flush(5)
        except KafkaError as e:
            logger.error("Failed to emit %s for order %s: %s", event.get("type"), event.get("order_id"), e)

    def order_created(self, order):
        self.emit({
            "type": "order.created",
            "order_id": order.id,
            "user_id": order.user_id,
            "user_email": order.customer_email,
            "amount": str(order.total),
            "payment_method": order.payment_method.value,
            "items": [
                {"product_id": it.product_id, "qty": it.quantity, "unit_price": str(it.unit_price)}
                for it in order.items
            ],
        })

    def status_changed(self, order, previous):
        self.emit({
            "type": "order.cancelled" if order.status.value == "cancelled" else "order.status_changed",
            "order_id": order.id,
            "user_email": order.customer_email,
            "from": previous.value,
            "to": order.status.value,
            "tracking_number": order.tracking_number,
        })

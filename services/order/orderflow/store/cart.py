import json
import logging
from typing import List
from redis import Redis
from orderflow.core.config import settings
from orderflow.domain import OrderItemRequest

logger = logging.getLogger(__name__)

def get_client() -> Redis:
    return Redis.from_url(settings.REDIS_URL, decode_responses=True)

def cart_key(email: str) -> str:
    return f"cart:{email}"

class CartReader:
    """Reads the cart hash the cart service maintains: {product_id: item_json}."""

    def __init__(self, client: Redis):
        self._client = client

    def items(self, email: str) -> List[OrderItemRequest]:
        raw = self._client.hgetall(cart_key(email))
        items = []
        for pid, val in raw.items():
            try:
                it = json.loads(val)
                items.append(OrderItemRequest(product_id=int(it.get("product_id", pid)), quantity=int(it["qty"])))
            except (ValueError, KeyError, TypeError):
                logger.warning("Skipping unreadable cart entry: key=%s product_id=%s", cart_key(email), pid)
        return items

    def clear(self, email: str) -> None:
        self._client.delete(cart_key(email))

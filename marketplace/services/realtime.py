# marketplace/services/realtime.py
import json
from datetime import datetime

import redis

from marketplace.services.notification_service import buyer_channel, seller_channel
from marketplace.utils.logging import get_logger
from marketplace.utils.settings import REDIS_URL

logger = get_logger(__name__)


class OrderEventCache:
    """
    Consumer-side projection of realtime events.

    Delivery is at-least-once and may be reordered around reconnects, so an
    event is applied only when it is newer than what is cached for the same
    order (or preview). Keyed by id + updated_at.
    """

    def __init__(self):
        self.orders: dict[int, dict] = {}
        self.previews: dict[int, dict] = {}

    @staticmethod
    def _ts(event: dict) -> datetime:
        return datetime.fromisoformat(event["updated_at"])

    def apply(self, event: dict) -> bool:
        if event.get("type") == "preview":
            store, key = self.previews, event["preview_submission_id"]
        else:
            store, key = self.orders, event["order_id"]

        current = store.get(key)
        if current is not None and self._ts(current) >= self._ts(event):
            return False

        store[key] = event
        return True

    def status_of(self, order_id: int) -> str | None:
        event = self.orders.get(order_id)
        return event["new_status"] if event else None


def channel_for(user) -> str:
    # the role comes from our users table, never from the client
    if user.role == "seller":
        return seller_channel(user.id)
    return buyer_channel(user.id)


class RealtimeSubscriber:
    def __init__(self, user, url: str | None = None):
        self.channel = channel_for(user)
        self.client = redis.Redis.from_url(url or REDIS_URL, decode_responses=True)
        self.pubsub = self.client.pubsub(ignore_subscribe_messages=True)

    def __enter__(self):
        self.pubsub.subscribe(self.channel)
        logger.info(f"Subscribed to {self.channel}")
        return self

    def __exit__(self, *exc):
        self.pubsub.close()
        logger.info(f"Unsubscribed from {self.channel}")

    def poll(self, timeout: float = 1.0) -> dict | None:
        message = self.pubsub.get_message(timeout=timeout)
        if not message:
            return None
        return json.loads(message["data"])

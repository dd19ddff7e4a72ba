# marketplace/services/notification_service.py
import json

import redis

from marketplace.celery_worker import celery_app
from marketplace.utils.clock import as_utc
from marketplace.utils.logging import get_logger
from marketplace.utils.retry import redis_retry
from marketplace.utils.settings import REDIS_URL

logger = get_logger(__name__)


def buyer_channel(buyer_id: int) -> str:
    return f"orders:buyer:{buyer_id}"


def seller_channel(seller_id: int) -> str:
    return f"orders:seller:{seller_id}"


def order_event(order) -> dict:
    return {
        "type": "order",
        "order_id": order.id,
        "new_status": order.status,
        "updated_at": as_utc(order.updated_at).isoformat(),
    }


def preview_event(preview, order) -> dict:
    return {
        "type": "preview",
        "order_id": order.id,
        "preview_submission_id": preview.id,
        "status": preview.status,
        "updated_at": as_utc(order.updated_at).isoformat(),
    }


class ChangeNotifier:
    """
    Publishes committed state changes to the buyer's and the seller's channel.
    Called after commit; a publishing failure is logged and never undoes the
    transition. Delivery is at-least-once, consumers dedupe (OrderEventCache).
    """

    def order_changed(self, order) -> None:
        self._dispatch(order_event(order), [buyer_channel(order.buyer_id), seller_channel(order.seller_id)])

    def preview_changed(self, preview, order) -> None:
        self._dispatch(preview_event(preview, order), [buyer_channel(order.buyer_id), seller_channel(order.seller_id)])

    def _dispatch(self, event: dict, channels: list[str]) -> None:
        try:
            publish_event_task.delay(event, channels)
        except Exception as e:
            logger.warning(f"Could not queue realtime event {event} for {channels}: {e}")


@redis_retry()
def _publish(client: redis.Redis, channel: str, message: str) -> int:
    return client.publish(channel, message)


@celery_app.task(name="marketplace.services.notification_service.publish_event_task")
def publish_event_task(event: dict, channels: list[str]):
    client = redis.Redis.from_url(REDIS_URL, decode_responses=True)
    message = json.dumps(event)
    delivered = 0
    for channel in channels:
        delivered += _publish(client, channel, message)

    logger.info(f"[REALTIME] {event['type']} event for order {event['order_id']} -> {channels} ({delivered} subscribers)")
    return {"event": event, "channels": channels, "delivered": delivered}

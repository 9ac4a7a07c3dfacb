"""
Notification outbox: push order status events for the worker. Backend: Redis (LPUSH) or AWS SQS
when SQS_QUEUE_URL is set.
"""
import json

from app.config import settings
from app.metrics import notifications_published_total
from app.models import Order
from app.notifications import build_status_event
from app.redis_client import get_redis
from app.sqs_client import send_message

NOTIFICATION_QUEUE_KEY = "queue:order_notifications"
NOTIFICATION_DLQ_KEY = "queue:order_notifications:dlq"
# Composed messages ready for the WhatsApp sender
NOTIFICATION_OUTBOX_KEY = "queue:order_notifications:outbox"


def _make_body(event: dict, attempts: int = 0) -> dict:
    return {**event, "attempts": attempts}


async def push_to_queue(event: dict, attempts: int = 0) -> None:
    body = _make_body(event, attempts)
    if settings.sqs_queue_url:
        await send_message(body)
    else:
        r = await get_redis()
        await r.lpush(NOTIFICATION_QUEUE_KEY, json.dumps(body))


async def publish_status_event(order: Order) -> None:
    await push_to_queue(build_status_event(order))
    notifications_published_total.labels(status=order.current_status.value).inc()

"""
Notification worker: pull order status events from Redis or AWS SQS, compose the customer
WhatsApp message and push it with its click-to-send link to the outbox list the sender drains.
- Events that cannot be composed go straight to the DLQ.
- Redis: exponential backoff + manual DLQ. SQS: don't delete on failure; SQS redrive to DLQ after max receives.
- Prometheus /metrics on port 9090 (worker metrics).
- Graceful shutdown on SIGTERM.
Run: python -m app.worker
"""
import asyncio
import json
import logging
import signal
import sys
import threading
import time

import redis.asyncio as redis

from app.config import settings
from app.metrics import notifications_dlq_total, notifications_failed_total, notifications_sent_total
from app.notifications import compose_status_message, whatsapp_link
from app.queue import NOTIFICATION_DLQ_KEY, NOTIFICATION_OUTBOX_KEY, NOTIFICATION_QUEUE_KEY
from app.redis_client import close_redis, get_redis
from app.sqs_client import change_message_visibility, delete_message, receive_messages, send_to_dlq

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    stream=sys.stdout,
)
logger = logging.getLogger(__name__)

BRPOP_TIMEOUT = 5
GRACEFUL_SHUTDOWN_WAIT_SEC = 30
WORKER_METRICS_PORT = 9090


def _start_metrics_server() -> None:
    from prometheus_client import start_http_server
    start_http_server(WORKER_METRICS_PORT)


class MalformedEvent(Exception):
    """The event lacks what the message needs; every retry would fail the same way."""


def compose_notification(event: dict) -> dict:
    """Message text and click-to-send WhatsApp link for one status event."""
    try:
        text = compose_status_message(event)
        link = whatsapp_link(event["mobile_number"], text)
    except (KeyError, TypeError) as e:
        raise MalformedEvent(f"cannot compose message: {e!r}") from e
    return {
        "order_id": event["order_id"],
        "status": event["status"],
        "mobile_number": event["mobile_number"],
        "text": text,
        "link": link,
    }


async def deliver(r: redis.Redis, event: dict) -> dict:
    """Compose the message and hand it to the sender's outbox list."""
    message = compose_notification(event)
    await r.lpush(NOTIFICATION_OUTBOX_KEY, json.dumps(message))
    logger.info("Notification ready order_id=%s status=%s", message["order_id"], message["status"])
    return message


async def _dead_letter(r: redis.Redis, data: dict, attempts: int, error: Exception) -> None:
    dlq_message = json.dumps({
        **data,
        "attempts": attempts,
        "last_error": str(error),
        "failed_at": time.time(),
    })
    await r.lpush(NOTIFICATION_DLQ_KEY, dlq_message)
    notifications_dlq_total.inc()
    logger.warning("Moved order_id=%s notification to DLQ after %d attempt(s)", data.get("order_id"), attempts)


async def process_one_redis(r: redis.Redis, raw: str, sem: asyncio.Semaphore) -> None:
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.warning("Invalid JSON from queue: %s", e)
        return
    order_id = data.get("order_id")
    attempts = data.get("attempts", 0)
    if not order_id:
        logger.warning("Message missing order_id, skipping")
        return

    async with sem:
        try:
            await deliver(r, data)
            notifications_sent_total.inc()
        except MalformedEvent as e:
            notifications_failed_total.inc()
            logger.error("Cannot notify order_id=%s: %s", order_id, e)
            await _dead_letter(r, data, attempts + 1, e)
        except Exception as e:
            notifications_failed_total.inc()
            logger.exception("Failed to notify order_id=%s (attempt %d): %s", order_id, attempts + 1, e)
            next_attempts = attempts + 1
            if next_attempts >= settings.worker_max_retries:
                await _dead_letter(r, data, next_attempts, e)
            else:
                backoff_sec = 2 ** attempts
                logger.info("Re-queuing order_id=%s in %ds (attempt %d/%d)", order_id, backoff_sec, next_attempts, settings.worker_max_retries)
                await asyncio.sleep(backoff_sec)
                await r.lpush(NOTIFICATION_QUEUE_KEY, json.dumps({**data, "attempts": next_attempts}))


async def process_one_sqs(
    r: redis.Redis, body: str, receipt_handle: str, receive_count: int, sem: asyncio.Semaphore,
) -> None:
    try:
        data = json.loads(body)
    except json.JSONDecodeError:
        logger.warning("Invalid JSON from SQS")
        return
    order_id = data.get("order_id")
    if not order_id:
        logger.warning("Message missing order_id, skipping")
        return

    async with sem:
        try:
            await deliver(r, data)
            notifications_sent_total.inc()
            await asyncio.to_thread(delete_message, receipt_handle)
        except MalformedEvent as e:
            notifications_failed_total.inc()
            logger.error("Cannot notify order_id=%s: %s", order_id, e)
            if settings.sqs_dlq_url:
                await send_to_dlq({**data, "receive_count": receive_count, "last_error": str(e)})
                await asyncio.to_thread(delete_message, receipt_handle)
                notifications_dlq_total.inc()
            else:
                # Only the redrive policy can move it: make it visible again at once
                await asyncio.to_thread(change_message_visibility, receipt_handle, 0)
        except Exception as e:
            notifications_failed_total.inc()
            logger.exception("Failed to notify order_id=%s (receive #%d): %s", order_id, receive_count, e)
            # Not deleted: reappears after the visibility timeout, SQS moves it to the DLQ after max receives
            backoff = min(2 ** receive_count, 900)
            await asyncio.to_thread(change_message_visibility, receipt_handle, backoff)


async def _drain(tasks: set[asyncio.Task]) -> None:
    if not tasks:
        return
    logger.info("Graceful shutdown: waiting for %d in-flight task(s) (max %ds) ...", len(tasks), GRACEFUL_SHUTDOWN_WAIT_SEC)
    _, pending = await asyncio.wait(tasks, timeout=GRACEFUL_SHUTDOWN_WAIT_SEC, return_when=asyncio.ALL_COMPLETED)
    for t in pending:
        t.cancel()
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)


async def run_worker_redis(shutdown_event: asyncio.Event) -> None:
    sem = asyncio.Semaphore(settings.worker_concurrency)
    logger.info(
        "Backend=Redis. Listening on %s (concurrency=%d, max_retries=%d) ...",
        NOTIFICATION_QUEUE_KEY,
        settings.worker_concurrency,
        settings.worker_max_retries,
    )
    r = redis.from_url(settings.redis_url, decode_responses=True)
    tasks: set[asyncio.Task] = set()
    try:
        while not shutdown_event.is_set():
            result = await r.brpop(NOTIFICATION_QUEUE_KEY, timeout=BRPOP_TIMEOUT)
            if result is None:
                continue
            _key, raw = result
            t = asyncio.create_task(process_one_redis(r, raw, sem))
            tasks.add(t)
            t.add_done_callback(tasks.discard)
    finally:
        await _drain(tasks)
        await r.aclose()
        logger.info("Worker stopped.")


async def run_worker_sqs(shutdown_event: asyncio.Event) -> None:
    sem = asyncio.Semaphore(settings.worker_concurrency)
    logger.info(
        "Backend=SQS. Queue=%s (concurrency=%d) ...",
        settings.sqs_queue_url,
        settings.worker_concurrency,
    )
    # Composed messages still go to the Redis outbox the sender drains
    r = await get_redis()
    tasks: set[asyncio.Task] = set()
    try:
        while not shutdown_event.is_set():
            messages = await asyncio.to_thread(receive_messages, 10, 5)
            for msg in messages:
                body = msg.get("Body") or "{}"
                receipt = msg.get("ReceiptHandle") or ""
                attrs = msg.get("Attributes") or {}
                receive_count = int(attrs.get("ApproximateReceiveCount", 1))
                t = asyncio.create_task(process_one_sqs(r, body, receipt, receive_count, sem))
                tasks.add(t)
                t.add_done_callback(tasks.discard)
    finally:
        await _drain(tasks)
        await close_redis()
        logger.info("Worker stopped.")


async def run_worker(shutdown_event: asyncio.Event) -> None:
    if settings.sqs_queue_url:
        await run_worker_sqs(shutdown_event)
    else:
        await run_worker_redis(shutdown_event)


def main() -> None:
    threading.Thread(target=_start_metrics_server, daemon=True).start()
    logger.info("Metrics server listening on port %s", WORKER_METRICS_PORT)

    shutdown_event = asyncio.Event()

    def on_signal():
        shutdown_event.set()

    loop = asyncio.new_event_loop()
    try:
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, on_signal)
    except NotImplementedError:
        signal.signal(signal.SIGTERM, lambda *a: shutdown_event.set())
        signal.signal(signal.SIGINT, lambda *a: shutdown_event.set())

    asyncio.set_event_loop(loop)
    try:
        loop.run_until_complete(run_worker(shutdown_event))
    finally:
        loop.close()


if __name__ == "__main__":
    main()

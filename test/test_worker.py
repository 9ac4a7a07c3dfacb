"""
Redis worker path against an in-memory stand-in for the Redis lists it touches.
"""
import asyncio
import json
from collections import defaultdict

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from app.config import settings
from app.notifications import build_status_event
from app.queue import NOTIFICATION_DLQ_KEY, NOTIFICATION_OUTBOX_KEY, NOTIFICATION_QUEUE_KEY
from app.worker import process_one_redis


class FakeRedis:
    def __init__(self, unavailable=()):
        self.lists = defaultdict(list)
        self.unavailable = set(unavailable)

    async def lpush(self, key, value):
        if key in self.unavailable:
            raise RedisConnectionError("connection refused")
        self.lists[key].insert(0, value)

    def messages(self, key):
        return [json.loads(raw) for raw in self.lists[key]]


def _process(r, raw):
    async def run():
        await process_one_redis(r, raw, asyncio.Semaphore(1))
    asyncio.run(run())


@pytest.fixture
def slept(monkeypatch):
    real_sleep = asyncio.sleep
    delays = []

    async def fake_sleep(seconds):
        delays.append(seconds)
        await real_sleep(0)

    monkeypatch.setattr("app.worker.asyncio.sleep", fake_sleep)
    return delays


@pytest.fixture
def event(order):
    return {**build_status_event(order), "attempts": 0}


def test_composed_message_reaches_outbox(event, slept):
    r = FakeRedis()
    _process(r, json.dumps(event))
    [message] = r.messages(NOTIFICATION_OUTBOX_KEY)
    assert message["order_id"] == event["order_id"]
    assert message["status"] == "Placed"
    assert message["link"].startswith("https://wa.me/919876543210?text=")
    assert r.lists[NOTIFICATION_DLQ_KEY] == []
    assert slept == []


def test_malformed_event_goes_straight_to_dlq(event, slept):
    del event["customer_name"]
    r = FakeRedis()
    _process(r, json.dumps(event))
    [dead] = r.messages(NOTIFICATION_DLQ_KEY)
    assert dead["order_id"] == event["order_id"]
    assert dead["attempts"] == 1
    assert "customer_name" in dead["last_error"]
    assert r.lists[NOTIFICATION_OUTBOX_KEY] == []
    assert r.lists[NOTIFICATION_QUEUE_KEY] == []
    assert slept == []


def test_outbox_failure_is_requeued_with_backoff(event, slept):
    r = FakeRedis(unavailable=[NOTIFICATION_OUTBOX_KEY])
    _process(r, json.dumps(event))
    [requeued] = r.messages(NOTIFICATION_QUEUE_KEY)
    assert requeued["attempts"] == 1
    assert slept == [1]
    assert r.lists[NOTIFICATION_DLQ_KEY] == []


def test_last_failed_attempt_goes_to_dlq(event, slept):
    event["attempts"] = settings.worker_max_retries - 1
    r = FakeRedis(unavailable=[NOTIFICATION_OUTBOX_KEY])
    _process(r, json.dumps(event))
    [dead] = r.messages(NOTIFICATION_DLQ_KEY)
    assert dead["attempts"] == settings.worker_max_retries
    assert r.lists[NOTIFICATION_QUEUE_KEY] == []
    assert slept == []


@pytest.mark.parametrize("raw", ["not json", json.dumps({"status": "Placed"})])
def test_unusable_messages_are_dropped(raw):
    r = FakeRedis()
    _process(r, raw)
    assert not any(r.lists.values())

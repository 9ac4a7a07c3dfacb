"""
AWS SQS helpers for the notification outbox. Used when SQS_QUEUE_URL is set.
"""
import asyncio
import json
from typing import Any

import boto3

from app.config import settings

_sqs_client: Any = None


def _get_client():
    global _sqs_client
    if _sqs_client is None:
        _sqs_client = boto3.client("sqs", region_name=settings.aws_region)
    return _sqs_client


async def _send(queue_url: str, body: dict) -> None:
    # boto3 runs in a thread so the event loop is not blocked
    client = _get_client()
    await asyncio.to_thread(
        client.send_message,
        QueueUrl=queue_url,
        MessageBody=json.dumps(body),
    )


async def send_message(body: dict) -> None:
    """Send to the notification queue."""
    await _send(settings.sqs_queue_url, body)


async def send_to_dlq(body: dict) -> None:
    """Park a message that can never succeed on the dead-letter queue."""
    await _send(settings.sqs_dlq_url, body)


def receive_messages(max_number: int = 10, wait_seconds: int = 5) -> list[dict]:
    """Sync receive (used by the worker in a thread). Returns list of {ReceiptHandle, Body, Attributes}."""
    client = _get_client()
    resp = client.receive_message(
        QueueUrl=settings.sqs_queue_url,
        MaxNumberOfMessages=max_number,
        WaitTimeSeconds=wait_seconds,
        AttributeNames=["ApproximateReceiveCount"],
    )
    return resp.get("Messages") or []


def delete_message(receipt_handle: str) -> None:
    client = _get_client()
    client.delete_message(
        QueueUrl=settings.sqs_queue_url,
        ReceiptHandle=receipt_handle,
    )


def change_message_visibility(receipt_handle: str, visibility_timeout: int) -> None:
    """Delay the next delivery attempt (backoff); SQS redrives to the DLQ after max receives."""
    client = _get_client()
    client.change_message_visibility(
        QueueUrl=settings.sqs_queue_url,
        ReceiptHandle=receipt_handle,
        VisibilityTimeout=visibility_timeout,
    )

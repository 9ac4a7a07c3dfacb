"""
Customer notifications for status changes: the event published to the outbox, and the
WhatsApp message the worker composes from it.
"""
import re
from datetime import date
from urllib.parse import quote

from app.config import settings
from app.models import Order
from app.order_state import OrderStatus

NOTIFICATION_EVENT_TYPE = "ORDER_STATUS_CHANGED"


def build_status_event(order: Order) -> dict:
    """Only the data needed to tell the customer where their order is."""
    details = order.return_details
    return {
        "event_type": NOTIFICATION_EVENT_TYPE,
        "order_id": order.id,
        "customer_name": order.customer.full_name,
        "mobile_number": order.customer.mobile_number,
        "status": order.current_status.value,
        "expected_delivery_date": order.expected_delivery_date,
        "expected_delivery_time": order.expected_delivery_time,
        "pickup_date": details.pickup_date if details else None,
        "pickup_time": details.pickup_time if details else None,
        "updated_at": order.updated_at.isoformat(),
    }


def _format_date(value: str) -> str:
    """ISO date -> '05 Mar 2025'; anything unparseable is shown as given."""
    try:
        return date.fromisoformat(value[:10]).strftime("%d %b %Y")
    except ValueError:
        return value


def tracking_link(order_id: str) -> str:
    return f"{settings.tracking_base_url.rstrip('/')}/{order_id}"


def compose_status_message(event: dict) -> str:
    status = event["status"]
    lines = [
        f"Hello {event['customer_name']},",
        f"Your order *{event['order_id']}* from {settings.store_name} is currently *{status}*.",
    ]
    if status == OrderStatus.PICKUP_SCHEDULED.value and event.get("pickup_date"):
        when = _format_date(event["pickup_date"])
        if event.get("pickup_time"):
            when += f" at {event['pickup_time']}"
        lines.append(f"Return Pickup Scheduled: {when}.")
    elif status == OrderStatus.REFUND_COMPLETED.value:
        lines.append("Refund has been processed.")
    elif event.get("expected_delivery_date"):
        when = _format_date(event["expected_delivery_date"])
        if event.get("expected_delivery_time"):
            when += f" {event['expected_delivery_time']}"
        lines.append(f"Expected Delivery: *{when}*.")
    lines.append(f"Track here: {tracking_link(event['order_id'])}")
    return "\n".join(lines)


def whatsapp_link(mobile_number: str, text: str) -> str:
    phone = re.sub(r"\D", "", mobile_number)
    if len(phone) == 10:
        phone = settings.default_country_code + phone
    return f"https://wa.me/{phone}?text={quote(text)}"

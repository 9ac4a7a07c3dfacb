from collections.abc import Iterable

from app.models import Order
from app.order_state import OrderStatus


def search_orders(
    orders: Iterable[Order],
    query: str | None = None,
    status: OrderStatus | None = None,
) -> list[Order]:
    """Match id or customer name (case-insensitive) or mobile number; newest update first."""
    q = (query or "").strip().lower()
    result = []
    for order in orders:
        if status is not None and order.current_status != status:
            continue
        if q and not (
            q in order.id.lower()
            or q in order.customer.full_name.lower()
            or q in order.customer.mobile_number
        ):
            continue
        result.append(order)
    return sorted(result, key=lambda o: o.updated_at, reverse=True)

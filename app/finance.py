"""
Order financials: total from line items, balance still due after the advance.
"""
from collections.abc import Iterable
from decimal import Decimal

ZERO = Decimal("0")


def compute_total(items: Iterable) -> Decimal:
    return sum((Decimal(item.quantity) * item.unit_price for item in items), ZERO)


def compute_balance(total: Decimal, advance: Decimal) -> Decimal:
    """Over-advance is allowed; the balance floors at zero."""
    return max(ZERO, total - advance)

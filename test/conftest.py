"""
Shared pytest fixtures: a steppable clock, actors for every role, and an in-memory repository
standing in for Postgres in API tests.
"""
from datetime import datetime, timedelta, timezone

import pytest

from app.errors import NotFound
from app.lifecycle import OrderLifecycle
from app.permissions import Actor, PermissionSet, Role

ALL_PERMISSIONS = PermissionSet(
    can_add_orders=True,
    can_edit_details=True,
    can_add_advance=True,
    can_change_status=True,
    can_manage_returns=True,
    can_process_refunds=True,
)


class FixedClock:
    """Returns the same instant until advanced."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, minutes: int = 1) -> None:
        self.now += timedelta(minutes=minutes)


class InMemoryRepository:
    def __init__(self):
        self.orders = {}
        self.staff = {}

    async def load_all_orders(self):
        return list(self.orders.values())

    async def get_order(self, order_id):
        if order_id not in self.orders:
            raise NotFound("order", order_id)
        return self.orders[order_id]

    async def order_ids(self):
        return set(self.orders)

    async def save_order(self, order):
        self.orders[order.id] = order

    async def delete_order(self, order_id):
        if self.orders.pop(order_id, None) is None:
            raise NotFound("order", order_id)

    async def load_all_staff(self):
        return list(self.staff.values())

    async def get_staff(self, staff_id):
        if staff_id not in self.staff:
            raise NotFound("staff", staff_id)
        return self.staff[staff_id]

    async def save_staff(self, staff):
        self.staff[staff.id] = staff

    async def delete_staff(self, staff_id):
        if self.staff.pop(staff_id, None) is None:
            raise NotFound("staff", staff_id)


@pytest.fixture
def clock():
    return FixedClock(datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def lifecycle(clock):
    return OrderLifecycle(clock=clock, id_prefix="ORD")


@pytest.fixture
def admin():
    return Actor(id="ADMIN_001", name="Super Admin", role=Role.ADMIN)


@pytest.fixture
def staff_all():
    """Staff with every one of the six flags set."""
    return Actor(id="STAFF_ALL", name="Senior Staff", role=Role.STAFF, permissions=ALL_PERMISSIONS)


@pytest.fixture
def staff_none():
    return Actor(id="STAFF_NONE", name="Trainee", role=Role.STAFF, permissions=PermissionSet())


@pytest.fixture
def customer():
    return {"full_name": "Rahul Sharma", "mobile_number": "9876543210", "address": "123 MG Road, Bangalore"}


@pytest.fixture
def order(lifecycle, admin, customer):
    """Widget x2 at 500, no advance, just placed."""
    return lifecycle.create(
        admin,
        customer,
        [{"name": "Widget", "quantity": 2, "unit_price": 500}],
        "Prepaid",
        0,
    )


@pytest.fixture
def advance_to(lifecycle, admin, clock):
    """Walk an order through the given statuses as admin, one minute apart."""
    def _advance(order, *statuses):
        for status in statuses:
            clock.advance()
            order = lifecycle.request_transition(order, admin, status)
        return order
    return _advance

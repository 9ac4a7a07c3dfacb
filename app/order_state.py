"""
Order lifecycle state machine. Statuses are partitioned into display groups; legality is decided
from the target status's group plus the order's return request.
"""
from enum import Enum


class OrderStatus(str, Enum):
    PLACED = "Placed"
    CONFIRMED = "Confirmed"
    PACKED = "Packed"
    SHIPPED = "Shipped"
    OUT_FOR_DELIVERY = "Out for Delivery"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"
    RETURN_REQUESTED = "Return Requested"
    RETURN_APPROVED = "Return Approved"
    RETURN_REJECTED = "Return Rejected"
    PICKUP_SCHEDULED = "Pickup Scheduled"
    RETURNED = "Returned"
    REFUND_INITIATED = "Refund Initiated"
    REFUND_COMPLETED = "Refund Completed"


class ReturnType(str, Enum):
    REPLACEMENT = "Replacement"
    REFUND = "Refund"


class StatusGroup(str, Enum):
    FORWARD = "forward"
    RETURN = "return"
    REFUND = "refund"


FORWARD_FUNNEL: tuple[OrderStatus, ...] = (
    OrderStatus.PLACED,
    OrderStatus.CONFIRMED,
    OrderStatus.PACKED,
    OrderStatus.SHIPPED,
    OrderStatus.OUT_FOR_DELIVERY,
    OrderStatus.DELIVERED,
)

RETURN_FUNNEL: tuple[OrderStatus, ...] = (
    OrderStatus.RETURN_REQUESTED,
    OrderStatus.RETURN_APPROVED,
    OrderStatus.PICKUP_SCHEDULED,
    OrderStatus.RETURNED,
)

REFUND_FUNNEL: tuple[OrderStatus, ...] = (
    OrderStatus.REFUND_INITIATED,
    OrderStatus.REFUND_COMPLETED,
)

TERMINAL_STATUSES: frozenset[OrderStatus] = frozenset([
    OrderStatus.CANCELLED,
    OrderStatus.RETURN_REJECTED,
    OrderStatus.REFUND_COMPLETED,
])

STATUS_GROUPS: dict[OrderStatus, StatusGroup] = {
    **{s: StatusGroup.FORWARD for s in FORWARD_FUNNEL},
    OrderStatus.CANCELLED: StatusGroup.FORWARD,
    **{s: StatusGroup.RETURN for s in RETURN_FUNNEL},
    OrderStatus.RETURN_REJECTED: StatusGroup.RETURN,
    **{s: StatusGroup.REFUND for s in REFUND_FUNNEL},
}

# Edges inside the return and refund sub-flows (entry into Return Requested is handled separately)
RETURN_EDGES: frozenset[tuple[OrderStatus, OrderStatus]] = frozenset([
    (OrderStatus.RETURN_REQUESTED, OrderStatus.RETURN_APPROVED),
    (OrderStatus.RETURN_APPROVED, OrderStatus.PICKUP_SCHEDULED),
    (OrderStatus.PICKUP_SCHEDULED, OrderStatus.RETURNED),
    (OrderStatus.RETURN_REQUESTED, OrderStatus.RETURN_REJECTED),
    (OrderStatus.RETURN_APPROVED, OrderStatus.RETURN_REJECTED),
])

REFUND_EDGES: frozenset[tuple[OrderStatus, OrderStatus]] = frozenset([
    (OrderStatus.RETURNED, OrderStatus.REFUND_INITIATED),
    (OrderStatus.REFUND_INITIATED, OrderStatus.REFUND_COMPLETED),
])


def status_group(status: OrderStatus) -> StatusGroup:
    return STATUS_GROUPS[status]


def is_terminal(status: OrderStatus) -> bool:
    return status in TERMINAL_STATUSES


def is_legal_transition(
    current: OrderStatus,
    target: OrderStatus,
    has_return_request: bool = False,
    return_type: ReturnType | None = None,
) -> bool:
    """True if target may be set while the order is in current."""
    if current in TERMINAL_STATUSES:
        return False
    if current == target:
        # Re-submitting the same status is a no-op, but entering the return flow never is
        return target != OrderStatus.RETURN_REQUESTED
    if target == OrderStatus.CANCELLED:
        return True

    group = STATUS_GROUPS[target]
    if group is StatusGroup.FORWARD:
        return STATUS_GROUPS[current] is StatusGroup.FORWARD
    if target == OrderStatus.RETURN_REQUESTED:
        return current == OrderStatus.DELIVERED and not has_return_request
    if group is StatusGroup.RETURN:
        return has_return_request and (current, target) in RETURN_EDGES
    return (
        has_return_request
        and return_type == ReturnType.REFUND
        and (current, target) in REFUND_EDGES
    )


def legal_targets(
    current: OrderStatus,
    has_return_request: bool = False,
    return_type: ReturnType | None = None,
) -> list[OrderStatus]:
    """Every status other than current reachable in one move, in declaration order."""
    return [
        target for target in OrderStatus
        if target != current and is_legal_transition(current, target, has_return_request, return_type)
    ]


def progress(order) -> list[dict]:
    """
    Tracking timeline for customers: the funnel the order is currently in (forward or return),
    each step marked reached/current with the time it was first recorded. Cancelled orders have none.
    A rejected return ends with the return steps it passed through, then Return Rejected.
    """
    current = order.current_status
    if current == OrderStatus.CANCELLED:
        return []

    first_seen = {}
    for entry in order.history:
        first_seen.setdefault(entry.status, entry.timestamp)

    if current == OrderStatus.RETURN_REJECTED:
        funnel = tuple(s for s in RETURN_FUNNEL if s in first_seen) + (current,)
    elif STATUS_GROUPS[current] in (StatusGroup.RETURN, StatusGroup.REFUND):
        funnel = RETURN_FUNNEL + REFUND_FUNNEL
    else:
        funnel = FORWARD_FUNNEL
    current_index = funnel.index(current)

    return [
        {
            "status": status,
            "reached": index <= current_index,
            "current": index == current_index,
            "timestamp": first_seen.get(status),
        }
        for index, status in enumerate(funnel)
    ]

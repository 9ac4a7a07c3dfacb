"""
Order lifecycle engine.

Every operation takes an order snapshot plus the acting actor and either returns a complete
replacement snapshot or raises an OrderError. Checks run in a fixed order (permission, return
state, transition legality, input validation) and nothing is applied until all of them pass,
so the caller can persist the result as a single record replacement.
"""
import logging
import uuid
from collections.abc import Callable, Collection, Iterable
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from pydantic import ValidationError as PydanticValidationError

from app.config import settings
from app.errors import IllegalTransition, InvalidReturnState, ValidationError
from app.finance import compute_balance, compute_total
from app.models import (
    Customer,
    HistoryEntry,
    LineItem,
    Order,
    OrderPatch,
    PaymentMethod,
    RefundStatus,
    ReturnRequest,
)
from app.order_state import (
    OrderStatus,
    ReturnType,
    StatusGroup,
    is_legal_transition,
    status_group,
)
from app.permissions import Action, Actor, action_for_status, require

logger = logging.getLogger(__name__)

# Patch fields grouped by the capability that gates them
DETAIL_FIELDS = frozenset([
    "customer",
    "items",
    "payment_method",
    "admin_notes",
    "expected_delivery_date",
    "expected_delivery_time",
    "courier_tracking_url",
])
ADVANCE_FIELDS = frozenset(["advance_amount"])
RETURN_FIELDS = frozenset(["pickup_date", "pickup_time", "return_tracking_url"])
REFUND_FIELDS = frozenset(["refund_method"])

# Patch field -> ReturnRequest field
RETURN_DETAIL_NAMES = {
    "pickup_date": "pickup_date",
    "pickup_time": "pickup_time",
    "return_tracking_url": "tracking_url",
    "refund_method": "refund_method",
}

NOT_CLEARABLE = frozenset(["customer", "items", "payment_method", "advance_amount"])


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _describe(exc: PydanticValidationError) -> str:
    first = exc.errors()[0]
    location = ".".join(str(part) for part in first["loc"])
    return f"{location}: {first['msg']}" if location else first["msg"]


def _validated(model, data):
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(_describe(e)) from e


def _enum(enum_cls, value, field: str):
    try:
        return enum_cls(value)
    except ValueError as e:
        raise ValidationError(f"{field}: {value!r} is not a valid {enum_cls.__name__}") from e


def _money(value, field: str) -> Decimal:
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation as e:
        raise ValidationError(f"{field}: {value!r} is not a number") from e
    if not amount.is_finite() or amount < 0:
        raise ValidationError(f"{field} must be a non-negative number")
    return amount


def _line_items(items: Iterable) -> tuple[LineItem, ...]:
    line_items = tuple(_validated(LineItem, item) for item in items)
    if not line_items:
        raise ValidationError("items: an order needs at least one line item")
    return line_items


class OrderLifecycle:
    def __init__(self, clock: Callable[[], datetime] = utcnow, id_prefix: str | None = None):
        self._clock = clock
        self._id_prefix = id_prefix or settings.order_id_prefix

    def _now(self, order: Order | None = None) -> datetime:
        now = self._clock()
        if order is not None and order.updated_at > now:
            # Never stamp history earlier than what is already recorded
            return order.updated_at
        return now

    def _new_id(self, existing_ids: Collection[str]) -> str:
        while True:
            order_id = f"{self._id_prefix}-{uuid.uuid4().hex[:8].upper()}"
            if order_id not in existing_ids:
                return order_id

    def create(
        self,
        actor: Actor | None,
        customer: Customer | dict,
        items: Iterable[LineItem | dict],
        payment_method: PaymentMethod | str,
        advance: Decimal | int | float | str = 0,
        *,
        admin_notes: str = "",
        expected_delivery_date: str | None = None,
        expected_delivery_time: str | None = None,
        courier_tracking_url: str | None = None,
        existing_ids: Collection[str] = (),
    ) -> Order:
        require(actor, Action.CREATE_ORDER)
        customer = _validated(Customer, customer)
        line_items = _line_items(items)
        payment_method = _enum(PaymentMethod, payment_method, "payment_method")
        advance = _money(advance, "advance_amount")

        now = self._now()
        total = compute_total(line_items)
        order = Order(
            id=self._new_id(existing_ids),
            customer=customer,
            items=line_items,
            total_amount=total,
            advance_amount=advance,
            balance_amount=compute_balance(total, advance),
            payment_method=payment_method,
            current_status=OrderStatus.PLACED,
            history=(HistoryEntry(status=OrderStatus.PLACED, timestamp=now),),
            created_at=now,
            updated_at=now,
            admin_notes=admin_notes or "",
            expected_delivery_date=expected_delivery_date,
            expected_delivery_time=expected_delivery_time,
            courier_tracking_url=courier_tracking_url,
        )
        logger.info("Order %s created by %s (total=%s)", order.id, actor.id, total)
        return order

    def apply_edit(self, order: Order, actor: Actor | None, patch: OrderPatch | dict) -> Order:
        """Edit details, advance or return logistics. Status and history are never touched here."""
        patch = _validated(OrderPatch, patch)
        fields = patch.model_fields_set
        if not fields:
            return order

        if fields & DETAIL_FIELDS:
            require(actor, Action.EDIT_DETAILS)
        if fields & ADVANCE_FIELDS:
            require(actor, Action.ADJUST_ADVANCE)
        if fields & RETURN_FIELDS:
            require(actor, Action.MANAGE_RETURN_STATUS)
        if fields & REFUND_FIELDS:
            require(actor, Action.PROCESS_REFUND)

        if fields & (RETURN_FIELDS | REFUND_FIELDS) and not order.has_return_request:
            raise InvalidReturnState(f"order {order.id} has no return request")
        if fields & REFUND_FIELDS and order.return_type != ReturnType.REFUND:
            raise InvalidReturnState(f"order {order.id} is not being returned for a refund")

        for name in fields & NOT_CLEARABLE:
            if getattr(patch, name) is None:
                raise ValidationError(f"{name} cannot be cleared")
        if "items" in fields and not patch.items:
            raise ValidationError("items: an order needs at least one line item")

        update = {name: getattr(patch, name) for name in fields & (DETAIL_FIELDS | ADVANCE_FIELDS)}
        if "admin_notes" in update and update["admin_notes"] is None:
            update["admin_notes"] = ""

        if "items" in update or "advance_amount" in update:
            total = compute_total(update.get("items", order.items))
            update["total_amount"] = total
            update["balance_amount"] = compute_balance(
                total, update.get("advance_amount", order.advance_amount)
            )

        return_update = {
            RETURN_DETAIL_NAMES[name]: getattr(patch, name)
            for name in fields & (RETURN_FIELDS | REFUND_FIELDS)
        }
        if return_update:
            update["return_details"] = order.return_details.model_copy(update=return_update)

        update["updated_at"] = self._now(order)
        edited = order.model_copy(update=update)
        logger.info("Order %s edited by %s: %s", order.id, actor.id, ", ".join(sorted(fields)))
        return edited

    def request_transition(
        self,
        order: Order,
        actor: Actor | None,
        target: OrderStatus | str,
        *,
        note: str | None = None,
        reason: str = "",
        return_type: ReturnType | str = ReturnType.REPLACEMENT,
    ) -> Order:
        """
        Move order to target. The capability checked depends on the target's group: forward statuses
        and cancellation need the status permission, return statuses the returns permission, refund
        statuses the refunds permission. reason/return_type are used only when staff log a return
        on the customer's behalf (target Return Requested); the reason is then required.
        """
        target = _enum(OrderStatus, target, "status")
        require(actor, action_for_status(target))

        group = status_group(target)
        if group is StatusGroup.RETURN and target != OrderStatus.RETURN_REQUESTED and not order.has_return_request:
            raise InvalidReturnState(f"order {order.id} has no return request")
        if group is StatusGroup.REFUND and order.return_type != ReturnType.REFUND:
            raise InvalidReturnState(f"order {order.id} is not being returned for a refund")

        current = order.current_status
        if not is_legal_transition(current, target, order.has_return_request, order.return_type):
            raise IllegalTransition(current, target)
        if target == OrderStatus.RETURN_REQUESTED:
            return_type = _enum(ReturnType, return_type, "return_type")
            if not reason or not reason.strip():
                raise ValidationError("reason: a return needs a reason")

        now = self._now(order)
        update = {"current_status": target, "updated_at": now}
        if target != current:
            update["history"] = order.history + (HistoryEntry(status=target, timestamp=now, note=note),)

        if target == OrderStatus.RETURN_REQUESTED:
            update["return_details"] = ReturnRequest(reason=reason.strip(), type=return_type)
        elif target == OrderStatus.REFUND_COMPLETED:
            update["return_details"] = order.return_details.model_copy(
                update={"refund_status": RefundStatus.COMPLETED}
            )

        moved = order.model_copy(update=update)
        logger.info("Order %s: %s -> %s by %s", order.id, current.value, target.value, actor.id)
        return moved

    def initiate_return(
        self,
        order: Order,
        reason: str,
        return_type: ReturnType | str,
        remarks: str | None = None,
        *,
        requester: str | None = None,
    ) -> Order:
        """Customer-initiated return. No actor is involved; only the order's state decides."""
        if order.current_status != OrderStatus.DELIVERED or order.has_return_request:
            raise IllegalTransition(order.current_status, OrderStatus.RETURN_REQUESTED)
        return_type = _enum(ReturnType, return_type, "return_type")
        if not reason or not reason.strip():
            raise ValidationError("reason: a return needs a reason")

        now = self._now(order)
        returned = order.model_copy(update={
            "current_status": OrderStatus.RETURN_REQUESTED,
            "updated_at": now,
            "history": order.history + (HistoryEntry(status=OrderStatus.RETURN_REQUESTED, timestamp=now),),
            "return_details": ReturnRequest(
                reason=reason.strip(),
                type=return_type,
                remarks=remarks or None,
                refund_status=RefundStatus.PENDING,
            ),
        })
        logger.info(
            "Order %s: return requested by %s (%s, %s)",
            order.id, requester or "customer", return_type.value, reason,
        )
        return returned

    def delete(self, order: Order, actor: Actor | None) -> str:
        """Authorize removal; the persistence layer performs it."""
        require(actor, Action.DELETE_ORDER)
        logger.info("Order %s deleted by %s", order.id, actor.id)
        return order.id

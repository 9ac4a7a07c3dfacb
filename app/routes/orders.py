from decimal import Decimal

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from app.db import OrderRepository
from app.deps import get_current_actor, get_lifecycle, get_repository
from app.errors import ValidationError
from app.lifecycle import OrderLifecycle
from app.metrics import order_returns_requested_total, order_transitions_total, orders_created_total
from app.models import Customer, LineItem, OrderPatch, PaymentMethod
from app.order_state import OrderStatus, ReturnType, legal_targets, progress
from app.permissions import Actor, action_for_status, can_perform
from app.queue import publish_status_event
from app.search import search_orders

router = APIRouter(prefix="/orders", tags=["orders"])


class CreateOrderBody(BaseModel):
    customer: Customer
    items: list[LineItem] = Field(..., min_length=1)
    payment_method: PaymentMethod = PaymentMethod.PREPAID
    advance_amount: Decimal = Field(default=Decimal("0"), ge=0)
    admin_notes: str = ""
    expected_delivery_date: str | None = None
    expected_delivery_time: str | None = None
    courier_tracking_url: str | None = None


class TransitionBody(BaseModel):
    status: OrderStatus = Field(..., description="Target status")
    note: str | None = None
    # Only used when staff log a return for the customer (status = Return Requested)
    reason: str = ""
    return_type: ReturnType = ReturnType.REPLACEMENT


class ReturnBody(BaseModel):
    reason: str = Field(..., min_length=1)
    return_type: ReturnType
    remarks: str | None = None


def _order_response(order, status_code: int = 200) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=order.model_dump(mode="json"))


def _signed_in(actor: Actor | None) -> bool:
    return actor is not None and actor.is_active


def _visible(order, actor: Actor | None) -> dict:
    """Staff see the full record; anyone else gets the customer view."""
    return order.model_dump(mode="json") if _signed_in(actor) else order.public_view()


@router.post("")
async def create_order(
    body: CreateOrderBody,
    actor: Actor | None = Depends(get_current_actor),
    repo: OrderRepository = Depends(get_repository),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
) -> JSONResponse:
    order = lifecycle.create(
        actor,
        customer=body.customer,
        items=body.items,
        payment_method=body.payment_method,
        advance=body.advance_amount,
        admin_notes=body.admin_notes,
        expected_delivery_date=body.expected_delivery_date,
        expected_delivery_time=body.expected_delivery_time,
        courier_tracking_url=body.courier_tracking_url,
        existing_ids=await repo.order_ids(),
    )
    await repo.save_order(order)
    orders_created_total.inc()
    return _order_response(order, status_code=201)


@router.get("")
async def list_orders(
    q: str | None = Query(default=None, description="Order id, customer name or mobile number"),
    status: OrderStatus | None = Query(default=None),
    actor: Actor | None = Depends(get_current_actor),
    repo: OrderRepository = Depends(get_repository),
) -> JSONResponse:
    """Staff browse the whole catalog; customers can only look up orders by a search term."""
    if not _signed_in(actor) and not (q and q.strip()):
        raise ValidationError("q: a search term is required to look up orders")
    orders = search_orders(await repo.load_all_orders(), q, status)
    return JSONResponse(
        status_code=200,
        content={"count": len(orders), "orders": [_visible(o, actor) for o in orders]},
    )


@router.get("/{order_id}")
async def get_order(
    order_id: str,
    actor: Actor | None = Depends(get_current_actor),
    repo: OrderRepository = Depends(get_repository),
) -> JSONResponse:
    return JSONResponse(status_code=200, content=_visible(await repo.get_order(order_id), actor))


@router.get("/{order_id}/track")
async def track_order(order_id: str, repo: OrderRepository = Depends(get_repository)) -> JSONResponse:
    """Customer tracking page: the order without internal notes, plus the progress timeline."""
    order = await repo.get_order(order_id)
    timeline = [
        {**step, "status": step["status"].value, "timestamp": step["timestamp"].isoformat() if step["timestamp"] else None}
        for step in progress(order)
    ]
    can_request_return = order.current_status == OrderStatus.DELIVERED and not order.has_return_request
    return JSONResponse(
        status_code=200,
        content={"order": order.public_view(), "timeline": timeline, "can_request_return": can_request_return},
    )


@router.patch("/{order_id}")
async def edit_order(
    order_id: str,
    patch: OrderPatch,
    actor: Actor | None = Depends(get_current_actor),
    repo: OrderRepository = Depends(get_repository),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
) -> JSONResponse:
    order = await repo.get_order(order_id)
    edited = lifecycle.apply_edit(order, actor, patch)
    if edited is not order:
        await repo.save_order(edited)
    return _order_response(edited)


@router.get("/{order_id}/transitions")
async def allowed_transitions(
    order_id: str,
    actor: Actor | None = Depends(get_current_actor),
    repo: OrderRepository = Depends(get_repository),
) -> JSONResponse:
    """Statuses this actor could move the order to right now."""
    order = await repo.get_order(order_id)
    targets = [
        target.value
        for target in legal_targets(order.current_status, order.has_return_request, order.return_type)
        if can_perform(actor, action_for_status(target))
    ]
    return JSONResponse(
        status_code=200,
        content={"order_id": order.id, "current_status": order.current_status.value, "allowed": targets},
    )


@router.post("/{order_id}/transitions")
async def transition_order(
    order_id: str,
    body: TransitionBody,
    actor: Actor | None = Depends(get_current_actor),
    repo: OrderRepository = Depends(get_repository),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
) -> JSONResponse:
    order = await repo.get_order(order_id)
    moved = lifecycle.request_transition(
        order,
        actor,
        body.status,
        note=body.note,
        reason=body.reason,
        return_type=body.return_type,
    )
    await repo.save_order(moved)
    if moved.current_status != order.current_status:
        order_transitions_total.labels(
            from_status=order.current_status.value,
            to_status=moved.current_status.value,
        ).inc()
        await publish_status_event(moved)
    return _order_response(moved)


@router.post("/{order_id}/returns")
async def request_return(
    order_id: str,
    body: ReturnBody,
    repo: OrderRepository = Depends(get_repository),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
) -> JSONResponse:
    """Customer-initiated return; no actor required."""
    order = await repo.get_order(order_id)
    returned = lifecycle.initiate_return(order, body.reason, body.return_type, body.remarks)
    await repo.save_order(returned)
    order_returns_requested_total.labels(return_type=body.return_type.value).inc()
    await publish_status_event(returned)
    return JSONResponse(status_code=201, content=returned.public_view())


@router.delete("/{order_id}")
async def delete_order(
    order_id: str,
    actor: Actor | None = Depends(get_current_actor),
    repo: OrderRepository = Depends(get_repository),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
) -> JSONResponse:
    order = await repo.get_order(order_id)
    await repo.delete_order(lifecycle.delete(order, actor))
    return JSONResponse(status_code=200, content={"status": "deleted", "order_id": order_id})

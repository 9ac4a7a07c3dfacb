"""
FastAPI dependencies: the repository, the lifecycle engine and the acting actor.

The actor comes from the X-Actor-Id header set by the upstream gateway after it has authenticated
the caller; this service does not check credentials itself. No header means no actor (the
customer-facing return path).
"""
from fastapi import Depends, Header

from app.config import settings
from app.db import OrderRepository, get_pool
from app.errors import NotFound
from app.lifecycle import OrderLifecycle
from app.permissions import Actor, Role

_lifecycle = OrderLifecycle()


def admin_actor() -> Actor:
    return Actor(
        id=settings.admin_actor_id,
        name=settings.admin_actor_name,
        role=Role.ADMIN,
        is_active=True,
    )


async def get_repository() -> OrderRepository:
    return OrderRepository(await get_pool())


def get_lifecycle() -> OrderLifecycle:
    return _lifecycle


async def get_current_actor(
    x_actor_id: str | None = Header(default=None),
    repo: OrderRepository = Depends(get_repository),
) -> Actor | None:
    if not x_actor_id:
        return None
    if x_actor_id == settings.admin_actor_id:
        return admin_actor()
    try:
        return await repo.get_staff(x_actor_id)
    except NotFound:
        # Unknown ids act as nobody; every staff action is then denied
        return None

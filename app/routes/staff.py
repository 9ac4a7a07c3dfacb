from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from app.db import OrderRepository
from app.deps import get_current_actor, get_repository
from app.permissions import Action, Actor, PermissionSet, require
from app.staff import check_remove_staff, create_staff, update_staff

router = APIRouter(prefix="/staff", tags=["staff"])


class CreateStaffBody(BaseModel):
    name: str = Field(..., min_length=1)
    email: str | None = None
    permissions: PermissionSet | None = None


class UpdateStaffBody(BaseModel):
    name: str | None = None
    email: str | None = None
    permissions: PermissionSet | None = None
    is_active: bool | None = None


@router.get("")
async def list_staff(
    actor: Actor | None = Depends(get_current_actor),
    repo: OrderRepository = Depends(get_repository),
) -> JSONResponse:
    require(actor, Action.ADMINISTER_STAFF)
    staff = await repo.load_all_staff()
    return JSONResponse(status_code=200, content={"staff": [s.model_dump(mode="json") for s in staff]})


@router.post("")
async def add_staff(
    body: CreateStaffBody,
    actor: Actor | None = Depends(get_current_actor),
    repo: OrderRepository = Depends(get_repository),
) -> JSONResponse:
    staff = create_staff(actor, body.name, email=body.email, permissions=body.permissions)
    await repo.save_staff(staff)
    return JSONResponse(status_code=201, content=staff.model_dump(mode="json"))


@router.put("/{staff_id}")
async def edit_staff(
    staff_id: str,
    body: UpdateStaffBody,
    actor: Actor | None = Depends(get_current_actor),
    repo: OrderRepository = Depends(get_repository),
) -> JSONResponse:
    require(actor, Action.ADMINISTER_STAFF)
    staff = await repo.get_staff(staff_id)
    updated = update_staff(
        actor,
        staff,
        name=body.name,
        email=body.email,
        permissions=body.permissions,
        is_active=body.is_active,
    )
    await repo.save_staff(updated)
    return JSONResponse(status_code=200, content=updated.model_dump(mode="json"))


@router.delete("/{staff_id}")
async def remove_staff(
    staff_id: str,
    actor: Actor | None = Depends(get_current_actor),
    repo: OrderRepository = Depends(get_repository),
) -> JSONResponse:
    require(actor, Action.ADMINISTER_STAFF)
    staff = await repo.get_staff(staff_id)
    await repo.delete_staff(check_remove_staff(actor, staff))
    return JSONResponse(status_code=200, content={"status": "deleted", "staff_id": staff_id})

"""
Staff roster administration. Only admins may add, edit or remove staff; the admin account
itself is configured, not stored in the roster.
"""
import logging
import uuid

from app.errors import ValidationError
from app.permissions import DEFAULT_STAFF_PERMISSIONS, Action, Actor, PermissionSet, Role, require

logger = logging.getLogger(__name__)


def _staff_only(staff: Actor) -> None:
    if staff.role is not Role.STAFF:
        raise ValidationError(f"{staff.id} is not a staff account")


def create_staff(
    actor: Actor | None,
    name: str,
    email: str | None = None,
    permissions: PermissionSet | None = None,
    staff_id: str | None = None,
) -> Actor:
    require(actor, Action.ADMINISTER_STAFF)
    if not name or not name.strip():
        raise ValidationError("name: staff need a name")
    staff = Actor(
        id=staff_id or f"STAFF_{uuid.uuid4().hex[:8].upper()}",
        name=name.strip(),
        email=email,
        role=Role.STAFF,
        is_active=True,
        permissions=permissions or DEFAULT_STAFF_PERMISSIONS,
    )
    logger.info("Staff %s added by %s", staff.id, actor.id)
    return staff


def update_staff(
    actor: Actor | None,
    staff: Actor,
    name: str | None = None,
    email: str | None = None,
    permissions: PermissionSet | None = None,
    is_active: bool | None = None,
) -> Actor:
    require(actor, Action.ADMINISTER_STAFF)
    _staff_only(staff)
    update = {}
    if name is not None:
        if not name.strip():
            raise ValidationError("name: staff need a name")
        update["name"] = name.strip()
    if email is not None:
        update["email"] = email
    if permissions is not None:
        update["permissions"] = permissions
    if is_active is not None:
        update["is_active"] = is_active
    if not update:
        return staff
    logger.info("Staff %s updated by %s: %s", staff.id, actor.id, ", ".join(sorted(update)))
    return staff.model_copy(update=update)


def check_remove_staff(actor: Actor | None, staff: Actor) -> str:
    """Authorize removal; returns the id for the persistence layer to delete."""
    require(actor, Action.ADMINISTER_STAFF)
    _staff_only(staff)
    logger.info("Staff %s removed by %s", staff.id, actor.id)
    return staff.id

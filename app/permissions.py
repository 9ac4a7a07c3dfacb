"""
Permission authority: which actor may perform which mutation.
Admins hold every capability; staff hold exactly the flags set on their PermissionSet,
and never the admin-exclusive ones.
"""
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from app.errors import PermissionDenied
from app.order_state import OrderStatus, StatusGroup, status_group


class Role(str, Enum):
    ADMIN = "ADMIN"
    STAFF = "STAFF"


class Action(str, Enum):
    CREATE_ORDER = "create orders"
    EDIT_DETAILS = "edit order details"
    ADJUST_ADVANCE = "adjust the advance amount"
    CHANGE_FORWARD_STATUS = "change order status"
    MANAGE_RETURN_STATUS = "manage returns"
    PROCESS_REFUND = "process refunds"
    DELETE_ORDER = "delete orders"
    ADMINISTER_STAFF = "administer staff"


class PermissionSet(BaseModel):
    model_config = ConfigDict(frozen=True)

    can_add_orders: bool = False
    can_edit_details: bool = False
    can_add_advance: bool = False
    can_change_status: bool = False
    can_manage_returns: bool = False
    can_process_refunds: bool = False


# Permissions a newly added staff member starts with
DEFAULT_STAFF_PERMISSIONS = PermissionSet(
    can_add_orders=True,
    can_edit_details=True,
    can_add_advance=True,
)


class Actor(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    name: str
    email: str | None = None
    role: Role = Role.STAFF
    is_active: bool = True
    permissions: PermissionSet = Field(default_factory=PermissionSet)

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN


ACTION_FLAGS: dict[Action, str] = {
    Action.CREATE_ORDER: "can_add_orders",
    Action.EDIT_DETAILS: "can_edit_details",
    Action.ADJUST_ADVANCE: "can_add_advance",
    Action.CHANGE_FORWARD_STATUS: "can_change_status",
    Action.MANAGE_RETURN_STATUS: "can_manage_returns",
    Action.PROCESS_REFUND: "can_process_refunds",
}

ADMIN_ONLY_ACTIONS: frozenset[Action] = frozenset([
    Action.DELETE_ORDER,
    Action.ADMINISTER_STAFF,
])

GROUP_ACTIONS: dict[StatusGroup, Action] = {
    StatusGroup.FORWARD: Action.CHANGE_FORWARD_STATUS,
    StatusGroup.RETURN: Action.MANAGE_RETURN_STATUS,
    StatusGroup.REFUND: Action.PROCESS_REFUND,
}


def can_perform(actor: Actor | None, action: Action) -> bool:
    """Pure check, never raises. No actor or an inactive actor may do nothing."""
    if actor is None or not actor.is_active:
        return False
    if actor.role is Role.ADMIN:
        return True
    if action in ADMIN_ONLY_ACTIONS:
        return False
    return getattr(actor.permissions, ACTION_FLAGS[action])


def require(actor: Actor | None, action: Action) -> None:
    if not can_perform(actor, action):
        raise PermissionDenied(action, actor.id if actor else None)


def action_for_status(target: OrderStatus) -> Action:
    """Capability that gates moving an order into target (cancellation counts as a forward move)."""
    return GROUP_ACTIONS[status_group(target)]

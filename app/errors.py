"""
Rejections raised by the order lifecycle. A rejected call never modifies the order it was given.
"""


class OrderError(Exception):
    """Base class: every rejection carries a stable code and the HTTP status the API maps it to."""
    code = "order_error"
    status_code = 400


class PermissionDenied(OrderError):
    """Actor lacks the capability the mutation requires."""
    code = "permission_denied"
    status_code = 403

    def __init__(self, action, actor_id: str | None = None):
        self.action = action
        self.actor_id = actor_id
        super().__init__(f"actor {actor_id or '<none>'} is not allowed to {action.value}")


class IllegalTransition(OrderError):
    """Target status is unreachable from the current status."""
    code = "illegal_transition"
    status_code = 409

    def __init__(self, current_status, target_status):
        self.current_status = current_status
        self.target_status = target_status
        super().__init__(f"cannot move from {current_status.value!r} to {target_status.value!r}")


class InvalidReturnState(OrderError):
    """Return or refund action without a matching return request."""
    code = "invalid_return_state"
    status_code = 409


class ValidationError(OrderError):
    code = "validation_error"
    status_code = 422


class NotFound(OrderError):
    code = "not_found"
    status_code = 404

    def __init__(self, kind: str, record_id: str):
        self.kind = kind
        self.record_id = record_id
        super().__init__(f"{kind} {record_id} not found")

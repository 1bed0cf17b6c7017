# ---------------------------------
# TYPED EXCEPTIONS
# ---------------------------------
from __future__ import annotations


class WorkflowError(RuntimeError):
    """Base class for every failure `submit_action` can report to a caller.

    `code` is stable and safe to expose over the API. `retryable` tells the
    caller whether re-submitting the same action can ever succeed.
    """

    code = "workflow_error"
    retryable = False

    def __init__(self, message: str, *, request_id: str | None = None) -> None:
        super().__init__(message)
        self.request_id = request_id


class InvalidTransition(WorkflowError):
    """The action is not valid for the request's current status."""

    code = "invalid_transition"


class InvariantViolation(WorkflowError):
    """The request's figures or audit fields do not reconcile."""

    code = "invariant_violation"


class ConcurrentModification(WorkflowError):
    """Another actor committed a transition between our load and our write."""

    code = "concurrent_modification"
    retryable = True


class StoreUnavailable(WorkflowError):
    """The request store could not be read or written."""

    code = "store_unavailable"
    retryable = True


class RequestNotFound(WorkflowError):
    code = "request_not_found"


class PermissionDenied(WorkflowError):
    """The actor does not hold the approver permission for the level acted at."""

    code = "permission_denied"


class DeliveryError(RuntimeError):
    """Raised by a Notifier when a message could not be delivered.

    Never escalated to a workflow failure.
    """

    def __init__(self, message: str, *, transient: bool = True) -> None:
        super().__init__(message)
        self.transient = transient

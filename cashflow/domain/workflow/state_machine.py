"""Two-level approval state machine.

Pure decision logic shared by Cash Advance and Liquidation requests:

    pending_level1 --L1 approve--> level1_approved --L2 approve--> approved
          |                               |
          +--L1 reject--> rejected <--L2 reject--+

`decide` never performs I/O and never raises for business conditions. It
returns either a `Decision` (the audit patch plus the notifications to emit
after the write commits) or a `RejectedAction`. `apply` turns a decision into
the next version of the record.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal

from cashflow.core.errors import InvalidTransition, InvariantViolation, WorkflowError
from cashflow.domain.requests import (
    Action,
    ActionOutcome,
    ApprovalLevel,
    ApprovalRequest,
    AuditPatch,
    Decision,
    DecisionError,
    DecisionResult,
    LevelDecision,
    NotificationIntent,
    NotificationKind,
    RejectedAction,
    RequestStatus,
    approver_permission,
)
from cashflow.domain.requests.validation import DEFAULT_TOLERANCE, check_invariants

# (current status, level, outcome) -> next status. Anything missing is invalid.
TRANSITIONS: dict[tuple[RequestStatus, ApprovalLevel, ActionOutcome], RequestStatus] = {
    (RequestStatus.PENDING_LEVEL1, ApprovalLevel.LEVEL1, ActionOutcome.APPROVE): RequestStatus.LEVEL1_APPROVED,
    (RequestStatus.PENDING_LEVEL1, ApprovalLevel.LEVEL1, ActionOutcome.REJECT): RequestStatus.REJECTED,
    (RequestStatus.LEVEL1_APPROVED, ApprovalLevel.LEVEL2, ActionOutcome.APPROVE): RequestStatus.APPROVED,
    (RequestStatus.LEVEL1_APPROVED, ApprovalLevel.LEVEL2, ActionOutcome.REJECT): RequestStatus.REJECTED,
}


def decide(
    current: ApprovalRequest,
    action: Action,
    *,
    now: datetime | None = None,
    tolerance: Decimal = DEFAULT_TOLERANCE,
) -> DecisionResult:
    """Compute the transition for `action` against `current`.

    Args:
        current: The record as last loaded from the store.
        action: Level, outcome and actor of the requested decision.
        now: Decision timestamp written to the audit entry.
        tolerance: Rounding tolerance for the liquidation identity.

    Returns:
        A `Decision` when the transition is in the table, otherwise a
        `RejectedAction` carrying `INVALID_TRANSITION` or
        `INVARIANT_VIOLATION`.
    """
    problem = check_invariants(current, tolerance=tolerance)
    if problem:
        return RejectedAction(error=DecisionError.INVARIANT_VIOLATION, reason=problem)

    next_status = TRANSITIONS.get((current.status, action.level, action.outcome))
    if next_status is None:
        return RejectedAction(
            error=DecisionError.INVALID_TRANSITION,
            reason=_explain_invalid(current, action),
        )

    entry = LevelDecision(
        approver_id=action.actor_id,
        approver_name=action.actor_name,
        decided_at=now or datetime.now(timezone.utc),
        comment=action.comment or None,
    )
    rejected = action.outcome == ActionOutcome.REJECT

    patch = AuditPatch(
        status=next_status,
        level1=entry if action.level == ApprovalLevel.LEVEL1 else None,
        level2=entry if action.level == ApprovalLevel.LEVEL2 else None,
        rejected_at_level=action.level if rejected else None,
    )
    return Decision(patch=patch, notifications=(_notification_for(current, action),))


def apply(current: ApprovalRequest, decision: Decision) -> ApprovalRequest:
    """Return the next version of `current` with the decision's patch applied."""
    patch = decision.patch
    return replace(
        current,
        status=patch.status,
        level1=patch.level1 or current.level1,
        level2=patch.level2 or current.level2,
        rejected_at_level=patch.rejected_at_level,
        version=current.version + 1,
    )


def level1_notification(request: ApprovalRequest) -> NotificationIntent:
    """Notification for a freshly filed request awaiting its first review."""
    return NotificationIntent(
        kind=NotificationKind.LEVEL1_APPROVAL_NEEDED,
        permission_key=approver_permission(request.request_type, ApprovalLevel.LEVEL1),
    )


# Each DecisionError value is the `code` of the exception it maps to
_ERRORS: dict[DecisionError, type[WorkflowError]] = {
    DecisionError.INVALID_TRANSITION: InvalidTransition,
    DecisionError.INVARIANT_VIOLATION: InvariantViolation,
}


def error_for(rejected: RejectedAction, *, request_id: str | None = None) -> WorkflowError:
    return _ERRORS[rejected.error](rejected.reason, request_id=request_id)


# ------------------------------
# Helpers
# ------------------------------


def _notification_for(current: ApprovalRequest, action: Action) -> NotificationIntent:
    if action.outcome == ActionOutcome.REJECT:
        return NotificationIntent(
            kind=NotificationKind.REQUESTER_REJECTED,
            recipients=(current.requester_email,),
        )

    if action.level == ApprovalLevel.LEVEL1:
        return NotificationIntent(
            kind=NotificationKind.LEVEL2_APPROVAL_NEEDED,
            permission_key=approver_permission(current.request_type, ApprovalLevel.LEVEL2),
        )

    return NotificationIntent(
        kind=NotificationKind.REQUESTER_APPROVED,
        recipients=(current.requester_email,),
    )


def _explain_invalid(current: ApprovalRequest, action: Action) -> str:
    status = current.status
    if status.is_terminal:
        return f"Request is already fully processed (status: {status.value})."
    if action.level == ApprovalLevel.LEVEL1:
        return "Level 1 review is already completed."
    return "Cannot process Level 2 until Level 1 is approved."

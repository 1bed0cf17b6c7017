"""Cash Advance and Liquidation requests: entities, invariants and projections."""
from .entities import (
    Action,
    ActionOutcome,
    ApprovalLevel,
    ApprovalRequest,
    AuditPatch,
    CashAdvanceAmounts,
    CashAdvanceType,
    Decision,
    DecisionError,
    DecisionResult,
    ExpenseItem,
    LevelDecision,
    LiquidationAmounts,
    NotificationIntent,
    NotificationKind,
    RejectedAction,
    Requester,
    RequestStatus,
    RequestType,
)
from .permissions import APPROVER_PERMISSIONS, approver_permission
from .snapshot import LevelSnapshot, RequestSnapshot
from .validation import (
    DEFAULT_TOLERANCE,
    check_invariants,
    ensure_valid,
    liquidation_amounts,
    liquidation_reconciles,
    new_cash_advance,
    new_liquidation,
)
